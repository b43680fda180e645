"""SQLAlchemy models for the relational schedule snapshot.

Referential integrity is enforced by SQLite itself: every foreign key is
declared ``ON DELETE CASCADE`` and ``PRAGMA foreign_keys`` is switched on for
each connection, so deleting a route removes its stations and their time slots.
"""

from pathlib import Path

from sqlalchemy import Engine, ForeignKey, Integer, String, UniqueConstraint, create_engine, event
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.pool import NullPool

SNAPSHOT_TABLES = ("category", "route", "station", "time_slot")


class Base(DeclarativeBase):
    pass


class Category(Base):
    """A transport mode; created by a full rebuild and never changed afterwards."""

    __tablename__ = "category"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False, unique=True)

    routes: Mapped[list["Route"]] = relationship(
        back_populates="category", passive_deletes=True
    )

    def __repr__(self) -> str:
        return f"<Category(id={self.id}, name={self.name!r})>"


class Route(Base):
    __tablename__ = "route"
    __table_args__ = (
        UniqueConstraint("category_id", "number", name="uq_route_category_number"),
        {"sqlite_autoincrement": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    category_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("category.id", ondelete="CASCADE"), nullable=False, index=True
    )
    number: Mapped[str] = mapped_column(String, nullable=False)

    category: Mapped[Category] = relationship(back_populates="routes")
    stations: Mapped[list["Station"]] = relationship(
        back_populates="route", passive_deletes=True, order_by="Station.id"
    )

    def __repr__(self) -> str:
        return f"<Route(id={self.id}, category_id={self.category_id}, number={self.number!r})>"


class Station(Base):
    """A stop on one path variant; id order is stop order."""

    __tablename__ = "station"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    route_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("route.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    path: Mapped[str] = mapped_column(String, nullable=False)
    link: Mapped[str] = mapped_column(String, nullable=False)

    route: Mapped[Route] = relationship(back_populates="stations")
    time_slots: Mapped[list["TimeSlot"]] = relationship(
        back_populates="station", passive_deletes=True, order_by="TimeSlot.id"
    )

    def __repr__(self) -> str:
        return f"<Station(id={self.id}, route_id={self.route_id}, name={self.name!r})>"


class TimeSlot(Base):
    __tablename__ = "time_slot"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    station_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("station.id", ondelete="CASCADE"), nullable=False, index=True
    )
    day: Mapped[str] = mapped_column(String, nullable=False)  # DayClass value
    hour: Mapped[str] = mapped_column(String, nullable=False)
    minutes: Mapped[str] = mapped_column(String, nullable=False)  # space separated

    station: Mapped[Station] = relationship(back_populates="time_slots")

    def __repr__(self) -> str:
        return f"<TimeSlot(id={self.id}, station_id={self.station_id}, day={self.day!r}, hour={self.hour!r})>"


def _enable_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()


def create_snapshot_engine(path: Path, read_only: bool = False, create: bool = True) -> Engine:
    """Create an engine for one snapshot file with foreign keys enforced.

    NullPool keeps no connection open after it is returned, so once a caller
    is done the file can be renamed or removed. With ``create=False`` a
    missing file is an error instead of a new empty database.
    """
    if read_only:
        mode = "ro"
    elif create:
        mode = "rwc"
    else:
        mode = "rw"
    url = f"sqlite:///file:{path.as_posix()}?mode={mode}&uri=true"
    engine = create_engine(url, poolclass=NullPool, connect_args={"check_same_thread": False})
    event.listen(engine, "connect", _enable_foreign_keys)
    return engine


def ensure_schema(engine: Engine) -> None:
    """Create any missing snapshot tables. Safe to call repeatedly."""
    Base.metadata.create_all(engine, checkfirst=True)
