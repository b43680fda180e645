"""Pydantic models for records exchanged with the schedule source."""

from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator


class TransportKind(str, Enum):
    """Vehicle category a route belongs to."""

    BUS = "bus"
    TROLLEYBUS = "trolleybus"
    TRAM = "tram"


class DayClass(str, Enum):
    """Service-day class a time slot applies to."""

    WEEKDAY = "weekday"
    WEEKEND = "weekend"


def normalize_route_number(number: str) -> str:
    """Strip surrounding whitespace from a route number."""
    return str(number).strip()


def route_sort_key(number: str) -> tuple[int, int, str]:
    """Order route numbers naturally: 2 < 12 < 12A < 101 < 'N1'."""
    digits = ""
    for char in number:
        if not char.isdecimal():
            break
        digits += char
    if digits:
        return (0, int(digits), number[len(digits):])
    return (1, 0, number)


class StationRecord(BaseModel):
    """One stop on one path variant of a route, in source order."""

    name: str = Field(default=..., min_length=1, description="Stop name")
    path: str = Field(default=..., description="Path variant label (e.g. 'A - B')")
    link: str = Field(default=..., description="Link to the stop's timetable")

    model_config = {
        "frozen": True,
        "json_schema_extra": {
            "example": {
                "name": "Central Square",
                "path": "Central Square - Railway Station",
                "link": "https://example.org/route/12/central-square",
            }
        },
    }


class TimeSlotRecord(BaseModel):
    """Departure minutes within one hour at one stop.

    ``day`` is None when the source's day label does not map to a known
    service-day class; such records are never written to the snapshot.
    """

    day: DayClass | None = Field(default=None, description="Service-day class, if recognised")
    day_label: str = Field(default="", description="Day label exactly as the source gave it")
    hour: str = Field(default=..., min_length=1, description="Hour bucket, e.g. '06'")
    minutes: list[str] = Field(default_factory=list, description="Departure minutes in the hour")

    model_config = {"frozen": True}

    @field_validator("minutes", mode="before")
    @classmethod
    def split_minutes(cls, v):
        """Accept a whitespace-separated string as well as a list."""
        if isinstance(v, str):
            return v.split()
        return v

    @property
    def minutes_text(self) -> str:
        """Minutes joined the way they are stored."""
        return " ".join(self.minutes)


class ChangedRoutes(BaseModel):
    """Routes named by the source's latest change announcement."""

    kind: TransportKind | None = Field(
        default=None, description="Transport kind of the changed routes; None if nothing changed"
    )
    numbers: frozenset[str] = Field(default_factory=frozenset, description="Changed route numbers")

    model_config = {"frozen": True}

    @field_validator("numbers", mode="before")
    @classmethod
    def normalize_numbers(cls, v):
        """Strip whitespace and drop blank entries."""
        if v is None:
            return frozenset()
        return frozenset(n for n in (normalize_route_number(x) for x in v) if n)

    @model_validator(mode="after")
    def require_kind_for_numbers(self) -> "ChangedRoutes":
        if self.numbers and self.kind is None:
            raise ValueError("kind is required when route numbers are given")
        return self

    @property
    def is_empty(self) -> bool:
        """True when the announcement names no routes."""
        return not self.numbers
