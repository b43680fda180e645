"""On-disk schedule snapshot with staged, atomically promoted updates.

The live snapshot is a single SQLite file. Writers never touch it: every build
happens in a private working copy next to it, which is promoted with one
``os.replace``. On POSIX the rename is atomic, so a reader that opens the path
gets either the old file or the new one, and a reader that already holds the
old file keeps reading it undisturbed.
"""

import hashlib
import os
import shutil
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, BinaryIO, Iterator

import structlog
from filelock import FileLock, Timeout
from sqlalchemy import Connection, Engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from transit_snapshot.exceptions import CommitError, StagingError, StoreAbsent
from transit_snapshot.storage.schema import SNAPSHOT_TABLES, create_snapshot_engine, ensure_schema

STAGING_INFIX = ".staging-"
LOCK_SUFFIX = ".lock"


class SnapshotHandle:
    """Read access to the snapshot that was live when the handle was opened.

    The handle keeps both a file descriptor and a database connection on the
    file it opened, so a commit that happens later is invisible to it.
    Use it as a context manager, or call ``close()``.
    """

    def __init__(self, path: Path, file: BinaryIO, engine: Engine, connection: Connection):
        self.path = path
        self._file = file
        self._engine = engine
        self._connection = connection

    def read_bytes(self) -> bytes:
        """Full content of the pinned snapshot file."""
        self._file.seek(0)
        return self._file.read()

    def digest(self) -> str:
        """SHA-256 of the pinned snapshot file."""
        self._file.seek(0)
        sha = hashlib.sha256()
        for block in iter(lambda: self._file.read(1024 * 1024), b""):
            sha.update(block)
        return sha.hexdigest()

    def counts(self) -> dict[str, int]:
        """Row count per snapshot table."""
        return {
            table: self._connection.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar_one()
            for table in SNAPSHOT_TABLES
        }

    def rows(self) -> dict[str, list[tuple[Any, ...]]]:
        """Every row of every snapshot table, ordered by id."""
        return {
            table: [
                tuple(row)
                for row in self._connection.execute(text(f"SELECT * FROM {table} ORDER BY id"))
            ]
            for table in SNAPSHOT_TABLES
        }

    def integrity_check(self) -> list[str]:
        """Problems reported by SQLite; empty when the file is sound."""
        result = [row[0] for row in self._connection.execute(text("PRAGMA integrity_check"))]
        return [] if result == ["ok"] else result

    def session(self) -> Session:
        """ORM session bound to the pinned connection (read-only)."""
        return Session(bind=self._connection)

    def close(self) -> None:
        try:
            self._connection.close()
            self._engine.dispose()
        finally:
            self._file.close()

    def __enter__(self) -> "SnapshotHandle":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class WorkingCopy:
    """A private, writable copy of the snapshot that no reader can see.

    An open descriptor pins the staged file, so a copy that was removed or
    swapped for another file is detected before it is promoted.
    """

    def __init__(self, path: Path, engine: Engine, seeded: bool):
        self.path = path
        self.seeded = seeded
        self._engine: Engine | None = engine
        self._pin = open(path, "rb")

    @property
    def closed(self) -> bool:
        return self._engine is None

    def session(self) -> Session:
        """New ORM session on the working copy.

        Raises:
            StagingError: If the working copy was already committed or discarded
        """
        if self._engine is None:
            raise StagingError(f"Working copy is closed: {self.path}")
        return Session(bind=self._engine)

    def is_intact(self) -> bool:
        """True if the file at ``path`` is still the one this copy was created as."""
        if self._pin.closed:
            return False
        try:
            return os.path.samestat(os.fstat(self._pin.fileno()), os.stat(self.path))
        except FileNotFoundError:
            return False

    def fsync(self) -> None:
        os.fsync(self._pin.fileno())

    def close_database(self) -> None:
        """Dispose of the engine but keep the staged file pinned."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def close(self) -> None:
        self.close_database()
        if not self._pin.closed:
            self._pin.close()

    def __repr__(self) -> str:
        return f"<WorkingCopy(path={str(self.path)!r}, seeded={self.seeded}, closed={self.closed})>"


class ScheduleStore:
    """Owns the live snapshot file and promotes working copies over it."""

    def __init__(self, snapshot_path: str | Path, logger: structlog.stdlib.BoundLogger | None = None):
        """
        Initialize the store.

        Args:
            snapshot_path: Path of the live snapshot file; its directory is created on first use
            logger: Bound logger; defaults to one bound to this component
        """
        self._snapshot_path = Path(snapshot_path)
        self._log = logger or structlog.stdlib.get_logger().bind(component="schedule_store")
        self._writer_lock = FileLock(str(self.lock_path), timeout=0)

    @property
    def snapshot_path(self) -> Path:
        return self._snapshot_path

    @property
    def lock_path(self) -> Path:
        return self._snapshot_path.with_name(f"{self._snapshot_path.name}{LOCK_SUFFIX}")

    def acquire_writer(self) -> bool:
        """Try to become the only process that stages and commits.

        Returns:
            False if another process holds the writer lock

        Raises:
            StagingError: If the lock file cannot be created
        """
        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            self._writer_lock.acquire()
        except Timeout:
            self._log.info("writer_lock_busy", lock_path=str(self.lock_path))
            return False
        except OSError as e:
            raise StagingError(f"Failed to take writer lock {self.lock_path}: {e}") from e
        return True

    def release_writer(self) -> None:
        self._writer_lock.release()

    def exists(self) -> bool:
        """True once a snapshot has been committed."""
        return self._snapshot_path.is_file()

    def open(self) -> SnapshotHandle:
        """Open the live snapshot for reading.

        Raises:
            StoreAbsent: If no snapshot has been committed yet
        """
        while True:
            try:
                file = open(self._snapshot_path, "rb")
            except FileNotFoundError as e:
                raise StoreAbsent(f"No snapshot at {self._snapshot_path}") from e

            engine = create_snapshot_engine(self._snapshot_path, read_only=True)
            try:
                connection = engine.connect()
            except SQLAlchemyError:
                engine.dispose()
                file.close()
                raise

            # A commit between open() and connect() would pin the two to different files
            try:
                same_file = os.path.samestat(os.fstat(file.fileno()), os.stat(self._snapshot_path))
            except FileNotFoundError:
                same_file = False
            if same_file:
                return SnapshotHandle(self._snapshot_path, file, engine, connection)

            self._log.debug("snapshot_replaced_while_opening", path=str(self._snapshot_path))
            connection.close()
            engine.dispose()
            file.close()

    def begin_staging(self) -> WorkingCopy:
        """Create a working copy seeded from the live snapshot, or empty if there is none.

        Raises:
            StagingError: If the copy cannot be created or its schema initialized
        """
        staging_path = self._snapshot_path.with_name(
            f"{self._snapshot_path.name}{STAGING_INFIX}{uuid.uuid4().hex}"
        )
        seeded = False
        try:
            staging_path.parent.mkdir(parents=True, exist_ok=True)
            if self.exists():
                shutil.copyfile(self._snapshot_path, staging_path)
                seeded = True
            else:
                staging_path.touch(exist_ok=False)
            engine = create_snapshot_engine(staging_path, create=False)
            ensure_schema(engine)
        except (OSError, SQLAlchemyError) as e:
            self._remove(staging_path)
            self._log.error("staging_failed", path=str(staging_path), error=str(e))
            raise StagingError(f"Failed to create working copy {staging_path}: {e}") from e

        self._log.info("staging_started", path=str(staging_path), seeded=seeded)
        return WorkingCopy(staging_path, engine, seeded)

    def commit(self, working: WorkingCopy) -> None:
        """Make the working copy the live snapshot in one atomic step.

        On failure the previous snapshot stays live and untouched and the
        working copy is discarded.

        Raises:
            CommitError: If the working copy is closed, inconsistent, or cannot be promoted
        """
        if working.closed:
            raise CommitError(f"Working copy already closed: {working.path}")
        if not working.is_intact():
            working.close()
            self._log.error("commit_rejected", path=str(working.path), reason="working_copy_replaced")
            raise CommitError(f"Working copy was removed or replaced: {working.path}")

        try:
            violations = self._foreign_key_violations(working)
        except SQLAlchemyError as e:
            self.discard(working)
            self._log.error("commit_rejected", path=str(working.path), error=str(e))
            raise CommitError(f"Failed to verify working copy {working.path}: {e}") from e
        if violations:
            self.discard(working)
            self._log.error("commit_rejected", path=str(working.path), violations=violations)
            raise CommitError(
                f"Working copy has {violations} foreign key violation(s): {working.path}"
            )

        working.close_database()
        try:
            if not working.is_intact():
                raise FileNotFoundError(f"Working copy vanished before promotion: {working.path}")
            working.fsync()
            os.replace(working.path, self._snapshot_path)
        except OSError as e:
            self._remove(working.path)
            self._log.error(
                "commit_failed",
                path=str(working.path),
                snapshot_path=str(self._snapshot_path),
                error=str(e),
            )
            raise CommitError(f"Failed to promote {working.path}: {e}") from e
        finally:
            working.close()

        self._fsync_directory()
        self._log.info("snapshot_committed", snapshot_path=str(self._snapshot_path))

    def discard(self, working: WorkingCopy) -> None:
        """Drop a working copy without affecting the live snapshot. Idempotent."""
        working.close()
        if self._remove(working.path):
            self._log.info("staging_discarded", path=str(working.path))

    @contextmanager
    def staging(self) -> Iterator[WorkingCopy]:
        """Yield a working copy that is discarded if the block raises.

        Committing is left to the caller; a copy that is neither committed nor
        discarded when the block exits normally is discarded as well.
        """
        working = self.begin_staging()
        try:
            yield working
        finally:
            if not working.closed or working.path.exists():
                self.discard(working)

    def purge_stale_staging(self) -> int:
        """Remove working copies left behind by an interrupted process.

        Returns:
            Number of files removed
        """
        directory = self._snapshot_path.parent
        if not directory.is_dir():
            return 0
        removed = 0
        for path in directory.glob(f"{self._snapshot_path.name}{STAGING_INFIX}*"):
            if self._remove(path):
                removed += 1
        if removed:
            self._log.warning("stale_staging_removed", count=removed, directory=str(directory))
        return removed

    @staticmethod
    def _foreign_key_violations(working: WorkingCopy) -> int:
        with working.session() as session:
            return len(session.execute(text("PRAGMA foreign_key_check")).fetchall())

    def _remove(self, path: Path) -> bool:
        removed = False
        for candidate in (path, Path(f"{path}-journal"), Path(f"{path}-wal"), Path(f"{path}-shm")):
            try:
                candidate.unlink()
                removed = removed or candidate == path
            except FileNotFoundError:
                continue
            except OSError as e:
                self._log.warning("failed_to_remove_file", path=str(candidate), error=str(e))
        return removed

    def _fsync_directory(self) -> None:
        # Best effort; the rename has already happened.
        try:
            fd = os.open(self._snapshot_path.parent, os.O_RDONLY)
        except OSError:
            return
        try:
            os.fsync(fd)
        except OSError as e:
            self._log.warning("directory_fsync_failed", error=str(e))
        finally:
            os.close(fd)
