"""Persistence of the last successfully synchronized update marker."""

import os
from pathlib import Path

import structlog

from transit_snapshot.exceptions import MarkerError


class MarkerTracker:
    """Stores the marker of the live snapshot as plain text next to it.

    The marker must only be saved after the snapshot it describes has been
    committed; callers are responsible for that ordering.
    """

    def __init__(self, path: str | Path, logger: structlog.stdlib.BoundLogger | None = None):
        """
        Initialize marker tracker.

        Args:
            path: Marker file location
            logger: Bound logger; defaults to one bound to this component
        """
        self._path = Path(path)
        self._log = logger or structlog.stdlib.get_logger().bind(component="marker_tracker")

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> str | None:
        """
        Load the persisted marker.

        Returns:
            The marker, or None if none has been saved

        Raises:
            MarkerError: If the file exists but cannot be read
        """
        try:
            marker = self._path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            self._log.info("no_marker_found", path=str(self._path))
            return None
        except OSError as e:
            self._log.error("failed_to_load_marker", path=str(self._path), error=str(e))
            raise MarkerError(f"Failed to read marker {self._path}: {e}") from e

        return marker or None

    def save(self, marker: str) -> None:
        """
        Persist a marker, replacing the previous one atomically.

        Args:
            marker: Marker of the snapshot that is now live

        Raises:
            MarkerError: If the marker cannot be written
        """
        marker = marker.strip()
        if not marker:
            raise MarkerError("Refusing to save an empty marker")

        tmp_path = self._path.with_name(f"{self._path.name}.tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(marker)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self._path)
        except OSError as e:
            self._log.error("failed_to_save_marker", path=str(self._path), error=str(e))
            try:
                tmp_path.unlink()
            except OSError:
                pass
            raise MarkerError(f"Failed to save marker {self._path}: {e}") from e

        self._log.info("marker_saved", marker=marker)

    def clear(self) -> None:
        """Forget the persisted marker."""
        try:
            self._path.unlink()
            self._log.info("marker_cleared", path=str(self._path))
        except FileNotFoundError:
            pass
        except OSError as e:
            raise MarkerError(f"Failed to remove marker {self._path}: {e}") from e
