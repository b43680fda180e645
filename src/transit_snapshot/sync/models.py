"""Data models for synchronization cycles."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class SyncState(str, Enum):
    """Where the orchestrator is within a cycle."""

    IDLE = "idle"
    CHECKING_MARKER = "checking_marker"
    REBUILDING = "rebuilding"
    SYNCHRONIZING = "synchronizing"


class CycleOutcome(str, Enum):
    """How a cycle ended."""

    NO_CHANGE = "no_change"
    REBUILT = "rebuilt"
    SYNCHRONIZED = "synchronized"
    MARKER_ADVANCED = "marker_advanced"
    SKIPPED = "skipped"
    FAILED = "failed"


class BuildStats(BaseModel):
    """Rows written into a working copy by one build."""

    categories: int = Field(default=0, ge=0)
    routes: int = Field(default=0, ge=0)
    stations: int = Field(default=0, ge=0)
    time_slots: int = Field(default=0, ge=0)

    def add(self, other: "BuildStats") -> "BuildStats":
        return BuildStats(
            categories=self.categories + other.categories,
            routes=self.routes + other.routes,
            stations=self.stations + other.stations,
            time_slots=self.time_slots + other.time_slots,
        )


class CycleReport(BaseModel):
    """Report of one synchronization cycle."""

    outcome: CycleOutcome = Field(..., description="How the cycle ended")
    previous_marker: str | None = Field(default=None, description="Marker before the cycle")
    remote_marker: str | None = Field(default=None, description="Marker published by the source")
    routes_replaced: list[str] = Field(
        default_factory=list, description="Route numbers deleted and reinserted"
    )
    stats: BuildStats = Field(default_factory=BuildStats, description="Rows written")
    duration_seconds: float = Field(default=0.0, ge=0.0, description="Cycle duration in seconds")
    start_time: datetime = Field(..., description="Cycle start timestamp")
    end_time: datetime = Field(..., description="Cycle end timestamp")
    errors: list[str] = Field(
        default_factory=list, description="Errors that aborted the cycle"
    )

    @property
    def success(self) -> bool:
        """Check if the cycle ended without errors."""
        return self.outcome is not CycleOutcome.FAILED and not self.errors

    @property
    def snapshot_changed(self) -> bool:
        """True if the cycle committed a new snapshot."""
        return self.outcome in (CycleOutcome.REBUILT, CycleOutcome.SYNCHRONIZED)
