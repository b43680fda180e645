"""Data models for the transit snapshot service."""

from transit_snapshot.models.config import (
    AppConfig,
    LoggingConfig,
    SourceConfig,
    StoreConfig,
    SyncConfig,
)
from transit_snapshot.models.schedule import (
    ChangedRoutes,
    DayClass,
    StationRecord,
    TimeSlotRecord,
    TransportKind,
    normalize_route_number,
    route_sort_key,
)

__all__ = [
    "AppConfig",
    "ChangedRoutes",
    "DayClass",
    "LoggingConfig",
    "SourceConfig",
    "StationRecord",
    "StoreConfig",
    "SyncConfig",
    "TimeSlotRecord",
    "TransportKind",
    "normalize_route_number",
    "route_sort_key",
]
