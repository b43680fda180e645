"""Relational snapshot storage."""

from transit_snapshot.storage.schedule_store import ScheduleStore, SnapshotHandle, WorkingCopy
from transit_snapshot.storage.schema import Category, Route, Station, TimeSlot

__all__ = [
    "Category",
    "Route",
    "ScheduleStore",
    "SnapshotHandle",
    "Station",
    "TimeSlot",
    "WorkingCopy",
]
