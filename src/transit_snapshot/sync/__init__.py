"""Change detection, snapshot builders and the sync state machine."""

from transit_snapshot.sync.change_detector import ChangeDetector
from transit_snapshot.sync.marker_tracker import MarkerTracker
from transit_snapshot.sync.models import BuildStats, CycleOutcome, CycleReport, SyncState
from transit_snapshot.sync.orchestrator import SyncOrchestrator
from transit_snapshot.sync.rebuild_engine import RebuildEngine
from transit_snapshot.sync.route_loader import RouteLoader
from transit_snapshot.sync.route_synchronizer import RouteSynchronizer

__all__ = [
    "BuildStats",
    "ChangeDetector",
    "CycleOutcome",
    "CycleReport",
    "MarkerTracker",
    "RebuildEngine",
    "RouteLoader",
    "RouteSynchronizer",
    "SyncOrchestrator",
    "SyncState",
]
