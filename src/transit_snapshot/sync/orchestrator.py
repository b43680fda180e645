"""Top-level synchronization state machine."""

import threading
from datetime import datetime
from typing import Callable

import structlog

from transit_snapshot.exceptions import TransitSnapshotError
from transit_snapshot.models.schedule import route_sort_key
from transit_snapshot.storage.schedule_store import ScheduleStore, WorkingCopy
from transit_snapshot.sync.change_detector import ChangeDetector
from transit_snapshot.sync.marker_tracker import MarkerTracker
from transit_snapshot.sync.models import BuildStats, CycleOutcome, CycleReport, SyncState
from transit_snapshot.sync.rebuild_engine import RebuildEngine
from transit_snapshot.sync.route_synchronizer import RouteSynchronizer


class SyncOrchestrator:
    """Runs sync cycles: check the marker, then rebuild, synchronize or do nothing.

    Only one cycle runs at a time, across threads and across processes
    sharing the snapshot directory. A cycle that is requested while another
    is in flight returns a ``skipped`` report straight away instead of waiting.
    The marker is saved only after the snapshot it describes is committed.
    """

    def __init__(
        self,
        store: ScheduleStore,
        marker_tracker: MarkerTracker,
        change_detector: ChangeDetector,
        rebuild_engine: RebuildEngine,
        route_synchronizer: RouteSynchronizer,
        cancel_event: threading.Event | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        """
        Initialize sync orchestrator.

        Args:
            store: Owner of the live snapshot
            marker_tracker: Persistence of the last synced marker
            change_detector: Marker and change-list lookups
            rebuild_engine: Full rebuild into a working copy
            route_synchronizer: Incremental route replacement
            cancel_event: Event shared with the route loader; set by request_stop()
            logger: Bound logger; defaults to one bound to this component
        """
        self._store = store
        self._markers = marker_tracker
        self._detector = change_detector
        self._rebuild_engine = rebuild_engine
        self._synchronizer = route_synchronizer
        self._cancel_event = cancel_event or threading.Event()
        self._log = logger or structlog.stdlib.get_logger().bind(component="sync_orchestrator")

        self._lock = threading.Lock()
        self._state = SyncState.IDLE

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def store(self) -> ScheduleStore:
        return self._store

    @property
    def marker_tracker(self) -> MarkerTracker:
        return self._markers

    @property
    def stop_requested(self) -> bool:
        return self._cancel_event.is_set()

    def recover(self) -> int:
        """Remove working copies left behind by an earlier process.

        Returns:
            Number of stale working copies removed
        """
        with self._lock:
            if not self._store.acquire_writer():
                self._log.warning("recover_skipped", reason="another_process_writing")
                return 0
            try:
                return self._store.purge_stale_staging()
            finally:
                self._store.release_writer()

    def request_stop(self) -> None:
        """Abandon any in-flight build and refuse further cycles."""
        self._log.info("stop_requested", state=self._state.value)
        self._cancel_event.set()

    def run_cycle(self, force_rebuild: bool = False) -> CycleReport:
        """
        Run one synchronization cycle.

        Never raises: every failure is logged and returned in the report,
        with the live snapshot and the marker left as they were.

        Args:
            force_rebuild: Rebuild from scratch even if a snapshot exists

        Returns:
            CycleReport describing what the cycle did
        """
        start_time = datetime.now()

        if self._cancel_event.is_set():
            self._log.info("cycle_skipped", reason="stop_requested")
            return self._report(CycleOutcome.SKIPPED, start_time)

        if not self._lock.acquire(blocking=False):
            self._log.warning("cycle_skipped", reason="cycle_in_progress", state=self._state.value)
            return self._report(CycleOutcome.SKIPPED, start_time)

        try:
            try:
                acquired = self._store.acquire_writer()
            except TransitSnapshotError as e:
                self._log.error("cycle_failed", state=self._state.value, error=str(e))
                return self._finish(
                    CycleOutcome.FAILED, start_time, None, None, errors=[f"{type(e).__name__}: {e}"]
                )
            if not acquired:
                self._log.warning("cycle_skipped", reason="another_process_writing")
                return self._report(CycleOutcome.SKIPPED, start_time)

            try:
                return self._run_cycle(start_time, force_rebuild)
            finally:
                self._store.release_writer()
        finally:
            self._state = SyncState.IDLE
            self._lock.release()

    def _run_cycle(self, start_time: datetime, force_rebuild: bool) -> CycleReport:
        self._log.info("cycle_started", force_rebuild=force_rebuild)

        previous_marker: str | None = None
        remote_marker: str | None = None
        try:
            self._state = SyncState.CHECKING_MARKER
            previous_marker = self._markers.load()
            remote_marker = self._detector.fetch_latest_marker()

            if force_rebuild or not self._store.exists():
                self._state = SyncState.REBUILDING
                stats = self._stage_and_commit(self._rebuild_engine.build)
                self._markers.save(remote_marker)
                return self._finish(
                    CycleOutcome.REBUILT, start_time, previous_marker, remote_marker, stats=stats
                )

            if not self._detector.has_changed(remote_marker, previous_marker):
                return self._finish(CycleOutcome.NO_CHANGE, start_time, previous_marker, remote_marker)

            self._state = SyncState.SYNCHRONIZING
            changed = self._detector.fetch_changed_routes()
            if changed.is_empty:
                self._log.info("no_routes_changed", remote_marker=remote_marker)
                self._markers.save(remote_marker)
                return self._finish(
                    CycleOutcome.MARKER_ADVANCED, start_time, previous_marker, remote_marker
                )

            stats = self._stage_and_commit(
                lambda working: self._synchronizer.synchronize(working, changed)
            )
            self._markers.save(remote_marker)
            return self._finish(
                CycleOutcome.SYNCHRONIZED,
                start_time,
                previous_marker,
                remote_marker,
                stats=stats,
                routes_replaced=sorted(changed.numbers, key=route_sort_key),
            )

        except TransitSnapshotError as e:
            self._log.error(
                "cycle_failed",
                state=self._state.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            return self._finish(
                CycleOutcome.FAILED,
                start_time,
                previous_marker,
                remote_marker,
                errors=[f"{type(e).__name__}: {e}"],
            )
        except Exception as e:
            self._log.exception("cycle_failed_unexpectedly", state=self._state.value, error=str(e))
            return self._finish(
                CycleOutcome.FAILED,
                start_time,
                previous_marker,
                remote_marker,
                errors=[f"Unexpected error: {type(e).__name__}: {e}"],
            )

    def _stage_and_commit(self, build: Callable[[WorkingCopy], BuildStats]) -> BuildStats:
        with self._store.staging() as working:
            stats = build(working)
            self._store.commit(working)
        return stats

    def _finish(
        self,
        outcome: CycleOutcome,
        start_time: datetime,
        previous_marker: str | None,
        remote_marker: str | None,
        stats: BuildStats | None = None,
        routes_replaced: list[str] | None = None,
        errors: list[str] | None = None,
    ) -> CycleReport:
        report = self._report(
            outcome,
            start_time,
            previous_marker=previous_marker,
            remote_marker=remote_marker,
            stats=stats or BuildStats(),
            routes_replaced=routes_replaced or [],
            errors=errors or [],
        )
        self._log.info(
            "cycle_completed",
            outcome=report.outcome.value,
            previous_marker=previous_marker,
            remote_marker=remote_marker,
            routes_replaced=report.routes_replaced,
            stations=report.stats.stations,
            time_slots=report.stats.time_slots,
            duration_seconds=report.duration_seconds,
            success=report.success,
        )
        return report

    @staticmethod
    def _report(outcome: CycleOutcome, start_time: datetime, **fields) -> CycleReport:
        end_time = datetime.now()
        return CycleReport(
            outcome=outcome,
            start_time=start_time,
            end_time=end_time,
            duration_seconds=max((end_time - start_time).total_seconds(), 0.0),
            **fields,
        )
