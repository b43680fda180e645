"""Fixed-interval timer that drives sync cycles."""

from datetime import datetime

import structlog
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MAX_INSTANCES, EVENT_JOB_MISSED, JobEvent
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.schedulers.blocking import BlockingScheduler

from transit_snapshot.sync.orchestrator import SyncOrchestrator

SYNC_JOB_ID = "transit_snapshot_sync"

log = structlog.stdlib.get_logger()


def build_scheduler(
    orchestrator: SyncOrchestrator,
    interval_seconds: int,
    blocking: bool = False,
    run_on_start: bool = True,
) -> BaseScheduler:
    """
    Create a scheduler that runs ``orchestrator.run_cycle`` every interval.

    At most one cycle runs at a time; a tick that comes due while a cycle is
    still running is dropped rather than queued.

    Args:
        orchestrator: Orchestrator whose cycles the timer drives
        interval_seconds: Seconds between ticks
        blocking: Return a BlockingScheduler instead of a BackgroundScheduler
        run_on_start: Fire the first tick as soon as the scheduler starts

    Returns:
        Configured, not yet started scheduler
    """
    scheduler_cls = BlockingScheduler if blocking else BackgroundScheduler
    scheduler = scheduler_cls(
        job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": None}
    )

    job_kwargs = {}
    if run_on_start:
        job_kwargs["next_run_time"] = datetime.now()
    scheduler.add_job(
        orchestrator.run_cycle,
        "interval",
        seconds=interval_seconds,
        id=SYNC_JOB_ID,
        name="transit snapshot sync",
        replace_existing=True,
        **job_kwargs,
    )
    scheduler.add_listener(
        _log_job_event, EVENT_JOB_MAX_INSTANCES | EVENT_JOB_MISSED | EVENT_JOB_ERROR
    )

    log.info(
        "sync_scheduler_configured",
        interval_seconds=interval_seconds,
        blocking=blocking,
        run_on_start=run_on_start,
    )
    return scheduler


def shutdown_scheduler(scheduler: BaseScheduler, orchestrator: SyncOrchestrator, wait: bool = True) -> None:
    """Stop the timer, abandoning any in-flight build first."""
    orchestrator.request_stop()
    if scheduler.running:
        scheduler.shutdown(wait=wait)
    log.info("sync_scheduler_stopped")


def _log_job_event(event: JobEvent) -> None:
    if event.code == EVENT_JOB_MAX_INSTANCES:
        log.warning("tick_dropped", job_id=event.job_id, reason="cycle_in_progress")
    elif event.code == EVENT_JOB_MISSED:
        log.warning("tick_missed", job_id=event.job_id)
    elif event.code == EVENT_JOB_ERROR:
        log.error("sync_job_crashed", job_id=event.job_id, error=str(getattr(event, "exception", "")))
