"""Centralized provider module for the schedule source and snapshot store.

This module wires the configured collaborators into a ready-to-run
SyncOrchestrator. Developers can point ``source.factory`` at a different
implementation without changing other code.

Default implementations:
- ScheduleSource: YamlScheduleSource (reads a local YAML dump)
- ScheduleStore: SQLite snapshot under ``store.data_dir``
"""

import importlib
import threading

import structlog

from transit_snapshot.models.config import AppConfig
from transit_snapshot.source.base import ScheduleSource
from transit_snapshot.storage.schedule_store import ScheduleStore
from transit_snapshot.sync.change_detector import ChangeDetector
from transit_snapshot.sync.marker_tracker import MarkerTracker
from transit_snapshot.sync.orchestrator import SyncOrchestrator
from transit_snapshot.sync.rebuild_engine import RebuildEngine
from transit_snapshot.sync.route_loader import RouteLoader
from transit_snapshot.sync.route_synchronizer import RouteSynchronizer
from transit_snapshot.utils.retry import RetryPolicy

log = structlog.stdlib.get_logger()


def get_schedule_source(config: AppConfig) -> ScheduleSource:
    """Get the configured schedule source implementation.

    Developers: Point ``source.factory`` at any callable returning a
    ScheduleSource. It is called with ``vocabulary=`` plus ``source.options``.

    Example - a source that scrapes the transit operator's site:
        source:
          factory: mycity.scraper:ScrapingScheduleSource
          options:
            base_url: https://example.org/schedule

    Args:
        config: Application configuration

    Returns:
        ScheduleSource instance

    Raises:
        ValueError: If the factory path is malformed
        RuntimeError: If the factory cannot be imported or fails
    """
    factory_path = config.source.factory
    module_name, _, attribute = factory_path.partition(":")
    if not module_name or not attribute:
        error_msg = f"source.factory must look like 'module:callable', got '{factory_path}'"
        log.error("get_schedule_source_failed", error=error_msg)
        raise ValueError(error_msg)

    try:
        log.info("initializing_schedule_source", factory=factory_path)

        factory = getattr(importlib.import_module(module_name), attribute)
        source = factory(vocabulary=config.vocabulary, **config.source.options)

        log.info("schedule_source_initialized", factory=factory_path)
        return source

    except Exception as e:
        error_msg = f"Failed to initialize schedule source '{factory_path}': {e}"
        log.error(
            "get_schedule_source_failed",
            factory=factory_path,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise RuntimeError(error_msg) from e


def get_schedule_store(config: AppConfig) -> ScheduleStore:
    """Get the snapshot store for the configured data directory."""
    store = ScheduleStore(config.store.snapshot_path)
    log.info("schedule_store_initialized", snapshot_path=str(store.snapshot_path))
    return store


def get_retry_policy(config: AppConfig) -> RetryPolicy:
    """Retry policy applied to every source call."""
    return RetryPolicy(
        max_retries=config.sync.fetch_retries,
        base_delay=config.sync.retry_base_delay,
        max_delay=config.sync.retry_max_delay,
    )


def build_orchestrator(
    config: AppConfig,
    source: ScheduleSource | None = None,
    store: ScheduleStore | None = None,
) -> SyncOrchestrator:
    """Assemble a SyncOrchestrator and its collaborators.

    Args:
        config: Application configuration
        source: Optional source instance (uses get_schedule_source if None)
        store: Optional store instance (uses get_schedule_store if None)

    Returns:
        SyncOrchestrator ready to run cycles
    """
    source = source or get_schedule_source(config)
    store = store or get_schedule_store(config)
    policy = get_retry_policy(config)
    cancel_event = threading.Event()

    loader = RouteLoader(source, retry_policy=policy, cancel_event=cancel_event)
    orchestrator = SyncOrchestrator(
        store=store,
        marker_tracker=MarkerTracker(config.store.marker_path),
        change_detector=ChangeDetector(source, retry_policy=policy),
        rebuild_engine=RebuildEngine(loader),
        route_synchronizer=RouteSynchronizer(loader),
        cancel_event=cancel_event,
    )

    log.info(
        "sync_orchestrator_initialized",
        snapshot_path=str(store.snapshot_path),
        marker_path=str(config.store.marker_path),
        source=type(source).__name__,
    )
    return orchestrator
