#!/usr/bin/env python3
"""
Scheduled synchronization script for the transit schedule snapshot.

This script keeps the local snapshot in step with the remote schedule:
- Rebuilds the snapshot from scratch when none exists
- Replaces only the changed routes when the remote marker moves
- Logs cycle statistics

Without --once it runs the sync timer in the foreground until interrupted.
With --once it runs a single cycle, suitable for cron or a manual trigger.

Usage:
    python scripts/scheduled_sync.py [--config CONFIG_PATH] [--once] [--rebuild]
"""

import argparse
import sys

import structlog

from transit_snapshot.providers import build_orchestrator
from transit_snapshot.scheduling import build_scheduler, shutdown_scheduler
from transit_snapshot.sync.models import CycleReport
from transit_snapshot.utils.config_loader import ConfigLoader, ConfigurationError
from transit_snapshot.utils.logging_config import configure_from_config

log = structlog.stdlib.get_logger()


def print_summary(report: CycleReport) -> None:
    """Print a human-readable summary of one cycle."""
    print("\n" + "=" * 60)
    print("SYNCHRONIZATION SUMMARY")
    print("=" * 60)

    if report.success:
        print("Status: ✓ SUCCESS")
    else:
        print("Status: ✗ FAILED")
    print(f"Outcome: {report.outcome.value}")
    print(f"Previous Marker: {report.previous_marker or '-'}")
    print(f"Remote Marker: {report.remote_marker or '-'}")
    if report.routes_replaced:
        print(f"Routes Replaced: {', '.join(report.routes_replaced)}")
    if report.snapshot_changed:
        print(f"Categories Written: {report.stats.categories}")
        print(f"Routes Written: {report.stats.routes}")
        print(f"Stations Written: {report.stats.stations}")
        print(f"Time Slots Written: {report.stats.time_slots}")
    for error in report.errors:
        print(f"Error: {error}")
    print(f"Duration: {report.duration_seconds:.2f} seconds")

    print("=" * 60)


def main():
    """Main entry point for scheduled sync script."""
    parser = argparse.ArgumentParser(
        description="Scheduled synchronization for the transit schedule snapshot"
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration file",
        default=None,
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single cycle and exit",
    )
    parser.add_argument(
        "--rebuild",
        action="store_true",
        help="Rebuild the snapshot from scratch on the first cycle",
    )

    args = parser.parse_args()

    try:
        config_loader = ConfigLoader()
        config = config_loader.load_config(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    configure_from_config(config.logging)
    for warning in config_loader.validate_config(config):
        log.warning("configuration_warning", warning=warning)

    orchestrator = build_orchestrator(config)
    orchestrator.recover()

    if args.once or args.rebuild:
        report = orchestrator.run_cycle(force_rebuild=args.rebuild)
        print_summary(report)
        if args.once:
            sys.exit(0 if report.success else 1)
        if not report.success:
            sys.exit(1)

    scheduler = build_scheduler(
        orchestrator,
        interval_seconds=config.sync.interval_seconds,
        blocking=True,
        run_on_start=config.sync.run_on_start and not args.rebuild,
    )
    log.info("sync_service_starting", interval_seconds=config.sync.interval_seconds)
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        log.info("sync_service_interrupted")
    finally:
        shutdown_scheduler(scheduler, orchestrator, wait=False)


if __name__ == "__main__":
    main()
