#!/usr/bin/env python3
"""
Health check script for the transit schedule snapshot.

This script performs health checks on the service's state:
- Configuration validation
- Snapshot presence and integrity
- Snapshot contents (row counts)
- Persisted sync marker
- Leftover working copies

Can be used for monitoring, alerting, or pre-deployment validation.

Usage:
    python scripts/health_check.py [--config CONFIG_PATH] [--json]

Exit codes:
    0: All checks passed
    1: One or more checks failed
"""

import argparse
import json
import sys
from datetime import datetime

import structlog

from transit_snapshot.exceptions import StoreAbsent, TransitSnapshotError
from transit_snapshot.models.config import AppConfig
from transit_snapshot.storage.schedule_store import STAGING_INFIX, ScheduleStore
from transit_snapshot.sync.marker_tracker import MarkerTracker
from transit_snapshot.utils.config_loader import ConfigLoader

log = structlog.stdlib.get_logger()


class HealthChecker:
    """Performs health checks on the snapshot and its marker."""

    def __init__(self, config_path: str | None = None):
        """
        Initialize health checker.

        Args:
            config_path: Optional path to configuration file
        """
        self.config_path = config_path
        self.config: AppConfig | None = None
        self.results: dict[str, dict] = {}

    def check_configuration(self) -> bool:
        """
        Check if configuration is valid.

        Returns:
            True if configuration is valid, False otherwise
        """
        check_name = "configuration"
        log.info("checking_configuration")

        try:
            config_loader = ConfigLoader()
            self.config = config_loader.load_config(self.config_path)
            warnings = config_loader.validate_config(self.config)

            self.results[check_name] = {
                "status": "warn" if warnings else "pass",
                "message": "Configuration loaded successfully",
                "details": {
                    "snapshot_path": str(self.config.store.snapshot_path),
                    "marker_path": str(self.config.store.marker_path),
                    "source_factory": self.config.source.factory,
                    "interval_seconds": self.config.sync.interval_seconds,
                    "warnings": warnings,
                },
            }
            return True

        except Exception as e:
            self.results[check_name] = {
                "status": "fail",
                "message": f"Configuration error: {str(e)}",
                "details": {},
            }
            return False

    def check_snapshot(self) -> bool:
        """
        Check that a snapshot exists, is sound, and has content.

        Returns:
            True if the snapshot is usable, False otherwise
        """
        check_name = "snapshot"
        log.info("checking_snapshot")

        if self.config is None:
            self.results[check_name] = {
                "status": "skip",
                "message": "Configuration unavailable",
                "details": {},
            }
            return False

        store = ScheduleStore(self.config.store.snapshot_path)
        try:
            with store.open() as handle:
                problems = handle.integrity_check()
                counts = handle.counts()
                size_bytes = len(handle.read_bytes())
        except StoreAbsent:
            self.results[check_name] = {
                "status": "fail",
                "message": "No snapshot has been committed yet",
                "details": {"snapshot_path": str(store.snapshot_path)},
            }
            return False
        except Exception as e:
            self.results[check_name] = {
                "status": "fail",
                "message": f"Snapshot error: {str(e)}",
                "details": {"snapshot_path": str(store.snapshot_path)},
            }
            return False

        if problems:
            self.results[check_name] = {
                "status": "fail",
                "message": "Snapshot failed the integrity check",
                "details": {"problems": problems[:10]},
            }
            return False

        self.results[check_name] = {
            "status": "pass" if counts["route"] else "warn",
            "message": "Snapshot is readable" if counts["route"] else "Snapshot has no routes",
            "details": {
                "snapshot_path": str(store.snapshot_path),
                "size_kb": round(size_bytes / 1024, 2),
                "row_counts": counts,
            },
        }
        return True

    def check_marker(self) -> bool:
        """
        Check that the sync marker can be read.

        Returns:
            True if the marker is readable, False otherwise
        """
        check_name = "marker"
        log.info("checking_marker")

        if self.config is None:
            self.results[check_name] = {
                "status": "skip",
                "message": "Configuration unavailable",
                "details": {},
            }
            return False

        try:
            marker = MarkerTracker(self.config.store.marker_path).load()
        except TransitSnapshotError as e:
            self.results[check_name] = {
                "status": "fail",
                "message": f"Marker error: {str(e)}",
                "details": {},
            }
            return False

        self.results[check_name] = {
            "status": "pass" if marker else "warn",
            "message": "Marker found" if marker else "No marker persisted yet",
            "details": {"marker": marker},
        }
        return True

    def check_stale_staging(self) -> bool:
        """
        Report working copies left behind by an interrupted cycle.

        Returns:
            Always True; leftovers are a warning, removed on next start
        """
        check_name = "stale_staging"

        if self.config is None:
            return True

        snapshot_path = self.config.store.snapshot_path
        leftovers = []
        if snapshot_path.parent.is_dir():
            leftovers = sorted(
                p.name for p in snapshot_path.parent.glob(f"{snapshot_path.name}{STAGING_INFIX}*")
            )

        self.results[check_name] = {
            "status": "warn" if leftovers else "pass",
            "message": f"{len(leftovers)} leftover working copies",
            "details": {"files": leftovers},
        }
        return True

    def run_all_checks(self) -> bool:
        """
        Run all health checks.

        Returns:
            True if all checks passed, False otherwise
        """
        checks = [
            self.check_configuration,
            self.check_snapshot,
            self.check_marker,
            self.check_stale_staging,
        ]

        all_passed = True
        for check in checks:
            try:
                result = check()
                if not result:
                    all_passed = False
            except Exception as e:
                log.error("check_failed_with_exception", check=check.__name__, error=str(e))
                all_passed = False

        return all_passed

    def get_summary(self) -> dict:
        """
        Get summary of all health check results.

        Returns:
            Dictionary with summary information
        """
        total_checks = len(self.results)
        passed = sum(1 for r in self.results.values() if r["status"] == "pass")
        failed = sum(1 for r in self.results.values() if r["status"] == "fail")
        warnings = sum(1 for r in self.results.values() if r["status"] == "warn")
        skipped = sum(1 for r in self.results.values() if r["status"] == "skip")

        return {
            "timestamp": datetime.now().isoformat(),
            "overall_status": "healthy" if failed == 0 else "unhealthy",
            "total_checks": total_checks,
            "passed": passed,
            "failed": failed,
            "warnings": warnings,
            "skipped": skipped,
            "checks": self.results,
        }


def main():
    """Main entry point for health check script."""
    parser = argparse.ArgumentParser(description="Health check for the transit schedule snapshot")
    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration file",
        default=None,
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output results in JSON format",
    )

    args = parser.parse_args()

    checker = HealthChecker(config_path=args.config)
    all_passed = checker.run_all_checks()
    summary = checker.get_summary()

    if args.json:
        print(json.dumps(summary, indent=2, ensure_ascii=False))
    else:
        print("\n" + "=" * 60)
        print("HEALTH CHECK SUMMARY")
        print("=" * 60)
        print(f"Timestamp: {summary['timestamp']}")
        print(f"Overall Status: {summary['overall_status'].upper()}")
        print(f"Total Checks: {summary['total_checks']}")
        print(f"Passed: {summary['passed']}")
        print(f"Failed: {summary['failed']}")
        print(f"Warnings: {summary['warnings']}")
        print(f"Skipped: {summary['skipped']}")
        print("\n" + "-" * 60)
        print("DETAILED RESULTS")
        print("-" * 60)

        for check_name, result in summary["checks"].items():
            status_symbol = {
                "pass": "✓",
                "fail": "✗",
                "warn": "⚠",
                "skip": "○",
            }.get(result["status"], "?")

            print(f"\n{status_symbol} {check_name.replace('_', ' ').title()}")
            print(f"  Status: {result['status'].upper()}")
            print(f"  Message: {result['message']}")

            if result["details"]:
                print("  Details:")
                for key, value in result["details"].items():
                    print(f"    - {key}: {value}")

        print("\n" + "=" * 60)

    sys.exit(0 if all_passed else 1)


if __name__ == "__main__":
    main()
