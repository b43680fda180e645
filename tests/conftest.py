"""Shared fixtures: an in-memory schedule source and stores under tmp_path."""

from pathlib import Path

import pytest

from transit_snapshot.models.schedule import TransportKind
from transit_snapshot.storage.schedule_store import ScheduleStore
from transit_snapshot.sync.marker_tracker import MarkerTracker
from transit_snapshot.sync.orchestrator import SyncOrchestrator

from fakes import FakeScheduleSource, build_orchestrator, make_route


@pytest.fixture
def source() -> FakeScheduleSource:
    """Bus routes 12, 45 and 70 plus trolleybus 5, published as 2024-01-01."""
    fake = FakeScheduleSource(marker="2024-01-01")
    for number in ("12", "45", "70"):
        fake.set_route(TransportKind.BUS, number, make_route(TransportKind.BUS, number))
    fake.set_route(TransportKind.TROLLEYBUS, "5", make_route(TransportKind.TROLLEYBUS, "5"))
    return fake


@pytest.fixture
def store(tmp_path: Path) -> ScheduleStore:
    return ScheduleStore(tmp_path / "database" / "schedule.db")


@pytest.fixture
def markers(tmp_path: Path) -> MarkerTracker:
    return MarkerTracker(tmp_path / "database" / "last_update.txt")


@pytest.fixture
def orchestrator(source, store, markers) -> SyncOrchestrator:
    return build_orchestrator(source, store, markers)
