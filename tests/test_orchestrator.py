"""Tests for the sync cycle state machine.

**Feature: transit-snapshot, Property: no-op idempotence**
**Feature: transit-snapshot, Property: rebuild equivalence**
**Feature: transit-snapshot, Property: single writer**
"""

import os
import threading

import pytest

from transit_snapshot.exceptions import StagingError
from transit_snapshot.models.schedule import TransportKind
from transit_snapshot.storage.schedule_store import ScheduleStore
from transit_snapshot.sync.marker_tracker import MarkerTracker
from transit_snapshot.sync.models import CycleOutcome, SyncState

from fakes import build_orchestrator, make_route, snapshot_content


def _fixture_rows(source, kind: TransportKind, number: str) -> list:
    return [
        (
            station.name,
            station.path,
            station.link,
            [(s.day.value, s.hour, s.minutes_text) for s in slots if s.day is not None],
        )
        for station, slots in source.routes[kind][number]
    ]


def test_first_cycle_rebuilds_and_saves_marker(orchestrator, source, store, markers):
    report = orchestrator.run_cycle()

    assert report.outcome is CycleOutcome.REBUILT
    assert report.success
    assert report.snapshot_changed
    assert report.previous_marker is None
    assert report.remote_marker == "2024-01-01"
    assert report.stats.routes == 4
    assert markers.load() == "2024-01-01"
    assert store.exists()
    assert orchestrator.state is SyncState.IDLE


def test_scenario_bus_12_and_45_change(orchestrator, source, store, markers):
    """Marker 2024-01-01 -> 2024-02-10 with (Bus, {12, 45}) changed; route 70 stays as it was."""
    orchestrator.run_cycle()
    with store.open() as handle:
        rows_before = handle.rows()
    route_70 = next(row for row in rows_before["route"] if row[2] == "70")
    stations_70 = [row for row in rows_before["station"] if row[1] == route_70[0]]
    station_ids_70 = {row[0] for row in stations_70}
    slots_70 = [row for row in rows_before["time_slot"] if row[1] in station_ids_70]

    for number in ("12", "45"):
        source.set_route(TransportKind.BUS, number, make_route(TransportKind.BUS, number, 3, 7))
    source.announce("2024-02-10", TransportKind.BUS, {"12", "45"})

    report = orchestrator.run_cycle()

    assert report.outcome is CycleOutcome.SYNCHRONIZED
    assert report.previous_marker == "2024-01-01"
    assert report.remote_marker == "2024-02-10"
    assert report.routes_replaced == ["12", "45"]
    assert markers.load() == "2024-02-10"

    with store.open() as handle:
        rows_after = handle.rows()
    assert route_70 in rows_after["route"]
    assert all(row in rows_after["station"] for row in stations_70)
    assert all(row in rows_after["time_slot"] for row in slots_70)

    content = snapshot_content(store)
    for number in ("12", "45"):
        assert content[("bus", number)] == _fixture_rows(source, TransportKind.BUS, number)


def test_unchanged_marker_is_a_no_op(orchestrator, source, store, markers):
    orchestrator.run_cycle()
    with store.open() as handle:
        digest = handle.digest()
    marker_mtime = markers.path.stat().st_mtime_ns
    calls_before = dict(source.calls)

    for _ in range(2):
        report = orchestrator.run_cycle()
        assert report.outcome is CycleOutcome.NO_CHANGE
        assert report.success
        assert not report.snapshot_changed

    with store.open() as handle:
        assert handle.digest() == digest
    assert markers.path.stat().st_mtime_ns == marker_mtime
    new_calls = {op: n - calls_before.get(op, 0) for op, n in source.calls.items()}
    assert {op for op, n in new_calls.items() if n} == {"fetch_latest_marker"}


def test_unchanged_marker_does_not_stage(orchestrator, store, monkeypatch):
    orchestrator.run_cycle()

    def no_staging():
        raise AssertionError("store must not be staged")

    monkeypatch.setattr(store, "begin_staging", no_staging)
    assert orchestrator.run_cycle().outcome is CycleOutcome.NO_CHANGE


def test_rebuild_equivalence(source, tmp_path):
    """Rebuilding then applying nothing equals rebuilding once."""
    first = ScheduleStore(tmp_path / "a" / "schedule.db")
    second = ScheduleStore(tmp_path / "b" / "schedule.db")
    once = build_orchestrator(source, first, MarkerTracker(tmp_path / "a" / "marker"))
    twice = build_orchestrator(source, second, MarkerTracker(tmp_path / "b" / "marker"))

    once.run_cycle()
    twice.run_cycle()
    source.announce("2024-01-02")
    assert twice.run_cycle().outcome is CycleOutcome.MARKER_ADVANCED

    with first.open() as a, second.open() as b:
        assert a.rows() == b.rows()


def test_forced_rebuild_matches_incremental_result(orchestrator, source, store, tmp_path):
    orchestrator.run_cycle()
    source.set_route(TransportKind.BUS, "12", make_route(TransportKind.BUS, "12", 1, 3))
    source.announce("2024-02-10", TransportKind.BUS, {"12"})
    orchestrator.run_cycle()

    fresh = ScheduleStore(tmp_path / "fresh" / "schedule.db")
    build_orchestrator(source, fresh, MarkerTracker(tmp_path / "fresh" / "marker")).run_cycle()

    assert snapshot_content(store) == snapshot_content(fresh)


def test_force_rebuild_replaces_existing_snapshot(orchestrator, source, store, markers):
    orchestrator.run_cycle()
    source.remove_route(TransportKind.BUS, "70")

    report = orchestrator.run_cycle(force_rebuild=True)

    assert report.outcome is CycleOutcome.REBUILT
    assert ("bus", "70") not in snapshot_content(store)


def test_empty_change_set_advances_marker_only(orchestrator, source, store, markers):
    orchestrator.run_cycle()
    with store.open() as handle:
        digest = handle.digest()

    source.announce("2024-03-01")
    report = orchestrator.run_cycle()

    assert report.outcome is CycleOutcome.MARKER_ADVANCED
    assert report.success
    assert markers.load() == "2024-03-01"
    with store.open() as handle:
        assert handle.digest() == digest
    assert orchestrator.run_cycle().outcome is CycleOutcome.NO_CHANGE


def test_failed_sync_keeps_snapshot_and_marker(orchestrator, source, store, markers):
    orchestrator.run_cycle()
    with store.open() as handle:
        digest = handle.digest()

    source.announce("2024-02-10", TransportKind.BUS, {"12"})
    source.fail("list_time_slots")
    report = orchestrator.run_cycle()

    assert report.outcome is CycleOutcome.FAILED
    assert not report.success
    assert report.errors
    assert markers.load() == "2024-01-01"
    with store.open() as handle:
        assert handle.digest() == digest
    assert not list(store.snapshot_path.parent.glob("*.staging-*"))

    source.heal()
    assert orchestrator.run_cycle().outcome is CycleOutcome.SYNCHRONIZED
    assert markers.load() == "2024-02-10"


def test_missing_category_fails_cycle(orchestrator, source, markers):
    orchestrator.run_cycle()

    source.announce("2024-02-10", TransportKind.TRAM, {"3"})
    report = orchestrator.run_cycle()

    assert report.outcome is CycleOutcome.FAILED
    assert "CategoryNotFound" in report.errors[0]
    assert markers.load() == "2024-01-01"


def test_marker_failure_without_store_builds_nothing(orchestrator, source, store, markers):
    source.fail("fetch_latest_marker")

    report = orchestrator.run_cycle()

    assert report.outcome is CycleOutcome.FAILED
    assert not store.exists()
    assert markers.load() is None
    assert source.calls["list_categories"] == 0


def test_failed_rebuild_retries_from_absent_state(orchestrator, source, store, markers):
    source.fail("list_routes_for_number", times=1)

    assert orchestrator.run_cycle().outcome is CycleOutcome.FAILED
    assert not store.exists()
    assert markers.load() is None

    assert orchestrator.run_cycle().outcome is CycleOutcome.REBUILT
    assert markers.load() == "2024-01-01"


def test_unexpected_errors_do_not_escape(orchestrator, source, store):
    source.fail("fetch_latest_marker", error=RuntimeError("bug"))

    report = orchestrator.run_cycle()

    assert report.outcome is CycleOutcome.FAILED
    assert "RuntimeError" in report.errors[0]
    assert orchestrator.state is SyncState.IDLE


def test_tick_during_cycle_is_skipped(orchestrator, source, store):
    in_flight = threading.Event()
    release = threading.Event()
    states = []

    def block_in_rebuild(operation, args):
        if operation == "list_categories":
            in_flight.set()
            release.wait(timeout=10)

    source.on_call = block_in_rebuild
    reports = []
    worker = threading.Thread(target=lambda: reports.append(orchestrator.run_cycle()))
    worker.start()
    try:
        assert in_flight.wait(timeout=10)
        states.append(orchestrator.state)
        skipped = orchestrator.run_cycle()
    finally:
        release.set()
        worker.join(timeout=30)

    assert skipped.outcome is CycleOutcome.SKIPPED
    assert states == [SyncState.REBUILDING]
    assert reports[0].outcome is CycleOutcome.REBUILT
    assert source.calls["fetch_latest_marker"] == 1


def test_request_stop_abandons_build(orchestrator, source, store, markers):
    def stop_mid_build(operation, args):
        if operation == "list_time_slots":
            orchestrator.request_stop()

    source.on_call = stop_mid_build
    report = orchestrator.run_cycle()

    assert report.outcome is CycleOutcome.FAILED
    assert "SyncCancelled" in report.errors[0]
    assert not store.exists()
    assert markers.load() is None
    assert not list(store.snapshot_path.parent.glob("*.staging-*"))
    assert orchestrator.run_cycle().outcome is CycleOutcome.SKIPPED


def test_recover_purges_stale_working_copies(orchestrator, store):
    orchestrator.run_cycle()
    leftover = store.snapshot_path.with_name(f"{store.snapshot_path.name}.staging-deadbeef")
    leftover.write_bytes(b"partial")

    assert orchestrator.recover() == 1
    assert not leftover.exists()


def _staging_leftovers(store) -> list:
    return list(store.snapshot_path.parent.glob(f"{store.snapshot_path.name}.staging-*"))


@pytest.mark.parametrize("seed_first", [False, True])
def test_failed_promotion_keeps_marker_and_snapshot(
    orchestrator, source, store, markers, monkeypatch, seed_first
):
    digest = None
    if seed_first:
        orchestrator.run_cycle()
        with store.open() as handle:
            digest = handle.digest()
        source.announce("2024-02-10", TransportKind.BUS, {"12"})
    marker_before = markers.load()

    def broken_replace(src, dst):
        raise PermissionError("read-only file system")

    monkeypatch.setattr(os, "replace", broken_replace)
    report = orchestrator.run_cycle()
    monkeypatch.undo()

    assert report.outcome is CycleOutcome.FAILED
    assert "CommitError" in report.errors[0]
    assert markers.load() == marker_before
    assert not _staging_leftovers(store)
    if seed_first:
        with store.open() as handle:
            assert handle.digest() == digest
    else:
        assert not store.exists()


@pytest.mark.parametrize("seed_first", [False, True])
def test_staging_failure_keeps_marker_and_snapshot(
    orchestrator, source, store, markers, monkeypatch, seed_first
):
    digest = None
    if seed_first:
        orchestrator.run_cycle()
        with store.open() as handle:
            digest = handle.digest()
        source.announce("2024-02-10", TransportKind.BUS, {"12"})
    marker_before = markers.load()

    def no_staging():
        raise StagingError("disk full")

    monkeypatch.setattr(store, "begin_staging", no_staging)
    report = orchestrator.run_cycle()

    assert report.outcome is CycleOutcome.FAILED
    assert "StagingError" in report.errors[0]
    assert markers.load() == marker_before
    assert not _staging_leftovers(store)
    if seed_first:
        with store.open() as handle:
            assert handle.digest() == digest
    else:
        assert not store.exists()


def test_second_process_cannot_purge_an_in_flight_copy(orchestrator, source, store, markers, monkeypatch):
    """Another process starting up while a cycle commits must neither purge nor run."""
    other = build_orchestrator(
        source,
        ScheduleStore(store.snapshot_path),
        MarkerTracker(markers.path),
    )
    seen = {}
    verify = ScheduleStore._foreign_key_violations

    def start_other_process_then_verify(working):
        seen["purged"] = other.recover()
        seen["other_cycle"] = other.run_cycle().outcome
        seen["staged_file_present"] = working.path.exists()
        return verify(working)

    monkeypatch.setattr(
        ScheduleStore, "_foreign_key_violations", staticmethod(start_other_process_then_verify)
    )
    report = orchestrator.run_cycle()
    monkeypatch.undo()

    assert seen == {"purged": 0, "other_cycle": CycleOutcome.SKIPPED, "staged_file_present": True}
    assert report.outcome is CycleOutcome.REBUILT
    with store.open() as handle:
        assert handle.counts()["route"] == 4
    assert markers.load() == "2024-01-01"


def test_writer_lock_is_released_after_each_cycle(orchestrator, source, store, markers):
    other = build_orchestrator(source, ScheduleStore(store.snapshot_path), MarkerTracker(markers.path))

    assert orchestrator.run_cycle().outcome is CycleOutcome.REBUILT
    assert other.run_cycle().outcome is CycleOutcome.NO_CHANGE
    assert other.recover() == 0
