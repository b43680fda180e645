"""In-memory schedule source and snapshot helpers shared by the tests."""

import threading
from collections import Counter
from typing import Callable

from sqlalchemy import select

from transit_snapshot.exceptions import SourceError
from transit_snapshot.models.schedule import (
    ChangedRoutes,
    DayClass,
    StationRecord,
    TimeSlotRecord,
    TransportKind,
)
from transit_snapshot.source.base import ScheduleSource
from transit_snapshot.storage.schedule_store import ScheduleStore
from transit_snapshot.storage.schema import Category, Route
from transit_snapshot.sync.change_detector import ChangeDetector
from transit_snapshot.sync.marker_tracker import MarkerTracker
from transit_snapshot.sync.orchestrator import SyncOrchestrator
from transit_snapshot.sync.rebuild_engine import RebuildEngine
from transit_snapshot.sync.route_loader import RouteLoader
from transit_snapshot.sync.route_synchronizer import RouteSynchronizer
from transit_snapshot.utils.retry import NO_RETRY

RouteData = list[tuple[StationRecord, list[TimeSlotRecord]]]


def make_route(kind: TransportKind, number: str, stops: int = 2, revision: int = 0) -> RouteData:
    """Two path variants of ``stops`` stations each, with weekday, weekend and holiday slots.

    The holiday slot has no service-day class and must never reach the snapshot.
    ``revision`` changes every link and minute so fresh data is distinguishable.
    """
    route: RouteData = []
    for variant, path in enumerate((f"{number} outbound", f"{number} return")):
        for stop in range(stops):
            link = f"{kind.value}-{number}-{variant}-{stop}-r{revision}"
            station = StationRecord(name=f"Stop {stop} of {number}", path=path, link=link)
            slots = [
                TimeSlotRecord(
                    day=DayClass.WEEKDAY, day_label="будни", hour="06", minutes=f"{revision:02d} 30"
                ),
                TimeSlotRecord(
                    day=DayClass.WEEKEND, day_label="выходные", hour="07", minutes=f"{stop:02d}"
                ),
                TimeSlotRecord(day=None, day_label="праздничные", hour="08", minutes="15"),
            ]
            route.append((station, slots))
    return route


class FakeScheduleSource(ScheduleSource):
    """In-memory source with call counting and failure injection."""

    def __init__(self, marker: str = "2024-01-01"):
        self.marker = marker
        self.changed = ChangedRoutes()
        self.routes: dict[TransportKind, dict[str, RouteData]] = {}
        self.calls: Counter = Counter()
        self.call_log: list[tuple[str, tuple]] = []
        self.on_call: Callable[[str, tuple], None] | None = None
        self._failures: dict[str, tuple[int | None, Exception]] = {}
        self._lock = threading.Lock()

    def add_category(self, kind: TransportKind) -> None:
        self.routes.setdefault(kind, {})

    def set_route(self, kind: TransportKind, number: str, data: RouteData) -> None:
        self.routes.setdefault(kind, {})[number] = data

    def remove_route(self, kind: TransportKind, number: str) -> None:
        self.routes.get(kind, {}).pop(number, None)

    def announce(self, marker: str, kind: TransportKind | None = None, numbers=()) -> None:
        self.marker = marker
        self.changed = ChangedRoutes(kind=kind, numbers=frozenset(numbers))

    def fail(self, operation: str, times: int | None = None, error: Exception | None = None) -> None:
        """Make ``operation`` raise for its next ``times`` calls (forever if None)."""
        self._failures[operation] = (times, error or SourceError(f"{operation} unavailable"))

    def heal(self, operation: str | None = None) -> None:
        if operation is None:
            self._failures.clear()
        else:
            self._failures.pop(operation, None)

    def _record(self, operation: str, *args) -> None:
        with self._lock:
            self.calls[operation] += 1
            self.call_log.append((operation, args))
        if self.on_call is not None:
            self.on_call(operation, args)
        if operation in self._failures:
            times, error = self._failures[operation]
            if times is not None:
                if times <= 1:
                    del self._failures[operation]
                else:
                    self._failures[operation] = (times - 1, error)
            raise error

    def list_categories(self) -> list[TransportKind]:
        self._record("list_categories")
        return list(self.routes)

    def list_route_numbers(self, kind: TransportKind) -> list[str]:
        self._record("list_route_numbers", kind)
        return list(self.routes.get(kind, {}))

    def list_routes_for_number(self, kind: TransportKind, number: str) -> list[StationRecord]:
        self._record("list_routes_for_number", kind, number)
        return [station for station, _ in self.routes.get(kind, {}).get(number, [])]

    def list_time_slots(self, link: str) -> list[TimeSlotRecord]:
        self._record("list_time_slots", link)
        for numbers in self.routes.values():
            for data in numbers.values():
                for station, slots in data:
                    if station.link == link:
                        return list(slots)
        return []

    def fetch_latest_marker(self) -> str:
        self._record("fetch_latest_marker")
        return self.marker

    def fetch_changed_routes(self) -> ChangedRoutes:
        self._record("fetch_changed_routes")
        return self.changed


def build_orchestrator(source: ScheduleSource, store: ScheduleStore, markers: MarkerTracker):
    cancel_event = threading.Event()
    loader = RouteLoader(source, retry_policy=NO_RETRY, cancel_event=cancel_event)
    return SyncOrchestrator(
        store=store,
        marker_tracker=markers,
        change_detector=ChangeDetector(source, retry_policy=NO_RETRY),
        rebuild_engine=RebuildEngine(loader),
        route_synchronizer=RouteSynchronizer(loader),
        cancel_event=cancel_event,
    )


def snapshot_content(store: ScheduleStore) -> dict:
    """Row content of the live snapshot keyed by (kind, route number), ids left out.

    Stations keep their id order, so stop order is part of the content.
    """
    content: dict = {}
    with store.open() as handle, handle.session() as session:
        for category in session.scalars(select(Category)).all():
            routes = session.scalars(select(Route).where(Route.category_id == category.id)).all()
            for route in routes:
                content[(category.name, route.number)] = [
                    (
                        station.name,
                        station.path,
                        station.link,
                        [(slot.day, slot.hour, slot.minutes) for slot in station.time_slots],
                    )
                    for station in route.stations
                ]
            content.setdefault((category.name, None), [])
    return content


