"""Loads one route's stops and timetables from the source into a working copy."""

import threading
from typing import Any, Callable

import structlog
from sqlalchemy.orm import Session

from transit_snapshot.exceptions import SourceError, SyncCancelled
from transit_snapshot.models.schedule import TransportKind
from transit_snapshot.storage.schema import Station, TimeSlot
from transit_snapshot.sync.models import BuildStats
from transit_snapshot.utils.retry import RetryPolicy, retry_call


class RouteLoader:
    """Fetches and inserts the stations and time slots of single routes.

    Used by both the full rebuild and the incremental synchronizer so the two
    paths write identical rows for identical source data.
    """

    def __init__(
        self,
        source,
        retry_policy: RetryPolicy | None = None,
        cancel_event: threading.Event | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        """
        Initialize route loader.

        Args:
            source: ScheduleSource to read from
            retry_policy: Retries applied to each source call
            cancel_event: When set, the next checkpoint raises SyncCancelled
            logger: Bound logger; defaults to one bound to this component
        """
        self._source = source
        self._retry_policy = retry_policy or RetryPolicy()
        self._cancel_event = cancel_event or threading.Event()
        self._log = logger or structlog.stdlib.get_logger().bind(component="route_loader")

    @property
    def source(self):
        return self._source

    def checkpoint(self) -> None:
        """Raise SyncCancelled if a stop was requested."""
        if self._cancel_event.is_set():
            self._log.warning("build_cancelled")
            raise SyncCancelled("Stop requested; abandoning working copy")

    def fetch(self, operation: Callable[..., Any], *args: Any) -> Any:
        """Call a source operation with retries, after a cancellation checkpoint."""
        self.checkpoint()
        return retry_call(
            operation,
            *args,
            policy=self._retry_policy,
            exceptions=(SourceError,),
            logger=self._log,
        )

    def load(self, session: Session, route_id: int, kind: TransportKind, number: str) -> BuildStats:
        """
        Insert a route's stations (both path variants) and their time slots.

        Stations are inserted in source order, so id order is stop order.
        Time slots whose day label is not a service-day class are skipped.

        Args:
            session: Session on the working copy
            route_id: Id of the already inserted route row
            kind: Transport kind of the route
            number: Route number

        Returns:
            Counts of inserted stations and time slots

        Raises:
            SourceError: If the source fails after retries
            SyncCancelled: If a stop is requested mid-route
        """
        records = self.fetch(self._source.list_routes_for_number, kind, number)

        stations = [
            Station(route_id=route_id, name=record.name, path=record.path, link=record.link)
            for record in records
        ]
        session.add_all(stations)
        session.flush()

        if not stations:
            self._log.warning("route_has_no_stations", kind=kind.value, number=number)

        slot_count = 0
        skipped = 0
        for station in stations:
            for slot in self.fetch(self._source.list_time_slots, station.link):
                if slot.day is None:
                    skipped += 1
                    continue
                session.add(
                    TimeSlot(
                        station_id=station.id,
                        day=slot.day.value,
                        hour=slot.hour,
                        minutes=slot.minutes_text,
                    )
                )
                slot_count += 1
        session.flush()

        self._log.info(
            "route_loaded",
            kind=kind.value,
            number=number,
            route_id=route_id,
            stations=len(stations),
            time_slots=slot_count,
            skipped_time_slots=skipped,
        )
        return BuildStats(routes=1, stations=len(stations), time_slots=slot_count)
