"""Contract for the remote schedule source."""

from abc import ABC, abstractmethod

from transit_snapshot.models.schedule import (
    ChangedRoutes,
    StationRecord,
    TimeSlotRecord,
    TransportKind,
)


class ScheduleSource(ABC):
    """Abstract interface for wherever the published schedule comes from.

    Implementations translate their own vocabulary into ``TransportKind`` and
    ``DayClass`` before returning records. Any fetch or parse failure must be
    raised as ``SourceError``; the sync engine treats it as a reason to abort
    the current cycle and try again on the next one.
    """

    @abstractmethod
    def list_categories(self) -> list[TransportKind]:
        """List the transport kinds the source publishes, in source order.

        Categories whose label has no transport kind are left out.

        Raises:
            SourceError: If the listing cannot be fetched or parsed
        """

    @abstractmethod
    def list_route_numbers(self, kind: TransportKind) -> list[str]:
        """List route numbers for one transport kind, in source order.

        Raises:
            SourceError: If the listing cannot be fetched or parsed
        """

    @abstractmethod
    def list_routes_for_number(self, kind: TransportKind, number: str) -> list[StationRecord]:
        """List the stops of a route, outbound path first, then return path.

        A route the source no longer lists yields an empty list.

        Raises:
            SourceError: If the route page cannot be fetched or parsed
        """

    @abstractmethod
    def list_time_slots(self, link: str) -> list[TimeSlotRecord]:
        """List departures for the stop behind ``link``.

        Raises:
            SourceError: If the timetable cannot be fetched or parsed
        """

    @abstractmethod
    def fetch_latest_marker(self) -> str:
        """Return the identifier of the latest published update (e.g. its date).

        Raises:
            SourceError: If no marker can be determined
        """

    @abstractmethod
    def fetch_changed_routes(self) -> ChangedRoutes:
        """Return the routes named by the latest change announcement.

        Returns an empty ``ChangedRoutes`` when no change section can be parsed.

        Raises:
            SourceError: If the announcement page cannot be fetched
        """

    def close(self) -> None:
        """Release any resources held by the source."""
