"""Full reconstruction of the schedule snapshot from the source."""

import structlog
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError

from transit_snapshot.exceptions import BuildError, SourceError, SyncCancelled
from transit_snapshot.models.schedule import TransportKind, normalize_route_number, route_sort_key
from transit_snapshot.storage.schedule_store import WorkingCopy
from transit_snapshot.storage.schema import Category, Route
from transit_snapshot.sync.models import BuildStats
from transit_snapshot.sync.route_loader import RouteLoader


class RebuildEngine:
    """Builds a complete snapshot into a working copy.

    Any rows already in the working copy are dropped first, so the result
    depends only on what the source returns.
    """

    def __init__(self, route_loader: RouteLoader, logger: structlog.stdlib.BoundLogger | None = None):
        """
        Initialize rebuild engine.

        Args:
            route_loader: Loader shared with incremental synchronization
            logger: Bound logger; defaults to one bound to this component
        """
        self._loader = route_loader
        self._log = logger or structlog.stdlib.get_logger().bind(component="rebuild_engine")

    def build(self, working: WorkingCopy) -> BuildStats:
        """
        Populate the working copy with every category, route, stop and time slot.

        Categories are inserted first, then the routes of every category,
        then each route's stations and time slots. The working copy is left
        uncommitted; promoting or discarding it is up to the caller.

        Args:
            working: Working copy to write into

        Returns:
            Counts of inserted rows

        Raises:
            BuildError: If the source or the working copy fails
            SyncCancelled: If a stop is requested mid-build
        """
        self._log.info("rebuild_started", path=str(working.path), seeded=working.seeded)

        with working.session() as session:
            try:
                # Cascades to routes, stations and time slots
                session.execute(delete(Category))

                kinds = self._unique(self._loader.fetch(self._loader.source.list_categories))
                categories: list[tuple[TransportKind, Category]] = []
                for kind in kinds:
                    category = Category(name=kind.value)
                    session.add(category)
                    categories.append((kind, category))
                session.flush()

                routes: list[tuple[TransportKind, Route]] = []
                for kind, category in categories:
                    numbers = self._route_numbers(kind)
                    for number in numbers:
                        route = Route(category_id=category.id, number=number)
                        session.add(route)
                        routes.append((kind, route))
                    self._log.info("category_routes_listed", kind=kind.value, routes=len(numbers))
                session.flush()

                stats = BuildStats(categories=len(categories))
                for kind, route in routes:
                    loaded = self._loader.load(session, route.id, kind, route.number)
                    stats = stats.add(loaded)

                session.commit()
            except SyncCancelled:
                session.rollback()
                raise
            except SourceError as e:
                session.rollback()
                self._log.error("rebuild_failed", stage="source", error=str(e))
                raise BuildError(f"Rebuild failed reading the source: {e}") from e
            except SQLAlchemyError as e:
                session.rollback()
                self._log.error("rebuild_failed", stage="store", error=str(e))
                raise BuildError(f"Rebuild failed writing the working copy: {e}") from e

        self._log.info(
            "rebuild_completed",
            categories=stats.categories,
            routes=stats.routes,
            stations=stats.stations,
            time_slots=stats.time_slots,
        )
        return stats

    def _route_numbers(self, kind: TransportKind) -> list[str]:
        numbers = self._loader.fetch(self._loader.source.list_route_numbers, kind)
        cleaned = (normalize_route_number(n) for n in numbers)
        return sorted(self._unique(n for n in cleaned if n), key=route_sort_key)

    @staticmethod
    def _unique(items) -> list:
        seen = set()
        result = []
        for item in items:
            if item not in seen:
                seen.add(item)
                result.append(item)
        return result
