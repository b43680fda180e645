"""Incremental replacement of changed routes inside a working copy."""

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from transit_snapshot.exceptions import CategoryNotFound, SourceError, SyncCancelled, SyncError
from transit_snapshot.models.schedule import ChangedRoutes, route_sort_key
from transit_snapshot.storage.schedule_store import WorkingCopy
from transit_snapshot.storage.schema import Category, Route
from transit_snapshot.sync.models import BuildStats
from transit_snapshot.sync.route_loader import RouteLoader


class RouteSynchronizer:
    """Deletes and reinserts the routes named by a change announcement."""

    def __init__(self, route_loader: RouteLoader, logger: structlog.stdlib.BoundLogger | None = None):
        """
        Initialize route synchronizer.

        Args:
            route_loader: Loader shared with the full rebuild
            logger: Bound logger; defaults to one bound to this component
        """
        self._loader = route_loader
        self._log = logger or structlog.stdlib.get_logger().bind(component="route_synchronizer")

    def synchronize(self, working: WorkingCopy, changed: ChangedRoutes) -> BuildStats:
        """
        Replace every changed route of one transport kind with fresh source data.

        Each named route is deleted (its stations and time slots go with it)
        and inserted again from the source. A route the source no longer
        lists comes back with no stations. Routes that were not named keep
        their rows untouched.

        Args:
            working: Working copy seeded from the live snapshot
            changed: Changed routes; must not be empty

        Returns:
            Counts of inserted rows

        Raises:
            CategoryNotFound: If the working copy has no category for the kind
            SyncError: If the source or the working copy fails
            SyncCancelled: If a stop is requested mid-sync
        """
        if changed.is_empty:
            raise SyncError("No changed routes to synchronize")

        kind = changed.kind
        numbers = sorted(changed.numbers, key=route_sort_key)
        self._log.info("route_sync_started", kind=kind.value, numbers=numbers)

        with working.session() as session:
            try:
                category_id = session.scalar(select(Category.id).where(Category.name == kind.value))
                if category_id is None:
                    raise CategoryNotFound(kind.value)

                deleted = session.execute(
                    delete(Route).where(Route.category_id == category_id, Route.number.in_(numbers))
                ).rowcount
                self._log.info("changed_routes_deleted", kind=kind.value, deleted=deleted)

                stats = BuildStats()
                for number in numbers:
                    route = Route(category_id=category_id, number=number)
                    session.add(route)
                    session.flush()
                    stats = stats.add(self._loader.load(session, route.id, kind, number))

                session.commit()
            except (CategoryNotFound, SyncCancelled) as e:
                session.rollback()
                self._log.error("route_sync_failed", kind=kind.value, error=str(e))
                raise
            except SourceError as e:
                session.rollback()
                self._log.error("route_sync_failed", kind=kind.value, stage="source", error=str(e))
                raise SyncError(f"Route sync failed reading the source: {e}") from e
            except SQLAlchemyError as e:
                session.rollback()
                self._log.error("route_sync_failed", kind=kind.value, stage="store", error=str(e))
                raise SyncError(f"Route sync failed writing the working copy: {e}") from e

        self._log.info(
            "route_sync_completed",
            kind=kind.value,
            routes=stats.routes,
            stations=stats.stations,
            time_slots=stats.time_slots,
        )
        return stats
