"""Change detection against the remote schedule source."""

import structlog

from transit_snapshot.exceptions import DetectionError, SourceError
from transit_snapshot.models.schedule import ChangedRoutes
from transit_snapshot.source.base import ScheduleSource
from transit_snapshot.utils.retry import RetryPolicy, retry_call


class ChangeDetector:
    """Decides whether the remote schedule moved since the last sync, and what moved."""

    def __init__(
        self,
        source: ScheduleSource,
        retry_policy: RetryPolicy | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        """
        Initialize change detector.

        Args:
            source: Remote schedule source
            retry_policy: Retries applied to each source call
            logger: Bound logger; defaults to one bound to this component
        """
        self._source = source
        self._retry_policy = retry_policy or RetryPolicy()
        self._log = logger or structlog.stdlib.get_logger().bind(component="change_detector")

    def fetch_latest_marker(self) -> str:
        """
        Fetch the identifier of the latest remote update.

        Returns:
            The remote marker

        Raises:
            DetectionError: If the marker cannot be fetched or is blank
        """
        try:
            marker = retry_call(
                self._source.fetch_latest_marker,
                policy=self._retry_policy,
                exceptions=(SourceError,),
                logger=self._log,
            )
        except SourceError as e:
            self._log.error("failed_to_fetch_marker", error=str(e))
            raise DetectionError(f"Failed to fetch update marker: {e}") from e

        marker = (marker or "").strip()
        if not marker:
            self._log.error("blank_marker_fetched")
            raise DetectionError("Source returned a blank update marker")

        self._log.info("remote_marker_fetched", marker=marker)
        return marker

    def fetch_changed_routes(self) -> ChangedRoutes:
        """
        Fetch the routes named by the latest change announcement.

        An empty result means there is nothing to apply; it is never a reason
        to rebuild.

        Returns:
            The changed routes, possibly empty

        Raises:
            DetectionError: If the announcement cannot be fetched
        """
        try:
            changed = retry_call(
                self._source.fetch_changed_routes,
                policy=self._retry_policy,
                exceptions=(SourceError,),
                logger=self._log,
            )
        except SourceError as e:
            self._log.error("failed_to_fetch_changed_routes", error=str(e))
            raise DetectionError(f"Failed to fetch changed routes: {e}") from e

        self._log.info(
            "changed_routes_fetched",
            kind=changed.kind.value if changed.kind else None,
            numbers=sorted(changed.numbers),
        )
        return changed

    def has_changed(self, remote_marker: str, stored_marker: str | None) -> bool:
        """
        Compare the remote marker with the persisted one.

        A mismatch is the only trigger for further work; a missing stored
        marker counts as a mismatch.
        """
        changed = remote_marker != stored_marker
        if changed:
            self._log.info(
                "marker_changed", remote_marker=remote_marker, stored_marker=stored_marker
            )
        else:
            self._log.info("marker_unchanged", marker=remote_marker)
        return changed
