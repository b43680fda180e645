"""Exception hierarchy for snapshot synchronization.

Every failure raised inside a sync cycle derives from ``TransitSnapshotError``
so the orchestrator can contain it to the cycle that produced it.
"""


class TransitSnapshotError(Exception):
    """Base class for all errors raised by this package."""


class SourceError(TransitSnapshotError):
    """The remote schedule source could not be fetched or parsed."""


class UnknownTransportKind(SourceError):
    """A source label has no entry in the transport kind vocabulary."""

    def __init__(self, label: str):
        super().__init__(f"Unknown transport kind label: {label!r}")
        self.label = label


class DetectionError(TransitSnapshotError):
    """The remote update marker or change list could not be determined."""


class BuildError(TransitSnapshotError):
    """A full rebuild failed before it could be committed."""


class SyncError(TransitSnapshotError):
    """An incremental synchronization failed before it could be committed."""


class SyncCancelled(SyncError):
    """A build was abandoned because a stop was requested."""


class CategoryNotFound(SyncError):
    """The working copy has no category for the changed transport kind."""

    def __init__(self, kind: str):
        super().__init__(f"Category not found in snapshot: {kind}")
        self.kind = kind


class StagingError(TransitSnapshotError):
    """A working copy could not be created."""


class CommitError(TransitSnapshotError):
    """Promoting a working copy to the live snapshot failed."""


class StoreAbsent(TransitSnapshotError):
    """No snapshot has been committed yet."""


class MarkerError(TransitSnapshotError):
    """The persisted sync marker could not be read or written."""
