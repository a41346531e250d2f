"""Exception hierarchy for the snapshot engine.

Fatal conditions are raised; per-table capture/restore problems are
collected into result objects and never raised.

Usage:
    from db_snapshot.errors import SnapshotEngineError, SafetySnapshotError

    try:
        result = await engine.restore("backup_complete_2026-01-15T03-00-00Z.jsonl.gz")
    except SafetySnapshotError as e:
        print(f"Restore aborted, nothing changed: {e}")
"""


class SnapshotEngineError(Exception):
    """Base class for all snapshot engine errors."""

    pass


class PreconditionError(SnapshotEngineError):
    """An operation cannot start because its inputs are unusable."""

    pass


class SchemaIntrospectionError(PreconditionError):
    """The live schema catalog could not be read."""

    pass


class InvalidSnapshotNameError(PreconditionError):
    """A caller-supplied snapshot name failed the path-traversal check."""

    pass


class SnapshotNotFoundError(PreconditionError):
    """The requested snapshot artifact does not exist."""

    pass


class SnapshotCorruptError(PreconditionError):
    """The snapshot artifact is unreadable or malformed."""

    pass


class SafetySnapshotError(SnapshotEngineError):
    """The pre-restore safety snapshot could not be created or verified."""

    pass


class SnapshotIntegrityError(SnapshotEngineError):
    """A written artifact does not match the counts recorded during capture.

    The artifact is kept on disk for diagnosis; ``filename`` names it.
    """

    def __init__(self, message: str, filename: str, problems: list[str] | None = None):
        super().__init__(message)
        self.filename = filename
        self.problems = problems or []


class OperationInProgressError(SnapshotEngineError):
    """Another mutating operation is already running against the same target."""

    pass


class OperationCancelledError(SnapshotEngineError):
    """The operation was cancelled at a table boundary."""

    pass
