"""Snapshot capture, cataloguing, and restore.

Usage:
    from db_snapshot.snapshot import SnapshotWriter, CatalogManager, RestoreExecutor
"""

from db_snapshot.snapshot.catalog import CatalogManager, validate_snapshot_name
from db_snapshot.snapshot.guard import CancellationToken, OperationGuard
from db_snapshot.snapshot.models import (
    CatalogStats,
    RestoreResult,
    RetentionResult,
    SequenceValue,
    Snapshot,
    SnapshotPreview,
    SnapshotSummary,
    TableDump,
    TableError,
)
from db_snapshot.snapshot.restore import RestoreExecutor
from db_snapshot.snapshot.writer import SnapshotWriter, generate_snapshot_filename

__all__ = [
    "SnapshotWriter",
    "generate_snapshot_filename",
    "CatalogManager",
    "validate_snapshot_name",
    "RestoreExecutor",
    "OperationGuard",
    "CancellationToken",
    "Snapshot",
    "TableDump",
    "TableError",
    "SequenceValue",
    "SnapshotSummary",
    "SnapshotPreview",
    "RestoreResult",
    "RetentionResult",
    "CatalogStats",
]
