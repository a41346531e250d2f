"""Operator-facing snapshot engine.

``SnapshotEngine`` wires the writer, catalog, restore executor, and
integrity validator together for one database and one snapshot directory,
and returns plain dicts suitable for an HTTP layer or the CLI.

Mutating operations (create, restore, delete, retention) hold the
per-database ``OperationGuard``; a second mutating operation on the same
database fails fast with ``OperationInProgressError``.

Usage:
    from db_snapshot.factory import build_engine

    engine = await build_engine(profile_name="local")
    async with engine:
        created = await engine.create_snapshot()
        result = await engine.restore(created["filename"])
"""

import logging
from pathlib import Path

from db_snapshot.adapters.base import DatabaseClient
from db_snapshot.config.models import RetentionPolicy, SnapshotSettings
from db_snapshot.schema.integrity import IntegrityValidator
from db_snapshot.schema.introspector import CatalogReader
from db_snapshot.schema.models import IntegrityRules
from db_snapshot.snapshot.catalog import CatalogManager
from db_snapshot.snapshot.guard import CancellationToken, OperationGuard
from db_snapshot.snapshot.restore import RestoreExecutor
from db_snapshot.snapshot.writer import MODE_FULL, SnapshotWriter

logger = logging.getLogger(__name__)

_SIZE_UNITS = ["Bytes", "KB", "MB", "GB", "TB"]


def _isoformat(value) -> str | None:
    return value.isoformat() if value is not None else None


def format_bytes(size: int) -> str:
    """Human-readable size with base-1024 units and at most two decimals.

    Example:
        >>> format_bytes(1536)
        '1.5 KB'
        >>> format_bytes(0)
        '0 Bytes'
    """
    if size <= 0:
        return "0 Bytes"
    i = 0
    while i < len(_SIZE_UNITS) - 1 and size >= 1024 ** (i + 1):
        i += 1
    value = f"{size / 1024 ** i:.2f}".rstrip("0").rstrip(".")
    return f"{value} {_SIZE_UNITS[i]}"


class SnapshotEngine:
    """Snapshot, restore, retention, and validation for one database.

    Args:
        adapter: Database client for row access.
        introspector: Catalog reader for the same database.
        directory: Snapshot directory.
        target_key: Identifies the database for mutual exclusion; engines
            with the same key share one guard.  Defaults to the resolved
            snapshot directory.
        settings: Compression, parallelism, and post-restore validation.
        retention: Default retention policy.
        integrity_rules: Rules for ``validate_integrity``.
    """

    def __init__(
        self,
        adapter: DatabaseClient,
        introspector: CatalogReader,
        directory: str | Path,
        target_key: str | None = None,
        settings: SnapshotSettings | None = None,
        retention: RetentionPolicy | None = None,
        integrity_rules: IntegrityRules | None = None,
    ) -> None:
        settings = settings or SnapshotSettings()
        self.adapter = adapter
        self.introspector = introspector
        self.retention = retention or RetentionPolicy()
        self.catalog = CatalogManager(directory)
        self.writer = SnapshotWriter(
            adapter,
            introspector,
            directory,
            compress=settings.compress,
            max_parallel_tables=settings.max_parallel_tables,
        )
        self.validator = IntegrityValidator(adapter, introspector, integrity_rules)
        self.restorer = RestoreExecutor(
            adapter,
            introspector,
            self.catalog,
            self.writer,
            validator=self.validator if settings.validate_after_restore else None,
        )
        self.guard = OperationGuard(target_key or str(Path(directory).resolve()))

    async def __aenter__(self) -> "SnapshotEngine":
        enter = getattr(self.introspector, "__aenter__", None)
        if enter is not None:
            await enter()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        exit_ = getattr(self.introspector, "__aexit__", None)
        if exit_ is not None:
            await exit_(exc_type, exc_val, exc_tb)
        await self.adapter.close()

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    async def create_snapshot(
        self, mode: str = MODE_FULL, cancel: CancellationToken | None = None
    ) -> dict:
        """Capture the database into a new artifact."""
        with self.guard.acquire("snapshot"):
            snapshot = await self.writer.create_snapshot(mode=mode, cancel=cancel)
        return {
            "filename": snapshot.filename,
            "size": snapshot.size_bytes,
            "sizeFormatted": format_bytes(snapshot.size_bytes),
            "tableCount": snapshot.table_count,
            "totalRows": snapshot.total_rows,
            "isComplete": snapshot.is_complete,
            "failedTables": [e.model_dump() for e in snapshot.failed_tables],
        }

    async def list_snapshots(self) -> list[dict]:
        """All artifacts, newest first."""
        entries = []
        for s in self.catalog.list_snapshots():
            entry = {
                "filename": s.filename,
                "size": s.size_bytes,
                "sizeFormatted": format_bytes(s.size_bytes),
                "createdAt": s.created_at.isoformat(),
                "isComplete": s.is_complete,
                "backupType": s.backup_type,
                "compressed": s.compressed,
                "tableCount": s.table_count,
                "totalRows": s.total_rows,
            }
            if s.error:
                entry["error"] = s.error
            entries.append(entry)
        return entries

    async def total_size(self) -> dict:
        size = self.catalog.total_size()
        return {"totalSize": size, "totalSizeFormatted": format_bytes(size)}

    async def catalog_stats(self) -> dict:
        """Aggregate count, size, and age of the stored snapshots."""
        stats = self.catalog.stats()
        return {
            "totalBackups": stats.count,
            "totalSize": stats.total_bytes,
            "totalSizeFormatted": format_bytes(stats.total_bytes),
            "oldestBackup": _isoformat(stats.oldest_at),
            "lastBackup": _isoformat(stats.newest_at),
            "latestRestorable": stats.latest_restorable,
            "latestRestorableAt": _isoformat(stats.latest_restorable_at),
        }

    async def preview_snapshot(self, filename: str, max_bytes: int = 10_000) -> dict:
        preview = self.catalog.preview(filename, max_bytes=max_bytes)
        return {
            "filename": preview.filename,
            "metadata": preview.metadata,
            "tablesSummary": preview.tables_summary,
            "truncatedContent": preview.truncated_content,
            "truncated": preview.truncated,
        }

    async def delete_snapshot(self, filename: str) -> bool:
        with self.guard.acquire("delete"):
            return self.catalog.delete(filename)

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    async def restore(self, filename: str, cancel: CancellationToken | None = None) -> dict:
        """Restore ``filename`` over the live database.

        A safety snapshot is always taken first; its filename is returned
        as ``safetyBackupFilename`` whatever the outcome of the restore.
        """
        with self.guard.acquire("restore"):
            result = await self.restorer.restore(filename, cancel=cancel)
        payload = {
            "success": result.success,
            "safetyBackupFilename": result.safety_snapshot,
            "tablesRestored": len(result.tables_restored),
            "rowsRestored": result.rows_restored,
            "errors": [{"table": e.table, "message": e.message} for e in result.errors],
            "warnings": list(result.warnings),
            "cancelled": result.cancelled,
        }
        if result.integrity is not None:
            payload["integrity"] = result.integrity.to_dict()
        return payload

    # ------------------------------------------------------------------
    # Retention and validation
    # ------------------------------------------------------------------

    async def apply_retention(self, retention_days: int | None = None) -> dict:
        """Apply the retention policy, optionally overriding its day window."""
        policy = self.retention
        if retention_days is not None:
            policy = policy.model_copy(update={"retention_days": retention_days})
        with self.guard.acquire("retention"):
            result = self.catalog.apply_retention(policy)
        return {
            "deletedCount": result.deleted_count,
            "deletedBytes": result.deleted_bytes,
            "deletedBytesFormatted": format_bytes(result.deleted_bytes),
            "deletedFiles": list(result.deleted_files),
            "keptRestorable": result.kept_restorable,
            "retentionDays": policy.retention_days,
        }

    async def validate_integrity(self) -> dict:
        report = await self.validator.validate()
        return report.to_dict()
