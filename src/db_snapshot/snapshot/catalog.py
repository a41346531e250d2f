"""Catalog of snapshot artifacts in a directory.

Lists, previews, loads, and deletes artifacts, and applies the retention
policy.  Listing reads only the first (metadata) record of each artifact,
so it stays cheap for large snapshots.

Every caller-supplied name goes through ``validate_snapshot_name`` before
any filesystem access.
"""

import gzip
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

from db_snapshot.config.models import RetentionPolicy
from db_snapshot.errors import (
    InvalidSnapshotNameError,
    SnapshotCorruptError,
    SnapshotNotFoundError,
)
from db_snapshot.snapshot.codec import (
    is_compressed,
    iter_records,
    read_metadata,
    snapshot_from_metadata,
    table_from_record,
)
from db_snapshot.snapshot.models import (
    CatalogStats,
    RetentionResult,
    Snapshot,
    SnapshotPreview,
    SnapshotSummary,
    TableDump,
)
from db_snapshot.snapshot.writer import ARTIFACT_SUFFIX

logger = logging.getLogger(__name__)

_ARTIFACT_PATTERNS = (f"*{ARTIFACT_SUFFIX}", f"*{ARTIFACT_SUFFIX}.gz")

# Errors raised while reading a damaged artifact
_READ_ERRORS = (OSError, EOFError, ValueError)


def validate_snapshot_name(name: str) -> str:
    """Reject names that could escape the snapshot directory.

    Raises:
        InvalidSnapshotNameError: For empty names, names containing ``..``,
            ``/``, ``\\`` or NUL, hidden names, and names without an
            artifact suffix.

    Example:
        >>> validate_snapshot_name("../etc/passwd")
        Traceback (most recent call last):
        ...
        db_snapshot.errors.InvalidSnapshotNameError: Invalid snapshot name: '../etc/passwd'
    """
    if not name or ".." in name or "/" in name or "\\" in name or "\x00" in name:
        raise InvalidSnapshotNameError(f"Invalid snapshot name: {name!r}")
    if name.startswith("."):
        raise InvalidSnapshotNameError(f"Invalid snapshot name: {name!r}")
    if not (name.endswith(ARTIFACT_SUFFIX) or name.endswith(ARTIFACT_SUFFIX + ".gz")):
        raise InvalidSnapshotNameError(f"Not a snapshot artifact: {name!r}")
    return name


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CatalogManager:
    """Manages the snapshot artifacts stored in one directory.

    Args:
        directory: Snapshot directory.  Missing directories list as empty.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list_snapshots(self) -> list[SnapshotSummary]:
        """List every artifact, newest first.

        Artifacts whose metadata cannot be read are still listed, with
        ``error`` set and ``created_at`` taken from the file's mtime.
        """
        summaries = [self._summarize(path) for path in self._artifact_paths()]
        summaries.sort(key=lambda s: (s.created_at, s.filename), reverse=True)
        return summaries

    def total_size(self) -> int:
        """Sum of artifact sizes in bytes."""
        return sum(path.stat().st_size for path in self._artifact_paths())

    def stats(self) -> CatalogStats:
        """Aggregate size and age of the catalog."""
        summaries = self.list_snapshots()
        if not summaries:
            return CatalogStats()
        restorable = next((s for s in summaries if s.restorable), None)
        return CatalogStats(
            count=len(summaries),
            total_bytes=sum(s.size_bytes for s in summaries),
            oldest_at=summaries[-1].created_at,
            newest_at=summaries[0].created_at,
            latest_restorable=restorable.filename if restorable else None,
            latest_restorable_at=restorable.created_at if restorable else None,
        )

    def _artifact_paths(self) -> list[Path]:
        if not self.directory.is_dir():
            return []
        paths: set[Path] = set()
        for pattern in _ARTIFACT_PATTERNS:
            paths.update(p for p in self.directory.glob(pattern) if not p.name.startswith("."))
        return sorted(p for p in paths if p.is_file())

    def _summarize(self, path: Path) -> SnapshotSummary:
        stat = path.stat()
        try:
            metadata = read_metadata(path)
            return SnapshotSummary(
                filename=path.name,
                size_bytes=stat.st_size,
                created_at=_as_utc(datetime.fromisoformat(metadata["timestampISO"])),
                is_complete=bool(metadata.get("isComplete", False)),
                backup_type=metadata.get("backupType"),
                table_count=len(metadata.get("tables", [])),
                total_rows=int(metadata.get("totalRows", 0)),
                compressed=is_compressed(path),
            )
        except (*_READ_ERRORS, KeyError, TypeError) as e:
            logger.warning("Could not read metadata of %s: %s", path.name, e)
            return SnapshotSummary(
                filename=path.name,
                size_bytes=stat.st_size,
                created_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                compressed=is_compressed(path),
                error=str(e),
            )

    # ------------------------------------------------------------------
    # Single-artifact access
    # ------------------------------------------------------------------

    def path_for(self, name: str) -> Path:
        """Resolve a validated name to an existing artifact path.

        Raises:
            InvalidSnapshotNameError: If the name fails validation.
            SnapshotNotFoundError: If no such artifact exists.
        """
        validate_snapshot_name(name)
        path = self.directory / name
        if not path.is_file():
            raise SnapshotNotFoundError(f"Snapshot not found: {name}")
        return path

    def preview(self, name: str, max_bytes: int = 10_000) -> SnapshotPreview:
        """Metadata, per-table row counts, and the first ``max_bytes`` of content.

        Content is measured after decompression.
        """
        path = self.path_for(name)
        try:
            metadata = read_metadata(path)
            opener = gzip.open if is_compressed(path) else open
            with opener(path, "rb") as f:
                head = f.read(max_bytes + 1)
        except _READ_ERRORS as e:
            raise SnapshotCorruptError(f"Snapshot {name} is unreadable: {e}") from e

        counts = metadata.get("tableRowCounts", {})
        tables_summary = [
            {"name": table, "rowCount": counts.get(table, 0)}
            for table in metadata.get("tables", [])
        ]
        return SnapshotPreview(
            filename=name,
            metadata=metadata,
            tables_summary=tables_summary,
            truncated_content=head[:max_bytes].decode("utf-8", errors="ignore"),
            truncated=len(head) > max_bytes,
        )

    def load(self, name: str) -> Snapshot:
        """Load an artifact in full, rows included.

        Raises:
            InvalidSnapshotNameError: If the name fails validation.
            SnapshotNotFoundError: If no such artifact exists.
            SnapshotCorruptError: If the artifact is unreadable or its
                records disagree with its metadata.
        """
        path = self.path_for(name)
        metadata: dict | None = None
        tables: list[TableDump] = []
        try:
            for record in iter_records(path):
                if metadata is None:
                    if record["kind"] != "metadata":
                        raise ValueError("first record is not metadata")
                    metadata = record
                elif record["kind"] == "table":
                    tables.append(table_from_record(record))
                else:
                    raise ValueError(f"unexpected record kind '{record['kind']}'")
            if metadata is None:
                raise ValueError("artifact is empty")
            snapshot = snapshot_from_metadata(
                metadata, name, size_bytes=path.stat().st_size, tables=tables
            )
        except _READ_ERRORS as e:
            raise SnapshotCorruptError(f"Snapshot {name} is corrupt: {e}") from e

        problems = self._consistency_problems(snapshot)
        if problems:
            raise SnapshotCorruptError(f"Snapshot {name} is corrupt: {'; '.join(problems)}")
        return snapshot

    @staticmethod
    def _consistency_problems(snapshot: Snapshot) -> list[str]:
        problems = []
        names = [t.table_name for t in snapshot.tables]
        if sorted(names) != sorted(snapshot.table_names):
            problems.append("table records do not match metadata table list")
        if snapshot.backup_type == "complete":
            for table in snapshot.tables:
                if table.row_count != len(table.rows):
                    problems.append(
                        f"{table.table_name}: rowCount {table.row_count} but {len(table.rows)} rows"
                    )
        if sum(t.row_count for t in snapshot.tables) != snapshot.total_rows:
            problems.append("totalRows does not match table row counts")
        return problems

    def delete(self, name: str) -> bool:
        """Delete an artifact.  Returns False if it does not exist."""
        validate_snapshot_name(name)
        path = self.directory / name
        if not path.is_file():
            return False
        path.unlink()
        logger.info("Deleted snapshot %s", name)
        return True

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def apply_retention(
        self, policy: RetentionPolicy, now: datetime | None = None
    ) -> RetentionResult:
        """Delete snapshots outside the retention window, oldest first.

        A snapshot is removed when it is older than ``retention_days`` or
        when it falls beyond ``max_snapshots`` newest.  The most recent
        artifact is never removed, nor is the most recent restorable one
        (a complete, readable ``backup_type="complete"`` snapshot), so a
        newer schema-only or damaged artifact cannot push out the last
        recovery point.  A disabled policy removes nothing.
        """
        if not policy.enabled:
            logger.info("Retention disabled; nothing deleted")
            return RetentionResult()

        now = _as_utc(now or datetime.now(timezone.utc))
        cutoff = now - timedelta(days=policy.retention_days)

        summaries = self.list_snapshots()
        if not summaries:
            return RetentionResult()

        latest = summaries[0]
        restorable = next((s for s in summaries if s.restorable), None)
        protected = {latest.filename}
        if restorable is not None:
            protected.add(restorable.filename)

        doomed = []
        for position, summary in enumerate(summaries):
            if summary.filename in protected:
                continue
            too_old = summary.created_at < cutoff
            over_cap = policy.max_snapshots is not None and position >= policy.max_snapshots
            if too_old or over_cap:
                doomed.append(summary)

        result = RetentionResult(
            kept_latest=latest.filename,
            kept_restorable=restorable.filename if restorable else None,
        )
        for summary in reversed(doomed):
            if self.delete(summary.filename):
                result.deleted_count += 1
                result.deleted_bytes += summary.size_bytes
                result.deleted_files.append(summary.filename)

        logger.info(
            "Retention removed %d snapshot(s), %d bytes (kept latest: %s, latest restorable: %s)",
            result.deleted_count,
            result.deleted_bytes,
            latest.filename,
            result.kept_restorable,
        )
        return result
