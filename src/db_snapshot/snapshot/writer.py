"""Snapshot capture: dump every table into one versioned artifact.

Each table is captured independently.  A table that cannot be read is
recorded in ``failed_tables`` and the rest of the database is still
captured; the snapshot is then marked incomplete.

The artifact is written to a hidden temporary file in the snapshot
directory, flushed with ``os.fsync`` and renamed into place with
``os.replace``, so a visible artifact is never half-written.  After the rename the file is re-read and
its per-table row counts are checked against what was captured.

Usage:
    from db_snapshot.snapshot.writer import SnapshotWriter

    writer = SnapshotWriter(adapter, introspector, "backups")
    snapshot = await writer.create_snapshot()
    print(snapshot.filename, snapshot.total_rows)
"""

import asyncio
import logging
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path

from db_snapshot.adapters.base import DatabaseClient
from db_snapshot.adapters.postgres import quote_identifier
from db_snapshot.errors import SnapshotIntegrityError
from db_snapshot.schema.introspector import CatalogReader
from db_snapshot.snapshot.codec import (
    COMPRESSED_SUFFIX,
    dumps_record,
    iter_records,
    metadata_record,
    open_artifact,
    table_record,
)
from db_snapshot.snapshot.guard import CancellationToken
from db_snapshot.snapshot.models import (
    SequenceValue,
    Snapshot,
    TableDump,
    TableError,
)

logger = logging.getLogger(__name__)

ARTIFACT_SUFFIX = ".jsonl"
FULL_PREFIX = "backup_complete_"
SCHEMA_ONLY_PREFIX = "backup_schema_"
SAFETY_PREFIX = "pre_restore_"

MODE_FULL = "full"
MODE_SCHEMA_ONLY = "schemaOnly"


def generate_snapshot_filename(prefix: str, created_at: datetime, compress: bool) -> str:
    """Build ``<prefix><UTC timestamp>.jsonl[.gz]``.

    Example:
        >>> generate_snapshot_filename("backup_complete_", datetime(2026, 1, 15, 3, tzinfo=timezone.utc), True)
        'backup_complete_2026-01-15T03-00-00Z.jsonl.gz'
    """
    timestamp = created_at.astimezone(timezone.utc).strftime("%Y-%m-%dT%H-%M-%SZ")
    suffix = ARTIFACT_SUFFIX + (COMPRESSED_SUFFIX if compress else "")
    return f"{prefix}{timestamp}{suffix}"


def _fsync_file(path: Path) -> None:
    with open(path, "rb") as f:
        os.fsync(f.fileno())


def _fsync_directory(directory: Path) -> None:
    # Directory handles cannot be opened on Windows
    if os.name != "posix":
        return
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


class SnapshotWriter:
    """Captures the live database into snapshot artifacts.

    Args:
        adapter: Database client used to read rows and sequence values.
        introspector: Catalog reader for tables, columns, and foreign keys.
        directory: Snapshot directory (created if missing).
        compress: gzip-compress artifacts.
        max_parallel_tables: Upper bound on tables captured concurrently.
    """

    def __init__(
        self,
        adapter: DatabaseClient,
        introspector: CatalogReader,
        directory: str | Path,
        compress: bool = True,
        max_parallel_tables: int = 1,
    ) -> None:
        self._adapter = adapter
        self._introspector = introspector
        self.directory = Path(directory)
        self._compress = compress
        self._max_parallel = max(1, max_parallel_tables)

    async def create_snapshot(
        self,
        mode: str = MODE_FULL,
        prefix: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> Snapshot:
        """Capture every table and write a verified artifact.

        Args:
            mode: ``"full"`` (rows included) or ``"schemaOnly"``
                (definitions and live row counts only).
            prefix: Filename prefix; defaults by mode.
            cancel: Optional token checked before each table.

        Returns:
            The written Snapshot (without row data).

        Raises:
            SchemaIntrospectionError: If the table list cannot be read.
            SnapshotIntegrityError: If the written artifact fails verification.
            OperationCancelledError: If cancelled; no artifact is left behind.
        """
        if mode not in (MODE_FULL, MODE_SCHEMA_ONLY):
            raise ValueError(f"Unknown snapshot mode '{mode}'")
        backup_type = "complete" if mode == MODE_FULL else "schemaOnly"
        if prefix is None:
            prefix = FULL_PREFIX if mode == MODE_FULL else SCHEMA_ONLY_PREFIX

        # Catalog failures here are fatal
        tables = await self._introspector.list_tables()
        foreign_keys = await self._introspector.foreign_keys()

        self.directory.mkdir(parents=True, exist_ok=True)
        created_at = datetime.now(timezone.utc)
        filename = self._unique_filename(prefix, created_at)
        final_path = self.directory / filename
        body_path = self.directory / f".{filename}.body.tmp"
        temp_path = self.directory / f".{filename}.tmp"

        logger.info("Creating %s snapshot %s (%d tables)", mode, filename, len(tables))

        row_counts: dict[str, int] = {}
        failed: list[TableError] = []

        try:
            with open(body_path, "w", encoding="utf-8") as body:
                write_lock = asyncio.Lock()
                semaphore = asyncio.Semaphore(self._max_parallel)

                async def capture(table: str) -> None:
                    async with semaphore:
                        # Stop at the table boundary; raised once all tasks settle
                        if cancel is not None and cancel.cancelled:
                            return
                        try:
                            dump = await self._dump_table(table, mode)
                        except Exception as e:
                            logger.warning("Failed to capture table '%s': %s", table, e)
                            failed.append(TableError(table=table, message=str(e)))
                            return
                        async with write_lock:
                            body.write(dumps_record(table_record(dump)) + "\n")
                            row_counts[table] = dump.row_count

                if self._max_parallel == 1:
                    for table in tables:
                        await capture(table)
                else:
                    await asyncio.gather(*(capture(t) for t in tables))

            if cancel is not None:
                cancel.raise_if_cancelled("Snapshot")

            sequences = await self._capture_sequences()

            captured = [t for t in tables if t in row_counts]
            failed.sort(key=lambda e: tables.index(e.table))
            snapshot = Snapshot(
                filename=filename,
                created_at=created_at,
                backup_type=backup_type,
                table_names=captured,
                total_rows=sum(row_counts.values()),
                is_complete=not failed,
                failed_tables=failed,
                sequences=sequences,
                foreign_keys=foreign_keys,
            )

            with open_artifact(temp_path, "wt", compressed=self._compress) as out:
                out.write(dumps_record(metadata_record(snapshot, row_counts)) + "\n")
                with open(body_path, "r", encoding="utf-8") as body:
                    shutil.copyfileobj(body, out)

            _fsync_file(temp_path)
            os.replace(temp_path, final_path)
            _fsync_directory(self.directory)
        finally:
            for path in (body_path, temp_path):
                if path.exists():
                    path.unlink()

        snapshot = snapshot.model_copy(update={"size_bytes": final_path.stat().st_size})
        self._verify(final_path, snapshot, row_counts)

        if failed:
            logger.warning(
                "Snapshot %s is incomplete: %d table(s) failed (%s)",
                filename,
                len(failed),
                ", ".join(e.table for e in failed),
            )
        logger.info(
            "Snapshot %s written: %d tables, %d rows, %d bytes",
            filename,
            snapshot.table_count,
            snapshot.total_rows,
            snapshot.size_bytes,
        )
        return snapshot

    # ------------------------------------------------------------------
    # Capture helpers
    # ------------------------------------------------------------------

    async def _dump_table(self, table: str, mode: str) -> TableDump:
        columns = await self._introspector.describe_table(table)
        constraints = await self._introspector.describe_constraints(table)
        if mode == MODE_FULL:
            rows = await self._adapter.fetch_rows(table)
            return TableDump(
                table_name=table,
                columns=columns,
                constraints=constraints,
                rows=rows,
                row_count=len(rows),
            )
        return TableDump(
            table_name=table,
            columns=columns,
            constraints=constraints,
            row_count=await self._introspector.row_count(table),
        )

    async def _capture_sequences(self) -> list[SequenceValue]:
        """Read ``last_value`` of every sequence; failures are only logged."""
        try:
            names = await self._introspector.list_sequences()
        except Exception as e:
            logger.warning("Could not list sequences: %s", e)
            return []

        sequences = []
        for name in names:
            try:
                rows = await self._adapter.fetch(
                    f"SELECT last_value FROM {quote_identifier(name)}"
                )
                sequences.append(SequenceValue(name=name, last_value=int(rows[0]["last_value"])))
            except Exception as e:
                logger.warning("Could not read sequence '%s': %s", name, e)
        return sequences

    def _unique_filename(self, prefix: str, created_at: datetime) -> str:
        filename = generate_snapshot_filename(prefix, created_at, self._compress)
        if not (self.directory / filename).exists():
            return filename
        stem = filename[: -len(ARTIFACT_SUFFIX + (COMPRESSED_SUFFIX if self._compress else ""))]
        suffix = filename[len(stem):]
        n = 2
        while (self.directory / f"{stem}_{n}{suffix}").exists():
            n += 1
        return f"{stem}_{n}{suffix}"

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def _verify(self, path: Path, snapshot: Snapshot, row_counts: dict[str, int]) -> None:
        """Re-read the artifact and compare it with what was captured.

        Raises:
            SnapshotIntegrityError: On any mismatch.  The artifact is kept.
        """
        problems: list[str] = []
        seen: dict[str, int] = {}
        metadata: dict | None = None

        try:
            for index, record in enumerate(iter_records(path)):
                if index == 0:
                    if record["kind"] != "metadata":
                        problems.append("first record is not metadata")
                    metadata = record
                    continue
                if record["kind"] != "table":
                    problems.append(f"unexpected record kind '{record['kind']}'")
                    continue
                name = record.get("tableName")
                declared = record.get("rowCount")
                actual = len(record.get("rows", []))
                if snapshot.backup_type == "complete" and declared != actual:
                    problems.append(f"{name}: rowCount {declared} but {actual} rows")
                if declared != row_counts.get(name):
                    problems.append(f"{name}: rowCount {declared}, captured {row_counts.get(name)}")
                seen[name] = declared or 0
        except (OSError, EOFError, ValueError) as e:
            problems.append(f"artifact unreadable: {e}")

        if metadata is None:
            problems.append("metadata record missing")
        else:
            if sorted(metadata.get("tables", [])) != sorted(seen):
                problems.append("table list does not match table records")
            if metadata.get("totalRows") != sum(seen.values()):
                problems.append(
                    f"totalRows {metadata.get('totalRows')} != sum of table rows {sum(seen.values())}"
                )

        if problems:
            logger.error("Snapshot %s failed verification: %s", snapshot.filename, "; ".join(problems))
            raise SnapshotIntegrityError(
                f"Snapshot {snapshot.filename} failed verification: {'; '.join(problems)}",
                filename=snapshot.filename,
                problems=problems,
            )
