"""Restore the database from a snapshot artifact.

Before anything is changed, a full safety snapshot of the current state is
written and verified.  If that fails, the restore stops without touching
the database.  Tables are then replaced one at a time, referenced tables
first; a table that fails is recorded and the remaining tables are still
restored.  The result always names the safety snapshot, which holds the
pre-restore state.

Usage:
    from db_snapshot.snapshot.restore import RestoreExecutor

    executor = RestoreExecutor(adapter, introspector, catalog, writer)
    result = await executor.restore("backup_complete_2026-01-15T03-00-00Z.jsonl.gz")
    if not result.success:
        print(f"Partial restore; previous state in {result.safety_snapshot}")
"""

import logging

from db_snapshot.adapters.base import DatabaseClient
from db_snapshot.adapters.postgres import quote_identifier
from db_snapshot.errors import (
    SafetySnapshotError,
    SchemaIntrospectionError,
    SnapshotCorruptError,
)
from db_snapshot.schema.integrity import IntegrityValidator
from db_snapshot.schema.introspector import CatalogReader
from db_snapshot.schema.resolver import resolve_restore_order
from db_snapshot.snapshot.catalog import CatalogManager
from db_snapshot.snapshot.guard import CancellationToken
from db_snapshot.snapshot.models import RestoreResult, Snapshot, TableDump, TableError
from db_snapshot.snapshot.writer import MODE_FULL, SAFETY_PREFIX, SnapshotWriter

logger = logging.getLogger(__name__)


class RestoreExecutor:
    """Replaces live table contents with a snapshot's contents.

    Args:
        adapter: Database client used for table replacement and sequences.
        introspector: Catalog reader for the live tables and foreign keys.
        catalog: Catalog used to load the target snapshot.
        writer: Writer used for the pre-restore safety snapshot.
        validator: Optional integrity validator run after the restore.
    """

    def __init__(
        self,
        adapter: DatabaseClient,
        introspector: CatalogReader,
        catalog: CatalogManager,
        writer: SnapshotWriter,
        validator: IntegrityValidator | None = None,
    ) -> None:
        self._adapter = adapter
        self._introspector = introspector
        self._catalog = catalog
        self._writer = writer
        self._validator = validator

    async def restore(self, name: str, cancel: CancellationToken | None = None) -> RestoreResult:
        """Restore ``name`` over the live database.

        Raises:
            InvalidSnapshotNameError: If the name fails validation.
            SnapshotNotFoundError: If the snapshot does not exist.
            SnapshotCorruptError: If the snapshot is unreadable or holds no rows.
            SafetySnapshotError: If the safety snapshot could not be created
                or verified.  Nothing was changed.
            SchemaIntrospectionError: If the live catalog cannot be read.
                Nothing was changed.
        """
        snapshot = self._catalog.load(name)
        if snapshot.backup_type != "complete":
            raise SnapshotCorruptError(
                f"Snapshot {name} is {snapshot.backup_type} and holds no rows to restore"
            )

        safety_filename = await self._create_safety_snapshot()

        try:
            live_tables = set(await self._introspector.list_tables())
            live_fks = await self._introspector.foreign_keys()
        except SchemaIntrospectionError as e:
            raise SchemaIntrospectionError(
                f"{e}; nothing was restored, safety snapshot {safety_filename} holds the current state"
            ) from e

        result = RestoreResult(safety_snapshot=safety_filename)
        result.warnings.extend(self._coverage_warnings(snapshot, live_tables))

        dumps: dict[str, TableDump] = {}
        for dump in snapshot.tables:
            if dump.table_name in live_tables:
                dumps[dump.table_name] = dump
            else:
                result.errors.append(
                    TableError(
                        table=dump.table_name,
                        message="table does not exist in the live database",
                    )
                )

        plan = resolve_restore_order(dumps.keys(), live_fks)
        logger.info(
            "Restoring %s: %d tables (safety snapshot %s)", name, len(plan.order), safety_filename
        )

        failures: dict[str, str] = {}
        for table in plan.order:
            if cancel is not None and cancel.cancelled:
                result.cancelled = True
                break
            await self._restore_table(dumps[table], result, failures)

        # Tables picked to break an FK cycle get one more attempt
        if not result.cancelled:
            for table in plan.deferred:
                if table not in failures:
                    continue
                if cancel is not None and cancel.cancelled:
                    result.cancelled = True
                    break
                logger.info("Retrying deferred table '%s'", table)
                del failures[table]
                await self._restore_table(dumps[table], result, failures)

        result.errors.extend(
            TableError(table=table, message=failures[table])
            for table in plan.order
            if table in failures
        )

        if result.cancelled:
            logger.warning(
                "Restore of %s cancelled after %d table(s); previous state is in %s",
                name,
                len(result.tables_restored),
                safety_filename,
            )
            result.warnings.append("restore cancelled; sequences were not reset")
        else:
            await self._reset_sequences(snapshot, result)
            if self._validator is not None:
                await self._run_validation(result)

        result.success = not result.errors and not result.cancelled
        logger.info(
            "Restore of %s finished: success=%s, %d tables, %d rows, %d error(s)",
            name,
            result.success,
            len(result.tables_restored),
            result.rows_restored,
            len(result.errors),
        )
        return result

    async def _create_safety_snapshot(self) -> str:
        try:
            safety = await self._writer.create_snapshot(mode=MODE_FULL, prefix=SAFETY_PREFIX)
        except Exception as e:
            raise SafetySnapshotError(f"Could not create safety snapshot, restore aborted: {e}") from e
        if not safety.is_complete:
            failed = ", ".join(err.table for err in safety.failed_tables)
            raise SafetySnapshotError(
                f"Safety snapshot {safety.filename} is incomplete ({failed}), restore aborted"
            )
        return safety.filename

    async def _restore_table(
        self, dump: TableDump, result: RestoreResult, failures: dict[str, str]
    ) -> None:
        try:
            inserted = await self._adapter.replace_rows(
                dump.table_name, dump.rows, dump.column_types
            )
        except Exception as e:
            logger.warning("Failed to restore table '%s': %s", dump.table_name, e)
            failures[dump.table_name] = str(e)
            return
        result.tables_restored.append(dump.table_name)
        result.rows_restored += inserted
        logger.info("Restored table '%s' (%d rows)", dump.table_name, inserted)

    async def _reset_sequences(self, snapshot: Snapshot, result: RestoreResult) -> None:
        for seq in snapshot.sequences:
            try:
                await self._adapter.execute(
                    "SELECT setval(CAST(:seq AS regclass), :value, true)",
                    {"seq": quote_identifier(seq.name), "value": seq.last_value},
                )
            except Exception as e:
                logger.warning("Could not reset sequence '%s': %s", seq.name, e)
                result.warnings.append(f"sequence {seq.name} not reset: {e}")

    async def _run_validation(self, result: RestoreResult) -> None:
        try:
            result.integrity = await self._validator.validate()
        except Exception as e:
            logger.warning("Post-restore integrity validation failed to run: %s", e)
            result.warnings.append(f"integrity validation did not run: {e}")

    @staticmethod
    def _coverage_warnings(snapshot: Snapshot, live_tables: set[str]) -> list[str]:
        warnings = []
        for err in snapshot.failed_tables:
            warnings.append(f"table {err.table} was not captured in the snapshot; left unchanged")
        captured = set(snapshot.table_names) | {e.table for e in snapshot.failed_tables}
        for table in sorted(live_tables - captured):
            warnings.append(f"table {table} is not in the snapshot; left unchanged")
        return warnings
