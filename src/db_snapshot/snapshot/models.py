"""Pydantic models for snapshots, catalog entries, and operation results."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from db_snapshot.schema.models import (
    ColumnSchema,
    ConstraintSchema,
    ForeignKeyRef,
    IntegrityReport,
)

SCHEMA_VERSION = "2.0"

BackupType = Literal["complete", "schemaOnly"]


# ============================================================================
# Artifact Contents
# ============================================================================


class TableError(BaseModel):
    """A per-table failure during capture or restore."""

    table: str
    message: str


class SequenceValue(BaseModel):
    """Captured ``last_value`` of a sequence."""

    name: str
    last_value: int


class TableDump(BaseModel):
    """One table's definition and rows inside a snapshot.

    In ``schemaOnly`` snapshots ``rows`` is empty and ``row_count`` holds the
    live count at capture time.
    """

    model_config = ConfigDict(frozen=True)

    table_name: str
    columns: list[ColumnSchema] = Field(default_factory=list)
    constraints: list[ConstraintSchema] = Field(default_factory=list)
    rows: list[dict] = Field(default_factory=list)
    row_count: int = 0

    @property
    def column_types(self) -> dict[str, str]:
        return {c.name: c.data_type for c in self.columns}


class Snapshot(BaseModel):
    """A complete point-in-time copy of the database.

    ``tables`` is only populated when the snapshot is loaded in full
    (``CatalogManager.load``) or has just been written.
    """

    model_config = ConfigDict(frozen=True)

    filename: str
    created_at: datetime
    schema_version: str = SCHEMA_VERSION
    backup_type: BackupType = "complete"
    tables: list[TableDump] = Field(default_factory=list)
    table_names: list[str] = Field(default_factory=list)
    total_rows: int = 0
    size_bytes: int = 0
    is_complete: bool = True
    failed_tables: list[TableError] = Field(default_factory=list)
    sequences: list[SequenceValue] = Field(default_factory=list)
    foreign_keys: list[ForeignKeyRef] = Field(default_factory=list)

    @property
    def table_count(self) -> int:
        return len(self.table_names)

    def get_table(self, name: str) -> TableDump | None:
        for table in self.tables:
            if table.table_name == name:
                return table
        return None


# ============================================================================
# Catalog Views
# ============================================================================


class SnapshotSummary(BaseModel):
    """Catalog listing entry, built from the metadata record only.

    ``error`` is set when the metadata could not be read; ``created_at``
    then falls back to the file modification time.
    """

    filename: str
    size_bytes: int
    created_at: datetime
    is_complete: bool = False
    backup_type: str | None = None
    table_count: int = 0
    total_rows: int = 0
    compressed: bool = False
    error: str | None = None

    @property
    def restorable(self) -> bool:
        """A readable, complete snapshot with rows that restore accepts."""
        return self.error is None and self.is_complete and self.backup_type == "complete"


class CatalogStats(BaseModel):
    """Aggregate size and age of the artifacts in a snapshot directory."""

    count: int = 0
    total_bytes: int = 0
    oldest_at: datetime | None = None
    newest_at: datetime | None = None
    latest_restorable: str | None = None
    latest_restorable_at: datetime | None = None


class SnapshotPreview(BaseModel):
    """Metadata, per-table counts, and a bounded slice of artifact content."""

    filename: str
    metadata: dict
    tables_summary: list[dict] = Field(default_factory=list)
    truncated_content: str = ""
    truncated: bool = False


# ============================================================================
# Operation Results
# ============================================================================


class RestoreResult(BaseModel):
    """Outcome of a restore.

    ``success`` is true only when no table failed and the restore was not
    cancelled.  ``safety_snapshot`` always names the pre-restore snapshot,
    which holds the state to return to if the result is not what was wanted.
    """

    success: bool = False
    safety_snapshot: str
    tables_restored: list[str] = Field(default_factory=list)
    rows_restored: int = 0
    errors: list[TableError] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    cancelled: bool = False
    integrity: IntegrityReport | None = None


class RetentionResult(BaseModel):
    """Outcome of a retention sweep."""

    deleted_count: int = 0
    deleted_bytes: int = 0
    deleted_files: list[str] = Field(default_factory=list)
    kept_latest: str | None = None
    kept_restorable: str | None = None
