"""JSON Lines codec for snapshot artifacts.

An artifact is a sequence of JSON records, one per line:

- line 1: the metadata record (``kind="metadata"``)
- then one record per table (``kind="table"``)

Files ending in ``.gz`` are gzip-compressed; anything else is plain text.

Row values that JSON cannot represent natively are tagged with ``__type``
so they decode back to the same Python type::

    {"__type": "datetime", "value": "2026-01-15T03:00:00+00:00"}
    {"__type": "decimal", "value": "12.50"}
    {"__type": "bytes", "value": "3q2+7w=="}

Dicts that already carry a ``__type`` key are wrapped as
``{"__type": "object", "value": {...}}`` so user JSON never collides with
a tag.
"""

import base64
import gzip
import json
from collections.abc import Iterator
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from pathlib import Path
from typing import IO, Any
from uuid import UUID

from pydantic import ValidationError

from db_snapshot.schema.models import ColumnSchema, ConstraintSchema, ForeignKeyRef
from db_snapshot.snapshot.models import (
    SCHEMA_VERSION,
    SequenceValue,
    Snapshot,
    TableDump,
    TableError,
)

TYPE_KEY = "__type"
COMPRESSED_SUFFIX = ".gz"


# ============================================================================
# Value Tagging
# ============================================================================


def encode_value(value: Any) -> Any:
    """Convert a driver value into a JSON-safe structure."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    # datetime before date: datetime is a date subclass
    if isinstance(value, datetime):
        return {TYPE_KEY: "datetime", "value": value.isoformat()}
    if isinstance(value, date):
        return {TYPE_KEY: "date", "value": value.isoformat()}
    if isinstance(value, time):
        return {TYPE_KEY: "time", "value": value.isoformat()}
    if isinstance(value, timedelta):
        return {TYPE_KEY: "timedelta", "value": value.total_seconds()}
    if isinstance(value, Decimal):
        return {TYPE_KEY: "decimal", "value": str(value)}
    if isinstance(value, UUID):
        return {TYPE_KEY: "uuid", "value": str(value)}
    if isinstance(value, (bytes, bytearray, memoryview)):
        return {TYPE_KEY: "bytes", "value": base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, dict):
        encoded = {str(k): encode_value(v) for k, v in value.items()}
        if TYPE_KEY in encoded:
            return {TYPE_KEY: "object", "value": encoded}
        return encoded
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    # Anything else (ranges, inet, ...) is kept as its text form
    return str(value)


def decode_value(value: Any) -> Any:
    """Inverse of ``encode_value``."""
    if isinstance(value, list):
        return [decode_value(v) for v in value]
    if not isinstance(value, dict):
        return value

    tag = value.get(TYPE_KEY)
    if tag is None:
        return {k: decode_value(v) for k, v in value.items()}

    raw = value.get("value")
    if tag == "datetime":
        return datetime.fromisoformat(raw)
    if tag == "date":
        return date.fromisoformat(raw)
    if tag == "time":
        return time.fromisoformat(raw)
    if tag == "timedelta":
        return timedelta(seconds=raw)
    if tag == "decimal":
        return Decimal(raw)
    if tag == "uuid":
        return UUID(raw)
    if tag == "bytes":
        return base64.b64decode(raw)
    if tag == "object":
        return {k: decode_value(v) for k, v in raw.items()}
    raise ValueError(f"Unknown value tag '{tag}'")


def encode_row(row: dict) -> dict:
    return {col: encode_value(val) for col, val in row.items()}


def decode_row(row: dict) -> dict:
    return {col: decode_value(val) for col, val in row.items()}


# ============================================================================
# Record Lines
# ============================================================================


def dumps_record(record: dict) -> str:
    """Serialize one record as a single line (no trailing newline)."""
    return json.dumps(record, ensure_ascii=False, separators=(",", ":"))


def metadata_record(snapshot: Snapshot, table_row_counts: dict[str, int]) -> dict:
    """Build the first-line metadata record for a snapshot."""
    return {
        "kind": "metadata",
        "version": snapshot.schema_version,
        "timestampISO": snapshot.created_at.isoformat(),
        "backupType": snapshot.backup_type,
        "tables": list(snapshot.table_names),
        "totalRows": snapshot.total_rows,
        "isComplete": snapshot.is_complete,
        "failedTables": [{"table": e.table, "message": e.message} for e in snapshot.failed_tables],
        "tableRowCounts": dict(table_row_counts),
        "sequences": [{"name": s.name, "lastValue": s.last_value} for s in snapshot.sequences],
        "foreignKeys": [
            {
                "table": fk.table,
                "column": fk.column,
                "refTable": fk.ref_table,
                "refColumn": fk.ref_column,
            }
            for fk in snapshot.foreign_keys
        ],
    }


def table_record(dump: TableDump) -> dict:
    """Build the record for one table, encoding its rows."""
    return {
        "kind": "table",
        "tableName": dump.table_name,
        "columns": [
            {"name": c.name, "type": c.data_type, "nullable": c.is_nullable, "default": c.default}
            for c in dump.columns
        ],
        "constraints": [c.model_dump() for c in dump.constraints],
        "rowCount": dump.row_count,
        "rows": [encode_row(r) for r in dump.rows],
    }


def snapshot_from_metadata(
    record: dict,
    filename: str,
    size_bytes: int = 0,
    tables: list[TableDump] | None = None,
) -> Snapshot:
    """Rebuild a Snapshot from its metadata record.

    Raises:
        ValueError: If a required field is missing or malformed.
    """
    try:
        return Snapshot(
            filename=filename,
            created_at=datetime.fromisoformat(record["timestampISO"]),
            schema_version=str(record.get("version", SCHEMA_VERSION)),
            backup_type=record.get("backupType", "complete"),
            tables=tables or [],
            table_names=list(record["tables"]),
            total_rows=int(record["totalRows"]),
            size_bytes=size_bytes,
            is_complete=bool(record.get("isComplete", False)),
            failed_tables=[TableError(**e) for e in record.get("failedTables", [])],
            sequences=[
                SequenceValue(name=s["name"], last_value=s["lastValue"])
                for s in record.get("sequences", [])
            ],
            foreign_keys=[
                ForeignKeyRef(
                    table=fk["table"],
                    column=fk["column"],
                    ref_table=fk["refTable"],
                    ref_column=fk["refColumn"],
                )
                for fk in record.get("foreignKeys", [])
            ],
        )
    except (KeyError, TypeError, ValidationError) as e:
        raise ValueError(f"Malformed metadata record: {e}") from e


def table_from_record(record: dict) -> TableDump:
    """Rebuild a TableDump (with decoded rows) from a table record.

    Raises:
        ValueError: If a required field is missing or malformed.
    """
    try:
        return TableDump(
            table_name=record["tableName"],
            columns=[
                ColumnSchema(
                    name=c["name"],
                    data_type=c.get("type", "text"),
                    is_nullable=c.get("nullable", True),
                    default=c.get("default"),
                )
                for c in record.get("columns", [])
            ],
            constraints=[ConstraintSchema(**c) for c in record.get("constraints", [])],
            rows=[decode_row(r) for r in record.get("rows", [])],
            row_count=int(record["rowCount"]),
        )
    except (KeyError, TypeError, ValidationError) as e:
        raise ValueError(f"Malformed table record: {e}") from e


def loads_record(line: str) -> dict:
    """Parse one record line.

    Raises:
        ValueError: If the line is not a JSON object with a ``kind`` field.
    """
    record = json.loads(line)
    if not isinstance(record, dict) or "kind" not in record:
        raise ValueError("Record is not an object with a 'kind' field")
    return record


# ============================================================================
# Artifact Files
# ============================================================================


def is_compressed(path: Path) -> bool:
    return path.name.endswith(COMPRESSED_SUFFIX)


def open_artifact(path: Path, mode: str = "rt", compressed: bool | None = None) -> IO[str]:
    """Open an artifact as text, transparently handling gzip.

    ``compressed=None`` infers compression from the file name.
    """
    if compressed is None:
        compressed = is_compressed(path)
    if compressed:
        return gzip.open(path, mode, encoding="utf-8")
    return open(path, mode.replace("t", ""), encoding="utf-8")


def read_metadata(path: Path) -> dict:
    """Read only the first record of an artifact.

    Raises:
        ValueError: If the first record is missing or not a metadata record.
        OSError: If the file cannot be read or decompressed.
    """
    with open_artifact(path) as f:
        first = f.readline()
    if not first.strip():
        raise ValueError("Artifact is empty")
    record = loads_record(first)
    if record["kind"] != "metadata":
        raise ValueError(f"First record is '{record['kind']}', expected 'metadata'")
    return record


def iter_records(path: Path) -> Iterator[dict]:
    """Yield every record of an artifact in file order."""
    with open_artifact(path) as f:
        for line_no, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                yield loads_record(line)
            except ValueError as e:
                raise ValueError(f"Line {line_no}: {e}") from e
