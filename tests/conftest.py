"""Shared fixtures: an in-memory database standing in for PostgreSQL.

``FakeDatabase`` implements both ``DatabaseClient`` (row access) and
``CatalogReader`` (catalog reads), so writer, restore, and engine tests run
without a server.
"""

import copy
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest

from db_snapshot.errors import SchemaIntrospectionError
from db_snapshot.schema.models import ColumnSchema, ConstraintSchema, ForeignKeyRef


class FakeDatabase:
    """In-memory tables with optional failure injection.

    Args:
        tables: Mapping of table name to row dicts.
        foreign_keys: FK edges reported by ``foreign_keys()``.
        sequences: Mapping of sequence name to ``last_value``.
    """

    def __init__(
        self,
        tables: dict[str, list[dict]] | None = None,
        foreign_keys: list[ForeignKeyRef] | None = None,
        sequences: dict[str, int] | None = None,
    ) -> None:
        self.tables: dict[str, list[dict]] = copy.deepcopy(tables or {})
        self.fks: list[ForeignKeyRef] = list(foreign_keys or [])
        self.sequences: dict[str, int] = dict(sequences or {})

        # Failure injection
        self.fail_fetch: set[str] = set()
        self.fail_replace: dict[str, int] = {}  # table -> remaining failures
        self.fail_catalog = False
        self.fail_setval = False

        # Call logs
        self.replace_calls: list[str] = []
        self.executed: list[tuple[str, dict | None]] = []
        self.closed = False

    # -- CatalogReader ---------------------------------------------------

    async def list_tables(self) -> list[str]:
        if self.fail_catalog:
            raise SchemaIntrospectionError("Catalog query failed: permission denied")
        return sorted(self.tables)

    async def describe_table(self, name: str) -> list[ColumnSchema]:
        rows = self.tables.get(name)
        if rows is None:
            raise SchemaIntrospectionError(f"Table '{name}' has no columns or does not exist")
        columns: list[str] = []
        for row in rows:
            for col in row:
                if col not in columns:
                    columns.append(col)
        return [ColumnSchema(name=c, data_type="text") for c in columns or ["id"]]

    async def describe_constraints(self, name: str) -> list[ConstraintSchema]:
        return [
            ConstraintSchema(
                name=f"{fk.table}_{fk.column}_fkey",
                constraint_type="FOREIGN KEY",
                columns=[fk.column],
                references_table=fk.ref_table,
                references_columns=[fk.ref_column],
            )
            for fk in self.fks
            if fk.table == name
        ]

    async def foreign_keys(self) -> list[ForeignKeyRef]:
        if self.fail_catalog:
            raise SchemaIntrospectionError("Catalog query failed: permission denied")
        return list(self.fks)

    async def row_count(self, name: str) -> int:
        return len(self.tables[name])

    async def list_sequences(self) -> list[str]:
        return sorted(self.sequences)

    # -- DatabaseClient --------------------------------------------------

    async def fetch_rows(self, table: str) -> list[dict]:
        if table in self.fail_fetch:
            raise RuntimeError(f'could not obtain lock on relation "{table}"')
        return copy.deepcopy(self.tables[table])

    async def replace_rows(
        self,
        table: str,
        rows: list[dict],
        column_types: dict[str, str] | None = None,
    ) -> int:
        self.replace_calls.append(table)
        if self.fail_replace.get(table, 0) > 0:
            self.fail_replace[table] -= 1
            raise RuntimeError(f'insert or update on table "{table}" violates foreign key constraint')
        self.tables[table] = copy.deepcopy(rows)
        return len(rows)

    async def fetch(self, sql: str, params: dict | None = None) -> list[dict]:
        if sql.startswith("SELECT last_value FROM "):
            name = sql[len("SELECT last_value FROM "):].strip('"')
            return [{"last_value": self.sequences[name]}]
        return [{"cnt": 0}]

    async def execute(self, sql: str, params: dict | None = None) -> None:
        self.executed.append((sql, params))
        if "setval" in sql and self.fail_setval:
            raise RuntimeError("permission denied for sequence")

    async def close(self) -> None:
        self.closed = True


# ============================================================================
# Fixtures
# ============================================================================


USERS = [
    {"id": 1, "email": "alice@example.com", "created_at": datetime(2026, 1, 2, 9, 30, tzinfo=timezone.utc)},
    {"id": 2, "email": "bob@example.com", "created_at": datetime(2026, 1, 3, 14, 0, tzinfo=timezone.utc)},
    {"id": 3, "email": "carol@example.com", "created_at": None},
]

ORDERS = [
    {"id": 10, "user_id": 1, "total": Decimal("19.99"), "meta": {"gift": True}},
    {"id": 11, "user_id": 2, "total": Decimal("5.00"), "meta": None},
]

ORDERS_FK = ForeignKeyRef(table="orders", column="user_id", ref_table="users", ref_column="id")


@pytest.fixture
def make_db():
    """Factory for ``FakeDatabase`` instances."""

    def _make(**kwargs) -> FakeDatabase:
        return FakeDatabase(**kwargs)

    return _make


@pytest.fixture
def shop_db() -> FakeDatabase:
    """``users`` (no FK) and ``orders`` (FK -> users), plus one sequence."""
    return FakeDatabase(
        tables={"users": USERS, "orders": ORDERS},
        foreign_keys=[ORDERS_FK],
        sequences={"users_id_seq": 3},
    )


@pytest.fixture
def snapshot_dir(tmp_path: Path) -> Path:
    return tmp_path / "backups"
