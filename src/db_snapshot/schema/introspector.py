"""PostgreSQL schema introspection via information_schema.

This module queries the live database catalog to extract:
- Base tables (minus excluded system tables)
- Columns, data types, nullability, defaults
- Constraints (primary key, foreign key, unique, check)
- Foreign-key edges for restore ordering and orphan checks
- Row counts and sequence names

Uses psycopg (v3) async connections.  Every query failure is raised as
``SchemaIntrospectionError`` -- an empty result is never substituted,
since that would make a snapshot look valid while omitting tables.
"""

from typing import Protocol

import psycopg
from psycopg import AsyncConnection, sql

from db_snapshot.errors import SchemaIntrospectionError
from db_snapshot.schema.models import ColumnSchema, ConstraintSchema, ForeignKeyRef


class CatalogReader(Protocol):
    """Read-only view of the live schema catalog used by the engine."""

    async def list_tables(self) -> list[str]: ...

    async def describe_table(self, name: str) -> list[ColumnSchema]: ...

    async def describe_constraints(self, name: str) -> list[ConstraintSchema]: ...

    async def foreign_keys(self) -> list[ForeignKeyRef]: ...

    async def row_count(self, name: str) -> int: ...

    async def list_sequences(self) -> list[str]: ...


class SchemaIntrospector:
    """Introspects a PostgreSQL database schema.

    Uses information_schema for catalog extraction.  Works with any
    PostgreSQL database (RDS, Supabase, local).

    Usage:
        async with SchemaIntrospector(database_url) as introspector:
            tables = await introspector.list_tables()
            columns = await introspector.describe_table("users")
            edges = await introspector.foreign_keys()
    """

    # Tables excluded from introspection by default (system tables)
    EXCLUDED_TABLES_DEFAULT = {
        "schema_migrations",
        "pg_stat_statements",
        "spatial_ref_sys",
    }

    def __init__(
        self,
        database_url: str,
        schema_name: str = "public",
        excluded_tables: set[str] | None = None,
        connect_timeout: int = 10,
    ):
        """Initialize with database connection URL.

        Args:
            database_url: PostgreSQL connection URL (libpq form).
            schema_name: PostgreSQL schema to introspect.
            excluded_tables: Table names to skip.  ``None`` uses
                ``EXCLUDED_TABLES_DEFAULT``.
            connect_timeout: Connection timeout in seconds.
        """
        self._database_url = database_url
        self._schema_name = schema_name
        self._excluded_tables = (
            set(self.EXCLUDED_TABLES_DEFAULT) if excluded_tables is None else set(excluded_tables)
        )
        self._connect_timeout = connect_timeout
        self._conn: AsyncConnection | None = None

    async def __aenter__(self) -> "SchemaIntrospector":
        """Open the async connection (autocommit, read-only use)."""
        try:
            self._conn = await psycopg.AsyncConnection.connect(
                self._database_url,
                connect_timeout=self._connect_timeout,
                autocommit=True,
            )
        except psycopg.Error as e:
            raise SchemaIntrospectionError(f"Could not connect to catalog: {e}") from e
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Close the connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def test_connection(self) -> bool:
        """Run ``SELECT 1`` to verify the connection is alive.

        Raises:
            RuntimeError: If the introspector is not connected.
            ConnectionError: If the query fails.
        """
        self._require_connection()
        try:
            async with self._conn.cursor() as cur:
                await cur.execute("SELECT 1")
                row = await cur.fetchone()
                return row is not None and row[0] == 1
        except psycopg.Error as e:
            raise ConnectionError(f"Connection test failed: {e}") from e

    # ------------------------------------------------------------------
    # CatalogReader operations
    # ------------------------------------------------------------------

    async def list_tables(self) -> list[str]:
        """Get all base table names in the schema, sorted, minus excluded."""
        query = """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = %s
              AND table_type = 'BASE TABLE'
            ORDER BY table_name
        """
        rows = await self._query(query, (self._schema_name,))
        return [row[0] for row in rows if row[0] not in self._excluded_tables]

    async def describe_table(self, name: str) -> list[ColumnSchema]:
        """Get columns for a table in ordinal order."""
        query = """
            SELECT
                column_name,
                data_type,
                is_nullable,
                column_default
            FROM information_schema.columns
            WHERE table_schema = %s
              AND table_name = %s
            ORDER BY ordinal_position
        """
        rows = await self._query(query, (self._schema_name, name))
        if not rows:
            raise SchemaIntrospectionError(f"Table '{name}' has no columns or does not exist")
        return [
            ColumnSchema(
                name=col_name,
                data_type=self._normalize_data_type(data_type),
                is_nullable=(is_nullable == "YES"),
                default=default,
            )
            for col_name, data_type, is_nullable, default in rows
        ]

    async def describe_constraints(self, name: str) -> list[ConstraintSchema]:
        """Get constraints for a table."""
        query = """
            SELECT
                tc.constraint_name,
                tc.constraint_type,
                kcu.column_name,
                ccu.table_name AS references_table,
                ccu.column_name AS references_column,
                rc.delete_rule
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
                ON tc.constraint_name = kcu.constraint_name
                AND tc.table_schema = kcu.table_schema
            LEFT JOIN information_schema.constraint_column_usage ccu
                ON tc.constraint_name = ccu.constraint_name
                AND tc.constraint_type = 'FOREIGN KEY'
            LEFT JOIN information_schema.referential_constraints rc
                ON tc.constraint_name = rc.constraint_name
            WHERE tc.table_schema = %s
              AND tc.table_name = %s
            ORDER BY tc.constraint_name, kcu.ordinal_position
        """
        rows = await self._query(query, (self._schema_name, name))

        constraints: dict[str, ConstraintSchema] = {}
        for cname, ctype, col_name, ref_table, ref_col, delete_rule in rows:
            if cname not in constraints:
                constraints[cname] = ConstraintSchema(
                    name=cname,
                    constraint_type=ctype,
                    references_table=ref_table if ctype == "FOREIGN KEY" else None,
                    references_columns=[] if ctype == "FOREIGN KEY" else None,
                    on_delete=delete_rule,
                )
            constraint = constraints[cname]
            if col_name not in constraint.columns:
                constraint.columns.append(col_name)
            if ref_col and constraint.references_columns is not None:
                if ref_col not in constraint.references_columns:
                    constraint.references_columns.append(ref_col)

        return list(constraints.values())

    async def foreign_keys(self) -> list[ForeignKeyRef]:
        """Get every single-column FK edge in the schema.

        Composite keys are paired column-by-column via ordinal position.
        """
        query = """
            SELECT
                kcu.table_name,
                kcu.column_name,
                ref.table_name AS ref_table,
                ref.column_name AS ref_column
            FROM information_schema.referential_constraints rc
            JOIN information_schema.key_column_usage kcu
                ON kcu.constraint_name = rc.constraint_name
                AND kcu.constraint_schema = rc.constraint_schema
            JOIN information_schema.key_column_usage ref
                ON ref.constraint_name = rc.unique_constraint_name
                AND ref.constraint_schema = rc.unique_constraint_schema
                AND ref.ordinal_position = kcu.position_in_unique_constraint
            WHERE rc.constraint_schema = %s
            ORDER BY kcu.table_name, kcu.column_name
        """
        rows = await self._query(query, (self._schema_name,))
        return [
            ForeignKeyRef(table=table, column=column, ref_table=ref_table, ref_column=ref_column)
            for table, column, ref_table, ref_column in rows
            if table not in self._excluded_tables and ref_table not in self._excluded_tables
        ]

    async def row_count(self, name: str) -> int:
        """Count rows in a table."""
        query = sql.SQL("SELECT COUNT(*) FROM {}").format(
            sql.Identifier(self._schema_name, name)
        )
        rows = await self._query(query)
        return int(rows[0][0])

    async def list_sequences(self) -> list[str]:
        """Get sequence names in the schema."""
        query = """
            SELECT sequence_name
            FROM information_schema.sequences
            WHERE sequence_schema = %s
            ORDER BY sequence_name
        """
        rows = await self._query(query, (self._schema_name,))
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_connection(self) -> None:
        if not self._conn:
            raise RuntimeError("Introspector not connected. Use 'async with' statement.")

    async def _query(self, query, params: tuple | None = None) -> list[tuple]:
        """Run a catalog query, surfacing driver errors."""
        self._require_connection()
        try:
            async with self._conn.cursor() as cur:
                await cur.execute(query, params)
                return await cur.fetchall()
        except psycopg.Error as e:
            raise SchemaIntrospectionError(f"Catalog query failed: {e}") from e

    def _normalize_data_type(self, data_type: str) -> str:
        """Normalize PostgreSQL data type names.

        Maps verbose information_schema types to standard names.
        """
        type_map = {
            "character varying": "varchar",
            "character": "char",
            "timestamp with time zone": "timestamptz",
            "timestamp without time zone": "timestamp",
            "time without time zone": "time",
            "integer": "int",
            "boolean": "bool",
        }
        return type_map.get(data_type.lower(), data_type.lower())
