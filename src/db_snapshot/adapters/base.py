"""Database client protocol definition.

Defines the ``DatabaseClient`` Protocol that the snapshot engine uses for
row-level work.  Catalog reads go through ``CatalogReader``
(see ``db_snapshot.schema.introspector``) instead.

All methods are ``async def`` -- the library is async-first.

Usage:
    from db_snapshot.adapters.base import DatabaseClient

    async def copy_table(client: DatabaseClient) -> None:
        rows = await client.fetch_rows("users")
        await client.replace_rows("users", rows)
        await client.close()
"""

from typing import Any, Protocol


class DatabaseClient(Protocol):
    """Database client interface that all adapters must implement.

    All methods are async -- callers must ``await`` every operation.
    """

    async def fetch_rows(self, table: str) -> list[dict]:
        """Read every row of a table with native Python values.

        Values are returned as the driver produces them (``datetime``,
        ``Decimal``, ``UUID``, ``bytes``, ...) so they can be re-inserted
        without loss.

        Args:
            table: Table name (unquoted).

        Returns:
            List of dicts, one per row.  Empty list if the table is empty.

        Example:
            rows = await client.fetch_rows("users")
        """
        ...

    async def replace_rows(
        self,
        table: str,
        rows: list[dict],
        column_types: dict[str, str] | None = None,
    ) -> int:
        """Delete every row of a table, then insert ``rows``, as one unit.

        Either the table ends up holding exactly ``rows`` or the call raises
        and the table keeps its previous contents.

        Args:
            table: Table name (unquoted).
            rows: Row dicts to insert.
            column_types: Optional mapping of column name to declared type,
                used to serialize JSON columns.

        Returns:
            Number of rows inserted.

        Raises:
            Exception: On constraint violations, type mismatches, etc.

        Example:
            inserted = await client.replace_rows("users", [{"id": 1, "name": "Alice"}])
        """
        ...

    async def fetch(self, sql: str, params: dict | None = None) -> list[dict]:
        """Run a read-only SQL query and return its rows.

        Args:
            sql: SQL text with ``:name`` placeholders.
            params: Optional dict of named parameters.

        Returns:
            List of dicts, one per result row.

        Example:
            rows = await client.fetch("SELECT COUNT(*) AS cnt FROM users")
        """
        ...

    async def execute(self, sql: str, params: dict | None = None) -> None:
        """Execute a raw SQL statement that returns no rows.

        Args:
            sql: Raw SQL statement to execute.
            params: Optional dict of named parameters for the SQL statement.

        Example:
            await client.execute("SELECT setval('users_id_seq', :v, true)", {"v": 42})
        """
        ...

    async def close(self) -> None:
        """Close database connection and clean up resources."""
        ...
