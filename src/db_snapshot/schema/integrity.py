"""Post-restore data integrity checks.

Runs three kinds of read-only checks against the live database:

- ``NOT NULL: table.column`` -- counts rows where a required column is null
- ``UNIQUE: table.column`` -- counts case-insensitive duplicate groups
- ``FK: table.column -> ref_table.ref_column`` -- counts orphaned references

Each check runs independently.  A check whose query fails is reported as
not passed with the error message; it never aborts the other checks.
"""

import logging

from db_snapshot.adapters.base import DatabaseClient
from db_snapshot.adapters.postgres import quote_identifier
from db_snapshot.schema.introspector import CatalogReader
from db_snapshot.schema.models import (
    CheckResult,
    ColumnRef,
    ForeignKeyRef,
    IntegrityReport,
    IntegrityRules,
)

logger = logging.getLogger(__name__)


class IntegrityValidator:
    """Validates live data against configured integrity rules.

    Args:
        adapter: Database client used for the read-only check queries.
        introspector: Optional catalog reader.  When the rules name no
            foreign keys, every introspected foreign key is checked.
        rules: Columns and relationships to check.

    Example:
        validator = IntegrityValidator(adapter, introspector, rules)
        report = await validator.validate()
        if not report.passed:
            print(report.format_report())
    """

    def __init__(
        self,
        adapter: DatabaseClient,
        introspector: CatalogReader | None = None,
        rules: IntegrityRules | None = None,
    ) -> None:
        self._adapter = adapter
        self._introspector = introspector
        self._rules = rules or IntegrityRules()

    async def validate(self) -> IntegrityReport:
        """Run every configured check and aggregate the results."""
        results: list[CheckResult] = []

        for ref in self._rules.required_columns:
            results.append(await self._check_not_null(ref))

        for ref in self._rules.unique_columns:
            results.append(await self._check_unique(ref))

        for fk in await self._foreign_keys_to_check():
            results.append(await self._check_foreign_key(fk))

        report = IntegrityReport(results=results)
        logger.info(
            "Integrity %s: %d/%d checks passed, %d issue(s)",
            report.status,
            report.passed_checks,
            len(results),
            report.total_issues,
        )
        return report

    async def _foreign_keys_to_check(self) -> list[ForeignKeyRef]:
        if self._rules.foreign_keys:
            return list(self._rules.foreign_keys)
        if self._introspector is None:
            return []
        # Self-references are checked too; ordering is irrelevant here
        return await self._introspector.foreign_keys()

    async def _check_not_null(self, ref: ColumnRef) -> CheckResult:
        check = f"NOT NULL: {ref}"
        sql = (
            f"SELECT COUNT(*) AS cnt FROM {quote_identifier(ref.table)} "
            f"WHERE {quote_identifier(ref.column)} IS NULL"
        )
        return await self._count_check(check, sql)

    async def _check_unique(self, ref: ColumnRef) -> CheckResult:
        check = f"UNIQUE: {ref}"
        column = quote_identifier(ref.column)
        sql = (
            "SELECT COUNT(*) AS cnt FROM ("
            f"SELECT LOWER(CAST({column} AS TEXT)) AS value "
            f"FROM {quote_identifier(ref.table)} "
            f"WHERE {column} IS NOT NULL "
            f"GROUP BY LOWER(CAST({column} AS TEXT)) "
            "HAVING COUNT(*) > 1"
            ") AS duplicates"
        )
        return await self._count_check(check, sql)

    async def _check_foreign_key(self, fk: ForeignKeyRef) -> CheckResult:
        check = f"FK: {fk.describe()}"
        column = quote_identifier(fk.column)
        ref_column = quote_identifier(fk.ref_column)
        sql = (
            f"SELECT COUNT(*) AS cnt FROM {quote_identifier(fk.table)} t "
            f"LEFT JOIN {quote_identifier(fk.ref_table)} r ON t.{column} = r.{ref_column} "
            f"WHERE t.{column} IS NOT NULL AND r.{ref_column} IS NULL"
        )
        return await self._count_check(check, sql)

    async def _count_check(self, check: str, sql: str) -> CheckResult:
        """Run a ``COUNT(*) AS cnt`` query; zero means the check passed."""
        try:
            rows = await self._adapter.fetch(sql)
            issues = int(rows[0]["cnt"]) if rows else 0
        except Exception as e:
            logger.warning("Integrity check '%s' could not run: %s", check, e)
            return CheckResult(check=check, passed=False, issues=0, error=str(e))
        return CheckResult(check=check, passed=issues == 0, issues=issues)
