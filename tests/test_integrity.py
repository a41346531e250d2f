"""Tests for the integrity validator and its report models."""

from unittest.mock import AsyncMock

import pytest

from db_snapshot.schema.integrity import IntegrityValidator
from db_snapshot.schema.models import (
    CheckResult,
    ColumnRef,
    ForeignKeyRef,
    IntegrityReport,
    IntegrityRules,
)


def _make_mock_adapter(counts: list | None = None) -> AsyncMock:
    """AsyncMock adapter whose ``fetch`` returns ``[{"cnt": n}]`` per call.

    An Exception instance in ``counts`` is raised for that call instead.
    """
    adapter = AsyncMock()
    side_effects = []
    for count in counts or []:
        side_effects.append(count if isinstance(count, Exception) else [{"cnt": count}])
    adapter.fetch = AsyncMock(side_effect=side_effects)
    return adapter


class TestIntegrityRules:
    def test_parses_strings(self) -> None:
        rules = IntegrityRules(
            required_columns=["users.email"],
            unique_columns=["users.email"],
            foreign_keys=["orders.user_id -> users.id"],
        )
        assert rules.required_columns == [ColumnRef(table="users", column="email")]
        assert rules.foreign_keys == [
            ForeignKeyRef(table="orders", column="user_id", ref_table="users", ref_column="id")
        ]

    def test_bad_column_ref(self) -> None:
        with pytest.raises(ValueError):
            IntegrityRules(required_columns=["email"])

    def test_bad_fk_rule(self) -> None:
        with pytest.raises(ValueError):
            IntegrityRules(foreign_keys=["orders.user_id => users.id"])


class TestValidate:
    @pytest.mark.asyncio
    async def test_all_checks_pass(self) -> None:
        adapter = _make_mock_adapter([0, 0, 0])
        rules = IntegrityRules(
            required_columns=["users.email"],
            unique_columns=["users.email"],
            foreign_keys=["orders.user_id -> users.id"],
        )
        report = await IntegrityValidator(adapter, rules=rules).validate()

        assert report.passed is True
        assert report.status == "passed"
        assert [r.check for r in report.results] == [
            "NOT NULL: users.email",
            "UNIQUE: users.email",
            "FK: orders.user_id -> users.id",
        ]

    @pytest.mark.asyncio
    async def test_each_check_reported_independently(self) -> None:
        adapter = _make_mock_adapter([2, 0, 5])
        rules = IntegrityRules(
            required_columns=["users.email"],
            unique_columns=["users.email"],
            foreign_keys=["orders.user_id -> users.id"],
        )
        report = await IntegrityValidator(adapter, rules=rules).validate()

        assert report.passed is False
        assert [(r.passed, r.issues) for r in report.results] == [(False, 2), (True, 0), (False, 5)]
        assert report.total_issues == 7
        assert report.passed_checks == 1

    @pytest.mark.asyncio
    async def test_failing_query_does_not_abort_other_checks(self) -> None:
        adapter = _make_mock_adapter([RuntimeError('column "email" does not exist'), 0])
        rules = IntegrityRules(required_columns=["users.email", "orders.user_id"])
        report = await IntegrityValidator(adapter, rules=rules).validate()

        assert len(report.results) == 2
        assert report.results[0].passed is False
        assert "does not exist" in report.results[0].error
        assert report.results[1].passed is True

    @pytest.mark.asyncio
    async def test_introspected_foreign_keys_used_when_none_configured(self) -> None:
        adapter = _make_mock_adapter([1])
        introspector = AsyncMock()
        introspector.foreign_keys.return_value = [
            ForeignKeyRef(table="orders", column="user_id", ref_table="users", ref_column="id")
        ]
        report = await IntegrityValidator(adapter, introspector).validate()

        assert [r.check for r in report.results] == ["FK: orders.user_id -> users.id"]
        assert report.results[0].issues == 1

    @pytest.mark.asyncio
    async def test_no_rules_no_introspector(self) -> None:
        adapter = _make_mock_adapter()
        report = await IntegrityValidator(adapter).validate()
        assert report.results == []
        assert report.passed is True

    @pytest.mark.asyncio
    async def test_queries_are_read_only_and_quoted(self) -> None:
        adapter = _make_mock_adapter([0, 0, 0])
        rules = IntegrityRules(
            required_columns=["users.email"],
            unique_columns=["users.email"],
            foreign_keys=["orders.user_id -> users.id"],
        )
        await IntegrityValidator(adapter, rules=rules).validate()

        statements = [call.args[0] for call in adapter.fetch.await_args_list]
        assert all(sql.startswith("SELECT COUNT(*) AS cnt") for sql in statements)
        assert 'FROM "users" WHERE "email" IS NULL' in statements[0]
        assert "LOWER(CAST(\"email\" AS TEXT))" in statements[1]
        assert 'LEFT JOIN "users" r' in statements[2]
        adapter.execute.assert_not_called()


class TestIntegrityReport:
    def test_to_dict(self) -> None:
        report = IntegrityReport(
            results=[
                CheckResult(check="NOT NULL: users.email", passed=True),
                CheckResult(check="FK: orders.user_id -> users.id", passed=False, issues=3),
                CheckResult(check="UNIQUE: users.email", passed=False, error="timeout"),
            ]
        )
        data = report.to_dict()
        assert data["status"] == "failed"
        assert data["totalChecks"] == 3
        assert data["passedChecks"] == 1
        assert data["totalIssues"] == 3
        assert data["results"][1] == {
            "check": "FK: orders.user_id -> users.id",
            "passed": False,
            "issues": 3,
        }
        assert data["results"][2]["error"] == "timeout"
        assert "timestamp" in data

    def test_format_report_lists_failures(self) -> None:
        report = IntegrityReport(
            results=[
                CheckResult(check="NOT NULL: users.email", passed=True),
                CheckResult(check="UNIQUE: users.email", passed=False, issues=2),
            ]
        )
        text = report.format_report()
        assert text.startswith("Integrity failed: 1/2 checks passed")
        assert "UNIQUE: users.email: 2 issue(s)" in text
        assert "NOT NULL" not in text
