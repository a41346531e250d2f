"""Pydantic models for schema introspection and integrity validation.

This module contains schema-domain models:
- Introspection models: ColumnSchema, ConstraintSchema, ForeignKeyRef
- Ordering: RestoreOrder
- Validation models: ColumnRef, IntegrityRules, CheckResult, IntegrityReport

Connection and snapshot configuration models (DatabaseProfile,
DatabaseConfig, RetentionPolicy) live in db_snapshot.config.models.
"""

import re
from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator

_FK_RULE_RE = re.compile(r"^\s*([^.\s]+)\.([^\s]+)\s*->\s*([^.\s]+)\.([^\s]+)\s*$")


# ============================================================================
# Schema Introspection Models
# ============================================================================


class ColumnSchema(BaseModel):
    """Schema for a database column.

    Example:
        >>> col = ColumnSchema(name="id", data_type="uuid")
        >>> col.is_nullable
        True
    """

    name: str
    data_type: str
    is_nullable: bool = True
    default: str | None = None


class ConstraintSchema(BaseModel):
    """Schema for a database constraint."""

    name: str
    constraint_type: str  # PRIMARY KEY, FOREIGN KEY, UNIQUE, CHECK
    columns: list[str] = Field(default_factory=list)
    references_table: str | None = None
    references_columns: list[str] | None = None
    on_delete: str | None = None


class ForeignKeyRef(BaseModel):
    """One foreign-key column edge: ``table.column`` references ``ref_table.ref_column``.

    Example:
        >>> fk = ForeignKeyRef(table="orders", column="user_id", ref_table="users", ref_column="id")
        >>> fk.describe()
        'orders.user_id -> users.id'
    """

    table: str
    column: str
    ref_table: str
    ref_column: str

    def describe(self) -> str:
        """Human-readable ``table.column -> ref_table.ref_column`` form."""
        return f"{self.table}.{self.column} -> {self.ref_table}.{self.ref_column}"


# ============================================================================
# Restore Ordering
# ============================================================================


class RestoreOrder(BaseModel):
    """Total table order for a restore, referenced tables first.

    ``deferred`` lists tables picked while breaking a dependency cycle; their
    restore may transiently violate a constraint and is retried once.
    """

    order: list[str] = Field(default_factory=list)
    deferred: list[str] = Field(default_factory=list)


# ============================================================================
# Integrity Validation Models
# ============================================================================


class ColumnRef(BaseModel):
    """A ``table.column`` reference used by integrity rules."""

    table: str
    column: str

    @classmethod
    def parse(cls, value: str) -> "ColumnRef":
        """Parse ``"table.column"``.

        Raises:
            ValueError: If the value is not of the form ``table.column``.
        """
        table, sep, column = value.strip().partition(".")
        if not sep or not table or not column:
            raise ValueError(f"Expected 'table.column', got '{value}'")
        return cls(table=table, column=column)

    def __str__(self) -> str:
        return f"{self.table}.{self.column}"


class IntegrityRules(BaseModel):
    """Which columns and relationships the integrity validator checks.

    Loaded from the ``[integrity]`` section of db.toml.  When
    ``foreign_keys`` is empty the validator checks every introspected
    foreign key instead.

    Example:
        >>> rules = IntegrityRules(foreign_keys=["orders.user_id -> users.id"])
        >>> rules.foreign_keys[0].ref_table
        'users'
    """

    required_columns: list[ColumnRef] = Field(default_factory=list)
    unique_columns: list[ColumnRef] = Field(default_factory=list)
    foreign_keys: list[ForeignKeyRef] = Field(default_factory=list)

    @field_validator("required_columns", "unique_columns", mode="before")
    @classmethod
    def _parse_column_refs(cls, value):
        return [ColumnRef.parse(v) if isinstance(v, str) else v for v in value]

    @field_validator("foreign_keys", mode="before")
    @classmethod
    def _parse_foreign_keys(cls, value):
        parsed = []
        for item in value:
            if isinstance(item, str):
                match = _FK_RULE_RE.match(item)
                if not match:
                    raise ValueError(
                        f"Expected 'table.column -> ref_table.ref_column', got '{item}'"
                    )
                table, column, ref_table, ref_column = match.groups()
                item = ForeignKeyRef(
                    table=table, column=column, ref_table=ref_table, ref_column=ref_column
                )
            parsed.append(item)
        return parsed


class CheckResult(BaseModel):
    """Outcome of one integrity check."""

    check: str
    passed: bool
    issues: int = 0
    error: str | None = None


class IntegrityReport(BaseModel):
    """Aggregate of independent integrity checks.

    Example:
        >>> report = IntegrityReport(results=[CheckResult(check="NOT NULL: users.email", passed=True)])
        >>> report.status
        'passed'
    """

    results: list[CheckResult] = Field(default_factory=list)
    checked_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def passed(self) -> bool:
        """True only if every check passed."""
        return all(r.passed for r in self.results)

    @property
    def status(self) -> str:
        return "passed" if self.passed else "failed"

    @property
    def total_issues(self) -> int:
        return sum(r.issues for r in self.results)

    @property
    def passed_checks(self) -> int:
        return sum(1 for r in self.results if r.passed)

    def to_dict(self) -> dict:
        """Operator-facing dict form."""
        return {
            "status": self.status,
            "totalChecks": len(self.results),
            "passedChecks": self.passed_checks,
            "totalIssues": self.total_issues,
            "results": [
                {"check": r.check, "passed": r.passed, "issues": r.issues, **({"error": r.error} if r.error else {})}
                for r in self.results
            ],
            "timestamp": self.checked_at.isoformat(),
        }

    def format_report(self) -> str:
        """Format the report as human-readable text."""
        lines = [f"Integrity {self.status}: {self.passed_checks}/{len(self.results)} checks passed"]
        for r in self.results:
            if not r.passed:
                detail = r.error or f"{r.issues} issue(s)"
                lines.append(f"  - {r.check}: {detail}")
        return "\n".join(lines)
