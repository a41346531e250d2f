"""Pydantic models for database, snapshot, and retention configuration."""

import re

from pydantic import BaseModel, Field, field_validator

from db_snapshot.schema.models import IntegrityRules

_SCHEDULE_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


# ============================================================================
# Connection Profiles
# ============================================================================


class DatabaseProfile(BaseModel):
    """Database connection profile from db.toml."""

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    provider: str = "postgres"  # Defaults to postgres


# ============================================================================
# Snapshot Settings
# ============================================================================


class SnapshotSettings(BaseModel):
    """``[snapshots]`` section: where and how artifacts are written and restored."""

    directory: str = "backups"
    compress: bool = True
    max_parallel_tables: int = Field(default=1, ge=1)
    insert_batch_size: int = Field(default=500, ge=1)
    disable_triggers: bool = True
    restore_timeout_seconds: float | None = 600.0
    validate_after_restore: bool = False
    excluded_tables: list[str] | None = None
    schema_name: str = "public"


class RetentionPolicy(BaseModel):
    """``[retention]`` section.

    Example:
        >>> policy = RetentionPolicy(retention_days=7)
        >>> policy.schedule_time
        '03:00'
    """

    enabled: bool = True
    retention_days: int = Field(default=30, ge=0)
    schedule_time: str = "03:00"  # HH:MM, read by the external scheduler
    max_snapshots: int | None = Field(default=30, ge=1)

    @field_validator("schedule_time")
    @classmethod
    def _check_schedule_time(cls, value: str) -> str:
        if not _SCHEDULE_TIME_RE.match(value):
            raise ValueError(f"schedule_time must be HH:MM, got '{value}'")
        return value


# ============================================================================
# Connection Result
# ============================================================================


class ConnectionResult(BaseModel):
    """Result of connect_and_validate()."""

    success: bool
    profile_name: str | None = None
    table_count: int = 0
    error: str | None = None


# ============================================================================
# Top-level Config
# ============================================================================


class DatabaseConfig(BaseModel):
    """Complete configuration from db.toml."""

    profiles: dict[str, DatabaseProfile] = Field(default_factory=dict)
    snapshots: SnapshotSettings = Field(default_factory=SnapshotSettings)
    retention: RetentionPolicy = Field(default_factory=RetentionPolicy)
    integrity: IntegrityRules = Field(default_factory=IntegrityRules)
