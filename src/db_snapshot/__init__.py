"""db-snapshot: Point-in-time snapshots and safe restores for PostgreSQL.

Captures every table of a database into one self-describing, verified
artifact; restores from it with a safety snapshot taken first and
per-table failure isolation; applies retention; and validates data
integrity.

Usage:
    from db_snapshot import build_engine

    engine = await build_engine(profile_name="local")
    async with engine:
        created = await engine.create_snapshot()
        result = await engine.restore(created["filename"])
"""

__version__ = "0.1.0"

# Adapters
from db_snapshot.adapters.base import DatabaseClient
from db_snapshot.adapters.postgres import AsyncPostgresAdapter

# Config
from db_snapshot.config.loader import load_db_config
from db_snapshot.config.models import (
    DatabaseConfig,
    DatabaseProfile,
    RetentionPolicy,
    SnapshotSettings,
)

# Engine
from db_snapshot.engine import SnapshotEngine, format_bytes

# Errors
from db_snapshot.errors import (
    InvalidSnapshotNameError,
    OperationCancelledError,
    OperationInProgressError,
    PreconditionError,
    SafetySnapshotError,
    SchemaIntrospectionError,
    SnapshotCorruptError,
    SnapshotEngineError,
    SnapshotIntegrityError,
    SnapshotNotFoundError,
)

# Factory
from db_snapshot.factory import (
    ProfileNotFoundError,
    build_engine,
    connect_and_validate,
    get_adapter,
    resolve_url,
)

# Schema
from db_snapshot.schema.integrity import IntegrityValidator
from db_snapshot.schema.introspector import CatalogReader, SchemaIntrospector
from db_snapshot.schema.models import IntegrityReport, IntegrityRules, RestoreOrder
from db_snapshot.schema.resolver import resolve_restore_order

# Snapshots
from db_snapshot.snapshot.catalog import CatalogManager
from db_snapshot.snapshot.guard import CancellationToken, OperationGuard
from db_snapshot.snapshot.models import RestoreResult, Snapshot
from db_snapshot.snapshot.restore import RestoreExecutor
from db_snapshot.snapshot.writer import SnapshotWriter

__all__ = [
    # Adapters
    "DatabaseClient",
    "AsyncPostgresAdapter",
    # Config
    "load_db_config",
    "DatabaseProfile",
    "DatabaseConfig",
    "RetentionPolicy",
    "SnapshotSettings",
    # Engine
    "SnapshotEngine",
    "format_bytes",
    # Errors
    "SnapshotEngineError",
    "PreconditionError",
    "SchemaIntrospectionError",
    "InvalidSnapshotNameError",
    "SnapshotNotFoundError",
    "SnapshotCorruptError",
    "SafetySnapshotError",
    "SnapshotIntegrityError",
    "OperationInProgressError",
    "OperationCancelledError",
    # Factory
    "build_engine",
    "get_adapter",
    "connect_and_validate",
    "ProfileNotFoundError",
    "resolve_url",
    # Schema
    "CatalogReader",
    "SchemaIntrospector",
    "resolve_restore_order",
    "RestoreOrder",
    "IntegrityValidator",
    "IntegrityRules",
    "IntegrityReport",
    # Snapshots
    "SnapshotWriter",
    "CatalogManager",
    "RestoreExecutor",
    "OperationGuard",
    "CancellationToken",
    "Snapshot",
    "RestoreResult",
]
