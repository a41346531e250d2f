"""Schema introspection, restore ordering, and integrity validation.

Provides live database introspection (``SchemaIntrospector``), FK-based
restore ordering (``resolve_restore_order``), and data integrity checks
(``IntegrityValidator``).

Usage:
    from db_snapshot.schema import SchemaIntrospector, resolve_restore_order
    from db_snapshot.schema import IntegrityValidator, IntegrityRules
"""

from db_snapshot.schema.integrity import IntegrityValidator
from db_snapshot.schema.introspector import CatalogReader, SchemaIntrospector
from db_snapshot.schema.models import (
    CheckResult,
    ColumnRef,
    ColumnSchema,
    ConstraintSchema,
    ForeignKeyRef,
    IntegrityReport,
    IntegrityRules,
    RestoreOrder,
)
from db_snapshot.schema.resolver import build_dependency_graph, resolve_restore_order

__all__ = [
    "CatalogReader",
    "SchemaIntrospector",
    "resolve_restore_order",
    "build_dependency_graph",
    "IntegrityValidator",
    "ColumnSchema",
    "ConstraintSchema",
    "ForeignKeyRef",
    "RestoreOrder",
    "ColumnRef",
    "IntegrityRules",
    "CheckResult",
    "IntegrityReport",
]
