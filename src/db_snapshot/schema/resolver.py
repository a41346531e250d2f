"""Restore ordering from the foreign-key graph.

``resolve_restore_order`` produces a total order of tables in which every
referenced table precedes the tables that reference it, so rows can be
re-inserted without violating constraints.  Cycles are broken
deterministically and the tables chosen to break them are reported as
``deferred``.

Usage:
    from db_snapshot.schema.resolver import resolve_restore_order

    result = resolve_restore_order(["orders", "users"], fks)
    result.order  # ["users", "orders"]
"""

import logging
from collections.abc import Iterable

from db_snapshot.schema.models import ForeignKeyRef, RestoreOrder

logger = logging.getLogger(__name__)


def build_dependency_graph(
    tables: Iterable[str], foreign_keys: Iterable[ForeignKeyRef]
) -> dict[str, set[str]]:
    """Map each table to the set of tables it references.

    Edges whose endpoints are not both in ``tables`` are dropped, as are
    self-references.
    """
    table_set = set(tables)
    dependencies: dict[str, set[str]] = {t: set() for t in table_set}
    for fk in foreign_keys:
        if fk.table == fk.ref_table:
            continue
        if fk.table in table_set and fk.ref_table in table_set:
            dependencies[fk.table].add(fk.ref_table)
    return dependencies


def resolve_restore_order(
    tables: Iterable[str], foreign_keys: Iterable[ForeignKeyRef]
) -> RestoreOrder:
    """Topologically sort tables, referenced before referencing.

    Kahn's algorithm: repeatedly emit the lexicographically smallest table
    with no unprocessed dependencies.  When every remaining table still has
    a dependency (a cycle), emit the one with the fewest remaining
    dependencies (ties broken lexicographically) and record it in
    ``deferred``.

    Args:
        tables: Table names to order.  Duplicates are ignored.
        foreign_keys: FK edges; only edges between ``tables`` are used.

    Returns:
        RestoreOrder with every table exactly once.

    Example:
        >>> fks = [
        ...     ForeignKeyRef(table="a", column="b_id", ref_table="b", ref_column="id"),
        ...     ForeignKeyRef(table="b", column="c_id", ref_table="c", ref_column="id"),
        ... ]
        >>> resolve_restore_order(["a", "b", "c"], fks).order
        ['c', 'b', 'a']
    """
    remaining = build_dependency_graph(tables, foreign_keys)

    # Reverse edges: table -> tables that reference it
    dependents: dict[str, set[str]] = {t: set() for t in remaining}
    for table, deps in remaining.items():
        for dep in deps:
            dependents[dep].add(table)

    order: list[str] = []
    deferred: list[str] = []

    while remaining:
        ready = sorted(t for t, deps in remaining.items() if not deps)
        if ready:
            pick = ready[0]
        else:
            pick = min(remaining, key=lambda t: (len(remaining[t]), t))
            deferred.append(pick)
            logger.debug(
                "FK cycle among %d tables; deferring '%s' (depends on %s)",
                len(remaining),
                pick,
                sorted(remaining[pick]),
            )

        order.append(pick)
        del remaining[pick]
        for dependent in dependents[pick]:
            if dependent in remaining:
                remaining[dependent].discard(pick)

    return RestoreOrder(order=order, deferred=deferred)
