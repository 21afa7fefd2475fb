"""Application-level cascade of dependent rows ahead of a parent delete."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import text
from sqlalchemy.engine import Connection

if TYPE_CHECKING:
    from workforge.metadata.loader import DependentDefinition, EntityMetadata

logger = logging.getLogger(__name__)


@dataclass
class CascadeResult:
    total_deleted: int = 0
    per_table: dict[str, int] = field(default_factory=dict)


def dependent_delete_sql(dependent: DependentDefinition) -> str:
    """DELETE statement for one dependent, bound on ``:p1`` (and ``:p2``)."""
    sql = f"DELETE FROM {dependent.table} WHERE {dependent.foreign_key} = :p1"
    if dependent.is_polymorphic:
        sql += f" AND {dependent.polymorphic_column} = :p2"
    return sql


def cascade_delete_dependents(
    conn: Connection,
    metadata: EntityMetadata,
    record_id: int,
) -> CascadeResult:
    """Delete every dependent row of one parent record.

    Runs on the caller's connection so the deletes commit or roll back with
    the parent delete. Repeating the call deletes nothing and does not fail.
    """
    result = CascadeResult()
    for dependent in metadata.dependents:
        params = {"p1": record_id}
        if dependent.is_polymorphic:
            params["p2"] = dependent.polymorphic_value
        deleted = conn.execute(text(dependent_delete_sql(dependent)), params).rowcount
        deleted = max(deleted or 0, 0)
        result.per_table[dependent.table] = result.per_table.get(dependent.table, 0) + deleted
        result.total_deleted += deleted

    if result.total_deleted:
        logger.debug(
            "Cascade for %s %s removed %d rows: %s",
            metadata.key, record_id, result.total_deleted, result.per_table,
        )
    return result
