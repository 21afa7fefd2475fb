"""Bootstrap tables for every registered entity.

Used for local SQLite databases and tests. Foreign keys are plain integer
columns without constraints: dependent rows are removed by the cascade
resolver, not by the database.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import text
from sqlalchemy.engine import Engine

from workforge.core.types import get_storage_type
from workforge.persistence.sequences import SEQUENCES_TABLE_SQL

if TYPE_CHECKING:
    from workforge.metadata.loader import EntityMetadata, FieldDefinition
    from workforge.metadata.registry import MetadataRegistry

logger = logging.getLogger(__name__)

AUDIT_TABLE = "audit_logs"

_TIMESTAMP_FIELDS = ("created_at", "updated_at")


def _literal(value: Any) -> str | None:
    """Render a metadata default as a SQL literal (None if not expressible)."""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    return None


def _primary_key_sql(metadata: EntityMetadata, dialect: str) -> str:
    if metadata.shared_primary_key:
        return f"{metadata.primary_key} INTEGER PRIMARY KEY"
    if dialect == "postgresql":
        return f"{metadata.primary_key} INTEGER GENERATED BY DEFAULT AS IDENTITY PRIMARY KEY"
    return f"{metadata.primary_key} INTEGER PRIMARY KEY AUTOINCREMENT"


def _column_sql(metadata: EntityMetadata, definition: FieldDefinition, dialect: str) -> str:
    parts = [definition.name, get_storage_type(definition.type, dialect)]
    if definition.name in metadata.required_fields:
        parts.append("NOT NULL")
    if definition.name == metadata.identity_field and metadata.identity_field_unique:
        parts.append("UNIQUE")
    if definition.name in _TIMESTAMP_FIELDS:
        parts.append("DEFAULT CURRENT_TIMESTAMP")
    else:
        default = _literal(definition.default)
        if default is not None:
            parts.append(f"DEFAULT {default}")
    return " ".join(parts)


def entity_table_sql(metadata: EntityMetadata, dialect: str = "sqlite") -> str:
    """CREATE TABLE statement for one entity."""
    columns = [_primary_key_sql(metadata, dialect)]
    for name, definition in metadata.fields.items():
        if name == metadata.primary_key:
            continue
        columns.append(_column_sql(metadata, definition, dialect))
    body = ",\n    ".join(columns)
    return f"CREATE TABLE IF NOT EXISTS {metadata.table_name} (\n    {body}\n)"


def audit_table_sql(dialect: str = "sqlite") -> str:
    json_type = "JSONB" if dialect == "postgresql" else "TEXT"
    pk = (
        "id INTEGER GENERATED BY DEFAULT AS IDENTITY PRIMARY KEY"
        if dialect == "postgresql"
        else "id INTEGER PRIMARY KEY AUTOINCREMENT"
    )
    return f"""
        CREATE TABLE IF NOT EXISTS {AUDIT_TABLE} (
            {pk},
            user_id INTEGER,
            action TEXT NOT NULL,
            resource_type TEXT,
            resource_id INTEGER,
            old_values {json_type},
            new_values {json_type},
            ip_address TEXT,
            user_agent TEXT,
            result TEXT NOT NULL DEFAULT 'success',
            error_message TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """


def initialize_schema(engine: Engine, registry: MetadataRegistry) -> list[str]:
    """Create missing entity, audit and sequence tables.

    Returns:
        Names of the tables ensured, in creation order.
    """
    dialect = engine.dialect.name
    tables: list[str] = []
    with engine.begin() as conn:
        for metadata in registry:
            conn.execute(text(entity_table_sql(metadata, dialect)))
            tables.append(metadata.table_name)
        conn.execute(text(audit_table_sql(dialect)))
        conn.execute(text(
            f"CREATE INDEX IF NOT EXISTS idx_{AUDIT_TABLE}_resource "
            f"ON {AUDIT_TABLE}(resource_type, resource_id)"
        ))
        tables.append(AUDIT_TABLE)
        conn.execute(text(SEQUENCES_TABLE_SQL))
        tables.append("_sequences")
    logger.info("Schema initialized: %d tables", len(tables))
    return tables
