"""Persistence layer - engine configuration, schema bootstrap and cascades."""

from workforge.persistence.cascade import CascadeResult, cascade_delete_dependents
from workforge.persistence.config import DatabaseConfig, create_db_engine
from workforge.persistence.schema import initialize_schema

__all__ = [
    "CascadeResult",
    "DatabaseConfig",
    "cascade_delete_dependents",
    "create_db_engine",
    "initialize_schema",
]
