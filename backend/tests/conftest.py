"""Shared fixtures: packaged metadata and an in-memory SQLite database."""

import pytest
from sqlalchemy import text

from workforge.audit.service import build_audit_context
from workforge.metadata.registry import MetadataRegistry
from workforge.persistence.config import DatabaseConfig, create_db_engine
from workforge.persistence.schema import initialize_schema
from workforge.services.entity_service import EntityService

SYSTEM_ROLES = [
    (1, "admin", 5),
    (2, "manager", 4),
    (3, "dispatcher", 3),
    (4, "technician", 2),
    (5, "customer", 1),
]


@pytest.fixture(scope="session")
def registry():
    """Registry loaded from the packaged entity YAML."""
    return MetadataRegistry.load()


@pytest.fixture
def engine(registry):
    """In-memory database with every entity table and the system roles."""
    engine = create_db_engine(DatabaseConfig(url="sqlite://"))
    initialize_schema(engine, registry)
    with engine.begin() as conn:
        for role_id, name, priority in SYSTEM_ROLES:
            conn.execute(
                text(
                    "INSERT INTO roles (id, name, priority, description) "
                    "VALUES (:id, :name, :priority, :description)"
                ),
                {"id": role_id, "name": name, "priority": priority,
                 "description": f"System {name} role"},
            )
    yield engine
    engine.dispose()


@pytest.fixture
def service(registry, engine):
    return EntityService(registry, engine)


@pytest.fixture
def audit_context():
    return build_audit_context(user_id=1, ip_address="127.0.0.1", user_agent="pytest")


@pytest.fixture
def row_count(engine):
    """Count rows in a table, optionally with a WHERE clause."""

    def _count(table, condition="", params=None):
        sql = f"SELECT COUNT(*) FROM {table}"
        if condition:
            sql += f" WHERE {condition}"
        with engine.connect() as conn:
            return conn.execute(text(sql), params or {}).scalar()

    return _count
