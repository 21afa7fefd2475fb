"""Integration tests against a live PostgreSQL database.

Skipped unless DATABASE_URL points at PostgreSQL. The database should be
disposable: every entity table is dropped and recreated.
"""

import os
import re

import pytest
from sqlalchemy import text

from workforge.errors import Conflict
from workforge.persistence.config import DatabaseConfig, create_db_engine
from workforge.persistence.schema import AUDIT_TABLE, initialize_schema
from workforge.security.rls import RLSContext
from workforge.services.entity_service import EntityService

DATABASE_URL = os.environ.get("DATABASE_URL", "")

pytestmark = pytest.mark.skipif(
    not DATABASE_URL.startswith("postgresql"),
    reason="DATABASE_URL does not point at PostgreSQL",
)


@pytest.fixture
def pg_engine(registry):
    engine = create_db_engine(DatabaseConfig(url=DATABASE_URL))
    tables = [m.table_name for m in registry] + [AUDIT_TABLE, "_sequences"]
    with engine.begin() as conn:
        for table in tables:
            conn.execute(text(f"DROP TABLE IF EXISTS {table}"))
    initialize_schema(engine, registry)
    yield engine
    engine.dispose()


@pytest.fixture
def pg_service(registry, pg_engine):
    return EntityService(registry, pg_engine)


class TestPostgreSQL:
    def test_jsonb_round_trip(self, pg_service):
        address = {"street": "1 Main", "tags": ["a", "b"], "unit": None}
        created = pg_service.create(
            "customer", {"email": "pg@example.com", "billing_address": address}
        )
        assert created["is_active"] is True
        assert pg_service.find_by_id("customer", created["id"])["billing_address"] == address

    def test_identifier_and_rls(self, pg_service):
        customer = pg_service.create("customer", {"email": "rls@example.com"})
        order = pg_service.create("work_order", {"customer_id": customer["id"]})
        assert re.fullmatch(r"WO-\d{4}-0001", order["work_order_number"])

        context = RLSContext("own_work_orders_only", user_id=customer["id"] + 1)
        assert pg_service.find_all("work_order", rls=context)["data"] == []

    def test_unique_violation(self, pg_service):
        pg_service.create("customer", {"email": "twice@example.com"})
        with pytest.raises(Conflict):
            pg_service.create("customer", {"email": "twice@example.com"})

    def test_batch_savepoints(self, pg_service):
        result = pg_service.batch(
            "customer",
            [
                {"operation": "create", "data": {"email": "b1@example.com"}},
                {"operation": "create", "data": {"email": "b1@example.com"}},
                {"operation": "create", "data": {"email": "b2@example.com"}},
            ],
            continue_on_error=True,
        )
        assert result["stats"] == {"created": 2, "updated": 0, "deleted": 0, "failed": 1}
