"""Tests for the dependent-row cascade."""

from sqlalchemy import text

from workforge.metadata.loader import DependentDefinition
from workforge.persistence.cascade import cascade_delete_dependents, dependent_delete_sql


def insert_audit(conn, resource_type, resource_id):
    conn.execute(
        text(
            "INSERT INTO audit_logs (action, resource_type, resource_id) "
            "VALUES ('test', :resource_type, :resource_id)"
        ),
        {"resource_type": resource_type, "resource_id": resource_id},
    )


class TestDependentDeleteSql:
    def test_plain_dependent(self):
        dependent = DependentDefinition(table="notifications", foreign_key="user_id")
        assert dependent_delete_sql(dependent) == (
            "DELETE FROM notifications WHERE user_id = :p1"
        )

    def test_polymorphic_dependent(self):
        dependent = DependentDefinition(
            table="audit_logs",
            foreign_key="resource_id",
            polymorphic_column="resource_type",
            polymorphic_value="users",
        )
        assert dependent_delete_sql(dependent) == (
            "DELETE FROM audit_logs WHERE resource_id = :p1 AND resource_type = :p2"
        )


class TestCascadeDeleteDependents:
    def test_polymorphic_scope(self, engine, registry, row_count):
        metadata = registry.get_metadata("customer")
        with engine.begin() as conn:
            insert_audit(conn, "customers", 3)
            insert_audit(conn, "customers", 3)
            insert_audit(conn, "users", 3)
            insert_audit(conn, "customers", 4)
            result = cascade_delete_dependents(conn, metadata, 3)

        assert result.total_deleted == 2
        assert result.per_table == {"audit_logs": 2}
        assert row_count("audit_logs") == 2

    def test_is_idempotent(self, engine, registry):
        metadata = registry.get_metadata("user")
        with engine.begin() as conn:
            conn.execute(text(
                "INSERT INTO notifications (user_id, title, type) VALUES (8, 'Hi', 'system')"
            ))
            conn.execute(text("INSERT INTO user_preferences (id, theme) VALUES (8, 'dark')"))
            first = cascade_delete_dependents(conn, metadata, 8)
            second = cascade_delete_dependents(conn, metadata, 8)

        assert first.total_deleted == 2
        assert first.per_table["notifications"] == 1
        assert first.per_table["user_preferences"] == 1
        assert second.total_deleted == 0
        assert set(second.per_table) == {
            "notifications", "saved_views", "user_preferences", "audit_logs",
        }

    def test_rolls_back_with_the_transaction(self, engine, registry, row_count):
        metadata = registry.get_metadata("customer")
        with engine.begin() as conn:
            insert_audit(conn, "customers", 1)

        with engine.connect() as conn:
            transaction = conn.begin()
            cascade_delete_dependents(conn, metadata, 1)
            transaction.rollback()

        assert row_count("audit_logs") == 1

    def test_entity_without_dependents(self, engine, registry):
        metadata = registry.get_metadata("notification")
        with engine.begin() as conn:
            result = cascade_delete_dependents(conn, metadata, 1)
        assert result.total_deleted == 0
        assert result.per_table == {}
