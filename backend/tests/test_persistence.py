"""Tests for database configuration, schema bootstrap and error translation."""

from pathlib import Path

import pytest
from sqlalchemy import inspect, text
from sqlalchemy.exc import IntegrityError, OperationalError

from workforge.errors import BadRequest, Conflict
from workforge.persistence.config import DatabaseConfig, create_db_engine
from workforge.persistence.errors import translate_db_error
from workforge.persistence.schema import audit_table_sql, entity_table_sql
from workforge.services.entity_service import EntityService
from workforge.services.pagination import PageParams
from workforge.settings import WorkforgeSettings


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "DATABASE_URL", "WORKFORGE_DB_PATH", "WORKFORGE_SQL_ECHO", "WORKFORGE_METADATA_PATH",
        "WORKFORGE_DEFAULT_PAGE_SIZE", "WORKFORGE_MAX_PAGE_SIZE", "WORKFORGE_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestDatabaseConfig:
    def test_database_url_wins(self, clean_env):
        clean_env.setenv("DATABASE_URL", "postgresql://u:p@db/workforge")
        clean_env.setenv("WORKFORGE_DB_PATH", "/tmp/ignored.db")
        config = DatabaseConfig.from_env()
        assert config.url == "postgresql://u:p@db/workforge"
        assert config.is_postgresql
        assert config.sqlalchemy_url == "postgresql+psycopg://u:p@db/workforge"

    def test_db_path(self, clean_env):
        clean_env.setenv("WORKFORGE_DB_PATH", "/var/lib/wf.db")
        assert DatabaseConfig.from_env().url == "sqlite:////var/lib/wf.db"

    def test_base_path_default(self, clean_env):
        config = DatabaseConfig.from_env(Path("/srv/app"))
        assert config.url == "sqlite:////srv/app/data/workforge.db"
        assert config.is_sqlite
        assert not config.is_memory

    def test_fallback(self, clean_env):
        assert DatabaseConfig.from_env().url == "sqlite:///workforge.db"

    def test_echo(self, clean_env):
        clean_env.setenv("WORKFORGE_SQL_ECHO", "true")
        assert DatabaseConfig.from_env().echo is True

    @pytest.mark.parametrize("url", ["sqlite://", "sqlite:///", "sqlite:///:memory:"])
    def test_memory_urls(self, url):
        assert DatabaseConfig(url=url).is_memory

    def test_unsupported_scheme(self):
        with pytest.raises(ValueError):
            create_db_engine(DatabaseConfig(url="oracle://scott@db"))

    def test_file_database_creates_directory(self, tmp_path):
        db_file = tmp_path / "nested" / "dir" / "wf.db"
        engine = create_db_engine(DatabaseConfig(url=f"sqlite:///{db_file}"))
        try:
            with engine.begin() as conn:
                conn.execute(text("CREATE TABLE t (id INTEGER)"))
        finally:
            engine.dispose()
        assert db_file.exists()

    def test_sqlite_savepoints(self):
        engine = create_db_engine(DatabaseConfig(url="sqlite://"))
        try:
            with engine.connect() as conn:
                with conn.begin():
                    conn.execute(text("CREATE TABLE t (id INTEGER)"))
                    conn.execute(text("INSERT INTO t VALUES (1)"))
                    savepoint = conn.begin_nested()
                    conn.execute(text("INSERT INTO t VALUES (2)"))
                    savepoint.rollback()
                assert conn.execute(text("SELECT COUNT(*) FROM t")).scalar() == 1
        finally:
            engine.dispose()


class TestSettings:
    def test_defaults(self, clean_env):
        settings = WorkforgeSettings.from_env()
        assert settings.default_page_size == 50
        assert settings.max_page_size == 200
        assert settings.log_level == "INFO"

    def test_env_overrides(self, clean_env, tmp_path):
        clean_env.setenv("WORKFORGE_DEFAULT_PAGE_SIZE", "25")
        clean_env.setenv("WORKFORGE_MAX_PAGE_SIZE", "100")
        clean_env.setenv("WORKFORGE_METADATA_PATH", str(tmp_path))
        clean_env.setenv("WORKFORGE_LOG_LEVEL", "debug")
        settings = WorkforgeSettings.from_env()
        assert settings.metadata_path == tmp_path
        assert settings.log_level == "DEBUG"
        pagination = settings.pagination()
        assert pagination.default_limit == 25
        assert pagination.max_limit == 100

    @pytest.mark.parametrize("value", ["many", "0"])
    def test_invalid_page_size(self, clean_env, value):
        clean_env.setenv("WORKFORGE_MAX_PAGE_SIZE", value)
        with pytest.raises(ValueError):
            WorkforgeSettings.from_env()

    def test_service_from_settings(self, clean_env, registry):
        clean_env.setenv("DATABASE_URL", "sqlite://")
        clean_env.setenv("WORKFORGE_DEFAULT_PAGE_SIZE", "10")
        clean_env.setenv("WORKFORGE_MAX_PAGE_SIZE", "20")
        service = EntityService.from_settings(WorkforgeSettings.from_env(), registry=registry)
        try:
            assert service.registry is registry
            assert service.pagination.validate_params({}) == PageParams(page=1, limit=10)
            assert service.pagination.validate_params({"limit": 500}).limit == 20
        finally:
            service.engine.dispose()


class TestSchema:
    def test_entity_table_sqlite(self, registry):
        sql = entity_table_sql(registry.get_metadata("customer"))
        assert sql.startswith("CREATE TABLE IF NOT EXISTS customers")
        assert "id INTEGER PRIMARY KEY AUTOINCREMENT" in sql
        assert "email TEXT NOT NULL UNIQUE" in sql
        assert "is_active BOOLEAN DEFAULT TRUE" in sql
        assert "status TEXT DEFAULT 'pending'" in sql
        assert "created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP" in sql

    def test_entity_table_postgresql(self, registry):
        sql = entity_table_sql(registry.get_metadata("work_order"), "postgresql")
        assert "id INTEGER GENERATED BY DEFAULT AS IDENTITY PRIMARY KEY" in sql
        assert "work_order_number VARCHAR(255) UNIQUE" in sql
        assert "customer_id INTEGER NOT NULL" in sql
        assert "created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP" in sql

    def test_shared_primary_key(self, registry):
        sql = entity_table_sql(registry.get_metadata("preferences"))
        assert "id INTEGER PRIMARY KEY," in sql
        assert "AUTOINCREMENT" not in sql

    def test_audit_table(self):
        assert "JSONB" in audit_table_sql("postgresql")
        assert "JSONB" not in audit_table_sql("sqlite")

    def test_initialize_schema(self, engine, registry):
        tables = set(inspect(engine).get_table_names())
        assert {m.table_name for m in registry} <= tables
        assert {"audit_logs", "_sequences"} <= tables


class TestTranslateDbError:
    def test_unique_violation(self, registry):
        exc = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: customers.email"))
        with pytest.raises(Conflict) as exc_info:
            translate_db_error(exc, registry.get_metadata("customer"))
        assert exc_info.value.message == "A customer with this email already exists"
        assert exc_info.value.status == 409

    def test_not_null_violation(self):
        exc = IntegrityError("INSERT", {}, Exception("NOT NULL constraint failed: t.x"))
        with pytest.raises(BadRequest):
            translate_db_error(exc)

    def test_other_errors_re_raised(self):
        exc = OperationalError("SELECT", {}, Exception("database is locked"))
        with pytest.raises(OperationalError):
            translate_db_error(exc)

    def test_unknown_integrity_error_re_raised(self):
        exc = IntegrityError("INSERT", {}, Exception("CHECK constraint failed"))
        with pytest.raises(IntegrityError):
            translate_db_error(exc)
