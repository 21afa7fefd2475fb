"""Tests for WorkForge CLI commands."""

import json

import pytest
import yaml
from click.testing import CliRunner
from sqlalchemy import create_engine, inspect

from workforge.cli.main import cli


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's environment out of the settings."""
    for name in (
        "DATABASE_URL", "WORKFORGE_DB_PATH", "WORKFORGE_METADATA_PATH",
        "WORKFORGE_DEFAULT_PAGE_SIZE", "WORKFORGE_MAX_PAGE_SIZE", "WORKFORGE_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def broken_metadata(tmp_path):
    entities = tmp_path / "entities"
    entities.mkdir()
    (entities / "broken.yaml").write_text(yaml.dump({
        "entity": "broken",
        "tableName": "broken",
        "sortableFields": ["nope"],
        "fields": {},
    }))
    return tmp_path


class TestMetadataValidate:
    def test_validate_succeeds(self, runner):
        result = runner.invoke(cli, ["metadata", "validate"])
        assert result.exit_code == 0
        assert "All metadata is valid" in result.output

    def test_validate_shows_entities(self, runner):
        result = runner.invoke(cli, ["metadata", "validate"])
        assert "work_order" in result.output
        assert "customer" in result.output
        assert "table: user_preferences" in result.output

    def test_validate_strict(self, runner):
        result = runner.invoke(cli, ["metadata", "validate", "--strict"])
        assert result.exit_code == 0

    def test_validate_reports_errors(self, runner, broken_metadata):
        result = runner.invoke(cli, ["metadata", "validate", "--path", str(broken_metadata)])
        assert result.exit_code == 1
        assert "Unknown field 'nope'" in result.output
        assert "1 error(s) found" in result.output

    def test_validate_warnings_fail_only_when_strict(self, runner, tmp_path):
        entities = tmp_path / "entities"
        entities.mkdir()
        (entities / "loose.yaml").write_text(yaml.dump({
            "entity": "loose", "tableName": "loose", "fields": {"notes": {"type": "text"}},
        }))

        relaxed = runner.invoke(cli, ["metadata", "validate", "--path", str(tmp_path)])
        assert relaxed.exit_code == 0
        assert "1 warning(s) found." in relaxed.output

        strict = runner.invoke(cli, ["metadata", "validate", "--strict", "--path", str(tmp_path)])
        assert strict.exit_code == 1


class TestMetadataList:
    def test_lists_entities(self, runner):
        result = runner.invoke(cli, ["metadata", "list"])
        assert result.exit_code == 0
        assert "work_order\twork_orders\tcomputed" in result.output
        assert "preferences\tuser_preferences\tsimple" in result.output

    def test_invalid_metadata_path(self, runner, monkeypatch, broken_metadata):
        monkeypatch.setenv("WORKFORGE_METADATA_PATH", str(broken_metadata))
        result = runner.invoke(cli, ["metadata", "list"])
        assert result.exit_code == 1


class TestMetadataShow:
    def test_show_entity(self, runner):
        result = runner.invoke(cli, ["metadata", "show", "customer"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["table_name"] == "customers"
        assert data["required_fields"] == ["email"]
        assert data["fields"]["email"]["access"]["read"] == "customer"

    def test_show_unknown_entity(self, runner):
        result = runner.invoke(cli, ["metadata", "show", "widget"])
        assert result.exit_code == 1


class TestDbInit:
    def test_creates_tables(self, runner, tmp_path, monkeypatch):
        db_path = tmp_path / "data" / "workforge.db"
        monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_path}")

        result = runner.invoke(cli, ["db", "init"])

        assert result.exit_code == 0, result.output
        assert "tables ready" in result.output
        engine = create_engine(f"sqlite:///{db_path}")
        try:
            tables = set(inspect(engine).get_table_names())
        finally:
            engine.dispose()
        assert {"customers", "work_orders", "audit_logs", "_sequences"} <= tables

    def test_is_repeatable(self, runner, tmp_path, monkeypatch):
        monkeypatch.setenv("WORKFORGE_DB_PATH", str(tmp_path / "repeat.db"))
        assert runner.invoke(cli, ["db", "init"]).exit_code == 0
        assert runner.invoke(cli, ["db", "init"]).exit_code == 0

    def test_unsupported_database(self, runner, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "mysql://localhost/workforge")
        result = runner.invoke(cli, ["db", "init"])
        assert result.exit_code == 1
