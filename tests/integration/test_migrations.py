"""Test Alembic migrations: upgrade, downgrade, and structural checks.

Runs against a throwaway SQLite file; set MIGRATIONS_DATABASE_URL to run the
same cycle against PostgreSQL.
"""

import os

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
ALEMBIC_INI = os.path.join(ROOT, "alembic.ini")

EXPECTED_TABLES = {
    "organizations",
    "roles",
    "users",
    "user_branches",
    "workflow_definitions",
    "workflow_steps",
    "workflow_transitions",
    "workflow_instances",
    "workflow_history",
    "workflow_delegations",
    "purchase_orders",
    "notifications",
}


@pytest.fixture
def database_url(tmp_path):
    return os.environ.get("MIGRATIONS_DATABASE_URL", f"sqlite:///{tmp_path / 'migrations.db'}")


@pytest.fixture
def alembic_cfg(database_url):
    cfg = Config(ALEMBIC_INI)
    cfg.set_main_option("script_location", os.path.join(ROOT, "backoffice", "migrations"))
    cfg.set_main_option("sqlalchemy.url", database_url)
    cfg.attributes["configure_logger"] = False
    yield cfg
    command.downgrade(cfg, "base")


def _inspect(database_url, fn):
    engine = create_engine(database_url)
    try:
        return fn(inspect(engine))
    finally:
        engine.dispose()


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


@pytest.mark.integration
class TestMigrations:
    """Run upgrade → verify → downgrade → verify cycle."""

    def test_upgrade_creates_all_tables(self, alembic_cfg, database_url):
        command.upgrade(alembic_cfg, "head")

        tables = _inspect(database_url, lambda i: set(i.get_table_names()))
        missing = EXPECTED_TABLES - tables
        assert not missing, f"Tables not created by upgrade: {missing}"
        assert "alembic_version" in tables

    def test_upgrade_is_idempotent(self, alembic_cfg):
        command.upgrade(alembic_cfg, "head")
        command.upgrade(alembic_cfg, "head")  # should be a no-op

    def test_workflow_instances_columns(self, alembic_cfg, database_url):
        command.upgrade(alembic_cfg, "head")

        cols = _inspect(database_url, lambda i: {c["name"] for c in i.get_columns("workflow_instances")})
        assert cols == {
            "id", "org_id", "workflow_id", "entity_type", "entity_id", "current_step_id",
            "state", "context", "initiated_by", "deadline", "result", "started_at",
            "completed_at", "updated_at", "version",
        }

    def test_workflow_history_columns(self, alembic_cfg, database_url):
        command.upgrade(alembic_cfg, "head")

        cols = _inspect(database_url, lambda i: {c["name"] for c in i.get_columns("workflow_history")})
        assert cols == {"id", "instance_id", "step_id", "action", "user_id", "comment", "data", "created_at"}

    def test_definition_code_unique_per_org(self, alembic_cfg, database_url):
        command.upgrade(alembic_cfg, "head")

        uniques = _inspect(database_url, lambda i: i.get_unique_constraints("workflow_definitions"))
        assert [sorted(u["column_names"]) for u in uniques] == [["code", "org_id"]]

    def test_schema_matches_models(self, alembic_cfg, database_url):
        """Every model column exists in the migrated schema."""
        from backoffice.db.base import Base
        import backoffice.db.models  # noqa: F401

        command.upgrade(alembic_cfg, "head")

        def columns(inspector):
            return {t: {c["name"] for c in inspector.get_columns(t)} for t in EXPECTED_TABLES}

        migrated = _inspect(database_url, columns)
        for table in Base.metadata.sorted_tables:
            assert {c.name for c in table.columns} == migrated[table.name], table.name

    # -- Downgrade -----------------------------------------------------------

    def test_downgrade_removes_all_tables(self, alembic_cfg, database_url):
        command.upgrade(alembic_cfg, "head")
        command.downgrade(alembic_cfg, "base")

        tables = _inspect(database_url, lambda i: set(i.get_table_names()))
        assert not (EXPECTED_TABLES & tables)
