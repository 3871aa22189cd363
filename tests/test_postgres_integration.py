import os
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect, text

CORE_TABLES = {"users", "platforms", "platform_memberships", "refresh_tokens", "audit_logs"}
COMMERCE_TABLES = {
    "products",
    "orders",
    "order_items",
    "ad_platform_settings",
    "pixel_event_logs",
    "integration_outbox_events",
    "integration_delivery_attempts",
    "whatsapp_sessions",
    "outbound_messages",
    "zain_cash_payments",
}


def _test_pg_url() -> str | None:
    return os.getenv("TEST_POSTGRES_DATABASE_URL")


def _alembic_config(url: str) -> Config:
    project_root = Path(__file__).resolve().parents[1]
    config = Config(str(project_root / "alembic.ini"))
    config.set_main_option("script_location", str(project_root / "alembic"))
    config.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
    return config


@pytest.mark.integration
def test_postgres_connection_and_schema():
    url = _test_pg_url()
    if not url:
        pytest.skip("Set TEST_POSTGRES_DATABASE_URL to run Postgres integration tests.")

    engine = create_engine(url, pool_pre_ping=True)
    with engine.connect() as conn:
        assert conn.execute(text("SELECT 1")).scalar_one() == 1

    inspector = inspect(engine)
    assert CORE_TABLES | COMMERCE_TABLES <= set(inspector.get_table_names())

    audit_columns = {column["name"]: column for column in inspector.get_columns("audit_logs")}
    assert audit_columns["actor_user_id"]["nullable"] is True
    assert "request_id" in audit_columns
    token_columns = {column["name"] for column in inspector.get_columns("refresh_tokens")}
    assert {"revoked_reason", "user_agent"} <= token_columns


@pytest.mark.integration
def test_alembic_upgrade_downgrade_smoke():
    url = _test_pg_url()
    if not url:
        pytest.skip("Set TEST_POSTGRES_DATABASE_URL to run migration smoke tests.")
    if os.getenv("ALLOW_DESTRUCTIVE_MIGRATION_TESTS") != "1":
        pytest.skip("Set ALLOW_DESTRUCTIVE_MIGRATION_TESTS=1 for downgrade smoke test.")

    alembic_cfg = _alembic_config(url)
    engine = create_engine(url, pool_pre_ping=True)

    command.upgrade(alembic_cfg, "head")
    command.downgrade(alembic_cfg, "20261001_0001")
    remaining = set(inspect(engine).get_table_names())
    assert CORE_TABLES <= remaining
    assert not (COMMERCE_TABLES & remaining)

    command.upgrade(alembic_cfg, "head")
    assert COMMERCE_TABLES <= set(inspect(engine).get_table_names())
