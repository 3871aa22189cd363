"""add ad tracking, outbox, whatsapp and zaincash tables

Revision ID: 20261001_0002
Revises: 20261001_0001
Create Date: 2026-10-01 10:30:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261001_0002"
down_revision: Union[str, None] = "20261001_0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not _table_exists(inspector, "ad_platform_settings"):
        op.create_table(
            "ad_platform_settings",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("platform_id", sa.String(length=36), nullable=False),
            sa.Column("facebook_pixel_id", sa.String(length=40), nullable=True),
            sa.Column("facebook_access_token_encrypted", sa.String(length=2048), nullable=True),
            sa.Column("tiktok_pixel_id", sa.String(length=40), nullable=True),
            sa.Column("tiktok_access_token_encrypted", sa.String(length=2048), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["platform_id"], ["platforms.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_ad_platform_settings_platform_id",
            "ad_platform_settings",
            ["platform_id"],
            unique=True,
        )

    if not _table_exists(inspector, "pixel_event_logs"):
        op.create_table(
            "pixel_event_logs",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("platform_id", sa.String(length=36), nullable=False),
            sa.Column("provider", sa.String(length=20), nullable=False),
            sa.Column("source", sa.String(length=10), nullable=False),
            sa.Column("event_type", sa.String(length=60), nullable=False),
            sa.Column("event_id", sa.String(length=120), nullable=True),
            sa.Column("external_id", sa.String(length=120), nullable=True),
            sa.Column("success", sa.Boolean(), nullable=False),
            sa.Column("error", sa.String(length=500), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(["platform_id"], ["platforms.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_pixel_event_logs_platform_id", "pixel_event_logs", ["platform_id"], unique=False)
        op.create_index(
            "ix_pixel_event_logs_platform_created_at",
            "pixel_event_logs",
            ["platform_id", "created_at"],
            unique=False,
        )
        op.create_index(
            "ix_pixel_event_logs_platform_provider_created_at",
            "pixel_event_logs",
            ["platform_id", "provider", "created_at"],
            unique=False,
        )

    if not _table_exists(inspector, "integration_outbox_events"):
        op.create_table(
            "integration_outbox_events",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("platform_id", sa.String(length=36), nullable=False),
            sa.Column("event_type", sa.String(length=120), nullable=False),
            sa.Column("target", sa.String(length=40), nullable=False),
            sa.Column("payload_json", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="5"),
            sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column("last_error", sa.String(length=255), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["platform_id"], ["platforms.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_integration_outbox_events_platform_id",
            "integration_outbox_events",
            ["platform_id"],
            unique=False,
        )
        op.create_index(
            "ix_integration_outbox_events_event_type",
            "integration_outbox_events",
            ["event_type"],
            unique=False,
        )
        op.create_index(
            "ix_integration_outbox_events_target",
            "integration_outbox_events",
            ["target"],
            unique=False,
        )
        op.create_index(
            "ix_integration_outbox_events_platform_status_next_attempt",
            "integration_outbox_events",
            ["platform_id", "status", "next_attempt_at"],
            unique=False,
        )

    if not _table_exists(inspector, "integration_delivery_attempts"):
        op.create_table(
            "integration_delivery_attempts",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("outbox_event_id", sa.String(length=36), nullable=False),
            sa.Column("attempt_number", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("response_code", sa.Integer(), nullable=True),
            sa.Column("response_body", sa.String(length=500), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(["outbox_event_id"], ["integration_outbox_events.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_integration_delivery_attempts_outbox_event_id",
            "integration_delivery_attempts",
            ["outbox_event_id"],
            unique=False,
        )

    if not _table_exists(inspector, "whatsapp_sessions"):
        op.create_table(
            "whatsapp_sessions",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("platform_id", sa.String(length=36), nullable=False),
            sa.Column("provider", sa.String(length=60), nullable=False),
            sa.Column("phone_number", sa.String(length=40), nullable=False),
            sa.Column("business_name", sa.String(length=255), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="disconnected"),
            sa.Column("qr_code", sa.Text(), nullable=True),
            sa.Column("external_session_id", sa.String(length=120), nullable=True),
            sa.Column("connected_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_error", sa.String(length=255), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["platform_id"], ["platforms.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("platform_id"),
        )

    if not _table_exists(inspector, "outbound_messages"):
        op.create_table(
            "outbound_messages",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("platform_id", sa.String(length=36), nullable=False),
            sa.Column("provider", sa.String(length=60), nullable=False),
            sa.Column("recipient", sa.String(length=120), nullable=False),
            sa.Column("content", sa.String(length=2000), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="queued"),
            sa.Column("external_message_id", sa.String(length=120), nullable=True),
            sa.Column("error_message", sa.String(length=255), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["platform_id"], ["platforms.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_outbound_messages_platform_id", "outbound_messages", ["platform_id"], unique=False)
        op.create_index("ix_outbound_messages_provider", "outbound_messages", ["provider"], unique=False)
        op.create_index(
            "ix_outbound_messages_platform_provider_created_at",
            "outbound_messages",
            ["platform_id", "provider", "created_at"],
            unique=False,
        )

    if not _table_exists(inspector, "zain_cash_payments"):
        op.create_table(
            "zain_cash_payments",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("platform_id", sa.String(length=36), nullable=False),
            sa.Column("order_id", sa.String(length=120), nullable=False),
            sa.Column("amount", sa.Integer(), nullable=False),
            sa.Column("service_type", sa.String(length=120), nullable=False),
            sa.Column("subscription_plan", sa.String(length=20), nullable=False),
            sa.Column("transaction_id", sa.String(length=120), nullable=True),
            sa.Column("payment_status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("payment_token", sa.Text(), nullable=True),
            sa.Column("customer_name", sa.String(length=120), nullable=False),
            sa.Column("customer_phone", sa.String(length=40), nullable=False),
            sa.Column("customer_email", sa.String(length=255), nullable=True),
            sa.Column("response_json", sa.JSON(), nullable=True),
            sa.Column("payment_url", sa.Text(), nullable=True),
            sa.Column("redirect_url", sa.Text(), nullable=True),
            sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["platform_id"], ["platforms.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("order_id"),
        )
        op.create_index("ix_zain_cash_payments_platform_id", "zain_cash_payments", ["platform_id"], unique=False)
        op.create_index(
            "ix_zain_cash_payments_transaction_id",
            "zain_cash_payments",
            ["transaction_id"],
            unique=False,
        )
        op.create_index(
            "ix_zain_cash_payments_platform_created_at",
            "zain_cash_payments",
            ["platform_id", "created_at"],
            unique=False,
        )


def downgrade() -> None:
    for table_name in (
        "zain_cash_payments",
        "outbound_messages",
        "whatsapp_sessions",
        "integration_delivery_attempts",
        "integration_outbox_events",
        "pixel_event_logs",
        "ad_platform_settings",
    ):
        op.drop_table(table_name)
