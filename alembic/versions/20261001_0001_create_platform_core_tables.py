"""create platform core tables

Revision ID: 20261001_0001
Revises:
Create Date: 2026-10-01 10:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261001_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _index_exists(inspector: sa.Inspector, table_name: str, index_name: str) -> bool:
    return index_name in {index["name"] for index in inspector.get_indexes(table_name)}


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not _table_exists(inspector, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("username", sa.String(length=50), nullable=False),
            sa.Column("hashed_password", sa.String(length=255), nullable=False),
            sa.Column("full_name", sa.String(length=100), nullable=True),
            sa.Column("phone_number", sa.String(length=40), nullable=True),
            sa.Column("is_super_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
            sa.UniqueConstraint("username"),
        )
        op.create_index("ux_users_email_lower", "users", [sa.text("lower(email)")], unique=True)
        op.create_index("ux_users_username_lower", "users", [sa.text("lower(username)")], unique=True)

    if not _table_exists(inspector, "platforms"):
        op.create_table(
            "platforms",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("owner_user_id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("subdomain", sa.String(length=40), nullable=False),
            sa.Column("business_type", sa.String(length=80), nullable=True),
            sa.Column("owner_name", sa.String(length=120), nullable=False),
            sa.Column("phone_number", sa.String(length=40), nullable=False),
            sa.Column("whatsapp_number", sa.String(length=40), nullable=True),
            sa.Column("contact_email", sa.String(length=255), nullable=True),
            sa.Column("logo_url", sa.String(length=500), nullable=True),
            sa.Column("next_order_number", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("subscription_plan", sa.String(length=20), nullable=False, server_default="free"),
            sa.Column("subscription_status", sa.String(length=30), nullable=False, server_default="active"),
            sa.Column("subscription_start_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("subscription_end_date", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["owner_user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("owner_user_id"),
            sa.UniqueConstraint("subdomain"),
        )
        op.create_index("ix_platforms_subdomain", "platforms", ["subdomain"], unique=False)
        op.create_index(
            "ix_platforms_status_end_date",
            "platforms",
            ["subscription_status", "subscription_end_date"],
            unique=False,
        )

    if not _table_exists(inspector, "platform_memberships"):
        op.create_table(
            "platform_memberships",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("platform_id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="owner"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(["platform_id"], ["platforms.id"]),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ux_platform_memberships_platform_user",
            "platform_memberships",
            ["platform_id", "user_id"],
            unique=True,
        )
        op.create_index(
            "ix_platform_memberships_user_active_created_at",
            "platform_memberships",
            ["user_id", "is_active", "created_at"],
            unique=False,
        )

    if not _table_exists(inspector, "refresh_tokens"):
        op.create_table(
            "refresh_tokens",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("token_jti", sa.String(length=36), nullable=False),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("revoked_reason", sa.String(length=20), nullable=True),
            sa.Column("replaced_by_jti", sa.String(length=36), nullable=True),
            sa.Column("created_by_ip", sa.String(length=64), nullable=True),
            sa.Column("user_agent", sa.String(length=255), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("token_jti"),
        )
        op.create_index(
            "ix_refresh_tokens_user_revoked_expires",
            "refresh_tokens",
            ["user_id", "revoked_at", "expires_at"],
            unique=False,
        )

    if not _table_exists(inspector, "audit_logs"):
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("platform_id", sa.String(length=36), nullable=False),
            sa.Column("actor_user_id", sa.String(length=36), nullable=True),
            sa.Column("action", sa.String(length=100), nullable=False),
            sa.Column("target_type", sa.String(length=100), nullable=False),
            sa.Column("target_id", sa.String(length=36), nullable=True),
            sa.Column("metadata_json", sa.JSON(), nullable=True),
            sa.Column("request_id", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(["platform_id"], ["platforms.id"]),
            sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_audit_logs_platform_created_at", "audit_logs", ["platform_id", "created_at"], unique=False)
        op.create_index(
            "ix_audit_logs_platform_action_created_at",
            "audit_logs",
            ["platform_id", "action", "created_at"],
            unique=False,
        )
        op.create_index(
            "ix_audit_logs_platform_target",
            "audit_logs",
            ["platform_id", "target_type", "target_id"],
            unique=False,
        )

    if not _table_exists(inspector, "products"):
        op.create_table(
            "products",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("platform_id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("description", sa.String(length=2000), nullable=True),
            sa.Column("category", sa.String(length=100), nullable=True),
            sa.Column("sku", sa.String(length=100), nullable=True),
            sa.Column("image_url", sa.String(length=500), nullable=True),
            sa.Column("price", sa.Numeric(12, 2), nullable=False),
            sa.Column("currency", sa.String(length=3), nullable=False, server_default="IQD"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
            sa.ForeignKeyConstraint(["platform_id"], ["platforms.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_products_platform_created_at", "products", ["platform_id", "created_at"], unique=False)
        op.create_index(
            "ix_products_platform_active_category",
            "products",
            ["platform_id", "is_active", "category"],
            unique=False,
        )

    if not _table_exists(inspector, "orders"):
        op.create_table(
            "orders",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("platform_id", sa.String(length=36), nullable=False),
            sa.Column("order_number", sa.String(length=30), nullable=False),
            sa.Column("customer_name", sa.String(length=120), nullable=False),
            sa.Column("customer_phone", sa.String(length=40), nullable=False),
            sa.Column("customer_email", sa.String(length=255), nullable=True),
            sa.Column("customer_city", sa.String(length=120), nullable=True),
            sa.Column("customer_address", sa.String(length=500), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("source", sa.String(length=20), nullable=False, server_default="storefront"),
            sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
            sa.Column("currency", sa.String(length=3), nullable=False, server_default="IQD"),
            sa.Column("notes", sa.String(length=500), nullable=True),
            sa.Column("attribution_json", sa.JSON(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["platform_id"], ["platforms.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("platform_id", "order_number", name="uq_orders_platform_order_number"),
        )
        op.create_index("ix_orders_platform_created_at", "orders", ["platform_id", "created_at"], unique=False)
        op.create_index(
            "ix_orders_platform_status_created_at",
            "orders",
            ["platform_id", "status", "created_at"],
            unique=False,
        )

    if not _table_exists(inspector, "order_items"):
        op.create_table(
            "order_items",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("order_id", sa.String(length=36), nullable=False),
            sa.Column("product_id", sa.String(length=36), nullable=False),
            sa.Column("product_name", sa.String(length=255), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
            sa.Column("line_total", sa.Numeric(12, 2), nullable=False),
            sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    inspector = sa.inspect(bind)
    for table_name, column in (
        ("products", "platform_id"),
        ("orders", "platform_id"),
        ("order_items", "order_id"),
        ("order_items", "product_id"),
        ("audit_logs", "platform_id"),
        ("audit_logs", "actor_user_id"),
        ("audit_logs", "target_id"),
        ("refresh_tokens", "user_id"),
    ):
        index_name = f"ix_{table_name}_{column}"
        if not _index_exists(inspector, table_name, index_name):
            op.create_index(index_name, table_name, [column], unique=False)


def downgrade() -> None:
    for table_name in (
        "order_items",
        "orders",
        "products",
        "audit_logs",
        "refresh_tokens",
        "platform_memberships",
        "platforms",
        "users",
    ):
        op.drop_table(table_name)
