"""Create checkout_links, order_attributions and app_secrets tables.

Revision ID: 3c9e1f0a7b21
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = "3c9e1f0a7b21"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "checkout_links",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("token", sa.String(2048), nullable=False),
        sa.Column("token_format", sa.String(16), nullable=True),
        sa.Column("url", sa.Text, nullable=False),
        sa.Column("selection", sa.Text, nullable=False),
        sa.Column("expiry_hours", sa.Integer, nullable=False, server_default="0"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("visits", sa.Integer, nullable=False, server_default="0"),
        sa.Column("conversions", sa.Integer, nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
    )
    op.create_index("ix_checkout_links_token", "checkout_links", ["token"], unique=True)
    op.create_index("ix_checkout_links_status", "checkout_links", ["status"])
    op.create_index("ix_checkout_links_created_at", "checkout_links", ["created_at"])
    op.create_index("ix_checkout_links_name", "checkout_links", ["name"])

    op.create_table(
        "order_attributions",
        sa.Column("order_id", sa.String(100), primary_key=True),
        sa.Column("link_id", sa.Integer, nullable=False, index=True),
        sa.Column("conversion_counted", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("last_event", sa.String(50), nullable=True),
        sa.Column("attributed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("counted_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "app_secrets",
        sa.Column("name", sa.String(64), primary_key=True),
        sa.Column("value", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("app_secrets")
    op.drop_table("order_attributions")
    op.drop_index("ix_checkout_links_name", table_name="checkout_links")
    op.drop_index("ix_checkout_links_created_at", table_name="checkout_links")
    op.drop_index("ix_checkout_links_status", table_name="checkout_links")
    op.drop_index("ix_checkout_links_token", table_name="checkout_links")
    op.drop_table("checkout_links")
