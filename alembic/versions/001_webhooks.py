"""Webhook events and daily active users.

Creates the webhooks table with the permanent fingerprint uniqueness
constraint, and the active_users snapshot table keyed by date.

Revision ID: 001_webhooks
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

revision: str = "001_webhooks"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "webhooks",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("media_url", sa.Text(), nullable=False),
        sa.Column("media_type", sa.String(32), nullable=False),
        sa.Column("space_name", sa.Text(), nullable=False),
        sa.Column("tweet_url", sa.Text(), nullable=False),
        sa.Column("ip", sa.String(64), nullable=False),
        sa.Column("city", sa.Text(), nullable=False),
        sa.Column("region", sa.Text(), nullable=False),
        sa.Column("country", sa.Text(), nullable=False),
        sa.Column("fingerprint", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("fingerprint", name="uq_webhooks_fingerprint"),
    )
    op.create_index("ix_webhooks_created_at", "webhooks", ["created_at"])
    op.create_index("ix_webhooks_user_id", "webhooks", ["user_id"])

    op.create_table(
        "active_users",
        sa.Column("date", sa.Date(), primary_key=True),
        sa.Column("user_count", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("active_users")
    op.drop_index("ix_webhooks_user_id", table_name="webhooks")
    op.drop_index("ix_webhooks_created_at", table_name="webhooks")
    op.drop_table("webhooks")
