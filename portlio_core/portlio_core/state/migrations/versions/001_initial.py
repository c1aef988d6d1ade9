"""Initial schema for the Portlio state store.

Creates identity tables (users, token_revocations), profile and billing
tables (user_profiles, user_subscriptions, user_events), portal content
tables (portals, content_blocks), and the append-only portal_analytics,
uploaded_files and email_logs tables.

Revision ID: 001
Revises: None
Create Date: 2026-09-01 00:00:00.000000+00:00

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_JSON = postgresql.JSONB().with_variant(sa.JSON(), "sqlite")


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=True), nullable=True)
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def upgrade() -> None:
    # ------------------------------------------------------------------
    # users
    # ------------------------------------------------------------------
    op.create_table(
        "users",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("password_hash", sa.String(256), nullable=False),
        sa.Column("user_metadata", _JSON, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
        _timestamp("last_login_at", nullable=True),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    # ------------------------------------------------------------------
    # token_revocations
    # ------------------------------------------------------------------
    op.create_table(
        "token_revocations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("jti", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=True),
        _timestamp("revoked_at"),
        sa.Column("reason", sa.Text(), nullable=True),
        _timestamp("expires_at", nullable=True),
        sa.UniqueConstraint("jti", name="uq_token_revocations_jti"),
    )

    # ------------------------------------------------------------------
    # user_profiles
    # ------------------------------------------------------------------
    op.create_table(
        "user_profiles",
        sa.Column(
            "user_id",
            sa.String(64),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("full_name", sa.String(256), nullable=True),
        sa.Column("plan_id", sa.String(32), nullable=False, server_default="free"),
        _timestamp("trial_ends_at", nullable=True),
        sa.Column("role", sa.String(64), nullable=True),
        sa.Column("company", sa.String(256), nullable=True),
        sa.Column("team_size", sa.String(32), nullable=True),
        sa.Column("goals", _JSON, nullable=False),
        sa.Column("onboarding_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("onboarding_completed_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )

    # ------------------------------------------------------------------
    # user_subscriptions
    # ------------------------------------------------------------------
    op.create_table(
        "user_subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "user_id",
            sa.String(64),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("plan_id", sa.String(32), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("stripe_customer_id", sa.String(128), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(128), nullable=True),
        _timestamp("current_period_start", nullable=True),
        _timestamp("current_period_end", nullable=True),
        sa.Column("cancel_at_period_end", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("canceled_at", nullable=True),
        _timestamp("last_payment_date", nullable=True),
        _timestamp("last_event_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("user_id", name="uq_user_subscriptions_user"),
    )
    op.create_index("ix_user_subscriptions_customer", "user_subscriptions", ["stripe_customer_id"])

    # ------------------------------------------------------------------
    # user_events
    # ------------------------------------------------------------------
    op.create_table(
        "user_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("event_data", _JSON, nullable=False),
        _timestamp("created_at"),
    )
    op.create_index("ix_user_events_user_type", "user_events", ["user_id", "event_type"])

    # ------------------------------------------------------------------
    # portals
    # ------------------------------------------------------------------
    op.create_table(
        "portals",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "user_id",
            sa.String(64),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(256), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("slug", sa.String(320), nullable=False),
        sa.Column("is_published", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("password_hash", sa.String(256), nullable=True),
        sa.Column("primary_color", sa.String(16), nullable=True),
        sa.Column("template_id", sa.String(32), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("slug", name="uq_portals_slug"),
    )
    op.create_index("ix_portals_user", "portals", ["user_id"])

    # ------------------------------------------------------------------
    # content_blocks
    # ------------------------------------------------------------------
    op.create_table(
        "content_blocks",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "portal_id",
            sa.Integer(),
            sa.ForeignKey("portals.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("block_type", sa.String(16), nullable=False),
        sa.Column("title", sa.String(256), nullable=False),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column("block_order", sa.Integer(), nullable=False),
        sa.Column("settings", _JSON, nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint(
            "block_type IN ('text', 'payment', 'upload', 'link')",
            name="ck_content_blocks_type",
        ),
    )
    op.create_index("ix_content_blocks_portal_order", "content_blocks", ["portal_id", "block_order"])

    # ------------------------------------------------------------------
    # portal_analytics
    # ------------------------------------------------------------------
    op.create_table(
        "portal_analytics",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("portal_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("event_type", sa.String(32), nullable=False),
        sa.Column("event_data", _JSON, nullable=False),
        sa.Column("visitor_ip", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("referrer", sa.Text(), nullable=True),
        _timestamp("created_at"),
        sa.CheckConstraint(
            "event_type IN ('view', 'file_upload', 'payment_click', 'link_click')",
            name="ck_portal_analytics_event_type",
        ),
    )
    op.create_index(
        "ix_portal_analytics_owner_type_created",
        "portal_analytics",
        ["user_id", "event_type", "created_at"],
    )
    op.create_index("ix_portal_analytics_portal", "portal_analytics", ["portal_id"])

    # ------------------------------------------------------------------
    # uploaded_files
    # ------------------------------------------------------------------
    op.create_table(
        "uploaded_files",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("portal_id", sa.Integer(), nullable=False),
        sa.Column("block_id", sa.Integer(), nullable=True),
        sa.Column("uploaded_by", sa.String(64), nullable=False),
        sa.Column("filename", sa.String(512), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False),
        sa.Column("mime_type", sa.String(128), nullable=True),
        sa.Column("storage_path", sa.String(1024), nullable=False),
        sa.Column("public_url", sa.String(2048), nullable=False),
        _timestamp("created_at"),
    )
    op.create_index("ix_uploaded_files_owner", "uploaded_files", ["uploaded_by"])
    op.create_index("ix_uploaded_files_portal_block", "uploaded_files", ["portal_id", "block_id"])

    # ------------------------------------------------------------------
    # email_logs
    # ------------------------------------------------------------------
    op.create_table(
        "email_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email_type", sa.String(32), nullable=False),
        sa.Column("recipient", sa.String(320), nullable=False),
        sa.Column("subject", sa.String(512), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("provider_id", sa.String(128), nullable=True),
        sa.Column("data", _JSON, nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        _timestamp("sent_at"),
        sa.Column("duration_ms", sa.Float(), nullable=True),
        sa.CheckConstraint("status IN ('sent', 'failed')", name="ck_email_logs_status"),
    )
    op.create_index("ix_email_logs_recipient", "email_logs", ["recipient"])


def downgrade() -> None:
    op.drop_table("email_logs")
    op.drop_table("uploaded_files")
    op.drop_table("portal_analytics")
    op.drop_table("content_blocks")
    op.drop_table("portals")
    op.drop_table("user_events")
    op.drop_table("user_subscriptions")
    op.drop_table("user_profiles")
    op.drop_table("token_revocations")
    op.drop_table("users")
