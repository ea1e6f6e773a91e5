"""Create the Memora schema

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

What:  Users, the three phase tables, media sets and media, guest tokens,
       subscriptions with their history, and the webhook audit log.

Rollback: downgrade() drops every table (destructive).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column("id", sa.Uuid(), nullable=False)


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP")),
    ]


def _phase_columns() -> list:
    return [
        _id(),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"),
                  nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'draft'")),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("allowed_emails", sa.JSON(), nullable=False),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("completed_by_email", sa.String(255), nullable=True),
        sa.Column("auto_delete_at", sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps(),
        sa.Column("deleted_at", sa.TIMESTAMP(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        _id(),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False, server_default=sa.text("''")),
        sa.Column("memora_tier", sa.String(50), nullable=False,
                  server_default=sa.text("'starter'")),
        sa.Column("api_token_hash", sa.String(64), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index("ix_users_api_token_hash", "users", ["api_token_hash"], unique=True)

    # ── Phases ────────────────────────────────────────────────────────────
    op.create_table(
        "selections",
        *_phase_columns(),
        sa.Column("selection_limit", sa.Integer(), nullable=True),
        sa.Column("reset_selection_limit_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "proofings",
        *_phase_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "raw_files",
        *_phase_columns(),
        sa.Column("raw_file_limit", sa.Integer(), nullable=True),
        sa.Column("reset_raw_file_limit_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("download_pin_hash", sa.String(255), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    for table in ("selections", "proofings", "raw_files"):
        op.create_index(f"ix_{table}_user_id", table, ["user_id"])

    # ── Media ─────────────────────────────────────────────────────────────
    op.create_table(
        "media_sets",
        _id(),
        sa.Column("selection_id", sa.Uuid(),
                  sa.ForeignKey("selections.id", ondelete="CASCADE"), nullable=True),
        sa.Column("proofing_id", sa.Uuid(),
                  sa.ForeignKey("proofings.id", ondelete="CASCADE"), nullable=True),
        sa.Column("raw_file_id", sa.Uuid(),
                  sa.ForeignKey("raw_files.id", ondelete="CASCADE"), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("selection_limit", sa.Integer(), nullable=True),
        sa.Column("raw_file_limit", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    for column in ("selection_id", "proofing_id", "raw_file_id"):
        op.create_index(f"ix_media_sets_{column}", "media_sets", [column])

    op.create_table(
        "media",
        _id(),
        sa.Column("set_id", sa.Uuid(),
                  sa.ForeignKey("media_sets.id", ondelete="CASCADE"), nullable=False),
        sa.Column("filename", sa.String(255), nullable=False),
        sa.Column("file_path", sa.String(1024), nullable=False),
        sa.Column("is_selected", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("selected_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_rejected", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.Column("deleted_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_media_set_id", "media", ["set_id"])
    # Serves the selected-count query behind every limit check
    op.create_index("idx_media_set_selected", "media", ["set_id", "is_selected"])

    # ── Guest tokens ──────────────────────────────────────────────────────
    op.create_table(
        "guest_tokens",
        _id(),
        sa.Column("phase_kind", sa.String(20), nullable=False),
        sa.Column("phase_id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("token", sa.String(128), nullable=False),
        sa.Column("expires_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("used_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("token"),
    )
    op.create_index("ix_guest_tokens_phase_id", "guest_tokens", ["phase_id"])
    op.create_index("idx_guest_tokens_token_expires", "guest_tokens", ["token", "expires_at"])

    # ── Billing ───────────────────────────────────────────────────────────
    op.create_table(
        "subscriptions",
        _id(),
        sa.Column("user_id", sa.Uuid(),
                  sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("payment_provider", sa.String(20), nullable=False),
        sa.Column("provider_subscription_id", sa.String(255), nullable=False),
        sa.Column("provider_customer_id", sa.String(255), nullable=True),
        sa.Column("provider_plan_id", sa.String(255), nullable=True),
        sa.Column("tier", sa.String(50), nullable=False),
        sa.Column("billing_cycle", sa.String(20), nullable=False,
                  server_default=sa.text("'monthly'")),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'active'")),
        sa.Column("amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'USD'")),
        sa.Column("current_period_start", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("current_period_end", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("canceled_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("trial_ends_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"])
    op.create_index(
        "idx_subscriptions_provider_ref",
        "subscriptions",
        ["payment_provider", "provider_subscription_id"],
        unique=True,
    )

    op.create_table(
        "subscription_history",
        _id(),
        sa.Column("user_id", sa.Uuid(),
                  sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("event_type", sa.String(30), nullable=False),
        sa.Column("from_tier", sa.String(50), nullable=True),
        sa.Column("to_tier", sa.String(50), nullable=True),
        sa.Column("billing_cycle", sa.String(20), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=True),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column("payment_provider", sa.String(20), nullable=True),
        sa.Column("payment_reference", sa.String(255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_subscription_history_user_id", "subscription_history", ["user_id"])

    op.create_table(
        "webhook_events",
        _id(),
        sa.Column("provider", sa.String(20), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=True),
        sa.Column("event_id", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("response_code", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_webhook_events_provider_created", "webhook_events", ["provider", "created_at"]
    )


def downgrade() -> None:
    """Drops every Memora table in reverse dependency order. All data is lost."""
    op.drop_table("webhook_events")
    op.drop_table("subscription_history")
    op.drop_table("subscriptions")
    op.drop_table("guest_tokens")
    op.drop_table("media")
    op.drop_table("media_sets")
    op.drop_table("raw_files")
    op.drop_table("proofings")
    op.drop_table("selections")
    op.drop_table("users")
