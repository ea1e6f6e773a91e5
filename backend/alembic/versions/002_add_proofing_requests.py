"""Add proofing closure/approval requests

Revision ID: 002
Revises: 001
Create Date: 2026-10-19 12:00:00.000000+00:00

What:  proofing_requests table and media.is_ready_for_revision.

Rollback: downgrade() drops the table and the column.
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    with op.batch_alter_table("media") as batch:
        batch.add_column(
            sa.Column("is_ready_for_revision", sa.Boolean(), nullable=False,
                      server_default=sa.false())
        )

    op.create_table(
        "proofing_requests",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("proofing_id", sa.Uuid(),
                  sa.ForeignKey("proofings.id", ondelete="CASCADE"), nullable=False),
        sa.Column("media_id", sa.Uuid(),
                  sa.ForeignKey("media.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Uuid(),
                  sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("request_type", sa.String(20), nullable=False),
        sa.Column("token", sa.String(128), nullable=False),
        sa.Column("todos", sa.JSON(), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("approved_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("approved_by_email", sa.String(255), nullable=True),
        sa.Column("rejected_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("rejected_by_email", sa.String(255), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("token"),
    )
    op.create_index("ix_proofing_requests_proofing_id", "proofing_requests", ["proofing_id"])
    # One pending request per (media, type) is looked up on every create
    op.create_index(
        "idx_proofing_requests_media_status",
        "proofing_requests",
        ["media_id", "request_type", "status"],
    )


def downgrade() -> None:
    op.drop_table("proofing_requests")
    with op.batch_alter_table("media") as batch:
        batch.drop_column("is_ready_for_revision")
