"""Plan progress and reward ledger

Revision ID: 001_progress_and_ledger
Revises: 
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_progress_and_ledger"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # One row per (user, content); version is the optimistic-concurrency counter
    op.create_table(
        "plan_progress",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("content_type", sa.String(40), nullable=False),
        sa.Column("content_id", sa.String(64), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="not_started"),
        sa.Column("item_ids", postgresql.JSONB, nullable=False, server_default=sa.text("'[]'")),
        sa.Column("completed_item_ids", postgresql.JSONB, nullable=False, server_default=sa.text("'[]'")),
        sa.Column("total_item_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("reward_claimed", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("version", sa.Integer, nullable=False),
        sa.UniqueConstraint("user_id", "content_type", "content_id", name="uq_plan_progress_user_content"),
    )
    op.create_index("ix_plan_progress_user_status", "plan_progress", ["user_id", "status"])

    # Append-only; the unique event_key is what makes crediting exactly-once
    op.create_table(
        "reward_ledger",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("event_key", sa.String(255), nullable=False),
        sa.Column("action_type", sa.String(60), nullable=False),
        sa.Column("content_type", sa.String(40), nullable=True),
        sa.Column("content_id", sa.String(64), nullable=True),
        sa.Column("day_bucket", sa.Date, nullable=False),
        sa.Column("points", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("event_key", name="uq_reward_ledger_event_key"),
    )
    op.create_index("ix_reward_ledger_user_created", "reward_ledger", ["user_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_reward_ledger_user_created", table_name="reward_ledger")
    op.drop_table("reward_ledger")
    op.drop_index("ix_plan_progress_user_status", table_name="plan_progress")
    op.drop_table("plan_progress")
