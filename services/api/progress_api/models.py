"""SQLAlchemy ORM models for the progress & reward engine.

Tables:
- plan_progress: one row per (user, content_type, content_id), optimistic version column
- reward_ledger: append-only point credits, one row per event_key
"""

from __future__ import annotations

import uuid
from datetime import datetime, date
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Date,
    Integer,
    Boolean,
    Index,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func, false
from sqlalchemy.dialects.postgresql import JSONB

from .db import Base


def generate_uuid() -> str:
    return str(uuid.uuid4())


class ProgressStatus:
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class PlanProgress(Base):
    """A user's progress through one piece of trackable content.

    `item_ids` is the content's item list captured at start; `total_item_count`
    is derived from it and never changes afterwards, so the percentage stays
    stable even if the content is edited later.
    """
    __tablename__ = "plan_progress"
    __table_args__ = (
        UniqueConstraint("user_id", "content_type", "content_id", name="uq_plan_progress_user_content"),
        Index("ix_plan_progress_user_status", "user_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    content_type: Mapped[str] = mapped_column(String(40), nullable=False)
    content_id: Mapped[str] = mapped_column(String(64), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ProgressStatus.NOT_STARTED)
    item_ids: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list, server_default=text("'[]'"))
    completed_item_ids: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list, server_default=text("'[]'"))
    total_item_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reward_claimed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Bumped on every UPDATE; a stale writer's UPDATE matches zero rows.
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def completed_count(self) -> int:
        known = set(self.item_ids or [])
        return len([i for i in (self.completed_item_ids or []) if i in known])

    @property
    def progress_percent(self) -> float:
        if not self.total_item_count:
            return 0.0
        return round(self.completed_count * 100.0 / self.total_item_count, 1)

    @property
    def all_items_completed(self) -> bool:
        return self.total_item_count > 0 and self.completed_count >= self.total_item_count

    def __repr__(self) -> str:
        return (
            f"<PlanProgress {self.user_id}:{self.content_type}:{self.content_id} "
            f"status={self.status} v{self.version}>"
        )


class RewardLedgerEntry(Base):
    """One credited gamification event. Rows are never updated or deleted."""
    __tablename__ = "reward_ledger"
    __table_args__ = (
        UniqueConstraint("event_key", name="uq_reward_ledger_event_key"),
        Index("ix_reward_ledger_user_created", "user_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    event_key: Mapped[str] = mapped_column(String(255), nullable=False)
    action_type: Mapped[str] = mapped_column(String(60), nullable=False)
    content_type: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    content_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    day_bucket: Mapped[date] = mapped_column(Date, nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
