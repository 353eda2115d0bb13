from __future__ import annotations

from datetime import date, datetime
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from ..models import RewardLedgerEntry, generate_uuid


_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def try_credit(
    db: Session,
    *,
    user_id: str,
    event_key: str,
    action_type: str,
    points: int,
    day: date,
    at: datetime,
    content_type: Optional[str] = None,
    content_id: Optional[str] = None,
) -> bool:
    """Insert a ledger row unless one already exists for `event_key`.

    Returns True only for the call that actually wrote the row. The check and
    the write are a single statement, so two concurrent callers can never both
    observe "absent". Does not commit.
    """
    values = dict(
        id=generate_uuid(),
        user_id=user_id,
        event_key=event_key,
        action_type=action_type,
        content_type=content_type,
        content_id=content_id,
        day_bucket=day,
        points=points,
        created_at=at,
    )
    dialect = db.get_bind().dialect.name
    dialect_insert = _UPSERT_DIALECTS.get(dialect)
    if dialect_insert is None:
        raise RuntimeError(f"Reward ledger needs PostgreSQL or SQLite, got {dialect}")

    stmt = dialect_insert(RewardLedgerEntry).values(**values).on_conflict_do_nothing(
        index_elements=["event_key"]
    )
    result = db.execute(stmt)
    return result.rowcount == 1


def get_entry(db: Session, event_key: str) -> Optional[RewardLedgerEntry]:
    return db.scalar(select(RewardLedgerEntry).where(RewardLedgerEntry.event_key == event_key))


def total_points(db: Session, user_id: str) -> int:
    total = db.scalar(
        select(func.coalesce(func.sum(RewardLedgerEntry.points), 0)).where(
            RewardLedgerEntry.user_id == user_id
        )
    )
    return int(total or 0)


def points_on_day(db: Session, user_id: str, day: date) -> int:
    total = db.scalar(
        select(func.coalesce(func.sum(RewardLedgerEntry.points), 0)).where(
            RewardLedgerEntry.user_id == user_id,
            RewardLedgerEntry.day_bucket == day,
        )
    )
    return int(total or 0)


def active_days(db: Session, user_id: str, action_types: Sequence[str]) -> list[date]:
    """Distinct day buckets with at least one entry of the given action types, ascending."""
    rows = db.scalars(
        select(RewardLedgerEntry.day_bucket)
        .where(
            RewardLedgerEntry.user_id == user_id,
            RewardLedgerEntry.action_type.in_(list(action_types)),
        )
        .distinct()
        .order_by(RewardLedgerEntry.day_bucket)
    )
    return list(rows)


def history(db: Session, user_id: str, *, limit: int = 50, offset: int = 0) -> list[RewardLedgerEntry]:
    return list(
        db.scalars(
            select(RewardLedgerEntry)
            .where(RewardLedgerEntry.user_id == user_id)
            .order_by(RewardLedgerEntry.created_at.desc(), RewardLedgerEntry.id)
            .offset(offset)
            .limit(limit)
        )
    )
