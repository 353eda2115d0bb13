from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from ..models import RewardLedgerEntry
from . import reward_ledger
from .dispatcher import current_streak
from .reward_policy import day_bucket
from .streaks import LEVELS, Level, StreakState, level_for


@dataclass
class UserStats:
    user_id: str
    total_score: int
    daily_score: int
    level: Level
    next_level: Optional[Level]
    streak: StreakState


def get_stats(db: Session, user_id: str, now: Optional[datetime] = None) -> UserStats:
    at = now or datetime.now(timezone.utc)
    total = reward_ledger.total_points(db, user_id)
    level = level_for(total)
    upcoming = [lvl for lvl in LEVELS if lvl.min_points > total]
    return UserStats(
        user_id=user_id,
        total_score=total,
        daily_score=reward_ledger.points_on_day(db, user_id, day_bucket(at)),
        level=level,
        next_level=upcoming[0] if upcoming else None,
        streak=current_streak(db, user_id, at),
    )


def get_history(db: Session, user_id: str, *, limit: int = 50, offset: int = 0) -> list[RewardLedgerEntry]:
    return reward_ledger.history(db, user_id, limit=limit, offset=offset)
