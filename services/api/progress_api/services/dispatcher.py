"""Event dispatcher: the single entry point for requesting a gamification credit.

`dispatch` resolves the event key, attempts one conditional ledger insert and
derives streak / milestone deltas. A duplicate key is a successful outcome
(`already_earned=True`), never an error, so callers may dispatch redundantly.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from ..errors import UnknownAction
from . import reward_ledger
from .reward_policy import (
    Scope,
    day_bucket,
    event_key,
    get_policy,
    streak_eligible_actions,
)
from .streaks import Milestone, StreakState, compute_streak, crossed_milestones

logger = logging.getLogger("progress_api.rewards")


@dataclass
class DispatchResult:
    success: bool
    action_type: str
    event_key: str
    points_earned: int
    already_earned: bool
    total_points: int
    streak: Optional[StreakState] = None
    milestone: Optional[Milestone] = None
    milestones: list[Milestone] = field(default_factory=list)


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def current_streak(db: Session, user_id: str, now: Optional[datetime] = None) -> StreakState:
    today = day_bucket(_now(now))
    days = reward_ledger.active_days(db, user_id, streak_eligible_actions())
    return compute_streak(days, today)


def dispatch(
    db: Session,
    *,
    user_id: str,
    action_type: str,
    content_type: Optional[str] = None,
    content_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> DispatchResult:
    """Credit `action_type` for the user at most once per event key. Does not commit.

    Raises:
        UnknownAction: action type not in the policy table, or a per-content
            action dispatched without a content ref.
    """
    policy = get_policy(action_type)
    at = _now(now)
    today = day_bucket(at)
    key = event_key(user_id, policy, content_type=content_type, content_id=content_id, day=today)

    points_before = reward_ledger.total_points(db, user_id)
    streak_before = current_streak(db, user_id, at)

    inserted = reward_ledger.try_credit(
        db,
        user_id=user_id,
        event_key=key,
        action_type=policy.action_type,
        points=policy.points,
        day=today,
        at=at,
        content_type=content_type,
        content_id=content_id,
    )

    if not inserted:
        logger.debug(f"Event {key} already credited; no-op")
        return DispatchResult(
            success=True,
            action_type=policy.action_type,
            event_key=key,
            points_earned=0,
            already_earned=True,
            total_points=points_before,
            streak=streak_before,
        )

    points_after = points_before + policy.points
    streak_after = current_streak(db, user_id, at) if policy.streak_eligible else streak_before
    milestones = crossed_milestones(
        streak_before=streak_before.current_count,
        streak_after=streak_after.current_count,
        points_before=points_before,
        points_after=points_after,
    )

    logger.info(f"Credited {policy.points} points to user {user_id} for {key}")
    return DispatchResult(
        success=True,
        action_type=policy.action_type,
        event_key=key,
        points_earned=policy.points,
        already_earned=False,
        total_points=points_after,
        streak=streak_after,
        milestone=milestones[-1] if milestones else None,
        milestones=milestones,
    )


def dispatch_action(
    db: Session,
    *,
    user_id: str,
    action_type: str,
    now: Optional[datetime] = None,
) -> DispatchResult:
    """Standalone dispatch for caller-reported actions; commits in its own transaction.

    Per-content actions (`*_started`, `*_completed`) are credited only by the
    progress lifecycle, together with the state change they reward.

    Raises:
        UnknownAction: unknown action type, or a per-content action.
    """
    policy = get_policy(action_type)
    if policy.scope == Scope.CONTENT:
        logger.warning(f"Rejected direct dispatch of {action_type} for user {user_id}")
        raise UnknownAction(f"{action_type} is credited through plan progress, not dispatched directly")
    try:
        result = dispatch(db, user_id=user_id, action_type=action_type, now=now)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return result
