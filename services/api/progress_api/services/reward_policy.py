"""Action policies and deterministic event keys.

Every gamification-worthy occurrence maps to exactly one event key. Two
scopes exist:

- "content": one-shot per (user, action, content), e.g. diet_completed
- "daily":   repeatable once per (user, action, day), e.g. daily_progress

The key is a pure function of its inputs; the ledger's uniqueness constraint
on it is what makes crediting exactly-once.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from ..errors import UnknownAction
from ..settings import settings


class ContentType(str, enum.Enum):
    DIET = "diet"
    EXERCISE = "exercise"


class Scope(str, enum.Enum):
    CONTENT = "content"
    DAILY = "daily"


@dataclass(frozen=True)
class ActionPolicy:
    action_type: str
    points: int
    scope: Scope
    streak_eligible: bool = False


STARTED_SUFFIX = "_started"
COMPLETED_SUFFIX = "_completed"
DAILY_PROGRESS = "daily_progress"
LOGIN_SUCCESS = "login_success"

_DEFAULT_START_POINTS = 10
_DEFAULT_COMPLETE_POINTS = 50


def started_action(content_type: str) -> str:
    return f"{content_type}{STARTED_SUFFIX}"


def completed_action(content_type: str) -> str:
    return f"{content_type}{COMPLETED_SUFFIX}"


def _default_policies() -> dict[str, ActionPolicy]:
    policies = {
        DAILY_PROGRESS: ActionPolicy(DAILY_PROGRESS, 5, Scope.DAILY, streak_eligible=True),
        LOGIN_SUCCESS: ActionPolicy(LOGIN_SUCCESS, 2, Scope.DAILY, streak_eligible=True),
    }
    for ct in ContentType:
        policies[started_action(ct.value)] = ActionPolicy(
            started_action(ct.value), _DEFAULT_START_POINTS, Scope.CONTENT
        )
        policies[completed_action(ct.value)] = ActionPolicy(
            completed_action(ct.value), _DEFAULT_COMPLETE_POINTS, Scope.CONTENT, streak_eligible=True
        )
    return policies


def get_policy(action_type: str) -> ActionPolicy:
    policy = _default_policies().get(action_type)
    if policy is None:
        raise UnknownAction(f"Unknown action type: {action_type}")
    override = settings.action_points.get(action_type)
    if override is not None:
        policy = ActionPolicy(policy.action_type, int(override), policy.scope, policy.streak_eligible)
    return policy


def streak_eligible_actions() -> list[str]:
    return sorted(a for a, p in _default_policies().items() if p.streak_eligible)


def activity_zone() -> ZoneInfo:
    return ZoneInfo(settings.activity_timezone)


def day_bucket(at: datetime) -> date:
    """Calendar day of `at` in the server's activity timezone."""
    if at.tzinfo is None:
        at = at.replace(tzinfo=timezone.utc)
    return at.astimezone(activity_zone()).date()


def event_key(
    user_id: str,
    policy: ActionPolicy,
    *,
    content_type: Optional[str] = None,
    content_id: Optional[str] = None,
    day: Optional[date] = None,
) -> str:
    if policy.scope == Scope.CONTENT:
        if not content_type or not content_id:
            raise UnknownAction(f"{policy.action_type} requires a content type and id")
        return f"{user_id}|{policy.action_type}|{content_type}|{content_id}"
    if day is None:
        raise ValueError("daily event keys need a day bucket")
    return f"{user_id}|{policy.action_type}|{day.isoformat()}"
