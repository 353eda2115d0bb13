"""Streaks, levels and milestone crossings.

Everything here is a pure function of ledger-derived inputs. A streak counts
consecutive active days ending today, or ending within the grace window
before today. Milestones are reported by comparing the aggregates before and
after a credit, so a threshold is only reported by the call that crosses it.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Optional, Sequence

from ..settings import settings


@dataclass(frozen=True)
class Level:
    level: int
    slug: str
    name: str
    min_points: int


LEVELS: tuple[Level, ...] = (
    Level(1, "begin", "Begin", 0),
    Level(2, "adapt", "Adapt", 200),
    Level(3, "commit", "Commit", 300),
    Level(4, "balance", "Balance", 500),
    Level(5, "strengthen", "Strengthen", 1000),
    Level(6, "sustain", "Sustain", 2000),
    Level(7, "mastery", "Mastery", 4000),
    Level(8, "transform", "Transform", 6000),
)


def level_for(points: int) -> Level:
    current = LEVELS[0]
    for lvl in LEVELS:
        if points >= lvl.min_points:
            current = lvl
    return current


@dataclass(frozen=True)
class StreakState:
    current_count: int
    longest_count: int
    last_activity_date: Optional[date]
    active_today: bool
    next_milestone: Optional[int]


@dataclass(frozen=True)
class Milestone:
    kind: str  # "streak" | "level"
    threshold: int
    label: str


def _runs(days: Sequence[date]) -> list[tuple[date, int]]:
    """(last_day, length) for each run of consecutive days. `days` sorted, unique."""
    runs: list[tuple[date, int]] = []
    for d in days:
        if runs and runs[-1][0] + timedelta(days=1) == d:
            runs[-1] = (d, runs[-1][1] + 1)
        else:
            runs.append((d, 1))
    return runs


def next_threshold(value: int, thresholds: Iterable[int]) -> Optional[int]:
    upcoming = [t for t in sorted(thresholds) if t > value]
    return upcoming[0] if upcoming else None


def compute_streak(
    days: Iterable[date],
    today: date,
    *,
    grace_days: Optional[int] = None,
    milestones: Optional[Sequence[int]] = None,
) -> StreakState:
    grace = settings.streak_grace_days if grace_days is None else grace_days
    thresholds = settings.streak_milestones if milestones is None else milestones

    ordered = sorted({d for d in days if d <= today})
    runs = _runs(ordered)
    longest = max((length for _, length in runs), default=0)

    current = 0
    last = ordered[-1] if ordered else None
    if runs:
        run_end, run_len = runs[-1]
        if (today - run_end).days <= grace:
            current = run_len

    return StreakState(
        current_count=current,
        longest_count=longest,
        last_activity_date=last,
        active_today=last == today,
        next_milestone=next_threshold(current, thresholds),
    )


def crossed_milestones(
    *,
    streak_before: int,
    streak_after: int,
    points_before: int,
    points_after: int,
    streak_thresholds: Optional[Sequence[int]] = None,
) -> list[Milestone]:
    thresholds = settings.streak_milestones if streak_thresholds is None else streak_thresholds
    crossed = [
        Milestone("streak", t, f"{t}-day streak")
        for t in sorted(thresholds)
        if streak_before < t <= streak_after
    ]
    crossed.extend(
        Milestone("level", lvl.min_points, lvl.name)
        for lvl in LEVELS
        if lvl.min_points > 0 and points_before < lvl.min_points <= points_after
    )
    return crossed
