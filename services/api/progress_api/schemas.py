"""Pydantic schemas for the progress & reward API.

Request/response models for:
- Plan progress (get / start / toggle / complete)
- Gamification dispatch, stats and ledger history
"""

from datetime import datetime, date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# --- Progress ---

class PlanProgressOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    content_type: str
    content_id: str
    status: str  # not_started | in_progress | completed
    item_ids: list[str]
    completed_item_ids: list[str]
    total_item_count: int
    completed_count: int
    progress_percent: float
    reward_claimed: bool
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    version: int


# --- Gamification ---

class StreakOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    current_count: int
    longest_count: int
    last_activity_date: Optional[date]
    active_today: bool
    next_milestone: Optional[int]


class MilestoneOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    kind: str  # streak | level
    threshold: int
    label: str


class LevelOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    level: int
    slug: str
    name: str
    min_points: int


class DispatchRequest(BaseModel):
    action_type: str = Field(..., min_length=1, max_length=60)


class DispatchResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    success: bool
    action_type: str
    points_earned: int
    already_earned: bool
    total_points: int
    streak: Optional[StreakOut] = None
    milestone: Optional[MilestoneOut] = None
    milestones: list[MilestoneOut] = []


class StatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    total_score: int
    daily_score: int
    level: LevelOut
    next_level: Optional[LevelOut]
    streak: StreakOut


class LedgerEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    event_key: str
    action_type: str
    content_type: Optional[str]
    content_id: Optional[str]
    day_bucket: date
    points: int
    created_at: datetime


# --- Lifecycle responses ---

class StartProgressResponse(BaseModel):
    success: bool = True
    already_started: bool
    progress: PlanProgressOut
    reward: Optional[DispatchResponse] = None


class ToggleItemResponse(BaseModel):
    success: bool = True
    item_id: str
    checked: bool
    completed_item_ids: list[str]
    status: str
    progress_percent: float
    completed_now: bool
    message: Optional[str] = None
    progress: PlanProgressOut
    reward: Optional[DispatchResponse] = None
    daily_reward: Optional[DispatchResponse] = None


class CompleteProgressResponse(BaseModel):
    success: bool = True
    already_completed: bool
    progress: PlanProgressOut
    reward: Optional[DispatchResponse] = None
