"""Progress lifecycle: start, item toggling and completion.

State machine: not_started -> in_progress -> completed (terminal).

- start is idempotent; only the first call creates the record and earns
  the start reward.
- toggling requires an explicit start. Checking the last item completes the
  plan and dispatches the completion reward in the same transaction.
- completion and a claimed reward are one-way: unchecking items afterwards
  only edits `completed_item_ids`.

Every mutation reads the record, applies the change and writes it back
conditionally on its version; a Conflict restarts the attempt from a fresh
read, up to `settings.progress_write_retries` times.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, TypeVar

from sqlalchemy.orm import Session

from ..content import ContentProvider, normalize_item_ids
from ..errors import Conflict, InvalidItem, NotStarted
from ..models import PlanProgress, ProgressStatus
from ..settings import settings
from . import dispatcher
from .dispatcher import DispatchResult
from .progress_store import ProgressStore
from .reward_policy import DAILY_PROGRESS, completed_action, started_action

logger = logging.getLogger("progress_api.lifecycle")

T = TypeVar("T")


@dataclass
class StartResult:
    progress: PlanProgress
    already_started: bool
    reward: Optional[DispatchResult] = None


@dataclass
class ToggleResult:
    progress: PlanProgress
    item_id: str
    checked: bool
    completed_now: bool
    reward: Optional[DispatchResult] = None
    daily_reward: Optional[DispatchResult] = None


@dataclass
class CompleteResult:
    progress: PlanProgress
    already_completed: bool
    reward: Optional[DispatchResult] = None


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def _with_retries(op: str, attempt: Callable[[], T]) -> T:
    retries = max(1, settings.progress_write_retries)
    for n in range(1, retries + 1):
        try:
            return attempt()
        except Conflict:
            logger.warning(f"{op}: optimistic write conflict (attempt {n}/{retries}), retrying")
    raise Conflict(f"{op} kept conflicting with concurrent updates; please retry")


def _is_started(progress: Optional[PlanProgress]) -> bool:
    return progress is not None and progress.status != ProgressStatus.NOT_STARTED


def get_progress(db: Session, user_id: str, content_type: str, content_id: str) -> Optional[PlanProgress]:
    return ProgressStore(db).get(user_id, content_type, content_id)


def list_progress(db: Session, user_id: str, status: Optional[str] = None) -> list[PlanProgress]:
    return ProgressStore(db).list_for_user(user_id, status)


def start_progress(
    db: Session,
    content: ContentProvider,
    *,
    user_id: str,
    content_type: str,
    content_id: str,
    now: Optional[datetime] = None,
) -> StartResult:
    """Start tracking content for a user.

    Raises:
        NotFound / DependencyUnavailable: from the content collaborator.
        InvalidItem: the content has no items to track.
    """
    store = ProgressStore(db)
    existing = store.get(user_id, content_type, content_id)
    if _is_started(existing):
        logger.debug(f"start: {user_id}:{content_type}:{content_id} already started")
        return StartResult(existing, already_started=True)

    item_ids = normalize_item_ids(content.get_item_ids(content_type, content_id))
    if not item_ids:
        raise InvalidItem(f"{content_type}/{content_id} has no items to track")
    at = _now(now)

    def attempt() -> StartResult:
        progress = store.get(user_id, content_type, content_id)
        if _is_started(progress):
            return StartResult(progress, already_started=True)
        if progress is None:
            progress = PlanProgress(user_id=user_id, content_type=content_type, content_id=content_id)

        progress.status = ProgressStatus.IN_PROGRESS
        progress.item_ids = list(item_ids)
        progress.total_item_count = len(item_ids)
        progress.completed_item_ids = []
        progress.reward_claimed = False
        progress.started_at = at

        reward = store.upsert(
            progress,
            before_commit=lambda p: dispatcher.dispatch(
                db,
                user_id=user_id,
                action_type=started_action(content_type),
                content_type=content_type,
                content_id=content_id,
                now=at,
            ),
        )
        logger.info(f"Started {content_type}/{content_id} for user {user_id} ({len(item_ids)} items)")
        return StartResult(progress, already_started=False, reward=reward)

    return _with_retries("start", attempt)


def toggle_progress_item(
    db: Session,
    *,
    user_id: str,
    content_type: str,
    content_id: str,
    item_id: str,
    now: Optional[datetime] = None,
) -> ToggleResult:
    """Flip one item's membership in `completed_item_ids`.

    Raises:
        NotStarted: no started record exists; nothing is written.
        InvalidItem: the item was not part of the content at start time.
    """
    store = ProgressStore(db)
    at = _now(now)

    def attempt() -> ToggleResult:
        progress = store.get(user_id, content_type, content_id)
        if not _is_started(progress):
            raise NotStarted()
        if item_id not in (progress.item_ids or []):
            raise InvalidItem(f"Item {item_id} is not part of {content_type}/{content_id}")

        done = set(progress.completed_item_ids or [])
        checked = item_id not in done
        if checked:
            done.add(item_id)
        else:
            done.discard(item_id)
        progress.completed_item_ids = [i for i in progress.item_ids if i in done]

        was_in_progress = progress.status == ProgressStatus.IN_PROGRESS
        completed_now = was_in_progress and progress.all_items_completed
        if completed_now:
            progress.status = ProgressStatus.COMPLETED
            progress.completed_at = at
            progress.reward_claimed = True

        def rewards(p: PlanProgress) -> tuple[Optional[DispatchResult], Optional[DispatchResult]]:
            daily = None
            if checked and was_in_progress:
                daily = dispatcher.dispatch(db, user_id=user_id, action_type=DAILY_PROGRESS, now=at)
            completion = None
            if completed_now:
                completion = dispatcher.dispatch(
                    db,
                    user_id=user_id,
                    action_type=completed_action(content_type),
                    content_type=content_type,
                    content_id=content_id,
                    now=at,
                )
            return completion, daily

        completion, daily = store.upsert(progress, before_commit=rewards)
        if completed_now:
            logger.info(f"Completed {content_type}/{content_id} for user {user_id} by checking last item")
        return ToggleResult(
            progress=progress,
            item_id=item_id,
            checked=checked,
            completed_now=completed_now,
            reward=completion,
            daily_reward=daily,
        )

    return _with_retries("toggle", attempt)


def force_complete(
    db: Session,
    *,
    user_id: str,
    content_type: str,
    content_id: str,
    now: Optional[datetime] = None,
) -> CompleteResult:
    """Mark every remaining item done and complete the plan.

    Already-completed plans are a no-op, except that a completed record whose
    reward was never claimed gets its completion reward dispatched.

    Raises:
        NotStarted: no started record exists.
    """
    store = ProgressStore(db)
    at = _now(now)

    def dispatch_completion(p: PlanProgress) -> DispatchResult:
        return dispatcher.dispatch(
            db,
            user_id=user_id,
            action_type=completed_action(content_type),
            content_type=content_type,
            content_id=content_id,
            now=at,
        )

    def attempt() -> CompleteResult:
        progress = store.get(user_id, content_type, content_id)
        if not _is_started(progress):
            raise NotStarted("Start this plan before completing it.")

        if progress.status == ProgressStatus.COMPLETED:
            if progress.reward_claimed:
                return CompleteResult(progress, already_completed=True)
            progress.reward_claimed = True
            reward = store.upsert(progress, before_commit=dispatch_completion)
            logger.info(f"Re-dispatched unclaimed completion reward for {content_type}/{content_id} user {user_id}")
            return CompleteResult(progress, already_completed=True, reward=reward)

        progress.completed_item_ids = list(progress.item_ids)
        progress.status = ProgressStatus.COMPLETED
        progress.completed_at = at
        progress.reward_claimed = True
        reward = store.upsert(progress, before_commit=dispatch_completion)
        logger.info(f"Force-completed {content_type}/{content_id} for user {user_id}")
        return CompleteResult(progress, already_completed=False, reward=reward)

    return _with_retries("complete", attempt)


def complete_progress(
    db: Session,
    *,
    user_id: str,
    content_type: str,
    content_id: str,
    now: Optional[datetime] = None,
) -> CompleteResult:
    """Explicit completion confirmation.

    An explicit completion is a user confirming they are done, so it carries
    force-complete semantics: remaining items are marked done. Calling it
    after the plan already completed is a no-op success.
    """
    return force_complete(db, user_id=user_id, content_type=content_type, content_id=content_id, now=now)
