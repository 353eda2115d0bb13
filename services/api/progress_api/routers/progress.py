"""Plan progress API router.

Endpoints:
- GET  /progress - List the caller's progress records
- GET  /progress/{content_type}/{content_id} - Record or null
- POST /progress/{content_type}/{content_id}/start - Idempotent start
- POST /progress/{content_type}/{content_id}/items/{item_id}/toggle - Flip one item
- POST /progress/{content_type}/{content_id}/complete - Explicit completion
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, Request
from sqlalchemy.orm import Session

from progress_api.infra.idempotency import run_idempotent

from ..content import ContentProvider
from ..db import get_db
from ..deps import get_content_provider, get_current_user_id
from ..schemas import (
    CompleteProgressResponse,
    DispatchResponse,
    PlanProgressOut,
    StartProgressResponse,
    ToggleItemResponse,
)
from ..services import lifecycle
from ..services.reward_policy import ContentType

router = APIRouter(prefix="/progress", tags=["progress"])

ID_PATTERN = r"^[^|/]+$"


def _reward(result) -> Optional[DispatchResponse]:
    return DispatchResponse.model_validate(result) if result is not None else None


@router.get("", response_model=List[PlanProgressOut])
def list_progress(
    status: Optional[str] = Query(None, pattern="^(in_progress|completed)$"),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    """List the caller's started plans, newest first."""
    return lifecycle.list_progress(db, user_id, status)


@router.get("/{content_type}/{content_id}", response_model=Optional[PlanProgressOut])
def get_progress(
    content_type: ContentType,
    content_id: str = Path(..., max_length=64, pattern=ID_PATTERN),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    """Get the caller's progress for one piece of content, or null if never started."""
    return lifecycle.get_progress(db, user_id, content_type.value, content_id)


@router.post("/{content_type}/{content_id}/start", response_model=StartProgressResponse)
async def start_progress(
    request: Request,
    content_type: ContentType,
    content_id: str = Path(..., max_length=64, pattern=ID_PATTERN),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    content: ContentProvider = Depends(get_content_provider),
):
    """Start tracking content. Repeated calls return the existing record."""

    def handler() -> StartProgressResponse:
        result = lifecycle.start_progress(
            db, content, user_id=user_id, content_type=content_type.value, content_id=content_id
        )
        return StartProgressResponse(
            already_started=result.already_started,
            progress=PlanProgressOut.model_validate(result.progress),
            reward=_reward(result.reward),
        )

    return await run_idempotent(
        request, user_id=user_id, route_key=f"start:{content_type.value}:{content_id}", handler=handler
    )


@router.post("/{content_type}/{content_id}/items/{item_id}/toggle", response_model=ToggleItemResponse)
async def toggle_progress_item(
    request: Request,
    content_type: ContentType,
    content_id: str = Path(..., max_length=64, pattern=ID_PATTERN),
    item_id: str = Path(..., max_length=64, pattern=ID_PATTERN),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    """Check or uncheck one item. Checking the last item completes the plan."""

    def handler() -> ToggleItemResponse:
        result = lifecycle.toggle_progress_item(
            db, user_id=user_id, content_type=content_type.value, content_id=content_id, item_id=item_id
        )
        progress = PlanProgressOut.model_validate(result.progress)
        return ToggleItemResponse(
            item_id=result.item_id,
            checked=result.checked,
            completed_item_ids=progress.completed_item_ids,
            status=progress.status,
            progress_percent=progress.progress_percent,
            completed_now=result.completed_now,
            message="All items done, plan completed." if result.completed_now else None,
            progress=progress,
            reward=_reward(result.reward),
            daily_reward=_reward(result.daily_reward),
        )

    return await run_idempotent(
        request,
        user_id=user_id,
        route_key=f"toggle:{content_type.value}:{content_id}:{item_id}",
        handler=handler,
    )


@router.post("/{content_type}/{content_id}/complete", response_model=CompleteProgressResponse)
async def complete_progress(
    request: Request,
    content_type: ContentType,
    content_id: str = Path(..., max_length=64, pattern=ID_PATTERN),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    """Confirm completion, marking any remaining items done. Safe to repeat."""

    def handler() -> CompleteProgressResponse:
        result = lifecycle.complete_progress(
            db, user_id=user_id, content_type=content_type.value, content_id=content_id
        )
        return CompleteProgressResponse(
            already_completed=result.already_completed,
            progress=PlanProgressOut.model_validate(result.progress),
            reward=_reward(result.reward),
        )

    return await run_idempotent(
        request, user_id=user_id, route_key=f"complete:{content_type.value}:{content_id}", handler=handler
    )
