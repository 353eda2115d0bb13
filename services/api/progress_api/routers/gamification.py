from typing import List

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from progress_api.infra.idempotency import run_idempotent

from ..db import get_db
from ..deps import get_current_user_id
from ..schemas import DispatchRequest, DispatchResponse, LedgerEntryOut, StatsResponse
from ..services import dispatcher, scoreboard

router = APIRouter(prefix="/gamification", tags=["gamification"])


@router.post("/dispatch", response_model=DispatchResponse)
async def dispatch_action(
    request: Request,
    body: DispatchRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    """Request points for a daily action. Repeats return already_earned=true, not an error.

    Plan start/completion rewards are not accepted here; they come with the
    progress transitions themselves.
    """

    def handler() -> DispatchResponse:
        result = dispatcher.dispatch_action(db, user_id=user_id, action_type=body.action_type)
        return DispatchResponse.model_validate(result)

    return await run_idempotent(request, user_id=user_id, route_key="dispatch", handler=handler)


@router.get("/me", response_model=StatsResponse)
def get_my_stats(
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return scoreboard.get_stats(db, user_id)


@router.get("/history", response_model=List[LedgerEntryOut])
def get_my_history(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return scoreboard.get_history(db, user_id, limit=limit, offset=offset)
