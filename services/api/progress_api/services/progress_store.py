from __future__ import annotations

import logging
from typing import Callable, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..errors import Conflict
from ..models import PlanProgress

logger = logging.getLogger("progress_api.store")

T = TypeVar("T")


class ProgressStore:
    """Keyed storage for PlanProgress records.

    Writes are conditional on the record's `version`: an UPDATE issued from a
    stale read matches no row and surfaces as `Conflict`, and two concurrent
    first inserts collide on the (user, content) unique constraint the same way.
    """

    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: str, content_type: str, content_id: str) -> Optional[PlanProgress]:
        return self.db.scalar(
            select(PlanProgress).where(
                PlanProgress.user_id == user_id,
                PlanProgress.content_type == content_type,
                PlanProgress.content_id == content_id,
            )
        )

    def list_for_user(self, user_id: str, status: Optional[str] = None) -> list[PlanProgress]:
        stmt = select(PlanProgress).where(PlanProgress.user_id == user_id)
        if status:
            stmt = stmt.where(PlanProgress.status == status)
        stmt = stmt.order_by(PlanProgress.started_at.desc(), PlanProgress.id)
        return list(self.db.scalars(stmt))

    def upsert(
        self,
        progress: PlanProgress,
        before_commit: Optional[Callable[[PlanProgress], T]] = None,
    ) -> Optional[T]:
        """Write `progress` and commit, running `before_commit` inside the same transaction.

        The record is flushed first so a version mismatch is detected before
        any dependent write; if anything fails the whole transaction is
        rolled back.

        Raises:
            Conflict: the stored record changed since it was read, or another
                writer created it concurrently.
        """
        self.db.add(progress)
        try:
            self.db.flush()
            result = before_commit(progress) if before_commit else None
            self.db.commit()
        except (StaleDataError, IntegrityError) as e:
            self.db.rollback()
            logger.warning(
                f"Write conflict on progress {progress.user_id}:{progress.content_type}:{progress.content_id}: {e}"
            )
            raise Conflict("Progress was modified concurrently; retry with a fresh read") from e
        except Exception:
            self.db.rollback()
            raise
        return result
