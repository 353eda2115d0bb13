"""Error taxonomy for progress and reward operations.

Services raise these; `main` renders them as typed JSON results so none of
them ever reaches the client as a 500.
"""
from typing import Any, Dict, Optional


class ProgressError(Exception):
    """Base class with a stable error code and the HTTP status it maps to."""

    status_code: int = 400
    error_code: str = "PROGRESS_ERROR"

    def __init__(self, message: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": False,
            "error_code": self.error_code,
            "message": self.message,
        }
        body.update(self.extra)
        return body


class NotFound(ProgressError):
    """No progress record, or the content collaborator does not know the content."""

    status_code = 404
    error_code = "NOT_FOUND"


class NotStarted(ProgressError):
    """Items cannot be marked before the plan is explicitly started."""

    status_code = 409
    error_code = "NOT_STARTED"

    def __init__(self, message: str = "Start this plan before marking items as done."):
        super().__init__(
            message,
            extra={"status": "not_started", "completed_item_ids": []},
        )


class Conflict(ProgressError):
    """Optimistic-concurrency collision; retry against a fresh read."""

    status_code = 409
    error_code = "CONFLICT"


class InvalidItem(ProgressError):
    status_code = 422
    error_code = "INVALID_ITEM"


class UnknownAction(ProgressError):
    status_code = 422
    error_code = "UNKNOWN_ACTION"


class DependencyUnavailable(ProgressError):
    """A collaborator (content service) failed; safe for the caller to retry."""

    status_code = 503
    error_code = "DEPENDENCY_UNAVAILABLE"
