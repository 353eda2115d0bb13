"""FastAPI dependencies for the progress API.

Provides:
- Caller identity (X-User-Id header, resolved upstream from the session credential)
- Content collaborator
"""

from typing import Optional

from fastapi import Header, HTTPException

from .content import ContentProvider, HttpContentProvider

MAX_USER_ID_LENGTH = 64


def get_current_user_id(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> str:
    """Resolve the calling user.

    Every progress record is scoped by this id, so a caller can only ever
    read or mutate their own records.

    Raises:
        HTTPException 401 if the header is missing or blank
        HTTPException 400 if it is too long to be a user id
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    if len(user_id) > MAX_USER_ID_LENGTH or "|" in user_id:
        raise HTTPException(status_code=400, detail="Invalid X-User-Id header")
    return user_id


def get_content_provider() -> ContentProvider:
    return HttpContentProvider.get_instance()
