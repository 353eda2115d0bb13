"""Content collaborator: resolves the item ids of a piece of trackable content.

This service never discovers items on its own. At start time it asks the
content API for the current ordered item list and snapshots it on the
progress record.
"""
import logging
from typing import Iterable, Optional, Protocol

import requests

from .errors import DependencyUnavailable, NotFound
from .infra.redis_cache import get_or_set_json_sync
from .infra.redis_client import redis_key
from .settings import settings

logger = logging.getLogger("progress_api.content")


class ContentProvider(Protocol):
    def get_item_ids(self, content_type: str, content_id: str) -> list[str]:
        ...


MAX_ITEM_ID_LENGTH = 64
RESERVED_ID_CHARS = ("/", "|")


def is_addressable_id(value: str) -> bool:
    """Whether `value` can be used as a path segment and inside event keys."""
    return 0 < len(value) <= MAX_ITEM_ID_LENGTH and not any(c in value for c in RESERVED_ID_CHARS)


def normalize_item_ids(raw: Iterable) -> list[str]:
    """Stringify, drop blanks and collapse duplicates, keeping first-seen order.

    Ids that could never be addressed by a toggle (too long, or containing
    `/` or `|`) are dropped with a warning.
    """
    seen: set[str] = set()
    items: list[str] = []
    for value in raw:
        item = str(value).strip()
        if not item or item in seen:
            continue
        if not is_addressable_id(item):
            logger.warning(f"Dropping unaddressable item id {item[:80]!r}")
            continue
        seen.add(item)
        items.append(item)
    return items


class HttpContentProvider:
    _instance = None

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout_sec: Optional[float] = None,
        token: Optional[str] = None,
    ):
        self.base_url = (base_url or settings.content_api_url).rstrip("/")
        self.timeout_sec = timeout_sec if timeout_sec is not None else settings.content_api_timeout_sec
        self.token = token if token is not None else settings.content_api_token

    @classmethod
    def get_instance(cls):
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def _headers(self) -> dict:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _fetch(self, content_type: str, content_id: str) -> list[str]:
        url = f"{self.base_url}/content/{content_type}/{content_id}"
        try:
            r = requests.get(url, headers=self._headers(), timeout=self.timeout_sec)
        except requests.exceptions.RequestException as e:
            logger.warning(f"Content service unreachable for {content_type}/{content_id}: {e}")
            raise DependencyUnavailable("Content service is unavailable, please retry") from e

        if r.status_code == 404:
            raise NotFound(f"Content not found: {content_type}/{content_id}")
        if r.status_code >= 400:
            logger.warning(f"Content service returned {r.status_code} for {content_type}/{content_id}")
            raise DependencyUnavailable(f"Content service error ({r.status_code})")

        try:
            payload = r.json()
        except ValueError as e:
            raise DependencyUnavailable("Content service returned malformed JSON") from e

        items = payload.get("item_ids") if isinstance(payload, dict) else None
        if not isinstance(items, list):
            raise DependencyUnavailable("Content service response has no item_ids list")
        return normalize_item_ids(items)

    def get_item_ids(self, content_type: str, content_id: str) -> list[str]:
        key = redis_key("content", content_type, content_id)
        items, hit = get_or_set_json_sync(
            key,
            settings.content_cache_ttl_sec,
            lambda: self._fetch(content_type, content_id),
        )
        if hit:
            logger.debug(f"Content cache hit for {content_type}/{content_id}")
        return items
