"""Idempotency-Key replay for mutating HTTP routes.

The domain operations are already idempotent; this layer additionally lets a
retried request get back the exact response body of the first attempt.
"""
import hashlib, json
from datetime import datetime, timezone
from typing import Optional, Union

from fastapi import HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from progress_api.infra.redis_client import get_redis, redis_key

DONE_TTL_SEC = 60 * 60 * 24
PROCESSING_TTL_SEC = 60

IDEMPOTENCY_HEADER = "Idempotency-Key"


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _hash_request(method: str, path: str, body_bytes: bytes) -> str:
    h = hashlib.sha256()
    h.update(method.encode("utf-8"))
    h.update(b"|")
    h.update(path.encode("utf-8"))
    h.update(b"|")
    h.update(body_bytes or b"")
    return h.hexdigest()


def _idemp_redis_key(user_id: str, route_key: str, idem_key: str) -> str:
    return redis_key("idemp", user_id, route_key, idem_key)


async def idempotency_precheck(
    request: Request, *, user_id: str, route_key: str
) -> Union[None, tuple[str, str], JSONResponse]:
    """Decide how a mutating request should proceed.

    Returns:
        None when the caller sent no Idempotency-Key (proceed without replay),
        (redis_key, request_hash) when the caller should proceed and store its result,
        JSONResponse when a stored response should be replayed.

    Raises:
        HTTPException 409 if the key is reused with a different payload or is
        still being processed by another request.
    """
    idem_key = request.headers.get(IDEMPOTENCY_HEADER)
    if not idem_key:
        return None

    body_bytes = await request.body()
    req_hash = _hash_request(request.method, request.url.path, body_bytes)

    rkey = _idemp_redis_key(user_id, route_key, idem_key)
    r = await get_redis()

    raw = await r.get(rkey)
    if raw:
        data = json.loads(raw)
        if data.get("request_hash") and data["request_hash"] != req_hash:
            raise HTTPException(status_code=409, detail="Idempotency-Key reused with different request payload")
        if data.get("state") == "done":
            return JSONResponse(content=data.get("body"), status_code=int(data.get("status", 200)))
        raise HTTPException(status_code=409, detail="Request with this Idempotency-Key is still processing. Retry shortly.")

    processing_payload = {
        "state": "processing",
        "status": None,
        "body": None,
        "created_at": _iso_now(),
        "completed_at": None,
        "request_hash": req_hash,
    }
    ok = await r.set(rkey, json.dumps(processing_payload), ex=PROCESSING_TTL_SEC, nx=True)
    if not ok:
        # someone else won the race
        raise HTTPException(status_code=409, detail="Request with this Idempotency-Key is still processing. Retry shortly.")

    return (rkey, req_hash)


async def idempotency_store_result(redis_key: str, req_hash: str, *, status: int, body: dict):
    r = await get_redis()
    payload = {
        "state": "done",
        "status": int(status),
        "body": body,
        "created_at": None,
        "completed_at": _iso_now(),
        "request_hash": req_hash,
    }
    await r.set(redis_key, json.dumps(payload), ex=DONE_TTL_SEC)


async def idempotency_clear_key(redis_key: str):
    """Release the processing marker so the caller can retry after a failure."""
    r = await get_redis()
    await r.delete(redis_key)


async def run_idempotent(request: Request, *, user_id: str, route_key: str, handler, status: int = 200):
    """Run `handler()` under Idempotency-Key replay.

    `handler` is sync (DB work, outbound HTTP) and returns a pydantic model; it
    runs in the threadpool so it never blocks the event loop.
    """
    pre = await idempotency_precheck(request, user_id=user_id, route_key=route_key)
    if isinstance(pre, JSONResponse):
        return pre
    if pre is None:
        return await run_in_threadpool(handler)

    rkey, req_hash = pre
    try:
        resp = await run_in_threadpool(handler)
    except Exception:
        await idempotency_clear_key(rkey)
        raise
    await idempotency_store_result(rkey, req_hash, status=status, body=resp.model_dump(mode="json"))
    return resp
