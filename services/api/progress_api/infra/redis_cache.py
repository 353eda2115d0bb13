import json
import logging

from redis.exceptions import RedisError

from progress_api.infra.redis_client import get_sync_redis

logger = logging.getLogger("progress_api.cache")


def get_or_set_json_sync(key: str, ttl_sec: int, compute_func):
    """Return (value, cache_hit). A cache outage falls through to compute_func."""
    if ttl_sec <= 0:
        return compute_func(), False

    r = get_sync_redis()
    try:
        raw = r.get(key)
    except RedisError as e:
        logger.warning(f"Cache read failed for {key}: {e}")
        return compute_func(), False
    if raw:
        return json.loads(raw), True

    val = compute_func()
    try:
        r.set(key, json.dumps(val), ex=ttl_sec)
    except RedisError as e:
        logger.warning(f"Cache write failed for {key}: {e}")
    return val, False

