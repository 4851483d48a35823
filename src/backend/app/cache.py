import json
import logging
import time
from typing import Any, Optional
import redis

from .config import redis_url

logger = logging.getLogger(__name__)

_mem: dict[str, dict[str, Any]] = {}
_client_singleton: Optional[redis.Redis] = None
_last_sweep = 0.0
_SWEEP_INTERVAL_SECONDS = 60


def _client() -> Optional[redis.Redis]:
    global _client_singleton
    if _client_singleton is not None:
        return _client_singleton
    url = redis_url()
    if not url:
        return None
    try:
        _client_singleton = redis.Redis.from_url(url, decode_responses=True)
    except (ValueError, redis.RedisError):
        logger.warning("redis_client_init_failed", exc_info=True)
        _client_singleton = None
    return _client_singleton


def _sweep_expired(now: float) -> None:
    """Drop expired in-memory entries; rate-limit buckets are never read again once their minute is over."""
    global _last_sweep
    if now - _last_sweep < _SWEEP_INTERVAL_SECONDS:
        return
    _last_sweep = now
    for key in [k for k, v in _mem.items() if v.get("exp", 0) <= now]:
        _mem.pop(key, None)


def cache_get(key: str) -> Optional[Any]:
    c = _client()
    if c:
        try:
            v = c.get(key)
            return json.loads(v) if v else None
        except redis.RedisError:
            logger.warning("cache_get_failed", extra={"key": key}, exc_info=True)
    v = _mem.get(key)
    if v and v.get("exp", 0) > time.time():
        return v.get("val")
    _mem.pop(key, None)
    return None


def cache_set(key: str, val: Any, ttl: int = 60) -> None:
    c = _client()
    s = json.dumps(val)
    if c:
        try:
            c.setex(key, ttl, s)
            return
        except redis.RedisError:
            logger.warning("cache_set_failed", extra={"key": key}, exc_info=True)
    now = time.time()
    _sweep_expired(now)
    _mem[key] = {"val": val, "exp": now + ttl}


def cache_del(key: str) -> None:
    c = _client()
    if c:
        try:
            c.delete(key)
        except redis.RedisError:
            logger.warning("cache_del_failed", extra={"key": key}, exc_info=True)
    _mem.pop(key, None)


def cache_pop(key: str) -> Optional[Any]:
    """Read and delete in one step; used for single-use OAuth state markers."""
    val = cache_get(key)
    if val is not None:
        cache_del(key)
    return val


def cache_incr(key: str, by: int = 1, expire_seconds: int = 86400) -> int:
    """Increment an integer counter with TTL. Returns the new value."""
    c = _client()
    if c:
        try:
            v = c.incrby(key, by)
            # Ensure TTL set at least once
            if c.ttl(key) < 0:
                c.expire(key, expire_seconds)
            return int(v)
        except redis.RedisError:
            logger.warning("cache_incr_failed", extra={"key": key}, exc_info=True)
    cur = 0
    now = time.time()
    _sweep_expired(now)
    entry = _mem.get(key)
    if entry and entry.get("exp", 0) > now:
        cur = int(entry.get("val") or 0)
    cur += by
    # an existing counter keeps its window
    exp = entry["exp"] if entry and entry.get("exp", 0) > now else now + expire_seconds
    _mem[key] = {"val": cur, "exp": exp}
    return cur


def backend_name() -> str:
    return "redis" if _client() is not None else "memory"
