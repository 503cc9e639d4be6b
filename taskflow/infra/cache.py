from __future__ import annotations

import os
from functools import lru_cache

import structlog
from redis import Redis
from redis.exceptions import RedisError

REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
REDIS_TIMEOUT_S = float(os.getenv("REDIS_TIMEOUT_S", "2"))
TASK_CACHE_KEY = os.getenv("TASK_CACHE_KEY", "tasks")

log = structlog.get_logger(__name__)


@lru_cache(maxsize=1)
def get_redis() -> Redis:
    return Redis.from_url(
        REDIS_URL,
        decode_responses=True,
        socket_timeout=REDIS_TIMEOUT_S,
        socket_connect_timeout=REDIS_TIMEOUT_S,
    )


def check_redis_ready() -> bool:
    try:
        return bool(get_redis().ping())
    except Exception:
        return False


def invalidate_cache(pattern: str | None = None) -> int:
    """Delete keys matching ``pattern`` (default: every task key). Never raises."""
    match = pattern or f"{TASK_CACHE_KEY}*"
    deleted = 0
    try:
        client = get_redis()
        batch: list[str] = []
        for key in client.scan_iter(match=match, count=500):
            batch.append(key)
            if len(batch) >= 500:
                deleted += int(client.delete(*batch))
                batch.clear()
        if batch:
            deleted += int(client.delete(*batch))
    except (RedisError, OSError) as exc:
        log.warning("cache_invalidation_failed", pattern=match, error=str(exc))
        return deleted
    log.debug("cache_invalidated", pattern=match, deleted=deleted)
    return deleted
