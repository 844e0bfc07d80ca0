"""Shared Redis client used for the reconciler run lease."""

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from payflow.core.config import get_settings

logger = structlog.get_logger(__name__)

_redis: redis.Redis | None = None


async def init_redis(url: str | None = None) -> bool:
    """Connect the shared Redis client.

    Redis is optional for the payment engine: without it the reconciler falls
    back to its in-process guard only. Returns True when connected.
    """
    global _redis

    if _redis is not None:
        return True

    redis_url = url if url is not None else get_settings().redis_url
    if not redis_url:
        logger.info("redis_disabled", reason="no_redis_url")
        return False

    client = redis.from_url(redis_url, encoding="utf-8", decode_responses=True)
    try:
        await client.ping()
    except (RedisError, OSError) as exc:
        logger.warning("redis_unavailable", error=str(exc), error_type=type(exc).__name__)
        await client.aclose()
        return False

    _redis = client
    return True


async def close_redis() -> None:
    global _redis

    if _redis is not None:
        await _redis.aclose()
        _redis = None


def get_redis() -> redis.Redis | None:
    """Return the shared client, or None when Redis is not configured."""
    return _redis
