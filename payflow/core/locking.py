"""Distributed run lease: keep two processes from sweeping at the same time.

The in-process re-entrancy guard lives in the reconciler scheduler; this lease
only matters when several API replicas each run their own scheduler.
"""

import uuid

import redis.asyncio as redis
import structlog
from redis.exceptions import WatchError

logger = structlog.get_logger(__name__)


class RunLease:
    """Owner-tagged Redis lease with TTL (SET NX EX).

    Renewal and release only touch the key while it still holds this owner's
    token, checked under WATCH so an expiry in between aborts the write.
    """

    LEASE_PREFIX = "payflow:lease:"

    def __init__(self, redis_client: redis.Redis, name: str, ttl: int = 900):
        self.redis = redis_client
        self.key = f"{self.LEASE_PREFIX}{name}"
        self.ttl = ttl
        self.owner = uuid.uuid4().hex

    async def acquire(self) -> bool:
        """Return True if this owner now holds the lease."""
        if await self.redis.set(self.key, self.owner, nx=True, ex=self.ttl):
            return True
        # Already ours from an earlier tick: extend it
        return await self._while_owned(lambda pipe: pipe.expire(self.key, self.ttl))

    async def release(self) -> bool:
        """Release the lease if we still own it. Returns False otherwise."""
        released = await self._while_owned(lambda pipe: pipe.delete(self.key))
        if not released:
            logger.info("lease_not_released", key=self.key, reason="not_owner")
        return released

    async def _while_owned(self, queue_write) -> bool:
        async with self.redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(self.key)
                if await pipe.get(self.key) != self.owner:
                    return False
                pipe.multi()
                queue_write(pipe)
                await pipe.execute()
                return True
            except WatchError:
                return False
