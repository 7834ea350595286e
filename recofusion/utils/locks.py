# recofusion/utils/locks.py
from __future__ import annotations
from typing import Optional
import asyncio
import uuid

from redis.asyncio import Redis

# Compare-and-delete so a lock that expired and was re-taken is not released by us
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class RedisLock:
    """
    Single-instance SET NX EX lock guarding one embedding computation.
    """
    def __init__(self, redis: Redis, key: str, ttl: int = 20):
        self.redis = redis
        self.key = f"lock:{key}"
        self.ttl = ttl
        self._token: Optional[str] = None

    async def acquire(self) -> bool:
        token = uuid.uuid4().hex
        if await self.redis.set(self.key, token, nx=True, ex=self.ttl):
            self._token = token
            return True
        return False

    async def release(self) -> None:
        if self._token is None:
            return
        await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None

    async def wait(self, timeout: float = 10, interval: float = 0.1) -> bool:
        """Poll until the holder releases; False if it is still held at timeout."""
        for _ in range(int(timeout / interval)):
            if not await self.redis.exists(self.key):
                return True
            await asyncio.sleep(interval)
        return False
