"""
Redis Counter Store
===================
Redis-backed TTL counters using a Lua script for atomic increment-and-expire.
"""

import time
from typing import Callable, Optional

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..errors import StoreError
from ..rate_limit.models import RateWindow
from .base import CounterStore

logger = structlog.get_logger(__name__)

# Lua script for an atomic fixed-window counter in Redis
WINDOW_INCR_SCRIPT = """
local key = KEYS[1]
local ttl = tonumber(ARGV[1])
local now = ARGV[2]

local count = redis.call('HINCRBY', key, 'count', 1)
if count == 1 then
    redis.call('HSET', key, 'start', now)
    redis.call('EXPIRE', key, ttl)
elseif redis.call('TTL', key) < 0 then
    redis.call('EXPIRE', key, ttl)
end

local start = redis.call('HGET', key, 'start') or now
local remaining = redis.call('TTL', key)

return {count, start, remaining}
"""


def _text(value) -> str:
    if isinstance(value, bytes):
        return value.decode()
    return str(value)


class RedisCounterStore(CounterStore):
    """
    Redis-backed counter store.

    Each window is a hash ``{count, start}`` whose key expires at window end.
    """

    name = "redis_counter_store"

    def __init__(self, redis_client, clock: Callable[[], float] = time.time):
        """
        Args:
            redis_client: Async Redis client (``redis.asyncio.Redis``)
            clock: Time source for window start stamps
        """
        self.redis = redis_client
        self._clock = clock
        self._script_sha: Optional[str] = None

    async def _ensure_script(self) -> str:
        """Load Lua script into Redis if needed."""
        if self._script_sha is None:
            self._script_sha = _text(await self.redis.script_load(WINDOW_INCR_SCRIPT))
        return self._script_sha

    async def incr(self, key: str, ttl_seconds: int) -> RateWindow:
        try:
            script_sha = await self._ensure_script()
            count, start, remaining = await self.redis.evalsha(
                script_sha,
                1,
                key,
                ttl_seconds,
                self._clock(),
            )
        except RedisError as e:
            logger.error("Counter increment failed", key=key, error=str(e))
            raise StoreError(f"Counter increment failed: {e}", store=self.name, cause=e)

        return RateWindow(
            key=key,
            count=int(count),
            window_start=float(_text(start)),
            ttl_seconds=max(0, int(remaining)),
        )

    async def get(self, key: str) -> Optional[RateWindow]:
        try:
            data = await self.redis.hgetall(key)
            ttl = await self.redis.ttl(key)
        except RedisError as e:
            logger.error("Counter read failed", key=key, error=str(e))
            raise StoreError(f"Counter read failed: {e}", store=self.name, cause=e)

        if not data:
            return None

        fields = {_text(k): _text(v) for k, v in data.items()}
        return RateWindow(
            key=key,
            count=int(fields.get("count", 0)),
            window_start=float(fields.get("start", self._clock())),
            ttl_seconds=max(0, int(ttl)),
        )

    async def ping(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except RedisError as e:
            raise StoreError(f"Redis ping failed: {e}", store=self.name, cause=e)


def create_redis_client(redis_url: str, socket_timeout: float = 0.3):
    """Create an async Redis client for the counter store."""
    return Redis.from_url(
        redis_url,
        socket_timeout=socket_timeout,
        socket_connect_timeout=socket_timeout,
    )
