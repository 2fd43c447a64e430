"""Fixed-window request throttling over an explicitly keyed TTL store."""
from typing import Callable, Dict, Optional, Tuple
import logging
import time

import redis.asyncio as redis

from app.core.config import settings
from app.core.exceptions import RateLimitError

logger = logging.getLogger(__name__)


class MemoryThrottleStore:
    """In-process counters with TTL eviction, scoped to one application instance"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[int, float]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def increment(self, key: str, ttl_seconds: int) -> Tuple[int, int]:
        """Bump the counter for ``key``; returns (count, seconds until reset)"""
        now = self._clock()
        self._evict(now)

        count, expires_at = self._entries.get(key, (0, now + ttl_seconds))
        count += 1
        self._entries[key] = (count, expires_at)
        return count, max(0, int(expires_at - now))

    def _evict(self, now: float) -> None:
        expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]

    async def close(self) -> None:
        self._entries.clear()


class RedisThrottleStore:
    """Counters shared across instances through Redis INCR + EXPIRE"""

    def __init__(self, client: "redis.Redis"):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisThrottleStore":
        return cls(redis.from_url(url, decode_responses=True))

    async def increment(self, key: str, ttl_seconds: int) -> Tuple[int, int]:
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.ttl(key)
            count, ttl = await pipe.execute()
        # -1 means the key has no expiry yet: first hit in the window
        if int(ttl) < 0:
            await self.client.expire(key, ttl_seconds)
            ttl = ttl_seconds
        return int(count), max(0, int(ttl))

    async def close(self) -> None:
        await self.client.aclose()


class BookingThrottle:
    """Limit how many booking requests one actor may submit per window"""

    def __init__(self, store, limit: int = None, window_seconds: int = None, namespace: str = "throttle"):
        self.store = store
        self.limit = limit if limit is not None else settings.BOOKING_RATE_LIMIT
        self.window_seconds = window_seconds if window_seconds is not None else settings.BOOKING_RATE_WINDOW_SECONDS
        self.namespace = namespace

    async def check(self, actor_key: str, action: str = "create_booking") -> int:
        """Count one request; raises RateLimitError when over budget, else returns remaining"""
        key = f"{self.namespace}:{action}:{actor_key}"
        count, retry_after = await self.store.increment(key, self.window_seconds)
        if count > self.limit:
            logger.info(f"Throttled {action} for {actor_key} ({count}/{self.limit})")
            raise RateLimitError("Too many booking requests, please slow down", retry_after=retry_after)
        return self.limit - count


def create_throttle_store(redis_url: Optional[str] = None):
    url = redis_url if redis_url is not None else settings.REDIS_URL
    if url:
        return RedisThrottleStore.from_url(url)
    return MemoryThrottleStore()
