import asyncio
from contextlib import asynccontextmanager
from typing import Dict
import logging

from app.core.config import settings
from app.core.exceptions import TransientStorageError

logger = logging.getLogger(__name__)


class KeyedLockRegistry:
    """Per-key asyncio locks, owned by the application instance.

    Entries are dropped once no coroutine holds or waits on them, so the
    registry only grows with the number of keys in flight.
    """

    def __init__(self, timeout: float = None):
        self.timeout = timeout if timeout is not None else settings.LOCK_TIMEOUT_SECONDS
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            acquire = asyncio.ensure_future(lock.acquire())
            try:
                done, _ = await asyncio.wait({acquire}, timeout=self.timeout)
            except asyncio.CancelledError:
                self._abandon(lock, acquire)
                raise
            if not done:
                self._abandon(lock, acquire)
                logger.warning(f"Timed out waiting for lock {key}")
                raise TransientStorageError("Resource is busy, please retry")
            try:
                yield
            finally:
                lock.release()
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                self._waiters.pop(key, None)
                self._locks.pop(key, None)

    @staticmethod
    def _abandon(lock: asyncio.Lock, acquire: asyncio.Future) -> None:
        # The grant can land in the same loop turn as the timeout or cancellation
        if acquire.done() and not acquire.cancelled():
            lock.release()
        else:
            acquire.cancel()
