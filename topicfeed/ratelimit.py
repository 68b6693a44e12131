"""Rate limiter and cache that live in the shared store.

Invocations may run in fresh processes, so neither keeps state in memory:
every decision is a read-modify-write of a ``kv_entries`` row under the
database write lock.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from .logging import get_logger
from .storage.database import ContentStore
from .utils import utcnow

logger = get_logger(__name__)


class SharedRateLimiter:
    """Sliding-window rate limiter persisted in the KV table."""

    def __init__(self, store: ContentStore, name: str, max_calls: int, time_window: float):
        """Initialize rate limiter.

        Args:
            store: Content store holding the window
            name: Limiter name, shared by every process using the same key
            max_calls: Maximum calls allowed in time window
            time_window: Time window in seconds
        """
        self.store = store
        self.key = f"ratelimit:{name}"
        self.max_calls = max_calls
        self.time_window = time_window

    async def try_acquire(self, now: datetime | None = None) -> float:
        """Record a call if the window allows it.

        Returns:
            0.0 when the call was recorded, otherwise seconds to wait
        """
        now_ts = (now or utcnow()).timestamp()
        wait = 0.0

        def update(calls: list[float] | None) -> list[float]:
            nonlocal wait
            calls = [t for t in (calls or []) if now_ts - t < self.time_window]
            if len(calls) >= self.max_calls:
                wait = self.time_window - (now_ts - min(calls))
                return calls
            calls.append(now_ts)
            return calls

        await self.store.kv_update(
            self.key,
            update,
            ttl=timedelta(seconds=self.time_window),
            now=now,
        )
        return max(0.0, wait)

    async def acquire(self) -> None:
        """Wait until a call is allowed, then record it."""
        while True:
            wait = await self.try_acquire()
            if wait <= 0:
                return
            logger.debug("Rate limit hit, waiting", limiter=self.key, wait_time=wait)
            await asyncio.sleep(wait)


class SharedCache:
    """JSON value cache with TTL in the KV table."""

    def __init__(self, store: ContentStore, namespace: str, ttl: timedelta):
        self.store = store
        self.namespace = namespace
        self.ttl = ttl

    def _key(self, key: str) -> str:
        return f"cache:{self.namespace}:{key}"

    async def get(self, key: str, now: datetime | None = None) -> Any | None:
        return await self.store.kv_get(self._key(key), now=now)

    async def set(self, key: str, value: Any, now: datetime | None = None) -> None:
        await self.store.kv_set(self._key(key), value, ttl=self.ttl, now=now)

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[Any]],
        now: datetime | None = None,
    ) -> Any:
        """Return the cached value, computing and storing it on a miss."""
        value = await self.get(key, now=now)
        if value is not None:
            return value
        value = await factory()
        await self.set(key, value, now=now)
        return value
