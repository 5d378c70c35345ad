"""
Event guard on top of the cache backend: a per-event lock serializes
concurrent deliveries, a marker with TTL remembers processed events.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator

from infrastructure.external.cache import CacheInterface


class CacheEventGuard:
    KEY_PREFIX = "webhook-event"

    def __init__(self, cache: CacheInterface, *, ttl_seconds: int, lock_timeout_seconds: int):
        self._cache = cache
        self._ttl = ttl_seconds
        self._lock_timeout = lock_timeout_seconds

    @asynccontextmanager
    async def hold(self, event_id: str) -> AsyncIterator[None]:
        async with self._cache.lock(
            f"{self.KEY_PREFIX}:{event_id}",
            timeout=self._lock_timeout,
            blocking_timeout=self._lock_timeout,
        ):
            yield

    async def is_processed(self, event_id: str) -> bool:
        return await self._cache.exists(f"{self.KEY_PREFIX}:done:{event_id}") > 0

    async def mark_processed(self, event_id: str) -> None:
        await self._cache.set(
            f"{self.KEY_PREFIX}:done:{event_id}",
            datetime.now(timezone.utc).isoformat(),
            ttl=self._ttl,
        )
