import asyncio

import pytest

from infrastructure.external.cache import InMemoryCache
from infrastructure.webhooks import CacheEventGuard


class Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.mark.asyncio
async def test_ttl_and_nx():
    clock = Clock()
    cache = InMemoryCache(clock=clock)

    assert await cache.set("k", {"v": 1}, ttl=10) is True
    assert await cache.set("k", {"v": 2}, ttl=10, nx=True) is False
    assert await cache.get("k") == {"v": 1}

    clock.now += 11
    assert await cache.get("k") is None
    assert await cache.exists("k") == 0


@pytest.mark.asyncio
async def test_lock_times_out_while_held():
    cache = InMemoryCache()

    async with cache.lock("busy", blocking_timeout=1):
        with pytest.raises(TimeoutError):
            async with cache.lock("busy", blocking_timeout=0.05):
                pass

    # released and cleaned up
    async with cache.lock("busy", blocking_timeout=0.05):
        pass
    assert cache._locks == {}


@pytest.mark.asyncio
async def test_event_guard_marks_processed():
    guard = CacheEventGuard(InMemoryCache(), ttl_seconds=60, lock_timeout_seconds=1)

    async with guard.hold("WH-1"):
        assert await guard.is_processed("WH-1") is False
        await guard.mark_processed("WH-1")

    assert await guard.is_processed("WH-1") is True
    assert await guard.is_processed("WH-2") is False


@pytest.mark.asyncio
async def test_event_guard_serializes_one_event():
    guard = CacheEventGuard(InMemoryCache(), ttl_seconds=60, lock_timeout_seconds=1)
    order = []

    async def worker(name):
        async with guard.hold("WH-1"):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert order == ["a-in", "a-out", "b-in", "b-out"]
