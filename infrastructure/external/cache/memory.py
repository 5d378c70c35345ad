"""
进程内缓存实现（未配置 Redis 时 / 测试）

与 RedisClient 同一接口；锁按键维护 asyncio.Lock，仅在单进程内互斥。
"""
from __future__ import annotations

import asyncio
import copy
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Optional

from .redis_client import CacheInterface


class InMemoryCache(CacheInterface):
    def __init__(self, default_ttl: Optional[int] = None, clock: Callable[[], float] = time.monotonic):
        self._default_ttl = default_ttl
        self._clock = clock
        self._data: dict[str, tuple[Any, Optional[float]]] = {}
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}

    def _alive(self, key: str) -> bool:
        entry = self._data.get(key)
        if entry is None:
            return False
        _, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return False
        return True

    async def get(self, key: str, default: Any = None) -> Any:
        if not self._alive(key):
            return default
        # 返回副本，调用方修改不影响缓存
        return copy.deepcopy(self._data[key][0])

    async def set(self, key: str, value: Any, ttl: Optional[int] = None, nx: bool = False) -> bool:
        if nx and self._alive(key):
            return False
        expire = ttl if ttl is not None else self._default_ttl
        expires_at = self._clock() + expire if expire and expire > 0 else None
        self._data[key] = (copy.deepcopy(value), expires_at)
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._alive(key):
                del self._data[key]
                removed += 1
        return removed

    async def exists(self, *keys: str) -> int:
        return sum(1 for key in keys if self._alive(key))

    async def health_check(self) -> bool:
        return True

    @asynccontextmanager
    async def lock(self, key: str, timeout: int = 10, blocking_timeout: int = 5) -> AsyncIterator[None]:
        lock, users = self._locks.get(key, (asyncio.Lock(), 0))
        self._locks[key] = (lock, users + 1)
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=blocking_timeout)
            except asyncio.TimeoutError as exc:
                raise TimeoutError(f"获取锁失败: {key}") from exc
            try:
                yield None
            finally:
                lock.release()
        finally:
            # 最后一个使用者离开时回收锁
            lock, users = self._locks[key]
            if users <= 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, users - 1)
