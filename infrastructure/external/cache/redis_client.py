"""
统一的Redis客户端实现 - 键值缓存与分布式锁
"""
from __future__ import annotations

import asyncio
import json
import socket
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from core.config import settings
from core.logging_config import get_logger

logger = get_logger(__name__)


# ============= 缓存接口 =============

class CacheInterface(ABC):
    """缓存抽象接口"""

    @abstractmethod
    async def get(self, key: str, default: Any = None) -> Any:
        """获取缓存值"""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """设置缓存值"""
        pass

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """删除一个或多个键，返回删除的数量"""
        pass

    @abstractmethod
    async def exists(self, *keys: str) -> int:
        """判断一个或多个键是否存在，返回存在的数量"""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """后端是否可用"""
        pass

    @abstractmethod
    def lock(self, key: str, timeout: int = 10, blocking_timeout: int = 5):
        """互斥锁上下文管理器，获取超时抛出 TimeoutError"""
        pass


# ============= 主Redis客户端类 =============

class RedisClient(CacheInterface):
    """
    Redis 客户端

    特性:
    - 自动序列化/反序列化（JSON）
    - 命名空间隔离
    - 分布式锁支持
    - Redis 故障时读返回默认值、写返回 False，不向调用方抛出
    """

    def __init__(
        self,
        client: aioredis.Redis,
        namespace: str = "",
        default_ttl: Optional[int] = None,
        serializer: Optional[Callable] = None,
        deserializer: Optional[Callable] = None
    ):
        self._client = client
        self._namespace = namespace.strip(":")
        self._default_ttl = default_ttl
        self._serializer = serializer or self._default_serializer
        self._deserializer = deserializer or self._default_deserializer

    # ============= 工具方法 =============

    def _format_key(self, key: str) -> str:
        """格式化键名，添加命名空间前缀"""
        if not self._namespace:
            return key
        return f"{self._namespace}:{key}"

    def _default_serializer(self, value: Any) -> str:
        """默认序列化方法"""
        if isinstance(value, (str, int, float)):
            return str(value)
        try:
            return json.dumps(value, default=str, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            logger.error("cache_serialize_failed", error=str(e))
            raise

    def _default_deserializer(self, value: Optional[str]) -> Any:
        """默认反序列化方法"""
        if value is None:
            return None
        try:
            return json.loads(value)
        except (TypeError, ValueError):
            return value

    # ============= String 操作 =============

    async def get(self, key: str, default: Any = None) -> Any:
        """获取字符串值"""
        formatted_key = self._format_key(key)
        try:
            value = await self._client.get(formatted_key)
            if value is None:
                logger.debug("cache_miss", key=formatted_key)
                return default
            return self._deserializer(value)
        except RedisError as e:
            logger.error("cache_get_failed", key=formatted_key, error=str(e))
            return default

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
        nx: bool = False,  # 仅当key不存在时设置
    ) -> bool:
        """设置字符串值"""
        formatted_key = self._format_key(key)
        try:
            payload = self._serializer(value)
            expire = ttl if ttl is not None else self._default_ttl
            result = await self._client.set(
                formatted_key,
                payload,
                ex=expire if expire and expire > 0 else None,
                nx=nx,
            )
            return bool(result)
        except RedisError as e:
            logger.error("cache_set_failed", key=formatted_key, error=str(e))
            return False

    # ============= 通用操作 =============

    async def delete(self, *keys: str) -> int:
        """删除键"""
        formatted_keys = [self._format_key(k) for k in keys]
        try:
            return await self._client.delete(*formatted_keys)
        except RedisError as e:
            logger.error("cache_delete_failed", error=str(e))
            return 0

    async def exists(self, *keys: str) -> int:
        """检查键是否存在"""
        formatted_keys = [self._format_key(k) for k in keys]
        try:
            return await self._client.exists(*formatted_keys)
        except RedisError as e:
            logger.error("cache_exists_failed", error=str(e))
            return 0

    # ============= 高级功能 =============

    @asynccontextmanager
    async def lock(
        self,
        key: str,
        timeout: int = 10,
        blocking_timeout: int = 5,
    ) -> AsyncIterator[Any]:
        """
        分布式锁上下文管理器

        Args:
            key: 锁的键名
            timeout: 锁的超时时间（秒），持有者崩溃后自动释放
            blocking_timeout: 获取锁的等待时间（秒）
        """
        lock_key = f"lock:{self._format_key(key)}"
        lock = self._client.lock(
            lock_key,
            timeout=timeout,
            blocking_timeout=blocking_timeout,
            thread_local=False,
        )

        acquired = await lock.acquire()
        if not acquired:
            raise TimeoutError(f"获取锁失败: {lock_key}")
        try:
            yield lock
        finally:
            try:
                await lock.release()
            except RedisError as e:
                logger.error("lock_release_failed", key=lock_key, error=str(e))

    async def health_check(self) -> bool:
        """健康检查"""
        try:
            return await self._client.ping()
        except RedisError as e:
            logger.error("redis_health_check_failed", error=str(e))
            return False


# ============= 全局实例管理 =============

_redis_client: Optional[aioredis.Redis] = None
_cache_instance: Optional[RedisClient] = None
_lock = asyncio.Lock()


async def init_redis_client(namespace: Optional[str] = None, **kwargs) -> RedisClient:
    """
    初始化Redis客户端

    Args:
        namespace: 命名空间，默认取 settings.redis.namespace
        **kwargs: 其他Redis连接参数

    Returns:
        RedisClient实例
    """
    global _redis_client, _cache_instance

    if _cache_instance is not None:
        return _cache_instance

    async with _lock:
        if _cache_instance is not None:
            return _cache_instance

        if not settings.redis.url:
            raise RuntimeError("REDIS__URL 未配置，无法初始化Redis客户端")

        # 构建跨平台 keepalive 选项（若可用）
        keepalive_opts = {}
        if hasattr(socket, "TCP_KEEPIDLE") and hasattr(socket, "TCP_KEEPINTVL") and hasattr(socket, "TCP_KEEPCNT"):
            keepalive_opts = {
                socket.TCP_KEEPIDLE: 1,
                socket.TCP_KEEPINTVL: 1,
                socket.TCP_KEEPCNT: 3,
            }

        client = aioredis.from_url(
            settings.redis.url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=settings.redis.max_connections,
            socket_keepalive=True,
            socket_keepalive_options=keepalive_opts,
            **kwargs
        )

        try:
            await client.ping()
        except RedisError as e:
            logger.error("redis_init_failed", error=str(e))
            await client.aclose()
            raise

        _redis_client = client
        _cache_instance = RedisClient(
            client=client,
            namespace=namespace or settings.redis.namespace,
            default_ttl=settings.redis.default_ttl,
        )
        logger.info("redis_initialized", namespace=namespace or settings.redis.namespace)
        return _cache_instance


async def shutdown_redis_client() -> None:
    """关闭Redis连接"""
    global _redis_client, _cache_instance

    if _redis_client is not None:
        try:
            await _redis_client.aclose()
            logger.info("redis_closed")
        except RedisError as e:
            logger.error("redis_close_failed", error=str(e))
        finally:
            _redis_client = None
            _cache_instance = None
