"""缓存层对外暴露的接口"""
from .redis_client import (
    RedisClient,
    CacheInterface,
    init_redis_client,
    shutdown_redis_client,
)
from .memory import InMemoryCache


__all__ = [
    "RedisClient",
    "CacheInterface",
    "InMemoryCache",
    "init_redis_client",
    "shutdown_redis_client",
]
