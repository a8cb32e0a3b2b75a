"""
Redis caching layer.

Usage:
    from core.cache import RedisCache, CacheKeys, build_client

    cache = RedisCache(build_client())
    cache.set(CacheKeys.task(task_id), data, ttl=CacheKeys.TTL_TASK, namespace=CacheKeys.NS_TASKS)
    data = cache.get(CacheKeys.task(task_id), namespace=CacheKeys.NS_TASKS)

There is no module-level cache instance: the API and the workers each
build one and pass it to the services that need it.
"""

from core.cache.cache_keys import CacheKeys
from core.cache.redis_client import CacheStats, RedisCache, SetMode, build_client

__all__ = [
    "RedisCache",
    "CacheStats",
    "CacheKeys",
    "SetMode",
    "build_client",
]
