from typing import Dict, Type
from finsight.services.cache.base import CacheStore
from finsight.services.cache.memory_store import InMemoryCacheStore
from finsight.services.cache.redis_store import RedisCacheStore
from finsight.core.config import settings

STORES: Dict[str, Type[CacheStore]] = {
    "redis": RedisCacheStore,
    "memory": InMemoryCacheStore,
}


def get_cache_store(name: str = None) -> CacheStore:
    """Factory to get the configured cache store."""
    name = name or settings.CACHE_BACKEND
    if name not in STORES:
        raise ValueError(f"Unknown cache backend: {name}")

    if name == "redis":
        from finsight.core.redis import get_async_redis
        return RedisCacheStore(get_async_redis())
    return STORES[name]()
