import logging
from typing import Optional

from redis.asyncio import Redis

from finsight.services.cache.base import CacheStore

logger = logging.getLogger(__name__)


class RedisCacheStore(CacheStore):
    """Cache store backed by Redis string keys with EX expiry."""

    def __init__(self, client: Redis):
        self.client = client

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self.client.set(key, value, ex=ttl_seconds)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        # DEL with several keys is a single atomic command
        return int(await self.client.delete(*keys))
