"""
Redis connection management.

Provides the shared async Redis client used by the analytics cache and
the metrics stream.
"""

from typing import Optional
from redis.asyncio import Redis as AsyncRedis
from finsight.core.config import settings

# Async Redis client (for API requests and refresh tasks)
async_redis_client: Optional[AsyncRedis] = None


def get_async_redis() -> AsyncRedis:
    """Get async Redis client."""
    global async_redis_client
    if async_redis_client is None:
        async_redis_client = AsyncRedis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
        )
    return async_redis_client


async def close_redis() -> None:
    """Close Redis connections."""
    global async_redis_client

    if async_redis_client is not None:
        await async_redis_client.close()
        async_redis_client = None


# Redis Stream Names
class StreamNames:
    """Redis Stream names used for observability."""

    METRICS = "metrics"
