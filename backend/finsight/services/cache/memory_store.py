import time
from typing import Callable, Dict, Optional, Tuple

from finsight.services.cache.base import CacheStore


class InMemoryCacheStore(CacheStore):
    """
    Process-local cache store for local development and tests.

    Entries expire lazily on read. The clock is injectable so TTL behaviour
    can be exercised without sleeping.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self.clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._entries[key] = (value, self.clock() + ttl_seconds)

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._entries.pop(key, None) is not None:
                removed += 1
        return removed

    def __len__(self) -> int:
        return len(self._entries)
