from abc import ABC, abstractmethod
from typing import Optional


class CacheStore(ABC):
    """
    Key/value store with per-key TTL.

    Values are replaced wholesale on set, never mutated in place, so callers
    need no locking around get/set/delete.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None when absent or expired."""
        pass

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store a value that expires after ttl_seconds."""
        pass

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """Delete keys in one operation; returns how many existed."""
        pass
