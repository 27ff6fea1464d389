"""
Analytics Cache.

Read-through / write-through memoization of portfolio snapshots, keyed by
(owner, metric kind) with a fixed TTL. Any holding mutation invalidates all
of an owner's entries together.

Concurrent cold misses for the same key each recompute independently;
computation is read-only over fetched holdings, so this costs throughput,
not correctness.
"""
import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from finsight.core.metrics import MetricsEmitter, metrics as default_metrics
from finsight.domain.portfolio import (
    Allocation,
    Performance,
    Portfolio,
    RebalanceStatus,
    RiskSnapshot,
)
from finsight.services.cache.base import CacheStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MetricKind(str, Enum):
    ALLOCATION = "allocation"
    PERFORMANCE = "performance"
    RISK = "risk"
    REBALANCE = "rebalance"
    PORTFOLIO = "portfolio"


CODECS: Dict[MetricKind, Any] = {
    MetricKind.ALLOCATION: Allocation,
    MetricKind.PERFORMANCE: Performance,
    MetricKind.RISK: RiskSnapshot,
    MetricKind.REBALANCE: RebalanceStatus,
    MetricKind.PORTFOLIO: Portfolio,
}


class AnalyticsCache:
    """Owner-scoped snapshot cache over an injected CacheStore."""

    def __init__(
        self,
        store: CacheStore,
        ttl_seconds: int = 300,
        prefix: str = "portfolio:",
        metrics: MetricsEmitter = None,
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix
        self.metrics = metrics or default_metrics

    def key(self, owner_id: str, kind: MetricKind) -> str:
        return f"{self.prefix}{owner_id}:{MetricKind(kind).value}"

    async def get(self, owner_id: str, kind: MetricKind) -> Optional[Any]:
        """Cached snapshot, or None on a miss (absent, expired or unreadable)."""
        raw = await self.store.get(self.key(owner_id, kind))
        if raw is None:
            return None
        try:
            return CODECS[kind].from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable cache entry {self.key(owner_id, kind)}: {e}")
            return None

    async def put(self, owner_id: str, kind: MetricKind, snapshot: Any) -> None:
        """Write a snapshot through to the store."""
        await self.store.set(
            self.key(owner_id, kind),
            json.dumps(snapshot.to_dict()),
            self.ttl_seconds,
        )

    async def get_or_compute(
        self,
        owner_id: str,
        kind: MetricKind,
        compute: Callable[[], Awaitable[T]],
    ) -> T:
        """Return the cached snapshot, or compute, store and return it."""
        cached = await self.get(owner_id, kind)
        if cached is not None:
            await self.metrics.cache_hit(owner_id, kind.value)
            logger.debug(f"Cache hit for {kind.value} of {owner_id}")
            return cached

        await self.metrics.cache_miss(owner_id, kind.value)
        snapshot = await compute()
        await self.put(owner_id, kind, snapshot)
        return snapshot

    async def invalidate(self, owner_id: str) -> int:
        """Delete every cached snapshot of an owner in one store call."""
        keys = [self.key(owner_id, kind) for kind in MetricKind]
        removed = await self.store.delete(*keys)
        await self.metrics.cache_invalidated(owner_id, removed)
        logger.debug(f"Invalidated {removed} cached snapshots for {owner_id}")
        return removed
