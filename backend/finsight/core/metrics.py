"""
Metrics emission system for observability.

Provides structured metrics for:
- Analytics cache hits, misses and invalidations
- Price refresh outcomes (per holding and per batch)
- Risk classification results

Metrics are emitted to:
1. Python logging (immediate visibility)
2. Redis stream (real-time consumers, dashboard)
3. In-memory buffer (API aggregation)
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List

from finsight.core.redis import StreamNames

logger = logging.getLogger(__name__)


@dataclass
class MetricEvent:
    """Structured metric event."""
    timestamp: datetime
    category: str          # "cache", "refresh", "risk"
    event_type: str        # "hit", "price_failed", "classified", etc.
    owner_id: Optional[str]
    value: float
    symbol: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "category": self.category,
            "event_type": self.event_type,
            "owner_id": self.owner_id,
            "symbol": self.symbol,
            "value": self.value,
            "metadata": self.metadata
        }


class MetricsEmitter:
    """
    Emit structured metrics to multiple destinations.

    Safe to share across coroutines: the buffer is only touched between awaits.
    """

    CATEGORY_CACHE = "cache"
    CATEGORY_REFRESH = "refresh"
    CATEGORY_RISK = "risk"

    def __init__(self, redis_client=None, buffer_size: int = 1000):
        """
        Initialize metrics emitter.

        Args:
            redis_client: Optional async Redis client for stream publishing
            buffer_size: Max events to keep in memory buffer
        """
        self.redis = redis_client
        self.buffer_size = buffer_size
        self._buffer: List[MetricEvent] = []
        self._enabled = True

    def set_redis(self, redis_client) -> None:
        """Set Redis client (for lazy initialization)."""
        self.redis = redis_client

    def enable(self) -> None:
        """Enable metrics emission."""
        self._enabled = True

    def disable(self) -> None:
        """Disable metrics emission (for testing)."""
        self._enabled = False

    def _record(
        self,
        category: str,
        event_type: str,
        value: float,
        owner_id: Optional[str],
        symbol: Optional[str],
        metadata: Optional[dict],
    ) -> MetricEvent:
        event = MetricEvent(
            timestamp=datetime.now(timezone.utc),
            category=category,
            event_type=event_type,
            owner_id=owner_id,
            symbol=symbol,
            value=value,
            metadata=metadata or {}
        )

        meta_str = f" {metadata}" if metadata else ""
        logger.debug(
            f"METRIC [{category}/{event_type}] "
            f"owner={owner_id} symbol={symbol} value={value}{meta_str}"
        )

        self._buffer.append(event)
        if len(self._buffer) > self.buffer_size:
            self._buffer = self._buffer[-self.buffer_size:]
        return event

    async def emit(
        self,
        category: str,
        event_type: str,
        value: float,
        owner_id: str = None,
        symbol: str = None,
        metadata: dict = None
    ) -> Optional[MetricEvent]:
        """
        Emit a metric event.

        Args:
            category: Event category (cache, refresh, risk)
            event_type: Specific event type within category
            value: Numeric value (1.0/0.0 for boolean, actual value for numeric)
            owner_id: Portfolio owner the event relates to
            symbol: Optional instrument symbol
            metadata: Additional context as key-value pairs

        Returns:
            The emitted MetricEvent, or None when disabled
        """
        if not self._enabled:
            return None

        event = self._record(category, event_type, value, owner_id, symbol, metadata)

        if self.redis:
            try:
                await self.redis.xadd(StreamNames.METRICS, {
                    "data": json.dumps(event.to_dict())
                })
            except Exception as e:
                logger.warning(f"Failed to publish metric to Redis: {e}")

        return event

    # =========================================================================
    # Convenience methods for common metrics
    # =========================================================================

    async def cache_hit(self, owner_id: str, kind: str) -> Optional[MetricEvent]:
        """Record an analytics cache hit."""
        return await self.emit(self.CATEGORY_CACHE, "hit", 1.0, owner_id=owner_id,
                               metadata={"kind": kind})

    async def cache_miss(self, owner_id: str, kind: str) -> Optional[MetricEvent]:
        """Record an analytics cache miss (recompute)."""
        return await self.emit(self.CATEGORY_CACHE, "miss", 1.0, owner_id=owner_id,
                               metadata={"kind": kind})

    async def cache_invalidated(self, owner_id: str, keys: int) -> Optional[MetricEvent]:
        """Record invalidation of an owner's cached snapshots."""
        return await self.emit(self.CATEGORY_CACHE, "invalidated", keys, owner_id=owner_id)

    async def price_refresh_failed(self, owner_id: str, symbol: str, reason: str) -> Optional[MetricEvent]:
        """Record a single holding whose price could not be refreshed."""
        return await self.emit(self.CATEGORY_REFRESH, "price_failed", 1.0,
                               owner_id=owner_id, symbol=symbol,
                               metadata={"reason": reason})

    async def refresh_batch_processed(self, owner_id: str, batch: int, count: int,
                                      success: int, failed: int,
                                      duration_ms: float) -> Optional[MetricEvent]:
        """Record price refresh batch completion."""
        return await self.emit(
            self.CATEGORY_REFRESH, "batch_processed", count,
            owner_id=owner_id,
            metadata={
                "batch": batch,
                "success": success,
                "failed": failed,
                "duration_ms": round(duration_ms, 2)
            }
        )

    async def risk_classified(self, owner_id: str, risk_level: str, score: float) -> Optional[MetricEvent]:
        """Record a risk classification."""
        return await self.emit(self.CATEGORY_RISK, "classified", round(score, 6),
                               owner_id=owner_id, metadata={"risk_level": risk_level})

    # =========================================================================
    # Aggregation methods
    # =========================================================================

    def get_buffer(self) -> List[MetricEvent]:
        """Get buffered events (for API)."""
        return list(self._buffer)

    def get_summary(self, hours: int = 24) -> dict:
        """
        Get aggregated summary of recent metrics.

        Args:
            hours: How many hours of data to include

        Returns:
            Dictionary with aggregated metrics
        """
        cutoff = datetime.now(timezone.utc) - timedelta(hours=hours)
        recent = [e for e in self._buffer if e.timestamp >= cutoff]

        by_category: Dict[str, int] = {}
        by_event: Dict[str, int] = {}
        for event in recent:
            by_category[event.category] = by_category.get(event.category, 0) + 1
            key = f"{event.category}/{event.event_type}"
            by_event[key] = by_event.get(key, 0) + 1

        hits = by_event.get("cache/hit", 0)
        misses = by_event.get("cache/miss", 0)

        return {
            "period_hours": hours,
            "total_events": len(recent),
            "by_category": by_category,
            "by_event": by_event,
            "cache_hit_rate": hits / (hits + misses) if (hits + misses) > 0 else None,
            "price_failures": by_event.get("refresh/price_failed", 0),
        }

    def clear_buffer(self) -> int:
        """Clear buffer and return count of cleared events."""
        count = len(self._buffer)
        self._buffer = []
        return count


# Global singleton instance
metrics = MetricsEmitter()
