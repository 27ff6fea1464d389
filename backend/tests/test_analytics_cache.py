"""Analytics cache and cache store tests."""
import json

import pytest

from finsight.core.metrics import MetricsEmitter
from finsight.domain.portfolio import Allocation, RiskLevel, RiskSnapshot
from finsight.services.analytics_cache import AnalyticsCache, MetricKind
from finsight.services.cache.memory_store import InMemoryCacheStore
from finsight.services.cache.redis_store import RedisCacheStore


class FakeClock:

    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class CountingStore(InMemoryCacheStore):

    def __init__(self):
        super().__init__()
        self.delete_calls = []

    async def delete(self, *keys):
        self.delete_calls.append(keys)
        return await super().delete(*keys)


class FakeRedis:

    def __init__(self):
        self.data = {}
        self.expiry = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.expiry[key] = ex

    async def delete(self, *keys):
        return sum(1 for key in keys if self.data.pop(key, None) is not None)


# =============================================================================
# Cache stores
# =============================================================================

class TestInMemoryCacheStore:

    @pytest.mark.asyncio
    async def test_entry_expires_after_ttl(self):
        clock = FakeClock()
        store = InMemoryCacheStore(clock)
        await store.set("k", "v", 300)

        clock.now += 299
        assert await store.get("k") == "v"
        clock.now += 1
        assert await store.get("k") is None
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_delete_counts_removed_keys(self):
        store = InMemoryCacheStore()
        await store.set("a", "1", 60)
        await store.set("b", "2", 60)
        assert await store.delete("a", "b", "missing") == 2


class TestRedisCacheStore:

    @pytest.mark.asyncio
    async def test_set_uses_expiry(self):
        client = FakeRedis()
        store = RedisCacheStore(client)
        await store.set("portfolio:o:risk", "{}", 300)
        assert client.expiry["portfolio:o:risk"] == 300
        assert await store.get("portfolio:o:risk") == "{}"

    @pytest.mark.asyncio
    async def test_delete_without_keys(self):
        assert await RedisCacheStore(FakeRedis()).delete() == 0


# =============================================================================
# AnalyticsCache
# =============================================================================

class TestAnalyticsCache:

    @pytest.fixture
    def emitter(self):
        return MetricsEmitter()

    def test_key_format(self, emitter):
        cache = AnalyticsCache(InMemoryCacheStore(), prefix="portfolio:", metrics=emitter)
        assert cache.key("owner-1", MetricKind.RISK) == "portfolio:owner-1:risk"

    @pytest.mark.asyncio
    async def test_read_through_computes_once(self, emitter):
        cache = AnalyticsCache(InMemoryCacheStore(), metrics=emitter)
        calls = []

        async def compute():
            calls.append(1)
            return Allocation(stocks=60, bonds=40)

        first = await cache.get_or_compute("o", MetricKind.ALLOCATION, compute)
        second = await cache.get_or_compute("o", MetricKind.ALLOCATION, compute)

        assert first == second == Allocation(stocks=60, bonds=40)
        assert len(calls) == 1
        summary = emitter.get_summary()
        assert summary["by_event"]["cache/miss"] == 1
        assert summary["by_event"]["cache/hit"] == 1
        assert summary["cache_hit_rate"] == 0.5

    @pytest.mark.asyncio
    async def test_expired_entry_is_recomputed(self, emitter):
        clock = FakeClock()
        cache = AnalyticsCache(InMemoryCacheStore(clock), ttl_seconds=300, metrics=emitter)
        calls = []

        async def compute():
            calls.append(1)
            return RiskSnapshot(volatility=0.12, risk_level=RiskLevel.MODERATE)

        await cache.get_or_compute("o", MetricKind.RISK, compute)
        clock.now += 301
        await cache.get_or_compute("o", MetricKind.RISK, compute)
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_invalidate_deletes_all_kinds_in_one_call(self, emitter):
        store = CountingStore()
        cache = AnalyticsCache(store, metrics=emitter)
        await cache.put("o", MetricKind.ALLOCATION, Allocation(stocks=100))
        await cache.put("o", MetricKind.RISK, RiskSnapshot())
        await cache.put("other", MetricKind.RISK, RiskSnapshot())

        removed = await cache.invalidate("o")

        assert removed == 2
        assert len(store.delete_calls) == 1
        assert set(store.delete_calls[0]) == {cache.key("o", kind) for kind in MetricKind}
        assert await cache.get("other", MetricKind.RISK) == RiskSnapshot()

    @pytest.mark.asyncio
    async def test_unreadable_entry_is_a_miss(self, emitter):
        store = InMemoryCacheStore()
        cache = AnalyticsCache(store, metrics=emitter)
        await store.set(cache.key("o", MetricKind.ALLOCATION), "not json", 300)
        assert await cache.get("o", MetricKind.ALLOCATION) is None

    @pytest.mark.asyncio
    async def test_values_are_json_snapshot_dicts(self, emitter):
        store = InMemoryCacheStore()
        cache = AnalyticsCache(store, metrics=emitter)
        await cache.put("o", MetricKind.ALLOCATION, Allocation(stocks=25, etfs=75))
        raw = await store.get(cache.key("o", MetricKind.ALLOCATION))
        assert json.loads(raw) == {"stocks": 25, "bonds": 0.0, "mutual_funds": 0.0, "etfs": 75}
