"""Settings and metrics emitter tests."""
import pytest

from finsight.core.config import Settings
from finsight.core.metrics import MetricsEmitter
from finsight.domain.portfolio import Allocation
from finsight.services.risk_calculator import RiskPolicy


class TestSettings:

    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.ANALYTICS_CACHE_TTL_SECONDS == 300
        assert settings.PRICE_REFRESH_BATCH_SIZE == 100
        assert settings.RISK_LOOKBACK_DAYS == 30
        assert settings.RISK_FREE_RATE == 0.02
        assert settings.PRICE_FETCH_MAX_RETRIES == 3

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("RISK_LOOKBACK_DAYS", "60")
        monkeypatch.setenv("CACHE_BACKEND", "memory")
        settings = Settings(_env_file=None)
        assert settings.RISK_LOOKBACK_DAYS == 60
        assert settings.CACHE_BACKEND == "memory"

    def test_risk_policy_from_settings(self):
        settings = Settings(_env_file=None, RISK_THRESHOLD_LOW=0.02)
        policy = settings.risk_policy()
        assert isinstance(policy, RiskPolicy)
        assert policy.threshold_low == 0.02
        assert policy.weight_volatility == 0.4

    def test_default_target_allocation(self):
        target = Settings(_env_file=None).default_target_allocation()
        assert target == Allocation(stocks=60, bonds=30, mutual_funds=5, etfs=5)


class FakeRedisStream:

    def __init__(self, fail=False):
        self.entries = []
        self.fail = fail

    async def xadd(self, stream, fields):
        if self.fail:
            raise ConnectionError("redis down")
        self.entries.append((stream, fields))


class TestMetricsEmitter:

    @pytest.mark.asyncio
    async def test_emit_buffers_and_publishes(self):
        redis = FakeRedisStream()
        emitter = MetricsEmitter(redis_client=redis)

        event = await emitter.risk_classified("owner-1", "HIGH", 0.12)

        assert event.category == "risk"
        assert emitter.get_buffer() == [event]
        assert redis.entries[0][0] == "metrics"

    @pytest.mark.asyncio
    async def test_redis_failure_does_not_raise(self):
        emitter = MetricsEmitter(redis_client=FakeRedisStream(fail=True))
        assert await emitter.cache_miss("owner-1", "risk") is not None

    @pytest.mark.asyncio
    async def test_disabled_emitter_records_nothing(self):
        emitter = MetricsEmitter()
        emitter.disable()
        assert await emitter.cache_hit("owner-1", "risk") is None
        assert emitter.get_buffer() == []

    @pytest.mark.asyncio
    async def test_buffer_is_bounded(self):
        emitter = MetricsEmitter(buffer_size=3)
        for _ in range(5):
            await emitter.cache_hit("owner-1", "allocation")
        assert len(emitter.get_buffer()) == 3
        assert emitter.clear_buffer() == 3

    @pytest.mark.asyncio
    async def test_summary(self):
        emitter = MetricsEmitter()
        await emitter.cache_hit("o", "risk")
        await emitter.cache_miss("o", "risk")
        await emitter.cache_miss("o", "allocation")
        await emitter.price_refresh_failed("o", "BAD", "timeout")
        await emitter.refresh_batch_processed("o", batch=0, count=5, success=4, failed=1,
                                              duration_ms=12.345)

        summary = emitter.get_summary(hours=1)

        assert summary["total_events"] == 5
        assert summary["by_category"] == {"cache": 3, "refresh": 2}
        assert summary["cache_hit_rate"] == pytest.approx(1 / 3)
        assert summary["price_failures"] == 1
