import asyncio
from typing import Dict, Iterable, List, Optional

import pandas as pd
import pytest

from finsight.core.exceptions import InvalidInputError, PriceFetchError
from finsight.core.metrics import MetricsEmitter
from finsight.domain.holding import Holding
from finsight.domain.portfolio import Allocation, PortfolioChanges, TargetSettings
from finsight.services.analytics_cache import AnalyticsCache
from finsight.services.cache.memory_store import InMemoryCacheStore
from finsight.services.holdings.base import HoldingsStore, HoldingsTransaction
from finsight.services.market_data.base import MarketProxySource, PriceFeed
from finsight.services.performance_calculator import historical_value
from finsight.services.portfolio_service import PortfolioService

from factories import NOW

DEFAULT_TARGETS = TargetSettings(
    target_allocation=Allocation(stocks=60, bonds=30, mutual_funds=5, etfs=5),
    rebalance_threshold=5.0,
)


# =============================================================================
# In-memory fakes
# =============================================================================

class InMemoryTransaction(HoldingsTransaction):
    """Staged copy of the store's state, published on commit."""

    def __init__(self, store: "InMemoryHoldingsStore", owner_id: str,
                 staged: Dict[str, Holding], staged_targets: Dict[str, TargetSettings]):
        super().__init__([h for h in staged.values() if h.owner_id == owner_id])
        self.store = store
        self.staged = staged
        self.staged_targets = staged_targets

    async def get_historical_value(self, at) -> float:
        return historical_value(self.holdings, self.store.price_history, at)

    async def commit(self) -> None:
        self.closed = True
        if self.store.fail_on_commit:
            raise RuntimeError("commit failed")
        self.store.holdings = self.staged
        self.store.targets = self.staged_targets
        self.store.commits += 1

    async def rollback(self) -> None:
        self.closed = True
        self.store.rollbacks += 1


class InMemoryHoldingsStore(HoldingsStore):
    """Dict-backed holdings store that counts its calls."""

    def __init__(self, holdings: Iterable[Holding] = (),
                 price_history: Optional[Dict[str, pd.Series]] = None):
        self.holdings: Dict[str, Holding] = {h.id: h for h in holdings}
        self.price_history: Dict[str, pd.Series] = price_history or {}
        self.targets: Dict[str, TargetSettings] = {}
        self.list_calls = 0
        self.commits = 0
        self.rollbacks = 0
        self.fail_on_commit = False
        self.fail_on_mutate_call: Optional[int] = None
        self.mutate_calls = 0

    def _owned(self, owner_id: str) -> List[Holding]:
        return [h for h in self.holdings.values() if h.owner_id == owner_id]

    async def list_holdings(self, owner_id: str) -> List[Holding]:
        self.list_calls += 1
        return self._owned(owner_id)

    async def get_historical_value(self, owner_id: str, at) -> float:
        return historical_value(self._owned(owner_id), self.price_history, at)

    async def mutate_holdings(self, owner_id: str, changes: PortfolioChanges) -> InMemoryTransaction:
        self.mutate_calls += 1
        if self.mutate_calls == self.fail_on_mutate_call:
            raise ConnectionError("holdings store unavailable")
        staged = dict(self.holdings)
        staged_targets = dict(self.targets)
        delta = changes.holdings_delta
        if delta is not None:
            for holding_id in delta.remove:
                holding = staged.get(holding_id)
                if holding is None or holding.owner_id != owner_id:
                    raise InvalidInputError(f"Unknown holding {holding_id}",
                                            field="holdings_delta.remove")
                del staged[holding_id]
            for holding in delta.add:
                if holding.id in staged:
                    raise InvalidInputError(f"Holding {holding.id} already exists",
                                            field="holdings_delta.add")
                staged[holding.id] = holding
        for holding_id, price in changes.price_updates.items():
            staged[holding_id] = staged[holding_id].with_price(price, changes.priced_at)
        if changes.target_allocation is not None or changes.rebalance_threshold is not None:
            current = staged_targets.get(owner_id) or DEFAULT_TARGETS
            staged_targets[owner_id] = TargetSettings(
                target_allocation=changes.target_allocation or current.target_allocation,
                rebalance_threshold=(
                    changes.rebalance_threshold
                    if changes.rebalance_threshold is not None
                    else current.rebalance_threshold
                ),
            )
        return InMemoryTransaction(self, owner_id, staged, staged_targets)

    async def get_target_settings(self, owner_id: str) -> Optional[TargetSettings]:
        return self.targets.get(owner_id)

    async def list_owner_ids(self) -> List[str]:
        return sorted({h.owner_id for h in self.holdings.values()})


class FakePriceFeed(PriceFeed):
    """Returns configured prices; listed symbols fail or hang."""

    def __init__(self, prices: Optional[Dict[str, float]] = None,
                 failing: Iterable[str] = (), hanging: Iterable[str] = ()):
        self.prices = prices or {}
        self.failing = set(failing)
        self.hanging = set(hanging)
        self.calls: List[str] = []

    async def get_current_price(self, symbol: str) -> float:
        self.calls.append(symbol)
        if symbol in self.hanging:
            await asyncio.sleep(10)
        if symbol in self.failing or symbol not in self.prices:
            raise PriceFetchError(symbol, f"no quote for {symbol}")
        return self.prices[symbol]


class FakeMarketProxy(MarketProxySource):
    """Fixed market returns, tail-sliced to the requested length."""

    def __init__(self, returns: Optional[List[float]] = None):
        self.returns = returns if returns is not None else [
            0.01, -0.005, 0.007, -0.012, 0.004, 0.009, -0.003, 0.002
        ] * 5
        self.unreachable = False

    async def get_market_daily_returns(self, n: int) -> List[float]:
        if self.unreachable:
            raise PriceFetchError("SPY", "benchmark download failed")
        return self.returns[-n:] if n > 0 else []


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def store():
    return InMemoryHoldingsStore()


@pytest.fixture
def price_feed():
    return FakePriceFeed()


@pytest.fixture
def market_proxy():
    return FakeMarketProxy()


@pytest.fixture
def metrics_emitter():
    return MetricsEmitter()


@pytest.fixture
def cache_store():
    return InMemoryCacheStore()


@pytest.fixture
def analytics_cache(cache_store, metrics_emitter):
    return AnalyticsCache(cache_store, ttl_seconds=300, metrics=metrics_emitter)


@pytest.fixture
def service(store, price_feed, market_proxy, analytics_cache, metrics_emitter):
    return PortfolioService(
        store=store,
        price_feed=price_feed,
        market_proxy=market_proxy,
        cache=analytics_cache,
        metrics=metrics_emitter,
        batch_size=2,
        fetch_timeout=0.2,
        lookback_days=10,
        clock=lambda: NOW,
    )
