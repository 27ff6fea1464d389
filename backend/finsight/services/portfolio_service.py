"""
Portfolio Service.

Orchestrates holdings, the price feed, the calculators and the analytics
cache. Calculators stay pure; every suspension point (store, feed, market
proxy, cache) lives here.

Flow:
1. Reads are cache-checked per (owner, metric kind)
2. Misses load holdings and recompute the requested snapshot
3. Price refresh fetches in batches, writes prices, then invalidates and recomputes
4. Mutations validate, apply in a store transaction, recompute inside it,
   commit, and only then touch the cache
"""
import asyncio
import logging
import math
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from finsight.core.config import settings
from finsight.core.exceptions import (
    InsufficientDataError,
    InvalidInputError,
    PriceFetchError,
    ValidationError,
)
from finsight.core.metrics import MetricsEmitter, metrics as default_metrics
from finsight.domain.holding import Holding, utcnow
from finsight.domain.portfolio import (
    Allocation,
    PartialRefreshFailure,
    Performance,
    Portfolio,
    PortfolioChanges,
    RebalanceStatus,
    RefreshResult,
    RiskSnapshot,
    TargetSettings,
)
from finsight.services.allocation_calculator import AllocationCalculator
from finsight.services.analytics_cache import AnalyticsCache, MetricKind
from finsight.services.holdings.base import HoldingsStore
from finsight.services.market_data.base import MarketProxySource, PriceFeed
from finsight.services.performance_calculator import PerformanceCalculator
from finsight.services.rebalance_validator import RebalanceValidator
from finsight.services.risk_calculator import (
    FLAG_INSUFFICIENT_DATA,
    FLAG_MARKET_DATA_UNAVAILABLE,
    RiskAnalyticsCalculator,
)

logger = logging.getLogger(__name__)

FALLBACK_RISK_FLAGS = frozenset({FLAG_INSUFFICIENT_DATA, FLAG_MARKET_DATA_UNAVAILABLE})

ValueSeries = Callable[[Sequence[datetime]], Awaitable[List[float]]]


class PortfolioService:
    """Entry point for portfolio reads, price refresh and mutations."""

    def __init__(
        self,
        store: HoldingsStore,
        price_feed: PriceFeed,
        market_proxy: MarketProxySource,
        cache: AnalyticsCache,
        allocation_calculator: AllocationCalculator = None,
        performance_calculator: PerformanceCalculator = None,
        risk_calculator: RiskAnalyticsCalculator = None,
        rebalance_validator: RebalanceValidator = None,
        metrics: MetricsEmitter = None,
        batch_size: int = 100,
        fetch_timeout: float = 5.0,
        lookback_days: int = 30,
        default_targets: TargetSettings = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        if lookback_days < 2:
            raise ValueError("lookback_days must be at least 2")

        self.store = store
        self.price_feed = price_feed
        self.market_proxy = market_proxy
        self.cache = cache
        self.allocation_calculator = allocation_calculator or AllocationCalculator()
        self.performance_calculator = performance_calculator or PerformanceCalculator()
        self.risk_calculator = risk_calculator or RiskAnalyticsCalculator()
        self.rebalance_validator = rebalance_validator or RebalanceValidator()
        self.metrics = metrics or default_metrics
        self.batch_size = batch_size
        self.fetch_timeout = fetch_timeout
        self.lookback_days = lookback_days
        self.default_targets = default_targets or TargetSettings(
            target_allocation=Allocation(stocks=60.0, bonds=30.0, mutual_funds=5.0, etfs=5.0),
            rebalance_threshold=5.0,
        )
        self.clock = clock

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_portfolio(self, owner_id: str) -> Portfolio:
        """Aggregate view: holdings plus every snapshot."""
        async def compute() -> Portfolio:
            holdings = await self.store.list_holdings(owner_id)
            targets = await self._target_settings(owner_id)
            return await self._build_portfolio(
                owner_id, holdings, self._store_series(owner_id), targets
            )

        return await self.cache.get_or_compute(owner_id, MetricKind.PORTFOLIO, compute)

    async def get_allocation(self, owner_id: str) -> Allocation:
        async def compute() -> Allocation:
            holdings = await self.store.list_holdings(owner_id)
            return self._allocation(holdings)

        return await self.cache.get_or_compute(owner_id, MetricKind.ALLOCATION, compute)

    async def get_performance(self, owner_id: str) -> Performance:
        async def compute() -> Performance:
            holdings = await self.store.list_holdings(owner_id)
            return await self._performance(holdings, self._store_series(owner_id), self.clock())

        return await self.cache.get_or_compute(owner_id, MetricKind.PERFORMANCE, compute)

    async def get_risk_metrics(self, owner_id: str) -> RiskSnapshot:
        """
        Risk snapshot.

        Raises InsufficientDataError when the history is too short to measure
        and PriceFetchError when the market proxy is unreachable.
        """
        async def compute() -> RiskSnapshot:
            holdings = await self.store.list_holdings(owner_id)
            return await self._risk(owner_id, holdings, self._store_series(owner_id), self.clock())

        return await self.cache.get_or_compute(owner_id, MetricKind.RISK, compute)

    async def get_rebalance_status(self, owner_id: str) -> RebalanceStatus:
        async def compute() -> RebalanceStatus:
            holdings = await self.store.list_holdings(owner_id)
            targets = await self._target_settings(owner_id)
            return self._rebalance(holdings, self._allocation(holdings), targets)

        return await self.cache.get_or_compute(owner_id, MetricKind.REBALANCE, compute)

    # =========================================================================
    # Price refresh
    # =========================================================================

    async def refresh_prices(self, owner_id: str) -> RefreshResult:
        """
        Refresh current prices of every holding of an owner.

        Batches run one after another; fetches inside a batch run
        concurrently. A failed fetch leaves the holding at its stale price
        and is reported on the result, never raised. A batch whose price
        write fails reports its symbols as failed and the remaining batches
        still run.
        """
        holdings = await self.store.list_holdings(owner_id)
        refreshed_at = self.clock()
        updated: Dict[str, None] = {}
        reasons: Dict[str, str] = {}

        for batch_no, start in enumerate(range(0, len(holdings), self.batch_size)):
            batch = holdings[start:start + self.batch_size]
            started = time.perf_counter()

            symbols = list(dict.fromkeys(h.symbol for h in batch))
            results = await asyncio.gather(*(self._fetch_price(symbol) for symbol in symbols))
            fetched = dict(zip(symbols, results))

            succeeded: List[str] = []
            for symbol, (_, error) in fetched.items():
                if error is not None:
                    await self._record_refresh_failure(owner_id, symbol, error, reasons)
                else:
                    succeeded.append(symbol)

            price_updates = {
                holding.id: fetched[holding.symbol][0]
                for holding in batch
                if fetched[holding.symbol][1] is None
            }
            if price_updates:
                changes = PortfolioChanges(price_updates=price_updates, priced_at=refreshed_at)
                try:
                    async with await self.store.mutate_holdings(owner_id, changes) as tx:
                        await tx.commit()
                except Exception as e:
                    logger.error(f"Price write failed for {owner_id} batch {batch_no}: {e}")
                    for symbol in succeeded:
                        await self._record_refresh_failure(
                            owner_id, symbol, f"store write failed: {e}", reasons
                        )
                    succeeded = []

            updated.update(dict.fromkeys(succeeded))
            await self.metrics.refresh_batch_processed(
                owner_id,
                batch=batch_no,
                count=len(batch),
                success=len(succeeded),
                failed=len(symbols) - len(succeeded),
                duration_ms=(time.perf_counter() - started) * 1000,
            )

        await self.cache.invalidate(owner_id)
        await self._recompute_and_cache(owner_id)

        failure = None
        if reasons:
            failure = PartialRefreshFailure(failed_symbols=tuple(reasons), reasons=reasons)
        logger.info(
            f"Refreshed prices for {owner_id}: {len(updated)} updated, {len(reasons)} failed"
        )
        return RefreshResult(
            owner_id=owner_id,
            updated_symbols=tuple(updated),
            failure=failure,
            refreshed_at=refreshed_at,
        )

    async def _fetch_price(self, symbol: str) -> Tuple[Optional[float], Optional[str]]:
        """Fetch one price; returns (price, None) or (None, reason)."""
        try:
            price = await asyncio.wait_for(
                self.price_feed.get_current_price(symbol), timeout=self.fetch_timeout
            )
        except asyncio.TimeoutError:
            return None, f"timed out after {self.fetch_timeout:g}s"
        except Exception as e:
            return None, str(e) or type(e).__name__

        if price is None or not math.isfinite(price) or price <= 0:
            return None, f"unusable price {price!r}"
        return float(price), None

    async def _record_refresh_failure(
        self, owner_id: str, symbol: str, reason: str, reasons: Dict[str, str]
    ) -> None:
        reasons[symbol] = reason
        logger.warning(f"Price refresh failed for {symbol} (owner {owner_id}): {reason}")
        await self.metrics.price_refresh_failed(owner_id, symbol, reason)

    # =========================================================================
    # Mutations
    # =========================================================================

    async def update_portfolio(self, owner_id: str, changes: PortfolioChanges) -> Portfolio:
        """
        Apply holdings and preference changes atomically.

        Raises:
            ValidationError: invalid target allocation or threshold, or no changes
            InvalidInputError: malformed holdings delta
        """
        self._validate_changes(owner_id, changes)

        stored = await self._target_settings(owner_id)
        targets = TargetSettings(
            target_allocation=changes.target_allocation or stored.target_allocation,
            rebalance_threshold=(
                changes.rebalance_threshold
                if changes.rebalance_threshold is not None
                else stored.rebalance_threshold
            ),
        )
        if changes.target_allocation is not None or changes.rebalance_threshold is not None:
            # persist the full settings the portfolio is computed against
            changes = replace(
                changes,
                target_allocation=targets.target_allocation,
                rebalance_threshold=targets.rebalance_threshold,
            )

        async with await self.store.mutate_holdings(owner_id, changes) as tx:
            portfolio = await self._build_portfolio(
                owner_id, tx.holdings, tx.get_value_series, targets
            )
            await tx.commit()

        await self.cache.invalidate(owner_id)
        await self._write_snapshots(portfolio)
        logger.info(f"Updated portfolio {owner_id}: {len(portfolio.holdings)} holdings")
        return portfolio

    def _validate_changes(self, owner_id: str, changes: PortfolioChanges) -> None:
        if changes.is_empty():
            raise ValidationError("No changes supplied", field="changes")

        self.rebalance_validator.validate_changes(
            changes.target_allocation, changes.rebalance_threshold
        )

        delta = changes.holdings_delta
        if delta is not None:
            seen = set()
            for holding in delta.add:
                if holding.owner_id != owner_id:
                    raise InvalidInputError(
                        f"Holding {holding.id} belongs to {holding.owner_id}, not {owner_id}",
                        field="holdings_delta.add",
                    )
                if holding.id in seen:
                    raise InvalidInputError(
                        f"Duplicate holding id {holding.id}", field="holdings_delta.add"
                    )
                seen.add(holding.id)
            overlap = seen & set(delta.remove)
            if overlap:
                raise InvalidInputError(
                    f"Holdings both added and removed: {sorted(overlap)}",
                    field="holdings_delta",
                )

        for holding_id, price in changes.price_updates.items():
            if not isinstance(price, (int, float)) or not math.isfinite(price) or price <= 0:
                raise InvalidInputError(
                    f"Price for holding {holding_id} must be positive, got {price!r}",
                    field="price_updates",
                )

    # =========================================================================
    # Computation
    # =========================================================================

    async def _recompute_and_cache(self, owner_id: str) -> Portfolio:
        holdings = await self.store.list_holdings(owner_id)
        targets = await self._target_settings(owner_id)
        portfolio = await self._build_portfolio(
            owner_id, holdings, self._store_series(owner_id), targets
        )
        await self._write_snapshots(portfolio)
        return portfolio

    async def _write_snapshots(self, portfolio: Portfolio) -> None:
        owner_id = portfolio.owner_id
        await self.cache.put(owner_id, MetricKind.PORTFOLIO, portfolio)
        await self.cache.put(owner_id, MetricKind.ALLOCATION, portfolio.allocation)
        await self.cache.put(owner_id, MetricKind.PERFORMANCE, portfolio.performance)
        await self.cache.put(owner_id, MetricKind.REBALANCE, portfolio.rebalance)
        # a fallback snapshot must not mask the error get_risk_metrics raises
        if not FALLBACK_RISK_FLAGS.intersection(portfolio.risk.flags):
            await self.cache.put(owner_id, MetricKind.RISK, portfolio.risk)

    async def _build_portfolio(
        self,
        owner_id: str,
        holdings: Sequence[Holding],
        value_series: ValueSeries,
        targets: TargetSettings,
    ) -> Portfolio:
        now = self.clock()
        allocation = self._allocation(holdings)
        performance = await self._performance(holdings, value_series, now)
        try:
            risk = await self._risk(owner_id, holdings, value_series, now)
        except InsufficientDataError as e:
            logger.info(f"Risk metrics unavailable for {owner_id}: {e.message}")
            risk = RiskSnapshot.default_low(FLAG_INSUFFICIENT_DATA)
        except PriceFetchError as e:
            logger.warning(f"Market data unavailable for {owner_id} risk metrics: {e.message}")
            risk = RiskSnapshot.default_low(FLAG_MARKET_DATA_UNAVAILABLE)
        rebalance = self._rebalance(holdings, allocation, targets, performance.total_value)

        return Portfolio(
            owner_id=owner_id,
            holdings=tuple(holdings),
            allocation=allocation,
            performance=performance,
            risk=risk,
            target_allocation=targets.target_allocation,
            rebalance_threshold=targets.rebalance_threshold,
            rebalance=rebalance,
            last_updated=now,
        )

    def _allocation(self, holdings: Sequence[Holding]) -> Allocation:
        return self.allocation_calculator.calculate(self._priced(holdings))

    async def _performance(
        self,
        holdings: Sequence[Holding],
        value_series: ValueSeries,
        now: datetime,
    ) -> Performance:
        if not holdings:
            return Performance.empty(now)
        windows = self.performance_calculator.window_dates(now)
        values = await value_series(list(windows.values()))
        historical = dict(zip(windows.keys(), values))
        return self.performance_calculator.calculate(self._priced(holdings), historical, now)

    async def _risk(
        self,
        owner_id: str,
        holdings: Sequence[Holding],
        value_series: ValueSeries,
        now: datetime,
    ) -> RiskSnapshot:
        if not holdings:
            return RiskSnapshot.default_low()

        values = await value_series(self._risk_dates(now))
        values.append(self.performance_calculator.calculate_total_value(self._priced(holdings)))

        market_returns = await self.market_proxy.get_market_daily_returns(len(values) - 1)
        snapshot = self.risk_calculator.calculate(values, market_returns)
        await self.metrics.risk_classified(owner_id, snapshot.risk_level.value, snapshot.score)
        return snapshot

    def _risk_dates(self, now: datetime) -> List[datetime]:
        """
        Closing times of the trading days before the latest trading day,
        oldest first.

        The live value stands in for the latest trading day, so together the
        series holds one value per trading day and lines up with the market
        proxy's daily returns. Exchange holidays are not excluded.
        """
        latest = pd.offsets.BDay().rollback(pd.Timestamp(now.date()))
        days = pd.bdate_range(end=latest - pd.offsets.BDay(), periods=self.lookback_days - 1)
        return [
            datetime.combine(day.date(), datetime.max.time(), tzinfo=timezone.utc)
            for day in days
        ]

    def _rebalance(
        self,
        holdings: Sequence[Holding],
        allocation: Allocation,
        targets: TargetSettings,
        total_value: Optional[float] = None,
    ) -> RebalanceStatus:
        if not holdings:
            return RebalanceStatus(
                required=False,
                threshold=targets.rebalance_threshold,
                deviations=Allocation.zero(),
            )
        if total_value is None:
            total_value = self.performance_calculator.calculate_total_value(self._priced(holdings))
        return self.rebalance_validator.evaluate(
            allocation,
            targets.target_allocation,
            targets.rebalance_threshold,
            total_value,
        )

    def _priced(self, holdings: Sequence[Holding]) -> List[Holding]:
        """Holdings never refreshed are valued at cost basis."""
        return [
            h if h.has_price else h.with_price(h.cost_basis, h.purchase_date)
            for h in holdings
        ]

    def _store_series(self, owner_id: str) -> ValueSeries:
        async def series(dates: Sequence[datetime]) -> List[float]:
            return await self.store.get_value_series(owner_id, dates)
        return series

    async def _target_settings(self, owner_id: str) -> TargetSettings:
        stored = await self.store.get_target_settings(owner_id)
        return stored or self.default_targets


def create_portfolio_service(
    store: HoldingsStore = None,
    price_feed: PriceFeed = None,
    market_proxy: MarketProxySource = None,
    cache: AnalyticsCache = None,
) -> PortfolioService:
    """Wire a PortfolioService from settings; any adapter can be overridden."""
    from finsight.services.cache import get_cache_store
    from finsight.services.holdings import get_holdings_store
    from finsight.services.market_data import get_market_proxy, get_price_feed

    if settings.CACHE_BACKEND == "redis":
        from finsight.core.redis import get_async_redis
        default_metrics.set_redis(get_async_redis())

    return PortfolioService(
        store=store or get_holdings_store(),
        price_feed=price_feed or get_price_feed(),
        market_proxy=market_proxy or get_market_proxy(),
        cache=cache or AnalyticsCache(
            get_cache_store(),
            ttl_seconds=settings.ANALYTICS_CACHE_TTL_SECONDS,
            prefix=settings.ANALYTICS_CACHE_PREFIX,
        ),
        risk_calculator=RiskAnalyticsCalculator(
            risk_free_rate=settings.RISK_FREE_RATE,
            confidence=settings.VAR_CONFIDENCE,
            policy=settings.risk_policy(),
            trading_days_per_year=settings.TRADING_DAYS_PER_YEAR,
        ),
        batch_size=settings.PRICE_REFRESH_BATCH_SIZE,
        fetch_timeout=settings.PRICE_FETCH_TIMEOUT_SECONDS,
        lookback_days=settings.RISK_LOOKBACK_DAYS,
        default_targets=TargetSettings(
            target_allocation=settings.default_target_allocation(),
            rebalance_threshold=settings.DEFAULT_REBALANCE_THRESHOLD,
        ),
    )
