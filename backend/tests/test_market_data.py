"""yfinance adapters with the Ticker download replaced by scripted responses."""
import pandas as pd
import pytest

from finsight.core.exceptions import PriceFetchError
from finsight.services.market_data import yfinance_provider
from finsight.services.market_data.yfinance_provider import YFinanceMarketProxy, YFinancePriceFeed
from finsight.services.portfolio_service import PortfolioService

from factories import NOW, make_holding


class ScriptedTicker:
    """Returns (or raises) the scripted outcomes in order, one per history call."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.periods = []

    def history(self, period):
        self.periods.append(period)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def ticker(monkeypatch):
    scripted = ScriptedTicker()
    monkeypatch.setattr(yfinance_provider.yf, "Ticker", lambda symbol: scripted)
    return scripted


def closes(*values):
    return pd.DataFrame({"Close": list(values)})


class TestYFinancePriceFeed:

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, ticker):
        ticker.outcomes = [ConnectionError("reset by peer"), closes(170.0, 171.5)]
        feed = YFinancePriceFeed(max_retries=3, retry_backoff=0)

        assert await feed.get_current_price("AAPL") == 171.5
        assert ticker.periods == ["5d", "5d"]

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise(self, ticker):
        ticker.outcomes = [ConnectionError("down")] * 2
        feed = YFinancePriceFeed(max_retries=2, retry_backoff=0)

        with pytest.raises(PriceFetchError) as exc:
            await feed.get_current_price("AAPL")

        assert exc.value.symbol == "AAPL"
        assert "2 attempts" in exc.value.message

    @pytest.mark.asyncio
    async def test_empty_history_is_not_retried(self, ticker):
        ticker.outcomes = [pd.DataFrame()]
        feed = YFinancePriceFeed(max_retries=3, retry_backoff=0)

        with pytest.raises(PriceFetchError):
            await feed.get_current_price("GONE")
        assert len(ticker.periods) == 1

    @pytest.mark.asyncio
    async def test_refresh_updates_price_after_transient_failure(self, ticker, store, analytics_cache,
                                                                  market_proxy, metrics_emitter):
        store.holdings["h-1"] = make_holding("AAPL", id="h-1")
        ticker.outcomes = [TimeoutError("read timed out"), closes(175.0)]
        service = PortfolioService(
            store=store,
            price_feed=YFinancePriceFeed(max_retries=2, retry_backoff=0),
            market_proxy=market_proxy,
            cache=analytics_cache,
            metrics=metrics_emitter,
            lookback_days=10,
            clock=lambda: NOW,
        )

        result = await service.refresh_prices("owner-1")

        assert result.failure is None
        assert store.holdings["h-1"].current_price == 175.0


class TestYFinanceMarketProxy:

    @pytest.mark.asyncio
    async def test_returns_last_n_trading_day_returns(self, ticker):
        ticker.outcomes = [closes(100.0, 110.0, 99.0, 99.0)]
        proxy = YFinanceMarketProxy(max_retries=1, retry_backoff=0)

        returns = await proxy.get_market_daily_returns(2)

        assert returns == pytest.approx([-0.1, 0.0])

    @pytest.mark.asyncio
    async def test_outage_raises_instead_of_empty_series(self, ticker):
        ticker.outcomes = [ConnectionError("down")] * 2
        proxy = YFinanceMarketProxy(max_retries=2, retry_backoff=0)

        with pytest.raises(PriceFetchError) as exc:
            await proxy.get_market_daily_returns(29)
        assert exc.value.symbol == "SPY"

    @pytest.mark.asyncio
    async def test_no_benchmark_data_raises(self, ticker):
        ticker.outcomes = [pd.DataFrame()]
        proxy = YFinanceMarketProxy(max_retries=1, retry_backoff=0)

        with pytest.raises(PriceFetchError):
            await proxy.get_market_daily_returns(5)
