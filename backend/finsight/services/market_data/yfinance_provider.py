import asyncio
import logging
import math
import time
from typing import List, Optional

import pandas as pd
import yfinance as yf

from finsight.core.config import settings
from finsight.core.exceptions import PriceFetchError
from finsight.services.market_data.base import MarketProxySource, PriceFeed

logger = logging.getLogger(__name__)


def _history_with_retry(symbol: str, period: str, max_retries: int, backoff: float) -> pd.DataFrame:
    """Download price history, retrying failed requests with exponential backoff."""
    max_retries = max(1, max_retries)
    backoff = max(0.0, backoff)
    ticker = yf.Ticker(symbol)
    last_error: Optional[Exception] = None

    for attempt in range(1, max_retries + 1):
        try:
            return ticker.history(period=period)
        except Exception as exc:
            last_error = exc
            logger.warning(
                f"yfinance history failed for {symbol} (attempt {attempt}/{max_retries}): {exc}"
            )

        if attempt < max_retries and backoff:
            time.sleep(backoff * (2 ** (attempt - 1)))

    raise PriceFetchError(
        symbol, f"yfinance request failed after {max_retries} attempts: {last_error}"
    ) from last_error


class YFinancePriceFeed(PriceFeed):
    """yfinance price feed for holding revaluation."""

    def __init__(self, max_retries: int = None, retry_backoff: float = None):
        self.max_retries = settings.PRICE_FETCH_MAX_RETRIES if max_retries is None else max_retries
        self.retry_backoff = (
            settings.PRICE_FETCH_RETRY_BACKOFF_SEC if retry_backoff is None else retry_backoff
        )

    async def get_current_price(self, symbol: str) -> float:
        return await asyncio.to_thread(self._fetch_latest_close, symbol)

    def _fetch_latest_close(self, symbol: str) -> float:
        # yf has no reliable realtime endpoint, take the last close of a short window
        hist = _history_with_retry(symbol, "5d", self.max_retries, self.retry_backoff)

        if hist.empty or "Close" not in hist:
            raise PriceFetchError(symbol, "no price data returned")

        closes = hist["Close"].dropna()
        if closes.empty:
            raise PriceFetchError(symbol, "no close price returned")
        price = float(closes.iloc[-1])
        if not math.isfinite(price) or price <= 0:
            raise PriceFetchError(symbol, f"unusable price {price}")
        return price


class YFinanceMarketProxy(MarketProxySource):
    """Daily returns of a benchmark ticker (SPY by default)."""

    def __init__(self, symbol: str = "SPY", max_retries: int = None, retry_backoff: float = None):
        self.symbol = symbol
        self.max_retries = settings.PRICE_FETCH_MAX_RETRIES if max_retries is None else max_retries
        self.retry_backoff = (
            settings.PRICE_FETCH_RETRY_BACKOFF_SEC if retry_backoff is None else retry_backoff
        )

    async def get_market_daily_returns(self, n: int) -> List[float]:
        return await asyncio.to_thread(self._fetch_returns, n)

    def _fetch_returns(self, n: int) -> List[float]:
        """
        Last n trading-day returns of the benchmark.

        Raises PriceFetchError when the benchmark cannot be downloaded, so an
        outage is never mistaken for a short history.
        """
        # calendar padding covers weekends and holidays
        period_days = max(int(n * 1.6) + 10, 10)
        hist = _history_with_retry(self.symbol, f"{period_days}d", self.max_retries, self.retry_backoff)

        if hist.empty or "Close" not in hist:
            raise PriceFetchError(self.symbol, "no benchmark data returned")

        closes: pd.Series = hist["Close"].dropna()
        returns = closes.pct_change().dropna()
        return [float(r) for r in returns.tail(n)]
