from abc import ABC, abstractmethod
from typing import List


class PriceFeed(ABC):
    """Abstract base class for current price providers."""

    @abstractmethod
    async def get_current_price(self, symbol: str) -> float:
        """
        Fetch the latest price for a symbol.
        Raises PriceFetchError when no usable price is available.
        """
        pass


class MarketProxySource(ABC):
    """Abstract source of market daily returns (beta benchmark)."""

    @abstractmethod
    async def get_market_daily_returns(self, n: int) -> List[float]:
        """
        Most recent n trading-day returns of the market proxy, oldest first.
        Raises PriceFetchError when the source is unreachable.
        """
        pass
