from typing import Dict, Type
from finsight.services.market_data.base import MarketProxySource, PriceFeed
from finsight.services.market_data.yfinance_provider import YFinanceMarketProxy, YFinancePriceFeed
from finsight.services.market_data.synthetic_provider import SyntheticMarketProxy
from finsight.core.config import settings

PRICE_FEEDS: Dict[str, Type[PriceFeed]] = {
    "yfinance": YFinancePriceFeed,
}


def get_price_feed(name: str = None) -> PriceFeed:
    """Factory to get price feed instance."""
    name = name or settings.PRICE_PROVIDER
    feed_class = PRICE_FEEDS.get(name)
    if not feed_class:
        raise ValueError(f"Unknown price provider: {name}")
    return feed_class()


def get_market_proxy(name: str = None) -> MarketProxySource:
    """Factory to get the market proxy used for beta."""
    name = name or settings.MARKET_PROXY
    if name == "yfinance":
        return YFinanceMarketProxy(settings.MARKET_BENCHMARK_SYMBOL)
    if name == "synthetic":
        return SyntheticMarketProxy(settings.SYNTHETIC_MARKET_SEED)
    raise ValueError(f"Unknown market proxy: {name}")
