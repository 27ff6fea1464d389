"""
Synthetic market proxy.

Deterministic pseudo-random daily returns for offline development and
tests where no benchmark feed is reachable.
"""
from typing import List

import numpy as np

from finsight.services.market_data.base import MarketProxySource


class SyntheticMarketProxy(MarketProxySource):
    """Seeded normal daily returns, roughly an equity index."""

    def __init__(self, seed: int = 42, mean: float = 0.0004, std: float = 0.01):
        self.seed = seed
        self.mean = mean
        self.std = std

    async def get_market_daily_returns(self, n: int) -> List[float]:
        if n <= 0:
            return []
        rng = np.random.default_rng(self.seed)
        return [float(r) for r in rng.normal(self.mean, self.std, size=n)]
