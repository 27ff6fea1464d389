# Base
from finsight.models.base import TimestampMixin, IdMixin

# Holdings
from finsight.models.holding import HoldingRecord
from finsight.models.price_history import PriceHistory
from finsight.models.portfolio_target import PortfolioTarget

__all__ = [
    "TimestampMixin",
    "IdMixin",
    "HoldingRecord",
    "PriceHistory",
    "PortfolioTarget",
]
