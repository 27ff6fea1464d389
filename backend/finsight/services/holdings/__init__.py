from finsight.services.holdings.base import HoldingsStore, HoldingsTransaction
from finsight.services.holdings.sql_store import SqlHoldingsStore, SqlHoldingsTransaction


def get_holdings_store() -> HoldingsStore:
    """Holdings store bound to the application database."""
    from finsight.core.database import AsyncSessionLocal

    return SqlHoldingsStore(AsyncSessionLocal)


__all__ = [
    "HoldingsStore",
    "HoldingsTransaction",
    "SqlHoldingsStore",
    "SqlHoldingsTransaction",
    "get_holdings_store",
]
