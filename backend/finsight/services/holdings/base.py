from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, List, Optional

from finsight.domain.holding import Holding
from finsight.domain.portfolio import PortfolioChanges, TargetSettings


class HoldingsTransaction(ABC):
    """
    An applied but uncommitted mutation.

    `holdings` is the owner's holding set as seen inside the transaction.
    Exiting the context without commit() rolls the mutation back.
    """

    def __init__(self, holdings: List[Holding]):
        self.holdings = holdings
        self.closed = False

    @abstractmethod
    async def get_historical_value(self, at: datetime) -> float:
        """Portfolio value as of a past date, seen inside the transaction."""
        pass

    async def get_value_series(self, dates: Iterable[datetime]) -> List[float]:
        return [await self.get_historical_value(at) for at in dates]

    @abstractmethod
    async def commit(self) -> None:
        pass

    @abstractmethod
    async def rollback(self) -> None:
        pass

    async def __aenter__(self) -> "HoldingsTransaction":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if not self.closed:
            await self.rollback()


class HoldingsStore(ABC):
    """Abstract holdings store (owned by the holdings service)."""

    @abstractmethod
    async def list_holdings(self, owner_id: str) -> List[Holding]:
        """All holdings of an owner."""
        pass

    @abstractmethod
    async def get_historical_value(self, owner_id: str, at: datetime) -> float:
        """
        Portfolio value as of a past date.

        Uses the most recent price at or before `at` per holding; holdings
        purchased after `at` are excluded and holdings without any prior
        price are valued at cost basis.
        """
        pass

    async def get_value_series(self, owner_id: str, dates: Iterable[datetime]) -> List[float]:
        """Historical values for several dates, in the given order."""
        return [await self.get_historical_value(owner_id, at) for at in dates]

    @abstractmethod
    async def mutate_holdings(self, owner_id: str, changes: PortfolioChanges) -> HoldingsTransaction:
        """Apply changes inside a transaction and return its handle."""
        pass

    @abstractmethod
    async def get_target_settings(self, owner_id: str) -> Optional[TargetSettings]:
        """Owner's stored target allocation and threshold, if any."""
        pass

    @abstractmethod
    async def list_owner_ids(self) -> List[str]:
        """Owners holding at least one position."""
        pass
