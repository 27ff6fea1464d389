"""
SQLAlchemy-backed holdings store.

Holdings, daily close history and target settings live in three tables.
Historical valuation resolves each symbol to its most recent close at or
before the requested date.
"""
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy import and_, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from finsight.core.config import settings
from finsight.core.exceptions import InvalidInputError
from finsight.domain.holding import Holding, ensure_utc, utcnow
from finsight.domain.portfolio import Allocation, PortfolioChanges, TargetSettings
from finsight.models import HoldingRecord, PortfolioTarget, PriceHistory
from finsight.services.holdings.base import HoldingsStore, HoldingsTransaction

logger = logging.getLogger(__name__)


def _naive(value: datetime) -> datetime:
    return ensure_utc(value).replace(tzinfo=None)


async def _load_holdings(session: AsyncSession, owner_id: str) -> List[Holding]:
    result = await session.execute(
        select(HoldingRecord)
        .where(HoldingRecord.owner_id == owner_id)
        .order_by(HoldingRecord.purchase_date, HoldingRecord.id)
    )
    return [record.to_domain() for record in result.scalars().all()]


async def _historical_value(session: AsyncSession, owner_id: str, at: datetime) -> float:
    at = ensure_utc(at)
    result = await session.execute(
        select(HoldingRecord).where(
            HoldingRecord.owner_id == owner_id,
            HoldingRecord.purchase_date <= _naive(at),
        )
    )
    records = result.scalars().all()
    if not records:
        return 0.0

    symbols = {record.symbol for record in records}
    latest = (
        select(PriceHistory.symbol, func.max(PriceHistory.date).label("as_of"))
        .where(PriceHistory.symbol.in_(symbols), PriceHistory.date <= at.date())
        .group_by(PriceHistory.symbol)
        .subquery()
    )
    price_rows = await session.execute(
        select(PriceHistory.symbol, PriceHistory.close).join(
            latest,
            and_(PriceHistory.symbol == latest.c.symbol, PriceHistory.date == latest.c.as_of),
        )
    )
    closes = {symbol: float(close) for symbol, close in price_rows.all()}

    total = 0.0
    for record in records:
        price = closes.get(record.symbol, float(record.cost_basis))
        total += float(record.quantity) * price
    return total


class SqlHoldingsTransaction(HoldingsTransaction):
    """Open session carrying an applied mutation."""

    def __init__(self, session: AsyncSession, owner_id: str, holdings: List[Holding]):
        super().__init__(holdings)
        self.session = session
        self.owner_id = owner_id

    async def get_historical_value(self, at: datetime) -> float:
        return await _historical_value(self.session, self.owner_id, at)

    async def commit(self) -> None:
        try:
            await self.session.commit()
        finally:
            self.closed = True
            await self.session.close()

    async def rollback(self) -> None:
        try:
            await self.session.rollback()
        finally:
            self.closed = True
            await self.session.close()


class SqlHoldingsStore(HoldingsStore):
    """Holdings store over an async SQLAlchemy session factory."""

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self.session_factory = session_factory

    async def list_holdings(self, owner_id: str) -> List[Holding]:
        async with self.session_factory() as session:
            return await _load_holdings(session, owner_id)

    async def get_historical_value(self, owner_id: str, at: datetime) -> float:
        async with self.session_factory() as session:
            return await _historical_value(session, owner_id, at)

    async def get_target_settings(self, owner_id: str) -> Optional[TargetSettings]:
        async with self.session_factory() as session:
            target = await session.get(PortfolioTarget, owner_id)
            if target is None:
                return None
            return TargetSettings(
                target_allocation=Allocation(
                    stocks=float(target.stocks),
                    bonds=float(target.bonds),
                    mutual_funds=float(target.mutual_funds),
                    etfs=float(target.etfs),
                ),
                rebalance_threshold=float(target.rebalance_threshold),
            )

    async def list_owner_ids(self) -> List[str]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(HoldingRecord.owner_id).distinct().order_by(HoldingRecord.owner_id)
            )
            return list(result.scalars().all())

    async def mutate_holdings(self, owner_id: str, changes: PortfolioChanges) -> SqlHoldingsTransaction:
        session = self.session_factory()
        try:
            await self._apply(session, owner_id, changes)
            await session.flush()
            holdings = await _load_holdings(session, owner_id)
        except Exception:
            await session.rollback()
            await session.close()
            raise
        return SqlHoldingsTransaction(session, owner_id, holdings)

    async def _apply(self, session: AsyncSession, owner_id: str, changes: PortfolioChanges) -> None:
        delta = changes.holdings_delta
        if delta is not None:
            if delta.remove:
                result = await session.execute(
                    select(HoldingRecord.id).where(
                        HoldingRecord.owner_id == owner_id,
                        HoldingRecord.id.in_(delta.remove),
                    )
                )
                missing = set(delta.remove) - set(result.scalars().all())
                if missing:
                    raise InvalidInputError(
                        f"Unknown holdings for owner {owner_id}: {sorted(missing)}",
                        field="holdings_delta.remove",
                    )
                await session.execute(
                    delete(HoldingRecord).where(
                        HoldingRecord.owner_id == owner_id,
                        HoldingRecord.id.in_(delta.remove),
                    )
                )
            if delta.add:
                result = await session.execute(
                    select(HoldingRecord.id).where(
                        HoldingRecord.id.in_([h.id for h in delta.add])
                    )
                )
                existing = set(result.scalars().all())
                if existing:
                    raise InvalidInputError(
                        f"Holdings already exist: {sorted(existing)}",
                        field="holdings_delta.add",
                    )
            for holding in delta.add:
                session.add(HoldingRecord.from_domain(holding))

        if changes.price_updates:
            await self._apply_prices(session, owner_id, changes.price_updates, changes.priced_at or utcnow())

        if changes.target_allocation is not None or changes.rebalance_threshold is not None:
            await self._apply_targets(session, owner_id, changes)

    async def _apply_prices(
        self,
        session: AsyncSession,
        owner_id: str,
        price_updates: Dict[str, float],
        priced_at: datetime,
    ) -> None:
        result = await session.execute(
            select(HoldingRecord).where(
                HoldingRecord.owner_id == owner_id,
                HoldingRecord.id.in_(list(price_updates)),
            )
        )
        closes: Dict[str, float] = {}
        for record in result.scalars().all():
            price = price_updates[record.id]
            record.current_price = price
            record.last_updated = _naive(priced_at)
            closes[record.symbol] = price

        # Record the day's close so later historical valuations can see it
        day = ensure_utc(priced_at).date()
        for symbol, close in closes.items():
            existing = await session.execute(
                select(PriceHistory).where(PriceHistory.symbol == symbol, PriceHistory.date == day)
            )
            row = existing.scalar_one_or_none()
            if row is None:
                session.add(PriceHistory(symbol=symbol, date=day, close=close))
            else:
                row.close = close
        logger.debug(f"Applied {len(closes)} price updates for owner {owner_id}")

    async def _apply_targets(self, session: AsyncSession, owner_id: str, changes: PortfolioChanges) -> None:
        target = await session.get(PortfolioTarget, owner_id)
        if target is None:
            defaults = settings.default_target_allocation()
            target = PortfolioTarget(
                owner_id=owner_id,
                stocks=defaults.stocks,
                bonds=defaults.bonds,
                mutual_funds=defaults.mutual_funds,
                etfs=defaults.etfs,
                rebalance_threshold=settings.DEFAULT_REBALANCE_THRESHOLD,
            )
            session.add(target)
        if changes.target_allocation is not None:
            allocation = changes.target_allocation
            target.stocks = allocation.stocks
            target.bonds = allocation.bonds
            target.mutual_funds = allocation.mutual_funds
            target.etfs = allocation.etfs
        if changes.rebalance_threshold is not None:
            target.rebalance_threshold = changes.rebalance_threshold
