from sqlalchemy import Column, String, DateTime, Numeric, Index
from finsight.core.database import Base
from finsight.domain.holding import Holding, ensure_utc
from finsight.models.base import IdMixin, TimestampMixin


class HoldingRecord(Base, IdMixin, TimestampMixin):
    """
    Current investment holdings (one row per position).
    """
    __tablename__ = "holdings"
    __table_args__ = (
        Index("ix_holdings_owner_asset_class", "owner_id", "asset_class"),
    )

    owner_id = Column(String(64), nullable=False, index=True)
    asset_class = Column(String(20), nullable=False)
    symbol = Column(String(20), nullable=False)
    quantity = Column(Numeric(20, 6), nullable=False)
    cost_basis = Column(Numeric(20, 4), nullable=False)
    current_price = Column(Numeric(20, 4), nullable=True)
    purchase_date = Column(DateTime, nullable=False)
    last_updated = Column(DateTime, nullable=True)

    def to_domain(self) -> Holding:
        return Holding(
            id=self.id,
            owner_id=self.owner_id,
            asset_class=self.asset_class,
            symbol=self.symbol,
            quantity=float(self.quantity),
            cost_basis=float(self.cost_basis),
            current_price=float(self.current_price) if self.current_price is not None else None,
            purchase_date=self.purchase_date,
            last_updated=self.last_updated,
        )

    @classmethod
    def from_domain(cls, holding: Holding) -> "HoldingRecord":
        return cls(
            id=holding.id,
            owner_id=holding.owner_id,
            asset_class=holding.asset_class.value,
            symbol=holding.symbol,
            quantity=holding.quantity,
            cost_basis=holding.cost_basis,
            current_price=holding.current_price,
            purchase_date=ensure_utc(holding.purchase_date).replace(tzinfo=None),
            last_updated=(
                ensure_utc(holding.last_updated).replace(tzinfo=None)
                if holding.last_updated else None
            ),
        )
