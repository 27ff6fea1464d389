from sqlalchemy import Column, String, Numeric
from finsight.core.database import Base
from finsight.models.base import TimestampMixin


class PortfolioTarget(Base, TimestampMixin):
    """
    Owner's target allocation (percent per asset class) and rebalance threshold.
    """
    __tablename__ = "portfolio_targets"

    owner_id = Column(String(64), primary_key=True)
    stocks = Column(Numeric(7, 4), nullable=False)
    bonds = Column(Numeric(7, 4), nullable=False)
    mutual_funds = Column(Numeric(7, 4), nullable=False)
    etfs = Column(Numeric(7, 4), nullable=False)
    rebalance_threshold = Column(Numeric(5, 2), nullable=False)
