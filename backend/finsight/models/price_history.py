from sqlalchemy import Column, String, Date, Numeric, Integer, UniqueConstraint
from finsight.core.database import Base


class PriceHistory(Base):
    """
    Daily close per symbol, used for historical portfolio valuation.
    """
    __tablename__ = "price_history"
    __table_args__ = (
        UniqueConstraint("symbol", "date", name="uq_price_history_symbol_date"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    symbol = Column(String(20), nullable=False, index=True)
    date = Column(Date, nullable=False)
    close = Column(Numeric(20, 4), nullable=False)
