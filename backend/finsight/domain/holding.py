"""
Holding snapshot: the unit every portfolio calculation operates over.

Snapshots are immutable and validated at construction, so calculators can
divide by cost basis without guarding against zero.
"""
import math
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from finsight.core.exceptions import InvalidInputError


class AssetClass(str, Enum):
    """Closed set of supported asset classes."""
    STOCK = "STOCK"
    BOND = "BOND"
    MUTUAL_FUND = "MUTUAL_FUND"
    ETF = "ETF"

    @classmethod
    def parse(cls, value: Any) -> "AssetClass":
        """Parse an asset class, rejecting unknown values."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise InvalidInputError(
                f"Unknown asset class: {value!r}", field="asset_class"
            ) from None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _positive(name: str, value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"{name} must be a number, got {value!r}", field=name) from None
    if not math.isfinite(number) or number <= 0:
        raise InvalidInputError(f"{name} must be positive, got {value!r}", field=name)
    return number


@dataclass(frozen=True)
class Holding:
    """One investment position."""
    id: str
    owner_id: str
    asset_class: AssetClass
    symbol: str
    quantity: float
    cost_basis: float  # price per unit at acquisition
    purchase_date: datetime
    current_price: Optional[float] = None
    last_updated: Optional[datetime] = None

    def __post_init__(self):
        if not self.symbol or not str(self.symbol).strip():
            raise InvalidInputError("symbol is required", field="symbol")
        object.__setattr__(self, "symbol", str(self.symbol).strip().upper())
        object.__setattr__(self, "asset_class", AssetClass.parse(self.asset_class))
        object.__setattr__(self, "quantity", _positive("quantity", self.quantity))
        object.__setattr__(self, "cost_basis", _positive("cost_basis", self.cost_basis))
        if self.current_price is not None:
            object.__setattr__(self, "current_price", _positive("current_price", self.current_price))

        if not isinstance(self.purchase_date, datetime):
            raise InvalidInputError("purchase_date must be a datetime", field="purchase_date")
        purchase_date = ensure_utc(self.purchase_date)
        if purchase_date > utcnow():
            raise InvalidInputError("purchase_date cannot be in the future", field="purchase_date")
        object.__setattr__(self, "purchase_date", purchase_date)
        if self.last_updated is not None:
            object.__setattr__(self, "last_updated", ensure_utc(self.last_updated))

    # Derived values

    @property
    def has_price(self) -> bool:
        return self.current_price is not None

    @property
    def total_cost(self) -> float:
        return self.quantity * self.cost_basis

    @property
    def current_value(self) -> float:
        return self.quantity * self._require_price()

    @property
    def unrealized_gain(self) -> float:
        return self.quantity * (self._require_price() - self.cost_basis)

    @property
    def return_fraction(self) -> float:
        return (self._require_price() - self.cost_basis) / self.cost_basis

    def _require_price(self) -> float:
        if self.current_price is None:
            raise InvalidInputError(
                f"Holding {self.id} ({self.symbol}) has no current price",
                field="current_price",
                details={"holding_id": self.id, "symbol": self.symbol},
            )
        return self.current_price

    def with_price(self, price: float, at: Optional[datetime] = None) -> "Holding":
        """Return a copy carrying a refreshed price."""
        return replace(self, current_price=price, last_updated=at or utcnow())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "asset_class": self.asset_class.value,
            "symbol": self.symbol,
            "quantity": self.quantity,
            "cost_basis": self.cost_basis,
            "current_price": self.current_price,
            "purchase_date": self.purchase_date.isoformat(),
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Holding":
        last_updated = data.get("last_updated")
        return cls(
            id=data["id"],
            owner_id=data["owner_id"],
            asset_class=data["asset_class"],
            symbol=data["symbol"],
            quantity=data["quantity"],
            cost_basis=data["cost_basis"],
            current_price=data.get("current_price"),
            purchase_date=datetime.fromisoformat(data["purchase_date"]),
            last_updated=datetime.fromisoformat(last_updated) if last_updated else None,
        )
