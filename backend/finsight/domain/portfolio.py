"""
Portfolio value types.

Allocation, performance and risk snapshots are ephemeral: recomputed on
demand, cached with a TTL and never treated as the source of truth. Each
snapshot round-trips through plain dictionaries for the JSON cache encoding.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from finsight.domain.holding import AssetClass, Holding, utcnow

ALLOCATION_FIELDS: Dict[AssetClass, str] = {
    AssetClass.STOCK: "stocks",
    AssetClass.BOND: "bonds",
    AssetClass.MUTUAL_FUND: "mutual_funds",
    AssetClass.ETF: "etfs",
}


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass(frozen=True)
class Allocation:
    """Percentage of total value per asset class."""
    stocks: float = 0.0
    bonds: float = 0.0
    mutual_funds: float = 0.0
    etfs: float = 0.0

    @classmethod
    def zero(cls) -> "Allocation":
        return cls()

    @classmethod
    def from_mapping(cls, values: Dict[AssetClass, float]) -> "Allocation":
        return cls(**{ALLOCATION_FIELDS[k]: v for k, v in values.items()})

    def get(self, asset_class: AssetClass) -> float:
        return getattr(self, ALLOCATION_FIELDS[asset_class])

    def items(self) -> List[Tuple[AssetClass, float]]:
        return [(asset_class, self.get(asset_class)) for asset_class in ALLOCATION_FIELDS]

    def total(self) -> float:
        return self.stocks + self.bonds + self.mutual_funds + self.etfs

    def to_dict(self) -> Dict[str, float]:
        return {
            "stocks": self.stocks,
            "bonds": self.bonds,
            "mutual_funds": self.mutual_funds,
            "etfs": self.etfs,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Allocation":
        return cls(
            stocks=float(data.get("stocks", 0.0)),
            bonds=float(data.get("bonds", 0.0)),
            mutual_funds=float(data.get("mutual_funds", 0.0)),
            etfs=float(data.get("etfs", 0.0)),
        )


@dataclass(frozen=True)
class Performance:
    """Portfolio value and returns; all returns are percentages."""
    total_value: float = 0.0
    total_cost: float = 0.0
    total_gain: float = 0.0
    total_return_percent: float = 0.0
    daily_return: float = 0.0
    weekly_return: float = 0.0
    monthly_return: float = 0.0
    yearly_return: float = 0.0
    ytd_return: float = 0.0
    last_calculated: datetime = field(default_factory=utcnow)

    @classmethod
    def empty(cls, now: Optional[datetime] = None) -> "Performance":
        return cls(last_calculated=now or utcnow())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_value": self.total_value,
            "total_cost": self.total_cost,
            "total_gain": self.total_gain,
            "total_return_percent": self.total_return_percent,
            "daily_return": self.daily_return,
            "weekly_return": self.weekly_return,
            "monthly_return": self.monthly_return,
            "yearly_return": self.yearly_return,
            "ytd_return": self.ytd_return,
            "last_calculated": self.last_calculated.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Performance":
        values = {k: float(v) for k, v in data.items() if k != "last_calculated"}
        return cls(last_calculated=_dt(data["last_calculated"]), **values)


class RiskLevel(str, Enum):
    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"
    AGGRESSIVE = "AGGRESSIVE"


@dataclass(frozen=True)
class RiskSnapshot:
    """Risk statistics; all values are unit-less fractions."""
    volatility: float = 0.0
    beta: float = 0.0
    sharpe_ratio: float = 0.0
    value_at_risk: float = 0.0
    max_drawdown: float = 0.0
    risk_level: RiskLevel = RiskLevel.LOW
    score: float = 0.0
    observations: int = 0
    flags: Tuple[str, ...] = ()

    @classmethod
    def default_low(cls, *flags: str) -> "RiskSnapshot":
        """Risk snapshot for portfolios without enough history to measure."""
        return cls(flags=tuple(flags))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "volatility": self.volatility,
            "beta": self.beta,
            "sharpe_ratio": self.sharpe_ratio,
            "value_at_risk": self.value_at_risk,
            "max_drawdown": self.max_drawdown,
            "risk_level": self.risk_level.value,
            "score": self.score,
            "observations": self.observations,
            "flags": list(self.flags),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RiskSnapshot":
        return cls(
            volatility=float(data["volatility"]),
            beta=float(data["beta"]),
            sharpe_ratio=float(data["sharpe_ratio"]),
            value_at_risk=float(data["value_at_risk"]),
            max_drawdown=float(data["max_drawdown"]),
            risk_level=RiskLevel(data["risk_level"]),
            score=float(data.get("score", 0.0)),
            observations=int(data.get("observations", 0)),
            flags=tuple(data.get("flags", ())),
        )


class RebalanceAction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


@dataclass(frozen=True)
class RebalanceRecommendation:
    asset_class: AssetClass
    action: RebalanceAction
    amount: float  # signed current-value delta; positive means buy

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_class": self.asset_class.value,
            "action": self.action.value,
            "amount": self.amount,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RebalanceRecommendation":
        return cls(
            asset_class=AssetClass(data["asset_class"]),
            action=RebalanceAction(data["action"]),
            amount=float(data["amount"]),
        )


@dataclass(frozen=True)
class RebalanceStatus:
    required: bool
    threshold: float
    deviations: Allocation
    recommendations: Tuple[RebalanceRecommendation, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "required": self.required,
            "threshold": self.threshold,
            "deviations": self.deviations.to_dict(),
            "recommendations": [r.to_dict() for r in self.recommendations],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RebalanceStatus":
        return cls(
            required=bool(data["required"]),
            threshold=float(data["threshold"]),
            deviations=Allocation.from_dict(data["deviations"]),
            recommendations=tuple(
                RebalanceRecommendation.from_dict(r) for r in data.get("recommendations", [])
            ),
        )


@dataclass(frozen=True)
class TargetSettings:
    """Owner's rebalancing preferences."""
    target_allocation: Allocation
    rebalance_threshold: float


@dataclass(frozen=True)
class Portfolio:
    """Aggregate view of one owner's holdings."""
    owner_id: str
    holdings: Tuple[Holding, ...]
    allocation: Allocation
    performance: Performance
    risk: RiskSnapshot
    target_allocation: Allocation
    rebalance_threshold: float
    rebalance: RebalanceStatus
    last_updated: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "holdings": [h.to_dict() for h in self.holdings],
            "allocation": self.allocation.to_dict(),
            "performance": self.performance.to_dict(),
            "risk": self.risk.to_dict(),
            "target_allocation": self.target_allocation.to_dict(),
            "rebalance_threshold": self.rebalance_threshold,
            "rebalance": self.rebalance.to_dict(),
            "last_updated": self.last_updated.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Portfolio":
        return cls(
            owner_id=data["owner_id"],
            holdings=tuple(Holding.from_dict(h) for h in data["holdings"]),
            allocation=Allocation.from_dict(data["allocation"]),
            performance=Performance.from_dict(data["performance"]),
            risk=RiskSnapshot.from_dict(data["risk"]),
            target_allocation=Allocation.from_dict(data["target_allocation"]),
            rebalance_threshold=float(data["rebalance_threshold"]),
            rebalance=RebalanceStatus.from_dict(data["rebalance"]),
            last_updated=_dt(data["last_updated"]),
        )


@dataclass(frozen=True)
class HoldingsDelta:
    """Holdings to add and holding ids to remove."""
    add: Tuple[Holding, ...] = ()
    remove: Tuple[str, ...] = ()

    def is_empty(self) -> bool:
        return not self.add and not self.remove


@dataclass(frozen=True)
class PortfolioChanges:
    """
    One atomic mutation of an owner's holdings and preferences.

    price_updates maps holding id to a freshly fetched price; it is filled by
    the price refresh path rather than by API callers.
    """
    holdings_delta: Optional[HoldingsDelta] = None
    target_allocation: Optional[Allocation] = None
    rebalance_threshold: Optional[float] = None
    price_updates: Dict[str, float] = field(default_factory=dict)
    priced_at: Optional[datetime] = None

    def is_empty(self) -> bool:
        return (
            (self.holdings_delta is None or self.holdings_delta.is_empty())
            and self.target_allocation is None
            and self.rebalance_threshold is None
            and not self.price_updates
        )


@dataclass(frozen=True)
class PartialRefreshFailure:
    """Holdings whose price could not be refreshed; a warning, not an error."""
    failed_symbols: Tuple[str, ...]
    reasons: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"failed_symbols": list(self.failed_symbols), "reasons": dict(self.reasons)}


@dataclass(frozen=True)
class RefreshResult:
    owner_id: str
    updated_symbols: Tuple[str, ...]
    failure: Optional[PartialRefreshFailure] = None
    refreshed_at: datetime = field(default_factory=utcnow)

    @property
    def has_failures(self) -> bool:
        return self.failure is not None and bool(self.failure.failed_symbols)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "updated_symbols": list(self.updated_symbols),
            "failure": self.failure.to_dict() if self.failure else None,
            "refreshed_at": self.refreshed_at.isoformat(),
        }
