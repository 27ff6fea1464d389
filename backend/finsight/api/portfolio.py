"""
Portfolio API Router.
"""
import uuid
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from finsight.api.deps import get_portfolio_service
from finsight.core.exceptions import (
    AnalyticsError,
    ComputationError,
    InsufficientDataError,
    InvalidInputError,
    PriceFetchError,
    ValidationError,
)
from finsight.domain.holding import Holding
from finsight.domain.portfolio import Allocation, HoldingsDelta, PortfolioChanges
from finsight.services.portfolio_service import PortfolioService

router = APIRouter()

STATUS_CODES = {
    ValidationError: 400,
    InvalidInputError: 400,
    InsufficientDataError: 422,
    PriceFetchError: 503,
    ComputationError: 500,
}


def _to_http(error: AnalyticsError) -> HTTPException:
    status_code = next(
        (code for error_class, code in STATUS_CODES.items() if isinstance(error, error_class)),
        500,
    )
    return HTTPException(status_code=status_code, detail=error.to_dict())


# ---------- Pydantic Schemas ----------

class AllocationSchema(BaseModel):
    stocks: float = 0.0
    bonds: float = 0.0
    mutual_funds: float = 0.0
    etfs: float = 0.0


class HoldingSchema(BaseModel):
    id: str
    owner_id: str
    asset_class: str
    symbol: str
    quantity: float
    cost_basis: float
    current_price: Optional[float] = None
    purchase_date: datetime
    last_updated: Optional[datetime] = None


class PerformanceSchema(BaseModel):
    total_value: float
    total_cost: float
    total_gain: float
    total_return_percent: float
    daily_return: float
    weekly_return: float
    monthly_return: float
    yearly_return: float
    ytd_return: float
    last_calculated: datetime


class RiskSchema(BaseModel):
    volatility: float
    beta: float
    sharpe_ratio: float
    value_at_risk: float
    max_drawdown: float
    risk_level: str
    score: float
    observations: int
    flags: List[str] = []


class RecommendationSchema(BaseModel):
    asset_class: str
    action: str
    amount: float


class RebalanceSchema(BaseModel):
    required: bool
    threshold: float
    deviations: AllocationSchema
    recommendations: List[RecommendationSchema] = []


class PortfolioSchema(BaseModel):
    owner_id: str
    holdings: List[HoldingSchema]
    allocation: AllocationSchema
    performance: PerformanceSchema
    risk: RiskSchema
    target_allocation: AllocationSchema
    rebalance_threshold: float
    rebalance: RebalanceSchema
    last_updated: datetime


class RefreshFailureSchema(BaseModel):
    failed_symbols: List[str]
    reasons: Dict[str, str] = {}


class RefreshResultSchema(BaseModel):
    owner_id: str
    updated_symbols: List[str]
    failure: Optional[RefreshFailureSchema] = None
    refreshed_at: datetime


class HoldingCreate(BaseModel):
    id: Optional[str] = None
    asset_class: str
    symbol: str
    quantity: float
    cost_basis: float
    purchase_date: datetime
    current_price: Optional[float] = None


class PortfolioUpdate(BaseModel):
    add: List[HoldingCreate] = Field(default_factory=list)
    remove: List[str] = Field(default_factory=list)
    target_allocation: Optional[AllocationSchema] = None
    rebalance_threshold: Optional[float] = None

    def to_changes(self, owner_id: str) -> PortfolioChanges:
        """Build domain changes; malformed holdings raise InvalidInputError."""
        added = tuple(
            Holding(
                id=h.id or str(uuid.uuid4()),
                owner_id=owner_id,
                asset_class=h.asset_class,
                symbol=h.symbol,
                quantity=h.quantity,
                cost_basis=h.cost_basis,
                purchase_date=h.purchase_date,
                current_price=h.current_price,
            )
            for h in self.add
        )
        delta = HoldingsDelta(add=added, remove=tuple(self.remove))
        return PortfolioChanges(
            holdings_delta=None if delta.is_empty() else delta,
            target_allocation=(
                Allocation(**self.target_allocation.model_dump())
                if self.target_allocation else None
            ),
            rebalance_threshold=self.rebalance_threshold,
        )


# ---------- Endpoints ----------

@router.get("/{owner_id}", response_model=PortfolioSchema)
async def get_portfolio(
    owner_id: str,
    service: PortfolioService = Depends(get_portfolio_service),
):
    """Aggregate portfolio view."""
    try:
        portfolio = await service.get_portfolio(owner_id)
    except AnalyticsError as e:
        raise _to_http(e) from e
    return portfolio.to_dict()


@router.get("/{owner_id}/allocation", response_model=AllocationSchema)
async def get_allocation(
    owner_id: str,
    service: PortfolioService = Depends(get_portfolio_service),
):
    try:
        allocation = await service.get_allocation(owner_id)
    except AnalyticsError as e:
        raise _to_http(e) from e
    return allocation.to_dict()


@router.get("/{owner_id}/performance", response_model=PerformanceSchema)
async def get_performance(
    owner_id: str,
    service: PortfolioService = Depends(get_portfolio_service),
):
    try:
        performance = await service.get_performance(owner_id)
    except AnalyticsError as e:
        raise _to_http(e) from e
    return performance.to_dict()


@router.get("/{owner_id}/risk", response_model=RiskSchema)
async def get_risk(
    owner_id: str,
    service: PortfolioService = Depends(get_portfolio_service),
):
    """Risk metrics; 422 when there is not enough history to measure them."""
    try:
        risk = await service.get_risk_metrics(owner_id)
    except AnalyticsError as e:
        raise _to_http(e) from e
    return risk.to_dict()


@router.get("/{owner_id}/rebalance", response_model=RebalanceSchema)
async def get_rebalance(
    owner_id: str,
    service: PortfolioService = Depends(get_portfolio_service),
):
    try:
        status = await service.get_rebalance_status(owner_id)
    except AnalyticsError as e:
        raise _to_http(e) from e
    return status.to_dict()


@router.post("/{owner_id}/refresh", response_model=RefreshResultSchema)
async def refresh_prices(
    owner_id: str,
    service: PortfolioService = Depends(get_portfolio_service),
):
    """Refresh current prices; per-symbol failures are reported, not raised."""
    try:
        result = await service.refresh_prices(owner_id)
    except AnalyticsError as e:
        raise _to_http(e) from e
    return result.to_dict()


@router.patch("/{owner_id}", response_model=PortfolioSchema)
async def update_portfolio(
    owner_id: str,
    update: PortfolioUpdate,
    service: PortfolioService = Depends(get_portfolio_service),
):
    """Add/remove holdings and change rebalancing preferences atomically."""
    try:
        portfolio = await service.update_portfolio(owner_id, update.to_changes(owner_id))
    except AnalyticsError as e:
        raise _to_http(e) from e
    return portfolio.to_dict()
