"""
Risk Analytics Calculator.

Computes volatility, beta, Sharpe ratio, historical Value-at-Risk, maximum
drawdown and a discrete risk level from a daily portfolio value series.

Degenerate inputs that still have a defined answer (flat series, a single
return, a zero starting value) resolve to a default and add a flag to the
snapshot. Inputs with no defined answer raise InsufficientDataError.
"""
import logging
import math
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np

from finsight.core.exceptions import ComputationError, InsufficientDataError, InvalidInputError
from finsight.domain.portfolio import RiskLevel, RiskSnapshot

logger = logging.getLogger(__name__)

FLAG_ZERO_VOLATILITY = "zero_volatility"
FLAG_SINGLE_OBSERVATION = "single_observation"
FLAG_ZERO_BASE_VALUE = "zero_base_value"
FLAG_INSUFFICIENT_DATA = "insufficient_data"
FLAG_MARKET_DATA_UNAVAILABLE = "market_data_unavailable"


@dataclass(frozen=True)
class RiskPolicy:
    """
    Risk classification policy.

    score = weight_volatility * volatility + weight_beta * beta
            + weight_drawdown * max_drawdown
    A score below threshold_low is LOW, below threshold_moderate MODERATE,
    below threshold_high HIGH, otherwise AGGRESSIVE.
    """
    weight_volatility: float = 0.4
    weight_beta: float = 0.3
    weight_drawdown: float = 0.3
    threshold_low: float = 0.05
    threshold_moderate: float = 0.10
    threshold_high: float = 0.15

    def score(self, volatility: float, beta: float, max_drawdown: float) -> float:
        return (
            self.weight_volatility * volatility
            + self.weight_beta * beta
            + self.weight_drawdown * max_drawdown
        )

    def classify(self, score: float) -> RiskLevel:
        if score < self.threshold_low:
            return RiskLevel.LOW
        if score < self.threshold_moderate:
            return RiskLevel.MODERATE
        if score < self.threshold_high:
            return RiskLevel.HIGH
        return RiskLevel.AGGRESSIVE


class RiskAnalyticsCalculator:
    """Risk statistics over a trailing daily value series."""

    TRADING_DAYS_PER_YEAR = 252
    PRECISION = 4

    def __init__(
        self,
        risk_free_rate: float = 0.02,
        confidence: float = 0.95,
        policy: RiskPolicy = None,
        trading_days_per_year: int = TRADING_DAYS_PER_YEAR,
    ):
        self.risk_free_rate = risk_free_rate
        self.confidence = confidence
        self.policy = policy or RiskPolicy()
        self.trading_days_per_year = trading_days_per_year

    def calculate(
        self,
        values: Sequence[float],
        market_returns: Sequence[float],
    ) -> RiskSnapshot:
        """
        Calculate the risk snapshot.

        Args:
            values: Daily portfolio values, oldest first
            market_returns: Market proxy daily returns, oldest first

        Returns:
            RiskSnapshot rounded to 4 decimals

        Raises:
            InsufficientDataError: fewer than 2 values, or a flat market series
        """
        returns, flags = self.daily_returns(values)
        market = self._as_array(market_returns, "market_returns")

        volatility, vol_flags = self.calculate_volatility(returns)
        flags.extend(vol_flags)
        beta = self.calculate_beta(returns, market)
        sharpe, sharpe_flags = self.calculate_sharpe(returns, volatility)
        flags.extend(sharpe_flags)
        var = self.calculate_var(returns)
        max_dd = self.calculate_max_drawdown(returns)

        score = self.policy.score(volatility, beta, max_dd)
        self._ensure_finite(volatility=volatility, beta=beta, sharpe_ratio=sharpe,
                            value_at_risk=var, max_drawdown=max_dd, score=score)
        risk_level = self.policy.classify(score)

        return RiskSnapshot(
            volatility=round(volatility, self.PRECISION),
            beta=round(beta, self.PRECISION),
            sharpe_ratio=round(sharpe, self.PRECISION),
            value_at_risk=round(var, self.PRECISION),
            max_drawdown=round(max_dd, self.PRECISION),
            risk_level=risk_level,
            score=round(score, 6),
            observations=int(returns.size),
            flags=tuple(dict.fromkeys(flags)),
        )

    def daily_returns(self, values: Sequence[float]) -> Tuple[np.ndarray, List[str]]:
        """Simple returns between consecutive days."""
        series = self._as_array(values, "values")
        if series.size < 2:
            raise InsufficientDataError(
                f"Risk metrics need at least 2 daily values, got {series.size}",
                field="values",
            )
        if (series < 0).any():
            raise InvalidInputError("Portfolio values cannot be negative", field="values")

        flags: List[str] = []
        previous = series[:-1]
        current = series[1:]
        zero_base = previous == 0
        if zero_base.any():
            flags.append(FLAG_ZERO_BASE_VALUE)
        safe_previous = np.where(zero_base, 1.0, previous)
        returns = np.where(zero_base, 0.0, (current - previous) / safe_previous)
        return returns, flags

    def calculate_volatility(self, returns: np.ndarray) -> Tuple[float, List[str]]:
        """Annualized sample standard deviation of daily returns."""
        if returns.size < 2:
            return 0.0, [FLAG_SINGLE_OBSERVATION]
        daily_vol = float(np.std(returns, ddof=1))
        return daily_vol * math.sqrt(self.trading_days_per_year), []

    def calculate_beta(self, returns: np.ndarray, market_returns: np.ndarray) -> float:
        """Covariance with the market over the market variance (tail-aligned)."""
        overlap = min(returns.size, market_returns.size)
        if overlap < 2:
            raise InsufficientDataError(
                f"Beta needs at least 2 overlapping returns, got {overlap}",
                field="market_returns",
            )
        portfolio = returns[-overlap:]
        market = market_returns[-overlap:]

        market_variance = float(np.var(market, ddof=1))
        if market_variance == 0:
            raise InsufficientDataError(
                "Market return series has zero variance", field="market_returns"
            )
        covariance = float(np.cov(portfolio, market, ddof=1)[0, 1])
        return covariance / market_variance

    def calculate_sharpe(self, returns: np.ndarray, volatility: float) -> Tuple[float, List[str]]:
        """(mean daily return - risk-free rate) / volatility; 0 when volatility is 0."""
        if volatility == 0:
            return 0.0, [FLAG_ZERO_VOLATILITY]
        excess = float(np.mean(returns)) - self.risk_free_rate
        return excess / volatility, []

    def calculate_var(self, returns: np.ndarray) -> float:
        """Historical VaR: negated return at the (1 - confidence) percentile index."""
        ordered = np.sort(returns)
        index = math.floor((1 - self.confidence) * ordered.size)
        index = min(index, ordered.size - 1)
        return -float(ordered[index])

    def calculate_max_drawdown(self, returns: np.ndarray) -> float:
        """Largest peak-to-trough decline of the compounded return curve."""
        curve = np.concatenate(([1.0], np.cumprod(1.0 + returns)))
        # peaks never drop below the 1.0 starting point
        peaks = np.maximum.accumulate(curve)
        drawdowns = (peaks - curve) / peaks
        return max(float(drawdowns.max()), 0.0)

    def _as_array(self, values: Sequence[float], name: str) -> np.ndarray:
        try:
            array = np.asarray(list(values), dtype=float)
        except (TypeError, ValueError):
            raise InvalidInputError(f"{name} must be numeric", field=name) from None
        if not np.isfinite(array).all():
            raise InvalidInputError(f"{name} contains non-finite values", field=name)
        return array

    def _ensure_finite(self, **values: float) -> None:
        for name, value in values.items():
            if not math.isfinite(value):
                logger.error(f"Risk calculation produced non-finite {name}: {value}")
                raise ComputationError(f"Non-finite {name}: {value}", field=name)


# Singleton instance for convenience
risk_calculator = RiskAnalyticsCalculator()
