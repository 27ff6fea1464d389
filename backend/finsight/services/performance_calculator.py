"""
Performance Calculator Service.

Computes current value, total return and look-back window returns for a
holding set. Historical portfolio values are resolved by the caller (they
come from the holdings store) and passed in, keeping this calculator pure.
"""
import math
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, Mapping, Optional

import numpy as np
import pandas as pd

from finsight.core.exceptions import ComputationError
from finsight.domain.holding import Holding, ensure_utc, utcnow
from finsight.domain.portfolio import Performance


class PerformanceCalculator:
    """
    Calculates portfolio performance from holdings and historical values.

    Window returns use calendar days. Percentages are rounded to 2 decimals
    only when the snapshot is built.
    """

    WINDOW_DAYS: Dict[str, int] = {
        "daily": 1,
        "weekly": 7,
        "monthly": 30,
        "yearly": 365,
    }
    YTD = "ytd"
    PRECISION = 2

    def window_dates(self, now: Optional[datetime] = None) -> Dict[str, datetime]:
        """Look-back dates for every window, including year-to-date."""
        now = ensure_utc(now or utcnow())
        dates = {name: now - timedelta(days=days) for name, days in self.WINDOW_DAYS.items()}
        dates[self.YTD] = datetime(now.year, 1, 1, tzinfo=timezone.utc)
        return dates

    def calculate(
        self,
        holdings: Iterable[Holding],
        historical_values: Mapping[str, Optional[float]],
        now: Optional[datetime] = None,
    ) -> Performance:
        """
        Build the performance snapshot.

        Args:
            holdings: Priced holdings
            historical_values: Window name -> portfolio value at the window date
            now: Calculation time

        Returns:
            Performance with percentages rounded at the boundary
        """
        now = ensure_utc(now or utcnow())
        holdings = list(holdings)
        if not holdings:
            return Performance.empty(now)

        total_value = self.calculate_total_value(holdings)
        total_cost = self.calculate_total_cost(holdings)
        total_return = self.calculate_total_return(total_value, total_cost)

        returns = {
            name: self._period_return(total_value, historical_values.get(name))
            for name in list(self.WINDOW_DAYS) + [self.YTD]
        }

        self._ensure_finite(total_value=total_value, total_cost=total_cost,
                            total_return=total_return, **returns)

        return Performance(
            total_value=round(total_value, self.PRECISION),
            total_cost=round(total_cost, self.PRECISION),
            total_gain=round(total_value - total_cost, self.PRECISION),
            total_return_percent=round(total_return, self.PRECISION),
            daily_return=round(returns["daily"], self.PRECISION),
            weekly_return=round(returns["weekly"], self.PRECISION),
            monthly_return=round(returns["monthly"], self.PRECISION),
            yearly_return=round(returns["yearly"], self.PRECISION),
            ytd_return=round(returns[self.YTD], self.PRECISION),
            last_calculated=now,
        )

    def calculate_total_value(self, holdings: Iterable[Holding]) -> float:
        """Sum of quantity x current price."""
        return float(sum(h.current_value for h in holdings))

    def calculate_total_cost(self, holdings: Iterable[Holding]) -> float:
        """Sum of quantity x cost basis."""
        return float(sum(h.total_cost for h in holdings))

    def calculate_total_return(self, total_value: float, total_cost: float) -> float:
        """Total return percent; 0 for a portfolio with no cost."""
        if total_cost == 0:
            return 0.0
        return (total_value - total_cost) / total_cost * 100

    def _period_return(self, current: float, past: Optional[float]) -> float:
        """Return over a window, 0 when there is no usable starting value."""
        if past is None or not math.isfinite(past) or past <= 0:
            return 0.0
        return (current - past) / past * 100

    def _ensure_finite(self, **values: float) -> None:
        for name, value in values.items():
            if not math.isfinite(value):
                raise ComputationError(f"Non-finite {name}: {value}", field=name)


def historical_value(
    holdings: Iterable[Holding],
    price_history: Mapping[str, pd.Series],
    at: datetime,
) -> float:
    """
    Portfolio value as of a past date using the nearest-prior-date policy.

    For each holding the most recent price at or before `at` is used.
    Holdings purchased after `at` contribute nothing; a holding without any
    price at or before `at` is valued at its cost basis.

    Args:
        holdings: Holding set (current quantities)
        price_history: Symbol -> close price series indexed by date
        at: Valuation date
    """
    at = ensure_utc(at)
    as_of = pd.Timestamp(at.date())
    total = 0.0
    for holding in holdings:
        if holding.purchase_date > at:
            continue
        price = holding.cost_basis
        series = price_history.get(holding.symbol)
        if series is not None and not series.empty:
            series = series.copy()
            series.index = pd.to_datetime(series.index)
            prior = series.sort_index().asof(as_of)
            if prior is not None and not np.isnan(prior):
                price = float(prior)
        total += holding.quantity * price
    return total


# Singleton instance for convenience
performance_calculator = PerformanceCalculator()
