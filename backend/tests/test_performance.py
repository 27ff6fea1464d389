"""Performance calculator and nearest-prior historical valuation tests."""
from datetime import datetime, timezone

import pandas as pd
import pytest

from finsight.core.exceptions import ComputationError
from finsight.services.performance_calculator import PerformanceCalculator, historical_value

from factories import NOW, make_holding

calculator = PerformanceCalculator()


class TestPerformanceCalculator:

    def test_totals_and_window_returns(self):
        holdings = [make_holding(quantity=100, cost_basis=150, current_price=160)]
        historical = {
            "daily": 15000.0,
            "weekly": None,
            "monthly": 0.0,
            "yearly": 8000.0,
            "ytd": 16000.0,
        }

        performance = calculator.calculate(holdings, historical, NOW)

        assert performance.total_value == 16000.0
        assert performance.total_cost == 15000.0
        assert performance.total_gain == 1000.0
        assert performance.total_return_percent == 6.67
        assert performance.daily_return == 6.67
        assert performance.weekly_return == 0.0
        assert performance.monthly_return == 0.0
        assert performance.yearly_return == 100.0
        assert performance.ytd_return == 0.0
        assert performance.last_calculated == NOW

    def test_empty_holdings(self):
        performance = calculator.calculate([], {}, NOW)
        assert performance.total_value == 0.0
        assert performance.total_return_percent == 0.0
        assert performance.daily_return == 0.0

    def test_zero_cost_total_return_is_zero(self):
        assert calculator.calculate_total_return(100.0, 0.0) == 0.0

    def test_negative_window_return(self):
        holdings = [make_holding(quantity=10, cost_basis=100, current_price=90)]
        performance = calculator.calculate(holdings, {"weekly": 1000.0}, NOW)
        assert performance.weekly_return == -10.0

    def test_non_finite_result_raises(self):
        with pytest.raises(ComputationError):
            calculator._ensure_finite(total_value=float("inf"))

    def test_window_dates(self):
        dates = calculator.window_dates(NOW)
        assert dates["daily"] == datetime(2024, 6, 13, 16, 0, tzinfo=timezone.utc)
        assert dates["weekly"] == datetime(2024, 6, 7, 16, 0, tzinfo=timezone.utc)
        assert dates["yearly"] == datetime(2023, 6, 15, 16, 0, tzinfo=timezone.utc)
        assert dates["ytd"] == datetime(2024, 1, 1, tzinfo=timezone.utc)


class TestHistoricalValue:

    @pytest.fixture
    def prices(self):
        return {
            "AAPL": pd.Series(
                [100.0, 110.0],
                index=pd.to_datetime(["2024-06-10", "2024-06-12"]),
            )
        }

    def test_uses_nearest_prior_close(self, prices):
        holding = make_holding("AAPL", quantity=10, cost_basis=90)
        at = datetime(2024, 6, 13, tzinfo=timezone.utc)
        assert historical_value([holding], prices, at) == pytest.approx(1100.0)

    def test_exact_date_close(self, prices):
        holding = make_holding("AAPL", quantity=10, cost_basis=90)
        at = datetime(2024, 6, 10, 20, 0, tzinfo=timezone.utc)
        assert historical_value([holding], prices, at) == pytest.approx(1000.0)

    def test_no_prior_price_falls_back_to_cost_basis(self, prices):
        holding = make_holding("AAPL", quantity=10, cost_basis=90)
        at = datetime(2024, 6, 1, tzinfo=timezone.utc)
        assert historical_value([holding], prices, at) == pytest.approx(900.0)

    def test_unknown_symbol_valued_at_cost_basis(self, prices):
        holding = make_holding("MSFT", quantity=2, cost_basis=300)
        at = datetime(2024, 6, 13, tzinfo=timezone.utc)
        assert historical_value([holding], prices, at) == pytest.approx(600.0)

    def test_holding_purchased_later_is_excluded(self, prices):
        early = make_holding("AAPL", quantity=10, cost_basis=90)
        late = make_holding(
            "AAPL", quantity=5, cost_basis=95,
            purchase_date=datetime(2024, 6, 11, tzinfo=timezone.utc),
        )
        at = datetime(2024, 6, 10, 23, 0, tzinfo=timezone.utc)
        assert historical_value([early, late], prices, at) == pytest.approx(1000.0)
