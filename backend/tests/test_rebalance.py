"""Rebalance validator tests."""
import pytest

from finsight.core.exceptions import ValidationError
from finsight.domain.holding import AssetClass
from finsight.domain.portfolio import Allocation, RebalanceAction
from finsight.services.rebalance_validator import RebalanceValidator

validator = RebalanceValidator()

TARGET = Allocation(stocks=60, bonds=30, mutual_funds=5, etfs=5)


class TestTargetValidation:

    def test_target_summing_to_100_accepted(self):
        target = Allocation(stocks=70, bonds=20, mutual_funds=5, etfs=5)
        assert validator.validate_target_allocation(target) is target

    def test_target_summing_to_120_rejected(self):
        with pytest.raises(ValidationError) as exc:
            validator.validate_target_allocation(
                Allocation(stocks=80, bonds=30, mutual_funds=5, etfs=5)
            )
        assert exc.value.field == "target_allocation"

    def test_sum_tolerance(self):
        validator.validate_target_allocation(
            Allocation(stocks=33.335, bonds=33.33, mutual_funds=33.33, etfs=0)
        )

    def test_field_out_of_range_names_the_field(self):
        with pytest.raises(ValidationError) as exc:
            validator.validate_target_allocation(
                Allocation(stocks=110, bonds=-10, mutual_funds=0, etfs=0)
            )
        assert exc.value.field == "stocks"

    @pytest.mark.parametrize("threshold", [1, 5, 20])
    def test_threshold_in_range(self, threshold):
        assert validator.validate_threshold(threshold) == threshold

    @pytest.mark.parametrize("threshold", [0.5, 20.5, -1, float("nan")])
    def test_threshold_out_of_range(self, threshold):
        with pytest.raises(ValidationError) as exc:
            validator.validate_threshold(threshold)
        assert exc.value.field == "rebalance_threshold"

    def test_validate_changes_skips_missing_parts(self):
        validator.validate_changes(None, None)
        with pytest.raises(ValidationError):
            validator.validate_changes(None, 25)


class TestEvaluate:

    def test_recommendations_for_deviations_over_threshold(self):
        current = Allocation(stocks=80, bonds=20, mutual_funds=0, etfs=0)

        status = validator.evaluate(current, TARGET, threshold=5, total_value=10000)

        assert status.required
        assert status.deviations == Allocation(stocks=20, bonds=10, mutual_funds=5, etfs=5)
        by_class = {r.asset_class: r for r in status.recommendations}
        assert set(by_class) == {AssetClass.STOCK, AssetClass.BOND}
        assert by_class[AssetClass.STOCK].action is RebalanceAction.SELL
        assert by_class[AssetClass.STOCK].amount == -2000.0
        assert by_class[AssetClass.BOND].action is RebalanceAction.BUY
        assert by_class[AssetClass.BOND].amount == 1000.0

    def test_within_threshold_not_required(self):
        current = Allocation(stocks=62, bonds=28, mutual_funds=5, etfs=5)
        status = validator.evaluate(current, TARGET, threshold=5, total_value=10000)
        assert not status.required
        assert status.recommendations == ()

    def test_amount_rounded_to_cents(self):
        current = Allocation(stocks=53.3333, bonds=36.6667, mutual_funds=5, etfs=5)
        status = validator.evaluate(current, TARGET, threshold=5, total_value=1234.56)
        stocks = next(r for r in status.recommendations if r.asset_class is AssetClass.STOCK)
        assert stocks.amount == round((60 - 53.3333) / 100 * 1234.56, 2)
