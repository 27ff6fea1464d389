"""
Allocation Calculator.

Converts a holding set into percentage of total current value per asset class.
"""
import logging
from typing import Dict, Iterable

from finsight.core.exceptions import InvalidInputError
from finsight.domain.holding import AssetClass, Holding
from finsight.domain.portfolio import Allocation

logger = logging.getLogger(__name__)


class AllocationCalculator:
    """
    Normalized percentage-by-asset-class.

    Percentages are rounded to PRECISION decimals; when rounding pushes the
    sum outside 100 +/- SUM_TOLERANCE every value is rescaled by 100 / sum.
    """

    PRECISION = 4
    SUM_TOLERANCE = 0.01

    def calculate(self, holdings: Iterable[Holding]) -> Allocation:
        holdings = list(holdings)
        if not holdings:
            return Allocation.zero()

        values: Dict[AssetClass, float] = {asset_class: 0.0 for asset_class in AssetClass}
        for holding in holdings:
            if holding.current_price is None or holding.current_price <= 0:
                raise InvalidInputError(
                    f"Holding {holding.id} ({holding.symbol}) has no usable current price",
                    field="current_price",
                    details={"holding_id": holding.id, "symbol": holding.symbol},
                )
            values[holding.asset_class] += holding.current_value

        total_value = sum(values.values())
        if total_value <= 0:
            return Allocation.zero()

        percentages = {
            asset_class: round(value / total_value * 100, self.PRECISION)
            for asset_class, value in values.items()
        }

        raw_sum = sum(percentages.values())
        if abs(raw_sum - 100) > self.SUM_TOLERANCE:
            logger.debug(f"Rescaling allocation: rounded percentages sum to {raw_sum}")
            scale = 100 / raw_sum
            percentages = {
                asset_class: round(pct * scale, self.PRECISION)
                for asset_class, pct in percentages.items()
            }

        return Allocation.from_mapping(percentages)


# Singleton instance for convenience
allocation_calculator = AllocationCalculator()
