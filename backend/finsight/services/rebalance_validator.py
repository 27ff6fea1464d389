"""
Rebalance Validator.

Validates target allocations and rebalance thresholds, and turns the gap
between current and target allocation into buy/sell recommendations.
"""
import logging
import math
from typing import List, Optional

from finsight.core.exceptions import ValidationError
from finsight.domain.portfolio import (
    ALLOCATION_FIELDS,
    Allocation,
    RebalanceAction,
    RebalanceRecommendation,
    RebalanceStatus,
)

logger = logging.getLogger(__name__)


class RebalanceValidator:
    """Target allocation rules and deviation-triggered recommendations."""

    SUM_TOLERANCE = 0.01
    MIN_THRESHOLD = 1.0
    MAX_THRESHOLD = 20.0

    def validate_target_allocation(self, target: Allocation) -> Allocation:
        """Each field within [0, 100] and the total within 100 +/- 0.01."""
        for asset_class, value in target.items():
            name = ALLOCATION_FIELDS[asset_class]
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ValidationError(f"{name} must be a number", field=name)
            if value < 0 or value > 100:
                raise ValidationError(
                    f"{name} must be between 0 and 100, got {value}", field=name
                )

        total = target.total()
        if abs(total - 100) > self.SUM_TOLERANCE:
            raise ValidationError(
                f"Target allocation must sum to 100%, got {round(total, 4)}",
                field="target_allocation",
                details={"total": total},
            )
        return target

    def validate_threshold(self, threshold: float) -> float:
        """Rebalance threshold is a percentage between 1 and 20."""
        if (
            not isinstance(threshold, (int, float))
            or not math.isfinite(threshold)
            or threshold < self.MIN_THRESHOLD
            or threshold > self.MAX_THRESHOLD
        ):
            raise ValidationError(
                f"Rebalance threshold must be between {self.MIN_THRESHOLD:g}% "
                f"and {self.MAX_THRESHOLD:g}%, got {threshold}",
                field="rebalance_threshold",
            )
        return float(threshold)

    def evaluate(
        self,
        current: Allocation,
        target: Allocation,
        threshold: float,
        total_value: float,
    ) -> RebalanceStatus:
        """
        Compare current and target allocation.

        Args:
            current: Current allocation percentages
            target: Target allocation percentages
            threshold: Maximum tolerated deviation, in percentage points
            total_value: Current portfolio value, used to size trades

        Returns:
            RebalanceStatus with one recommendation per asset class over threshold
        """
        deviations = {}
        recommendations: List[RebalanceRecommendation] = []
        for asset_class, current_pct in current.items():
            target_pct = target.get(asset_class)
            deviation = abs(current_pct - target_pct)
            deviations[asset_class] = round(deviation, 4)
            if deviation <= threshold:
                continue

            action = RebalanceAction.BUY if current_pct < target_pct else RebalanceAction.SELL
            amount = round((target_pct - current_pct) / 100 * total_value, 2)
            recommendations.append(RebalanceRecommendation(asset_class, action, amount))

        if recommendations:
            logger.debug(
                f"Rebalance required: {[(r.asset_class.value, r.action.value) for r in recommendations]}"
            )

        return RebalanceStatus(
            required=bool(recommendations),
            threshold=threshold,
            deviations=Allocation.from_mapping(deviations),
            recommendations=tuple(recommendations),
        )

    def validate_changes(
        self,
        target: Optional[Allocation],
        threshold: Optional[float],
    ) -> None:
        """Validate whichever preferences a change set carries."""
        if target is not None:
            self.validate_target_allocation(target)
        if threshold is not None:
            self.validate_threshold(threshold)


# Singleton instance for convenience
rebalance_validator = RebalanceValidator()
