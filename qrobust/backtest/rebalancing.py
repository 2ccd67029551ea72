"""Rebalancing decisions: scheduled cadence plus drift override."""

from __future__ import annotations

from typing import Mapping

import pandas as pd

from qrobust.utils.calendar import days_between, frequency_days
from qrobust.utils.validation import QrobustValidationError, validate_target_weights


class RebalancingStrategy:
    """Decide when to trade back to a fixed set of target weights.

    A rebalance is due when none has happened yet, when at least the
    cadence's day count has elapsed since the last one, or when any asset's
    weight has drifted more than *threshold* from its target.

    Parameters
    ----------
    target_weights : mapping
        Symbol -> target weight.  Must sum to 1 unless *normalize* is set.
    frequency : str
        ``'daily'``, ``'weekly'``, ``'monthly'`` or ``'quarterly'``.
    threshold : float
        Drift tolerance (absolute weight difference).
    normalize : bool
        Rescale weights that do not sum to 1 instead of rejecting them.
    """

    def __init__(
        self,
        target_weights: Mapping[str, float],
        frequency: str = "monthly",
        threshold: float = 0.05,
        normalize: bool = False,
    ) -> None:
        self.frequency = frequency
        self.frequency_days = frequency_days(frequency)
        self.threshold = float(threshold)
        self.normalize = normalize
        self.target_weights: dict[str, float] = {}
        self.last_rebalance_date: pd.Timestamp | None = None
        self.update_weights(target_weights)

    def update_weights(self, new_weights: Mapping[str, float]) -> None:
        """Replace the target weights (validated the same way as at construction).

        Symbols missing from *new_weights* that were targeted before keep a
        target of 0, so the next rebalance sells them out.
        """
        check = validate_target_weights(new_weights, normalize=self.normalize)
        if not check.valid:
            raise QrobustValidationError(f"Invalid target weights: {check.message}.")
        dropped = {s: 0.0 for s in self.target_weights if s not in check.weights}
        self.target_weights = {**check.weights, **dropped}

    def exceeds_drift(self, current_weights: Mapping[str, float]) -> bool:
        for symbol, target in self.target_weights.items():
            if abs(current_weights.get(symbol, 0.0) - target) > self.threshold:
                return True
        return False

    def needs_rebalancing(self, current_weights: Mapping[str, float], date: pd.Timestamp) -> bool:
        if self.last_rebalance_date is None:
            return True
        if days_between(self.last_rebalance_date, date) >= self.frequency_days:
            return True
        return self.exceeds_drift(current_weights)

    def mark_rebalanced(self, date: pd.Timestamp) -> None:
        self.last_rebalance_date = pd.Timestamp(date)

    def get_target_values(self, total_value: float) -> dict[str, float]:
        """Dollar targets per symbol for a portfolio worth *total_value*."""
        return {s: total_value * w for s, w in self.target_weights.items()}
