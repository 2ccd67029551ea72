"""Backtest configuration dataclass."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from qrobust.utils.calendar import frequency_days
from qrobust.utils.validation import QrobustValidationError, require_positive


@dataclass(frozen=True)
class BacktestConfig:
    """Immutable configuration for a backtest run.

    Parameters
    ----------
    initial_cash : float
        Starting cash endowment in dollars.
    rebalance_freq : str
        ``'daily'``, ``'weekly'``, ``'monthly'`` or ``'quarterly'``.
    drift_threshold : float
        Absolute weight deviation that forces a rebalance before the
        scheduled date.
    risk_free_rate : float
        Annual risk-free rate used in Sharpe / Sortino ratios.
    periods_per_year : int
        Trading days per year used for annualisation.
    average_daily_volume : float
        Reference daily dollar volume fed to the market-impact model.
    """

    initial_cash: float = 100_000.0
    rebalance_freq: Literal["daily", "weekly", "monthly", "quarterly"] = "monthly"
    drift_threshold: float = 0.05
    risk_free_rate: float = 0.0
    periods_per_year: int = 252
    average_daily_volume: float = 1_000_000.0

    def __post_init__(self) -> None:
        require_positive("initial_cash", self.initial_cash)
        require_positive("periods_per_year", self.periods_per_year)
        require_positive("average_daily_volume", self.average_daily_volume)
        frequency_days(self.rebalance_freq)
        if self.drift_threshold < 0:
            raise QrobustValidationError(
                f"drift_threshold must be non-negative; got {self.drift_threshold!r}."
            )

    def to_dict(self) -> dict:
        return {k: getattr(self, k) for k in self.__dataclass_fields__}
