"""Walk-forward (rolling out-of-sample) validation.

History is cut into sliding windows.  Window *i* optimises on the
``lookback_window`` dates starting at ``i * step_size`` and is tested on the
``holdout_window`` dates immediately after; windows stop once fewer than
``holdout_window`` dates remain.  Each window is optimised, backtested
in-sample for reference and backtested out-of-sample for validation.
Windows are independent and may run on a worker pool.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Mapping, Sequence

import numpy as np
import pandas as pd

from qrobust.backtest.config import BacktestConfig
from qrobust.backtest.costs import TransactionCostModel
from qrobust.backtest.engine import BacktestingEngine
from qrobust.backtest.rebalancing import RebalancingStrategy
from qrobust.backtest.state import PerformanceStats
from qrobust.utils.alignment import PriceInput, price_frame, slice_window, to_price_series
from qrobust.utils.calendar import frequency_days
from qrobust.utils.parallel import CancellationToken, map_ordered
from qrobust.utils.validation import (
    InsufficientDataError,
    QrobustValidationError,
    RunCancelledError,
)
from qrobust.validation.optimizer import (
    DateWindow,
    OptimizationMethod,
    PortfolioStrategyOptimizer,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WalkForwardConfig:
    """Parameters for a walk-forward run.

    Parameters
    ----------
    lookback_window : int
        In-sample length in trading dates.
    holdout_window : int
        Out-of-sample length in trading dates.
    step_size : int
        Dates between consecutive window starts.
    optimization_method : str
        Name of a registered :class:`OptimizationMethod`.
    rebalance_frequency : str
        Cadence of the per-window backtests.
    transaction_costs : bool
        Use the default cost model; if False, a frictionless one.
    robustness_threshold : float
        ``is_robust`` is set when the robustness score reaches this.
    initial_cash : float
        Starting cash of every per-window backtest.
    risk_free_rate : float
        Annual risk-free rate for the per-window statistics.
    periods_per_year : int
        Annualisation factor for the optimizer scores and window statistics.
    parameter_ranges : mapping
        Grid overrides passed to the optimizer.
    max_workers : int
        Worker threads for windows (1 = sequential).
    """

    lookback_window: int = 252
    holdout_window: int = 63
    step_size: int = 21
    optimization_method: str = "risk_parity"
    rebalance_frequency: str = "monthly"
    transaction_costs: bool = True
    robustness_threshold: float = 0.5
    initial_cash: float = 100_000.0
    risk_free_rate: float = 0.0
    periods_per_year: int = 252
    parameter_ranges: Mapping[str, Sequence] = field(default_factory=dict)
    max_workers: int = 1

    def __post_init__(self) -> None:
        for name in ("lookback_window", "holdout_window", "step_size"):
            if getattr(self, name) < 1:
                raise QrobustValidationError(
                    f"{name} must be a positive integer; got {getattr(self, name)!r}."
                )
        if self.lookback_window < 3:
            raise QrobustValidationError("lookback_window must cover at least 3 dates.")
        if self.holdout_window < 2:
            raise QrobustValidationError("holdout_window must cover at least 2 dates.")
        frequency_days(self.rebalance_frequency)
        if self.initial_cash <= 0:
            raise QrobustValidationError("initial_cash must be positive.")
        if self.periods_per_year < 1:
            raise QrobustValidationError("periods_per_year must be a positive integer.")

    def to_dict(self) -> dict:
        d = asdict(self)
        d["parameter_ranges"] = {k: list(v) for k, v in self.parameter_ranges.items()}
        return d


@dataclass(frozen=True)
class WalkForwardWindow:
    index: int
    optimization: DateWindow
    test: DateWindow


@dataclass
class WalkForwardPeriod:
    """Outcome of one window.  Stats are None when the window failed."""

    window: WalkForwardWindow
    parameters: dict[str, Any] | None = None
    weights: dict[str, float] | None = None
    in_sample: PerformanceStats | None = None
    out_of_sample: PerformanceStats | None = None
    transaction_costs: float = 0.0
    fallback: bool = False
    success: bool = False
    error: str | None = None

    @property
    def start_date(self) -> pd.Timestamp:
        return self.window.optimization.start

    @property
    def end_date(self) -> pd.Timestamp:
        return self.window.test.end


@dataclass
class AggregateStats:
    """Out-of-sample statistics pooled over the successful windows."""

    periods: int
    average_return: float
    average_sharpe_ratio: float
    average_max_drawdown: float
    volatility: float
    total_transaction_costs: float
    win_rate: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ParameterStability:
    mean: float
    std: float
    coefficient_of_variation: float
    stability_score: float


@dataclass
class WalkForwardResult:
    periods: list[WalkForwardPeriod]
    aggregate_stats: AggregateStats | None
    robustness_score: float
    is_robust: bool
    best_parameters: dict[str, Any] | None
    parameter_stability: dict[str, ParameterStability]

    @property
    def successful_periods(self) -> list[WalkForwardPeriod]:
        return [p for p in self.periods if p.success]

    def summary(self) -> dict:
        return {
            "windows": len(self.periods),
            "successful_windows": len(self.successful_periods),
            "robustness_score": self.robustness_score,
            "is_robust": self.is_robust,
            "best_parameters": self.best_parameters,
            "aggregate_stats": self.aggregate_stats.to_dict() if self.aggregate_stats else None,
            "parameter_stability": {k: asdict(v) for k, v in self.parameter_stability.items()},
        }


class WalkForwardAnalysis:
    """Rolling optimise-then-test validation of a portfolio method.

    Parameters
    ----------
    config : WalkForwardConfig, optional
        Window and backtest parameters.
    methods : mapping, optional
        Extra :class:`OptimizationMethod` objects to register with the
        optimizer (e.g. a wrapped strategy function).
    """

    def __init__(
        self,
        config: WalkForwardConfig | None = None,
        methods: Mapping[str, OptimizationMethod] | None = None,
    ) -> None:
        self.config = config or WalkForwardConfig()
        self.methods = dict(methods or {})

    def generate_time_windows(self, dates: Sequence[pd.Timestamp]) -> list[WalkForwardWindow]:
        """Sliding windows over the sorted trading *dates*.

        Yields ``floor((N - lookback - holdout) / step) + 1`` windows when
        ``N >= lookback + holdout``, none otherwise.
        """
        dates = list(dates)
        lookback = self.config.lookback_window
        holdout = self.config.holdout_window
        windows = []
        start = lookback
        while start + holdout <= len(dates):
            windows.append(
                WalkForwardWindow(
                    index=len(windows),
                    optimization=DateWindow(dates[start - lookback], dates[start - 1]),
                    test=DateWindow(dates[start], dates[start + holdout - 1]),
                )
            )
            start += self.config.step_size
        return windows

    def run(
        self,
        prices: Mapping[str, PriceInput] | pd.DataFrame,
        benchmark: PriceInput | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> WalkForwardResult:
        """Run the analysis over every window.

        Raises
        ------
        InsufficientDataError
            If the history is shorter than one lookback plus one holdout.
        RunCancelledError
            If *cancel_token* is cancelled before all windows finish.
        """
        wide = price_frame(prices)
        required = self.config.lookback_window + self.config.holdout_window
        if len(wide) < required:
            raise InsufficientDataError(
                f"Insufficient data: need {required} dates, have {len(wide)}."
            )
        windows = self.generate_time_windows(wide.index)
        optimizer = PortfolioStrategyOptimizer(
            list(wide.columns),
            wide,
            methods=self.methods,
            periods_per_year=self.config.periods_per_year,
        )
        if self.config.optimization_method not in optimizer.methods:
            raise QrobustValidationError(
                f"Unknown optimization method {self.config.optimization_method!r}; "
                f"expected one of {sorted(optimizer.methods)}."
            )
        bench = to_price_series(benchmark) if benchmark is not None else None

        logger.info(
            "Walk-forward: %d windows, method=%s", len(windows), self.config.optimization_method
        )
        periods = map_ordered(
            lambda w: self._process_window(w, optimizer, wide, bench),
            windows,
            max_workers=self.config.max_workers,
            token=cancel_token,
        )

        successful = [p for p in periods if p.success]
        robustness = self._robustness_score(successful)
        return WalkForwardResult(
            periods=periods,
            aggregate_stats=self._aggregate(successful),
            robustness_score=robustness,
            is_robust=robustness >= self.config.robustness_threshold,
            best_parameters=self._best_parameters(successful),
            parameter_stability=self._parameter_stability(successful),
        )

    def _process_window(
        self,
        window: WalkForwardWindow,
        optimizer: PortfolioStrategyOptimizer,
        wide: pd.DataFrame,
        bench: pd.Series | None,
    ) -> WalkForwardPeriod:
        period = WalkForwardPeriod(window=window)
        logger.info(
            "Window %d: optimise %s..%s, test %s..%s",
            window.index,
            window.optimization.start.date(), window.optimization.end.date(),
            window.test.start.date(), window.test.end.date(),
        )
        try:
            opt = optimizer.optimize_strategy(
                self.config.optimization_method,
                window.optimization,
                self.config.parameter_ranges,
            )
            period.parameters = opt.parameters
            period.fallback = opt.fallback
            period.weights = opt.weight_map(optimizer.symbols)
            period.in_sample = self._backtest(period.weights, window.optimization, wide, bench)
            period.out_of_sample = self._backtest(period.weights, window.test, wide, bench)
            period.transaction_costs = period.out_of_sample.total_transaction_costs
            period.success = True
        except RunCancelledError:
            raise
        except Exception as exc:
            period.error = str(exc)
            logger.warning("Walk-forward window %d failed: %s", window.index, exc)
        return period

    def _backtest(
        self,
        weights: dict[str, float],
        window: DateWindow,
        wide: pd.DataFrame,
        bench: pd.Series | None,
    ) -> PerformanceStats:
        config = BacktestConfig(
            initial_cash=self.config.initial_cash,
            rebalance_freq=self.config.rebalance_frequency,
            risk_free_rate=self.config.risk_free_rate,
            periods_per_year=self.config.periods_per_year,
        )
        cost_model = TransactionCostModel() if self.config.transaction_costs else TransactionCostModel.zero()
        strategy = RebalancingStrategy(
            weights, frequency=self.config.rebalance_frequency, normalize=True
        )
        window_prices = slice_window(wide, window.start, window.end).dropna(axis=1, how="all")
        window_bench = slice_window(bench, window.start, window.end) if bench is not None else None
        report = BacktestingEngine(config, cost_model).run(strategy, window_prices, window_bench)
        return report.portfolio

    @staticmethod
    def _aggregate(successful: list[WalkForwardPeriod]) -> AggregateStats | None:
        if not successful:
            return None
        stats = [p.out_of_sample for p in successful]
        total_returns = np.array([s.total_return for s in stats])
        pooled = np.concatenate([s.returns.to_numpy(dtype=float) for s in stats])
        return AggregateStats(
            periods=len(successful),
            average_return=float(total_returns.mean()),
            average_sharpe_ratio=float(np.mean([s.sharpe_ratio for s in stats])),
            average_max_drawdown=float(np.mean([s.max_drawdown for s in stats])),
            volatility=float(np.std(pooled, ddof=1)) if pooled.size >= 2 else 0.0,
            total_transaction_costs=float(sum(p.transaction_costs for p in successful)),
            win_rate=float((total_returns > 0).mean()),
        )

    @staticmethod
    def _robustness_score(successful: list[WalkForwardPeriod]) -> float:
        """Mean of the positive-return and positive-Sharpe window fractions."""
        if not successful:
            return 0.0
        positive_return = np.mean([p.out_of_sample.total_return > 0 for p in successful])
        positive_sharpe = np.mean([p.out_of_sample.sharpe_ratio > 0 for p in successful])
        return float((positive_return + positive_sharpe) / 2)

    @staticmethod
    def _best_parameters(successful: list[WalkForwardPeriod]) -> dict[str, Any] | None:
        """The parameter set chosen in the most windows (earliest wins ties)."""
        keyed = {}
        counts: Counter = Counter()
        for p in successful:
            if not p.parameters:
                continue
            key = json.dumps(p.parameters, sort_keys=True, default=str)
            keyed.setdefault(key, p.parameters)
            counts[key] += 1
        if not counts:
            return None
        return dict(keyed[counts.most_common(1)[0][0]])

    @staticmethod
    def _parameter_stability(successful: list[WalkForwardPeriod]) -> dict[str, ParameterStability]:
        series: dict[str, list[float]] = {}
        for p in successful:
            for name, value in (p.parameters or {}).items():
                if isinstance(value, bool) or not isinstance(value, (int, float)):
                    continue
                series.setdefault(name, []).append(float(value))

        stability = {}
        for name, values in series.items():
            if len(values) < 2:
                continue
            arr = np.asarray(values)
            mean = float(arr.mean())
            std = float(arr.std())
            cv = std / abs(mean) if mean != 0 else float("inf")
            stability[name] = ParameterStability(
                mean=mean,
                std=std,
                coefficient_of_variation=cv,
                stability_score=1.0 - min(1.0, cv),
            )
        return stability
