"""Side-by-side validation of several allocation strategies.

For every strategy the framework computes full-sample weights, then runs
an event-driven backtest, a walk-forward analysis and a Monte Carlo
robustness run on the same price history.  Strategies are ranked per
metric and on a weighted composite; a robustness analysis of the asset
universe and a short summary complete the result.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Mapping, Sequence

import numpy as np
import pandas as pd

from qrobust.backtest.config import BacktestConfig
from qrobust.backtest.costs import TransactionCostModel
from qrobust.backtest.engine import BacktestingEngine, BacktestReport
from qrobust.backtest.rebalancing import RebalancingStrategy
from qrobust.comparison.strategies import (
    STRATEGIC_OVERRIDES,
    TACTICAL_OVERRIDES,
    StrategySpec,
    default_strategies,
)
from qrobust.risk.drawdown import drawdown_series
from qrobust.risk.metrics import performance_summary, sharpe_ratio
from qrobust.risk.relative import relative_performance
from qrobust.simulation.monte_carlo import (
    MonteCarloConfidenceEngine,
    MonteCarloConfig,
    MonteCarloResult,
)
from qrobust.utils.alignment import (
    PriceInput,
    coerce_weights,
    portfolio_returns,
    price_frame,
    returns_frame,
    to_price_series,
)
from qrobust.utils.calendar import frequency_days
from qrobust.utils.parallel import CancellationToken
from qrobust.utils.validation import (
    InsufficientDataError,
    QrobustValidationError,
    RunCancelledError,
)
from qrobust.validation.optimizer import OptimizationMethod
from qrobust.validation.walk_forward import (
    WalkForwardAnalysis,
    WalkForwardConfig,
    WalkForwardResult,
)

logger = logging.getLogger(__name__)

RANKING_WEIGHTS = {
    "sharpe_ratio": 0.30,
    "total_return": 0.25,
    "max_drawdown": 0.20,
    "volatility": 0.15,
    "robustness": 0.10,
}
LOWER_IS_BETTER = frozenset({"max_drawdown", "volatility"})


@dataclass(frozen=True)
class ComparisonConfig:
    """Parameters shared by every strategy in a comparison.

    ``lookback_window``, ``holdout_window`` and ``step_size`` drive the
    walk-forward analysis; it is skipped when the history is shorter than
    one lookback plus one holdout.
    """

    initial_cash: float = 100_000.0
    risk_free_rate: float = 0.02
    rebalance_frequency: str = "quarterly"
    drift_threshold: float = 0.05
    periods_per_year: int = 252
    lookback_window: int = 252
    holdout_window: int = 63
    step_size: int = 21
    min_observations: int = 60
    confidence_level: float = 0.95
    monte_carlo_simulations: int = 1000
    block_length: int = 21
    correlation_windows: tuple[int, ...] = (63, 126, 252)
    strategy_overrides: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    seed: int | None = None
    max_workers: int = 1

    def __post_init__(self) -> None:
        frequency_days(self.rebalance_frequency)
        if self.initial_cash <= 0:
            raise QrobustValidationError("initial_cash must be positive.")
        if not 0 < self.confidence_level < 1:
            raise QrobustValidationError("confidence_level must lie in (0, 1).")
        if self.min_observations < 2:
            raise QrobustValidationError("min_observations must be at least 2.")

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class StrategyEvaluation:
    """Everything computed for one strategy; ``error`` is set if it failed."""

    key: str
    name: str
    config: Mapping[str, Any]
    weights: dict[str, float] = field(default_factory=dict)
    backtest: BacktestReport | None = None
    walk_forward: WalkForwardResult | None = None
    monte_carlo: MonteCarloResult | None = None
    risk_metrics: dict[str, Any] = field(default_factory=dict)
    performance: dict[str, float] = field(default_factory=dict)
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class RankingEntry:
    strategy: str
    value: float


@dataclass
class CorrelationStability:
    mean_correlation: float
    correlation_volatility: float
    stability: float


@dataclass
class SensitivityPoint:
    parameter_value: Any
    sharpe_ratio: float | None = None
    weights: dict[str, float] | None = None
    error: str | None = None


@dataclass
class RobustnessAnalysis:
    correlation_stability: dict[str, CorrelationStability]
    parameter_sensitivity: dict[str, dict[str, list[SensitivityPoint]]]


@dataclass
class ComparisonSummary:
    best_strategy: dict[str, Any] | None
    key_insights: list[str]
    risk_profile: dict[str, list[str]]
    recommendations: list[str]


@dataclass
class ComparisonResult:
    strategies: dict[str, StrategyEvaluation]
    rankings: dict[str, list[RankingEntry]]
    robustness: RobustnessAnalysis
    summary: ComparisonSummary


class StrategyComparisonFramework:
    """Run several allocation strategies through the full validation pipeline.

    Parameters
    ----------
    config : ComparisonConfig, optional
        Shared parameters.  Uses defaults if not provided.
    strategies : mapping, optional
        ``{key: StrategySpec}``; the default set (with the config's
        ``strategy_overrides`` applied) if omitted.
    cost_model : TransactionCostModel, optional
        Cost model for the full-sample backtests.
    """

    def __init__(
        self,
        config: ComparisonConfig | None = None,
        strategies: Mapping[str, StrategySpec] | None = None,
        cost_model: TransactionCostModel | None = None,
    ) -> None:
        self.config = config or ComparisonConfig()
        self.strategies = (
            dict(strategies) if strategies is not None
            else default_strategies(self.config.strategy_overrides)
        )
        self.cost_model = cost_model or TransactionCostModel()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(
        self,
        prices: Mapping[str, PriceInput] | pd.DataFrame,
        benchmark: PriceInput | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> ComparisonResult:
        """Evaluate, rank and summarise every strategy.

        A strategy that fails is recorded with its error and left out of the
        rankings; the run itself fails only when the price history is
        unusable or the run is cancelled.
        """
        wide = price_frame(prices)
        returns = returns_frame(wide)
        if len(returns) < self.config.min_observations:
            raise InsufficientDataError(
                f"Need at least {self.config.min_observations} return observations; "
                f"have {len(returns)}."
            )
        bench = to_price_series(benchmark) if benchmark is not None else None

        evaluations: dict[str, StrategyEvaluation] = {}
        for key, spec in self.strategies.items():
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            logger.info("Running strategy: %s", spec.name)
            try:
                evaluations[key] = self._evaluate(spec, wide, returns, bench, cancel_token)
            except RunCancelledError:
                raise
            except Exception as exc:
                logger.warning("Strategy %s failed: %s", spec.name, exc)
                evaluations[key] = StrategyEvaluation(key, spec.name, spec.config, error=str(exc))

        rankings = self.rank_strategies(evaluations)
        robustness = self.robustness_analysis(returns)
        return ComparisonResult(
            strategies=evaluations,
            rankings=rankings,
            robustness=robustness,
            summary=self._summary(evaluations, rankings, robustness),
        )

    # ------------------------------------------------------------------
    # Per-strategy evaluation
    # ------------------------------------------------------------------

    def _evaluate(
        self,
        spec: StrategySpec,
        wide: pd.DataFrame,
        returns: pd.DataFrame,
        bench: pd.Series | None,
        cancel_token: CancellationToken | None,
    ) -> StrategyEvaluation:
        cfg = self.config
        columns = list(returns.columns)
        weights = coerce_weights(spec.optimize(returns, dict(spec.config)), columns)
        weight_map = {s: float(w) for s, w in zip(columns, weights)}

        strategy = RebalancingStrategy(
            weight_map,
            frequency=cfg.rebalance_frequency,
            threshold=cfg.drift_threshold,
            normalize=True,
        )
        backtest_config = BacktestConfig(
            initial_cash=cfg.initial_cash,
            rebalance_freq=cfg.rebalance_frequency,
            drift_threshold=cfg.drift_threshold,
            risk_free_rate=cfg.risk_free_rate,
            periods_per_year=cfg.periods_per_year,
        )
        report = BacktestingEngine(backtest_config, self.cost_model).run(strategy, wide, bench)

        walk_forward = None
        if len(wide) >= cfg.lookback_window + cfg.holdout_window:
            analysis = WalkForwardAnalysis(
                WalkForwardConfig(
                    lookback_window=cfg.lookback_window,
                    holdout_window=cfg.holdout_window,
                    step_size=cfg.step_size,
                    optimization_method=spec.key,
                    rebalance_frequency=cfg.rebalance_frequency,
                    initial_cash=cfg.initial_cash,
                    risk_free_rate=cfg.risk_free_rate,
                    periods_per_year=cfg.periods_per_year,
                    max_workers=cfg.max_workers,
                ),
                methods={
                    spec.key: OptimizationMethod.from_strategy(
                        spec.key, spec.optimize, spec.config,
                        periods_per_year=cfg.periods_per_year,
                    )
                },
            )
            walk_forward = analysis.run(wide, bench, cancel_token)
        else:
            logger.info("Skipping walk-forward for %s: %d dates", spec.name, len(wide))

        monte_carlo = MonteCarloConfidenceEngine(
            MonteCarloConfig(
                num_simulations=cfg.monte_carlo_simulations,
                confidence_levels=(cfg.confidence_level,),
                block_length=cfg.block_length,
                risk_free_rate=cfg.risk_free_rate,
                periods_per_year=cfg.periods_per_year,
                seed=cfg.seed,
                max_workers=cfg.max_workers,
            )
        ).run(returns, spec.optimize, dict(spec.config), cancel_token)

        port = portfolio_returns(weights, returns)
        risk_metrics: dict[str, Any] = performance_summary(
            port, cfg.risk_free_rate, cfg.periods_per_year
        )
        risk_metrics["current_drawdown"] = float(-drawdown_series(port).iloc[-1])
        if bench is not None and len(bench) > 1:
            bench_returns = bench.pct_change(fill_method=None).iloc[1:]
            risk_metrics["relative"] = relative_performance(
                port,
                bench_returns,
                risk_metrics["total_return"],
                float(bench.iloc[-1] / bench.iloc[0] - 1),
            ).to_dict()

        return StrategyEvaluation(
            key=spec.key,
            name=spec.name,
            config=spec.config,
            weights=weight_map,
            backtest=report,
            walk_forward=walk_forward,
            monte_carlo=monte_carlo,
            risk_metrics=risk_metrics,
            performance=self._arithmetic_performance(port),
        )

    def _arithmetic_performance(self, port: pd.Series) -> dict[str, float]:
        ppy = self.config.periods_per_year
        mean_return = float(port.mean()) * ppy
        vol = float(port.std()) * np.sqrt(ppy)
        return {
            "annualized_mean_return": mean_return,
            "volatility": vol,
            "sharpe_ratio": (mean_return - self.config.risk_free_rate) / vol if vol > 0 else 0.0,
        }

    # ------------------------------------------------------------------
    # Rankings
    # ------------------------------------------------------------------

    @staticmethod
    def rank_strategies(
        evaluations: Mapping[str, StrategyEvaluation],
    ) -> dict[str, list[RankingEntry]]:
        """Per-metric rankings and the weighted overall ranking.

        In every metric the best strategy earns ``n`` points, the next
        ``n - 1`` and so on; the overall score weights those points by
        :data:`RANKING_WEIGHTS`.  Ties keep evaluation order.
        """
        valid = [e for e in evaluations.values() if e.success]
        if not valid:
            return {}
        metrics = {
            e.key: {
                "sharpe_ratio": e.risk_metrics.get("sharpe_ratio", 0.0),
                "total_return": e.backtest.portfolio.total_return if e.backtest else 0.0,
                "max_drawdown": abs(e.risk_metrics.get("max_drawdown", 0.0)),
                "volatility": e.risk_metrics.get("annualized_volatility", 0.0),
                "robustness": e.monte_carlo.robustness_score if e.monte_carlo else 0.0,
            }
            for e in valid
        }
        n = len(valid)
        rankings: dict[str, list[RankingEntry]] = {}
        scores = dict.fromkeys(metrics, 0.0)
        for metric, weight in RANKING_WEIGHTS.items():
            ordered = sorted(
                metrics,
                key=lambda k: metrics[k][metric],
                reverse=metric not in LOWER_IS_BETTER,
            )
            rankings[metric] = [RankingEntry(k, float(metrics[k][metric])) for k in ordered]
            for position, key in enumerate(ordered):
                scores[key] += weight * (n - position)
        overall = sorted(scores, key=scores.get, reverse=True)
        rankings["overall"] = [RankingEntry(k, scores[k]) for k in overall]
        return rankings

    # ------------------------------------------------------------------
    # Robustness analysis
    # ------------------------------------------------------------------

    def robustness_analysis(self, returns: pd.DataFrame) -> RobustnessAnalysis:
        stability: dict[str, CorrelationStability] = {}
        if returns.shape[1] >= 2:
            for window in self.config.correlation_windows:
                if len(returns) <= window:
                    continue
                stability[f"{window}d"] = correlation_stability(returns, window)

        sensitivity: dict[str, dict[str, list[SensitivityPoint]]] = {}
        for key, spec in self.strategies.items():
            if not spec.sensitivity:
                continue
            sensitivity[key] = {
                param: [self._sensitivity_point(spec, returns, param, v) for v in values]
                for param, values in spec.sensitivity.items()
            }
        return RobustnessAnalysis(stability, sensitivity)

    def _sensitivity_point(
        self,
        spec: StrategySpec,
        returns: pd.DataFrame,
        param: str,
        value: Any,
    ) -> SensitivityPoint:
        try:
            weights = coerce_weights(
                spec.optimize(returns, {**spec.config, param: value}), list(returns.columns)
            )
        except Exception as exc:
            logger.debug("Sensitivity %s=%r failed for %s: %s", param, value, spec.key, exc)
            return SensitivityPoint(value, error=str(exc))
        port = portfolio_returns(weights, returns)
        return SensitivityPoint(
            parameter_value=value,
            sharpe_ratio=sharpe_ratio(port, 0.0, self.config.periods_per_year),
            weights={s: float(w) for s, w in zip(returns.columns, weights)},
        )

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def _summary(
        self,
        evaluations: Mapping[str, StrategyEvaluation],
        rankings: Mapping[str, list[RankingEntry]],
        robustness: RobustnessAnalysis,
    ) -> ComparisonSummary:
        best = None
        if rankings.get("overall"):
            top = rankings["overall"][0]
            best = {
                "strategy": top.strategy,
                "name": evaluations[top.strategy].name,
                "score": top.value,
                "reason": "Highest weighted composite score across all metrics",
            }

        insights: list[str] = []
        profile: dict[str, list[str]] = {"conservative": [], "moderate": [], "aggressive": []}
        valid = [e for e in evaluations.values() if e.success]
        if valid:
            def _ret(e):
                return e.backtest.portfolio.total_return

            def _risk(e):
                return e.risk_metrics["annualized_volatility"]

            def _sharpe(e):
                return e.risk_metrics["sharpe_ratio"]

            top_return = max(valid, key=_ret)
            low_risk = min(valid, key=_risk)
            top_sharpe = max(valid, key=_sharpe)
            insights = [
                f"Highest return: {top_return.name} ({_ret(top_return):.2%})",
                f"Lowest risk: {low_risk.name} ({_risk(low_risk):.2%} vol)",
                f"Best risk-adjusted return: {top_sharpe.name} (Sharpe: {_sharpe(top_sharpe):.3f})",
            ]
            for e in valid:
                vol = _risk(e)
                bucket = "conservative" if vol < 0.15 else "moderate" if vol < 0.25 else "aggressive"
                profile[bucket].append(e.name)

        recommendations: list[str] = []
        scores = [
            s.stability for s in robustness.correlation_stability.values()
            if np.isfinite(s.stability)
        ]
        if scores:
            avg = float(np.mean(scores))
            if avg < 0.7:
                recommendations.append(
                    "Consider shorter rebalancing periods due to low correlation stability"
                )
            elif avg > 0.85:
                recommendations.append(
                    "High correlation stability allows for longer rebalancing periods"
                )
        return ComparisonSummary(best, insights, profile, recommendations)


def correlation_stability(returns: pd.DataFrame, window: int) -> CorrelationStability:
    """Stability of pairwise correlations over trailing *window*-period slices.

    For every asset pair, stability is ``1 - std / |mean|`` of its rolling
    correlation; the reported score is the mean over pairs.
    """
    values = returns.to_numpy(dtype=float)
    iu = np.triu_indices(values.shape[1], k=1)
    rolling = []
    for end in range(window, len(values)):
        with np.errstate(invalid="ignore", divide="ignore"):
            corr = np.corrcoef(values[end - window:end], rowvar=False)
        rolling.append(corr[iu])
    rolling = np.asarray(rolling)
    flat = rolling[np.isfinite(rolling)]

    pair_scores = []
    for series in rolling.T:
        series = series[np.isfinite(series)]
        if series.size == 0 or series.mean() == 0:
            continue
        pair_scores.append(1 - series.std() / abs(series.mean()))
    return CorrelationStability(
        mean_correlation=float(flat.mean()) if flat.size else float("nan"),
        correlation_volatility=float(flat.std()) if flat.size else float("nan"),
        stability=float(np.mean(pair_scores)) if pair_scores else float("nan"),
    )


class StrategicAssetAllocation(StrategyComparisonFramework):
    """Long-horizon preset: monthly rebalancing and conservative constraints.

    Parameters
    ----------
    config : ComparisonConfig, optional
        Base parameters; rebalance frequency and strategy overrides are
        replaced by the preset's.
    investor_views : sequence, optional
        Black-Litterman views.
    """

    def __init__(
        self,
        config: ComparisonConfig | None = None,
        investor_views: Sequence = (),
        cost_model: TransactionCostModel | None = None,
    ) -> None:
        overrides = {k: dict(v) for k, v in STRATEGIC_OVERRIDES.items()}
        overrides["black_litterman"]["views"] = list(investor_views)
        base = asdict(config or ComparisonConfig())
        base.update(rebalance_frequency="monthly", strategy_overrides=overrides)
        super().__init__(ComparisonConfig(**base), cost_model=cost_model)


class TacticalAssetAllocation(StrategyComparisonFramework):
    """Short-horizon preset: weekly rebalancing and aggressive constraints."""

    def __init__(
        self,
        config: ComparisonConfig | None = None,
        market_views: Sequence = (),
        cost_model: TransactionCostModel | None = None,
    ) -> None:
        overrides = {k: dict(v) for k, v in TACTICAL_OVERRIDES.items()}
        overrides["black_litterman"]["views"] = list(market_views)
        base = asdict(config or ComparisonConfig())
        base.update(rebalance_frequency="weekly", strategy_overrides=overrides)
        super().__init__(ComparisonConfig(**base), cost_model=cost_model)
