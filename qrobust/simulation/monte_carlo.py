"""Monte Carlo confidence intervals and robustness scoring for strategies.

Every trial (a) draws an alternative return history from the baseline,
(b) optionally perturbs the strategy parameters, (c) runs the strategy
function on it and (d) records a :class:`SimulationScenario`.  Trials whose
strategy call fails are kept out of every aggregate.

Each trial seeds its own generator from ``SeedSequence(seed).spawn(n)``,
so results with a fixed seed do not depend on worker count or on the
order in which trials finish.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Mapping, Sequence

import numpy as np
import pandas as pd
from scipy import stats

from qrobust.risk.metrics import max_drawdown, sharpe_ratio, total_return, value_at_risk
from qrobust.simulation.sampling import (
    BlockBootstrapSampler,
    ParameterPerturbation,
    ReturnData,
    take_rows,
)
from qrobust.utils.alignment import coerce_weights
from qrobust.utils.parallel import CancellationToken, map_ordered
from qrobust.utils.validation import InsufficientDataError, QrobustValidationError

logger = logging.getLogger(__name__)

RETURN_DISTRIBUTIONS = ("bootstrap", "normal", "historical")
INTERVAL_METRICS = ("total_return", "volatility", "sharpe_ratio", "max_drawdown", "var_95")
FAILED_TOTAL_RETURN = -1.0

StrategyFunction = Callable[[ReturnData, Mapping[str, Any]], Any]


@dataclass(frozen=True)
class MonteCarloConfig:
    """Parameters for a Monte Carlo robustness run.

    Parameters
    ----------
    num_simulations : int
        Number of trials.
    confidence_levels : tuple of float
        Two-sided interval levels, each in (0, 1).
    block_length : int
        Block length of the bootstrap.
    return_distribution : str
        ``'bootstrap'`` (block bootstrap), ``'normal'`` (normal fit to the
        baseline, multivariate for several assets) or ``'historical'``
        (random permutation of the baseline).
    robustness_threshold : float
        A trial is robust when its metric reaches this fraction of the
        baseline's; also the cut-off for ``is_robust``.
    include_perturbations : bool
        Whether trials may perturb the strategy parameters.
    perturbation_magnitude : float
        Maximum relative parameter shock.
    perturbation_probability : float
        Chance that a trial uses perturbed parameters.
    risk_free_rate, periods_per_year
        Sharpe ratio conventions for scenario metrics.
    seed : int, optional
        Root seed; None draws fresh OS entropy.
    max_workers : int
        Worker threads for trials (1 = sequential).
    progress_interval : int
        Log progress every this many trials.
    """

    num_simulations: int = 10_000
    confidence_levels: tuple[float, ...] = (0.90, 0.95, 0.99)
    block_length: int = 22
    return_distribution: str = "bootstrap"
    robustness_threshold: float = 0.5
    include_perturbations: bool = True
    perturbation_magnitude: float = 0.1
    perturbation_probability: float = 0.5
    risk_free_rate: float = 0.0
    periods_per_year: int = 252
    seed: int | None = None
    max_workers: int = 1
    progress_interval: int = 1000

    def __post_init__(self) -> None:
        if self.num_simulations < 1:
            raise QrobustValidationError("num_simulations must be at least 1.")
        if self.block_length < 1:
            raise QrobustValidationError("block_length must be at least 1.")
        if self.return_distribution not in RETURN_DISTRIBUTIONS:
            raise QrobustValidationError(
                f"Unknown return_distribution {self.return_distribution!r}; "
                f"expected one of {RETURN_DISTRIBUTIONS}."
            )
        if not self.confidence_levels or not all(0 < c < 1 for c in self.confidence_levels):
            raise QrobustValidationError(
                f"confidence_levels must lie in (0, 1); got {self.confidence_levels!r}."
            )
        if not 0 <= self.perturbation_probability <= 1:
            raise QrobustValidationError("perturbation_probability must lie in [0, 1].")
        if self.perturbation_magnitude < 0:
            raise QrobustValidationError("perturbation_magnitude must be non-negative.")

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True, eq=False)
class SimulationScenario:
    """Outcome of one trial.

    ``volatility`` is the per-period standard deviation; ``max_drawdown``
    and ``var_95`` are positive loss fractions.  Failed trials carry
    ``failed=True`` and ``total_return=-1``.
    """

    returns: np.ndarray
    total_return: float
    volatility: float
    sharpe_ratio: float
    max_drawdown: float
    var_95: float
    parameters: dict[str, Any] = field(default_factory=dict)
    perturbations: dict[str, float] = field(default_factory=dict)
    perturbed: bool = False
    failed: bool = False
    error: str | None = None

    @classmethod
    def failure(
        cls,
        error: str,
        parameters: Mapping[str, Any],
        perturbations: Mapping[str, float] | None = None,
    ) -> "SimulationScenario":
        nan = float("nan")
        return cls(
            returns=np.empty(0),
            total_return=FAILED_TOTAL_RETURN,
            volatility=nan,
            sharpe_ratio=nan,
            max_drawdown=nan,
            var_95=nan,
            parameters=dict(parameters),
            perturbations=dict(perturbations or {}),
            perturbed=bool(perturbations),
            failed=True,
            error=error,
        )


@dataclass(frozen=True)
class ConfidenceInterval:
    level: float
    lower: float
    upper: float
    median: float
    mean: float


@dataclass
class MetricRobustness:
    """How trials compare with the baseline for one metric."""

    percentile_above_threshold: float
    percentile_positive: float
    worst_case: float
    best_case: float
    downside_5: float | None = None


@dataclass
class ParameterSensitivity:
    perturbed_mean: float
    base_case_mean: float
    sensitivity_ratio: float


@dataclass
class DistributionStats:
    """Moments of a metric across trials (population skew / excess kurtosis)."""

    mean: float
    median: float
    std: float
    skewness: float
    kurtosis: float
    min: float
    max: float


@dataclass
class ScenarioAnalysis:
    worst_by_return: SimulationScenario
    best_by_return: SimulationScenario
    worst_by_sharpe: SimulationScenario
    best_by_sharpe: SimulationScenario
    return_percentiles: dict[str, SimulationScenario]


@dataclass
class MonteCarloResult:
    """Aggregates over the successful trials of one run."""

    baseline: SimulationScenario
    simulations: list[SimulationScenario]
    failed_simulations: int
    confidence_intervals: dict[str, dict[str, ConfidenceInterval]]
    return_robustness: MetricRobustness
    sharpe_robustness: MetricRobustness
    parameter_sensitivity: ParameterSensitivity | None
    distribution_stats: dict[str, DistributionStats]
    scenario_analysis: ScenarioAnalysis
    robustness_score: float
    is_robust: bool

    def metric_values(self, metric: str) -> np.ndarray:
        if metric not in INTERVAL_METRICS:
            raise QrobustValidationError(f"Unknown metric {metric!r}.")
        return np.array([getattr(s, metric) for s in self.simulations], dtype=float)

    def histogram(self, metric: str = "total_return", bins: int = 50) -> dict[str, np.ndarray]:
        """Histogram of *metric* across trials for a caller-side renderer.

        Returns ``counts``, bin ``edges`` (``bins + 1`` of them) and
        ``density`` (counts as a fraction of trials).
        """
        values = self.metric_values(metric)
        values = values[np.isfinite(values)]
        counts, edges = np.histogram(values, bins=bins)
        density = counts / values.size if values.size else counts.astype(float)
        return {"counts": counts, "edges": edges, "density": density}

    def summary(self) -> dict:
        return {
            "simulations": len(self.simulations),
            "failed_simulations": self.failed_simulations,
            "robustness_score": self.robustness_score,
            "is_robust": self.is_robust,
            "return_robustness": asdict(self.return_robustness),
            "sharpe_robustness": asdict(self.sharpe_robustness),
            "confidence_intervals": {
                metric: {k: asdict(ci) for k, ci in levels.items()}
                for metric, levels in self.confidence_intervals.items()
            },
        }


class PortfolioStrategySimulator:
    """Run a strategy function on one return history and score the outcome.

    The strategy function's output decides the scenario's return path:

    * a mapping with a ``"returns"`` key: that series;
    * otherwise, for a multi-asset history: the output is read as weights
      (see :func:`~qrobust.utils.alignment.coerce_weights`) and the
      constant-weight portfolio return is used;
    * otherwise the single-asset history itself.
    """

    def __init__(
        self,
        strategy_function: StrategyFunction,
        base_parameters: Mapping[str, Any] | None = None,
        risk_free_rate: float = 0.0,
        periods_per_year: int = 252,
    ) -> None:
        self.strategy_function = strategy_function
        self.base_parameters = dict(base_parameters or {})
        self.risk_free_rate = risk_free_rate
        self.periods_per_year = periods_per_year

    def simulate(
        self,
        returns: ReturnData,
        parameters: Mapping[str, Any] | None = None,
        perturbations: Mapping[str, float] | None = None,
    ) -> SimulationScenario:
        params = dict(self.base_parameters if parameters is None else parameters)
        try:
            output = self.strategy_function(returns, params)
            path = self._scenario_returns(output, returns)
        except Exception as exc:
            logger.debug("Strategy evaluation failed: %s", exc)
            return SimulationScenario.failure(str(exc), params, perturbations)

        return SimulationScenario(
            returns=path,
            total_return=total_return(path),
            volatility=float(np.std(path, ddof=1)),
            sharpe_ratio=sharpe_ratio(path, self.risk_free_rate, self.periods_per_year),
            max_drawdown=max_drawdown(path),
            var_95=value_at_risk(path, 0.95),
            parameters=params,
            perturbations=dict(perturbations or {}),
            perturbed=bool(perturbations),
        )

    @staticmethod
    def _scenario_returns(output: Any, returns: ReturnData) -> np.ndarray:
        if isinstance(output, Mapping) and "returns" in output:
            path = np.asarray(output["returns"], dtype=float).ravel()
        elif np.ndim(returns) == 2:
            frame = returns if isinstance(returns, pd.DataFrame) else pd.DataFrame(returns)
            weights = coerce_weights(output, list(frame.columns))
            path = frame.to_numpy(dtype=float) @ weights
        else:
            path = np.asarray(returns, dtype=float).ravel()
        if path.size < 2:
            raise InsufficientDataError("Scenario needs at least 2 returns.")
        if not np.isfinite(path).all():
            raise QrobustValidationError("Scenario returns contain non-finite values.")
        return path


class MonteCarloConfidenceEngine:
    """Monte Carlo confidence intervals and robustness score for a strategy.

    Parameters
    ----------
    config : MonteCarloConfig, optional
        Run parameters.  Uses defaults if not provided.
    """

    def __init__(self, config: MonteCarloConfig | None = None) -> None:
        self.config = config or MonteCarloConfig()

    def run(
        self,
        baseline_returns: ReturnData,
        strategy_function: StrategyFunction,
        base_parameters: Mapping[str, Any] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> MonteCarloResult:
        """Run every trial and aggregate the survivors.

        Parameters
        ----------
        baseline_returns : Series, DataFrame or ndarray
            Historical returns; a 2-D input is periods × assets.
        strategy_function : callable
            ``strategy_function(returns, parameters)``; see
            :class:`PortfolioStrategySimulator` for accepted outputs.
        base_parameters : mapping, optional
            Un-perturbed strategy parameters.
        cancel_token : CancellationToken, optional
            Checked before each trial.

        Raises
        ------
        InsufficientDataError
            With fewer than 2 baseline observations.
        QrobustValidationError
            If the strategy fails on the baseline itself or on every trial.
        RunCancelledError
            If *cancel_token* is cancelled mid-run.
        """
        cfg = self.config
        if len(baseline_returns) < 2:
            raise InsufficientDataError("Need at least 2 baseline return observations.")

        simulator = PortfolioStrategySimulator(
            strategy_function, base_parameters, cfg.risk_free_rate, cfg.periods_per_year
        )
        baseline = simulator.simulate(baseline_returns)
        if baseline.failed:
            raise QrobustValidationError(f"Strategy failed on the baseline returns: {baseline.error}")

        sampler = BlockBootstrapSampler(baseline_returns, cfg.block_length)
        perturber = None
        if cfg.include_perturbations and simulator.base_parameters:
            perturber = ParameterPerturbation(simulator.base_parameters, cfg.perturbation_magnitude)
        seeds = np.random.SeedSequence(cfg.seed).spawn(cfg.num_simulations)

        def _trial(i: int) -> SimulationScenario:
            rng = np.random.default_rng(seeds[i])
            scenario_returns = self._generate_returns(baseline_returns, sampler, rng)
            if perturber is not None and rng.random() < cfg.perturbation_probability:
                shocked = perturber.generate(rng)
                scenario = simulator.simulate(
                    scenario_returns, shocked.parameters, shocked.perturbations
                )
            else:
                scenario = simulator.simulate(scenario_returns)
            if i > 0 and i % cfg.progress_interval == 0:
                logger.info("Monte Carlo progress: %d/%d trials", i, cfg.num_simulations)
            return scenario

        trials = map_ordered(
            _trial, range(cfg.num_simulations), max_workers=cfg.max_workers, token=cancel_token
        )
        survivors = [t for t in trials if not t.failed]
        n_failed = len(trials) - len(survivors)
        if n_failed:
            logger.warning("%d of %d Monte Carlo trials failed", n_failed, len(trials))
        if not survivors:
            raise QrobustValidationError(f"All {len(trials)} Monte Carlo trials failed.")

        return_rob, sharpe_rob = self._robustness(survivors, baseline)
        score = (
            0.4 * return_rob.percentile_above_threshold
            + 0.4 * sharpe_rob.percentile_above_threshold
            + 0.2 * return_rob.percentile_positive
        )
        return MonteCarloResult(
            baseline=baseline,
            simulations=survivors,
            failed_simulations=n_failed,
            confidence_intervals=self._confidence_intervals(survivors),
            return_robustness=return_rob,
            sharpe_robustness=sharpe_rob,
            parameter_sensitivity=self._parameter_sensitivity(survivors),
            distribution_stats={
                "total_return": distribution_stats([s.total_return for s in survivors]),
                "sharpe_ratio": distribution_stats([s.sharpe_ratio for s in survivors]),
            },
            scenario_analysis=self._scenario_analysis(survivors),
            robustness_score=float(score),
            is_robust=score >= cfg.robustness_threshold,
        )

    def _generate_returns(
        self,
        baseline: ReturnData,
        sampler: BlockBootstrapSampler,
        rng: np.random.Generator,
    ) -> ReturnData:
        dist = self.config.return_distribution
        n = len(baseline)
        if dist == "bootstrap":
            return sampler.generate_sample(n, rng)
        if dist == "historical":
            return take_rows(baseline, rng.permutation(n))

        data = np.asarray(baseline, dtype=float)
        if data.ndim == 1:
            draws = rng.normal(data.mean(), data.std(ddof=1), size=n)
        else:
            draws = rng.multivariate_normal(
                data.mean(axis=0), np.atleast_2d(np.cov(data, rowvar=False)), size=n
            )
        if isinstance(baseline, pd.DataFrame):
            return pd.DataFrame(draws, columns=baseline.columns)
        if isinstance(baseline, pd.Series):
            return pd.Series(draws, name=baseline.name)
        return draws

    def _confidence_intervals(
        self, sims: Sequence[SimulationScenario]
    ) -> dict[str, dict[str, ConfidenceInterval]]:
        intervals: dict[str, dict[str, ConfidenceInterval]] = {}
        for metric in INTERVAL_METRICS:
            values = np.array([getattr(s, metric) for s in sims], dtype=float)
            values = values[np.isfinite(values)]
            if values.size == 0:
                continue
            intervals[metric] = {}
            for level in self.config.confidence_levels:
                tail = (1 - level) / 2
                intervals[metric][f"{level * 100:.0f}%"] = ConfidenceInterval(
                    level=level,
                    lower=float(np.quantile(values, tail)),
                    upper=float(np.quantile(values, 1 - tail)),
                    median=float(np.median(values)),
                    mean=float(values.mean()),
                )
        return intervals

    def _robustness(
        self,
        sims: Sequence[SimulationScenario],
        baseline: SimulationScenario,
    ) -> tuple[MetricRobustness, MetricRobustness]:
        thr = self.config.robustness_threshold
        rets = np.array([s.total_return for s in sims])
        sharpes = np.array([s.sharpe_ratio for s in sims])
        return_rob = MetricRobustness(
            percentile_above_threshold=float(np.mean(rets >= baseline.total_return * thr)),
            percentile_positive=float(np.mean(rets > 0)),
            worst_case=float(rets.min()),
            best_case=float(rets.max()),
            downside_5=float(np.quantile(rets, 0.05)),
        )
        sharpe_rob = MetricRobustness(
            percentile_above_threshold=float(np.mean(sharpes >= baseline.sharpe_ratio * thr)),
            percentile_positive=float(np.mean(sharpes > 0)),
            worst_case=float(sharpes.min()),
            best_case=float(sharpes.max()),
        )
        return return_rob, sharpe_rob

    @staticmethod
    def _parameter_sensitivity(sims: Sequence[SimulationScenario]) -> ParameterSensitivity | None:
        perturbed = [s.total_return for s in sims if s.perturbed]
        base = [s.total_return for s in sims if not s.perturbed]
        if not perturbed or not base:
            return None
        perturbed_mean = float(np.mean(perturbed))
        base_mean = float(np.mean(base))
        ratio = perturbed_mean / base_mean if base_mean != 0 else float("nan")
        return ParameterSensitivity(perturbed_mean, base_mean, ratio)

    @staticmethod
    def _scenario_analysis(sims: Sequence[SimulationScenario]) -> ScenarioAnalysis:
        by_return = sorted(sims, key=lambda s: s.total_return)
        by_sharpe = sorted(sims, key=lambda s: s.sharpe_ratio)
        n = len(by_return)
        return ScenarioAnalysis(
            worst_by_return=by_return[0],
            best_by_return=by_return[-1],
            worst_by_sharpe=by_sharpe[0],
            best_by_sharpe=by_sharpe[-1],
            return_percentiles={
                f"p{int(p * 100)}": by_return[min(n - 1, math.floor(p * n))]
                for p in (0.05, 0.25, 0.75, 0.95)
            },
        )


def distribution_stats(values: Sequence[float]) -> DistributionStats:
    """Mean, median, population std, skewness and excess kurtosis."""
    arr = np.asarray(values, dtype=float)
    std = float(arr.std())
    if std == 0:
        skew = kurt = 0.0
    else:
        skew = float(stats.skew(arr, bias=True))
        kurt = float(stats.kurtosis(arr, fisher=True, bias=True))
    return DistributionStats(
        mean=float(arr.mean()),
        median=float(np.median(arr)),
        std=std,
        skewness=skew,
        kurtosis=kurt,
        min=float(arr.min()),
        max=float(arr.max()),
    )
