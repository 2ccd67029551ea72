"""Resampling, parameter perturbation and Monte Carlo robustness analysis."""

from qrobust.simulation.sampling import (
    BlockBootstrapSampler,
    ParameterPerturbation,
    PerturbedParameters,
)
from qrobust.simulation.monte_carlo import (
    ConfidenceInterval,
    DistributionStats,
    MetricRobustness,
    MonteCarloConfidenceEngine,
    MonteCarloConfig,
    MonteCarloResult,
    ParameterSensitivity,
    PortfolioStrategySimulator,
    ScenarioAnalysis,
    SimulationScenario,
    distribution_stats,
)

__all__ = [
    "BlockBootstrapSampler", "ParameterPerturbation", "PerturbedParameters",
    "ConfidenceInterval", "DistributionStats", "MetricRobustness",
    "MonteCarloConfidenceEngine", "MonteCarloConfig", "MonteCarloResult",
    "ParameterSensitivity", "PortfolioStrategySimulator", "ScenarioAnalysis",
    "SimulationScenario", "distribution_stats",
]
