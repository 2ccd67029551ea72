"""Hyperparameter grid search and walk-forward validation."""

from qrobust.validation.optimizer import (
    DateWindow,
    OptimizationMethod,
    OptimizationResult,
    PortfolioStrategyOptimizer,
    default_methods,
)
from qrobust.validation.walk_forward import (
    AggregateStats,
    ParameterStability,
    WalkForwardAnalysis,
    WalkForwardConfig,
    WalkForwardPeriod,
    WalkForwardResult,
    WalkForwardWindow,
)

__all__ = [
    "DateWindow", "OptimizationMethod", "OptimizationResult",
    "PortfolioStrategyOptimizer", "default_methods",
    "AggregateStats", "ParameterStability", "WalkForwardAnalysis",
    "WalkForwardConfig", "WalkForwardPeriod", "WalkForwardResult",
    "WalkForwardWindow",
]
