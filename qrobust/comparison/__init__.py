"""Multi-strategy comparison: backtest, walk-forward and Monte Carlo side by side."""

from qrobust.comparison.strategies import (
    StrategySpec,
    default_strategies,
    STRATEGIC_OVERRIDES,
    TACTICAL_OVERRIDES,
)
from qrobust.comparison.framework import (
    ComparisonConfig,
    ComparisonResult,
    ComparisonSummary,
    CorrelationStability,
    RankingEntry,
    RobustnessAnalysis,
    SensitivityPoint,
    StrategicAssetAllocation,
    StrategyComparisonFramework,
    StrategyEvaluation,
    TacticalAssetAllocation,
    correlation_stability,
    RANKING_WEIGHTS,
)

__all__ = [
    "StrategySpec", "default_strategies", "STRATEGIC_OVERRIDES", "TACTICAL_OVERRIDES",
    "ComparisonConfig", "ComparisonResult", "ComparisonSummary",
    "CorrelationStability", "RankingEntry", "RobustnessAnalysis",
    "SensitivityPoint", "StrategicAssetAllocation", "StrategyComparisonFramework",
    "StrategyEvaluation", "TacticalAssetAllocation", "correlation_stability",
    "RANKING_WEIGHTS",
]
