"""Risk and performance analysis."""

from qrobust.risk.metrics import (
    total_return,
    annualized_return,
    annualized_volatility,
    sharpe_ratio,
    sortino_ratio,
    calmar_ratio,
    max_drawdown,
    hit_rate,
    profit_factor,
    value_at_risk,
    expected_shortfall,
    performance_summary,
)
from qrobust.risk.drawdown import (
    DrawdownInfo,
    drawdown_series,
    max_drawdown_info,
)
from qrobust.risk.relative import (
    RelativePerformance,
    relative_performance,
    tracking_error,
    information_ratio,
    beta,
)

__all__ = [
    "total_return", "annualized_return", "annualized_volatility",
    "sharpe_ratio", "sortino_ratio", "calmar_ratio",
    "max_drawdown", "hit_rate", "profit_factor",
    "value_at_risk", "expected_shortfall", "performance_summary",
    "DrawdownInfo", "drawdown_series", "max_drawdown_info",
    "RelativePerformance", "relative_performance",
    "tracking_error", "information_ratio", "beta",
]
