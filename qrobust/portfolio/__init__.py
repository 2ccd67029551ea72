"""Reference allocation functions and weight constraints."""

from qrobust.portfolio.allocation import (
    covariance_matrix,
    portfolio_return,
    portfolio_volatility,
    equal_weights,
    min_variance_weights,
    target_return_weights,
    risk_contributions,
    optimize_risk_parity,
    RiskParityResult,
    implied_returns,
    black_litterman,
    BlackLittermanView,
    BlackLittermanResult,
    equal_weight_strategy,
    mean_variance_strategy,
    risk_parity_strategy,
    black_litterman_strategy,
)
from qrobust.portfolio.constraints import apply_weight_bounds

__all__ = [
    "covariance_matrix", "portfolio_return", "portfolio_volatility",
    "equal_weights", "min_variance_weights", "target_return_weights",
    "risk_contributions", "optimize_risk_parity", "RiskParityResult",
    "implied_returns", "black_litterman", "BlackLittermanView",
    "BlackLittermanResult",
    "equal_weight_strategy", "mean_variance_strategy",
    "risk_parity_strategy", "black_litterman_strategy",
    "apply_weight_bounds",
]
