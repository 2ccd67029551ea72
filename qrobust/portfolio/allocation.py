"""Reference weight-optimisation functions.

Low-level routines operate on an expected-return vector and a covariance
matrix (numpy arrays) and return weight vectors summing to one.  The
``*_strategy`` functions at the bottom wrap them in the strategy-function
interface used by the validation pipeline::

    optimize(returns: DataFrame, config: Mapping) -> ndarray

where *returns* is a periods × assets frame of simple returns and the
result is aligned to its columns.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping, Sequence

import numpy as np
import pandas as pd

from qrobust.portfolio.constraints import apply_weight_bounds
from qrobust.utils.validation import InsufficientDataError, QrobustValidationError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------

def covariance_matrix(returns: pd.DataFrame | np.ndarray) -> np.ndarray:
    """Sample covariance (ddof=1) of a periods × assets return matrix."""
    arr = np.asarray(returns, dtype=float)
    if arr.ndim != 2 or arr.shape[0] < 2:
        raise InsufficientDataError(
            "Need a 2-D return matrix with at least 2 periods to estimate covariance."
        )
    return np.atleast_2d(np.cov(arr, rowvar=False, ddof=1))


def portfolio_return(weights: np.ndarray, expected_returns: np.ndarray) -> float:
    return float(np.dot(weights, expected_returns))


def portfolio_volatility(weights: np.ndarray, cov: np.ndarray) -> float:
    var = float(weights @ cov @ weights)
    return float(np.sqrt(max(var, 0.0)))


def equal_weights(n_assets: int) -> np.ndarray:
    if n_assets < 1:
        raise QrobustValidationError("Need at least one asset.")
    return np.full(n_assets, 1.0 / n_assets)


def min_variance_weights(cov: np.ndarray) -> np.ndarray:
    """Global minimum-variance weights ``Σ⁻¹1 / (1ᵀΣ⁻¹1)``.

    Weights may be negative (short positions).  Raises
    :class:`numpy.linalg.LinAlgError` if *cov* is singular.
    """
    ones = np.ones(cov.shape[0])
    raw = np.linalg.solve(cov, ones)
    denom = ones @ raw
    if abs(denom) < 1e-18:
        raise np.linalg.LinAlgError("Degenerate covariance matrix.")
    return raw / denom


def target_return_weights(
    expected_returns: np.ndarray,
    cov: np.ndarray,
    target_return: float | None = None,
) -> np.ndarray:
    """Weights that approach *target_return* along the min-variance/equal-weight line.

    This is the simplified mean-variance rule: start from the
    minimum-variance portfolio and blend towards equal weight by the
    fraction of the return gap the target asks for (clipped to ``[0, 1]``).
    With no target the minimum-variance portfolio is returned.
    """
    mv = min_variance_weights(cov)
    if target_return is None:
        return mv
    mv_ret = portfolio_return(mv, expected_returns)
    if abs(target_return - mv_ret) < 1e-3:
        return mv
    ew = equal_weights(len(expected_returns))
    ew_ret = portfolio_return(ew, expected_returns)
    if abs(ew_ret - mv_ret) < 1e-3:
        alpha = 0.0
    else:
        alpha = float(np.clip((target_return - mv_ret) / (ew_ret - mv_ret), 0.0, 1.0))
    return (1 - alpha) * mv + alpha * ew


# ---------------------------------------------------------------------------
# Risk parity
# ---------------------------------------------------------------------------

def risk_contributions(weights: np.ndarray, cov: np.ndarray) -> np.ndarray:
    """Fraction of portfolio variance contributed by each asset."""
    var = float(weights @ cov @ weights)
    if var <= 0:
        return np.zeros_like(weights)
    return weights * (cov @ weights) / var


def risk_parity_objective(weights: np.ndarray, cov: np.ndarray) -> float:
    target = 1.0 / len(weights)
    return float(np.sum((risk_contributions(weights, cov) - target) ** 2))


@dataclass
class RiskParityResult:
    weights: np.ndarray
    risk_contributions: np.ndarray
    volatility: float
    converged: bool
    iterations: int
    score: float


def optimize_risk_parity(
    cov: np.ndarray,
    initial_weights: Sequence[float] | None = None,
    max_iterations: int = 100,
    tolerance: float = 1e-6,
    learning_rate: float = 0.1,
) -> RiskParityResult:
    """Equal-risk-contribution weights by multiplicative rebalancing.

    Each iteration scales ``w_i`` by ``(1/n / RC_i) ** learning_rate`` and
    renormalises.  Convergence is declared once no weight moves by more
    than *tolerance* in one iteration.

    Parameters
    ----------
    cov : ndarray
        Asset covariance matrix.
    initial_weights : sequence, optional
        Starting point; equal weight if omitted.
    max_iterations : int
        Iteration cap.
    tolerance : float
        Convergence threshold on the largest weight change.
    learning_rate : float
        Damping exponent of the multiplicative update.

    Returns
    -------
    RiskParityResult
        ``score`` is ``1 - Σ(RC_i - 1/n)²``; 1.0 means perfect parity.
    """
    n = cov.shape[0]
    if n < 2:
        raise QrobustValidationError("Need at least 2 assets for risk parity.")
    w = equal_weights(n) if initial_weights is None else np.asarray(initial_weights, dtype=float)
    w = w / w.sum()
    target = 1.0 / n

    converged = False
    iterations = 0
    while iterations < max_iterations and not converged:
        previous = w.copy()
        rc = risk_contributions(w, cov)
        positive = rc > 0
        w[positive] *= (target / rc[positive]) ** learning_rate
        total = w.sum()
        if total > 0:
            w = w / total
        if np.max(np.abs(w - previous)) < tolerance:
            converged = True
        iterations += 1

    return RiskParityResult(
        weights=w,
        risk_contributions=risk_contributions(w, cov),
        volatility=portfolio_volatility(w, cov),
        converged=converged,
        iterations=iterations,
        score=1.0 - risk_parity_objective(w, cov),
    )


# ---------------------------------------------------------------------------
# Black-Litterman
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BlackLittermanView:
    """An investor view on expected returns.

    ``kind='absolute'``: asset ``assets[0]`` returns *expected_return*.
    ``kind='relative'``: ``assets[0]`` outperforms ``assets[1]`` by it.
    Assets are column positions.
    """

    kind: str
    assets: tuple[int, ...]
    expected_return: float
    confidence: float = 0.25

    def __post_init__(self) -> None:
        needed = {"absolute": 1, "relative": 2}.get(self.kind)
        if needed is None:
            raise QrobustValidationError(f"Unknown view type: {self.kind!r}")
        if len(self.assets) != needed:
            raise QrobustValidationError(
                f"A {self.kind} view needs {needed} asset(s); got {len(self.assets)}."
            )
        if not 0 < self.confidence <= 1:
            raise QrobustValidationError(
                f"View confidence must be in (0, 1]; got {self.confidence!r}."
            )


@dataclass
class BlackLittermanResult:
    weights: np.ndarray
    expected_returns: np.ndarray
    implied_returns: np.ndarray
    portfolio_return: float
    portfolio_volatility: float
    method: str
    views: tuple[BlackLittermanView, ...] = field(default_factory=tuple)


def implied_returns(
    market_weights: np.ndarray,
    cov: np.ndarray,
    risk_aversion: float = 3.0,
) -> np.ndarray:
    """Equilibrium returns ``π = λ Σ w_mkt``."""
    if len(market_weights) != cov.shape[0]:
        raise QrobustValidationError("Market weights must match covariance dimensions.")
    return risk_aversion * cov @ market_weights


def black_litterman(
    market_weights: np.ndarray,
    cov: np.ndarray,
    views: Sequence[BlackLittermanView] = (),
    tau: float = 0.05,
    risk_aversion: float = 3.0,
) -> BlackLittermanResult:
    """Blend equilibrium returns with investor views.

    Without views the market portfolio is returned unchanged.  If the
    posterior cannot be computed (singular matrices) the market portfolio
    is returned with ``method='market_equilibrium_fallback'``.
    """
    w_mkt = np.asarray(market_weights, dtype=float)
    pi = implied_returns(w_mkt, cov, risk_aversion)
    if not views:
        return BlackLittermanResult(
            weights=w_mkt,
            expected_returns=pi,
            implied_returns=pi,
            portfolio_return=portfolio_return(w_mkt, pi),
            portfolio_volatility=portfolio_volatility(w_mkt, cov),
            method="market_equilibrium",
        )

    n, k = len(w_mkt), len(views)
    P = np.zeros((k, n))
    Q = np.zeros(k)
    for i, view in enumerate(views):
        if max(view.assets) >= n:
            raise QrobustValidationError(f"View {i} references an unknown asset.")
        P[i, view.assets[0]] = 1.0
        if view.kind == "relative":
            P[i, view.assets[1]] = -1.0
        Q[i] = view.expected_return
    # view uncertainty scales with 1/confidence and the number of assets touched
    omega = np.diag([
        (1.0 / v.confidence) * np.abs(P[i]).sum() * 0.01 for i, v in enumerate(views)
    ])

    try:
        tau_sigma_inv = np.linalg.inv(tau * cov)
        omega_inv = np.linalg.inv(omega)
        posterior_cov = np.linalg.inv(tau_sigma_inv + P.T @ omega_inv @ P)
        mu = posterior_cov @ (tau_sigma_inv @ pi + P.T @ omega_inv @ Q)
        weights = min_variance_weights(posterior_cov)
    except np.linalg.LinAlgError as exc:
        logger.warning("Black-Litterman posterior failed (%s); using market portfolio", exc)
        return BlackLittermanResult(
            weights=w_mkt,
            expected_returns=pi,
            implied_returns=pi,
            portfolio_return=portfolio_return(w_mkt, pi),
            portfolio_volatility=portfolio_volatility(w_mkt, cov),
            method="market_equilibrium_fallback",
            views=tuple(views),
        )

    return BlackLittermanResult(
        weights=weights,
        expected_returns=mu,
        implied_returns=pi,
        portfolio_return=portfolio_return(weights, mu),
        portfolio_volatility=portfolio_volatility(weights, posterior_cov),
        method="black_litterman",
        views=tuple(views),
    )


# ---------------------------------------------------------------------------
# Strategy functions: optimize(returns, config) -> weights
# ---------------------------------------------------------------------------

def _bounded(weights: np.ndarray, config: Mapping) -> np.ndarray:
    constraints = config.get("constraints")
    if not constraints:
        return weights
    # bounds are widened to admit equal weight when the universe is too small for them
    equal = 1.0 / len(weights)
    return apply_weight_bounds(
        weights,
        min_weight=min(constraints.get("min_weight", 0.0), equal),
        max_weight=max(constraints.get("max_weight", 1.0), equal),
    )


def equal_weight_strategy(returns: pd.DataFrame, config: Mapping | None = None) -> np.ndarray:
    return equal_weights(returns.shape[1])


def mean_variance_strategy(returns: pd.DataFrame, config: Mapping | None = None) -> np.ndarray:
    """Target-return mean-variance weights.

    ``config['target_return']`` is annualised; means and covariances are
    annualised with ``config['periods_per_year']`` (default 252).
    """
    config = config or {}
    ppy = config.get("periods_per_year", 252)
    mu = np.asarray(returns.mean(), dtype=float) * ppy
    cov = covariance_matrix(returns) * ppy
    weights = target_return_weights(mu, cov, config.get("target_return"))
    return _bounded(weights, config)


def risk_parity_strategy(returns: pd.DataFrame, config: Mapping | None = None) -> np.ndarray:
    config = config or {}
    result = optimize_risk_parity(
        covariance_matrix(returns),
        max_iterations=int(config.get("max_iterations", 100)),
        tolerance=config.get("tolerance", 1e-6),
    )
    return _bounded(result.weights, config)


def black_litterman_strategy(returns: pd.DataFrame, config: Mapping | None = None) -> np.ndarray:
    """Black-Litterman weights with an equal-weight market prior.

    ``config['views']`` may hold :class:`BlackLittermanView` objects or
    mappings with ``kind``, ``assets``, ``expected_return`` and optional
    ``confidence``.
    """
    config = config or {}
    views = [
        v if isinstance(v, BlackLittermanView) else BlackLittermanView(
            kind=v["kind"],
            assets=tuple(v["assets"]),
            expected_return=v["expected_return"],
            confidence=v.get("confidence", 0.25),
        )
        for v in config.get("views", ())
    ]
    result = black_litterman(
        equal_weights(returns.shape[1]),
        covariance_matrix(returns),
        views,
        tau=config.get("tau", 0.05),
        risk_aversion=config.get("risk_aversion", 3.0),
    )
    return _bounded(result.weights, config)
