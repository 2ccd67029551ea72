"""Performance and risk metrics of a periodic return series.

A pandas Series is the native input; plain sequences and ndarrays (as
produced by Monte Carlo scenarios) are converted first, so every caller
gets the same ``ddof=1`` sample statistics.  Loss measures (drawdown, VaR,
Expected Shortfall) are reported as positive fractions.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np
import pandas as pd


def _as_series(returns: pd.Series | Sequence[float] | np.ndarray) -> pd.Series:
    if isinstance(returns, pd.Series):
        return returns.astype(float)
    return pd.Series(np.asarray(returns, dtype=float).ravel())


def _growth(returns: pd.Series) -> pd.Series:
    return (1 + returns).cumprod()


def total_return(returns: pd.Series) -> float:
    """Compounded return over the whole series."""
    r = _as_series(returns)
    return float(np.prod(1 + r.to_numpy()) - 1)


def annualized_return(returns: pd.Series, periods_per_year: int = 252) -> float:
    """Compound annual growth rate.

    A path that loses everything reports -1; an empty series reports 0.
    """
    r = _as_series(returns)
    if len(r) == 0:
        return 0.0
    growth = 1 + total_return(r)
    if growth <= 0:
        return -1.0
    years = len(r) / periods_per_year
    return float(growth ** (1 / years) - 1)


def annualized_volatility(
    returns: pd.Series, periods_per_year: int = 252
) -> float:
    """Sample standard deviation scaled by ``sqrt(periods_per_year)``."""
    r = _as_series(returns)
    if len(r) < 2:
        return 0.0
    return float(r.std() * np.sqrt(periods_per_year))


def sharpe_ratio(
    returns: pd.Series,
    risk_free_rate: float = 0.0,
    periods_per_year: int = 252,
) -> float:
    """Annualised Sharpe ratio.

    Parameters
    ----------
    returns : Series or array-like
        Periodic portfolio returns.
    risk_free_rate : float
        Annual risk-free rate, de-annualised per period before subtraction.
    periods_per_year : int
        Periods per year used for annualisation.

    Returns
    -------
    float
        CAGR of the excess returns over annualised volatility; 0 for a
        series with no measurable volatility.
    """
    r = _as_series(returns)
    vol = annualized_volatility(r, periods_per_year)
    if vol < 1e-12:
        return 0.0
    excess = r - risk_free_rate / periods_per_year
    return float(annualized_return(excess, periods_per_year) / vol)


def sortino_ratio(
    returns: pd.Series,
    risk_free_rate: float = 0.0,
    periods_per_year: int = 252,
) -> float:
    """Annualised Sortino ratio (root-mean-square of losing periods as risk)."""
    r = _as_series(returns)
    excess_cagr = annualized_return(r - risk_free_rate / periods_per_year, periods_per_year)
    losses = r[r < 0].to_numpy()
    if losses.size == 0:
        return float("inf") if excess_cagr > 0 else 0.0
    downside = float(np.sqrt(np.mean(losses ** 2)) * np.sqrt(periods_per_year))
    if downside == 0:
        return 0.0
    return float(excess_cagr / downside)


def calmar_ratio(
    returns: pd.Series,
    periods_per_year: int = 252,
) -> float:
    """Annualised return per unit of maximum drawdown."""
    mdd = max_drawdown(returns)
    if mdd == 0:
        return 0.0
    return float(annualized_return(returns, periods_per_year) / mdd)


def max_drawdown(returns: pd.Series) -> float:
    """Deepest peak-to-trough loss of the growth-of-one path (0.25 = 25%).

    The starting capital counts as the first peak.
    """
    r = _as_series(returns)
    if len(r) == 0:
        return 0.0
    growth = _growth(r)
    peaks = growth.cummax().clip(lower=1.0)
    return float(max((1 - growth / peaks).max(), 0.0))


def hit_rate(returns: pd.Series) -> float:
    """Share of periods with a strictly positive return."""
    r = _as_series(returns)
    if len(r) == 0:
        return 0.0
    return float(np.mean(r.to_numpy() > 0))


def profit_factor(returns: pd.Series) -> float:
    """Gross gains over gross losses."""
    r = _as_series(returns).to_numpy()
    gains = r[r > 0].sum()
    losses = -r[r < 0].sum()
    if losses == 0:
        return float("inf") if gains > 0 else 0.0
    return float(gains / losses)


def _tail_index(n: int, confidence_level: float) -> int:
    return int(np.floor((1 - confidence_level) * n))


def value_at_risk(returns: pd.Series, confidence_level: float = 0.95) -> float:
    """Historical Value at Risk as a positive loss fraction.

    The return at position ``floor((1 - confidence) * n)`` of the ascending
    sort, negated.
    """
    ordered = np.sort(_as_series(returns).to_numpy())
    if ordered.size == 0:
        return 0.0
    idx = min(_tail_index(ordered.size, confidence_level), ordered.size - 1)
    return float(-ordered[idx])


def expected_shortfall(returns: pd.Series, confidence_level: float = 0.95) -> float:
    """Historical Expected Shortfall: mean loss up to and including the VaR return."""
    ordered = np.sort(_as_series(returns).to_numpy())
    if ordered.size == 0:
        return 0.0
    tail = ordered[: _tail_index(ordered.size, confidence_level) + 1]
    return float(-tail.mean())


def performance_summary(
    returns: pd.Series,
    risk_free_rate: float = 0.0,
    periods_per_year: int = 252,
) -> dict[str, float]:
    """All of the above for one return series, keyed by metric name."""
    r = _as_series(returns)
    return {
        "total_return": total_return(r),
        "annualized_return": annualized_return(r, periods_per_year),
        "annualized_volatility": annualized_volatility(r, periods_per_year),
        "sharpe_ratio": sharpe_ratio(r, risk_free_rate, periods_per_year),
        "sortino_ratio": sortino_ratio(r, risk_free_rate, periods_per_year),
        "calmar_ratio": calmar_ratio(r, periods_per_year),
        "max_drawdown": max_drawdown(r),
        "hit_rate": hit_rate(r),
        "profit_factor": profit_factor(r),
        "var_95": value_at_risk(r, 0.95),
        "var_99": value_at_risk(r, 0.99),
        "expected_shortfall_95": expected_shortfall(r, 0.95),
        "num_days": len(r),
    }
