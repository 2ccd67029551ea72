"""Performance relative to a benchmark.

Portfolio and benchmark returns are aligned on their common dates before
any statistic is computed.  Beta is the OLS slope of portfolio on benchmark
returns, i.e. ``cov(p, b) / var(b)``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

import numpy as np
import pandas as pd


@dataclass
class RelativePerformance:
    """Relative-performance statistics.

    Attributes
    ----------
    excess_return : float
        Portfolio total return minus benchmark total return.
    tracking_error : float or None
        Standard deviation of the per-period return differences.
    information_ratio : float or None
        Mean per-period excess return divided by the tracking error.
    beta : float or None
        Sensitivity of portfolio returns to benchmark returns.
    alpha : float or None
        ``portfolio_total - beta * benchmark_total``.
    observations : int
        Number of aligned periods used.
    """

    excess_return: float
    tracking_error: float | None
    information_ratio: float | None
    beta: float | None
    alpha: float | None
    observations: int

    def to_dict(self) -> dict:
        return asdict(self)


def align_returns(portfolio: pd.Series, benchmark: pd.Series) -> tuple[pd.Series, pd.Series]:
    """Inner-join two return series on their index."""
    common = portfolio.index.intersection(benchmark.index)
    return portfolio.reindex(common), benchmark.reindex(common)


def tracking_error(portfolio: pd.Series, benchmark: pd.Series) -> float | None:
    p, b = align_returns(portfolio, benchmark)
    if len(p) < 2:
        return None
    return float((p - b).std())


def information_ratio(portfolio: pd.Series, benchmark: pd.Series) -> float | None:
    te = tracking_error(portfolio, benchmark)
    if not te:
        return None
    p, b = align_returns(portfolio, benchmark)
    return float((p - b).mean() / te)


def beta(portfolio: pd.Series, benchmark: pd.Series) -> float | None:
    p, b = align_returns(portfolio, benchmark)
    if len(p) < 2:
        return None
    cov = np.cov(p.to_numpy(), b.to_numpy(), ddof=1)
    if cov[1, 1] == 0:
        return None
    return float(cov[0, 1] / cov[1, 1])


def relative_performance(
    portfolio: pd.Series,
    benchmark: pd.Series,
    portfolio_total: float,
    benchmark_total: float,
) -> RelativePerformance:
    """Compare portfolio returns against a benchmark.

    Parameters
    ----------
    portfolio, benchmark : Series
        Per-period returns indexed by date.
    portfolio_total, benchmark_total : float
        Total returns over the run, used for excess return and alpha.
    """
    b = beta(portfolio, benchmark)
    alpha = None if b is None else float(portfolio_total - b * benchmark_total)
    p_aligned, _ = align_returns(portfolio, benchmark)
    return RelativePerformance(
        excess_return=float(portfolio_total - benchmark_total),
        tracking_error=tracking_error(portfolio, benchmark),
        information_ratio=information_ratio(portfolio, benchmark),
        beta=b,
        alpha=alpha,
        observations=len(p_aligned),
    )
