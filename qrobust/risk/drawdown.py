"""Drawdown analysis."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd


@dataclass(frozen=True)
class DrawdownInfo:
    """Worst peak-to-trough episode of a value path.

    Attributes
    ----------
    max_drawdown : float
        Depth as a positive fraction of the peak.
    peak : int
        Position of the peak preceding the worst trough.
    trough : int
        Position of the worst trough.
    recovery : int or None
        Position at which the path first regains the peak, or None if it
        never does.
    drawdown_period : int
        Observations from peak to recovery (or to the end of the path when
        unrecovered).
    """

    max_drawdown: float
    peak: int
    trough: int
    recovery: int | None
    drawdown_period: int


def drawdown_series(returns: pd.Series) -> pd.Series:
    """Compute the drawdown time-series from daily returns.

    Returns
    -------
    Series
        Drawdown at each date (non-positive values; 0 at peaks).
    """
    cum = (1 + returns).cumprod()
    running_max = cum.cummax()
    return cum / running_max - 1


def max_drawdown_info(values: pd.Series | np.ndarray) -> DrawdownInfo:
    """Locate the maximum drawdown of a value (or cumulative-return) path.

    Parameters
    ----------
    values : Series or ndarray
        Portfolio values or growth-of-one path; must be positive.
    """
    path = np.asarray(values, dtype=float)
    if path.size < 2:
        return DrawdownInfo(0.0, 0, 0, None, 0)
    running_max = np.maximum.accumulate(path)
    dd = (running_max - path) / running_max
    trough = int(np.argmax(dd))
    depth = float(dd[trough])
    if depth <= 0:
        return DrawdownInfo(0.0, 0, 0, None, 0)
    peak = int(np.argmax(path[: trough + 1]))
    after = np.nonzero(path[trough:] >= path[peak])[0]
    recovery = int(trough + after[0]) if after.size else None
    period = (recovery - peak) if recovery is not None else (path.size - peak - 1)
    return DrawdownInfo(depth, peak, trough, recovery, period)
