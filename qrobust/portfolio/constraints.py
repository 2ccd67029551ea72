"""Position constraints on a single weight vector.

Functions take a weights Series (or array) and return constrained weights
of the same type and index.
"""

from __future__ import annotations

import numpy as np
import pandas as pd

from qrobust.utils.validation import QrobustValidationError


def apply_weight_bounds(
    weights: pd.Series | np.ndarray,
    min_weight: float = 0.0,
    max_weight: float = 1.0,
    max_iterations: int = 100,
) -> pd.Series | np.ndarray:
    """Clip weights into ``[min_weight, max_weight]`` and re-normalise to one.

    After clipping, the shortfall (or excess) is spread evenly across the
    positions not already pinned at the bound it would push them past, and
    the clip is repeated until the weights sum to one.

    Parameters
    ----------
    weights : Series or ndarray
        Portfolio weights.
    min_weight : float
        Lower bound per position.
    max_weight : float
        Upper bound per position.
    max_iterations : int
        Cap on redistribute-and-clip passes.
    """
    w = np.asarray(weights, dtype=float).copy()
    n = len(w)
    if min_weight > max_weight:
        raise QrobustValidationError("min_weight must not exceed max_weight.")
    if n * min_weight > 1 + 1e-12 or n * max_weight < 1 - 1e-12:
        raise QrobustValidationError(
            f"Bounds [{min_weight}, {max_weight}] cannot hold {n} weights summing to 1."
        )

    w = np.clip(w, min_weight, max_weight)
    for _ in range(max_iterations):
        residual = 1.0 - w.sum()
        if abs(residual) < 1e-12:
            break
        free = w < max_weight - 1e-12 if residual > 0 else w > min_weight + 1e-12
        if not free.any():
            break
        w[free] += residual / free.sum()
        w = np.clip(w, min_weight, max_weight)

    if isinstance(weights, pd.Series):
        return pd.Series(w, index=weights.index, name=weights.name)
    return w

