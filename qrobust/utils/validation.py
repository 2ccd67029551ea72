"""Input validation helpers and error types.

Every public entry point calls these to produce clear, early error messages
rather than cryptic pandas/numpy exceptions downstream.
"""

from __future__ import annotations

import math
import warnings
from dataclasses import dataclass, field
from typing import Mapping

import numpy as np
import pandas as pd


class QrobustValidationError(ValueError):
    """Raised when input data or configuration violates expected invariants."""


class InsufficientDataError(QrobustValidationError):
    """Raised when there is not enough history for a window, period or statistic."""


class RunCancelledError(RuntimeError):
    """Raised when a long-running analysis is cancelled or hits its deadline."""


def validate_price_frame(prices: pd.DataFrame) -> None:
    """Validate a wide price DataFrame (dates × symbols).

    Raises :class:`InsufficientDataError` when there is no usable history at
    all, and :class:`QrobustValidationError` on non-positive prices.  Symbols
    with gaps are reported through :mod:`warnings` and simply skipped on the
    dates they are missing.
    """
    if not isinstance(prices, pd.DataFrame):
        raise QrobustValidationError(
            f"prices must be a DataFrame; got {type(prices).__name__}."
        )
    if prices.shape[1] == 0 or prices.dropna(how="all").empty:
        raise InsufficientDataError("No usable price history supplied.")
    empty = [str(c) for c in prices.columns if prices[c].notna().sum() == 0]
    if empty:
        raise InsufficientDataError(f"No price history for symbol(s): {empty}.")
    values = prices.to_numpy(dtype=float)
    finite = values[np.isfinite(values)]
    if (finite <= 0).any():
        n_bad = int((finite <= 0).sum())
        raise QrobustValidationError(
            f"prices contain {n_bad} non-positive value(s)."
        )
    for c in prices.columns:
        n_missing = int(prices[c].isna().sum())
        if n_missing:
            warnings.warn(
                f"Data integrity [{c}]: {n_missing} missing date(s) will be skipped"
            )


@dataclass(frozen=True)
class WeightValidation:
    """Outcome of checking a target-weight map.

    Attributes
    ----------
    valid : bool
        True when the weights are finite and sum to 1 within tolerance.
    total : float
        Sum of the weights as supplied.
    weights : dict
        The weights to use: the input unchanged, or renormalised when
        normalisation was requested.
    normalized : bool
        Whether the weights were rescaled.
    message : str
        Human-readable description of any problem.
    """

    valid: bool
    total: float
    weights: dict[str, float] = field(default_factory=dict)
    normalized: bool = False
    message: str = ""


def validate_target_weights(
    weights: Mapping[str, float],
    tolerance: float = 1e-6,
    normalize: bool = False,
) -> WeightValidation:
    """Check that target weights are finite and sum to one.

    Parameters
    ----------
    weights : mapping
        Symbol -> target weight.
    tolerance : float
        Allowed absolute deviation of the weight sum from 1.
    normalize : bool
        If True, weights that do not sum to one are rescaled and the result
        is reported as valid (with ``normalized=True``).
    """
    if not weights:
        return WeightValidation(False, 0.0, {}, message="no target weights supplied")
    clean = {str(k): float(v) for k, v in weights.items()}
    if not all(math.isfinite(v) for v in clean.values()):
        return WeightValidation(
            False, float("nan"), clean, message="target weights contain non-finite values"
        )
    total = sum(clean.values())
    if abs(total - 1.0) <= tolerance:
        return WeightValidation(True, total, clean)
    if normalize and abs(total) > 1e-12:
        scaled = {k: v / total for k, v in clean.items()}
        warnings.warn(f"Target weights summed to {total:.6f}; renormalised to 1.0")
        return WeightValidation(True, total, scaled, normalized=True)
    return WeightValidation(
        False, total, clean, message=f"target weights sum to {total:.6f}, expected 1.0"
    )


def require_positive(name: str, value: float) -> None:
    """Raise :class:`QrobustValidationError` unless *value* > 0."""
    if not value > 0:
        raise QrobustValidationError(f"{name} must be positive; got {value!r}.")
