"""Utility helpers: validation, alignment, calendars, parallel execution."""

from qrobust.utils.calendar import frequency_days, days_between, FREQUENCY_DAYS
from qrobust.utils.alignment import (
    to_price_series,
    price_frame,
    returns_frame,
    slice_window,
    coerce_weights,
    portfolio_returns,
)
from qrobust.utils.validation import (
    QrobustValidationError,
    InsufficientDataError,
    RunCancelledError,
    WeightValidation,
    validate_price_frame,
    validate_target_weights,
)
from qrobust.utils.parallel import CancellationToken, map_ordered

__all__ = [
    "frequency_days", "days_between", "FREQUENCY_DAYS",
    "to_price_series", "price_frame", "returns_frame", "slice_window",
    "coerce_weights", "portfolio_returns",
    "QrobustValidationError", "InsufficientDataError", "RunCancelledError",
    "WeightValidation", "validate_price_frame", "validate_target_weights",
    "CancellationToken", "map_ordered",
]
