"""Rebalance-cadence utilities.

Cadences are counted in calendar days between rebalance dates.
"""

from __future__ import annotations

import math

import pandas as pd

from qrobust.utils.validation import QrobustValidationError

FREQUENCY_DAYS: dict[str, int] = {
    "daily": 1,
    "weekly": 7,
    "monthly": 30,
    "quarterly": 90,
}


def frequency_days(freq: str) -> int:
    """Minimum number of days between scheduled rebalances for *freq*."""
    try:
        return FREQUENCY_DAYS[freq]
    except KeyError:
        raise QrobustValidationError(
            f"Unknown rebalance frequency: {freq!r}; expected one of {sorted(FREQUENCY_DAYS)}."
        ) from None


def days_between(first: pd.Timestamp, second: pd.Timestamp) -> int:
    """Whole calendar days between two dates (order-insensitive, rounded up)."""
    delta = abs(pd.Timestamp(second) - pd.Timestamp(first))
    return int(math.ceil(delta / pd.Timedelta(days=1)))
