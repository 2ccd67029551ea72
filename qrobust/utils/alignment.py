"""Price-series alignment and reshaping helpers.

Convert caller-supplied per-symbol price histories into the *wide*
(date × symbol) representation used throughout the library, and derive
return matrices and date-window slices from it.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence, Union

import numpy as np
import pandas as pd

from qrobust.utils.validation import QrobustValidationError, validate_price_frame

PriceInput = Union[pd.Series, Sequence[Mapping[str, Any]]]


def to_price_series(data: PriceInput, name: str | None = None) -> pd.Series:
    """Normalise one symbol's price history to a date-indexed Series.

    Parameters
    ----------
    data : Series or sequence of mappings
        Either a Series indexed by date, or records with ``date`` and
        ``price`` keys.
    name : str, optional
        Name given to the resulting Series.

    Returns
    -------
    Series
        Float prices with a sorted DatetimeIndex and no duplicate dates
        (the last observation wins).
    """
    if isinstance(data, pd.Series):
        series = data.astype(float).copy()
        series.index = pd.to_datetime(series.index)
    else:
        records = list(data)
        if records and not all("date" in r and "price" in r for r in records):
            raise QrobustValidationError(
                "price records must contain 'date' and 'price' keys."
            )
        series = pd.Series(
            [float(r["price"]) for r in records],
            index=pd.to_datetime([r["date"] for r in records]),
            dtype=float,
        )
    series = series[~series.index.duplicated(keep="last")].sort_index()
    series.index.name = "date"
    if name is not None:
        series.name = name
    return series


def price_frame(
    price_data: Mapping[str, PriceInput] | pd.DataFrame,
    symbols: Sequence[str] | None = None,
) -> pd.DataFrame:
    """Build a validated wide price DataFrame from per-symbol histories.

    Rows are the union of all symbols' dates (sorted ascending); a symbol
    with no observation on a date holds NaN there.

    Parameters
    ----------
    price_data : mapping or DataFrame
        ``{symbol: prices}`` or an already-wide DataFrame.
    symbols : sequence of str, optional
        Restrict (and order) the columns.  Every listed symbol must be present.
    """
    if isinstance(price_data, pd.DataFrame):
        wide = price_data.astype(float).copy()
        wide.index = pd.to_datetime(wide.index)
        wide = wide.sort_index()
    else:
        cols = {str(sym): to_price_series(data, name=str(sym)) for sym, data in price_data.items()}
        wide = pd.DataFrame(cols).sort_index() if cols else pd.DataFrame()
    if symbols is not None:
        missing = [s for s in symbols if s not in wide.columns]
        if missing:
            raise QrobustValidationError(f"No price history for symbol(s): {missing}.")
        wide = wide[list(symbols)]
    wide.index.name = "date"
    validate_price_frame(wide)
    return wide


def returns_frame(prices: pd.DataFrame) -> pd.DataFrame:
    """Simple period returns of a wide price frame.

    Gaps are forward-filled before differencing so a missing date does not
    wipe out the following return; leading rows without a return for every
    symbol are dropped.
    """
    rets = prices.ffill().pct_change(fill_method=None)
    return rets.iloc[1:].dropna(how="any")


def slice_window(
    frame: pd.DataFrame | pd.Series,
    start: pd.Timestamp,
    end: pd.Timestamp,
) -> pd.DataFrame | pd.Series:
    """Rows of *frame* with ``start <= date <= end`` (both inclusive)."""
    return frame.loc[(frame.index >= start) & (frame.index <= end)]


def coerce_weights(weights: Any, columns: Sequence[str]) -> np.ndarray:
    """Turn a strategy function's output into a weight vector aligned to *columns*.

    Accepts a sequence / ndarray in column order, a Series or plain mapping
    keyed by symbol (missing symbols get zero), or a mapping holding the
    weights under a ``"weights"`` key.
    """
    if isinstance(weights, Mapping) and "weights" in weights:
        weights = weights["weights"]
    if isinstance(weights, pd.Series):
        w = weights.reindex(list(columns)).fillna(0.0).to_numpy(dtype=float)
    elif isinstance(weights, Mapping):
        w = np.array([float(weights.get(c, 0.0)) for c in columns])
    else:
        w = np.asarray(weights, dtype=float).ravel()
    if w.shape != (len(columns),):
        raise QrobustValidationError(
            f"weights length {w.size} does not match {len(columns)} assets."
        )
    if not np.isfinite(w).all():
        raise QrobustValidationError("weights contain non-finite values.")
    return w


def portfolio_returns(weights: Any, returns: pd.DataFrame) -> pd.Series:
    """Daily returns of a constant-weight portfolio.

    Parameters
    ----------
    weights : sequence, Series or mapping
        Weights aligned to the columns of *returns* (or keyed by column);
        see :func:`coerce_weights`.
    returns : DataFrame
        Asset returns, periods × assets.
    """
    w = coerce_weights(weights, list(returns.columns))
    return pd.Series(returns.to_numpy(dtype=float) @ w, index=returns.index)
