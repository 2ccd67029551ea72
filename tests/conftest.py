"""Shared test fixtures for qrobust."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest


@pytest.fixture()
def sample_dates() -> pd.DatetimeIndex:
    """300 business days starting 2020-01-02."""
    return pd.bdate_range("2020-01-02", periods=300, freq="B")


@pytest.fixture()
def tickers() -> list[str]:
    return ["SPY", "TLT", "GLD"]


@pytest.fixture()
def sample_prices(sample_dates, tickers) -> pd.DataFrame:
    """Deterministic synthetic wide close prices (dates × tickers)."""
    rng = np.random.default_rng(0)
    n = len(sample_dates)
    drifts = [0.0005, 0.0002, 0.0003]
    vols = [0.012, 0.008, 0.010]
    data = {
        t: 100.0 * np.exp(np.cumsum(rng.normal(mu, sigma, n)))
        for t, mu, sigma in zip(tickers, drifts, vols)
    }
    return pd.DataFrame(data, index=pd.Index(sample_dates, name="date"))


@pytest.fixture()
def sample_returns(sample_prices) -> pd.DataFrame:
    """Simple daily returns, periods × assets."""
    return sample_prices.pct_change().iloc[1:]


@pytest.fixture()
def benchmark_prices(sample_prices) -> pd.Series:
    """Equal-weight index of the sample prices."""
    return (sample_prices / sample_prices.iloc[0]).mean(axis=1) * 100.0


@pytest.fixture()
def flat_prices(sample_dates) -> pd.DataFrame:
    """Two symbols with constant prices."""
    dates = sample_dates[:60]
    return pd.DataFrame(
        {"AAA": np.full(len(dates), 50.0), "BBB": np.full(len(dates), 20.0)},
        index=dates,
    )


@pytest.fixture()
def positive_returns() -> pd.Series:
    """Single-asset daily returns with a strong positive drift."""
    rng = np.random.default_rng(7)
    dates = pd.bdate_range("2021-01-04", periods=250)
    return pd.Series(rng.normal(0.002, 0.01, 250), index=dates)
