"""Tests for qrobust.risk."""

import numpy as np
import pandas as pd
import pytest

from qrobust.risk.metrics import (
    total_return,
    annualized_return,
    annualized_volatility,
    sharpe_ratio,
    sortino_ratio,
    max_drawdown,
    hit_rate,
    profit_factor,
    value_at_risk,
    expected_shortfall,
    performance_summary,
)
from qrobust.risk.drawdown import drawdown_series, max_drawdown_info
from qrobust.risk.relative import beta, information_ratio, relative_performance, tracking_error


@pytest.fixture()
def daily_returns():
    rng = np.random.default_rng(42)
    dates = pd.bdate_range("2020-01-02", periods=500)
    return pd.Series(rng.normal(0.0003, 0.01, 500), index=dates)


class TestMetrics:
    def test_total_return_simple(self):
        r = pd.Series([0.01, 0.02, -0.01])
        expected = (1.01 * 1.02 * 0.99) - 1
        np.testing.assert_allclose(total_return(r), expected, rtol=1e-10)

    def test_accepts_ndarray(self):
        r = np.array([0.01, 0.02, -0.01])
        np.testing.assert_allclose(total_return(r), total_return(pd.Series(r)))

    def test_annualized_return_sign(self, daily_returns):
        assert annualized_return(daily_returns) > 0

    def test_annualized_vol_positive(self, daily_returns):
        assert annualized_volatility(daily_returns) > 0

    def test_sharpe_positive_for_positive_drift(self, daily_returns):
        assert sharpe_ratio(daily_returns) > 0

    def test_sharpe_zero_for_constant_returns(self):
        assert sharpe_ratio(pd.Series([0.001] * 10)) == 0.0

    def test_sortino_infinite_without_losses(self):
        assert sortino_ratio(pd.Series([0.01, 0.02, 0.005])) == float("inf")

    def test_max_drawdown_positive_fraction(self):
        r = pd.Series([0.10, -0.20, 0.05])
        # 1.1 -> 0.88: 20% off the peak
        np.testing.assert_allclose(max_drawdown(r), 0.20)

    def test_max_drawdown_zero_when_rising(self):
        assert max_drawdown(pd.Series([0.01, 0.02, 0.03])) == 0.0

    def test_hit_rate_bounded(self, daily_returns):
        assert 0 <= hit_rate(daily_returns) <= 1

    def test_profit_factor_positive(self, daily_returns):
        assert profit_factor(daily_returns) > 0

    def test_var_and_expected_shortfall(self):
        r = pd.Series(np.linspace(-0.05, 0.05, 101))
        var = value_at_risk(r, 0.95)
        es = expected_shortfall(r, 0.95)
        np.testing.assert_allclose(var, 0.045)
        assert es >= var

    def test_performance_summary_keys(self, daily_returns):
        summary = performance_summary(daily_returns)
        expected_keys = {
            "total_return", "annualized_return", "annualized_volatility",
            "sharpe_ratio", "sortino_ratio", "calmar_ratio",
            "max_drawdown", "hit_rate", "profit_factor",
            "var_95", "var_99", "expected_shortfall_95", "num_days",
        }
        assert set(summary.keys()) == expected_keys


class TestDrawdown:
    def test_drawdown_series_at_peak_is_zero(self, daily_returns):
        dd = drawdown_series(daily_returns)
        assert dd.max() <= 1e-10

    def test_drawdown_series_non_positive(self, daily_returns):
        dd = drawdown_series(daily_returns)
        assert (dd <= 1e-10).all()

    def test_max_drawdown_info_recovery(self):
        values = np.array([100.0, 110.0, 88.0, 95.0, 111.0, 105.0])
        info = max_drawdown_info(values)
        np.testing.assert_allclose(info.max_drawdown, 0.2)
        assert info.peak == 1
        assert info.trough == 2
        assert info.recovery == 4
        assert info.drawdown_period == 3

    def test_max_drawdown_info_unrecovered(self):
        info = max_drawdown_info(np.array([100.0, 120.0, 90.0, 100.0]))
        assert info.recovery is None
        assert info.drawdown_period == 2

    def test_max_drawdown_info_monotone(self):
        info = max_drawdown_info(np.array([1.0, 2.0, 3.0]))
        assert info.max_drawdown == 0.0
        assert info.recovery is None


class TestRelative:
    def test_beta_of_scaled_series(self, daily_returns):
        port = 2.0 * daily_returns
        np.testing.assert_allclose(beta(port, daily_returns), 2.0)

    def test_tracking_error_of_identical_series(self, daily_returns):
        assert tracking_error(daily_returns, daily_returns) == 0.0
        assert information_ratio(daily_returns, daily_returns) is None

    def test_relative_performance(self, daily_returns):
        rng = np.random.default_rng(5)
        port = daily_returns + rng.normal(0.0002, 0.002, len(daily_returns))
        rel = relative_performance(port, daily_returns, 0.30, 0.20)
        np.testing.assert_allclose(rel.excess_return, 0.10)
        np.testing.assert_allclose(rel.alpha, 0.30 - rel.beta * 0.20)
        assert rel.observations == len(daily_returns)
        assert rel.information_ratio is not None

    def test_alignment_on_common_dates(self, daily_returns):
        rel = relative_performance(daily_returns.iloc[:300], daily_returns.iloc[100:], 0.0, 0.0)
        assert rel.observations == 200

    def test_too_short(self):
        s = pd.Series([0.01])
        rel = relative_performance(s, s, 0.01, 0.01)
        assert rel.beta is None
        assert rel.alpha is None
        assert rel.tracking_error is None
