"""Tests for qrobust.validation.optimizer."""

import logging

import numpy as np
import pytest

from qrobust.portfolio.allocation import mean_variance_strategy
from qrobust.validation.optimizer import (
    DateWindow,
    OptimizationMethod,
    PortfolioStrategyOptimizer,
    default_methods,
)
from qrobust.utils.validation import InsufficientDataError, QrobustValidationError


@pytest.fixture()
def optimizer(sample_prices, tickers):
    return PortfolioStrategyOptimizer(tickers, sample_prices)


@pytest.fixture()
def window(sample_prices):
    return DateWindow(sample_prices.index[0], sample_prices.index[199])


class TestBuiltInMethods:
    def test_default_method_names(self):
        assert set(default_methods()) == {"risk_parity", "mean_variance", "black_litterman"}

    @pytest.mark.parametrize("method", ["risk_parity", "mean_variance", "black_litterman"])
    def test_optimize_returns_normalised_weights(self, optimizer, window, method):
        result = optimizer.optimize_strategy(method, window)
        assert result.method == method
        assert not result.fallback
        assert result.weights.shape == (3,)
        np.testing.assert_allclose(result.weights.sum(), 1.0)
        assert np.isfinite(result.score)

    def test_risk_parity_picks_from_grid(self, optimizer, window):
        result = optimizer.optimize_strategy("risk_parity", window)
        assert result.parameters["max_iterations"] in (50, 100, 200)
        assert result.parameters["tolerance"] in (1e-6, 1e-5, 1e-4)
        assert "iterations" in result.diagnostics

    def test_parameter_ranges_override_grid(self, optimizer, window):
        result = optimizer.optimize_strategy(
            "black_litterman", window, {"tau": [0.05], "unrelated": [1, 2]}
        )
        assert result.parameters["tau"] == 0.05
        assert "unrelated" not in result.parameters

    def test_mean_variance_score_uses_periods_per_year(self, sample_prices, tickers, window):
        daily = PortfolioStrategyOptimizer(tickers, sample_prices).optimize_strategy(
            "mean_variance", window
        )
        weekly = PortfolioStrategyOptimizer(
            tickers, sample_prices, periods_per_year=52
        ).optimize_strategy("mean_variance", window)
        assert weekly.parameters == daily.parameters
        np.testing.assert_allclose(weekly.score, daily.score * np.sqrt(52 / 252))

    def test_weight_map(self, optimizer, window, tickers):
        result = optimizer.optimize_strategy("mean_variance", window)
        mapping = result.weight_map(tickers)
        assert list(mapping) == tickers
        np.testing.assert_allclose(sum(mapping.values()), 1.0)


class TestFailureHandling:
    def test_unknown_method(self, optimizer, window):
        with pytest.raises(QrobustValidationError, match="Unknown optimization method"):
            optimizer.optimize_strategy("kelly", window)

    def test_window_too_short(self, optimizer, sample_prices):
        one_day = DateWindow(sample_prices.index[5], sample_prices.index[5])
        with pytest.raises(InsufficientDataError):
            optimizer.optimize_strategy("risk_parity", one_day)

    def test_failing_cells_are_skipped(self, optimizer, window):
        def evaluate(returns, params):
            if params["x"] == 2:
                raise RuntimeError("bad cell")
            return np.full(3, 1 / 3), float(params["x"]), {}

        optimizer.register_method(
            OptimizationMethod("custom", evaluate, lambda returns: {"x": [1, 2, 0]})
        )
        result = optimizer.optimize_strategy("custom", window)
        assert result.parameters == {"x": 1}
        assert result.score == 1.0

    def test_non_finite_weights_cell_is_skipped(self, optimizer, window):
        def evaluate(returns, params):
            if params["x"] == 2:
                return np.array([np.nan, 0.5, 0.5]), 2.0, {}
            return np.full(3, 1 / 3), float(params["x"]), {}

        optimizer.register_method(
            OptimizationMethod("nan_cell", evaluate, lambda returns: {"x": [1, 2]})
        )
        result = optimizer.optimize_strategy("nan_cell", window)
        assert result.parameters == {"x": 1}
        assert not result.fallback

    def test_wrong_length_weights_fall_back(self, optimizer, window):
        optimizer.register_method(
            OptimizationMethod(
                "short",
                lambda returns, params: ([0.5, 0.5], 1.0, {}),
                lambda returns: {"x": [1, 2]},
            )
        )
        result = optimizer.optimize_strategy("short", window)
        assert result.fallback
        np.testing.assert_allclose(result.weights, np.full(3, 1 / 3))

    def test_malformed_outcome_is_skipped(self, optimizer, window):
        def evaluate(returns, params):
            if params["x"] == 2:
                return np.full(3, 1 / 3)
            return np.full(3, 1 / 3), 0.5, {}

        optimizer.register_method(
            OptimizationMethod("malformed", evaluate, lambda returns: {"x": [1, 2]})
        )
        assert optimizer.optimize_strategy("malformed", window).parameters == {"x": 1}

    def test_all_cells_fail_falls_back_to_equal_weight(self, optimizer, window, caplog):
        def evaluate(returns, params):
            raise np.linalg.LinAlgError("singular")

        optimizer.register_method(
            OptimizationMethod("broken", evaluate, lambda returns: {"x": [1, 2]})
        )
        with caplog.at_level(logging.WARNING):
            result = optimizer.optimize_strategy("broken", window)
        assert result.fallback
        assert result.parameters == {"method": "equal_weight"}
        np.testing.assert_allclose(result.weights, np.full(3, 1 / 3))
        assert "No grid cell succeeded" in caplog.text

    def test_ineligible_cells_skipped(self, optimizer, window):
        optimizer.register_method(
            OptimizationMethod("never", lambda returns, params: None, lambda returns: {"x": [1]})
        )
        assert optimizer.optimize_strategy("never", window).fallback


class TestFromStrategy:
    def test_wrapped_strategy_is_scored_by_sharpe(self, optimizer, window):
        method = OptimizationMethod.from_strategy(
            "mv", mean_variance_strategy, {"target_return": 0.05},
            grid={"target_return": [0.02, 0.08, 0.12]},
        )
        optimizer.register_method(method)
        result = optimizer.optimize_strategy("mv", window)
        assert result.parameters["target_return"] in (0.02, 0.08, 0.12)
        np.testing.assert_allclose(result.weights.sum(), 1.0)

    def test_empty_grid_takes_every_override(self, optimizer, window):
        calls = []

        def strategy(returns, config):
            calls.append(dict(config))
            return [0.5, 0.25, 0.25]

        optimizer.register_method(OptimizationMethod.from_strategy("fixed", strategy, {"k": 1}))
        result = optimizer.optimize_strategy("fixed", window, {"k": [2, 3]})
        # custom methods without a default grid take every override
        assert [c["k"] for c in calls] == [2, 3]
        np.testing.assert_allclose(result.weights, [0.5, 0.25, 0.25])

    def test_parallel_matches_sequential(self, sample_prices, tickers, window):
        seq = PortfolioStrategyOptimizer(tickers, sample_prices).optimize_strategy(
            "black_litterman", window
        )
        par = PortfolioStrategyOptimizer(tickers, sample_prices, max_workers=4).optimize_strategy(
            "black_litterman", window
        )
        assert seq.parameters == par.parameters
        np.testing.assert_allclose(seq.weights, par.weights)
