"""Tests for qrobust.backtest.state."""

import numpy as np
import pandas as pd
import pytest

from qrobust.backtest.costs import TransactionCostModel
from qrobust.backtest.state import (
    BELOW_MIN_TRADE_SIZE,
    INSUFFICIENT_FUNDS,
    PortfolioState,
)
from qrobust.utils.validation import InsufficientDataError, QrobustValidationError

DAY = pd.Timestamp("2021-03-01")


@pytest.fixture()
def state():
    return PortfolioState(100_000.0, ["AAA", "BBB"])


def _check_valuation(state):
    np.testing.assert_allclose(
        state.total_value,
        state.cash + sum(p.market_value for p in state.positions.values()),
    )


class TestValuation:
    def test_initial_state(self, state):
        assert state.cash == 100_000.0
        assert state.total_value == 100_000.0
        assert state.history == []
        assert set(state.positions) == {"AAA", "BBB"}

    def test_total_value_invariant_over_dates(self, state):
        zero = TransactionCostModel.zero()
        state.update_prices({"AAA": 10.0, "BBB": 20.0}, DAY)
        state.execute_trade("AAA", 40_000.0, 10.0, zero, DAY)
        state.execute_trade("BBB", 50_000.0, 20.0, zero, DAY)
        rng = np.random.default_rng(3)
        for i in range(1, 20):
            prices = {"AAA": 10.0 * (1 + rng.normal(0, 0.02)), "BBB": 20.0 * (1 + rng.normal(0, 0.02))}
            snap = state.update_prices(prices, DAY + pd.Timedelta(days=i))
            _check_valuation(state)
            assert snap.total_value == state.total_value

    def test_weights_sum_to_one_with_cash(self, state):
        zero = TransactionCostModel.zero()
        state.update_prices({"AAA": 10.0, "BBB": 20.0}, DAY)
        state.execute_trade("AAA", 30_000.0, 10.0, zero, DAY)
        state.update_prices({"AAA": 12.0, "BBB": 20.0}, DAY + pd.Timedelta(days=1))
        cash_weight = state.cash / state.total_value
        np.testing.assert_allclose(sum(state.current_weights().values()) + cash_weight, 1.0)

    def test_missing_price_keeps_last_mark(self, state):
        zero = TransactionCostModel.zero()
        state.update_prices({"AAA": 10.0, "BBB": 20.0}, DAY)
        state.execute_trade("AAA", 10_000.0, 10.0, zero, DAY)
        state.update_prices({"BBB": 21.0}, DAY + pd.Timedelta(days=1))
        assert state.positions["AAA"].current_price == 10.0
        assert len(state.history) == 2

    def test_history_snapshots_are_independent(self, state):
        zero = TransactionCostModel.zero()
        state.update_prices({"AAA": 10.0, "BBB": 20.0}, DAY)
        first = state.history[0]
        state.execute_trade("AAA", 10_000.0, 10.0, zero, DAY)
        state.update_prices({"AAA": 11.0, "BBB": 20.0}, DAY + pd.Timedelta(days=1))
        assert first.positions["AAA"].shares == 0.0
        assert state.history[1].positions["AAA"].shares == pytest.approx(1_000.0)


class TestExecuteTrade:
    def test_buy_updates_cash_and_log(self, state):
        model = TransactionCostModel()
        result = state.execute_trade("AAA", 20_000.0, 10.0, model, DAY)
        assert result.executed
        assert not result.partial
        np.testing.assert_allclose(result.shares, 2_000.0)
        np.testing.assert_allclose(state.cash, 100_000.0 - 20_000.0 - result.costs.total)
        assert len(state.transactions) == 1
        txn = state.transactions[0]
        assert txn.symbol == "AAA"
        assert txn.cash_after == state.cash
        _check_valuation(state)

    def test_weighted_average_cost(self, state):
        zero = TransactionCostModel.zero()
        state.execute_trade("AAA", 1_000.0, 10.0, zero, DAY)
        state.execute_trade("AAA", 4_000.0, 20.0, zero, DAY)
        pos = state.positions["AAA"]
        np.testing.assert_allclose(pos.shares, 200.0)
        np.testing.assert_allclose(pos.average_cost, 15.0)

    def test_sell_keeps_average_cost(self, state):
        zero = TransactionCostModel.zero()
        state.execute_trade("AAA", 10_000.0, 10.0, zero, DAY)
        state.execute_trade("AAA", 5_000.0, 12.5, zero, DAY)
        pos = state.positions["AAA"]
        np.testing.assert_allclose(pos.average_cost, 10.0)
        np.testing.assert_allclose(pos.shares, 400.0)

    def test_partial_fill_never_overdraws(self):
        state = PortfolioState(1_000.0, ["AAA"])
        result = state.execute_trade("AAA", 5_000.0, 10.0, TransactionCostModel(), DAY)
        assert result.executed
        assert result.partial
        assert result.value < 5_000.0
        assert state.cash >= 0.0
        _check_valuation(state)

    def test_insufficient_funds(self):
        state = PortfolioState(50.0, ["AAA"])
        model = TransactionCostModel(fixed_cost=100.0, min_trade_size=0.0)
        result = state.execute_trade("AAA", 1_000.0, 10.0, model, DAY)
        assert not result.executed
        assert result.reason == INSUFFICIENT_FUNDS
        assert state.cash == 50.0
        assert state.transactions == []

    def test_below_min_trade_size(self, state):
        result = state.execute_trade("AAA", 50.0, 10.0, TransactionCostModel(), DAY)
        assert not result.executed
        assert result.reason == BELOW_MIN_TRADE_SIZE
        assert state.transactions == []

    def test_unknown_symbol(self, state):
        with pytest.raises(QrobustValidationError, match="not in portfolio"):
            state.execute_trade("ZZZ", 1_000.0, 10.0, TransactionCostModel(), DAY)

    def test_invalid_price(self, state):
        with pytest.raises(QrobustValidationError):
            state.execute_trade("AAA", 1_000.0, 0.0, TransactionCostModel(), DAY)


class TestPerformanceStats:
    def test_requires_two_snapshots(self, state):
        state.update_prices({"AAA": 10.0, "BBB": 20.0}, DAY)
        with pytest.raises(InsufficientDataError):
            state.get_performance_stats()

    def test_stats_from_history(self, state):
        model = TransactionCostModel()
        state.update_prices({"AAA": 10.0, "BBB": 20.0}, DAY)
        state.execute_trade("AAA", 50_000.0, 10.0, model, DAY)
        for i, px in enumerate([10.5, 10.2, 11.0, 10.8], start=1):
            state.update_prices({"AAA": px, "BBB": 20.0}, DAY + pd.Timedelta(days=i))
        stats = state.get_performance_stats()
        values = state.value_series()
        np.testing.assert_allclose(stats.total_return, values.iloc[-1] / values.iloc[0] - 1)
        assert len(stats.returns) == len(state.history) - 1
        assert stats.num_trades == 1
        assert stats.total_transaction_costs > 0
        assert stats.max_drawdown >= 0
        np.testing.assert_allclose(
            stats.cumulative_returns.iloc[-1], (1 + stats.returns).prod()
        )
        d = stats.to_dict()
        assert "returns" not in d
        assert "drawdown_period" in d
