"""Tests for qrobust.backtest.engine."""

import numpy as np
import pandas as pd
import pytest

from qrobust.backtest.config import BacktestConfig
from qrobust.backtest.costs import TransactionCostModel
from qrobust.backtest.engine import BacktestingEngine, EventType, run_backtest
from qrobust.backtest.rebalancing import RebalancingStrategy
from qrobust.utils.validation import InsufficientDataError, QrobustValidationError


class TestBacktestConfig:
    def test_defaults(self):
        cfg = BacktestConfig()
        assert cfg.initial_cash == 100_000.0
        assert cfg.rebalance_freq == "monthly"
        assert cfg.to_dict()["drift_threshold"] == 0.05

    def test_invalid_values(self):
        with pytest.raises(QrobustValidationError):
            BacktestConfig(initial_cash=0)
        with pytest.raises(QrobustValidationError):
            BacktestConfig(rebalance_freq="yearly")
        with pytest.raises(QrobustValidationError):
            BacktestConfig(drift_threshold=-0.1)


class TestEngine:
    def test_flat_prices_single_rebalance(self, flat_prices):
        targets = {"AAA": 0.5, "BBB": 0.5}
        strategy = RebalancingStrategy(targets, frequency="monthly", threshold=0.05)
        report = BacktestingEngine().run(strategy, flat_prices)

        # the opening rebalance buys both legs; later scheduled rebalances
        # only find residuals below the minimum trade size
        assert len(report.transactions) == 2
        assert {t.symbol for t in report.transactions} == {"AAA", "BBB"}
        for symbol, target in targets.items():
            assert abs(report.final_positions[symbol].weight - target) <= 0.05
        assert report.rebalance_dates[0] == flat_prices.index[0]
        assert len(report.rebalance_dates) > 1

    def test_report_consistency(self, sample_prices, benchmark_prices):
        targets = {"SPY": 0.5, "TLT": 0.3, "GLD": 0.2}
        report = run_backtest(
            sample_prices,
            targets,
            BacktestConfig(rebalance_freq="weekly"),
            benchmark=benchmark_prices,
        )
        assert len(report.history) == len(sample_prices)
        np.testing.assert_allclose(
            report.total_value,
            report.cash_remaining + sum(p.market_value for p in report.final_positions.values()),
        )
        for snap in report.history:
            np.testing.assert_allclose(
                snap.total_value,
                snap.cash + sum(p.market_value for p in snap.positions.values()),
            )
        assert report.portfolio.num_trades == len(report.transactions)
        assert report.benchmark is not None
        np.testing.assert_allclose(
            report.benchmark.total_return,
            benchmark_prices.iloc[-1] / benchmark_prices.iloc[0] - 1,
        )
        rel = report.relative
        assert rel is not None
        assert rel.beta is not None and rel.beta > 0
        assert rel.tracking_error is not None and rel.tracking_error >= 0
        np.testing.assert_allclose(
            rel.excess_return,
            report.portfolio.total_return - report.benchmark.total_return,
        )

    def test_costs_reduce_returns(self, sample_prices):
        targets = {"SPY": 0.4, "TLT": 0.4, "GLD": 0.2}
        cfg = BacktestConfig(rebalance_freq="daily", drift_threshold=0.0)
        frictionless = run_backtest(sample_prices, targets, cfg, TransactionCostModel.zero())
        costly = run_backtest(
            sample_prices, targets, cfg, TransactionCostModel(variable_cost_bps=50.0)
        )
        assert costly.portfolio.total_return < frictionless.portfolio.total_return
        assert frictionless.portfolio.total_transaction_costs == 0.0

    def test_unaligned_dates_are_skipped(self):
        dates = pd.bdate_range("2021-01-04", periods=10)
        aaa = [{"date": d, "price": 10.0 + i} for i, d in enumerate(dates)]
        bbb = [{"date": d, "price": 20.0} for i, d in enumerate(dates) if i != 4]
        strategy = RebalancingStrategy({"AAA": 0.5, "BBB": 0.5}, frequency="daily")
        with pytest.warns(UserWarning, match="missing date"):
            report = BacktestingEngine().run(strategy, {"AAA": aaa, "BBB": bbb})
        assert len(report.history) == 10
        assert not any(t.symbol == "BBB" and t.date == dates[4] for t in report.transactions)

    def test_unknown_target_symbol(self, sample_prices):
        strategy = RebalancingStrategy({"SPY": 0.5, "QQQ": 0.5})
        with pytest.raises(QrobustValidationError, match="QQQ"):
            BacktestingEngine().run(strategy, sample_prices)

    def test_single_date_is_insufficient(self, sample_prices):
        strategy = RebalancingStrategy({"SPY": 1.0})
        with pytest.raises(InsufficientDataError):
            BacktestingEngine().run(strategy, sample_prices.iloc[:1])

    def test_empty_prices(self):
        strategy = RebalancingStrategy({"SPY": 1.0})
        with pytest.raises(InsufficientDataError):
            BacktestingEngine().run(strategy, {})

    def test_event_types(self):
        assert {e.value for e in EventType} == {
            "market_data_update", "rebalance", "performance_measurement",
        }
