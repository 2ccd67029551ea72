"""Event-driven daily portfolio backtesting engine.

Each simulated date is one transition of a small state machine:

    1. ``MARKET_DATA_UPDATE`` marks the portfolio to that date's prices and
       records a valuation snapshot.
    2. The rebalancing strategy is asked whether a rebalance is due; if so,
       ``REBALANCE`` trades every priced symbol towards its dollar target and
       stamps the rebalance date.

Dates are the sorted union of every symbol's observation dates; a symbol
with no price on a date is neither re-marked nor traded on that date.  The
run terminates after the last date, and ``PERFORMANCE_MEASUREMENT`` derives
the report.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

import numpy as np
import pandas as pd

from qrobust.backtest.config import BacktestConfig
from qrobust.backtest.costs import TransactionCostModel
from qrobust.backtest.rebalancing import RebalancingStrategy
from qrobust.backtest.state import (
    PerformanceStats,
    PortfolioSnapshot,
    PortfolioState,
    Position,
    TradeResult,
    Transaction,
)
from qrobust.risk.drawdown import max_drawdown_info
from qrobust.risk.metrics import annualized_volatility, sharpe_ratio
from qrobust.risk.relative import RelativePerformance, relative_performance
from qrobust.utils.alignment import PriceInput, price_frame, to_price_series
from qrobust.utils.validation import QrobustValidationError

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    MARKET_DATA_UPDATE = "market_data_update"
    REBALANCE = "rebalance"
    PERFORMANCE_MEASUREMENT = "performance_measurement"


@dataclass(frozen=True)
class PortfolioEvent:
    type: EventType
    date: pd.Timestamp | None = None
    prices: Mapping[str, float] = field(default_factory=dict)


@dataclass
class BenchmarkStats:
    """Summary of a single benchmark price series."""

    total_return: float
    volatility: float
    annualized_volatility: float
    sharpe_ratio: float
    max_drawdown: float
    returns: pd.Series


@dataclass
class BacktestReport:
    """Container for backtest outputs.

    Attributes
    ----------
    portfolio : PerformanceStats
        Statistics of the simulated portfolio.
    benchmark : BenchmarkStats or None
        Statistics of the benchmark series, when one was supplied.
    relative : RelativePerformance or None
        Portfolio versus benchmark, when both are available.
    transactions : list of Transaction
        Every executed trade, in execution order.
    final_positions : dict
        Positions held at the end of the run.
    cash_remaining : float
        Cash at the end of the run.
    total_value : float
        Portfolio value at the end of the run.
    history : list of PortfolioSnapshot
        One valuation snapshot per simulated date.
    rebalance_dates : list of Timestamp
        Dates on which a rebalance event fired.
    config : BacktestConfig
        The configuration used for this run.
    """

    portfolio: PerformanceStats
    benchmark: BenchmarkStats | None
    relative: RelativePerformance | None
    transactions: list[Transaction]
    final_positions: dict[str, Position]
    cash_remaining: float
    total_value: float
    history: list[PortfolioSnapshot]
    rebalance_dates: list[pd.Timestamp]
    config: BacktestConfig


class BacktestingEngine:
    """Drive a :class:`PortfolioState` through historical prices.

    Parameters
    ----------
    config : BacktestConfig, optional
        Run parameters.  Uses defaults if not provided.
    cost_model : TransactionCostModel, optional
        Trading friction model.  Uses defaults if not provided.
    """

    def __init__(
        self,
        config: BacktestConfig | None = None,
        cost_model: TransactionCostModel | None = None,
    ) -> None:
        self.config = config or BacktestConfig()
        self.cost_model = cost_model or TransactionCostModel()
        self.state: PortfolioState | None = None
        self.strategy: RebalancingStrategy | None = None
        self.rebalance_dates: list[pd.Timestamp] = []

    def run(
        self,
        strategy: RebalancingStrategy,
        prices: Mapping[str, PriceInput] | pd.DataFrame,
        benchmark: PriceInput | None = None,
    ) -> BacktestReport:
        """Simulate the strategy over every date in *prices*.

        Parameters
        ----------
        strategy : RebalancingStrategy
            Target weights and rebalance schedule.  Its ``last_rebalance_date``
            is updated as the run progresses.
        prices : mapping or DataFrame
            Per-symbol price histories (see :func:`~qrobust.utils.alignment.price_frame`).
        benchmark : Series or records, optional
            Benchmark price history for relative-performance metrics.
        """
        wide = price_frame(prices)
        unknown = sorted(set(strategy.target_weights) - set(wide.columns))
        if unknown:
            raise QrobustValidationError(f"No price history for target symbol(s): {unknown}.")

        self.strategy = strategy
        self.state = PortfolioState(self.config.initial_cash, list(wide.columns))
        self.rebalance_dates = []

        for date, row in wide.iterrows():
            self._step(pd.Timestamp(date), row.dropna().to_dict())

        portfolio_stats = self._dispatch(PortfolioEvent(EventType.PERFORMANCE_MEASUREMENT))
        bench_stats = self._benchmark_stats(benchmark) if benchmark is not None else None
        relative = None
        if bench_stats is not None:
            relative = relative_performance(
                portfolio_stats.returns,
                bench_stats.returns,
                portfolio_stats.total_return,
                bench_stats.total_return,
            )
        logger.debug(
            "Backtest finished: %d dates, %d trades, total return %.4f",
            len(wide), len(self.state.transactions), portfolio_stats.total_return,
        )
        return BacktestReport(
            portfolio=portfolio_stats,
            benchmark=bench_stats,
            relative=relative,
            transactions=list(self.state.transactions),
            final_positions=dict(self.state.positions),
            cash_remaining=self.state.cash,
            total_value=self.state.total_value,
            history=list(self.state.history),
            rebalance_dates=list(self.rebalance_dates),
            config=self.config,
        )

    def _step(self, date: pd.Timestamp, prices: dict[str, float]) -> None:
        self._dispatch(PortfolioEvent(EventType.MARKET_DATA_UPDATE, date, prices))
        if self.strategy.needs_rebalancing(self.state.current_weights(), date):
            self._dispatch(PortfolioEvent(EventType.REBALANCE, date, prices))
            self.strategy.mark_rebalanced(date)
            self.rebalance_dates.append(date)

    def _dispatch(self, event: PortfolioEvent) -> Any:
        if event.type is EventType.MARKET_DATA_UPDATE:
            return self.state.update_prices(event.prices, event.date)
        if event.type is EventType.REBALANCE:
            return self._rebalance(event)
        if event.type is EventType.PERFORMANCE_MEASUREMENT:
            return self.state.get_performance_stats(
                self.config.risk_free_rate, self.config.periods_per_year
            )
        raise QrobustValidationError(f"Unhandled event type: {event.type!r}")

    def _rebalance(self, event: PortfolioEvent) -> dict[str, TradeResult]:
        targets = self.strategy.get_target_values(self.state.total_value)
        results: dict[str, TradeResult] = {}
        for symbol, target in targets.items():
            price = event.prices.get(symbol)
            if price is None:
                continue
            results[symbol] = self.state.execute_trade(
                symbol,
                target,
                price,
                self.cost_model,
                event.date,
                self.config.average_daily_volume,
            )
        return results

    def _benchmark_stats(self, benchmark: PriceInput) -> BenchmarkStats | None:
        series = to_price_series(benchmark).dropna()
        if len(series) < 2:
            return None
        returns = series.pct_change(fill_method=None).iloc[1:]
        vol = float(returns.std()) if len(returns) > 1 else 0.0
        return BenchmarkStats(
            total_return=float(series.iloc[-1] / series.iloc[0] - 1),
            volatility=0.0 if np.isnan(vol) else vol,
            annualized_volatility=annualized_volatility(returns, self.config.periods_per_year),
            sharpe_ratio=sharpe_ratio(
                returns, self.config.risk_free_rate, self.config.periods_per_year
            ),
            max_drawdown=max_drawdown_info(series.to_numpy()).max_drawdown,
            returns=returns,
        )


def run_backtest(
    prices: Mapping[str, PriceInput] | pd.DataFrame,
    target_weights: Mapping[str, float],
    config: BacktestConfig | None = None,
    cost_model: TransactionCostModel | None = None,
    benchmark: PriceInput | None = None,
) -> BacktestReport:
    """Run a daily event-driven backtest of a fixed-weight portfolio.

    Parameters
    ----------
    prices : mapping or DataFrame
        Per-symbol price histories.
    target_weights : mapping
        Symbol -> target weight (must sum to 1).
    config : BacktestConfig, optional
        Backtest parameters.  Uses sensible defaults if not provided.
    cost_model : TransactionCostModel, optional
        Trading friction model.
    benchmark : Series or records, optional
        Benchmark price history.

    Returns
    -------
    BacktestReport
    """
    config = config or BacktestConfig()
    strategy = RebalancingStrategy(
        target_weights,
        frequency=config.rebalance_freq,
        threshold=config.drift_threshold,
    )
    engine = BacktestingEngine(config, cost_model)
    return engine.run(strategy, prices, benchmark)
