"""Event-driven backtesting engine with transaction cost modelling."""

from qrobust.backtest.config import BacktestConfig
from qrobust.backtest.costs import TradeCost, TransactionCostModel
from qrobust.backtest.state import (
    PerformanceStats,
    PortfolioSnapshot,
    PortfolioState,
    Position,
    TradeResult,
    Transaction,
    INSUFFICIENT_FUNDS,
    BELOW_MIN_TRADE_SIZE,
)
from qrobust.backtest.rebalancing import RebalancingStrategy
from qrobust.backtest.engine import (
    BacktestingEngine,
    BacktestReport,
    BenchmarkStats,
    EventType,
    PortfolioEvent,
    run_backtest,
)

__all__ = [
    "BacktestConfig", "TradeCost", "TransactionCostModel",
    "PerformanceStats", "PortfolioSnapshot", "PortfolioState", "Position",
    "TradeResult", "Transaction", "INSUFFICIENT_FUNDS", "BELOW_MIN_TRADE_SIZE",
    "RebalancingStrategy",
    "BacktestingEngine", "BacktestReport", "BenchmarkStats",
    "EventType", "PortfolioEvent", "run_backtest",
]
