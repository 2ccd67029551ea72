"""Portfolio bookkeeping: cash, positions, valuation history and trades.

One :class:`PortfolioState` exists per simulation run.  Positions change
only through :meth:`PortfolioState.execute_trade` or
:meth:`PortfolioState.update_prices`; after either, ``total_value`` equals
``cash`` plus the sum of position market values and every weight is
recomputed from it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

import numpy as np
import pandas as pd

from qrobust.backtest.costs import TradeCost, TransactionCostModel
from qrobust.risk.drawdown import DrawdownInfo, max_drawdown_info
from qrobust.risk.metrics import (
    annualized_return,
    annualized_volatility,
    expected_shortfall,
    sharpe_ratio,
    sortino_ratio,
    value_at_risk,
)
from qrobust.utils.validation import InsufficientDataError, QrobustValidationError

INSUFFICIENT_FUNDS = "insufficient_funds"
BELOW_MIN_TRADE_SIZE = "below_min_trade_size"


@dataclass
class Position:
    """A holding in one symbol.  ``shares`` is signed (negative = short)."""

    symbol: str
    shares: float = 0.0
    average_cost: float = 0.0
    current_price: float = 0.0
    market_value: float = 0.0
    weight: float = 0.0

    def snapshot(self) -> "PositionSnapshot":
        return PositionSnapshot(
            symbol=self.symbol,
            shares=self.shares,
            average_cost=self.average_cost,
            current_price=self.current_price,
            market_value=self.market_value,
            weight=self.weight,
        )


@dataclass(frozen=True)
class PositionSnapshot:
    symbol: str
    shares: float
    average_cost: float
    current_price: float
    market_value: float
    weight: float


@dataclass(frozen=True)
class PortfolioSnapshot:
    """Valuation of the portfolio at the close of one simulated date."""

    date: pd.Timestamp
    total_value: float
    cash: float
    positions: Mapping[str, PositionSnapshot]


@dataclass(frozen=True)
class Transaction:
    """One executed trade."""

    date: pd.Timestamp
    symbol: str
    shares: float
    price: float
    value: float
    costs: TradeCost
    cash_after: float


@dataclass(frozen=True)
class TradeResult:
    """Outcome of :meth:`PortfolioState.execute_trade`.

    ``reason`` is set only when the trade was not executed.
    """

    executed: bool
    shares: float = 0.0
    value: float = 0.0
    costs: TradeCost = field(default_factory=TradeCost)
    reason: str | None = None
    partial: bool = False


@dataclass
class PerformanceStats:
    """Performance statistics derived from a portfolio's valuation history.

    Ratios are annualised with the configured periods per year;
    ``volatility`` is the per-period standard deviation and
    ``annualized_volatility`` its annualised counterpart.  Drawdown,
    VaR and Expected Shortfall are positive loss fractions.
    """

    total_return: float
    annualized_return: float
    volatility: float
    annualized_volatility: float
    sharpe_ratio: float
    sortino_ratio: float
    max_drawdown: float
    drawdown: DrawdownInfo
    var_95: float
    var_99: float
    expected_shortfall_95: float
    total_transaction_costs: float
    transaction_cost_drag: float
    num_trades: int
    returns: pd.Series
    cumulative_returns: pd.Series
    portfolio_values: pd.Series

    def to_dict(self, include_series: bool = False) -> dict[str, Any]:
        d = {
            k: getattr(self, k)
            for k in self.__dataclass_fields__
            if k not in ("returns", "cumulative_returns", "portfolio_values", "drawdown")
        }
        d["drawdown_period"] = self.drawdown.drawdown_period
        if include_series:
            d["returns"] = self.returns
            d["cumulative_returns"] = self.cumulative_returns
            d["portfolio_values"] = self.portfolio_values
        return d


class PortfolioState:
    """Cash, positions and append-only valuation / trade logs for one run.

    Parameters
    ----------
    initial_cash : float
        Starting cash endowment.
    symbols : sequence of str
        Fixed trading universe; trades in other symbols are rejected.
    """

    def __init__(self, initial_cash: float = 100_000.0, symbols: Sequence[str] = ()) -> None:
        self.initial_cash = float(initial_cash)
        self.cash = float(initial_cash)
        self.total_value = float(initial_cash)
        self.symbols = list(symbols)
        self.positions: dict[str, Position] = {s: Position(symbol=s) for s in self.symbols}
        self.history: list[PortfolioSnapshot] = []
        self.transactions: list[Transaction] = []

    # ------------------------------------------------------------------
    # Valuation
    # ------------------------------------------------------------------

    def _revalue(self) -> None:
        self.total_value = self.cash + sum(p.market_value for p in self.positions.values())
        for p in self.positions.values():
            p.weight = p.market_value / self.total_value if self.total_value > 0 else 0.0

    def update_prices(self, prices: Mapping[str, float], date: pd.Timestamp) -> PortfolioSnapshot:
        """Mark every position to *prices* and record a valuation snapshot.

        Symbols absent from *prices* (or priced NaN) keep their last mark.
        Must be called before any rebalancing decision on *date*.
        """
        for symbol, position in self.positions.items():
            price = prices.get(symbol)
            if price is None or not math.isfinite(price):
                continue
            position.current_price = float(price)
            position.market_value = position.shares * position.current_price
        self._revalue()
        snapshot = PortfolioSnapshot(
            date=pd.Timestamp(date),
            total_value=self.total_value,
            cash=self.cash,
            positions={s: p.snapshot() for s, p in self.positions.items()},
        )
        self.history.append(snapshot)
        return snapshot

    def current_weights(self) -> dict[str, float]:
        return {s: p.weight for s, p in self.positions.items()}

    # ------------------------------------------------------------------
    # Trading
    # ------------------------------------------------------------------

    def execute_trade(
        self,
        symbol: str,
        target_value: float,
        price: float,
        cost_model: TransactionCostModel,
        date: pd.Timestamp,
        average_daily_volume: float = 1_000_000.0,
    ) -> TradeResult:
        """Trade *symbol* towards a dollar *target_value* at *price*.

        A purchase that cannot be funded in full is shrunk once to the
        largest size the remaining cash (net of costs) allows.  If even that
        is not affordable the trade is not placed and ``reason`` is
        ``'insufficient_funds'``.  Trades below the cost model's minimum size
        are not placed either (``reason='below_min_trade_size'``).
        """
        position = self.positions.get(symbol)
        if position is None:
            raise QrobustValidationError(f"Symbol {symbol!r} not in portfolio.")
        if not (price > 0 and math.isfinite(price)):
            raise QrobustValidationError(f"Invalid price for {symbol!r}: {price!r}.")

        current_value = position.shares * price
        trade_value = target_value - current_value
        costs = cost_model.cost(trade_value, average_daily_volume)
        if costs.skipped:
            return TradeResult(executed=False, reason=BELOW_MIN_TRADE_SIZE)

        partial = False
        outlay = trade_value + costs.total
        if outlay > self.cash:
            available = self.cash - costs.total
            if available <= 0:
                return TradeResult(executed=False, reason=INSUFFICIENT_FUNDS)
            # Single shrink retry; costs are monotone in size so it normally fits.
            trade_value = min(trade_value, available)
            costs = cost_model.cost(trade_value, average_daily_volume)
            if costs.skipped:
                return TradeResult(executed=False, reason=BELOW_MIN_TRADE_SIZE)
            outlay = trade_value + costs.total
            if outlay > self.cash:
                return TradeResult(executed=False, reason=INSUFFICIENT_FUNDS)
            partial = True

        shares_traded = trade_value / price
        new_shares = position.shares + shares_traded
        if new_shares > 0 and shares_traded > 0:
            held_cost = max(position.shares, 0.0) * position.average_cost
            position.average_cost = (held_cost + shares_traded * price) / new_shares
        elif new_shares <= 0:
            position.average_cost = price if new_shares < 0 else 0.0

        position.shares = new_shares
        position.current_price = price
        position.market_value = new_shares * price
        self.cash -= outlay
        self._revalue()

        self.transactions.append(
            Transaction(
                date=pd.Timestamp(date),
                symbol=symbol,
                shares=shares_traded,
                price=price,
                value=trade_value,
                costs=costs,
                cash_after=self.cash,
            )
        )
        return TradeResult(
            executed=True,
            shares=shares_traded,
            value=trade_value,
            costs=costs,
            partial=partial,
        )

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def value_series(self) -> pd.Series:
        return pd.Series(
            [h.total_value for h in self.history],
            index=pd.DatetimeIndex([h.date for h in self.history], name="date"),
            dtype=float,
        )

    def get_performance_stats(
        self,
        risk_free_rate: float = 0.0,
        periods_per_year: int = 252,
    ) -> PerformanceStats:
        """Derive performance statistics from the valuation history.

        Raises
        ------
        InsufficientDataError
            With fewer than two history snapshots.
        """
        if len(self.history) < 2:
            raise InsufficientDataError(
                f"Need at least 2 valuation snapshots; have {len(self.history)}."
            )
        values = self.value_series()
        returns = values.pct_change(fill_method=None).iloc[1:]
        cumulative = (1 + returns).cumprod()
        total = float(values.iloc[-1] / values.iloc[0] - 1)
        dd = max_drawdown_info(values.to_numpy())
        total_costs = float(sum(t.costs.total for t in self.transactions))
        vol = float(returns.std()) if len(returns) > 1 else 0.0
        return PerformanceStats(
            total_return=total,
            annualized_return=annualized_return(returns, periods_per_year),
            volatility=0.0 if np.isnan(vol) else vol,
            annualized_volatility=annualized_volatility(returns, periods_per_year),
            sharpe_ratio=sharpe_ratio(returns, risk_free_rate, periods_per_year),
            sortino_ratio=sortino_ratio(returns, risk_free_rate, periods_per_year),
            max_drawdown=dd.max_drawdown,
            drawdown=dd,
            var_95=value_at_risk(returns, 0.95),
            var_99=value_at_risk(returns, 0.99),
            expected_shortfall_95=expected_shortfall(returns, 0.95),
            total_transaction_costs=total_costs,
            transaction_cost_drag=total_costs / values.iloc[0] if values.iloc[0] else 0.0,
            num_trades=len(self.transactions),
            returns=returns,
            cumulative_returns=cumulative,
            portfolio_values=values,
        )
