"""Transaction cost and market-impact model."""

from __future__ import annotations

from dataclasses import asdict, dataclass

from qrobust.utils.validation import QrobustValidationError


@dataclass(frozen=True)
class TradeCost:
    """Cost breakdown of a single trade, in dollars.

    ``skipped`` is set when the trade is below the minimum trade size; such
    trades cost nothing and must not be executed.
    """

    fixed: float = 0.0
    variable: float = 0.0
    market_impact: float = 0.0
    bid_ask_spread: float = 0.0
    skipped: bool = False

    @property
    def total(self) -> float:
        return self.fixed + self.variable + self.market_impact + self.bid_ask_spread

    def to_dict(self) -> dict:
        d = asdict(self)
        d["total"] = self.total
        return d


@dataclass(frozen=True)
class TransactionCostModel:
    """Multi-layer trading friction model.

    Every component except market impact is linear in traded value.  Market
    impact follows a power law in the trade's share of daily volume (square
    root by default), so large trades relative to liquidity cost
    disproportionately more.

    Parameters
    ----------
    fixed_cost : float
        Flat dollars charged per executed trade.
    variable_cost_bps : float
        Commission in basis points of traded value.
    market_impact_bps : float
        Impact coefficient in basis points.
    market_impact_exponent : float
        Exponent applied to ``|trade value| / average daily volume``.
    bid_ask_spread_bps : float
        Half-spread paid, in basis points of traded value.
    min_trade_size : float
        Trades smaller than this (in absolute dollars) are skipped.
    """

    fixed_cost: float = 0.0
    variable_cost_bps: float = 5.0
    market_impact_bps: float = 2.0
    market_impact_exponent: float = 0.5
    bid_ask_spread_bps: float = 3.0
    min_trade_size: float = 100.0

    def __post_init__(self) -> None:
        for name in (
            "fixed_cost", "variable_cost_bps", "market_impact_bps",
            "market_impact_exponent", "bid_ask_spread_bps", "min_trade_size",
        ):
            if getattr(self, name) < 0:
                raise QrobustValidationError(
                    f"{name} must be non-negative; got {getattr(self, name)!r}."
                )

    @classmethod
    def zero(cls) -> "TransactionCostModel":
        """A frictionless model (only the minimum trade size still applies)."""
        return cls(
            fixed_cost=0.0,
            variable_cost_bps=0.0,
            market_impact_bps=0.0,
            bid_ask_spread_bps=0.0,
        )

    def cost(
        self,
        trade_value: float,
        average_daily_volume: float = 1_000_000.0,
    ) -> TradeCost:
        """Price the friction of one trade.

        Parameters
        ----------
        trade_value : float
            Signed dollar value of the trade (positive = buy).
        average_daily_volume : float
            Reference daily dollar volume for the instrument.
        """
        if average_daily_volume <= 0:
            raise QrobustValidationError(
                f"average_daily_volume must be positive; got {average_daily_volume!r}."
            )
        abs_traded = abs(trade_value)
        if abs_traded < self.min_trade_size:
            return TradeCost(skipped=True)
        volume_ratio = abs_traded / average_daily_volume
        return TradeCost(
            fixed=self.fixed_cost,
            variable=abs_traded * (self.variable_cost_bps / 10_000),
            market_impact=(
                abs_traded
                * (self.market_impact_bps / 10_000)
                * volume_ratio ** self.market_impact_exponent
            ),
            bid_ask_spread=abs_traded * (self.bid_ask_spread_bps / 10_000),
        )

    def to_dict(self) -> dict:
        return asdict(self)
