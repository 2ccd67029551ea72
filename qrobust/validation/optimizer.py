"""Grid-search optimisation of portfolio-construction hyperparameters.

An :class:`OptimizationMethod` pairs a default parameter grid with a cell
evaluator.  :class:`PortfolioStrategyOptimizer` expands the grid,
evaluates every cell on one in-sample window and keeps the best-scoring
weights.  Failed cells are skipped; if no cell survives the optimizer
falls back to equal weight instead of raising.
"""

from __future__ import annotations

import functools
import itertools
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence

import numpy as np
import pandas as pd

from qrobust.portfolio.allocation import (
    black_litterman,
    covariance_matrix,
    equal_weights,
    optimize_risk_parity,
    portfolio_return,
    portfolio_volatility,
    target_return_weights,
)
from qrobust.risk.metrics import sharpe_ratio
from qrobust.utils.alignment import (
    PriceInput,
    coerce_weights,
    portfolio_returns,
    price_frame,
    returns_frame,
    slice_window,
)
from qrobust.utils.parallel import map_ordered
from qrobust.utils.validation import InsufficientDataError, QrobustValidationError

logger = logging.getLogger(__name__)

# (weights, score, diagnostics), or None when the cell is not eligible
CellOutcome = tuple[np.ndarray, float, dict] | None


@dataclass(frozen=True)
class DateWindow:
    """Inclusive date range."""

    start: pd.Timestamp
    end: pd.Timestamp


@dataclass
class OptimizationResult:
    """Best weights found for one method on one window.

    ``fallback`` is True when no grid cell succeeded and equal weights
    were substituted.
    """

    method: str
    weights: np.ndarray
    parameters: dict[str, Any]
    score: float
    fallback: bool = False
    diagnostics: dict[str, Any] = field(default_factory=dict)

    def weight_map(self, symbols: Sequence[str]) -> dict[str, float]:
        return {s: float(w) for s, w in zip(symbols, self.weights)}


@dataclass(frozen=True)
class OptimizationMethod:
    """A named grid-searchable weight optimiser.

    Parameters
    ----------
    name : str
        Registry key.
    evaluate : callable
        ``evaluate(returns, params) -> (weights, score, diagnostics)``, or
        None if the cell should not be scored.  May raise; the cell is then
        skipped.
    default_grid : callable
        ``default_grid(returns) -> {param: [values, ...]}``.
    """

    name: str
    evaluate: Callable[[pd.DataFrame, dict], CellOutcome]
    default_grid: Callable[[pd.DataFrame], dict[str, list]] = lambda returns: {}

    @classmethod
    def from_strategy(
        cls,
        name: str,
        strategy: Callable[[pd.DataFrame, Mapping], Any],
        config: Mapping | None = None,
        grid: Mapping[str, Sequence] | None = None,
        periods_per_year: int = 252,
    ) -> "OptimizationMethod":
        """Wrap a strategy function ``optimize(returns, config)``.

        Cells are scored by the annualised Sharpe ratio of the
        constant-weight portfolio over the window.
        """
        base = dict(config or {})
        fixed_grid = {k: list(v) for k, v in (grid or {}).items()}

        def _evaluate(returns: pd.DataFrame, params: dict) -> CellOutcome:
            weights = coerce_weights(strategy(returns, {**base, **params}), list(returns.columns))
            score = sharpe_ratio(portfolio_returns(weights, returns), 0.0, periods_per_year)
            return weights, score, {}

        return cls(name=name, evaluate=_evaluate, default_grid=lambda returns: dict(fixed_grid))


# ---------------------------------------------------------------------------
# Built-in methods
# ---------------------------------------------------------------------------

def _risk_parity_cell(returns: pd.DataFrame, params: dict) -> CellOutcome:
    max_iterations = int(params["max_iterations"])
    result = optimize_risk_parity(
        covariance_matrix(returns),
        max_iterations=max_iterations,
        tolerance=params["tolerance"],
    )
    if not result.converged:
        return None
    score = result.score - 0.1 * result.iterations / max_iterations
    return result.weights, score, {
        "iterations": result.iterations,
        "risk_parity_score": result.score,
    }


def _mean_variance_grid(returns: pd.DataFrame) -> dict[str, list]:
    means = returns.mean()
    return {"target_return": [float(x) for x in np.linspace(means.min(), means.max(), 6)]}


def _mean_variance_cell(
    returns: pd.DataFrame, params: dict, periods_per_year: int = 252
) -> CellOutcome:
    mu = returns.mean().to_numpy(dtype=float)
    cov = covariance_matrix(returns)
    weights = target_return_weights(mu, cov, params["target_return"])
    ret = portfolio_return(weights, mu)
    vol = portfolio_volatility(weights, cov)
    score = ret / vol * math.sqrt(periods_per_year) if vol > 0 else 0.0
    return weights, score, {"expected_return": ret, "volatility": vol}


def _black_litterman_cell(returns: pd.DataFrame, params: dict) -> CellOutcome:
    cov = covariance_matrix(returns)
    result = black_litterman(
        equal_weights(cov.shape[0]),
        cov,
        tau=params["tau"],
        risk_aversion=params["risk_aversion"],
    )
    if result.portfolio_volatility <= 0:
        return None
    score = result.portfolio_return / result.portfolio_volatility
    return result.weights, score, {
        "expected_return": result.portfolio_return,
        "volatility": result.portfolio_volatility,
    }


def default_methods(periods_per_year: int = 252) -> dict[str, OptimizationMethod]:
    """The built-in ``risk_parity``, ``mean_variance`` and ``black_litterman`` methods.

    *periods_per_year* annualises the mean-variance Sharpe score.
    """
    return {
        "risk_parity": OptimizationMethod(
            "risk_parity",
            _risk_parity_cell,
            lambda returns: {
                "max_iterations": [50, 100, 200],
                "tolerance": [1e-6, 1e-5, 1e-4],
            },
        ),
        "mean_variance": OptimizationMethod(
            "mean_variance",
            functools.partial(_mean_variance_cell, periods_per_year=periods_per_year),
            _mean_variance_grid,
        ),
        "black_litterman": OptimizationMethod(
            "black_litterman",
            _black_litterman_cell,
            lambda returns: {
                "tau": [0.01, 0.025, 0.05, 0.1],
                "risk_aversion": [1, 3, 5, 10],
            },
        ),
    }


# ---------------------------------------------------------------------------
# Optimizer
# ---------------------------------------------------------------------------

class PortfolioStrategyOptimizer:
    """Grid-search a weight optimiser over a date window of price history.

    Parameters
    ----------
    symbols : sequence of str
        Asset universe; weights are returned in this order.
    prices : mapping or DataFrame
        Per-symbol price histories.
    methods : mapping, optional
        Extra or replacement :class:`OptimizationMethod` objects by name.
    max_workers : int
        Worker threads for grid cells (1 = sequential).
    periods_per_year : int
        Annualisation factor for the built-in scores.
    """

    def __init__(
        self,
        symbols: Sequence[str],
        prices: Mapping[str, PriceInput] | pd.DataFrame,
        methods: Mapping[str, OptimizationMethod] | None = None,
        max_workers: int = 1,
        periods_per_year: int = 252,
    ) -> None:
        self.symbols = list(symbols)
        self.prices = price_frame(prices, self.symbols)
        self.methods = default_methods(periods_per_year)
        if methods:
            self.methods.update(methods)
        self.max_workers = max_workers

    def register_method(self, method: OptimizationMethod) -> None:
        self.methods[method.name] = method

    def window_returns(self, window: DateWindow) -> pd.DataFrame:
        """Asset returns over *window* (inclusive)."""
        returns = returns_frame(slice_window(self.prices, window.start, window.end))
        if len(returns) < 2:
            raise InsufficientDataError(
                f"Need at least 2 return observations in {window.start:%Y-%m-%d}"
                f"..{window.end:%Y-%m-%d}; have {len(returns)}."
            )
        return returns

    def fallback(self, method: str) -> OptimizationResult:
        return OptimizationResult(
            method=method,
            weights=equal_weights(len(self.symbols)),
            parameters={"method": "equal_weight"},
            score=0.0,
            fallback=True,
        )

    def optimize_strategy(
        self,
        method: str,
        window: DateWindow,
        parameter_ranges: Mapping[str, Sequence] | None = None,
    ) -> OptimizationResult:
        """Best weights for *method* on *window*.

        Parameters
        ----------
        method : str
            Name of a registered method.
        window : DateWindow
            In-sample date range.
        parameter_ranges : mapping, optional
            Overrides for the method's default grid.  For a method with a
            non-empty default grid only its own keys are overridden.

        Raises
        ------
        QrobustValidationError
            If *method* is not registered.
        InsufficientDataError
            If the window holds fewer than 2 return observations.
        """
        opt = self.methods.get(method)
        if opt is None:
            raise QrobustValidationError(
                f"Unknown optimization method {method!r}; expected one of {sorted(self.methods)}."
            )
        returns = self.window_returns(window)

        grid = opt.default_grid(returns)
        overrides = dict(parameter_ranges or {})
        if grid:
            overrides = {k: v for k, v in overrides.items() if k in grid}
        grid.update({k: list(v) for k, v in overrides.items()})
        keys = list(grid)
        cells = [dict(zip(keys, combo)) for combo in itertools.product(*(grid[k] for k in keys))]

        outcomes = map_ordered(
            lambda params: self._evaluate_cell(opt, returns, params),
            cells,
            max_workers=self.max_workers,
        )

        best: OptimizationResult | None = None
        for params, outcome in zip(cells, outcomes):
            if outcome is None:
                continue
            weights, score, diagnostics = outcome
            if not math.isfinite(score):
                continue
            if best is None or score > best.score:
                best = OptimizationResult(
                    method=method,
                    weights=weights,
                    parameters=params,
                    score=float(score),
                    diagnostics=diagnostics,
                )
        if best is None:
            logger.warning(
                "No grid cell succeeded for %s on %s..%s; using equal weight",
                method, window.start.date(), window.end.date(),
            )
            return self.fallback(method)
        return best

    def _evaluate_cell(
        self,
        opt: OptimizationMethod,
        returns: pd.DataFrame,
        params: dict,
    ) -> CellOutcome:
        try:
            outcome = opt.evaluate(returns, params)
            if outcome is None:
                logger.debug("Skipping %s cell %s: not eligible", opt.name, params)
                return None
            weights, score, diagnostics = outcome
            return coerce_weights(weights, list(returns.columns)), float(score), dict(diagnostics)
        except Exception as exc:
            logger.debug("Skipping %s cell %s: %s", opt.name, params, exc)
            return None
