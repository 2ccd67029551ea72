"""Named allocation strategies compared by the framework, and presets."""

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence

import pandas as pd

from qrobust.portfolio.allocation import (
    black_litterman_strategy,
    equal_weight_strategy,
    mean_variance_strategy,
    risk_parity_strategy,
)


@dataclass(frozen=True)
class StrategySpec:
    """A strategy function with its configuration.

    Parameters
    ----------
    key : str
        Identifier used in rankings and as the walk-forward method name.
    name : str
        Display name.
    optimize : callable
        ``optimize(returns, config) -> weights``.
    config : mapping
        Configuration passed to *optimize*; its numeric entries are the
        parameters perturbed by Monte Carlo trials.
    sensitivity : mapping
        ``{config key: [values, ...]}`` swept in the robustness analysis.
    """

    key: str
    name: str
    optimize: Callable[[pd.DataFrame, Mapping[str, Any]], Any]
    config: Mapping[str, Any] = field(default_factory=dict)
    sensitivity: Mapping[str, Sequence] = field(default_factory=dict)


_BASE_CONFIGS: dict[str, dict[str, Any]] = {
    "mean_variance": {
        "target_return": 0.08,
        "constraints": {"min_weight": 0.01, "max_weight": 0.4},
    },
    "black_litterman": {
        "tau": 0.025,
        "risk_aversion": 3.0,
        "views": [],
    },
    "risk_parity": {
        "max_iterations": 100,
        "tolerance": 1e-6,
        "constraints": {"min_weight": 0.01, "max_weight": 0.5},
    },
    "equal_weight": {},
}

STRATEGIC_OVERRIDES: dict[str, dict[str, Any]] = {
    "mean_variance": {
        "target_return": 0.07,
        "constraints": {"min_weight": 0.05, "max_weight": 0.3},
    },
    "black_litterman": {"tau": 0.05},
    "risk_parity": {"constraints": {"min_weight": 0.02, "max_weight": 0.4}},
}

TACTICAL_OVERRIDES: dict[str, dict[str, Any]] = {
    "mean_variance": {
        "target_return": 0.12,
        "constraints": {"min_weight": 0.0, "max_weight": 0.6},
    },
    "black_litterman": {"tau": 0.01},
    "risk_parity": {"constraints": {"min_weight": 0.0, "max_weight": 0.5}},
}


def default_strategies(
    overrides: Mapping[str, Mapping[str, Any]] | None = None,
) -> dict[str, StrategySpec]:
    """Mean-variance, Black-Litterman, risk parity and the equal-weight benchmark.

    Parameters
    ----------
    overrides : mapping, optional
        ``{strategy key: {config key: value}}`` merged over the defaults.
    """
    overrides = overrides or {}
    configs = {
        key: {**deepcopy(base), **deepcopy(dict(overrides.get(key, {})))}
        for key, base in _BASE_CONFIGS.items()
    }
    return {
        "mean_variance": StrategySpec(
            "mean_variance",
            "Mean-Variance Optimization",
            mean_variance_strategy,
            configs["mean_variance"],
            sensitivity={"target_return": [0.06, 0.08, 0.10, 0.12]},
        ),
        "black_litterman": StrategySpec(
            "black_litterman",
            "Black-Litterman",
            black_litterman_strategy,
            configs["black_litterman"],
            sensitivity={"tau": [0.01, 0.025, 0.05, 0.1]},
        ),
        "risk_parity": StrategySpec(
            "risk_parity",
            "Risk Parity",
            risk_parity_strategy,
            configs["risk_parity"],
        ),
        "equal_weight": StrategySpec(
            "equal_weight",
            "Equal Weight (Benchmark)",
            equal_weight_strategy,
            configs["equal_weight"],
        ),
    }
