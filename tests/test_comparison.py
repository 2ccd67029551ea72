"""Tests for qrobust.comparison."""

import numpy as np
import pandas as pd
import pytest

from qrobust.comparison.framework import (
    RANKING_WEIGHTS,
    ComparisonConfig,
    StrategicAssetAllocation,
    StrategyComparisonFramework,
    StrategyEvaluation,
    TacticalAssetAllocation,
    correlation_stability,
)
from qrobust.comparison.strategies import StrategySpec, default_strategies
from qrobust.portfolio.allocation import equal_weight_strategy
from qrobust.utils.parallel import CancellationToken
from qrobust.utils.validation import (
    InsufficientDataError,
    QrobustValidationError,
    RunCancelledError,
)


@pytest.fixture()
def fast_config():
    return ComparisonConfig(
        lookback_window=120,
        holdout_window=40,
        step_size=40,
        monte_carlo_simulations=20,
        seed=0,
    )


@pytest.fixture()
def comparison(sample_prices, benchmark_prices, fast_config):
    return StrategyComparisonFramework(fast_config).run(sample_prices, benchmark_prices)


class TestStrategies:
    def test_default_set(self):
        strategies = default_strategies()
        assert list(strategies) == ["mean_variance", "black_litterman", "risk_parity", "equal_weight"]
        assert strategies["mean_variance"].config["target_return"] == 0.08
        assert strategies["mean_variance"].sensitivity == {"target_return": [0.06, 0.08, 0.10, 0.12]}

    def test_overrides_merge_without_mutating_defaults(self):
        custom = default_strategies({"black_litterman": {"tau": 0.2}})
        assert custom["black_litterman"].config["tau"] == 0.2
        assert custom["black_litterman"].config["risk_aversion"] == 3.0
        assert default_strategies()["black_litterman"].config["tau"] == 0.025


class TestComparisonRun:
    def test_every_strategy_evaluated(self, comparison):
        assert set(comparison.strategies) == set(default_strategies())
        for evaluation in comparison.strategies.values():
            assert evaluation.success, evaluation.error
            np.testing.assert_allclose(sum(evaluation.weights.values()), 1.0)
            assert evaluation.backtest is not None
            assert evaluation.walk_forward is not None
            assert evaluation.monte_carlo is not None
            assert len(evaluation.monte_carlo.simulations) <= 20
            assert "current_drawdown" in evaluation.risk_metrics
            assert evaluation.risk_metrics["current_drawdown"] >= 0
            assert "relative" in evaluation.risk_metrics
            assert set(evaluation.performance) == {
                "annualized_mean_return", "volatility", "sharpe_ratio",
            }

    def test_rankings_cover_all_metrics(self, comparison):
        assert set(comparison.rankings) == set(RANKING_WEIGHTS) | {"overall"}
        for entries in comparison.rankings.values():
            assert len(entries) == 4
        vols = [e.value for e in comparison.rankings["volatility"]]
        assert vols == sorted(vols)
        sharpes = [e.value for e in comparison.rankings["sharpe_ratio"]]
        assert sharpes == sorted(sharpes, reverse=True)

    def test_overall_points_total(self, comparison):
        # every metric hands out 4 + 3 + 2 + 1 points, and the weights sum to one
        total = sum(e.value for e in comparison.rankings["overall"])
        np.testing.assert_allclose(total, 10.0)

    def test_summary(self, comparison):
        summary = comparison.summary
        assert summary.best_strategy["strategy"] == comparison.rankings["overall"][0].strategy
        assert len(summary.key_insights) == 3
        profiled = [name for names in summary.risk_profile.values() for name in names]
        assert sorted(profiled) == sorted(e.name for e in comparison.strategies.values())

    def test_robustness_analysis(self, comparison):
        stability = comparison.robustness.correlation_stability
        assert set(stability) == {"63d", "126d", "252d"}
        for s in stability.values():
            assert -1.0 <= s.mean_correlation <= 1.0
        sensitivity = comparison.robustness.parameter_sensitivity
        assert set(sensitivity) == {"mean_variance", "black_litterman"}
        points = sensitivity["mean_variance"]["target_return"]
        assert [p.parameter_value for p in points] == [0.06, 0.08, 0.10, 0.12]
        assert all(p.error is None and p.sharpe_ratio is not None for p in points)

    def test_short_history_skips_walk_forward(self, sample_prices):
        cfg = ComparisonConfig(monte_carlo_simulations=10, seed=1)
        result = StrategyComparisonFramework(
            cfg, strategies={"ew": StrategySpec("ew", "Equal", equal_weight_strategy)}
        ).run(sample_prices)
        assert result.strategies["ew"].success
        assert result.strategies["ew"].walk_forward is None

    def test_failing_strategy_is_recorded(self, sample_prices, fast_config):
        def broken(returns, config):
            raise np.linalg.LinAlgError("singular covariance")

        strategies = {
            "ew": StrategySpec("ew", "Equal", equal_weight_strategy),
            "bad": StrategySpec("bad", "Broken", broken),
        }
        result = StrategyComparisonFramework(fast_config, strategies).run(sample_prices)
        assert not result.strategies["bad"].success
        assert "singular" in result.strategies["bad"].error
        assert [e.strategy for e in result.rankings["overall"]] == ["ew"]

    def test_too_little_history(self, sample_prices, fast_config):
        with pytest.raises(InsufficientDataError):
            StrategyComparisonFramework(fast_config).run(sample_prices.iloc[:30])

    def test_cancellation(self, sample_prices, fast_config):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(RunCancelledError):
            StrategyComparisonFramework(fast_config).run(sample_prices, cancel_token=token)


class TestRanking:
    def _evaluation(self, key, sharpe, mdd, vol):
        return StrategyEvaluation(
            key=key,
            name=key,
            config={},
            risk_metrics={"sharpe_ratio": sharpe, "max_drawdown": mdd, "annualized_volatility": vol},
        )

    def test_points_per_rank(self):
        evaluations = {
            "a": self._evaluation("a", 1.0, 0.10, 0.10),
            "b": self._evaluation("b", 0.5, 0.20, 0.20),
            "c": self._evaluation("c", 0.2, 0.30, 0.30),
        }
        rankings = StrategyComparisonFramework.rank_strategies(evaluations)
        assert [e.strategy for e in rankings["sharpe_ratio"]] == ["a", "b", "c"]
        assert [e.strategy for e in rankings["max_drawdown"]] == ["a", "b", "c"]
        assert [e.strategy for e in rankings["overall"]] == ["a", "b", "c"]
        np.testing.assert_allclose([e.value for e in rankings["overall"]], [3.0, 2.0, 1.0])

    def test_mixed_leaders(self):
        evaluations = {
            "steady": self._evaluation("steady", 0.5, 0.05, 0.05),
            "racy": self._evaluation("racy", 1.5, 0.40, 0.30),
        }
        rankings = StrategyComparisonFramework.rank_strategies(evaluations)
        scores = {e.strategy: e.value for e in rankings["overall"]}
        # return and robustness tie at zero; ties keep insertion order
        np.testing.assert_allclose(scores["racy"], 0.30 * 2 + 0.25 * 1 + 0.20 * 1 + 0.15 * 1 + 0.10 * 1)
        np.testing.assert_allclose(scores["steady"], 0.30 * 1 + 0.25 * 2 + 0.20 * 2 + 0.15 * 2 + 0.10 * 2)

    def test_no_valid_strategies(self):
        failed = StrategyEvaluation("x", "x", {}, error="boom")
        assert StrategyComparisonFramework.rank_strategies({"x": failed}) == {}


class TestCorrelationStability:
    def test_perfectly_correlated_assets(self):
        rng = np.random.default_rng(0)
        a = rng.normal(0, 0.01, 200)
        returns = pd.DataFrame({"A": a, "B": 2 * a})
        stab = correlation_stability(returns, 50)
        assert stab.mean_correlation == pytest.approx(1.0)
        assert stab.stability == pytest.approx(1.0)

    def test_windows_longer_than_history_are_skipped(self, sample_returns):
        cfg = ComparisonConfig(correlation_windows=(63, 500))
        analysis = StrategyComparisonFramework(cfg, strategies={}).robustness_analysis(sample_returns)
        assert set(analysis.correlation_stability) == {"63d"}
        assert analysis.parameter_sensitivity == {}


class TestPresets:
    def test_strategic(self):
        views = [{"kind": "absolute", "assets": [0], "expected_return": 0.1}]
        framework = StrategicAssetAllocation(investor_views=views)
        assert framework.config.rebalance_frequency == "monthly"
        mv = framework.strategies["mean_variance"].config
        assert mv["target_return"] == 0.07
        assert mv["constraints"] == {"min_weight": 0.05, "max_weight": 0.3}
        assert framework.strategies["black_litterman"].config["views"] == views

    def test_tactical(self, fast_config):
        framework = TacticalAssetAllocation(fast_config)
        assert framework.config.rebalance_frequency == "weekly"
        assert framework.config.monte_carlo_simulations == 20
        assert framework.strategies["mean_variance"].config["target_return"] == 0.12
        assert framework.strategies["black_litterman"].config["tau"] == 0.01

    def test_invalid_config(self):
        with pytest.raises(QrobustValidationError):
            ComparisonConfig(rebalance_frequency="yearly")
        with pytest.raises(QrobustValidationError):
            ComparisonConfig(confidence_level=1.0)
