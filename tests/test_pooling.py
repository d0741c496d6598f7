"""Tests for fixed, random and automatic pooling."""

import math

import numpy as np
import pytest

from evisynth import (
    AnalysisConfig,
    ConfigurationError,
    EffectSize,
    InsufficientStudiesError,
    PoolingEngine,
)
from evisynth.models import pooled_estimate_fixed, pooled_estimate_random, select_model
from evisynth.diagnostics import HeterogeneityStats


class TestTwoStudyScenario:
    """OR 2.0 (SE 0.3) and OR 3.0 (SE 0.4) under the fixed-effect model."""

    def test_fixed_effect_pooled_or(self, two_odds_ratios) -> None:
        w1, w2 = 1 / 0.3 ** 2, 1 / 0.4 ** 2
        hand = math.exp((w1 * math.log(2.0) + w2 * math.log(3.0)) / (w1 + w2))
        result = PoolingEngine().pool(two_odds_ratios, model="fixed")
        assert round(result.estimate, 2) == round(hand, 2)
        assert result.estimate == pytest.approx(2.33, abs=0.02)
        assert result.se == pytest.approx(1 / math.sqrt(w1 + w2))

    def test_weights(self, two_odds_ratios) -> None:
        result = PoolingEngine().pool_fixed(two_odds_ratios)
        assert result.weight_for("S1") == pytest.approx(0.64)
        assert result.weight_for("S2") == pytest.approx(0.36)
        assert sum(w.percent for w in result.weights) == pytest.approx(100.0)

    def test_very_few_studies_warning(self, two_odds_ratios) -> None:
        result = PoolingEngine().pool(two_odds_ratios, model="fixed")
        assert any("Very few studies" in w for w in result.warnings)


class TestPoolingEngine:
    """Tests for PoolingEngine.pool."""

    @pytest.mark.parametrize("k", [2, 4, 9])
    def test_identical_studies(self, k) -> None:
        """k identical studies keep the estimate and shrink the SE by 1/sqrt(k)."""
        effects = [EffectSize.from_estimate(0.7, "MD", study_id=f"I{i}", se=0.3) for i in range(k)]
        result = PoolingEngine().pool(effects, model="fixed")
        assert result.estimate == pytest.approx(0.7)
        assert result.se == pytest.approx(0.3 / math.sqrt(k))

    def test_random_se_exceeds_fixed(self, heterogeneous_mds) -> None:
        engine = PoolingEngine()
        fixed = engine.pool(heterogeneous_mds, model="fixed")
        random = engine.pool(heterogeneous_mds, model="random")
        assert random.tau_squared > 0
        assert random.se >= fixed.se
        assert engine.pool_random(heterogeneous_mds).se == pytest.approx(random.se)

    def test_auto_selects_fixed_for_low_heterogeneity(self, homogeneous_mds) -> None:
        result = PoolingEngine().pool(homogeneous_mds)
        assert result.model == "fixed"
        assert "I² = 0.0%" in result.model_reason

    def test_auto_selects_random_for_high_heterogeneity(self, heterogeneous_mds) -> None:
        result = PoolingEngine().pool(heterogeneous_mds, model="auto")
        assert result.model == "random"
        assert "Random-effects" in result.model_reason

    def test_threshold_from_config(self, heterogeneous_mds) -> None:
        config = AnalysisConfig(heterogeneity_threshold=100.0)
        result = PoolingEngine().pool(heterogeneous_mds, config=config)
        assert result.model == "fixed"

    def test_single_study_rejected(self) -> None:
        es = EffectSize.from_estimate(0.5, "MD", se=0.1)
        with pytest.raises(InsufficientStudiesError) as exc_info:
            PoolingEngine().pool([es])
        assert exc_info.value.required == 2
        assert exc_info.value.available == 1

    def test_unknown_model(self, two_odds_ratios) -> None:
        with pytest.raises(ConfigurationError):
            PoolingEngine().pool(two_odds_ratios, model="bayesian")

    def test_heterogeneity_attached(self, heterogeneous_mds) -> None:
        result = PoolingEngine().pool(heterogeneous_mds)
        assert result.heterogeneity.n_studies == 5
        assert result.tau_squared == pytest.approx(result.heterogeneity.tau_squared)

    def test_ratio_ci_contains_estimate(self, two_odds_ratios) -> None:
        result = PoolingEngine().pool(two_odds_ratios, model="random")
        assert result.ci_lower < result.estimate < result.ci_upper
        assert result.is_significant

    def test_summary_and_dict(self, heterogeneous_mds) -> None:
        result = PoolingEngine().pool(heterogeneous_mds)
        assert "random" in result.summary_table().lower()
        d = result.to_dict()
        assert d["n_studies"] == 5
        assert len(d["weights"]) == 5


class TestPoolingHelpers:
    """Pure array helpers."""

    def test_fixed(self) -> None:
        est, var = pooled_estimate_fixed(np.array([1.0, 3.0]), np.array([1.0, 1.0]))
        assert est == pytest.approx(2.0)
        assert var == pytest.approx(0.5)

    def test_random_reduces_to_fixed(self) -> None:
        y = np.array([0.2, 0.4, 0.9])
        v = np.array([0.04, 0.09, 0.01])
        assert pooled_estimate_random(y, v, 0.0) == pytest.approx(pooled_estimate_fixed(y, v))

    def test_select_model_boundary(self) -> None:
        stats = HeterogeneityStats(n_studies=5, i_squared=50.0)
        model, reason = select_model(stats, 50.0)
        assert model.value == "random"
        assert ">=" in reason
