"""Tests for GRADE evidence grading."""

import dataclasses

import pytest

from evisynth import (
    ConfigurationError,
    EffectSize,
    EvidenceGrader,
    PoolingEngine,
    PublicationBiasAnalyzer,
    Quality,
    StudyDesign,
    determine_recommendation_strength,
)
from evisynth.diagnostics import HeterogeneityStats
from evisynth.grading import Direction


@pytest.fixture
def grader() -> EvidenceGrader:
    return EvidenceGrader()


@pytest.fixture
def precise_or():
    """Pooled OR of 1.5 whose CI excludes 1."""
    effects = [EffectSize.from_estimate(1.5, "OR", study_id=f"P{i}", se=0.1) for i in range(3)]
    return PoolingEngine().pool(effects, model="fixed")


@pytest.fixture
def large_or():
    effects = [EffectSize.from_estimate(6.0, "OR", study_id=f"L{i}", se=0.2) for i in range(2)]
    return PoolingEngine().pool(effects, model="fixed")


@pytest.fixture
def imprecise_md():
    effects = [
        EffectSize.from_estimate(0.1, "MD", study_id="M1", se=0.3),
        EffectSize.from_estimate(-0.05, "MD", study_id="M2", se=0.3),
    ]
    return PoolingEngine().pool(effects, model="fixed")


class TestStartingQuality:
    """Starting levels by study design."""

    @pytest.mark.parametrize(
        "design, expected",
        [
            ("RCT", Quality.HIGH),
            ("randomized", Quality.HIGH),
            ("cohort", Quality.LOW),
            ("case-control", Quality.LOW),
            ("observational", Quality.LOW),
            ("case series", Quality.VERY_LOW),
            ("case_report", Quality.VERY_LOW),
        ],
    )
    def test_design_aliases(self, grader, design, expected) -> None:
        result = grader.grade(design)
        assert result.starting_quality is expected
        assert result.final_quality is expected

    def test_unknown_design(self, grader) -> None:
        with pytest.raises(ConfigurationError):
            grader.grade("expert opinion")

    def test_clean_rct_stays_high(self, grader, precise_or) -> None:
        result = grader.grade(StudyDesign.RANDOMIZED, pooled=precise_or)
        assert result.final_quality is Quality.HIGH
        assert result.total_downgrade == 0
        assert not result.applied_adjustments
        assert result.rationale.startswith("Started at High quality")
        assert result.rationale.endswith("Final quality: High.")


class TestDowngrades:
    """Downgrade factors."""

    def test_inconsistent_rct_with_publication_bias(self, grader, asymmetric_funnel) -> None:
        """High I² plus a significant Egger test never leaves an RCT at High."""
        heterogeneity = HeterogeneityStats(n_studies=12, q=55.0, df=11, p_value=1e-7, i_squared=80.0)
        bias = PublicationBiasAnalyzer().assess(asymmetric_funnel)
        assert bias.egger.significant
        result = grader.grade("rct", heterogeneity=heterogeneity, bias=bias)
        assert result.final_quality in (Quality.LOW, Quality.VERY_LOW)
        assert result.adjustment_for("inconsistency").magnitude == 1
        assert result.adjustment_for("publication_bias").magnitude == 1

    def test_significant_egger_without_imputed_studies(self, grader, asymmetric_funnel) -> None:
        """Egger asymmetry alone, with nothing filled in, does not downgrade."""
        bias = PublicationBiasAnalyzer().assess(asymmetric_funnel)
        nothing_filled = dataclasses.replace(bias.trim_and_fill, n_imputed=0, imputed=())
        bias = dataclasses.replace(bias, trim_and_fill=nothing_filled)
        assert bias.egger.significant
        result = grader.grade("rct", bias=bias)
        adjustment = result.adjustment_for("publication_bias")
        assert adjustment.direction is Direction.NONE
        assert "imputed no missing studies" in adjustment.rationale
        assert result.final_quality is Quality.HIGH

    def test_significant_egger_without_trim_and_fill(self, grader, asymmetric_funnel) -> None:
        bias = dataclasses.replace(PublicationBiasAnalyzer().assess(asymmetric_funnel), trim_and_fill=None)
        result = grader.grade("rct", bias=bias)
        assert result.adjustment_for("publication_bias").magnitude == 0

    def test_imputed_count_in_rationale(self, grader, asymmetric_funnel) -> None:
        bias = PublicationBiasAnalyzer().assess(asymmetric_funnel)
        rationale = grader.grade("rct", bias=bias).adjustment_for("publication_bias").rationale
        assert f"imputed {bias.n_imputed} study(ies)" in rationale

    def test_very_high_heterogeneity(self, grader) -> None:
        heterogeneity = HeterogeneityStats(n_studies=8, q=90.0, df=7, p_value=1e-12, i_squared=92.2)
        result = grader.grade("rct", heterogeneity=heterogeneity)
        assert result.adjustment_for("inconsistency").magnitude == 2
        assert result.final_quality is Quality.LOW

    def test_explained_heterogeneity(self, grader) -> None:
        heterogeneity = HeterogeneityStats(n_studies=8, q=40.0, df=7, p_value=1e-5, i_squared=82.5)
        result = grader.grade("rct", heterogeneity=heterogeneity, inconsistency_explained=True)
        assert result.adjustment_for("inconsistency").direction is Direction.NONE

    def test_heterogeneity_taken_from_pooled(self, grader, heterogeneous_mds) -> None:
        pooled = PoolingEngine().pool(heterogeneous_mds)
        result = grader.grade("rct", pooled=pooled)
        assert result.adjustment_for("inconsistency").magnitude == 2

    @pytest.mark.parametrize(
        "judgement, levels",
        [("low", 0), ("some concerns", 0), ("high", 1), ("critical", 2)],
    )
    def test_risk_of_bias(self, grader, judgement, levels) -> None:
        result = grader.grade("rct", risk_of_bias=judgement)
        assert result.adjustment_for("risk_of_bias").magnitude == levels
        assert result.final_quality.value == 4 - levels

    def test_indirectness(self, grader) -> None:
        result = grader.grade("rct", indirectness="very serious")
        assert result.adjustment_for("indirectness").magnitude == 2

    def test_imprecision_crossing_null(self, grader, imprecise_md) -> None:
        result = grader.grade("rct", pooled=imprecise_md)
        assert result.adjustment_for("imprecision").magnitude == 1
        assert result.final_quality is Quality.MODERATE

    def test_imprecision_threshold_spanned(self, grader) -> None:
        effects = [
            EffectSize.from_estimate(1.0, "OR", study_id="W1", se=0.5),
            EffectSize.from_estimate(1.0, "OR", study_id="W2", se=0.5),
        ]
        pooled = PoolingEngine().pool(effects, model="fixed")
        result = grader.grade("rct", pooled=pooled, imprecision_threshold=1.25)
        assert result.adjustment_for("imprecision").magnitude == 2

    def test_imprecision_threshold_not_crossed(self, grader, precise_or) -> None:
        result = grader.grade("rct", pooled=precise_or, imprecision_threshold=1.1)
        assert result.adjustment_for("imprecision").magnitude == 0

    def test_clamped_at_very_low(self, grader, imprecise_md) -> None:
        result = grader.grade(
            "rct", pooled=imprecise_md, risk_of_bias="critical", indirectness="very_serious"
        )
        assert result.total_downgrade == 5
        assert result.final_quality is Quality.VERY_LOW


class TestUpgrades:
    """Upgrade factors for observational evidence."""

    def test_very_large_effect(self, grader, large_or) -> None:
        result = grader.grade("cohort", pooled=large_or)
        assert result.adjustment_for("large_effect").magnitude == 2
        assert result.final_quality is Quality.HIGH

    def test_large_protective_effect(self, grader) -> None:
        effects = [EffectSize.from_estimate(0.4, "RR", study_id=f"R{i}", se=0.1) for i in range(2)]
        pooled = PoolingEngine().pool(effects, model="fixed")
        result = grader.grade("observational", pooled=pooled)
        assert result.adjustment_for("large_effect").magnitude == 1
        assert result.final_quality is Quality.MODERATE

    def test_flags(self, grader) -> None:
        result = grader.grade("observational", dose_response=True, confounding_reduces_effect=True)
        assert result.total_upgrade == 2
        assert result.final_quality is Quality.HIGH

    def test_rct_is_not_upgraded(self, grader, large_or) -> None:
        result = grader.grade("rct", pooled=large_or, dose_response=True)
        assert result.total_upgrade == 0
        assert result.final_quality is Quality.HIGH

    def test_upgrade_after_downgrade(self, grader, large_or) -> None:
        result = grader.grade("cohort", pooled=large_or, risk_of_bias="critical")
        assert result.final_quality is Quality.MODERATE
        assert "Downgraded 2 level(s)" in result.rationale
        assert "Upgraded 2 level(s)" in result.rationale

    def test_every_factor_is_reported(self, grader) -> None:
        result = grader.grade("observational")
        factors = [a.factor for a in result.adjustments]
        assert factors == [
            "risk_of_bias",
            "inconsistency",
            "indirectness",
            "imprecision",
            "publication_bias",
            "large_effect",
            "dose_response",
            "plausible_confounding",
        ]
        assert all(a.rationale for a in result.adjustments)

    def test_to_dict(self, grader, large_or) -> None:
        d = grader.grade("cohort", pooled=large_or).to_dict()
        assert d["final_quality"] == "High"
        assert d["starting_quality"] == "Low"


class TestRecommendationStrength:
    """determine_recommendation_strength."""

    def test_strong(self) -> None:
        result = determine_recommendation_strength("high", "clearly_favors", "consistent", "low")
        assert result.strength == "strong"

    def test_weak_with_reasons(self) -> None:
        result = determine_recommendation_strength(Quality.LOW, "uncertain", "variable", "high")
        assert result.strength == "weak"
        assert result.rationale.startswith("Weak recommendation due to:")
        assert "low quality evidence" in result.rationale
        assert "high resource use" in result.rationale

    def test_weak_default(self) -> None:
        result = determine_recommendation_strength("moderate", "clearly_favors", "consistent", "low")
        assert result.strength == "weak"
        assert result.rationale == "Moderate quality evidence with probably favorable balance"

    def test_unknown_balance(self) -> None:
        with pytest.raises(ConfigurationError):
            determine_recommendation_strength("high", "maybe", "consistent", "low")
