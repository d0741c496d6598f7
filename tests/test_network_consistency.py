"""Tests for network estimates and consistency checks."""

import math

import pytest

from evisynth import (
    AnalysisConfig,
    EffectSize,
    InsufficientDataError,
    InsufficientStudiesError,
    NetworkAnalyzer,
    NumericalInstabilityError,
)
from evisynth.network import (
    PairwiseContrast,
    assess_consistency,
    combine_contrasts,
    network_estimates,
    pairwise_contrasts,
)


class TestContrasts:
    """PairwiseContrast and contrast helpers."""

    def test_orientation(self) -> None:
        contrast = PairwiseContrast("A", "B", 0.4, 0.1)
        assert contrast.oriented("A", "B") == 0.4
        assert contrast.oriented("B", "A") == -0.4
        with pytest.raises(InsufficientDataError):
            contrast.oriented("A", "C")

    def test_validation(self) -> None:
        with pytest.raises(InsufficientDataError):
            PairwiseContrast("A", "A", 0.4, 0.1)
        with pytest.raises(NumericalInstabilityError):
            PairwiseContrast("A", "B", 0.4, 0.0)

    def test_combine_repeated_pairs(self) -> None:
        combined, warnings = combine_contrasts([
            PairwiseContrast("A", "B", 0.4, 0.1),
            PairwiseContrast("B", "A", -0.6, 0.1),
        ])
        assert len(combined) == 1
        assert combined[0].oriented("A", "B") == pytest.approx(0.5)
        assert combined[0].se == pytest.approx(0.1 / math.sqrt(2))
        assert combined[0].n_studies == 2
        assert warnings

    def test_pairwise_contrasts_from_effect_sizes(self) -> None:
        comparisons = {
            ("A", "B"): [
                EffectSize.from_estimate(0.4, "MD", study_id="S1", se=0.2),
                EffectSize.from_estimate(0.6, "MD", study_id="S2", se=0.2),
            ],
            ("B", "C"): [EffectSize.from_estimate(0.3, "MD", study_id="S3", se=0.15)],
        }
        contrasts = pairwise_contrasts(comparisons)
        ab, bc = contrasts
        assert ab.estimate == pytest.approx(0.5)
        assert ab.n_studies == 2
        assert bc.estimate == pytest.approx(0.3)
        assert bc.se == pytest.approx(0.15)


class TestNetworkEstimates:
    """Generalized least-squares estimates against a reference."""

    def test_consistent_triangle(self, triangle_contrasts) -> None:
        effects = {e.treatment: e for e in network_estimates(triangle_contrasts, "A")}
        assert effects["A"].estimate == 0.0
        assert effects["A"].se == 0.0
        assert effects["B"].estimate == pytest.approx(0.5)
        assert effects["C"].estimate == pytest.approx(0.8)
        # Indirect evidence makes each estimate more precise than its direct contrast
        assert effects["B"].se < 0.1

    def test_single_contrast(self) -> None:
        effects = network_estimates([PairwiseContrast("A", "B", 0.3, 0.2)], "B")
        assert effects[0].treatment == "B"
        assert effects[1].estimate == pytest.approx(-0.3)
        assert effects[1].se == pytest.approx(0.2)

    def test_disconnected(self) -> None:
        contrasts = [PairwiseContrast("A", "B", 0.3, 0.2), PairwiseContrast("C", "D", 0.1, 0.2)]
        with pytest.raises(InsufficientStudiesError):
            network_estimates(contrasts, "A")

    def test_unknown_reference(self, triangle_contrasts) -> None:
        with pytest.raises(InsufficientDataError):
            network_estimates(triangle_contrasts, "Z")

    def test_no_contrasts(self) -> None:
        with pytest.raises(InsufficientStudiesError):
            network_estimates([], "A")


class TestConsistency:
    """Loop, node-splitting and global consistency."""

    def test_consistent_loop(self, triangle_contrasts) -> None:
        result = assess_consistency(triangle_contrasts)
        assert result.n_loops == 1
        loop = result.loops[0]
        assert loop.treatments == ("A", "B", "C")
        assert loop.inconsistency_factor == pytest.approx(0.0, abs=1e-12)
        assert loop.se == pytest.approx(math.sqrt(0.03))
        assert not loop.is_inconsistent
        assert result.is_consistent
        assert result.severity == "none"
        assert result.df == 1

    def test_inconsistent_loop(self) -> None:
        contrasts = [
            PairwiseContrast("A", "B", 0.5, 0.1),
            PairwiseContrast("B", "C", 0.3, 0.1),
            PairwiseContrast("A", "C", 2.0, 0.1),
        ]
        result = assess_consistency(contrasts)
        loop = result.loops[0]
        assert loop.inconsistency_factor == pytest.approx(-1.2)
        assert loop.is_inconsistent
        assert result.chi_squared == pytest.approx(loop.z ** 2)
        assert not result.is_consistent
        assert result.severity == "severe"
        assert result.recommendations
        assert result.inconsistent_loops == (loop,)

    def test_node_split(self, triangle_contrasts) -> None:
        result = assess_consistency(triangle_contrasts)
        split = next(s for s in result.node_splits if (s.treatment_a, s.treatment_b) == ("A", "B"))
        assert split.direct == pytest.approx(0.5)
        assert split.indirect == pytest.approx(0.5)
        assert split.indirect_se == pytest.approx(math.sqrt(0.02))
        assert split.difference == pytest.approx(0.0, abs=1e-12)
        assert not split.is_inconsistent

    def test_star_has_no_loops(self) -> None:
        contrasts = [
            PairwiseContrast("P", "A", 0.2, 0.1),
            PairwiseContrast("P", "B", 0.4, 0.1),
            PairwiseContrast("P", "C", 0.1, 0.1),
        ]
        result = assess_consistency(contrasts)
        assert result.n_loops == 0
        assert result.p_value is None
        assert result.is_consistent
        assert all(not s.has_indirect for s in result.node_splits)
        assert any("No closed loops" in w for w in result.warnings)

    def test_loop_length_bound(self) -> None:
        square = [
            PairwiseContrast("A", "B", 0.1, 0.1),
            PairwiseContrast("B", "C", 0.1, 0.1),
            PairwiseContrast("C", "D", 0.1, 0.1),
            PairwiseContrast("A", "D", 0.3, 0.1),
        ]
        assert assess_consistency(square).n_loops == 0
        result = assess_consistency(square, AnalysisConfig(max_loop_length=4))
        assert result.n_loops == 1
        assert result.loops[0].treatments == ("A", "B", "C", "D")

    def test_max_loops_cap(self) -> None:
        treatments = ["A", "B", "C", "D", "E"]
        contrasts = [
            PairwiseContrast(a, b, 0.1, 0.1)
            for i, a in enumerate(treatments)
            for b in treatments[i + 1:]
        ]
        result = assess_consistency(contrasts, AnalysisConfig(max_loops=3))
        assert result.n_loops == 3
        assert any("truncated" in w for w in result.warnings)

    def test_few_loops_warning(self, triangle_contrasts) -> None:
        result = assess_consistency(triangle_contrasts)
        assert any("Few loops" in w for w in result.warnings)

    def test_analyzer_facade(self, triangle_contrasts) -> None:
        result = NetworkAnalyzer().consistency(triangle_contrasts)
        d = result.to_dict()
        assert d["loops"][0]["loop"] == "A-B-C-A"
        assert "Network Consistency" in result.summary_table()
