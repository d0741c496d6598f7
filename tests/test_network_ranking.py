"""Tests for treatment ranking and the network analyzer."""

import numpy as np
import pytest

from evisynth import (
    AnalysisConfig,
    InsufficientDataError,
    InsufficientStudiesError,
    NetworkAnalyzer,
    TreatmentEffect,
)
from evisynth.network import PairwiseContrast, p_scores, rank_treatments, sucra_scores
from evisynth.network.ranking import batch_sizes


@pytest.fixture
def effects():
    return [
        TreatmentEffect("A", 0.0, 0.0),
        TreatmentEffect("B", 0.5, 0.1),
        TreatmentEffect("C", 0.8, 0.1),
        TreatmentEffect("D", 0.45, 0.3),
    ]


@pytest.fixture
def rank_config():
    return AnalysisConfig(n_simulations=4000, simulation_batch_size=1000, random_seed=11)


class TestRanking:
    """rank_treatments."""

    def test_sucra_total(self, effects, rank_config) -> None:
        """SUCRA over all treatments sums to 50·n (n(n-1)/2 on the rank scale)."""
        ranking = rank_treatments(effects, rank_config)
        n = len(effects)
        total = sum(r.sucra for r in ranking.rankings)
        assert total == pytest.approx(50 * n, rel=1e-9)
        assert sum(r.sucra / 100 * (n - 1) for r in ranking.rankings) == pytest.approx(n * (n - 1) / 2)

    def test_p_score_total(self, effects, rank_config) -> None:
        ranking = rank_treatments(effects, rank_config)
        assert sum(r.p_score for r in ranking.rankings) == pytest.approx(50 * len(effects))

    def test_best_and_worst(self, effects, rank_config) -> None:
        ranking = rank_treatments(effects, rank_config)
        assert ranking.best_treatment == "C"
        assert ranking.worst_treatment == "A"
        assert ranking.rankings[0].treatment == "C"
        assert ranking.get("C").prob_best > 0.8
        assert ranking.get("A").median_rank == 4
        assert "Strong evidence" in ranking.interpretation

    def test_lower_is_better(self, effects, rank_config) -> None:
        ranking = rank_treatments(effects, rank_config.replace(higher_is_better=False))
        assert ranking.best_treatment == "A"
        assert ranking.get("A").prob_best > 0.9

    def test_rank_probabilities(self, effects, rank_config) -> None:
        ranking = rank_treatments(effects, rank_config)
        for r in ranking.rankings:
            assert sum(r.rank_probabilities) == pytest.approx(1.0)
            assert 1.0 <= r.mean_rank <= len(effects)
        by_rank = np.array([r.rank_probabilities for r in ranking.rankings])
        assert by_rank.sum(axis=0) == pytest.approx(np.ones(len(effects)))

    def test_sucra_close_to_p_score(self, effects, rank_config) -> None:
        ranking = rank_treatments(effects, rank_config)
        assert ranking.max_sucra_pscore_gap < 5

    def test_reproducible_with_seed(self, effects, rank_config) -> None:
        first = rank_treatments(effects, rank_config)
        second = rank_treatments(effects, rank_config)
        assert first == second

    def test_independent_of_worker_count(self, effects, rank_config) -> None:
        serial = rank_treatments(effects, rank_config)
        parallel = rank_treatments(effects, rank_config.replace(n_jobs=2))
        assert serial.rankings == parallel.rankings

    def test_two_treatments(self, rank_config) -> None:
        ranking = rank_treatments(
            [TreatmentEffect("A", 0.0, 0.0), TreatmentEffect("B", 0.2, 0.3)], rank_config
        )
        assert any("Only 2 treatments" in w for w in ranking.warnings)

    def test_uncertain_ranking(self, rank_config) -> None:
        effects = [TreatmentEffect(t, 0.0, 1.0) for t in "ABCD"]
        ranking = rank_treatments(effects, rank_config)
        assert "No clear best treatment" in ranking.interpretation
        assert any("Large uncertainty" in w for w in ranking.warnings)

    def test_one_treatment(self, rank_config) -> None:
        with pytest.raises(InsufficientStudiesError):
            rank_treatments([TreatmentEffect("A", 0.0, 0.1)], rank_config)

    def test_duplicate_treatments(self, rank_config) -> None:
        with pytest.raises(InsufficientDataError):
            rank_treatments([TreatmentEffect("A", 0.0, 0.1), TreatmentEffect("A", 0.2, 0.1)], rank_config)


class TestRankingHelpers:
    """Pure ranking helpers."""

    def test_batch_sizes(self) -> None:
        assert batch_sizes(2500, 1000) == [1000, 1000, 500]
        assert batch_sizes(2000, 1000) == [1000, 1000]

    def test_sucra_from_certain_ranks(self) -> None:
        probabilities = np.eye(3)
        assert sucra_scores(probabilities) == pytest.approx([100.0, 50.0, 0.0])

    def test_p_scores_for_equal_effects(self) -> None:
        scores = p_scores(np.zeros(3), np.full(3, 0.2))
        assert scores == pytest.approx([50.0, 50.0, 50.0])


class TestNetworkAnalyzer:
    """End-to-end network analysis."""

    def test_analyze(self, network_studies, rank_config) -> None:
        contrasts = [
            PairwiseContrast("A", "B", 0.5, 0.1, n_studies=2),
            PairwiseContrast("B", "C", 0.3, 0.15),
            PairwiseContrast("A", "C", 0.8, 0.12),
            PairwiseContrast("A", "D", 0.2, 0.2),
            PairwiseContrast("C", "D", -0.6, 0.2),
        ]
        result = NetworkAnalyzer().analyze(network_studies, contrasts, "A", rank_config)
        assert result.reference == "A"
        assert result.geometry.is_well_connected
        assert result.consistency.n_loops == 2
        assert result.consistency.is_consistent
        assert result.effects[0].treatment == "A"
        assert result.ranking.best_treatment == "C"
        d = result.to_dict()
        assert set(d) >= {"geometry", "consistency", "effects", "ranking", "warnings"}
        assert "Treatment Ranking" in result.summary_table()
