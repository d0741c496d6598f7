"""
Treatment Ranking for evisynth.

This module ranks treatments from their network estimates. Rank
probabilities come from Monte Carlo draws of each treatment effect, run
in independently seeded batches that can be spread over several worker
processes; SUCRA and the analytic P-score summarize them.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Sequence, Tuple
import numpy as np
from joblib import Parallel, delayed
from scipy import stats

from evisynth.core.config import AnalysisConfig, resolve_config
from evisynth.core.exceptions import InsufficientDataError, InsufficientStudiesError
from evisynth.network.contrasts import TreatmentEffect
from evisynth.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class TreatmentRank:
    """
    Ranking summary for one treatment.

    Attributes:
        treatment: Treatment name
        sucra: Surface under the cumulative ranking curve (0-100)
        p_score: Analytic P-score (0-100)
        mean_rank: Expected rank (1 = best)
        median_rank: Median rank
        prob_best: Probability of ranking first
        rank_probabilities: Probability of each rank, best first
    """

    treatment: str
    sucra: float
    p_score: float
    mean_rank: float
    median_rank: int
    prob_best: float
    rank_probabilities: Tuple[float, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "treatment": self.treatment,
            "sucra": self.sucra,
            "p_score": self.p_score,
            "mean_rank": self.mean_rank,
            "median_rank": self.median_rank,
            "prob_best": self.prob_best,
            "rank_probabilities": list(self.rank_probabilities),
        }


@dataclass(frozen=True)
class Ranking:
    """
    Treatment ranking for a network.

    Attributes:
        rankings: Per-treatment summaries, highest SUCRA first
        best_treatment: Treatment with the highest SUCRA
        worst_treatment: Treatment with the lowest SUCRA
        max_sucra_pscore_gap: Largest |SUCRA - P-score| across treatments
        n_simulations: Number of Monte Carlo draws
        higher_is_better: Orientation used for ranking
        interpretation: Plain-language summary
        recommendations: Suggested follow-up
        warnings: Any warnings generated
    """

    rankings: Tuple[TreatmentRank, ...]
    best_treatment: str
    worst_treatment: str
    max_sucra_pscore_gap: float
    n_simulations: int
    higher_is_better: bool
    interpretation: str
    recommendations: Tuple[str, ...] = field(default_factory=tuple)
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def treatments(self) -> Tuple[str, ...]:
        return tuple(r.treatment for r in self.rankings)

    def get(self, treatment: str) -> TreatmentRank:
        for rank in self.rankings:
            if rank.treatment == treatment:
                return rank
        raise KeyError(treatment)

    def summary_table(self) -> str:
        """Generate summary table as string."""
        lines = [
            "=" * 60,
            "Treatment Ranking",
            "=" * 60,
            f"{'Treatment':<20} {'SUCRA':>8} {'P-score':>8} {'Mean rank':>10} {'P(best)':>8}",
            "-" * 60,
        ]
        for r in self.rankings:
            lines.append(
                f"{r.treatment:<20} {r.sucra:>8.1f} {r.p_score:>8.1f} "
                f"{r.mean_rank:>10.2f} {r.prob_best:>8.3f}"
            )
        lines.append("-" * 60)
        lines.append(self.interpretation)
        for w in self.warnings:
            lines.append(f"  - {w}")
        lines.append("=" * 60)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "rankings": [r.to_dict() for r in self.rankings],
            "best_treatment": self.best_treatment,
            "worst_treatment": self.worst_treatment,
            "max_sucra_pscore_gap": self.max_sucra_pscore_gap,
            "n_simulations": self.n_simulations,
            "higher_is_better": self.higher_is_better,
            "interpretation": self.interpretation,
            "recommendations": list(self.recommendations),
            "warnings": list(self.warnings),
        }


# =============================================================================
# Monte Carlo rank counts
# =============================================================================

def batch_sizes(n_simulations: int, batch_size: int) -> List[int]:
    """Split the simulation count into fixed-size batches."""
    sizes = [batch_size] * (n_simulations // batch_size)
    if n_simulations % batch_size:
        sizes.append(n_simulations % batch_size)
    return sizes


def rank_counts(
    mu: np.ndarray,
    se: np.ndarray,
    n_draws: int,
    seed: np.random.SeedSequence,
    higher_is_better: bool = True
) -> np.ndarray:
    """
    Count how often each treatment takes each rank in one batch.

    Args:
        mu: Treatment estimates
        se: Standard errors
        n_draws: Draws in this batch
        seed: Seed for this batch
        higher_is_better: Whether larger effects rank first

    Returns:
        Matrix of counts, treatments by ranks (best rank first)
    """
    n = len(mu)
    rng = np.random.default_rng(seed)
    draws = rng.normal(mu, se, size=(n_draws, n))
    order = np.argsort(-draws if higher_is_better else draws, axis=1, kind="stable")
    ranks = np.argsort(order, axis=1)

    counts = np.zeros((n, n), dtype=np.int64)
    treatment_idx = np.broadcast_to(np.arange(n), ranks.shape)
    np.add.at(counts, (treatment_idx.ravel(), ranks.ravel()), 1)
    return counts


def simulate_rank_probabilities(
    mu: np.ndarray,
    se: np.ndarray,
    config: AnalysisConfig
) -> np.ndarray:
    """
    Rank probabilities from batched, independently seeded draws.

    Results depend only on the seed and batch size, not on n_jobs.
    """
    sizes = batch_sizes(config.n_simulations, config.simulation_batch_size)
    seeds = np.random.SeedSequence(config.random_seed).spawn(len(sizes))
    batches = Parallel(n_jobs=config.n_jobs)(
        delayed(rank_counts)(mu, se, size, seed, config.higher_is_better)
        for size, seed in zip(sizes, seeds)
    )
    total = np.sum(batches, axis=0)
    return total / config.n_simulations


def sucra_scores(rank_probabilities: np.ndarray) -> np.ndarray:
    """SUCRA (0-100) from a treatments-by-ranks probability matrix."""
    n = rank_probabilities.shape[1]
    cumulative = np.cumsum(rank_probabilities, axis=1)
    return cumulative[:, : n - 1].sum(axis=1) / (n - 1) * 100


def p_scores(
    mu: np.ndarray,
    se: np.ndarray,
    higher_is_better: bool = True
) -> np.ndarray:
    """
    Analytic P-scores (0-100).

    P_i = mean over j != i of Phi((mu_i - mu_j) / sqrt(se_i² + se_j²)),
    with the sign flipped when lower effects are better.
    """
    n = len(mu)
    sign = 1.0 if higher_is_better else -1.0
    scores = np.zeros(n)
    for i in range(n):
        total = 0.0
        for j in range(n):
            if i == j:
                continue
            diff = sign * (mu[i] - mu[j])
            scale = np.sqrt(se[i] ** 2 + se[j] ** 2)
            if scale > 0:
                total += stats.norm.cdf(diff / scale)
            else:
                total += 1.0 if diff > 0 else (0.5 if diff == 0 else 0.0)
        scores[i] = total / (n - 1)
    return scores * 100


def _interpret(best: TreatmentRank) -> str:
    if best.prob_best > 0.8:
        return (
            f"Strong evidence that {best.treatment} is the best treatment "
            f"(P(best) = {best.prob_best:.2f}, SUCRA = {best.sucra:.1f})"
        )
    if best.prob_best > 0.5:
        return (
            f"Moderate evidence that {best.treatment} is the best treatment "
            f"(P(best) = {best.prob_best:.2f}, SUCRA = {best.sucra:.1f})"
        )
    return (
        f"No clear best treatment; {best.treatment} ranks highest but "
        f"P(best) = {best.prob_best:.2f}"
    )


def rank_treatments(
    effects: Sequence[TreatmentEffect],
    config: Optional[AnalysisConfig] = None
) -> Ranking:
    """
    Rank treatments by SUCRA and P-score.

    Args:
        effects: Treatment effects against a common reference
        config: Analysis configuration (n_simulations, batch size, seed, n_jobs)

    Returns:
        Ranking
    """
    config = resolve_config(config)
    effects = list(effects)
    if len(effects) < 2:
        raise InsufficientStudiesError(
            f"Ranking requires at least 2 treatments, got {len(effects)}",
            required=2,
            available=len(effects),
            details={"step": "ranking"},
        )
    names = [e.treatment for e in effects]
    if len(set(names)) != len(names):
        raise InsufficientDataError(
            "Duplicate treatments in ranking input",
            {"treatments": names},
        )

    mu = np.array([e.estimate for e in effects], dtype=float)
    se = np.array([e.se for e in effects], dtype=float)

    probabilities = simulate_rank_probabilities(mu, se, config)
    sucra = sucra_scores(probabilities)
    p_score = p_scores(mu, se, config.higher_is_better)
    n = len(effects)
    positions = np.arange(1, n + 1)
    cumulative = np.cumsum(probabilities, axis=1)

    rankings = []
    for i, name in enumerate(names):
        rankings.append(TreatmentRank(
            treatment=name,
            sucra=float(sucra[i]),
            p_score=float(p_score[i]),
            mean_rank=float(np.sum(positions * probabilities[i])),
            median_rank=int(np.searchsorted(cumulative[i], 0.5 - 1e-12) + 1),
            prob_best=float(probabilities[i, 0]),
            rank_probabilities=tuple(float(p) for p in probabilities[i]),
        ))
    rankings.sort(key=lambda r: (-r.sucra, r.treatment))

    best, worst = rankings[0], rankings[-1]
    gap = float(np.max(np.abs(sucra - p_score)))

    warnings: List[str] = []
    if n == 2:
        warnings.append("Only 2 treatments; ranking is trivial")
    if best.prob_best < 0.5:
        warnings.append("No clear best treatment (P(best) < 0.5)")
    if n > 2 and rankings[0].sucra - rankings[1].sucra < 20:
        warnings.append(
            f"Top treatments have similar SUCRA ({rankings[0].sucra:.1f} vs {rankings[1].sucra:.1f})"
        )
    if np.any(se > 0) and np.mean(se[se > 0]) > 0.5:
        warnings.append("Large uncertainty in treatment effects; rankings are imprecise")

    recommendations = [
        "Interpret rankings alongside effect estimates and their confidence intervals",
    ]
    if gap > 10:
        recommendations.append("SUCRA and P-score disagree; check the Monte Carlo settings")

    logger.debug(
        "Ranking: best=%s (SUCRA %.1f), %d simulations", best.treatment, best.sucra, config.n_simulations
    )

    return Ranking(
        rankings=tuple(rankings),
        best_treatment=best.treatment,
        worst_treatment=worst.treatment,
        max_sucra_pscore_gap=gap,
        n_simulations=config.n_simulations,
        higher_is_better=config.higher_is_better,
        interpretation=_interpret(best),
        recommendations=tuple(recommendations),
        warnings=tuple(warnings),
    )
