"""
Network Analyzer for evisynth.

This module ties geometry, consistency and ranking together into one
network meta-analysis run.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, Iterable, List, Mapping, Sequence, Tuple, Union

from evisynth.core.config import AnalysisConfig, resolve_config
from evisynth.core.estimand import PoolingModel
from evisynth.core.study import EffectSize
from evisynth.network.consistency import ConsistencyResult, assess_consistency
from evisynth.network.contrasts import (
    PairwiseContrast,
    TreatmentEffect,
    network_estimates,
    pairwise_contrasts,
)
from evisynth.network.geometry import NetworkGeometry, NetworkStudy, assess_geometry
from evisynth.network.ranking import Ranking, rank_treatments
from evisynth.models.pooling import PoolingEngine
from evisynth.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class NetworkAnalysis:
    """
    Complete network meta-analysis results.

    Attributes:
        geometry: Network structure
        consistency: Direct vs indirect agreement
        effects: Treatment effects against the reference
        ranking: Treatment ranking
        reference: Reference treatment
        warnings: Warnings collected from every step
    """

    geometry: NetworkGeometry
    consistency: ConsistencyResult
    effects: Tuple[TreatmentEffect, ...]
    ranking: Ranking
    reference: str
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    def summary_table(self) -> str:
        """Generate summary table as string."""
        lines = [
            self.geometry.summary_table(),
            "",
            f"Effects vs {self.reference}:",
        ]
        for effect in self.effects:
            lines.append(f"  {effect.treatment}: {effect.estimate:.4f} (SE {effect.se:.4f})")
        lines.extend(["", self.consistency.summary_table(), "", self.ranking.summary_table()])
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "reference": self.reference,
            "geometry": self.geometry.to_dict(),
            "consistency": self.consistency.to_dict(),
            "effects": [e.to_dict() for e in self.effects],
            "ranking": self.ranking.to_dict(),
            "warnings": list(self.warnings),
        }


class NetworkAnalyzer:
    """
    Network meta-analysis of several treatments.

    Example:
        >>> analyzer = NetworkAnalyzer()
        >>> result = analyzer.analyze(studies, contrasts, reference="placebo")
        >>> print(result.ranking.best_treatment)
    """

    def __init__(self, pooling_engine: Optional[PoolingEngine] = None):
        self.pooling_engine = pooling_engine or PoolingEngine()

    def geometry(
        self,
        studies: Sequence[NetworkStudy],
        treatments: Optional[Iterable[str]] = None,
        config: Optional[AnalysisConfig] = None
    ) -> NetworkGeometry:
        """Describe the structure of the network."""
        return assess_geometry(studies, treatments, config)

    def consistency(
        self,
        contrasts: Sequence[PairwiseContrast],
        config: Optional[AnalysisConfig] = None
    ) -> ConsistencyResult:
        """Check agreement of direct and indirect evidence."""
        return assess_consistency(contrasts, config)

    def network_estimates(
        self,
        contrasts: Sequence[PairwiseContrast],
        reference: str,
        config: Optional[AnalysisConfig] = None
    ) -> Tuple[TreatmentEffect, ...]:
        """Estimate each treatment against the reference."""
        return network_estimates(contrasts, reference, config)

    def pairwise_contrasts(
        self,
        comparisons: Mapping[Tuple[str, str], Sequence[EffectSize]],
        config: Optional[AnalysisConfig] = None,
        model: Union[str, PoolingModel] = "auto"
    ) -> Tuple[PairwiseContrast, ...]:
        """Pool per-comparison effect sizes into contrasts."""
        return pairwise_contrasts(comparisons, config, model, self.pooling_engine)

    def rank(
        self,
        effects: Sequence[TreatmentEffect],
        config: Optional[AnalysisConfig] = None
    ) -> Ranking:
        """Rank treatments by SUCRA and P-score."""
        return rank_treatments(effects, config)

    def analyze(
        self,
        studies: Sequence[NetworkStudy],
        contrasts: Sequence[PairwiseContrast],
        reference: str,
        config: Optional[AnalysisConfig] = None
    ) -> NetworkAnalysis:
        """
        Run geometry, consistency, estimation and ranking.

        Args:
            studies: Studies forming the network
            contrasts: Pairwise contrasts between treatments
            reference: Reference treatment for the effects
            config: Analysis configuration

        Returns:
            NetworkAnalysis
        """
        config = resolve_config(config)
        geometry = self.geometry(studies, config=config)
        consistency = self.consistency(contrasts, config)
        effects = self.network_estimates(contrasts, reference, config)
        ranking = self.rank(effects, config)

        warnings: List[str] = []
        for part in (geometry, consistency, ranking):
            warnings.extend(w for w in part.warnings if w not in warnings)

        logger.info(
            "Network analysis: %d treatments, topology=%s, consistent=%s, best=%s",
            geometry.n_treatments, geometry.topology, consistency.is_consistent,
            ranking.best_treatment,
        )

        return NetworkAnalysis(
            geometry=geometry,
            consistency=consistency,
            effects=effects,
            ranking=ranking,
            reference=reference,
            warnings=tuple(warnings),
        )
