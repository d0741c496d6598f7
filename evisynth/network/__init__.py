"""
Network meta-analysis for evisynth.

This module provides network geometry, consistency checks, fixed-effect
network estimates and treatment ranking.
"""

from evisynth.network.contrasts import (
    PairwiseContrast,
    TreatmentEffect,
    combine_contrasts,
    network_estimates,
    pairwise_contrasts,
)
from evisynth.network.geometry import (
    NetworkStudy,
    NetworkGeometry,
    TreatmentNode,
    ComparisonEdge,
    assess_geometry,
)
from evisynth.network.consistency import (
    ConsistencyResult,
    LoopInconsistency,
    NodeSplit,
    assess_consistency,
    find_loops,
)
from evisynth.network.ranking import (
    Ranking,
    TreatmentRank,
    rank_treatments,
    sucra_scores,
    p_scores,
)
from evisynth.network.analyzer import NetworkAnalyzer, NetworkAnalysis

__all__ = [
    # Inputs
    "NetworkStudy",
    "PairwiseContrast",
    "TreatmentEffect",
    # Geometry
    "NetworkGeometry",
    "TreatmentNode",
    "ComparisonEdge",
    "assess_geometry",
    # Estimates
    "combine_contrasts",
    "network_estimates",
    "pairwise_contrasts",
    # Consistency
    "ConsistencyResult",
    "LoopInconsistency",
    "NodeSplit",
    "assess_consistency",
    "find_loops",
    # Ranking
    "Ranking",
    "TreatmentRank",
    "rank_treatments",
    "sucra_scores",
    "p_scores",
    # Facade
    "NetworkAnalyzer",
    "NetworkAnalysis",
]
