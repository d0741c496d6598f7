"""Heterogeneity and publication bias diagnostics for evisynth."""

from evisynth.diagnostics.heterogeneity import (
    HeterogeneityAnalyzer,
    HeterogeneityStats,
    compute_tau_squared,
    compute_i_squared,
    compute_h_squared,
    cochran_q_test,
    interpret_i_squared,
)
from evisynth.diagnostics.publication_bias import (
    PublicationBiasAnalyzer,
    BiasAssessment,
    EggerTest,
    BeggTest,
    TrimAndFillResult,
    FunnelPoint,
    egger_test,
    begg_test,
    trim_and_fill,
    estimate_missing,
)

__all__ = [
    # Heterogeneity
    "HeterogeneityAnalyzer",
    "HeterogeneityStats",
    "compute_tau_squared",
    "compute_i_squared",
    "compute_h_squared",
    "cochran_q_test",
    "interpret_i_squared",
    # Publication bias
    "PublicationBiasAnalyzer",
    "BiasAssessment",
    "EggerTest",
    "BeggTest",
    "TrimAndFillResult",
    "FunnelPoint",
    "egger_test",
    "begg_test",
    "trim_and_fill",
    "estimate_missing",
]
