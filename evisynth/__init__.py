"""
evisynth: Evidence Synthesis Engine

A statistical engine for systematic reviews. Study-level data are turned
into effect sizes, pooled under fixed-effect or random-effects models,
checked for heterogeneity and publication bias, compared across
treatment networks, and graded for certainty with GRADE.

Key Features:
    - Odds ratio, risk ratio, risk difference, mean difference and Hedges' g
    - Cochran's Q, I², tau² and prediction intervals
    - Automatic fixed/random model selection from I²
    - Egger, Begg and trim-and-fill publication bias diagnostics
    - Network geometry, loop and node-splitting consistency, SUCRA ranking
    - GRADE certainty of evidence

Example Usage:
    >>> from evisynth import EffectSizeCalculator, PoolingEngine, AnalysisConfig
    >>>
    >>> calc = EffectSizeCalculator()
    >>> effects = [
    ...     calc.compute_binary(20, 80, 10, 90, "OR", study_id="Trial A"),
    ...     calc.compute_binary(30, 70, 15, 85, "OR", study_id="Trial B"),
    ... ]
    >>> result = PoolingEngine().pool(effects, model="auto")
    >>> print(result.summary_table())

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"

# Core classes
from evisynth.core.config import AnalysisConfig
from evisynth.core.estimand import EffectMeasure, PoolingModel
from evisynth.core.exceptions import (
    SynthesisError,
    InsufficientDataError,
    InsufficientStudiesError,
    NumericalInstabilityError,
    ConfigurationError,
)
from evisynth.core.study import StudyObservation, EffectSize

# Effect sizes
from evisynth.alignment.effect_measures import EffectSizeCalculator

# Diagnostics
from evisynth.diagnostics.heterogeneity import HeterogeneityAnalyzer, HeterogeneityStats
from evisynth.diagnostics.publication_bias import PublicationBiasAnalyzer, BiasAssessment

# Pooling
from evisynth.models.base import PooledResult
from evisynth.models.pooling import PoolingEngine

# Network meta-analysis
from evisynth.network import (
    NetworkAnalyzer,
    NetworkAnalysis,
    NetworkStudy,
    PairwiseContrast,
    TreatmentEffect,
    NetworkGeometry,
    ConsistencyResult,
    Ranking,
)

# Grading
from evisynth.grading import (
    EvidenceGrader,
    GradeAssessment,
    Quality,
    StudyDesign,
    determine_recommendation_strength,
)

# Utilities
from evisynth.utils import (
    se_from_ci,
    ci_from_se,
)

__all__ = [
    # Version info
    "__version__",

    # Core classes
    "AnalysisConfig",
    "EffectMeasure",
    "PoolingModel",
    "StudyObservation",
    "EffectSize",

    # Errors
    "SynthesisError",
    "InsufficientDataError",
    "InsufficientStudiesError",
    "NumericalInstabilityError",
    "ConfigurationError",

    # Effect sizes
    "EffectSizeCalculator",

    # Diagnostics
    "HeterogeneityAnalyzer",
    "HeterogeneityStats",
    "PublicationBiasAnalyzer",
    "BiasAssessment",

    # Pooling
    "PoolingEngine",
    "PooledResult",

    # Network
    "NetworkAnalyzer",
    "NetworkAnalysis",
    "NetworkStudy",
    "PairwiseContrast",
    "TreatmentEffect",
    "NetworkGeometry",
    "ConsistencyResult",
    "Ranking",

    # Grading
    "EvidenceGrader",
    "GradeAssessment",
    "Quality",
    "StudyDesign",
    "determine_recommendation_strength",

    # Utilities
    "se_from_ci",
    "ci_from_se",
]
