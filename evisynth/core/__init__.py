"""Core data structures for evisynth."""

from evisynth.core.config import AnalysisConfig, DEFAULT_CONFIG, resolve_config
from evisynth.core.estimand import EffectMeasure, PoolingModel
from evisynth.core.exceptions import (
    SynthesisError,
    InsufficientDataError,
    InsufficientStudiesError,
    NumericalInstabilityError,
    ConfigurationError,
)
from evisynth.core.study import StudyObservation, EffectSize, stack_effect_sizes

__all__ = [
    "AnalysisConfig",
    "DEFAULT_CONFIG",
    "resolve_config",
    "EffectMeasure",
    "PoolingModel",
    "SynthesisError",
    "InsufficientDataError",
    "InsufficientStudiesError",
    "NumericalInstabilityError",
    "ConfigurationError",
    "StudyObservation",
    "EffectSize",
    "stack_effect_sizes",
]
