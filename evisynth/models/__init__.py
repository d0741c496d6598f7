"""
Pooling models for evisynth.

This module provides inverse-variance pooling under fixed-effect and
random-effects assumptions.
"""

from evisynth.models.base import (
    PooledResult,
    StudyWeight,
    inverse_variance_weights,
    pooled_estimate_fixed,
    pooled_estimate_random,
)
from evisynth.models.pooling import (
    PoolingEngine,
    select_model,
)

__all__ = [
    # Result containers
    "PooledResult",
    "StudyWeight",
    # Pooling functions
    "inverse_variance_weights",
    "pooled_estimate_fixed",
    "pooled_estimate_random",
    # Engine
    "PoolingEngine",
    "select_model",
]
