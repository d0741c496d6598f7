"""
Effect measure and model definitions for evisynth.

This module defines the effect measures computed by the engine and the
pooling models it supports.
"""

from __future__ import annotations
from enum import Enum

import numpy as np

from evisynth.core.exceptions import ConfigurationError


class EffectMeasure(Enum):
    """Types of effect measures used in meta-analysis."""

    # Ratio measures (analyzed on log scale)
    ODDS_RATIO = "OR"
    RISK_RATIO = "RR"

    # Difference measures (analyzed on natural scale)
    RISK_DIFFERENCE = "RD"
    MEAN_DIFFERENCE = "MD"
    STANDARDIZED_MEAN_DIFFERENCE = "SMD"

    @classmethod
    def from_string(cls, s: str) -> EffectMeasure:
        """Convert string to EffectMeasure enum."""
        if isinstance(s, cls):
            return s
        s_upper = str(s).upper().strip()
        # Handle common aliases
        aliases = {
            "ODDS RATIO": "OR",
            "RISK RATIO": "RR",
            "RELATIVE RISK": "RR",
            "RISK DIFFERENCE": "RD",
            "ABSOLUTE RISK DIFFERENCE": "RD",
            "MEAN DIFFERENCE": "MD",
            "WMD": "MD",
            "STANDARDIZED MEAN DIFFERENCE": "SMD",
            "STANDARDISED MEAN DIFFERENCE": "SMD",
            "HEDGES G": "SMD",
            "HEDGES' G": "SMD",
            "G": "SMD",
        }
        if s_upper in aliases:
            s_upper = aliases[s_upper]

        for member in cls:
            if member.value == s_upper or member.name == s_upper:
                return member
        raise ConfigurationError(f"Unknown effect measure: {s}", {"measure": s})

    def is_ratio_measure(self) -> bool:
        """Check if this is a ratio measure (analyzed on log scale)."""
        return self in {EffectMeasure.ODDS_RATIO, EffectMeasure.RISK_RATIO}

    def null_value(self) -> float:
        """Return the null value (no effect) for this measure."""
        if self.is_ratio_measure():
            return 1.0
        return 0.0

    def to_analysis_scale(self, value: float) -> float:
        """Map a display-scale value to the analysis scale."""
        if self.is_ratio_measure():
            if value <= 0:
                raise ConfigurationError(
                    f"{self.value} must be positive, got {value}",
                    {"measure": self.value, "value": value},
                )
            return float(np.log(value))
        return float(value)

    def to_display_scale(self, value: float) -> float:
        """Map an analysis-scale value back to the display scale."""
        if self.is_ratio_measure():
            return float(np.exp(value))
        return float(value)


class PoolingModel(Enum):
    """Pooling assumptions for combining studies."""

    FIXED = "fixed"
    RANDOM = "random"
    AUTO = "auto"

    @classmethod
    def from_string(cls, s: str) -> PoolingModel:
        """Convert string to PoolingModel enum."""
        if isinstance(s, cls):
            return s
        s_lower = str(s).lower().strip()
        aliases = {
            "fe": "fixed",
            "fixed-effect": "fixed",
            "fixed_effect": "fixed",
            "common": "fixed",
            "re": "random",
            "random-effects": "random",
            "random_effects": "random",
        }
        s_lower = aliases.get(s_lower, s_lower)
        for member in cls:
            if member.value == s_lower:
                return member
        raise ConfigurationError(
            f"Unknown pooling model: {s}",
            {"model": s, "allowed": [m.value for m in cls]},
        )
