"""Effect size computation for evisynth."""

from evisynth.alignment.effect_measures import (
    EffectSizeCalculator,
    BINARY_FORMULAS,
    CONTINUOUS_FORMULAS,
    log_odds_ratio,
    log_risk_ratio,
    risk_difference,
    mean_difference,
    hedges_g,
)

__all__ = [
    "EffectSizeCalculator",
    "BINARY_FORMULAS",
    "CONTINUOUS_FORMULAS",
    "log_odds_ratio",
    "log_risk_ratio",
    "risk_difference",
    "mean_difference",
    "hedges_g",
]
