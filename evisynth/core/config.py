"""
Analysis configuration for evisynth.

This module defines the explicit configuration object passed into every
component call. There is no module-level mutable configuration: two analyses
with different thresholds can run side by side simply by passing different
AnalysisConfig instances.
"""

from __future__ import annotations
from dataclasses import dataclass, asdict, replace as dc_replace
from typing import Optional, Dict, Any

from scipy import stats

from evisynth.core.exceptions import ConfigurationError


TAU_SQUARED_METHODS = {
    "DL": "DerSimonian-Laird",
    "PM": "Paule-Mandel",
    "HS": "Hunter-Schmidt",
    "SJ": "Sidik-Jonkman",
}

TRIM_FILL_ESTIMATORS = ("L0", "R0")
TRIM_FILL_SIDES = ("auto", "left", "right")

MIN_SIMULATIONS = 1000


@dataclass(frozen=True)
class AnalysisConfig:
    """
    Thresholds and defaults shared by the synthesis components.

    Attributes:
        confidence_level: Level for all confidence intervals (0 to 1)
        heterogeneity_threshold: I² (%) at or above which "auto" pooling
            selects the random-effects model
        tau_squared_method: Between-study variance estimator ('DL', 'PM', 'HS', 'SJ')
        min_studies_pooling: Minimum number of studies for pooling
        min_studies_prediction: Minimum number of studies for a prediction interval
        min_studies_bias: Number of studies below which bias tests are low-powered
        bias_alpha: Significance level for Egger's and Begg's tests
        continuity_correction: Value added to every cell of a 2x2 table with a zero
        trim_fill_estimator: Trim-and-fill estimator of missing studies ('L0', 'R0')
        trim_fill_side: Side of the funnel where studies are missing ('auto', 'left', 'right')
        loop_alpha: Significance level for loop inconsistency factors
        global_alpha: Significance level for the network-wide inconsistency test
        max_loop_length: Longest closed loop (number of treatments) examined
        max_loops: Upper bound on the number of loops enumerated
        n_simulations: Monte Carlo draws used for treatment ranking
        simulation_batch_size: Draws per independently seeded batch
        n_jobs: Workers used for ranking batches (joblib convention, -1 = all cores)
        random_seed: Seed for ranking simulations (None = fresh entropy)
        higher_is_better: Whether larger effects rank better
        grade_inconsistency_threshold: I² (%) above which GRADE downgrades for inconsistency
        large_effect_ratio: Ratio beyond which GRADE upgrades one level
        very_large_effect_ratio: Ratio beyond which GRADE upgrades two levels
    """

    confidence_level: float = 0.95
    heterogeneity_threshold: float = 50.0
    tau_squared_method: str = "DL"
    min_studies_pooling: int = 2
    min_studies_prediction: int = 3
    min_studies_bias: int = 10
    bias_alpha: float = 0.10
    continuity_correction: float = 0.5
    trim_fill_estimator: str = "L0"
    trim_fill_side: str = "auto"
    loop_alpha: float = 0.10
    global_alpha: float = 0.05
    max_loop_length: int = 3
    max_loops: int = 1000
    n_simulations: int = 10000
    simulation_batch_size: int = 1000
    n_jobs: int = 1
    random_seed: Optional[int] = None
    higher_is_better: bool = True
    grade_inconsistency_threshold: float = 75.0
    large_effect_ratio: float = 2.0
    very_large_effect_ratio: float = 5.0

    def __post_init__(self):
        """Validate configuration values."""
        for name in ("confidence_level", "bias_alpha", "loop_alpha", "global_alpha"):
            value = getattr(self, name)
            if not 0 < value < 1:
                raise ConfigurationError(
                    f"{name} must lie strictly between 0 and 1, got {value}",
                    {"parameter": name, "value": value},
                )

        for name in ("heterogeneity_threshold", "grade_inconsistency_threshold"):
            value = getattr(self, name)
            if not 0 <= value <= 100:
                raise ConfigurationError(
                    f"{name} is an I² percentage and must lie in [0, 100], got {value}",
                    {"parameter": name, "value": value},
                )

        if self.tau_squared_method.upper() not in TAU_SQUARED_METHODS:
            raise ConfigurationError(
                f"Unknown tau-squared method: {self.tau_squared_method}",
                {"parameter": "tau_squared_method", "allowed": sorted(TAU_SQUARED_METHODS)},
            )
        object.__setattr__(self, "tau_squared_method", self.tau_squared_method.upper())

        if self.min_studies_pooling < 2:
            raise ConfigurationError(
                "Pooling needs at least two studies",
                {"parameter": "min_studies_pooling", "value": self.min_studies_pooling},
            )
        if self.min_studies_prediction < 3:
            raise ConfigurationError(
                "A t(k-2) prediction interval needs at least three studies",
                {"parameter": "min_studies_prediction", "value": self.min_studies_prediction},
            )
        if self.min_studies_bias < 3:
            raise ConfigurationError(
                "min_studies_bias must be at least 3",
                {"parameter": "min_studies_bias", "value": self.min_studies_bias},
            )

        if self.continuity_correction <= 0:
            raise ConfigurationError(
                "continuity_correction must be positive",
                {"parameter": "continuity_correction", "value": self.continuity_correction},
            )

        if self.trim_fill_estimator.upper() not in TRIM_FILL_ESTIMATORS:
            raise ConfigurationError(
                f"Unknown trim-and-fill estimator: {self.trim_fill_estimator}",
                {"parameter": "trim_fill_estimator", "allowed": list(TRIM_FILL_ESTIMATORS)},
            )
        object.__setattr__(self, "trim_fill_estimator", self.trim_fill_estimator.upper())

        if self.trim_fill_side.lower() not in TRIM_FILL_SIDES:
            raise ConfigurationError(
                f"Unknown trim-and-fill side: {self.trim_fill_side}",
                {"parameter": "trim_fill_side", "allowed": list(TRIM_FILL_SIDES)},
            )
        object.__setattr__(self, "trim_fill_side", self.trim_fill_side.lower())

        if self.max_loop_length < 3:
            raise ConfigurationError(
                "A closed loop involves at least three treatments",
                {"parameter": "max_loop_length", "value": self.max_loop_length},
            )
        if self.max_loops < 1:
            raise ConfigurationError(
                "max_loops must be positive",
                {"parameter": "max_loops", "value": self.max_loops},
            )

        if self.n_simulations < MIN_SIMULATIONS:
            raise ConfigurationError(
                f"Ranking requires at least {MIN_SIMULATIONS} simulations, got {self.n_simulations}",
                {"parameter": "n_simulations", "value": self.n_simulations},
            )
        if self.simulation_batch_size < 1:
            raise ConfigurationError(
                "simulation_batch_size must be positive",
                {"parameter": "simulation_batch_size", "value": self.simulation_batch_size},
            )
        if self.n_jobs == 0:
            raise ConfigurationError(
                "n_jobs must be non-zero",
                {"parameter": "n_jobs", "value": self.n_jobs},
            )

        if self.large_effect_ratio <= 1 or self.very_large_effect_ratio <= self.large_effect_ratio:
            raise ConfigurationError(
                "Effect-size ratios must satisfy 1 < large_effect_ratio < very_large_effect_ratio",
                {
                    "large_effect_ratio": self.large_effect_ratio,
                    "very_large_effect_ratio": self.very_large_effect_ratio,
                },
            )

    @property
    def z(self) -> float:
        """Two-sided normal critical value for confidence_level."""
        return float(stats.norm.ppf((1 + self.confidence_level) / 2))

    @property
    def tau_squared_method_name(self) -> str:
        """Human-readable name of the tau-squared estimator."""
        return TAU_SQUARED_METHODS[self.tau_squared_method]

    def replace(self, **changes: Any) -> AnalysisConfig:
        """Return a validated copy with the given fields changed."""
        try:
            return dc_replace(self, **changes)
        except TypeError as exc:
            raise ConfigurationError(
                f"Unknown configuration field(s): {sorted(changes)}",
                {"fields": sorted(changes)},
            ) from exc

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)


DEFAULT_CONFIG = AnalysisConfig()


def resolve_config(config: Optional[AnalysisConfig]) -> AnalysisConfig:
    """Return the given configuration, or the defaults when None."""
    if config is None:
        return DEFAULT_CONFIG
    if not isinstance(config, AnalysisConfig):
        raise ConfigurationError(
            f"Expected AnalysisConfig, got {type(config).__name__}",
            {"type": type(config).__name__},
        )
    return config
