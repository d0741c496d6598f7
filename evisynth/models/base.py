"""
Pooling primitives and result containers for evisynth.

This module defines the inverse-variance pooling functions shared by the
pooling engine, the heterogeneity analyzer and the bias diagnostics, and
the immutable PooledResult returned to callers.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional, Dict, Any, List, Tuple
import numpy as np

from evisynth.core.estimand import EffectMeasure
from evisynth.core.exceptions import NumericalInstabilityError
from evisynth.utils import format_p_value

if TYPE_CHECKING:
    from evisynth.diagnostics.heterogeneity import HeterogeneityStats


# ============================================================================
# Pooling Functions
# ============================================================================

def inverse_variance_weights(
    variances: np.ndarray,
    tau_squared: float = 0.0
) -> np.ndarray:
    """
    Inverse-variance weights 1 / (v + tau²).

    Args:
        variances: Within-study variances
        tau_squared: Between-study variance (0 for fixed effect)

    Returns:
        Unnormalized weights
    """
    total_var = np.asarray(variances, dtype=float) + tau_squared
    if np.any(total_var <= 0) or not np.all(np.isfinite(total_var)):
        raise NumericalInstabilityError(
            "Zero or non-finite total variance",
            {"step": "weights", "tau_squared": float(tau_squared)},
        )
    return 1 / total_var


def pooled_estimate_fixed(
    estimates: np.ndarray,
    variances: np.ndarray
) -> Tuple[float, float]:
    """
    Fixed-effect pooled estimate using inverse variance weighting.

    Args:
        estimates: Array of effect estimates
        variances: Array of variances

    Returns:
        Tuple of (pooled_estimate, pooled_variance)
    """
    return pooled_estimate_random(estimates, variances, 0.0)


def pooled_estimate_random(
    estimates: np.ndarray,
    variances: np.ndarray,
    tau_squared: float
) -> Tuple[float, float]:
    """
    Random-effects pooled estimate.

    Args:
        estimates: Array of effect estimates
        variances: Array of variances
        tau_squared: Between-study variance

    Returns:
        Tuple of (pooled_estimate, pooled_variance)
    """
    estimates = np.asarray(estimates, dtype=float)
    weights = inverse_variance_weights(variances, tau_squared)
    total = np.sum(weights)
    if not np.isfinite(total) or total <= 0:
        raise NumericalInstabilityError(
            "Degenerate weight sum",
            {"step": "pooling", "weight_sum": float(total)},
        )
    pooled = np.sum(weights * estimates) / total
    pooled_var = 1 / total

    return float(pooled), float(pooled_var)


# ============================================================================
# Result Containers
# ============================================================================

@dataclass(frozen=True)
class StudyWeight:
    """
    A study's share of the pooled estimate.

    Attributes:
        study_id: Study identifier
        weight: Normalized weight (weights sum to 1)
        raw_weight: Unnormalized inverse-variance weight
    """

    study_id: str
    weight: float
    raw_weight: float

    @property
    def percent(self) -> float:
        """Weight as a percentage."""
        return self.weight * 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            "study_id": self.study_id,
            "weight": float(self.weight),
            "raw_weight": float(self.raw_weight),
            "percent": float(self.percent),
        }


@dataclass(frozen=True)
class PooledResult:
    """
    Container for a pooled meta-analysis estimate.

    Attributes:
        model: Pooling model actually used ('fixed' or 'random')
        measure: Effect measure of the pooled studies
        estimate: Pooled estimate (display scale)
        ci_lower: Lower CI bound (display scale)
        ci_upper: Upper CI bound (display scale)
        yi: Pooled estimate on the analysis scale
        se: Standard error on the analysis scale
        z_value: Wald z statistic against the null
        p_value: Two-sided p-value
        weights: Per-study normalized weights
        tau_squared: Between-study variance used in the weights
        tau_squared_method: Name of the tau² estimator
        model_reason: Why this model was used
        heterogeneity: Heterogeneity statistics for the same studies
        ci_level: Confidence level
        warnings: Any warnings generated during pooling
    """

    model: str
    measure: EffectMeasure
    estimate: float
    ci_lower: float
    ci_upper: float
    yi: float
    se: float
    z_value: float
    p_value: float
    weights: Tuple[StudyWeight, ...]
    tau_squared: float
    tau_squared_method: str = "DerSimonian-Laird"
    model_reason: str = ""
    heterogeneity: Optional["HeterogeneityStats"] = None
    ci_level: float = 0.95
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def n_studies(self) -> int:
        """Number of studies."""
        return len(self.weights)

    @property
    def tau(self) -> float:
        """Standard deviation of between-study effects."""
        return float(np.sqrt(self.tau_squared))

    @property
    def is_significant(self) -> bool:
        """Whether the CI excludes the null value."""
        return self.p_value < (1 - self.ci_level)

    def weight_for(self, study_id: str) -> float:
        """
        Get the normalized weight of one study.

        Args:
            study_id: Study identifier

        Returns:
            Weight in [0, 1]
        """
        for w in self.weights:
            if w.study_id == study_id:
                return w.weight
        raise KeyError(f"Study '{study_id}' not found")

    def summary_table(self) -> str:
        """Generate summary table as string."""
        level = int(round(self.ci_level * 100))
        lines = [
            "=" * 60,
            f"Pooled {self.measure.value} ({self.model} effect)",
            "=" * 60,
            "",
            f"Estimate: {self.estimate:.4f}",
            f"  {level}% CI: [{self.ci_lower:.4f}, {self.ci_upper:.4f}]",
            f"  SE (analysis scale): {self.se:.4f}",
            f"  z = {self.z_value:.3f}, {format_p_value(self.p_value)}",
            "",
            f"τ²: {self.tau_squared:.4f} ({self.tau_squared_method})",
            f"Model: {self.model_reason}",
            "",
            "Study weights:",
        ]
        for w in self.weights:
            lines.append(f"  {w.study_id}: {w.percent:.1f}%")

        if self.warnings:
            lines.append("")
            lines.append("Warnings:")
            for warning in self.warnings:
                lines.append(f"  - {warning}")

        lines.append("=" * 60)

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "model": self.model,
            "measure": self.measure.value,
            "estimate": float(self.estimate),
            "ci_lower": float(self.ci_lower),
            "ci_upper": float(self.ci_upper),
            "ci_level": self.ci_level,
            "yi": float(self.yi),
            "se": float(self.se),
            "z_value": float(self.z_value),
            "p_value": float(self.p_value),
            "weights": [w.to_dict() for w in self.weights],
            "tau_squared": float(self.tau_squared),
            "tau_squared_method": self.tau_squared_method,
            "model_reason": self.model_reason,
            "n_studies": self.n_studies,
            "heterogeneity": self.heterogeneity.to_dict() if self.heterogeneity is not None else None,
            "warnings": list(self.warnings),
        }
