"""
Study and effect-size value objects for evisynth.

This module defines how one study's raw results are represented
(StudyObservation) and the common effect metric every downstream
component consumes (EffectSize).
"""

from __future__ import annotations
from dataclasses import dataclass, field
from numbers import Integral
from typing import Optional, Dict, Any, Sequence, Tuple, Union
import math

import numpy as np

from evisynth.core.estimand import EffectMeasure
from evisynth.core.exceptions import (
    ConfigurationError,
    InsufficientDataError,
    NumericalInstabilityError,
)
from evisynth.utils import ci_from_se, se_from_ci


def _is_integer(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, Integral):
        return True
    return isinstance(value, float) and value.is_integer()


@dataclass(frozen=True)
class StudyObservation:
    """
    One study's contribution to an outcome.

    A study supplies either a 2x2 table (binary outcome), arm means and
    SDs (continuous outcome), or a pre-computed effect with its SE or CI.

    Attributes:
        study_id: Unique study identifier
        events_treatment: Events in treatment arm
        n_treatment: Sample size in treatment arm
        events_control: Events in control arm
        n_control: Sample size in control arm
        mean_treatment: Mean outcome in treatment arm
        sd_treatment: SD of outcome in treatment arm
        mean_control: Mean outcome in control arm
        sd_control: SD of outcome in control arm
        effect: Pre-computed effect (display scale)
        se: SE of the pre-computed effect (analysis scale)
        ci_lower: Lower CI bound of the pre-computed effect
        ci_upper: Upper CI bound of the pre-computed effect
        measure: Measure of the pre-computed effect
        insufficient_data: Upstream flag that reported data are incomplete
    """

    study_id: str
    events_treatment: Optional[int] = None
    n_treatment: Optional[int] = None
    events_control: Optional[int] = None
    n_control: Optional[int] = None
    mean_treatment: Optional[float] = None
    sd_treatment: Optional[float] = None
    mean_control: Optional[float] = None
    sd_control: Optional[float] = None
    effect: Optional[float] = None
    se: Optional[float] = None
    ci_lower: Optional[float] = None
    ci_upper: Optional[float] = None
    measure: Optional[Union[str, EffectMeasure]] = None
    insufficient_data: bool = False

    def __post_init__(self):
        """Validate numeric ranges."""
        if not isinstance(self.study_id, str) or not self.study_id.strip():
            raise InsufficientDataError(
                "Study identifier must be a non-empty string",
                {"study_id": self.study_id},
            )
        if isinstance(self.measure, str):
            object.__setattr__(self, "measure", EffectMeasure.from_string(self.measure))

        for n_name in ("n_treatment", "n_control"):
            n = getattr(self, n_name)
            if n is None:
                continue
            if not _is_integer(n) or n <= 0:
                raise InsufficientDataError(
                    f"{n_name} must be a positive integer, got {n}",
                    {"study_id": self.study_id, "field": n_name},
                )

        for e_name, n_name in (("events_treatment", "n_treatment"), ("events_control", "n_control")):
            events = getattr(self, e_name)
            if events is None:
                continue
            if not _is_integer(events) or events < 0:
                raise InsufficientDataError(
                    f"{e_name} must be a non-negative integer, got {events}",
                    {"study_id": self.study_id, "field": e_name},
                )
            n = getattr(self, n_name)
            if n is not None and events > n:
                raise InsufficientDataError(
                    f"{e_name} ({events}) exceeds {n_name} ({n})",
                    {"study_id": self.study_id, "field": e_name},
                )

        if not self.insufficient_data:
            for sd_name in ("sd_treatment", "sd_control"):
                sd = getattr(self, sd_name)
                if sd is not None and not (math.isfinite(sd) and sd > 0):
                    raise InsufficientDataError(
                        f"{sd_name} must be positive, got {sd}",
                        {"study_id": self.study_id, "field": sd_name},
                    )

    @property
    def data_type(self) -> str:
        """Kind of data supplied: 'binary', 'continuous' or 'precomputed'."""
        binary = (self.events_treatment, self.n_treatment, self.events_control, self.n_control)
        continuous = (
            self.mean_treatment, self.sd_treatment, self.n_treatment,
            self.mean_control, self.sd_control, self.n_control,
        )
        if all(v is not None for v in binary):
            return "binary"
        if all(v is not None for v in continuous):
            return "continuous"
        if self.effect is not None and (
            self.se is not None or (self.ci_lower is not None and self.ci_upper is not None)
        ):
            return "precomputed"
        raise InsufficientDataError(
            f"Study '{self.study_id}' has neither complete arm data nor a pre-computed effect with SE/CI",
            {"study_id": self.study_id},
        )

    @property
    def n_total(self) -> Optional[int]:
        """Total sample size."""
        if self.n_treatment is not None and self.n_control is not None:
            return int(self.n_treatment + self.n_control)
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "study_id": self.study_id,
            "events_treatment": self.events_treatment,
            "n_treatment": self.n_treatment,
            "events_control": self.events_control,
            "n_control": self.n_control,
            "mean_treatment": self.mean_treatment,
            "sd_treatment": self.sd_treatment,
            "mean_control": self.mean_control,
            "sd_control": self.sd_control,
            "effect": self.effect,
            "se": self.se,
            "ci_lower": self.ci_lower,
            "ci_upper": self.ci_upper,
            "measure": self.measure.value if self.measure is not None else None,
            "insufficient_data": self.insufficient_data,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> StudyObservation:
        """Create from dictionary."""
        return cls(**d)


@dataclass(frozen=True)
class EffectSize:
    """
    A study's effect on a common metric.

    The standard error is always on the analysis scale (log scale for
    ratio measures); the point estimate and CI bounds are on the display
    scale. The CI is derived from the analysis-scale estimate ± z·SE and
    then back-transformed.

    Attributes:
        estimate: Point estimate (display scale)
        se: Standard error (analysis scale)
        ci_lower: Lower CI bound (display scale)
        ci_upper: Upper CI bound (display scale)
        measure: Effect measure
        study_id: Study identifier
        corrected: Whether a continuity correction was applied
        ci_level: Confidence level of the CI
        warnings: Data-quality notes raised while computing the effect
    """

    estimate: float
    se: float
    ci_lower: float
    ci_upper: float
    measure: EffectMeasure
    study_id: str = ""
    corrected: bool = False
    ci_level: float = 0.95
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if isinstance(self.measure, str):
            object.__setattr__(self, "measure", EffectMeasure.from_string(self.measure))
        object.__setattr__(self, "warnings", tuple(self.warnings))
        if not (math.isfinite(self.se) and self.se > 0):
            raise NumericalInstabilityError(
                f"Standard error must be positive and finite, got {self.se}",
                {"study_id": self.study_id, "step": "effect size"},
            )

    @classmethod
    def from_analysis_scale(
        cls,
        yi: float,
        se: float,
        measure: Union[str, EffectMeasure],
        study_id: str = "",
        corrected: bool = False,
        level: float = 0.95,
        warnings: Tuple[str, ...] = (),
    ) -> EffectSize:
        """
        Build an EffectSize from an analysis-scale estimate and SE.

        Args:
            yi: Estimate on the analysis scale (log scale for ratios)
            se: Standard error on the analysis scale
            measure: Effect measure
            study_id: Study identifier
            corrected: Whether a continuity correction was applied
            level: Confidence level
            warnings: Data-quality notes

        Returns:
            EffectSize with CI built on the analysis scale
        """
        measure = EffectMeasure.from_string(measure)
        if not (math.isfinite(yi) and math.isfinite(se) and se > 0):
            raise NumericalInstabilityError(
                f"Non-finite estimate or non-positive SE (yi={yi}, se={se})",
                {"study_id": study_id, "step": "effect size", "measure": measure.value},
            )
        log_scale = measure.is_ratio_measure()
        lower, upper = ci_from_se(yi, se, level, log_scale=log_scale)
        return cls(
            estimate=measure.to_display_scale(yi),
            se=float(se),
            ci_lower=lower,
            ci_upper=upper,
            measure=measure,
            study_id=study_id,
            corrected=corrected,
            ci_level=level,
            warnings=tuple(warnings),
        )

    @classmethod
    def from_estimate(
        cls,
        estimate: float,
        measure: Union[str, EffectMeasure],
        study_id: str = "",
        se: Optional[float] = None,
        ci_lower: Optional[float] = None,
        ci_upper: Optional[float] = None,
        level: float = 0.95,
    ) -> EffectSize:
        """
        Build an EffectSize from a reported estimate.

        The SE may be supplied directly (analysis scale) or derived from a
        reported CI as (upper - lower) / (2z), on the log scale for ratios.
        """
        measure = EffectMeasure.from_string(measure)
        log_scale = measure.is_ratio_measure()
        if se is None:
            if ci_lower is None or ci_upper is None:
                raise InsufficientDataError(
                    "A reported effect needs either an SE or both CI bounds",
                    {"study_id": study_id},
                )
            if ci_upper <= ci_lower or (log_scale and ci_lower <= 0):
                raise InsufficientDataError(
                    f"Invalid confidence interval [{ci_lower}, {ci_upper}]",
                    {"study_id": study_id, "measure": measure.value},
                )
            se = se_from_ci(ci_lower, ci_upper, level, log_scale=log_scale)
        try:
            yi = measure.to_analysis_scale(estimate)
        except ValueError as exc:
            raise InsufficientDataError(
                f"Invalid {measure.value} estimate {estimate}",
                {"study_id": study_id, "step": "scale transform"},
            ) from exc
        return cls.from_analysis_scale(yi, se, measure, study_id=study_id, level=level)

    @property
    def yi(self) -> float:
        """Estimate on the analysis scale."""
        return self.measure.to_analysis_scale(self.estimate)

    @property
    def vi(self) -> float:
        """Sampling variance on the analysis scale."""
        return self.se ** 2

    @property
    def precision(self) -> float:
        """Inverse standard error."""
        return 1.0 / self.se

    def get_ci(self, level: float = 0.95) -> Tuple[float, float]:
        """
        Get confidence interval at another level.

        Args:
            level: Confidence level

        Returns:
            Tuple of (lower, upper) bounds on display scale
        """
        return ci_from_se(self.yi, self.se, level, log_scale=self.measure.is_ratio_measure())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "study_id": self.study_id,
            "measure": self.measure.value,
            "estimate": float(self.estimate),
            "se": float(self.se),
            "ci_lower": float(self.ci_lower),
            "ci_upper": float(self.ci_upper),
            "ci_level": self.ci_level,
            "corrected": self.corrected,
            "warnings": list(self.warnings),
        }


def stack_effect_sizes(
    effect_sizes: Sequence[EffectSize],
    step: str = "analysis"
) -> Tuple[np.ndarray, np.ndarray, Optional[EffectMeasure], Tuple[str, ...]]:
    """
    Stack effect sizes into analysis-scale arrays.

    Args:
        effect_sizes: Sequence of EffectSize for one outcome
        step: Name of the calling computation (used in error context)

    Returns:
        Tuple of (y, se, measure, study_ids); measure is None for empty input
    """
    effect_sizes = list(effect_sizes)
    for i, es in enumerate(effect_sizes):
        if not isinstance(es, EffectSize):
            raise InsufficientDataError(
                f"Expected EffectSize at position {i}, got {type(es).__name__}",
                {"step": step, "position": i},
            )
    measures = {es.measure for es in effect_sizes}
    if len(measures) > 1:
        raise ConfigurationError(
            "Cannot combine different effect measures",
            {"step": step, "measures": sorted(m.value for m in measures)},
        )
    y = np.array([es.yi for es in effect_sizes], dtype=float)
    se = np.array([es.se for es in effect_sizes], dtype=float)
    if not np.all(np.isfinite(y)):
        bad = [es.study_id for es, v in zip(effect_sizes, y) if not np.isfinite(v)]
        raise NumericalInstabilityError(
            "Non-finite effect estimates",
            {"step": step, "study_ids": bad},
        )
    measure = measures.pop() if measures else None
    return y, se, measure, tuple(es.study_id for es in effect_sizes)
