"""
GRADE Evidence Grading for evisynth.

This module rates the certainty of a body of evidence. Grading starts
from the study design, applies downgrades for risk of bias,
inconsistency, indirectness, imprecision and publication bias, and for
observational evidence applies upgrades for large effects, dose response
and confounding that would reduce the observed effect.

Every factor is recorded as a GradeAdjustment with a one-sentence
rationale, including factors that led to no change.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any, List, Tuple, Union

from evisynth.core.config import AnalysisConfig, resolve_config
from evisynth.core.exceptions import ConfigurationError
from evisynth.diagnostics.heterogeneity import HeterogeneityStats
from evisynth.diagnostics.publication_bias import BiasAssessment
from evisynth.models.base import PooledResult
from evisynth.utils import format_p_value
from evisynth.utils.logging import get_logger

logger = get_logger(__name__)

MAX_FACTOR_DOWNGRADE = 2


def _normalize(value: str) -> str:
    return str(value).strip().lower().replace("-", "_").replace(" ", "_")


class Quality(Enum):
    """Certainty of evidence."""

    VERY_LOW = 1
    LOW = 2
    MODERATE = 3
    HIGH = 4

    @property
    def label(self) -> str:
        return {
            Quality.HIGH: "High",
            Quality.MODERATE: "Moderate",
            Quality.LOW: "Low",
            Quality.VERY_LOW: "Very Low",
        }[self]

    @property
    def symbol(self) -> str:
        return "⊕" * self.value + "⊝" * (4 - self.value)

    @classmethod
    def from_level(cls, level: int) -> Quality:
        """Quality for a numeric level, clamped to [1, 4]."""
        return cls(max(1, min(4, int(level))))

    @classmethod
    def from_string(cls, value: Union[str, Quality]) -> Quality:
        if isinstance(value, cls):
            return value
        key = _normalize(value)
        for member in cls:
            if member.name.lower() == key:
                return member
        raise ConfigurationError(
            f"Unknown evidence quality: {value}",
            {"value": value, "allowed": [m.label for m in cls]},
        )


class StudyDesign(Enum):
    """Design of the studies in the body of evidence."""

    RANDOMIZED = "randomized"
    OBSERVATIONAL = "observational"
    CASE_SERIES = "case_series"
    CASE_REPORT = "case_report"

    @property
    def starting_quality(self) -> Quality:
        if self is StudyDesign.RANDOMIZED:
            return Quality.HIGH
        if self is StudyDesign.OBSERVATIONAL:
            return Quality.LOW
        return Quality.VERY_LOW

    @classmethod
    def from_string(cls, value: Union[str, StudyDesign]) -> StudyDesign:
        """Create from string with common aliases."""
        if isinstance(value, cls):
            return value
        aliases = {
            "randomized": cls.RANDOMIZED,
            "randomised": cls.RANDOMIZED,
            "rct": cls.RANDOMIZED,
            "randomized_trial": cls.RANDOMIZED,
            "randomized_controlled_trial": cls.RANDOMIZED,
            "observational": cls.OBSERVATIONAL,
            "cohort": cls.OBSERVATIONAL,
            "prospective_cohort": cls.OBSERVATIONAL,
            "retrospective_cohort": cls.OBSERVATIONAL,
            "case_control": cls.OBSERVATIONAL,
            "cross_sectional": cls.OBSERVATIONAL,
            "case_series": cls.CASE_SERIES,
            "case_report": cls.CASE_REPORT,
        }
        key = _normalize(value)
        if key not in aliases:
            raise ConfigurationError(
                f"Unknown study design: {value}",
                {"value": value, "allowed": sorted(aliases)},
            )
        return aliases[key]


class RiskOfBias(Enum):
    """Overall risk-of-bias judgement across the included studies."""

    LOW = "low"
    SOME_CONCERNS = "some_concerns"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def downgrade(self) -> int:
        return {
            RiskOfBias.LOW: 0,
            RiskOfBias.SOME_CONCERNS: 0,
            RiskOfBias.HIGH: 1,
            RiskOfBias.CRITICAL: 2,
        }[self]

    @classmethod
    def from_string(cls, value: Union[str, RiskOfBias]) -> RiskOfBias:
        if isinstance(value, cls):
            return value
        aliases = {
            "low": cls.LOW,
            "some_concerns": cls.SOME_CONCERNS,
            "moderate": cls.SOME_CONCERNS,
            "unclear": cls.SOME_CONCERNS,
            "high": cls.HIGH,
            "serious": cls.HIGH,
            "critical": cls.CRITICAL,
            "very_serious": cls.CRITICAL,
        }
        key = _normalize(value)
        if key not in aliases:
            raise ConfigurationError(
                f"Unknown risk-of-bias judgement: {value}",
                {"value": value, "allowed": sorted(aliases)},
            )
        return aliases[key]


class Severity(Enum):
    """Severity of a caller-judged concern such as indirectness."""

    NONE = "none"
    SERIOUS = "serious"
    VERY_SERIOUS = "very_serious"

    @property
    def downgrade(self) -> int:
        return {Severity.NONE: 0, Severity.SERIOUS: 1, Severity.VERY_SERIOUS: 2}[self]

    @classmethod
    def from_string(cls, value: Union[str, Severity]) -> Severity:
        if isinstance(value, cls):
            return value
        aliases = {
            "none": cls.NONE,
            "not_serious": cls.NONE,
            "no": cls.NONE,
            "serious": cls.SERIOUS,
            "very_serious": cls.VERY_SERIOUS,
        }
        key = _normalize(value)
        if key not in aliases:
            raise ConfigurationError(
                f"Unknown severity: {value}",
                {"value": value, "allowed": sorted(aliases)},
            )
        return aliases[key]


class Direction(Enum):
    """Direction of a grading adjustment."""

    DOWNGRADE = "downgrade"
    UPGRADE = "upgrade"
    NONE = "none"


@dataclass(frozen=True)
class GradeAdjustment:
    """
    One grading decision.

    Attributes:
        factor: GRADE domain, e.g. 'imprecision'
        direction: Downgrade, upgrade or none
        magnitude: Levels moved (0-2)
        rationale: One-sentence justification
    """

    factor: str
    direction: Direction
    magnitude: int
    rationale: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "factor": self.factor,
            "direction": self.direction.value,
            "magnitude": self.magnitude,
            "rationale": self.rationale,
        }


@dataclass(frozen=True)
class GradeAssessment:
    """
    Certainty-of-evidence rating for one outcome.

    Attributes:
        design: Study design of the evidence
        starting_quality: Quality implied by the design
        adjustments: Every factor considered, including unchanged ones
        final_quality: Quality after all adjustments
        rationale: Summary of the grading path
        total_downgrade: Levels removed before clamping
        total_upgrade: Levels added before clamping
    """

    design: StudyDesign
    starting_quality: Quality
    adjustments: Tuple[GradeAdjustment, ...]
    final_quality: Quality
    rationale: str
    total_downgrade: int
    total_upgrade: int

    @property
    def applied_adjustments(self) -> Tuple[GradeAdjustment, ...]:
        """Adjustments that moved the rating."""
        return tuple(a for a in self.adjustments if a.magnitude > 0)

    def adjustment_for(self, factor: str) -> GradeAdjustment:
        for adjustment in self.adjustments:
            if adjustment.factor == factor:
                return adjustment
        raise KeyError(factor)

    def summary_table(self) -> str:
        """Generate summary table as string."""
        lines = [
            "=" * 60,
            f"GRADE: {self.final_quality.label} {self.final_quality.symbol}",
            "=" * 60,
            f"Design: {self.design.value} (start {self.starting_quality.label})",
        ]
        for a in self.adjustments:
            sign = {"downgrade": "-", "upgrade": "+", "none": " "}[a.direction.value]
            lines.append(f"  {sign}{a.magnitude} {a.factor:<20} {a.rationale}")
        lines.append("")
        lines.append(self.rationale)
        lines.append("=" * 60)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "design": self.design.value,
            "starting_quality": self.starting_quality.label,
            "adjustments": [a.to_dict() for a in self.adjustments],
            "final_quality": self.final_quality.label,
            "rationale": self.rationale,
            "total_downgrade": self.total_downgrade,
            "total_upgrade": self.total_upgrade,
        }


@dataclass(frozen=True)
class RecommendationStrength:
    """Strength of a recommendation ('strong' or 'weak') with its rationale."""

    strength: str
    rationale: str

    def to_dict(self) -> Dict[str, Any]:
        return {"strength": self.strength, "rationale": self.rationale}


# =============================================================================
# Downgrade factors
# =============================================================================

def _none(factor: str, rationale: str) -> GradeAdjustment:
    return GradeAdjustment(factor, Direction.NONE, 0, rationale)


def _down(factor: str, levels: int, rationale: str) -> GradeAdjustment:
    levels = min(MAX_FACTOR_DOWNGRADE, levels)
    if levels <= 0:
        return _none(factor, rationale)
    return GradeAdjustment(factor, Direction.DOWNGRADE, levels, rationale)


def assess_risk_of_bias(judgement: RiskOfBias) -> GradeAdjustment:
    levels = judgement.downgrade
    if levels == 0:
        return _none("risk_of_bias", f"Risk of bias judged {judgement.value}; no downgrade.")
    return _down(
        "risk_of_bias", levels,
        f"Risk of bias judged {judgement.value}; downgraded {levels} level(s).",
    )


def assess_inconsistency(
    heterogeneity: Optional[HeterogeneityStats],
    threshold: float,
    explained: bool = False
) -> GradeAdjustment:
    """
    Downgrade for unexplained heterogeneity.

    One level when I² exceeds the threshold; two when I² > 90% and the
    Q test is significant at 0.10.
    """
    if heterogeneity is None or heterogeneity.insufficient_studies or heterogeneity.i_squared is None:
        return _none("inconsistency", "Inconsistency not assessable with fewer than two studies.")
    i_sq = heterogeneity.i_squared
    if i_sq <= threshold:
        return _none("inconsistency", f"Heterogeneity acceptable (I² = {i_sq:.0f}%); no downgrade.")
    if explained:
        return _none(
            "inconsistency",
            f"High heterogeneity (I² = {i_sq:.0f}%) is explained by subgroup or sensitivity analyses; no downgrade.",
        )
    if i_sq > 90 and heterogeneity.p_value is not None and heterogeneity.p_value < 0.10:
        return _down(
            "inconsistency", 2,
            f"Very high unexplained heterogeneity (I² = {i_sq:.0f}%, "
            f"Q test {format_p_value(heterogeneity.p_value)}); downgraded 2 levels.",
        )
    return _down(
        "inconsistency", 1,
        f"Substantial unexplained heterogeneity (I² = {i_sq:.0f}% > {threshold:g}%); downgraded 1 level.",
    )


def assess_indirectness(severity: Severity) -> GradeAdjustment:
    if severity is Severity.NONE:
        return _none("indirectness", "Evidence directly addresses the question; no downgrade.")
    return _down(
        "indirectness", severity.downgrade,
        f"{severity.value.replace('_', ' ').capitalize()} indirectness; "
        f"downgraded {severity.downgrade} level(s).",
    )


def assess_imprecision(
    pooled: Optional[PooledResult],
    threshold: Optional[float] = None
) -> GradeAdjustment:
    """
    Downgrade for wide confidence intervals.

    Without a threshold, one level when the CI crosses the null. With a
    clinically relevant threshold T, one level when the CI crosses T (or
    its mirror image, 1/T for ratios and -T for differences) and two
    levels when the CI spans both.
    """
    if pooled is None:
        return _none("imprecision", "No pooled estimate available; imprecision not assessed.")
    lo, hi = pooled.ci_lower, pooled.ci_upper
    ci_text = f"CI {lo:.2f} to {hi:.2f}"

    if threshold is not None:
        if pooled.measure.is_ratio_measure():
            if threshold <= 0:
                raise ConfigurationError(
                    "Imprecision threshold for a ratio measure must be positive",
                    {"threshold": threshold},
                )
            mirror = 1 / threshold
        else:
            mirror = -threshold
        low_t, high_t = sorted((threshold, mirror))
        if lo < low_t and hi > high_t:
            return _down(
                "imprecision", 2,
                f"{ci_text} spans both {low_t:.2f} and {high_t:.2f}; downgraded 2 levels.",
            )
        if lo < low_t < hi or lo < high_t < hi:
            return _down(
                "imprecision", 1,
                f"{ci_text} crosses the clinical decision threshold; downgraded 1 level.",
            )
        return _none("imprecision", f"{ci_text} lies on one side of the decision threshold; no downgrade.")

    null = pooled.measure.null_value()
    if lo < null < hi:
        return _down(
            "imprecision", 1,
            f"{ci_text} crosses the null value {null:g}; downgraded 1 level.",
        )
    return _none("imprecision", f"{ci_text} excludes the null value; no downgrade.")


def assess_publication_bias(
    bias: Optional[BiasAssessment],
    alpha: float = 0.10
) -> GradeAdjustment:
    """
    One level when Egger's test is significant and trim-and-fill imputes
    at least one missing study.
    """
    if bias is None:
        return _none("publication_bias", "Publication bias not assessed.")
    p = bias.egger_p_value
    if p is None:
        return _none("publication_bias", "Egger's test not available; no downgrade.")
    if p >= alpha:
        return _none("publication_bias", f"No funnel asymmetry (Egger {format_p_value(p)}); no downgrade.")
    if bias.trim_and_fill is None or bias.n_imputed == 0:
        return _none(
            "publication_bias",
            f"Egger's test significant ({format_p_value(p)}) but trim-and-fill imputed no "
            "missing studies; no downgrade.",
        )
    return _down(
        "publication_bias", 1,
        f"Funnel asymmetry (Egger {format_p_value(p)}, trim-and-fill imputed "
        f"{bias.n_imputed} study(ies)); downgraded 1 level.",
    )


# =============================================================================
# Upgrade factors
# =============================================================================

def assess_large_effect(
    pooled: Optional[PooledResult],
    large_ratio: float = 2.0,
    very_large_ratio: float = 5.0
) -> GradeAdjustment:
    """One level for a ratio beyond 2 (or 0.5), two beyond 5 (or 0.2)."""
    if pooled is None:
        return _none("large_effect", "No pooled estimate available.")
    if not pooled.measure.is_ratio_measure():
        return _none("large_effect", "Large-effect upgrade applies to ratio measures only.")
    estimate = pooled.estimate
    magnitude = max(estimate, 1 / estimate)
    if magnitude > very_large_ratio:
        return GradeAdjustment(
            "large_effect", Direction.UPGRADE, 2,
            f"Very large effect ({pooled.measure.value} = {estimate:.2f}); upgraded 2 levels.",
        )
    if magnitude > large_ratio:
        return GradeAdjustment(
            "large_effect", Direction.UPGRADE, 1,
            f"Large effect ({pooled.measure.value} = {estimate:.2f}); upgraded 1 level.",
        )
    return _none("large_effect", f"Effect ({pooled.measure.value} = {estimate:.2f}) is not large.")


def _flag_upgrade(factor: str, present: bool, description: str) -> GradeAdjustment:
    if present:
        return GradeAdjustment(factor, Direction.UPGRADE, 1, f"{description}; upgraded 1 level.")
    return _none(factor, f"No {description.lower()}.")


def _describe(adjustments: List[GradeAdjustment]) -> str:
    return ", ".join(a.factor.replace("_", " ") for a in adjustments)


class EvidenceGrader:
    """
    GRADE certainty-of-evidence rating.

    The grader is stateless; each call builds a fresh GradeAssessment.
    """

    def grade(
        self,
        design: Union[str, StudyDesign],
        heterogeneity: Optional[HeterogeneityStats] = None,
        bias: Optional[BiasAssessment] = None,
        pooled: Optional[PooledResult] = None,
        *,
        risk_of_bias: Union[str, RiskOfBias] = "low",
        indirectness: Union[str, Severity] = "none",
        imprecision_threshold: Optional[float] = None,
        inconsistency_explained: bool = False,
        dose_response: bool = False,
        confounding_reduces_effect: bool = False,
        config: Optional[AnalysisConfig] = None
    ) -> GradeAssessment:
        """
        Grade the certainty of evidence.

        Args:
            design: Study design of the evidence
            heterogeneity: Heterogeneity statistics
            bias: Publication bias assessment
            pooled: Pooled estimate
            risk_of_bias: Overall risk-of-bias judgement
            indirectness: Indirectness judgement
            imprecision_threshold: Clinically relevant threshold (display scale)
            inconsistency_explained: Whether heterogeneity has been explained
            dose_response: Dose-response gradient present
            confounding_reduces_effect: Plausible confounding would reduce the effect
            config: Analysis configuration

        Returns:
            GradeAssessment
        """
        config = resolve_config(config)
        design = StudyDesign.from_string(design)
        risk_of_bias = RiskOfBias.from_string(risk_of_bias)
        indirectness = Severity.from_string(indirectness)
        if heterogeneity is None and pooled is not None:
            heterogeneity = pooled.heterogeneity

        start = design.starting_quality
        downgrades = [
            assess_risk_of_bias(risk_of_bias),
            assess_inconsistency(heterogeneity, config.grade_inconsistency_threshold, inconsistency_explained),
            assess_indirectness(indirectness),
            assess_imprecision(pooled, imprecision_threshold),
            assess_publication_bias(bias, config.bias_alpha),
        ]
        total_down = sum(a.magnitude for a in downgrades)
        level = max(Quality.VERY_LOW.value, start.value - total_down)

        if design is StudyDesign.OBSERVATIONAL:
            upgrades = [
                assess_large_effect(pooled, config.large_effect_ratio, config.very_large_effect_ratio),
                _flag_upgrade("dose_response", dose_response, "Dose-response gradient"),
                _flag_upgrade(
                    "plausible_confounding", confounding_reduces_effect,
                    "Plausible confounding would reduce the observed effect",
                ),
            ]
        else:
            upgrades = [
                _none(factor, "Upgrading applies to observational evidence only.")
                for factor in ("large_effect", "dose_response", "plausible_confounding")
            ]
        total_up = sum(a.magnitude for a in upgrades)
        final = Quality.from_level(level + total_up)

        applied_down = [a for a in downgrades if a.magnitude]
        applied_up = [a for a in upgrades if a.magnitude]
        parts = [f"Started at {start.label} quality ({design.value.replace('_', ' ')} evidence)."]
        if applied_down:
            parts.append(f"Downgraded {total_down} level(s) due to: {_describe(applied_down)}.")
        else:
            parts.append("No downgrades.")
        if applied_up:
            parts.append(f"Upgraded {total_up} level(s) due to: {_describe(applied_up)}.")
        parts.append(f"Final quality: {final.label}.")

        logger.debug(
            "GRADE: start=%s down=%d up=%d final=%s", start.label, total_down, total_up, final.label
        )

        return GradeAssessment(
            design=design,
            starting_quality=start,
            adjustments=tuple(downgrades + upgrades),
            final_quality=final,
            rationale=" ".join(parts),
            total_downgrade=total_down,
            total_upgrade=total_up,
        )


def determine_recommendation_strength(
    quality: Union[str, Quality],
    balance: str,
    values: str,
    resource_use: str
) -> RecommendationStrength:
    """
    Strength of a recommendation from evidence quality and context.

    Args:
        quality: Certainty of evidence
        balance: 'clearly_favors', 'probably_favors' or 'uncertain'
        values: Patient values and preferences, 'consistent' or 'variable'
        resource_use: 'low', 'moderate' or 'high'

    Returns:
        RecommendationStrength
    """
    quality = Quality.from_string(quality)
    balance, values, resource_use = _normalize(balance), _normalize(values), _normalize(resource_use)
    checks = {
        "balance": (balance, ("clearly_favors", "probably_favors", "uncertain")),
        "values": (values, ("consistent", "variable")),
        "resource_use": (resource_use, ("low", "moderate", "high")),
    }
    for name, (value, allowed) in checks.items():
        if value not in allowed:
            raise ConfigurationError(
                f"Unknown {name}: {value}",
                {"parameter": name, "value": value, "allowed": list(allowed)},
            )

    if quality is Quality.HIGH and balance == "clearly_favors" and values == "consistent":
        return RecommendationStrength(
            "strong",
            "High quality evidence, benefits clearly outweigh harms, consistent values and preferences",
        )

    reasons = []
    if quality in (Quality.LOW, Quality.VERY_LOW):
        reasons.append("low quality evidence")
    if balance != "clearly_favors":
        reasons.append("uncertain balance of benefits and harms")
    if values == "variable":
        reasons.append("variable patient values and preferences")
    if resource_use == "high":
        reasons.append("high resource use")

    if reasons:
        return RecommendationStrength("weak", f"Weak recommendation due to: {', '.join(reasons)}")
    return RecommendationStrength("weak", "Moderate quality evidence with probably favorable balance")
