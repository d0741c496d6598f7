"""
Publication Bias Analysis for evisynth.

This module provides funnel-plot asymmetry tests (Egger's regression and
Begg's rank correlation), the Duval & Tweedie trim-and-fill adjustment,
and the funnel-plot coordinates consumed by downstream renderers.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Sequence, Tuple
import numpy as np
from scipy import stats

from evisynth.core.config import AnalysisConfig, resolve_config
from evisynth.core.estimand import EffectMeasure
from evisynth.core.exceptions import InsufficientStudiesError
from evisynth.core.study import EffectSize, stack_effect_sizes
from evisynth.diagnostics.heterogeneity import compute_tau_squared
from evisynth.models.base import PooledResult, pooled_estimate_fixed, pooled_estimate_random
from evisynth.utils import ci_from_se, format_p_value, p_value_from_t, p_value_from_z
from evisynth.utils.logging import get_logger

logger = get_logger(__name__)

MIN_STUDIES_FOR_TESTS = 3


def _interpret_p(p_value: float, alpha: float, what: str) -> str:
    if p_value < 0.05:
        return f"Significant {what} detected (p < 0.05), suggesting possible publication bias"
    if p_value < alpha:
        return f"Borderline {what} (p < {alpha:g}), publication bias possible"
    return f"No significant {what} detected (p >= {alpha:g})"


# ============================================================================
# Test Results
# ============================================================================

@dataclass(frozen=True)
class EggerTest:
    """
    Egger's regression test for funnel plot asymmetry.

    Attributes:
        intercept: Regression intercept (bias indicator)
        se_intercept: Standard error of intercept
        slope: Regression slope (precision-weighted effect)
        t_statistic: t statistic for the intercept
        df: Degrees of freedom (k - 2)
        p_value: Two-sided p-value
        significant: Whether p < alpha
        interpretation: Plain-language reading of the result
    """

    intercept: float
    se_intercept: float
    slope: float
    t_statistic: float
    df: int
    p_value: float
    significant: bool
    interpretation: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intercept": float(self.intercept),
            "se_intercept": float(self.se_intercept),
            "slope": float(self.slope),
            "t_statistic": float(self.t_statistic),
            "df": int(self.df),
            "p_value": float(self.p_value),
            "significant": self.significant,
            "interpretation": self.interpretation,
        }


@dataclass(frozen=True)
class BeggTest:
    """
    Begg and Mazumdar rank correlation test.

    Attributes:
        kendall_tau: Kendall's tau between standardized effects and variances
        se_tau: Standard error of tau under the null
        z_statistic: Normal test statistic
        p_value: Two-sided p-value
        concordant_pairs: Number of concordant pairs
        discordant_pairs: Number of discordant pairs
        significant: Whether p < alpha
        interpretation: Plain-language reading of the result
    """

    kendall_tau: float
    se_tau: float
    z_statistic: float
    p_value: float
    concordant_pairs: int
    discordant_pairs: int
    significant: bool
    interpretation: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kendall_tau": float(self.kendall_tau),
            "se_tau": float(self.se_tau),
            "z_statistic": float(self.z_statistic),
            "p_value": float(self.p_value),
            "concordant_pairs": self.concordant_pairs,
            "discordant_pairs": self.discordant_pairs,
            "significant": self.significant,
            "interpretation": self.interpretation,
        }


@dataclass(frozen=True)
class TrimAndFillResult:
    """
    Trim-and-fill adjustment.

    Attributes:
        side: Side of the funnel where studies were judged missing
        estimator: Estimator of the number of missing studies ('L0' or 'R0')
        n_imputed: Number of filled (mirror-image) studies
        imputed: The filled studies as EffectSize objects
        model: Model used for the adjusted estimate
        original_estimate: Pooled estimate before filling (display scale)
        adjusted_estimate: Pooled estimate after filling (display scale)
        adjusted_ci_lower: Lower CI of adjusted estimate (display scale)
        adjusted_ci_upper: Upper CI of adjusted estimate (display scale)
        adjusted_yi: Adjusted estimate on analysis scale
        adjusted_se: SE of adjusted estimate on analysis scale
        iterations: Trim/re-estimate iterations performed
        converged: False when the iteration cap was reached
        interpretation: Plain-language reading of the result
    """

    side: str
    estimator: str
    n_imputed: int
    imputed: Tuple[EffectSize, ...]
    model: str
    original_estimate: float
    adjusted_estimate: float
    adjusted_ci_lower: float
    adjusted_ci_upper: float
    adjusted_yi: float
    adjusted_se: float
    iterations: int
    converged: bool
    interpretation: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "side": self.side,
            "estimator": self.estimator,
            "n_imputed": self.n_imputed,
            "imputed": [es.to_dict() for es in self.imputed],
            "model": self.model,
            "original_estimate": float(self.original_estimate),
            "adjusted_estimate": float(self.adjusted_estimate),
            "adjusted_ci_lower": float(self.adjusted_ci_lower),
            "adjusted_ci_upper": float(self.adjusted_ci_upper),
            "adjusted_yi": float(self.adjusted_yi),
            "adjusted_se": float(self.adjusted_se),
            "iterations": self.iterations,
            "converged": self.converged,
            "interpretation": self.interpretation,
        }


@dataclass(frozen=True)
class FunnelPoint:
    """One study on the funnel plot: effect (x) against precision (y)."""

    study_id: str
    effect: float
    precision: float
    se: float
    imputed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "study_id": self.study_id,
            "effect": float(self.effect),
            "precision": float(self.precision),
            "se": float(self.se),
            "imputed": self.imputed,
        }


# ============================================================================
# Test Functions
# ============================================================================

def egger_test(
    y: np.ndarray,
    se: np.ndarray,
    alpha: float = 0.10
) -> Optional[EggerTest]:
    """
    Egger's regression test for funnel plot asymmetry.

    Regresses the standardized effect y/SE on precision 1/SE; under no
    small-study effects the intercept is zero.

    Args:
        y: Effect estimates (analysis scale)
        se: Standard errors
        alpha: Significance level

    Returns:
        EggerTest, or None when the regression is undefined (k < 3 or all SEs equal)
    """
    y = np.asarray(y, dtype=float)
    se = np.asarray(se, dtype=float)
    n = len(y)
    if n < MIN_STUDIES_FOR_TESTS:
        return None

    # Precision = 1/SE
    precision = 1 / se

    # Standardized effect = y / SE
    std_effect = y / se

    mean_prec = np.mean(precision)
    mean_std = np.mean(std_effect)

    # Slope and intercept
    ss_prec = np.sum((precision - mean_prec) ** 2)
    if ss_prec <= 1e-12 * max(1.0, mean_prec ** 2):
        return None
    sp = np.sum((precision - mean_prec) * (std_effect - mean_std))

    slope = sp / ss_prec
    intercept = mean_std - slope * mean_prec

    # Standard errors
    residuals = std_effect - (intercept + slope * precision)
    df = n - 2
    mse = np.sum(residuals ** 2) / df

    se_intercept = np.sqrt(mse * (1 / n + mean_prec ** 2 / ss_prec))

    # t-test for intercept
    if se_intercept > 0:
        t_stat = intercept / se_intercept
        p_value = p_value_from_t(t_stat, df)
    elif np.isclose(intercept, 0.0, atol=1e-10):
        t_stat, p_value = 0.0, 1.0
    else:
        t_stat, p_value = float(np.sign(intercept) * np.inf), 0.0

    return EggerTest(
        intercept=float(intercept),
        se_intercept=float(se_intercept),
        slope=float(slope),
        t_statistic=float(t_stat),
        df=int(df),
        p_value=float(p_value),
        significant=bool(p_value < alpha),
        interpretation=_interpret_p(p_value, alpha, "asymmetry"),
    )


def begg_test(
    y: np.ndarray,
    se: np.ndarray,
    alpha: float = 0.10
) -> Optional[BeggTest]:
    """
    Begg's rank correlation test for publication bias.

    Kendall's tau between the standardized deviates
    (y - ȳ_FE) / sqrt(v - v_FE) and the sampling variances v.

    Args:
        y: Effect estimates (analysis scale)
        se: Standard errors
        alpha: Significance level

    Returns:
        BeggTest, or None when k < 3
    """
    y = np.asarray(y, dtype=float)
    se = np.asarray(se, dtype=float)
    n = len(y)
    if n < MIN_STUDIES_FOR_TESTS:
        return None

    variance = se ** 2
    theta, var_theta = pooled_estimate_fixed(y, variance)

    # Standardized deviates
    std_dev = (y - theta) / np.sqrt(variance - var_theta)

    # Kendall's tau over all pairs
    upper = np.triu_indices(n, k=1)
    sign_dev = np.sign(std_dev[:, None] - std_dev[None, :])[upper]
    sign_var = np.sign(variance[:, None] - variance[None, :])[upper]
    product = sign_dev * sign_var
    concordant = int(np.sum(product > 0))
    discordant = int(np.sum(product < 0))

    tau = (concordant - discordant) / (n * (n - 1) / 2)

    # Standard error under null
    se_tau = np.sqrt(2 * (2 * n + 5) / (9 * n * (n - 1)))

    z = tau / se_tau
    p_value = p_value_from_z(z)

    return BeggTest(
        kendall_tau=float(tau),
        se_tau=float(se_tau),
        z_statistic=float(z),
        p_value=float(p_value),
        concordant_pairs=concordant,
        discordant_pairs=discordant,
        significant=bool(p_value < alpha),
        interpretation=_interpret_p(p_value, alpha, "correlation"),
    )


def estimate_missing(centered: np.ndarray, estimator: str = "L0") -> int:
    """
    Estimate the number of studies missing from the left of the funnel.

    Args:
        centered: Effects minus the current centre (missing side on the left)
        estimator: 'L0' or 'R0'

    Returns:
        Non-negative estimated count
    """
    centered = np.asarray(centered, dtype=float)
    n = len(centered)
    abs_dev = np.abs(centered)
    scale = np.max(abs_dev) if n else 0.0
    if scale == 0:
        return 0
    # Near-equal distances are ties
    abs_dev = np.round(abs_dev / scale, 10)
    positive = centered > 1e-10 * scale
    ranks = stats.rankdata(abs_dev)

    if estimator == "R0":
        by_distance = np.argsort(-abs_dev, kind="mergesort")
        run = 0
        for idx in by_distance:
            if not positive[idx]:
                break
            run += 1
        return int(max(0, run - 1))

    t_n = np.sum(ranks[positive])
    l0 = (4 * t_n - n * (n + 1)) / (2 * n - 1)
    return int(max(0, np.round(l0)))


def _missing_side(y: np.ndarray, se: np.ndarray) -> str:
    egger = egger_test(y, se)
    if egger is not None and egger.intercept < 0:
        return "right"
    return "left"


def _pool(y: np.ndarray, variances: np.ndarray, model: str, tau_method: str) -> Tuple[float, float]:
    if model == "random":
        tau_sq = compute_tau_squared(y, np.sqrt(variances), tau_method)
        return pooled_estimate_random(y, variances, tau_sq)
    return pooled_estimate_fixed(y, variances)


def trim_and_fill(
    y: np.ndarray,
    se: np.ndarray,
    side: str = "auto",
    estimator: str = "L0",
    model: str = "fixed",
    tau_method: str = "DL",
    max_iter: Optional[int] = None
) -> Dict[str, Any]:
    """
    Trim-and-fill analysis for publication bias.

    Studies are trimmed from the heavier side of the funnel, the centre
    is re-estimated from the remaining studies, and the number of missing
    studies is re-estimated until it stops changing. Mirror images of the
    trimmed studies are then filled in around the final centre.

    Args:
        y: Effect estimates (analysis scale)
        se: Standard errors
        side: Side where studies are missing ('left', 'right', 'auto')
        estimator: Method for estimating missing studies ('L0', 'R0')
        model: Model for the original and adjusted estimates ('fixed', 'random')
        tau_method: Tau-squared estimator for the random-effects model
        max_iter: Iteration cap (default 2 x number of studies)

    Returns:
        Dictionary with trim-and-fill results (analysis scale)
    """
    y = np.asarray(y, dtype=float)
    se = np.asarray(se, dtype=float)
    n = len(y)
    variances = se ** 2
    if max_iter is None:
        max_iter = 2 * n

    if side == "auto":
        side = _missing_side(y, se)

    # Work on a funnel whose missing studies are on the left
    sign = 1.0 if side == "left" else -1.0
    y_flip = sign * y
    order = np.argsort(y_flip, kind="mergesort")
    y_sorted = y_flip[order]
    v_sorted = variances[order]

    k0 = 0
    iterations = 0
    converged = False
    while iterations < max_iter:
        iterations += 1
        keep = n - k0
        theta = pooled_estimate_fixed(y_sorted[:keep], v_sorted[:keep])[0]
        k0_new = min(estimate_missing(y_sorted - theta, estimator), n - 1)
        if k0_new == k0:
            converged = True
            break
        k0 = k0_new

    # Centre the fill on the studies kept for the final k0
    theta = pooled_estimate_fixed(y_sorted[: n - k0], v_sorted[: n - k0])[0]

    original, original_var = _pool(y, variances, model, tau_method)

    if k0 > 0:
        trimmed_idx = order[n - k0:]
        imputed_y = sign * (2 * theta - y_flip[trimmed_idx])
        imputed_se = se[trimmed_idx]
        y_all = np.concatenate([y, imputed_y])
        v_all = np.concatenate([variances, imputed_se ** 2])
        adjusted, adjusted_var = _pool(y_all, v_all, model, tau_method)
    else:
        trimmed_idx = np.array([], dtype=int)
        imputed_y = np.array([])
        imputed_se = np.array([])
        adjusted, adjusted_var = original, original_var

    return {
        "side": side,
        "estimator": estimator,
        "n_imputed": int(k0),
        "trimmed_index": trimmed_idx,
        "imputed_y": imputed_y,
        "imputed_se": imputed_se,
        "center": float(sign * theta),
        "original": float(original),
        "original_se": float(np.sqrt(original_var)),
        "adjusted": float(adjusted),
        "adjusted_se": float(np.sqrt(adjusted_var)),
        "iterations": iterations,
        "converged": converged,
    }


# ============================================================================
# Assessment
# ============================================================================

@dataclass(frozen=True)
class BiasAssessment:
    """
    Publication bias assessment for one outcome.

    Attributes:
        n_studies: Number of studies
        measure: Effect measure
        egger: Egger's test (None when not estimable)
        begg: Begg's test (None when not estimable)
        trim_and_fill: Trim-and-fill adjustment (None when not estimable)
        funnel_points: Study coordinates (effect, precision), imputed studies flagged
        funnel_center: Pooled estimate at the funnel centre (display scale)
        funnel_limits: Pseudo confidence limits as (se, lower, upper) triples
        bias_detected: Whether either test is significant
        low_power: Fewer studies than the configured minimum for bias tests
        interpretation: Overall reading
        warnings: Any warnings generated
    """

    n_studies: int
    measure: EffectMeasure
    egger: Optional[EggerTest]
    begg: Optional[BeggTest]
    trim_and_fill: Optional[TrimAndFillResult]
    funnel_points: Tuple[FunnelPoint, ...]
    funnel_center: float
    funnel_limits: Tuple[Tuple[float, float, float], ...] = field(default_factory=tuple)
    bias_detected: bool = False
    low_power: bool = False
    interpretation: str = ""
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def egger_intercept(self) -> Optional[float]:
        return self.egger.intercept if self.egger is not None else None

    @property
    def egger_p_value(self) -> Optional[float]:
        return self.egger.p_value if self.egger is not None else None

    @property
    def begg_tau(self) -> Optional[float]:
        return self.begg.kendall_tau if self.begg is not None else None

    @property
    def begg_p_value(self) -> Optional[float]:
        return self.begg.p_value if self.begg is not None else None

    @property
    def adjusted_estimate(self) -> Optional[float]:
        return self.trim_and_fill.adjusted_estimate if self.trim_and_fill is not None else None

    @property
    def n_imputed(self) -> int:
        return self.trim_and_fill.n_imputed if self.trim_and_fill is not None else 0

    def summary_table(self) -> str:
        """Generate summary table as string."""
        lines = [
            "=" * 60,
            "Publication Bias Assessment",
            "=" * 60,
            f"Studies: {self.n_studies}" + (" (low power)" if self.low_power else ""),
        ]
        if self.egger is not None:
            lines.append(
                f"Egger's test: intercept = {self.egger.intercept:.3f}, "
                f"{format_p_value(self.egger.p_value)}"
            )
        else:
            lines.append("Egger's test: not estimable")
        if self.begg is not None:
            lines.append(
                f"Begg's test: tau = {self.begg.kendall_tau:.3f}, {format_p_value(self.begg.p_value)}"
            )
        else:
            lines.append("Begg's test: not estimable")
        if self.trim_and_fill is not None:
            tf = self.trim_and_fill
            lines.append(
                f"Trim-and-fill: {tf.n_imputed} imputed ({tf.side}), "
                f"adjusted {tf.adjusted_estimate:.4f} [{tf.adjusted_ci_lower:.4f}, {tf.adjusted_ci_upper:.4f}]"
                + ("" if tf.converged else " (did not converge)")
            )
        lines.append(self.interpretation)
        for w in self.warnings:
            lines.append(f"  - {w}")
        lines.append("=" * 60)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "n_studies": self.n_studies,
            "measure": self.measure.value,
            "egger": self.egger.to_dict() if self.egger is not None else None,
            "begg": self.begg.to_dict() if self.begg is not None else None,
            "trim_and_fill": self.trim_and_fill.to_dict() if self.trim_and_fill is not None else None,
            "funnel_points": [p.to_dict() for p in self.funnel_points],
            "funnel_center": float(self.funnel_center),
            "funnel_limits": [list(row) for row in self.funnel_limits],
            "bias_detected": self.bias_detected,
            "low_power": self.low_power,
            "interpretation": self.interpretation,
            "warnings": list(self.warnings),
        }


class PublicationBiasAnalyzer:
    """
    Tests funnel-plot asymmetry and imputes missing studies.

    Tests are computed for any k >= 3; below the configured minimum
    (10 by default) the result is flagged low_power rather than refused.
    """

    def assess(
        self,
        effect_sizes: Sequence[EffectSize],
        config: Optional[AnalysisConfig] = None,
        pooled: Optional[PooledResult] = None
    ) -> BiasAssessment:
        """
        Assess publication bias.

        Args:
            effect_sizes: Effect sizes for one outcome
            config: Analysis configuration
            pooled: Pooled result for the same studies; its model is reused
                for the trim-and-fill estimates and its estimate centres the funnel

        Returns:
            BiasAssessment
        """
        config = resolve_config(config)
        effect_sizes = list(effect_sizes)
        y, se, measure, study_ids = stack_effect_sizes(effect_sizes, step="publication bias")
        k = len(y)
        if k == 0:
            raise InsufficientStudiesError(
                "No studies provided for publication bias assessment",
                required=1,
                available=0,
                details={"step": "publication bias"},
            )

        warnings: List[str] = []
        low_power = k < config.min_studies_bias
        if k < MIN_STUDIES_FOR_TESTS:
            warnings.append(
                f"Very few studies ({k} < {MIN_STUDIES_FOR_TESTS}); asymmetry tests not estimable"
            )
        elif low_power:
            warnings.append(
                f"Few studies ({k} < {config.min_studies_bias}); publication bias tests have low power"
            )

        egger = egger_test(y, se, config.bias_alpha)
        if egger is None and k >= MIN_STUDIES_FOR_TESTS:
            warnings.append("Egger's test undefined: all studies have the same standard error")
        begg = begg_test(y, se, config.bias_alpha)

        model = pooled.model if pooled is not None else "fixed"
        trim_fill = None
        if k >= MIN_STUDIES_FOR_TESTS:
            trim_fill = self._trim_and_fill(
                y, se, measure, study_ids, model, config
            )
            if not trim_fill.converged:
                warnings.append(
                    f"Trim-and-fill did not converge within {2 * k} iterations; "
                    "reporting the last estimate"
                )

        if pooled is not None:
            center_yi = pooled.yi
        else:
            center_yi = pooled_estimate_fixed(y, se ** 2)[0]

        funnel_points = [
            FunnelPoint(
                study_id=sid,
                effect=measure.to_display_scale(yi),
                precision=float(1 / s),
                se=float(s),
            )
            for sid, yi, s in zip(study_ids, y, se)
        ]
        if trim_fill is not None:
            funnel_points.extend(
                FunnelPoint(
                    study_id=es.study_id,
                    effect=es.estimate,
                    precision=es.precision,
                    se=es.se,
                    imputed=True,
                )
                for es in trim_fill.imputed
            )

        funnel_limits = self.funnel_limits(center_yi, float(np.max(se)), measure, config)

        egger_sig = egger is not None and egger.significant
        begg_sig = begg is not None and begg.significant
        bias_detected = egger_sig or begg_sig
        if egger_sig and begg_sig:
            interpretation = (
                "Both Egger's and Begg's tests suggest publication bias. "
                "Results should be interpreted with caution."
            )
        elif bias_detected:
            interpretation = "One of the two asymmetry tests suggests publication bias."
            if egger is not None and begg is not None:
                warnings.append("Egger's and Begg's tests disagree")
        elif egger is None and begg is None:
            interpretation = "Publication bias could not be assessed."
        else:
            interpretation = "No evidence of funnel plot asymmetry."

        logger.debug(
            "Publication bias: k=%d egger_p=%s begg_p=%s imputed=%s",
            k,
            egger.p_value if egger is not None else None,
            begg.p_value if begg is not None else None,
            trim_fill.n_imputed if trim_fill is not None else None,
        )

        return BiasAssessment(
            n_studies=k,
            measure=measure,
            egger=egger,
            begg=begg,
            trim_and_fill=trim_fill,
            funnel_points=tuple(funnel_points),
            funnel_center=measure.to_display_scale(center_yi),
            funnel_limits=funnel_limits,
            bias_detected=bias_detected,
            low_power=low_power,
            interpretation=interpretation,
            warnings=tuple(warnings),
        )

    @staticmethod
    def _trim_and_fill(
        y: np.ndarray,
        se: np.ndarray,
        measure: EffectMeasure,
        study_ids: Tuple[str, ...],
        model: str,
        config: AnalysisConfig
    ) -> TrimAndFillResult:
        raw = trim_and_fill(
            y, se,
            side=config.trim_fill_side,
            estimator=config.trim_fill_estimator,
            model=model,
            tau_method=config.tau_squared_method,
        )
        if not raw["converged"]:
            logger.warning(
                "Trim-and-fill stopped at the iteration cap (%d) with %d imputed",
                raw["iterations"], raw["n_imputed"],
            )
        else:
            logger.info(
                "Trim-and-fill converged after %d iteration(s) with %d imputed",
                raw["iterations"], raw["n_imputed"],
            )

        imputed = tuple(
            EffectSize.from_analysis_scale(
                float(yi), float(s), measure,
                study_id=f"{study_ids[idx]} (filled)",
                level=config.confidence_level,
            )
            for idx, yi, s in zip(raw["trimmed_index"], raw["imputed_y"], raw["imputed_se"])
        )
        log_scale = measure.is_ratio_measure()
        lower, upper = ci_from_se(raw["adjusted"], raw["adjusted_se"], config.confidence_level, log_scale)

        n_imputed = raw["n_imputed"]
        if n_imputed == 0:
            interpretation = "No missing studies imputed; funnel plot appears symmetric"
        else:
            interpretation = (
                f"{n_imputed} missing {'study' if n_imputed == 1 else 'studies'} imputed on the "
                f"{raw['side']} side; adjusted estimate "
                f"{measure.to_display_scale(raw['adjusted']):.4f} vs original "
                f"{measure.to_display_scale(raw['original']):.4f}"
            )

        return TrimAndFillResult(
            side=raw["side"],
            estimator=raw["estimator"],
            n_imputed=n_imputed,
            imputed=imputed,
            model=model,
            original_estimate=measure.to_display_scale(raw["original"]),
            adjusted_estimate=measure.to_display_scale(raw["adjusted"]),
            adjusted_ci_lower=lower,
            adjusted_ci_upper=upper,
            adjusted_yi=raw["adjusted"],
            adjusted_se=raw["adjusted_se"],
            iterations=raw["iterations"],
            converged=raw["converged"],
            interpretation=interpretation,
        )

    @staticmethod
    def funnel_limits(
        center_yi: float,
        max_se: float,
        measure: EffectMeasure,
        config: AnalysisConfig,
        n_points: int = 20
    ) -> Tuple[Tuple[float, float, float], ...]:
        """
        Pseudo confidence limits around the funnel centre.

        Args:
            center_yi: Funnel centre on the analysis scale
            max_se: Largest study SE
            measure: Effect measure
            config: Analysis configuration
            n_points: Number of SE grid points

        Returns:
            Tuple of (se, lower, upper) triples on the display scale
        """
        z = config.z
        rows = []
        for s in np.linspace(0.0, max_se, n_points):
            lower = center_yi - z * s
            upper = center_yi + z * s
            rows.append((
                float(s),
                measure.to_display_scale(lower),
                measure.to_display_scale(upper),
            ))
        return tuple(rows)
