"""
Heterogeneity Analysis for evisynth.

This module quantifies between-study variability for a set of effect
sizes: Cochran's Q, I², H², tau² and the prediction interval for the
effect in a new study.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Sequence, Tuple
import numpy as np
from scipy import stats
from scipy.optimize import brentq

from evisynth.core.config import AnalysisConfig, resolve_config
from evisynth.core.estimand import EffectMeasure
from evisynth.core.study import EffectSize, stack_effect_sizes
from evisynth.utils import format_p_value, t_score
from evisynth.utils.logging import get_logger

logger = get_logger(__name__)


def compute_tau_squared(
    y: np.ndarray,
    se: np.ndarray,
    method: str = "DL"
) -> float:
    """
    Estimate between-study variance (tau-squared).

    Args:
        y: Effect estimates
        se: Standard errors
        method: Estimation method ('DL', 'PM', 'HS', 'SJ')

    Returns:
        Estimated tau-squared, never negative
    """
    y = np.asarray(y, dtype=float).flatten()
    se = np.asarray(se, dtype=float).flatten()
    n = len(y)
    if n < 2:
        return 0.0
    variances = se ** 2
    weights = 1 / variances

    # Fixed-effect pooled estimate
    theta_fe = np.sum(weights * y) / np.sum(weights)

    # Cochran's Q
    q = np.sum(weights * (y - theta_fe) ** 2)

    if method == "PM":
        # Paule-Mandel
        def pm_eq(tau_sq):
            w = 1 / (variances + tau_sq)
            theta = np.sum(w * y) / np.sum(w)
            return np.sum(w * (y - theta) ** 2) - (n - 1)

        if pm_eq(0) <= 0:
            tau_sq = 0.0
        else:
            upper = max(10 * q / n * np.max(variances), np.var(y, ddof=1)) + 1e-8
            while pm_eq(upper) > 0:
                upper *= 2
            tau_sq = brentq(pm_eq, 0, upper)

    elif method == "HS":
        # Hunter-Schmidt
        var_obs = np.var(y, ddof=1)
        var_err = np.mean(variances)
        tau_sq = var_obs - var_err

    elif method == "SJ":
        # Sidik-Jonkman
        theta_0 = np.mean(y)
        tau_sq_0 = np.sum((y - theta_0) ** 2) / (n - 1)
        if tau_sq_0 <= 0:
            return 0.0

        w = 1 / (variances + tau_sq_0)
        theta_1 = np.sum(w * y) / np.sum(w)

        tau_sq = np.sum((y - theta_1) ** 2 / (variances / tau_sq_0 + 1)) / (n - 1)

    else:
        # DerSimonian-Laird
        c = np.sum(weights) - np.sum(weights ** 2) / np.sum(weights)
        tau_sq = (q - (n - 1)) / c if c > 0 else 0.0

    return float(max(0.0, tau_sq))


def cochran_q_test(
    y: np.ndarray,
    se: np.ndarray
) -> Dict[str, float]:
    """
    Perform Cochran's Q test for heterogeneity.

    Args:
        y: Effect estimates
        se: Standard errors

    Returns:
        Dictionary with Q statistic, degrees of freedom, and p-value
    """
    y = np.asarray(y, dtype=float).flatten()
    se = np.asarray(se, dtype=float).flatten()
    n = len(y)
    weights = 1 / (se ** 2)

    theta = np.sum(weights * y) / np.sum(weights)
    q = np.sum(weights * (y - theta) ** 2)
    df = n - 1
    pvalue = stats.chi2.sf(q, df)

    return {
        "Q": float(q),
        "df": int(df),
        "p_value": float(pvalue)
    }


def compute_i_squared(q: float, df: int) -> float:
    """
    I-squared (percentage of variability due to heterogeneity).

    Args:
        q: Cochran's Q
        df: Degrees of freedom (k - 1)

    Returns:
        I-squared in [0, 100]
    """
    if q <= df or q <= 0:
        return 0.0
    return float(min(100.0, max(0.0, (q - df) / q * 100)))


def compute_h_squared(q: float, df: int) -> float:
    """H² = Q / (k-1), floored at 1."""
    if df <= 0:
        return 1.0
    return float(max(1.0, q / df))


def interpret_i_squared(i_squared: Optional[float]) -> str:
    """Map I² to the conventional heterogeneity bands."""
    if i_squared is None:
        return "not applicable"
    if i_squared < 25:
        return "low"
    if i_squared < 50:
        return "moderate"
    if i_squared < 75:
        return "substantial"
    return "considerable"


@dataclass(frozen=True)
class HeterogeneityStats:
    """
    Between-study heterogeneity for one outcome.

    When fewer than two studies are available every statistic is None and
    insufficient_studies is set, so callers can render "not applicable".

    Attributes:
        n_studies: Number of studies
        q: Cochran's Q statistic
        df: Degrees of freedom (k - 1)
        p_value: Q-test p-value
        i_squared: I² in percent, within [0, 100]
        tau_squared: Between-study variance (analysis scale), never negative
        h_squared: H² statistic
        prediction_interval: Range for the effect in a new study (display scale)
        tau_squared_method: Name of the tau² estimator
        interpretation: Conventional I² band
        recommended_model: Model suggested by the I² threshold
        insufficient_studies: True when k < 2
        measure: Effect measure
        warnings: Any warnings generated
    """

    n_studies: int
    q: Optional[float] = None
    df: Optional[int] = None
    p_value: Optional[float] = None
    i_squared: Optional[float] = None
    tau_squared: Optional[float] = None
    h_squared: Optional[float] = None
    prediction_interval: Optional[Tuple[float, float]] = None
    tau_squared_method: str = "DerSimonian-Laird"
    interpretation: str = "not applicable"
    recommended_model: Optional[str] = None
    insufficient_studies: bool = False
    measure: Optional[EffectMeasure] = None
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def tau(self) -> Optional[float]:
        """Standard deviation of true effects."""
        if self.tau_squared is None:
            return None
        return float(np.sqrt(self.tau_squared))

    def summary_table(self) -> str:
        """Generate summary table as string."""
        lines = ["Heterogeneity:"]
        if self.insufficient_studies:
            lines.append(f"  Not applicable ({self.n_studies} study)")
            return "\n".join(lines)
        lines.extend([
            f"  Q statistic: {self.q:.2f} (df={self.df}, {format_p_value(self.p_value)})",
            f"  I²: {self.i_squared:.1f}% ({self.interpretation})",
            f"  τ²: {self.tau_squared:.4f} ({self.tau_squared_method})",
            f"  H²: {self.h_squared:.2f}",
        ])
        if self.prediction_interval is not None:
            lo, hi = self.prediction_interval
            lines.append(f"  Prediction interval: [{lo:.4f}, {hi:.4f}]")
        for w in self.warnings:
            lines.append(f"  - {w}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "n_studies": self.n_studies,
            "q": self.q,
            "df": self.df,
            "p_value": self.p_value,
            "i_squared": self.i_squared,
            "tau_squared": self.tau_squared,
            "tau": self.tau,
            "h_squared": self.h_squared,
            "prediction_interval": list(self.prediction_interval) if self.prediction_interval else None,
            "tau_squared_method": self.tau_squared_method,
            "interpretation": self.interpretation,
            "recommended_model": self.recommended_model,
            "insufficient_studies": self.insufficient_studies,
            "measure": self.measure.value if self.measure is not None else None,
            "warnings": list(self.warnings),
        }


class HeterogeneityAnalyzer:
    """
    Computes heterogeneity statistics from a full set of effect sizes.

    Statistics are always recomputed from scratch for the studies given;
    there is no incremental update.
    """

    def assess(
        self,
        effect_sizes: Sequence[EffectSize],
        config: Optional[AnalysisConfig] = None
    ) -> HeterogeneityStats:
        """
        Assess heterogeneity.

        Args:
            effect_sizes: Effect sizes for one outcome
            config: Analysis configuration

        Returns:
            HeterogeneityStats (flagged insufficient_studies when k < 2)
        """
        config = resolve_config(config)
        y, se, measure, _ = stack_effect_sizes(effect_sizes, step="heterogeneity")
        k = len(y)
        method_name = config.tau_squared_method_name

        if k < 2:
            logger.debug("Heterogeneity not applicable for %d study", k)
            return HeterogeneityStats(
                n_studies=k,
                tau_squared_method=method_name,
                insufficient_studies=True,
                measure=measure,
                warnings=("Heterogeneity requires at least two studies",),
            )

        q_test = cochran_q_test(y, se)
        q, df, p_value = q_test["Q"], q_test["df"], q_test["p_value"]
        i_squared = compute_i_squared(q, df)
        h_squared = compute_h_squared(q, df)
        tau_squared = compute_tau_squared(y, se, config.tau_squared_method)

        prediction_interval = None
        if k >= config.min_studies_prediction:
            prediction_interval = self.prediction_interval(
                y, se, tau_squared, measure, config.confidence_level
            )

        warnings: List[str] = []
        if k < 5:
            warnings.append(f"Few studies ({k}); heterogeneity estimates are imprecise")
        if 0.05 <= p_value < 0.10:
            warnings.append("Borderline heterogeneity (0.05 <= p < 0.10)")
        if i_squared >= config.heterogeneity_threshold and p_value >= 0.10:
            warnings.append(
                f"I² = {i_squared:.1f}% but the Q test is not significant; interpret with caution"
            )

        recommended = "random" if i_squared >= config.heterogeneity_threshold else "fixed"

        logger.debug(
            "Heterogeneity: Q=%.3f df=%d I2=%.1f tau2=%.4f", q, df, i_squared, tau_squared
        )

        return HeterogeneityStats(
            n_studies=k,
            q=q,
            df=df,
            p_value=p_value,
            i_squared=i_squared,
            tau_squared=tau_squared,
            h_squared=h_squared,
            prediction_interval=prediction_interval,
            tau_squared_method=method_name,
            interpretation=interpret_i_squared(i_squared),
            recommended_model=recommended,
            insufficient_studies=False,
            measure=measure,
            warnings=tuple(warnings),
        )

    @staticmethod
    def prediction_interval(
        y: np.ndarray,
        se: np.ndarray,
        tau_squared: float,
        measure: Optional[EffectMeasure] = None,
        level: float = 0.95
    ) -> Tuple[float, float]:
        """
        Compute prediction interval for a new study.

        Args:
            y: Effect estimates (analysis scale)
            se: Standard errors
            tau_squared: Between-study variance
            measure: Effect measure (ratio measures are exponentiated)
            level: Confidence level

        Returns:
            Tuple of (lower, upper) bounds on display scale
        """
        weights = 1 / (se ** 2 + tau_squared)
        theta = np.sum(weights * y) / np.sum(weights)
        var_theta = 1 / np.sum(weights)

        # Prediction variance includes both estimation uncertainty and tau
        pred_se = np.sqrt(var_theta + tau_squared)

        # t-distribution with k-2 df (Higgins et al.)
        df = len(y) - 2
        t_crit = t_score(level, df)

        lower = theta - t_crit * pred_se
        upper = theta + t_crit * pred_se

        if measure is not None and measure.is_ratio_measure():
            return float(np.exp(lower)), float(np.exp(upper))
        return float(lower), float(upper)
