"""
Utility functions for evisynth.

This module provides statistical utilities and formatting helpers
used throughout the evisynth package.
"""

from __future__ import annotations
from typing import Optional, Tuple
import numpy as np
from scipy import stats


# ============================================================================
# Statistical Utilities
# ============================================================================

def z_score(level: float = 0.95) -> float:
    """
    Get z-score for a confidence level.

    Args:
        level: Confidence level (0 to 1)

    Returns:
        z-score for two-tailed confidence interval
    """
    return float(stats.norm.ppf((1 + level) / 2))


def t_score(level: float, df: int) -> float:
    """Two-tailed t critical value for a confidence level."""
    return float(stats.t.ppf((1 + level) / 2, df))


def se_from_ci(
    ci_lower: float,
    ci_upper: float,
    level: float = 0.95,
    log_scale: bool = False
) -> float:
    """
    Compute standard error from confidence interval.

    Args:
        ci_lower: Lower CI bound
        ci_upper: Upper CI bound
        level: Confidence level
        log_scale: Whether the interval is for a ratio (SE returned on log scale)

    Returns:
        Standard error
    """
    z = z_score(level)

    if log_scale:
        return float((np.log(ci_upper) - np.log(ci_lower)) / (2 * z))
    else:
        return float((ci_upper - ci_lower) / (2 * z))


def ci_from_se(
    estimate: float,
    se: float,
    level: float = 0.95,
    log_scale: bool = False
) -> Tuple[float, float]:
    """
    Compute confidence interval from standard error.

    The interval is always built on the analysis scale; for ratio
    measures the bounds are exponentiated afterwards.

    Args:
        estimate: Point estimate (on log scale when log_scale is True)
        se: Standard error
        level: Confidence level
        log_scale: Whether estimate is on log scale

    Returns:
        Tuple of (ci_lower, ci_upper)
    """
    z = z_score(level)
    lower = estimate - z * se
    upper = estimate + z * se

    if log_scale:
        return float(np.exp(lower)), float(np.exp(upper))
    return float(lower), float(upper)


def p_value_from_z(z: float, two_tailed: bool = True) -> float:
    """
    Compute p-value from z-score.

    Args:
        z: z-score
        two_tailed: Use two-tailed test

    Returns:
        p-value
    """
    if two_tailed:
        return float(2 * stats.norm.sf(abs(z)))
    else:
        return float(stats.norm.sf(z))


def p_value_from_t(t: float, df: int) -> float:
    """Two-tailed p-value for a t statistic."""
    return float(2 * stats.t.sf(abs(t), df))


def combine_estimates(
    estimate1: float,
    var1: float,
    estimate2: float,
    var2: float
) -> Tuple[float, float]:
    """
    Combine two independent estimates.

    Args:
        estimate1: First estimate
        var1: Variance of first estimate
        estimate2: Second estimate
        var2: Variance of second estimate

    Returns:
        Tuple of (combined_estimate, combined_variance)
    """
    w1 = 1 / var1
    w2 = 1 / var2

    combined = (w1 * estimate1 + w2 * estimate2) / (w1 + w2)
    combined_var = 1 / (w1 + w2)

    return float(combined), float(combined_var)


# ============================================================================
# Formatting Utilities
# ============================================================================

def format_p_value(p: Optional[float], threshold: float = 0.001) -> str:
    """Format p-value with appropriate precision."""
    if p is None:
        return "p = n/a"
    if p < threshold:
        return f"p < {threshold}"
    return f"p = {p:.3f}"
