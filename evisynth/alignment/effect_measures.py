"""
Effect Size Computation for evisynth.

This module converts raw per-study results (2x2 tables, arm means and SDs,
or reported estimates) into a common effect metric with its standard error.

Each measure is a pure formula function registered in a lookup table keyed
by EffectMeasure; the calculator validates inputs, applies the continuity
correction where needed, and dispatches through the table.
"""

from __future__ import annotations
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union
import math

from evisynth.core.config import AnalysisConfig, resolve_config
from evisynth.core.estimand import EffectMeasure
from evisynth.core.exceptions import (
    ConfigurationError,
    InsufficientDataError,
    NumericalInstabilityError,
    SynthesisError,
)
from evisynth.core.study import EffectSize, StudyObservation, _is_integer
from evisynth.utils.logging import get_logger

logger = get_logger(__name__)


BinaryFormula = Callable[[float, float, float, float], Tuple[float, float]]
ContinuousFormula = Callable[[int, float, float, int, float, float], Tuple[float, float]]


# ============================================================================
# Binary Outcome Formulas
# ============================================================================

def log_odds_ratio(a: float, b: float, c: float, d: float) -> Tuple[float, float]:
    """
    Log odds ratio and its standard error.

    Args:
        a: Treatment events
        b: Treatment non-events
        c: Control events
        d: Control non-events

    Returns:
        Tuple of (log OR, SE of log OR)
    """
    yi = math.log((a * d) / (b * c))
    se = math.sqrt(1 / a + 1 / b + 1 / c + 1 / d)
    return yi, se


def log_risk_ratio(a: float, b: float, c: float, d: float) -> Tuple[float, float]:
    """
    Log risk ratio and its standard error.

    SE(log RR) = sqrt(1/a - 1/n1 + 1/c - 1/n2).
    """
    n1 = a + b
    n2 = c + d
    yi = math.log((a / n1) / (c / n2))
    se = math.sqrt(1 / a - 1 / n1 + 1 / c - 1 / n2)
    return yi, se


def risk_difference(a: float, b: float, c: float, d: float) -> Tuple[float, float]:
    """Risk difference p1 - p2 with its Wald standard error."""
    n1 = a + b
    n2 = c + d
    p1 = a / n1
    p2 = c / n2
    yi = p1 - p2
    se = math.sqrt(p1 * (1 - p1) / n1 + p2 * (1 - p2) / n2)
    return yi, se


# ============================================================================
# Continuous Outcome Formulas
# ============================================================================

def mean_difference(
    n1: int, m1: float, sd1: float,
    n2: int, m2: float, sd2: float
) -> Tuple[float, float]:
    """Raw mean difference m1 - m2 with SE sqrt(sd1²/n1 + sd2²/n2)."""
    yi = m1 - m2
    se = math.sqrt(sd1 ** 2 / n1 + sd2 ** 2 / n2)
    return yi, se


def pooled_sd(n1: int, sd1: float, n2: int, sd2: float) -> float:
    """Pooled within-group standard deviation."""
    return math.sqrt(((n1 - 1) * sd1 ** 2 + (n2 - 1) * sd2 ** 2) / (n1 + n2 - 2))


def hedges_correction(n1: int, n2: int) -> float:
    """Small-sample correction factor J = 1 - 3 / (4·df - 1)."""
    df = n1 + n2 - 2
    return 1 - 3 / (4 * df - 1)


def hedges_g(
    n1: int, m1: float, sd1: float,
    n2: int, m2: float, sd2: float
) -> Tuple[float, float]:
    """
    Standardized mean difference with Hedges' small-sample correction.

    Args:
        n1: Treatment sample size
        m1: Treatment mean
        sd1: Treatment SD
        n2: Control sample size
        m2: Control mean
        sd2: Control SD

    Returns:
        Tuple of (g, SE of g)
    """
    sd_pooled = pooled_sd(n1, sd1, n2, sd2)
    d = (m1 - m2) / sd_pooled
    g = hedges_correction(n1, n2) * d
    se = math.sqrt((n1 + n2) / (n1 * n2) + g ** 2 / (2 * (n1 + n2)))
    return g, se


BINARY_FORMULAS: Dict[EffectMeasure, BinaryFormula] = {
    EffectMeasure.ODDS_RATIO: log_odds_ratio,
    EffectMeasure.RISK_RATIO: log_risk_ratio,
    EffectMeasure.RISK_DIFFERENCE: risk_difference,
}

CONTINUOUS_FORMULAS: Dict[EffectMeasure, ContinuousFormula] = {
    EffectMeasure.MEAN_DIFFERENCE: mean_difference,
    EffectMeasure.STANDARDIZED_MEAN_DIFFERENCE: hedges_g,
}

# Measures whose formulas divide by cell counts
CONTINUITY_CORRECTED = frozenset({EffectMeasure.ODDS_RATIO, EffectMeasure.RISK_RATIO})


def _lookup(
    table: Dict[EffectMeasure, Callable],
    measure: EffectMeasure,
    kind: str,
    study_id: str = ""
) -> Callable:
    try:
        return table[measure]
    except KeyError:
        raise ConfigurationError(
            f"{measure.value} cannot be computed from {kind} data",
            {
                "study_id": study_id,
                "step": "measure dispatch",
                "measure": measure.value,
                "allowed": [m.value for m in table],
            },
        ) from None


class EffectSizeCalculator:
    """
    Computes per-study effect sizes on a common metric.

    The calculator holds no state; thresholds such as the continuity
    correction and confidence level come from the AnalysisConfig passed
    to each call.
    """

    def compute_binary(
        self,
        a: int,
        b: int,
        c: int,
        d: int,
        measure: Union[str, EffectMeasure],
        study_id: str = "",
        config: Optional[AnalysisConfig] = None,
    ) -> EffectSize:
        """
        Compute an effect size from a 2x2 table.

        Args:
            a: Treatment events
            b: Treatment non-events
            c: Control events
            d: Control non-events
            measure: 'OR', 'RR' or 'RD'
            study_id: Study identifier (used in error context)
            config: Analysis configuration

        Returns:
            EffectSize with CI built on the analysis scale
        """
        config = resolve_config(config)
        measure = EffectMeasure.from_string(measure)
        formula = _lookup(BINARY_FORMULAS, measure, "binary", study_id)

        cells = (a, b, c, d)
        for name, value in zip(("a", "b", "c", "d"), cells):
            if value is None:
                raise InsufficientDataError(
                    f"Cell {name} of the 2x2 table is missing",
                    {"study_id": study_id, "cell": name},
                )
            if not _is_integer(value) or value < 0:
                raise InsufficientDataError(
                    f"Cell {name} must be a non-negative integer, got {value}",
                    {"study_id": study_id, "cell": name},
                )
        if a + b == 0 or c + d == 0:
            raise InsufficientDataError(
                "Both arms must contain at least one participant",
                {"study_id": study_id, "cells": cells},
            )

        notes: List[str] = []
        corrected = False
        values = tuple(float(v) for v in cells)
        if measure in CONTINUITY_CORRECTED and min(cells) == 0:
            cc = config.continuity_correction
            values = tuple(v + cc for v in values)
            corrected = True
            notes.append(f"Continuity correction of {cc} added to all cells (zero cell present)")
            if a == 0 and c == 0:
                notes.append("No events in either arm; estimate driven by the continuity correction")
            logger.debug("Continuity correction applied to study %s", study_id)

        yi, se = self._apply(formula, values, measure, study_id, "binary effect size")

        if a + b + c + d < 30:
            notes.append("Small sample size (<30); estimate may be imprecise")

        return EffectSize.from_analysis_scale(
            yi, se, measure,
            study_id=study_id,
            corrected=corrected,
            level=config.confidence_level,
            warnings=tuple(notes),
        )

    def compute_continuous(
        self,
        n1: int,
        m1: float,
        sd1: float,
        n2: int,
        m2: float,
        sd2: float,
        measure: Union[str, EffectMeasure],
        study_id: str = "",
        config: Optional[AnalysisConfig] = None,
    ) -> EffectSize:
        """
        Compute an effect size from arm means and SDs.

        Args:
            n1: Treatment sample size
            m1: Treatment mean
            sd1: Treatment SD
            n2: Control sample size
            m2: Control mean
            sd2: Control SD
            measure: 'MD' or 'SMD'
            study_id: Study identifier (used in error context)
            config: Analysis configuration

        Returns:
            EffectSize on the natural scale
        """
        config = resolve_config(config)
        measure = EffectMeasure.from_string(measure)
        formula = _lookup(CONTINUOUS_FORMULAS, measure, "continuous", study_id)

        named = {"n1": n1, "m1": m1, "sd1": sd1, "n2": n2, "m2": m2, "sd2": sd2}
        missing = [name for name, value in named.items() if value is None]
        if missing:
            raise InsufficientDataError(
                f"Missing continuous inputs: {', '.join(missing)}",
                {"study_id": study_id, "missing": missing},
            )
        for name in ("n1", "n2"):
            if not _is_integer(named[name]) or named[name] <= 0:
                raise InsufficientDataError(
                    f"Sample size {name} must be a positive integer, got {named[name]}",
                    {"study_id": study_id, "field": name},
                )
        for name in ("sd1", "sd2"):
            if not (math.isfinite(named[name]) and named[name] > 0):
                raise InsufficientDataError(
                    f"Standard deviation {name} must be positive, got {named[name]}",
                    {"study_id": study_id, "field": name},
                )
        for name in ("m1", "m2"):
            if not math.isfinite(named[name]):
                raise InsufficientDataError(
                    f"Mean {name} must be finite, got {named[name]}",
                    {"study_id": study_id, "field": name},
                )
        if measure is EffectMeasure.STANDARDIZED_MEAN_DIFFERENCE and n1 + n2 < 3:
            raise InsufficientDataError(
                "A pooled SD needs at least three participants in total",
                {"study_id": study_id, "n1": n1, "n2": n2},
            )

        notes: List[str] = []
        sd_ratio = sd1 / sd2
        if sd_ratio > 2 or sd_ratio < 0.5:
            notes.append(f"Unequal variances (SD ratio {sd_ratio:.2f})")
        if n1 + n2 < 30:
            notes.append("Small sample size (<30); estimate may be imprecise")

        yi, se = self._apply(
            formula, (int(n1), float(m1), float(sd1), int(n2), float(m2), float(sd2)),
            measure, study_id, "continuous effect size",
        )
        return EffectSize.from_analysis_scale(
            yi, se, measure,
            study_id=study_id,
            level=config.confidence_level,
            warnings=tuple(notes),
        )

    def compute(
        self,
        observation: StudyObservation,
        measure: Optional[Union[str, EffectMeasure]] = None,
        config: Optional[AnalysisConfig] = None,
    ) -> EffectSize:
        """
        Compute the effect size for one study observation.

        Args:
            observation: Study data
            measure: Target measure (defaults to the observation's own measure)
            config: Analysis configuration

        Returns:
            EffectSize
        """
        config = resolve_config(config)
        if observation.insufficient_data:
            raise InsufficientDataError(
                f"Study '{observation.study_id}' is flagged as having insufficient data",
                {"study_id": observation.study_id},
            )
        if measure is None:
            measure = observation.measure
        if measure is None:
            raise ConfigurationError(
                "No effect measure requested",
                {"study_id": observation.study_id},
            )
        measure = EffectMeasure.from_string(measure)

        data_type = observation.data_type
        if data_type == "binary":
            return self.compute_binary(
                observation.events_treatment,
                observation.n_treatment - observation.events_treatment,
                observation.events_control,
                observation.n_control - observation.events_control,
                measure,
                study_id=observation.study_id,
                config=config,
            )
        if data_type == "continuous":
            return self.compute_continuous(
                observation.n_treatment, observation.mean_treatment, observation.sd_treatment,
                observation.n_control, observation.mean_control, observation.sd_control,
                measure,
                study_id=observation.study_id,
                config=config,
            )

        if observation.measure is not None and observation.measure is not measure:
            raise ConfigurationError(
                f"Reported {observation.measure.value} cannot be converted to {measure.value}",
                {"study_id": observation.study_id},
            )
        return EffectSize.from_estimate(
            observation.effect,
            measure,
            study_id=observation.study_id,
            se=observation.se,
            ci_lower=observation.ci_lower,
            ci_upper=observation.ci_upper,
            level=config.confidence_level,
        )

    def compute_many(
        self,
        observations: Iterable[StudyObservation],
        measure: Optional[Union[str, EffectMeasure]] = None,
        config: Optional[AnalysisConfig] = None,
    ) -> Tuple[EffectSize, ...]:
        """
        Compute effect sizes for a set of studies on one outcome.

        Study identifiers must be unique. The first invalid study aborts the
        whole batch; nothing is skipped silently.
        """
        results: List[EffectSize] = []
        seen = set()
        for observation in observations:
            if observation.study_id in seen:
                raise InsufficientDataError(
                    f"Duplicate study identifier '{observation.study_id}'",
                    {"study_id": observation.study_id},
                )
            seen.add(observation.study_id)
            try:
                results.append(self.compute(observation, measure, config))
            except (InsufficientDataError, NumericalInstabilityError, ConfigurationError) as exc:
                details = dict(exc.details)
                details["study_id"] = observation.study_id
                details.setdefault("step", "effect size")
                raise type(exc)(
                    f"Study '{observation.study_id}' failed: {exc.message}", details
                ) from exc

        measures = {es.measure for es in results}
        if len(measures) > 1:
            raise ConfigurationError(
                "Studies resolved to different effect measures",
                {"measures": sorted(m.value for m in measures)},
            )
        logger.debug("Computed %d effect sizes", len(results))
        return tuple(results)

    @staticmethod
    def _apply(
        formula: Callable,
        values: tuple,
        measure: EffectMeasure,
        study_id: str,
        step: str,
    ) -> Tuple[float, float]:
        try:
            yi, se = formula(*values)
        except SynthesisError:
            raise
        except (ZeroDivisionError, ValueError, OverflowError) as exc:
            raise NumericalInstabilityError(
                f"Could not compute {measure.value} for study '{study_id}': {exc}",
                {"study_id": study_id, "step": step, "measure": measure.value},
            ) from exc
        if not (math.isfinite(yi) and math.isfinite(se) and se > 0):
            raise NumericalInstabilityError(
                f"Degenerate {measure.value} for study '{study_id}' (estimate={yi}, se={se})",
                {"study_id": study_id, "step": step, "measure": measure.value},
            )
        return yi, se
