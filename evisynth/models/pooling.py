"""
Pooling Engine for evisynth.

This module combines study effect sizes into a single summary estimate
under a fixed-effect, random-effects or automatically selected model.
"""

from __future__ import annotations
from typing import Optional, List, Sequence, Tuple, Union
import numpy as np

from evisynth.core.config import AnalysisConfig, resolve_config
from evisynth.core.estimand import PoolingModel
from evisynth.core.exceptions import InsufficientStudiesError, NumericalInstabilityError
from evisynth.core.study import EffectSize, stack_effect_sizes
from evisynth.diagnostics.heterogeneity import HeterogeneityAnalyzer, HeterogeneityStats
from evisynth.models.base import (
    PooledResult,
    StudyWeight,
    inverse_variance_weights,
    pooled_estimate_random,
)
from evisynth.utils import ci_from_se, p_value_from_z
from evisynth.utils.logging import get_logger

logger = get_logger(__name__)


def select_model(
    heterogeneity: HeterogeneityStats,
    threshold: float
) -> Tuple[PoolingModel, str]:
    """
    Choose between fixed and random effects from I².

    Fixed effect is used when I² is below the threshold, random effects
    otherwise.

    Args:
        heterogeneity: Heterogeneity statistics for the studies
        threshold: I² threshold in percent

    Returns:
        Tuple of (model, reason)
    """
    i_sq = heterogeneity.i_squared
    if i_sq is None:
        return PoolingModel.FIXED, "Fixed-effect model selected: heterogeneity is not estimable"
    if i_sq < threshold:
        return (
            PoolingModel.FIXED,
            f"Fixed-effect model selected due to low heterogeneity "
            f"(I² = {i_sq:.1f}% < {threshold:g}%)",
        )
    return (
        PoolingModel.RANDOM,
        f"Random-effects model selected due to moderate/high heterogeneity "
        f"(I² = {i_sq:.1f}% >= {threshold:g}%)",
    )


class PoolingEngine:
    """
    Inverse-variance pooling of effect sizes.

    The engine is stateless: heterogeneity is recomputed for every call
    and all thresholds come from the AnalysisConfig argument.
    """

    def __init__(self, heterogeneity_analyzer: Optional[HeterogeneityAnalyzer] = None):
        self.heterogeneity_analyzer = heterogeneity_analyzer or HeterogeneityAnalyzer()

    def pool(
        self,
        effect_sizes: Sequence[EffectSize],
        model: Union[str, PoolingModel] = "auto",
        config: Optional[AnalysisConfig] = None
    ) -> PooledResult:
        """
        Pool effect sizes into one summary estimate.

        Args:
            effect_sizes: Effect sizes for one outcome
            model: 'fixed', 'random' or 'auto'
            config: Analysis configuration

        Returns:
            PooledResult
        """
        config = resolve_config(config)
        model = PoolingModel.from_string(model)
        effect_sizes = list(effect_sizes)
        y, se, measure, study_ids = stack_effect_sizes(effect_sizes, step="pooling")
        k = len(y)

        if k < config.min_studies_pooling:
            raise InsufficientStudiesError(
                f"Pooling requires at least {config.min_studies_pooling} studies, got {k}",
                required=config.min_studies_pooling,
                available=k,
                details={"step": "pooling"},
            )

        heterogeneity = self.heterogeneity_analyzer.assess(effect_sizes, config)

        if model is PoolingModel.AUTO:
            model, reason = select_model(heterogeneity, config.heterogeneity_threshold)
            logger.info("Auto model selection: %s", reason)
        elif model is PoolingModel.FIXED:
            reason = "Fixed-effect model requested"
        else:
            reason = "Random-effects model requested"

        tau_squared = heterogeneity.tau_squared if model is PoolingModel.RANDOM else 0.0
        variances = se ** 2

        try:
            yi, var_pooled = pooled_estimate_random(y, variances, tau_squared)
            raw_weights = inverse_variance_weights(variances, tau_squared)
        except NumericalInstabilityError as exc:
            raise NumericalInstabilityError(
                f"Pooling failed under the {model.value} model: {exc.message}",
                {**exc.details, "step": "pooling", "model": model.value, "study_ids": list(study_ids)},
            ) from exc

        se_pooled = float(np.sqrt(var_pooled))
        if not np.isfinite(se_pooled) or se_pooled <= 0:
            raise NumericalInstabilityError(
                "Pooled standard error is not positive and finite",
                {"step": "pooling", "model": model.value, "se": se_pooled},
            )

        normalized = raw_weights / np.sum(raw_weights)
        weights = tuple(
            StudyWeight(study_id=sid, weight=float(w), raw_weight=float(rw))
            for sid, w, rw in zip(study_ids, normalized, raw_weights)
        )

        z_value = yi / se_pooled
        p_value = p_value_from_z(z_value)
        log_scale = measure.is_ratio_measure()
        ci_lower, ci_upper = ci_from_se(yi, se_pooled, config.confidence_level, log_scale=log_scale)

        warnings: List[str] = []
        if k < 3:
            warnings.append(f"Very few studies ({k}); pooled estimate may be unreliable")
        elif k < 5:
            warnings.append(f"Few studies ({k}); interpret with caution")
        if tau_squared > 1:
            warnings.append(f"Large between-study variance (τ² = {tau_squared:.2f})")

        logger.debug(
            "Pooled %s (%s): yi=%.4f se=%.4f tau2=%.4f", measure.value, model.value, yi, se_pooled, tau_squared
        )

        return PooledResult(
            model=model.value,
            measure=measure,
            estimate=measure.to_display_scale(yi),
            ci_lower=ci_lower,
            ci_upper=ci_upper,
            yi=yi,
            se=se_pooled,
            z_value=float(z_value),
            p_value=p_value,
            weights=weights,
            tau_squared=float(tau_squared),
            tau_squared_method=config.tau_squared_method_name,
            model_reason=reason,
            heterogeneity=heterogeneity,
            ci_level=config.confidence_level,
            warnings=tuple(warnings),
        )

    def pool_fixed(
        self,
        effect_sizes: Sequence[EffectSize],
        config: Optional[AnalysisConfig] = None
    ) -> PooledResult:
        """Pool under the fixed-effect model."""
        return self.pool(effect_sizes, PoolingModel.FIXED, config)

    def pool_random(
        self,
        effect_sizes: Sequence[EffectSize],
        config: Optional[AnalysisConfig] = None
    ) -> PooledResult:
        """Pool under the random-effects model."""
        return self.pool(effect_sizes, PoolingModel.RANDOM, config)
