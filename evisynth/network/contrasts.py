"""
Pairwise Contrasts and Network Estimates for evisynth.

This module holds the relative effects that feed a network analysis:
pooled pairwise contrasts, and fixed-effect generalized least-squares
estimates of every treatment against a common reference.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Dict, Any, List, Mapping, Sequence, Tuple, Union
import numpy as np
import networkx as nx

from evisynth.core.config import AnalysisConfig, resolve_config
from evisynth.core.estimand import PoolingModel
from evisynth.core.exceptions import (
    InsufficientDataError,
    InsufficientStudiesError,
    NumericalInstabilityError,
)
from evisynth.core.study import EffectSize
from evisynth.models.pooling import PoolingEngine
from evisynth.utils import combine_estimates
from evisynth.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PairwiseContrast:
    """
    Direct evidence comparing two treatments.

    Attributes:
        treatment_a: Comparator treatment
        treatment_b: Treatment whose effect is reported
        estimate: Effect of treatment_b relative to treatment_a (analysis scale)
        se: Standard error of the estimate
        n_studies: Number of studies behind the contrast
    """

    treatment_a: str
    treatment_b: str
    estimate: float
    se: float
    n_studies: int = 1

    def __post_init__(self):
        if self.treatment_a == self.treatment_b:
            raise InsufficientDataError(
                "A contrast must compare two different treatments",
                {"treatment": self.treatment_a},
            )
        if not np.isfinite(self.estimate):
            raise InsufficientDataError(
                f"Contrast {self.key} has a non-finite estimate",
                {"comparison": self.key, "estimate": self.estimate},
            )
        if not np.isfinite(self.se) or self.se <= 0:
            raise NumericalInstabilityError(
                f"Contrast {self.key} needs a positive finite standard error",
                {"comparison": self.key, "se": self.se},
            )
        if self.n_studies < 1:
            raise InsufficientDataError(
                f"Contrast {self.key} must be informed by at least one study",
                {"comparison": self.key, "n_studies": self.n_studies},
            )

    @property
    def key(self) -> str:
        return f"{self.treatment_a}-{self.treatment_b}"

    @property
    def pair(self) -> Tuple[str, str]:
        """Treatments in sorted order."""
        return tuple(sorted((self.treatment_a, self.treatment_b)))

    @property
    def variance(self) -> float:
        return self.se ** 2

    def oriented(self, treatment_a: str, treatment_b: str) -> float:
        """Effect of treatment_b relative to treatment_a."""
        if (treatment_a, treatment_b) == (self.treatment_a, self.treatment_b):
            return self.estimate
        if (treatment_a, treatment_b) == (self.treatment_b, self.treatment_a):
            return -self.estimate
        raise InsufficientDataError(
            f"Contrast {self.key} does not compare {treatment_a} and {treatment_b}",
            {"comparison": self.key},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "treatment_a": self.treatment_a,
            "treatment_b": self.treatment_b,
            "estimate": self.estimate,
            "se": self.se,
            "n_studies": self.n_studies,
        }


@dataclass(frozen=True)
class TreatmentEffect:
    """
    Effect of a treatment against the common reference.

    The reference itself carries estimate 0 and se 0.
    """

    treatment: str
    estimate: float
    se: float

    def __post_init__(self):
        if not np.isfinite(self.estimate) or not np.isfinite(self.se) or self.se < 0:
            raise NumericalInstabilityError(
                f"Treatment effect for '{self.treatment}' is not finite",
                {"treatment": self.treatment, "estimate": self.estimate, "se": self.se},
            )

    def to_dict(self) -> Dict[str, Any]:
        return {"treatment": self.treatment, "estimate": self.estimate, "se": self.se}


def combine_contrasts(
    contrasts: Sequence[PairwiseContrast]
) -> Tuple[Tuple[PairwiseContrast, ...], List[str]]:
    """
    Merge repeated contrasts for the same pair by inverse-variance weighting.

    Args:
        contrasts: Contrasts, possibly with several per pair

    Returns:
        Tuple of (one contrast per pair, warnings)
    """
    grouped: Dict[Tuple[str, str], List[PairwiseContrast]] = {}
    for contrast in contrasts:
        if not isinstance(contrast, PairwiseContrast):
            raise InsufficientDataError(
                f"Expected PairwiseContrast, got {type(contrast).__name__}",
                {"step": "network contrasts"},
            )
        grouped.setdefault(contrast.pair, []).append(contrast)

    combined: List[PairwiseContrast] = []
    warnings: List[str] = []
    for (a, b), group in grouped.items():
        if len(group) == 1:
            combined.append(group[0])
            continue
        estimate, variance = group[0].oriented(a, b), group[0].variance
        for contrast in group[1:]:
            estimate, variance = combine_estimates(
                estimate, variance, contrast.oriented(a, b), contrast.variance
            )
        combined.append(PairwiseContrast(
            treatment_a=a,
            treatment_b=b,
            estimate=estimate,
            se=float(np.sqrt(variance)),
            n_studies=sum(c.n_studies for c in group),
        ))
        warnings.append(f"{len(group)} contrasts for {a}-{b} combined by inverse variance")
    return tuple(combined), warnings


def contrast_graph(contrasts: Sequence[PairwiseContrast]) -> nx.Graph:
    """Undirected graph with one edge per contrast, the contrast stored on the edge."""
    graph = nx.Graph()
    for contrast in contrasts:
        graph.add_edge(contrast.treatment_a, contrast.treatment_b, contrast=contrast)
    return graph


def gls_estimates(
    contrasts: Sequence[PairwiseContrast],
    reference: str
) -> Tuple[List[str], np.ndarray, np.ndarray]:
    """
    Fixed-effect network estimates by generalized least squares.

    Each contrast is one row of the design matrix with +1 for treatment_b
    and -1 for treatment_a; the reference column is dropped so its effect
    is fixed at zero.

    Args:
        contrasts: One contrast per compared pair
        reference: Reference treatment

    Returns:
        Tuple of (non-reference treatments, estimates, covariance matrix)
    """
    graph = contrast_graph(contrasts)
    if reference not in graph:
        raise InsufficientDataError(
            f"Reference treatment '{reference}' is not in the network",
            {"reference": reference, "treatments": sorted(graph.nodes)},
        )
    if not nx.is_connected(graph):
        unreachable = sorted(set(graph.nodes) - nx.node_connected_component(graph, reference))
        raise InsufficientStudiesError(
            "Network is disconnected; some treatments cannot be compared with the reference",
            required=1,
            available=0,
            details={"reference": reference, "unreachable": unreachable},
        )

    others = sorted(t for t in graph.nodes if t != reference)
    index = {t: i for i, t in enumerate(others)}

    X = np.zeros((len(contrasts), len(others)))
    y = np.zeros(len(contrasts))
    w = np.zeros(len(contrasts))
    for row, contrast in enumerate(contrasts):
        if contrast.treatment_b in index:
            X[row, index[contrast.treatment_b]] = 1.0
        if contrast.treatment_a in index:
            X[row, index[contrast.treatment_a]] = -1.0
        y[row] = contrast.estimate
        w[row] = 1 / contrast.variance

    XtWX = X.T @ (w[:, None] * X)
    XtWy = X.T @ (w * y)
    try:
        beta = np.linalg.solve(XtWX, XtWy)
        cov = np.linalg.inv(XtWX)
    except np.linalg.LinAlgError as exc:
        raise NumericalInstabilityError(
            "Network design matrix is singular",
            {"step": "network estimates", "reference": reference},
        ) from exc

    return others, beta, cov


def network_estimates(
    contrasts: Sequence[PairwiseContrast],
    reference: str,
    config: Optional[AnalysisConfig] = None
) -> Tuple[TreatmentEffect, ...]:
    """
    Estimate every treatment against a common reference.

    Args:
        contrasts: Pairwise contrasts (repeated pairs are combined first)
        reference: Reference treatment
        config: Analysis configuration

    Returns:
        Tuple of TreatmentEffect, reference first
    """
    resolve_config(config)
    combined, _ = combine_contrasts(contrasts)
    if not combined:
        raise InsufficientStudiesError(
            "Network estimates need at least one contrast",
            required=1,
            available=0,
            details={"step": "network estimates"},
        )
    others, beta, cov = gls_estimates(combined, reference)
    variances = np.diag(cov)
    if np.any(variances <= 0) or not np.all(np.isfinite(beta)):
        raise NumericalInstabilityError(
            "Network estimates have non-positive variance",
            {"step": "network estimates", "reference": reference},
        )

    logger.debug("Network estimates for %d treatments vs %s", len(others), reference)

    effects = [TreatmentEffect(reference, 0.0, 0.0)]
    effects.extend(
        TreatmentEffect(t, float(b), float(np.sqrt(v)))
        for t, b, v in zip(others, beta, variances)
    )
    return tuple(effects)


def pairwise_contrasts(
    comparisons: Mapping[Tuple[str, str], Sequence[EffectSize]],
    config: Optional[AnalysisConfig] = None,
    model: Union[str, PoolingModel] = "auto",
    engine: Optional[PoolingEngine] = None
) -> Tuple[PairwiseContrast, ...]:
    """
    Build contrasts from per-comparison effect sizes.

    Args:
        comparisons: Mapping (treatment_a, treatment_b) -> effect sizes of b vs a
        config: Analysis configuration
        model: Pooling model for comparisons with several studies
        engine: PoolingEngine to use

    Returns:
        One PairwiseContrast per comparison
    """
    config = resolve_config(config)
    engine = engine or PoolingEngine()
    contrasts = []
    for (a, b), effect_sizes in comparisons.items():
        effect_sizes = list(effect_sizes)
        if not effect_sizes:
            raise InsufficientStudiesError(
                f"Comparison {a}-{b} has no studies",
                required=1,
                available=0,
                details={"comparison": f"{a}-{b}"},
            )
        if len(effect_sizes) == 1:
            es = effect_sizes[0]
            contrasts.append(PairwiseContrast(a, b, es.yi, es.se, 1))
            continue
        pooled = engine.pool(effect_sizes, model, config)
        contrasts.append(PairwiseContrast(a, b, pooled.yi, pooled.se, len(effect_sizes)))
    return tuple(contrasts)
