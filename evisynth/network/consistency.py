"""
Consistency Assessment for evisynth.

This module checks whether direct and indirect evidence in a treatment
network agree. Three views are provided:

- loop inconsistency factors for every closed loop of comparisons,
- node-splitting of each direct comparison against the indirect
  estimate from the rest of the network,
- a global chi-squared test over all loops.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from itertools import islice
from typing import Optional, Dict, Any, List, Sequence, Tuple
import numpy as np
import networkx as nx
from scipy import stats

from evisynth.core.config import AnalysisConfig, resolve_config
from evisynth.core.exceptions import InsufficientStudiesError
from evisynth.network.contrasts import (
    PairwiseContrast,
    combine_contrasts,
    contrast_graph,
    gls_estimates,
)
from evisynth.utils import format_p_value, p_value_from_z
from evisynth.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class LoopInconsistency:
    """
    Inconsistency around one closed loop.

    The inconsistency factor is the sum of the contrasts followed around
    the loop; it is zero when direct and indirect evidence agree.
    """

    treatments: Tuple[str, ...]
    inconsistency_factor: float
    se: float
    z: float
    p_value: float
    is_inconsistent: bool

    @property
    def label(self) -> str:
        return "-".join(self.treatments + self.treatments[:1])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "loop": self.label,
            "treatments": list(self.treatments),
            "inconsistency_factor": self.inconsistency_factor,
            "se": self.se,
            "z": self.z,
            "p_value": self.p_value,
            "is_inconsistent": self.is_inconsistent,
        }


@dataclass(frozen=True)
class NodeSplit:
    """
    Direct versus indirect evidence for one comparison.

    indirect is None when the comparison is the only path between the two
    treatments.
    """

    treatment_a: str
    treatment_b: str
    direct: float
    direct_se: float
    indirect: Optional[float] = None
    indirect_se: Optional[float] = None
    difference: Optional[float] = None
    difference_se: Optional[float] = None
    z: Optional[float] = None
    p_value: Optional[float] = None
    is_inconsistent: bool = False

    @property
    def has_indirect(self) -> bool:
        return self.indirect is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "comparison": f"{self.treatment_a}-{self.treatment_b}",
            "direct": self.direct,
            "direct_se": self.direct_se,
            "indirect": self.indirect,
            "indirect_se": self.indirect_se,
            "difference": self.difference,
            "difference_se": self.difference_se,
            "z": self.z,
            "p_value": self.p_value,
            "is_inconsistent": self.is_inconsistent,
        }


@dataclass(frozen=True)
class ConsistencyResult:
    """
    Network consistency assessment.

    Attributes:
        loops: Inconsistency factor per closed loop
        node_splits: Direct vs indirect comparison per edge
        chi_squared: Global statistic, sum of squared loop z-values
        df: Degrees of freedom (number of loops)
        p_value: Global test p-value (None without loops)
        is_consistent: False when the global test is significant
        n_inconsistent_loops: Loops flagged at the loop alpha
        severity: 'none', 'mild', 'moderate' or 'severe'
        interpretation: Plain-language summary
        recommendations: Suggested follow-up
        warnings: Any warnings generated
    """

    loops: Tuple[LoopInconsistency, ...]
    node_splits: Tuple[NodeSplit, ...]
    chi_squared: Optional[float]
    df: int
    p_value: Optional[float]
    is_consistent: bool
    n_inconsistent_loops: int
    severity: str
    interpretation: str
    recommendations: Tuple[str, ...] = field(default_factory=tuple)
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def n_loops(self) -> int:
        return len(self.loops)

    @property
    def inconsistent_loops(self) -> Tuple[LoopInconsistency, ...]:
        return tuple(loop for loop in self.loops if loop.is_inconsistent)

    def summary_table(self) -> str:
        """Generate summary table as string."""
        lines = [
            "=" * 60,
            "Network Consistency",
            "=" * 60,
        ]
        if self.p_value is None:
            lines.append("Global test: not applicable (no closed loops)")
        else:
            lines.append(
                f"Global test: χ² = {self.chi_squared:.2f} (df={self.df}, {format_p_value(self.p_value)})"
            )
        lines.append(f"Inconsistent loops: {self.n_inconsistent_loops}/{self.n_loops} ({self.severity})")
        for loop in self.loops:
            flag = " *" if loop.is_inconsistent else ""
            lines.append(
                f"  {loop.label}: IF = {loop.inconsistency_factor:.3f} "
                f"(SE {loop.se:.3f}, {format_p_value(loop.p_value)}){flag}"
            )
        lines.append("")
        lines.append(self.interpretation)
        lines.append("=" * 60)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "loops": [loop.to_dict() for loop in self.loops],
            "node_splits": [split.to_dict() for split in self.node_splits],
            "chi_squared": self.chi_squared,
            "df": self.df,
            "p_value": self.p_value,
            "is_consistent": self.is_consistent,
            "n_loops": self.n_loops,
            "n_inconsistent_loops": self.n_inconsistent_loops,
            "severity": self.severity,
            "interpretation": self.interpretation,
            "recommendations": list(self.recommendations),
            "warnings": list(self.warnings),
        }


def _canonical_loop(cycle: Sequence[str]) -> Tuple[str, ...]:
    # Start at the smallest treatment and walk towards its smaller neighbour
    nodes = list(cycle)
    start = nodes.index(min(nodes))
    nodes = nodes[start:] + nodes[:start]
    if len(nodes) > 2 and nodes[-1] < nodes[1]:
        nodes = [nodes[0]] + nodes[:0:-1]
    return tuple(nodes)


def find_loops(
    graph: nx.Graph,
    max_length: int = 3,
    max_loops: int = 1000
) -> Tuple[List[Tuple[str, ...]], bool]:
    """
    Enumerate closed loops in the comparison graph.

    Args:
        graph: Undirected comparison graph
        max_length: Longest loop to consider
        max_loops: Stop after this many loops

    Returns:
        Tuple of (loops in canonical order, whether enumeration was truncated)
    """
    seen = set()
    loops: List[Tuple[str, ...]] = []
    truncated = False
    for cycle in nx.simple_cycles(graph, length_bound=max_length):
        if len(cycle) < 3:
            continue
        loop = _canonical_loop(cycle)
        if loop in seen:
            continue
        if len(loops) >= max_loops:
            truncated = True
            break
        seen.add(loop)
        loops.append(loop)
    return sorted(loops), truncated


def loop_inconsistency(
    loop: Sequence[str],
    graph: nx.Graph,
    alpha: float = 0.10
) -> LoopInconsistency:
    """
    Inconsistency factor for one loop.

    For the loop A-B-C the factor is d_AB + d_BC - d_AC, with variance
    equal to the sum of the three contrast variances.
    """
    factor = 0.0
    variance = 0.0
    for i, a in enumerate(loop):
        b = loop[(i + 1) % len(loop)]
        contrast: PairwiseContrast = graph.edges[a, b]["contrast"]
        factor += contrast.oriented(a, b)
        variance += contrast.variance
    se = float(np.sqrt(variance))
    z = factor / se
    p_value = p_value_from_z(z)
    return LoopInconsistency(
        treatments=tuple(loop),
        inconsistency_factor=float(factor),
        se=se,
        z=float(z),
        p_value=p_value,
        is_inconsistent=p_value < alpha,
    )


def node_split(
    contrast: PairwiseContrast,
    contrasts: Sequence[PairwiseContrast],
    alpha: float = 0.10
) -> NodeSplit:
    """
    Compare a direct contrast with the network estimate that excludes it.

    Args:
        contrast: The direct comparison to split off
        contrasts: All contrasts in the network (one per pair)
        alpha: Significance level for flagging

    Returns:
        NodeSplit
    """
    a, b = contrast.treatment_a, contrast.treatment_b
    rest = [c for c in contrasts if c.pair != contrast.pair]
    graph = contrast_graph(rest)
    if a not in graph or b not in graph or not nx.has_path(graph, a, b):
        return NodeSplit(a, b, contrast.estimate, contrast.se)

    component = nx.node_connected_component(graph, a)
    evidence = [c for c in rest if c.treatment_a in component]
    others, beta, cov = gls_estimates(evidence, reference=a)
    i = others.index(b)
    indirect = float(beta[i])
    indirect_se = float(np.sqrt(cov[i, i]))

    difference = contrast.estimate - indirect
    difference_se = float(np.sqrt(contrast.variance + indirect_se ** 2))
    z = difference / difference_se
    p_value = p_value_from_z(z)
    return NodeSplit(
        treatment_a=a,
        treatment_b=b,
        direct=contrast.estimate,
        direct_se=contrast.se,
        indirect=indirect,
        indirect_se=indirect_se,
        difference=float(difference),
        difference_se=difference_se,
        z=float(z),
        p_value=p_value,
        is_inconsistent=p_value < alpha,
    )


def classify_severity(n_inconsistent: int, n_loops: int) -> str:
    """Grade inconsistency by the share of flagged loops."""
    if n_loops == 0 or n_inconsistent == 0:
        return "none"
    share = n_inconsistent / n_loops
    if share > 0.5:
        return "severe"
    if share > 0.25:
        return "moderate"
    return "mild"


def assess_consistency(
    contrasts: Sequence[PairwiseContrast],
    config: Optional[AnalysisConfig] = None
) -> ConsistencyResult:
    """
    Assess consistency of direct and indirect evidence.

    Args:
        contrasts: Pairwise contrasts (repeated pairs are combined first)
        config: Analysis configuration

    Returns:
        ConsistencyResult
    """
    config = resolve_config(config)
    combined, warnings = combine_contrasts(contrasts)
    if not combined:
        raise InsufficientStudiesError(
            "Consistency assessment needs at least one contrast",
            required=1,
            available=0,
            details={"step": "consistency"},
        )

    graph = contrast_graph(combined)
    cycles, truncated = find_loops(graph, config.max_loop_length, config.max_loops)
    if truncated:
        logger.warning("Loop enumeration stopped at %d loops", config.max_loops)
        warnings.append(f"Loop enumeration truncated at {config.max_loops} loops")

    loops = tuple(loop_inconsistency(cycle, graph, config.loop_alpha) for cycle in cycles)
    splits = tuple(node_split(c, combined, config.loop_alpha) for c in combined)

    n_inconsistent = sum(loop.is_inconsistent for loop in loops)
    severity = classify_severity(n_inconsistent, len(loops))
    recommendations: List[str] = []

    if loops:
        chi_squared = float(sum(loop.z ** 2 for loop in loops))
        df = len(loops)
        p_value = float(stats.chi2.sf(chi_squared, df))
        is_consistent = p_value >= config.global_alpha
        if is_consistent and n_inconsistent == 0:
            interpretation = "No evidence of inconsistency; direct and indirect evidence agree"
        elif is_consistent:
            interpretation = (
                f"No global inconsistency, but {n_inconsistent} of {len(loops)} loop(s) "
                "show local disagreement"
            )
        else:
            interpretation = (
                f"Significant inconsistency detected ({format_p_value(p_value)}); "
                "network estimates may be unreliable"
            )
            recommendations.append("Investigate sources of inconsistency such as effect modifiers")
            recommendations.append("Consider an inconsistency model or separate analyses")
        if n_inconsistent:
            recommendations.append("Examine the flagged loops for differences in populations or designs")
        if len(loops) < 3:
            warnings.append("Few loops (<3); limited power to detect inconsistency")
    else:
        chi_squared = None
        df = 0
        p_value = None
        is_consistent = True
        interpretation = "No closed loops; consistency cannot be assessed"
        warnings.append("No closed loops in the network; consistency is untestable")

    logger.debug(
        "Consistency: %d loops, %d flagged, severity=%s", len(loops), n_inconsistent, severity
    )

    return ConsistencyResult(
        loops=loops,
        node_splits=splits,
        chi_squared=chi_squared,
        df=df,
        p_value=p_value,
        is_consistent=is_consistent,
        n_inconsistent_loops=int(n_inconsistent),
        severity=severity,
        interpretation=interpretation,
        recommendations=tuple(recommendations),
        warnings=tuple(warnings),
    )
