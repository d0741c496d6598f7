"""
Network Geometry for evisynth.

This module describes the shape of a treatment comparison network:
which treatments are compared directly, how much evidence supports each
comparison, and whether the network is star-shaped, well connected or
disconnected.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from itertools import combinations
from typing import Optional, Dict, Any, Iterable, List, Sequence, Tuple
import networkx as nx

from evisynth.core.config import AnalysisConfig, resolve_config
from evisynth.core.exceptions import InsufficientDataError, InsufficientStudiesError
from evisynth.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class NetworkStudy:
    """
    A study contributing to a treatment network.

    Attributes:
        study_id: Unique study identifier
        treatments: Treatments compared (more than two for multi-arm trials)
        n_participants: Total participants, if known
    """

    study_id: str
    treatments: Tuple[str, ...]
    n_participants: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "treatments", tuple(self.treatments))
        if len(set(self.treatments)) < 2:
            raise InsufficientDataError(
                f"Study '{self.study_id}' must compare at least two distinct treatments",
                {"study_id": self.study_id, "treatments": list(self.treatments)},
            )
        if self.n_participants is not None and self.n_participants < 0:
            raise InsufficientDataError(
                f"Study '{self.study_id}' has a negative participant count",
                {"study_id": self.study_id},
            )

    @property
    def is_multi_arm(self) -> bool:
        return len(set(self.treatments)) > 2


@dataclass(frozen=True)
class TreatmentNode:
    """A treatment in the network with its evidence totals."""

    treatment: str
    n_studies: int
    n_participants: int
    connected_to: Tuple[str, ...]

    @property
    def degree(self) -> int:
        return len(self.connected_to)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "treatment": self.treatment,
            "n_studies": self.n_studies,
            "n_participants": self.n_participants,
            "connected_to": list(self.connected_to),
        }


@dataclass(frozen=True)
class ComparisonEdge:
    """A direct comparison between two treatments (names in sorted order)."""

    treatment_a: str
    treatment_b: str
    n_studies: int
    n_participants: int
    study_ids: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def key(self) -> str:
        return f"{self.treatment_a}-{self.treatment_b}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "comparison": self.key,
            "treatment_a": self.treatment_a,
            "treatment_b": self.treatment_b,
            "n_studies": self.n_studies,
            "n_participants": self.n_participants,
            "study_ids": list(self.study_ids),
        }


@dataclass(frozen=True)
class NetworkGeometry:
    """
    Geometry of a treatment comparison network.

    Attributes:
        nodes: Treatments with study and participant totals
        edges: Direct comparisons with study counts
        n_studies: Number of studies
        is_connected: Whether every treatment can be reached from every other
        components: Connected components (largest first)
        disconnected_treatments: Treatments outside the largest component
        is_star: One hub compared with every other treatment, no other comparisons
        hub: The hub treatment of a star network
        is_well_connected: Connected, not star-shaped, and containing a closed loop
        topology: 'star', 'well_connected', 'tree', 'pairwise' or 'disconnected'
        n_loops: Number of independent closed loops (cycle rank)
        density: Observed comparisons / possible comparisons
        average_degree: Mean number of direct comparators per treatment
        multi_arm_studies: Studies comparing more than two treatments
        sparse_comparisons: Comparisons informed by fewer than two studies
        dead_end_treatments: Treatments with a single direct comparator
        recommendations: Suggested follow-up
        warnings: Any warnings generated
    """

    nodes: Tuple[TreatmentNode, ...]
    edges: Tuple[ComparisonEdge, ...]
    n_studies: int
    is_connected: bool
    components: Tuple[Tuple[str, ...], ...]
    disconnected_treatments: Tuple[str, ...]
    is_star: bool
    hub: Optional[str]
    is_well_connected: bool
    topology: str
    n_loops: int
    density: float
    average_degree: float
    multi_arm_studies: Tuple[str, ...] = field(default_factory=tuple)
    sparse_comparisons: Tuple[str, ...] = field(default_factory=tuple)
    dead_end_treatments: Tuple[str, ...] = field(default_factory=tuple)
    recommendations: Tuple[str, ...] = field(default_factory=tuple)
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def treatments(self) -> Tuple[str, ...]:
        return tuple(node.treatment for node in self.nodes)

    @property
    def n_treatments(self) -> int:
        return len(self.nodes)

    @property
    def n_comparisons(self) -> int:
        return len(self.edges)

    @property
    def issues(self) -> Dict[str, List[str]]:
        """Structural weak points grouped by kind."""
        return {
            "sparse_comparisons": list(self.sparse_comparisons),
            "dead_end_treatments": list(self.dead_end_treatments),
        }

    def to_networkx(self) -> nx.Graph:
        """Build a fresh networkx graph of the network."""
        graph = nx.Graph()
        for node in self.nodes:
            graph.add_node(node.treatment, n_studies=node.n_studies, n_participants=node.n_participants)
        for edge in self.edges:
            graph.add_edge(
                edge.treatment_a, edge.treatment_b,
                n_studies=edge.n_studies, n_participants=edge.n_participants,
            )
        return graph

    def summary_table(self) -> str:
        """Generate summary table as string."""
        lines = [
            "=" * 60,
            "Network Geometry",
            "=" * 60,
            f"Treatments: {self.n_treatments}  Comparisons: {self.n_comparisons}  Studies: {self.n_studies}",
            f"Topology: {self.topology}" + (f" (hub: {self.hub})" if self.hub else ""),
            f"Closed loops: {self.n_loops}  Density: {self.density:.2f}",
        ]
        if self.disconnected_treatments:
            lines.append(f"Disconnected: {', '.join(self.disconnected_treatments)}")
        lines.append("")
        for edge in self.edges:
            lines.append(f"  {edge.key}: {edge.n_studies} studies, {edge.n_participants} participants")
        for w in self.warnings:
            lines.append(f"  - {w}")
        lines.append("=" * 60)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "n_treatments": self.n_treatments,
            "n_comparisons": self.n_comparisons,
            "n_studies": self.n_studies,
            "is_connected": self.is_connected,
            "components": [list(c) for c in self.components],
            "disconnected_treatments": list(self.disconnected_treatments),
            "is_star": self.is_star,
            "hub": self.hub,
            "is_well_connected": self.is_well_connected,
            "topology": self.topology,
            "n_loops": self.n_loops,
            "density": self.density,
            "average_degree": self.average_degree,
            "multi_arm_studies": list(self.multi_arm_studies),
            "sparse_comparisons": list(self.sparse_comparisons),
            "dead_end_treatments": list(self.dead_end_treatments),
            "recommendations": list(self.recommendations),
            "warnings": list(self.warnings),
        }


def build_graph(
    studies: Sequence[NetworkStudy],
    treatments: Optional[Iterable[str]] = None
) -> nx.Graph:
    """
    Build the comparison graph from study arms.

    Every pair of arms within a study is a direct comparison, so a
    three-arm trial contributes three edges.

    Args:
        studies: Studies in the network
        treatments: Additional treatments to include even without comparisons

    Returns:
        Undirected graph with 'n_studies', 'n_participants' and 'study_ids'
        on nodes and edges
    """
    graph = nx.Graph()
    for treatment in treatments or ():
        graph.add_node(treatment, n_studies=0, n_participants=0)

    seen = set()
    for study in studies:
        if study.study_id in seen:
            raise InsufficientDataError(
                f"Duplicate study identifier '{study.study_id}'",
                {"study_id": study.study_id},
            )
        seen.add(study.study_id)
        arms = sorted(set(study.treatments))
        participants = study.n_participants or 0
        for arm in arms:
            if arm not in graph:
                graph.add_node(arm, n_studies=0, n_participants=0)
            graph.nodes[arm]["n_studies"] += 1
            graph.nodes[arm]["n_participants"] += participants
        for a, b in combinations(arms, 2):
            if not graph.has_edge(a, b):
                graph.add_edge(a, b, n_studies=0, n_participants=0, study_ids=[])
            data = graph.edges[a, b]
            data["n_studies"] += 1
            data["n_participants"] += participants
            data["study_ids"].append(study.study_id)
    return graph


def find_star_hub(graph: nx.Graph) -> Optional[str]:
    """Return the hub if the graph is star-shaped (at least three treatments)."""
    n = graph.number_of_nodes()
    if n < 3 or graph.number_of_edges() != n - 1:
        return None
    for node in sorted(graph.nodes):
        if graph.degree(node) == n - 1:
            others = (other for other in graph.nodes if other != node)
            if all(graph.degree(other) == 1 for other in others):
                return node
    return None


def assess_geometry(
    studies: Sequence[NetworkStudy],
    treatments: Optional[Iterable[str]] = None,
    config: Optional[AnalysisConfig] = None
) -> NetworkGeometry:
    """
    Assess the geometry of a treatment network.

    Args:
        studies: Studies in the network
        treatments: Treatments to include even without direct comparisons
        config: Analysis configuration

    Returns:
        NetworkGeometry
    """
    resolve_config(config)
    studies = list(studies)
    graph = build_graph(studies, treatments)
    n = graph.number_of_nodes()
    if n < 2:
        raise InsufficientStudiesError(
            "A treatment network needs at least two treatments",
            required=2,
            available=n,
            details={"step": "network geometry"},
        )

    components = sorted(
        (tuple(sorted(c)) for c in nx.connected_components(graph)),
        key=lambda c: (-len(c), c),
    )
    is_connected = len(components) == 1
    disconnected = tuple(sorted(t for c in components[1:] for t in c))

    hub = find_star_hub(graph)
    is_star = hub is not None
    # Cycle rank: independent loops = edges - nodes + components
    n_loops = graph.number_of_edges() - n + len(components)
    is_well_connected = is_connected and not is_star and n_loops > 0

    if not is_connected:
        topology = "disconnected"
    elif n == 2:
        topology = "pairwise"
    elif is_star:
        topology = "star"
    elif is_well_connected:
        topology = "well_connected"
    else:
        topology = "tree"

    nodes = tuple(
        TreatmentNode(
            treatment=t,
            n_studies=int(graph.nodes[t]["n_studies"]),
            n_participants=int(graph.nodes[t]["n_participants"]),
            connected_to=tuple(sorted(graph.neighbors(t))),
        )
        for t in sorted(graph.nodes)
    )
    edges = tuple(
        ComparisonEdge(
            treatment_a=a,
            treatment_b=b,
            n_studies=int(data["n_studies"]),
            n_participants=int(data["n_participants"]),
            study_ids=tuple(data["study_ids"]),
        )
        for a, b, data in sorted(
            ((min(u, v), max(u, v), d) for u, v, d in graph.edges(data=True)),
            key=lambda e: (e[0], e[1]),
        )
    )

    possible = n * (n - 1) / 2
    density = graph.number_of_edges() / possible
    average_degree = 2 * graph.number_of_edges() / n

    multi_arm = tuple(s.study_id for s in studies if s.is_multi_arm)
    sparse = tuple(e.key for e in edges if e.n_studies < 2)
    dead_ends = tuple(node.treatment for node in nodes if node.degree == 1) if n > 2 else ()

    warnings: List[str] = []
    recommendations: List[str] = []
    if not is_connected:
        warnings.append("Network is disconnected; network meta-analysis cannot include all treatments")
        recommendations.append("Analyze connected components separately or add bridging studies")
    if sparse:
        warnings.append("Some comparisons have only one study; results may be unreliable")
        recommendations.append("Interpret results for sparse comparisons with caution")
    if is_star:
        warnings.append("Network is star-shaped; there is no indirect evidence to check consistency")
        recommendations.append("Consider sensitivity analyses; consistency cannot be assessed")
    if dead_ends and not is_star:
        warnings.append(f"{len(dead_ends)} treatment(s) have only one direct comparator")
        recommendations.append("Results for dead-end treatments rely on a single comparison")
    if multi_arm:
        recommendations.append(
            f"{len(multi_arm)} multi-arm trial(s) detected; account for within-study correlation"
        )
    if n < 3:
        warnings.append("Only 2 treatments; a standard pairwise meta-analysis is more appropriate")

    logger.debug(
        "Network geometry: %d treatments, %d comparisons, topology=%s",
        n, graph.number_of_edges(), topology,
    )

    return NetworkGeometry(
        nodes=nodes,
        edges=edges,
        n_studies=len(studies),
        is_connected=is_connected,
        components=tuple(components),
        disconnected_treatments=disconnected,
        is_star=is_star,
        hub=hub,
        is_well_connected=is_well_connected,
        topology=topology,
        n_loops=int(n_loops),
        density=float(density),
        average_degree=float(average_degree),
        multi_arm_studies=multi_arm,
        sparse_comparisons=sparse,
        dead_end_treatments=dead_ends,
        recommendations=tuple(recommendations),
        warnings=tuple(warnings),
    )
