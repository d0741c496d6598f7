"""Tests for network geometry."""

import pytest

from evisynth import InsufficientDataError, InsufficientStudiesError, NetworkAnalyzer
from evisynth.network import NetworkStudy, assess_geometry


class TestNetworkStudy:
    """NetworkStudy validation."""

    def test_multi_arm(self) -> None:
        assert NetworkStudy("S1", ("A", "B", "C")).is_multi_arm
        assert not NetworkStudy("S2", ["A", "B"]).is_multi_arm

    def test_requires_two_treatments(self) -> None:
        with pytest.raises(InsufficientDataError):
            NetworkStudy("S1", ("A", "A"))

    def test_negative_participants(self) -> None:
        with pytest.raises(InsufficientDataError):
            NetworkStudy("S1", ("A", "B"), -5)


class TestGeometry:
    """assess_geometry on different network shapes."""

    def test_well_connected_network(self, network_studies) -> None:
        geometry = assess_geometry(network_studies)
        assert geometry.treatments == ("A", "B", "C", "D")
        assert geometry.n_comparisons == 5
        assert geometry.n_studies == 4
        assert geometry.is_connected
        assert not geometry.is_star
        assert geometry.is_well_connected
        assert geometry.topology == "well_connected"
        assert geometry.n_loops == 2
        assert geometry.density == pytest.approx(5 / 6)
        assert geometry.average_degree == pytest.approx(2.5)
        assert geometry.multi_arm_studies == ("N4",)
        assert any("multi-arm" in r for r in geometry.recommendations)

    def test_node_and_edge_totals(self, network_studies) -> None:
        geometry = assess_geometry(network_studies)
        nodes = {n.treatment: n for n in geometry.nodes}
        assert nodes["A"].n_studies == 3
        assert nodes["A"].n_participants == 350
        assert nodes["D"].connected_to == ("A", "C")
        edges = {e.key: e for e in geometry.edges}
        assert edges["A-B"].n_studies == 2
        assert edges["A-B"].n_participants == 200
        assert edges["A-B"].study_ids == ("N1", "N2")
        assert "A-B" not in geometry.sparse_comparisons
        assert "B-C" in geometry.sparse_comparisons

    def test_star_network(self) -> None:
        studies = [
            NetworkStudy("S1", ("P", "A")),
            NetworkStudy("S2", ("P", "B")),
            NetworkStudy("S3", ("P", "C")),
        ]
        geometry = assess_geometry(studies)
        assert geometry.is_star
        assert geometry.hub == "P"
        assert geometry.topology == "star"
        assert geometry.n_loops == 0
        assert not geometry.is_well_connected
        assert any("star" in w for w in geometry.warnings)
        assert geometry.dead_end_treatments == ("A", "B", "C")

    def test_disconnected_network(self) -> None:
        studies = [NetworkStudy("S1", ("A", "B")), NetworkStudy("S2", ("C", "D"))]
        geometry = assess_geometry(studies, treatments=["E"])
        assert not geometry.is_connected
        assert geometry.topology == "disconnected"
        assert geometry.components[0] == ("A", "B")
        assert geometry.disconnected_treatments == ("C", "D", "E")
        assert any("disconnected" in w for w in geometry.warnings)

    def test_tree_network(self) -> None:
        studies = [
            NetworkStudy("S1", ("A", "B")),
            NetworkStudy("S2", ("B", "C")),
            NetworkStudy("S3", ("C", "D")),
        ]
        geometry = assess_geometry(studies)
        assert geometry.topology == "tree"
        assert geometry.dead_end_treatments == ("A", "D")
        assert geometry.issues["dead_end_treatments"] == ["A", "D"]

    def test_two_treatments(self) -> None:
        geometry = assess_geometry([NetworkStudy("S1", ("A", "B"))])
        assert geometry.topology == "pairwise"
        assert any("Only 2 treatments" in w for w in geometry.warnings)

    def test_duplicate_study_ids(self) -> None:
        with pytest.raises(InsufficientDataError):
            assess_geometry([NetworkStudy("S1", ("A", "B")), NetworkStudy("S1", ("B", "C"))])

    def test_empty_network(self) -> None:
        with pytest.raises(InsufficientStudiesError):
            assess_geometry([])

    def test_to_networkx(self, network_studies) -> None:
        graph = assess_geometry(network_studies).to_networkx()
        assert graph.number_of_nodes() == 4
        assert graph.number_of_edges() == 5
        assert graph.edges["A", "B"]["n_studies"] == 2

    def test_analyzer_facade(self, network_studies) -> None:
        geometry = NetworkAnalyzer().geometry(network_studies)
        d = geometry.to_dict()
        assert d["n_treatments"] == 4
        assert d["topology"] == "well_connected"
        assert "Network Geometry" in geometry.summary_table()
