"""
Unit tests for prerequisite graph construction.
"""
import pytest

from creditflow.core.errors import InvalidInputError
from creditflow.core.models import NodeKey, NodeType
from creditflow.graph.prerequisite_graph import GraphEdge, PrerequisiteEdge, build_graph


def d(node_id):
    return NodeKey(NodeType.DEFINITION, node_id)


def x(node_id):
    return NodeKey(NodeType.EXERCISE, node_id)


class TestBuildGraph:
    """Test adjacency map construction."""

    def test_empty_input(self):
        assert build_graph([]) == {}

    def test_both_endpoints_present(self):
        """Pure roots and pure leaves both get a node."""
        graph = build_graph([PrerequisiteEdge(2, "definition", 1, "definition", 0.5)])

        assert set(graph) == {d(1), d(2)}
        assert graph[d(2)].prerequisites == [GraphEdge(d(1), 0.5)]
        assert graph[d(2)].dependents == []
        assert graph[d(1)].dependents == [GraphEdge(d(2), 0.5)]
        assert graph[d(1)].prerequisites == []

    def test_kinds_are_part_of_the_key(self):
        """Definition 1 and exercise 1 are different nodes."""
        graph = build_graph([PrerequisiteEdge(1, "exercise", 1, "definition", 1.0)])

        assert set(graph) == {d(1), x(1)}
        assert graph[x(1)].prerequisites[0].target == d(1)

    def test_dependents_mirror_prerequisites(self):
        edges = [
            PrerequisiteEdge(2, "definition", 1, "definition", 0.5),
            PrerequisiteEdge(3, "definition", 1, "definition", 0.8),
            PrerequisiteEdge(3, "definition", 2, "definition", 0.3),
        ]
        graph = build_graph(edges)

        for key, node in graph.items():
            for edge in node.prerequisites:
                assert GraphEdge(key, edge.weight) in graph[edge.target].dependents

    def test_edge_order_follows_input(self):
        edges = [
            PrerequisiteEdge(9, "definition", 3, "definition"),
            PrerequisiteEdge(9, "definition", 1, "definition"),
            PrerequisiteEdge(9, "definition", 2, "definition"),
        ]
        graph = build_graph(edges)

        assert [e.target.node_id for e in graph[d(9)].prerequisites] == [3, 1, 2]

    def test_self_edge_is_skipped(self):
        graph = build_graph([PrerequisiteEdge(1, "definition", 1, "definition", 0.5)])
        assert graph == {}

    @pytest.mark.parametrize("weight", [0.0, -0.5])
    def test_non_positive_weight_rejected(self, weight):
        with pytest.raises(InvalidInputError):
            build_graph([PrerequisiteEdge(2, "definition", 1, "definition", weight)])

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError):
            build_graph([PrerequisiteEdge(2, "theorem", 1, "definition", 0.5)])
