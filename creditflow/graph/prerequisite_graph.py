"""
Prerequisite graph construction.

Converts the flat list of weighted prerequisite edges of one domain into an
adjacency map keyed by (kind, id). Every node holds its outgoing prerequisite
edges and the mirrored dependent edges. Nodes carry no traversal state, so one
built graph can be shared by concurrent traversals.
"""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Protocol

from loguru import logger

from creditflow.core.errors import InvalidInputError
from creditflow.core.models import NodeKey, NodeType


class EdgeRecord(Protocol):
    """Anything shaped like a prerequisite row."""

    node_id: int
    node_type: str
    prerequisite_id: int
    prerequisite_type: str
    weight: float


@dataclass(frozen=True)
class PrerequisiteEdge:
    """Plain prerequisite edge: ``node`` depends on ``prerequisite``."""

    node_id: int
    node_type: str
    prerequisite_id: int
    prerequisite_type: str
    weight: float = 1.0
    is_manual: bool = False


@dataclass(frozen=True)
class GraphEdge:
    """An outgoing edge to a neighbouring item."""

    target: NodeKey
    weight: float


@dataclass
class GraphNode:
    """A node in the prerequisite graph."""

    key: NodeKey
    prerequisites: list[GraphEdge] = field(default_factory=list)
    dependents: list[GraphEdge] = field(default_factory=list)

    def neighbours(self, towards_prerequisites: bool) -> list[GraphEdge]:
        return self.prerequisites if towards_prerequisites else self.dependents


PrerequisiteGraph = dict[NodeKey, GraphNode]


def build_graph(edges: Iterable[EdgeRecord]) -> PrerequisiteGraph:
    """
    Build the adjacency map for a set of prerequisite edges.

    Args:
        edges: Prerequisite rows of one domain

    Returns:
        Map from node key to GraphNode; both endpoints of every edge are present
    """
    graph: PrerequisiteGraph = {}
    edge_count = 0

    for edge in edges:
        node_key = NodeKey(NodeType(edge.node_type), edge.node_id)
        prereq_key = NodeKey(NodeType(edge.prerequisite_type), edge.prerequisite_id)

        if node_key == prereq_key:
            logger.warning(f"Skipping self-referencing prerequisite on {node_key}")
            continue
        if not edge.weight > 0:
            raise InvalidInputError(
                f"Prerequisite {prereq_key} -> {node_key} has non-positive weight {edge.weight}"
            )

        node = graph.get(node_key)
        if node is None:
            node = graph[node_key] = GraphNode(node_key)
        prereq_node = graph.get(prereq_key)
        if prereq_node is None:
            prereq_node = graph[prereq_key] = GraphNode(prereq_key)

        node.prerequisites.append(GraphEdge(prereq_key, edge.weight))
        prereq_node.dependents.append(GraphEdge(node_key, edge.weight))
        edge_count += 1

    logger.debug(f"Built prerequisite graph: {len(graph)} nodes, {edge_count} edges")
    return graph
