"""
Credit propagation across the prerequisite graph.

One explicit review yields partial evidence about related items:
- Success: prerequisites probably hold, so credit flows to prerequisites
- Failure: dependents are probably shaky, so negative credit flows to dependents

Credit at hop distance d along a path with weight product w is w / (1 + d).
Each item is credited at most once per call and traversal stops after
``max_distance`` hops, so any topology (including accidental cycles)
terminates in time proportional to the reachable subgraph.
"""
from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from creditflow.core.models import CreditType, CreditUpdate, NodeKey, NodeType
from creditflow.graph.prerequisite_graph import PrerequisiteGraph


@dataclass
class CreditPropagationConfig:
    """Configuration for credit propagation."""

    credit_threshold: float = 0.01  # Smaller contributions are dropped
    max_distance: int = 6  # Hops from the reviewed item
    explicit_credit: float = 1.0


class CreditPropagator:
    """Computes the credit contributions produced by one explicit review."""

    def __init__(self, config: CreditPropagationConfig | None = None):
        self.config = config or CreditPropagationConfig()

    def propagate(
        self,
        node_id: int,
        node_type: NodeType | str,
        success: bool,
        graph: PrerequisiteGraph,
    ) -> list[CreditUpdate]:
        """
        Calculate the credit flow from an explicit review.

        Args:
            node_id: Reviewed item id
            node_type: Reviewed item kind
            success: Review outcome
            graph: Prerequisite graph of the item's domain

        Returns:
            Contributions in traversal order; the first is always the explicit one
        """
        start = NodeKey.of(node_id, node_type)
        credits = [
            CreditUpdate(start.node_id, start.node_type, self.config.explicit_credit, CreditType.EXPLICIT)
        ]

        start_node = graph.get(start)
        if start_node is None:
            return credits

        # The reviewed item already has its explicit credit; a cycle must not add more.
        visited: set[NodeKey] = {start}
        for edge in start_node.neighbours(towards_prerequisites=success):
            self._propagate_recursive(edge.target, 1, edge.weight, success, graph, visited, credits)

        logger.debug(
            f"Credit from {start} ({'success' if success else 'failure'}): "
            f"{len(credits) - 1} implicit contributions over {len(visited)} visited nodes"
        )
        return credits

    def _propagate_recursive(
        self,
        key: NodeKey,
        distance: int,
        path_weight: float,
        success: bool,
        graph: PrerequisiteGraph,
        visited: set[NodeKey],
        credits: list[CreditUpdate],
    ) -> None:
        if distance > self.config.max_distance:
            return
        if key in visited:
            return
        visited.add(key)

        node = graph.get(key)
        if node is None:
            return

        amount = path_weight / (1 + distance)
        if abs(amount) >= self.config.credit_threshold:
            credits.append(
                CreditUpdate(
                    key.node_id,
                    key.node_type,
                    amount if success else -amount,
                    CreditType.IMPLICIT,
                )
            )

        # Below-threshold nodes still relay credit further along the path.
        for edge in node.neighbours(towards_prerequisites=success):
            self._propagate_recursive(
                edge.target,
                distance + 1,
                path_weight * edge.weight,
                success,
                graph,
                visited,
                credits,
            )


def propagate_credit(
    node_id: int,
    node_type: NodeType | str,
    success: bool,
    graph: PrerequisiteGraph,
    config: CreditPropagationConfig | None = None,
) -> list[CreditUpdate]:
    """Convenience wrapper around CreditPropagator.propagate."""
    return CreditPropagator(config).propagate(node_id, node_type, success, graph)
