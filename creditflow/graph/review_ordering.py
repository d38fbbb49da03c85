"""
Review ordering for a batch of due items.

Each due item is scored by simulating a successful review of it: its impact is
the positive implicit credit that would land on other items of the same due
batch. Items are presented by impact, and items with near-equal impact by
depth of their prerequisite chain (foundational items first).
"""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from functools import cmp_to_key
from typing import Protocol, TypeVar

from loguru import logger

from creditflow.core.models import NodeKey, NodeType
from creditflow.graph.credit_propagation import CreditPropagator
from creditflow.graph.prerequisite_graph import PrerequisiteGraph


class DueItemLike(Protocol):
    node_id: int
    node_type: NodeType | str


T = TypeVar("T", bound=DueItemLike)


@dataclass
class ReviewOrderingConfig:
    """Configuration for review ordering."""

    tie_tolerance: float = 0.1  # Impact gap below which depth decides


@dataclass(frozen=True)
class ReviewScore:
    """Ordering score of one due item."""

    key: NodeKey
    impact: float
    distance_from_root: int


class ReviewOrderer:
    """Orders due items to maximize downstream scheduling benefit."""

    def __init__(
        self,
        config: ReviewOrderingConfig | None = None,
        propagator: CreditPropagator | None = None,
    ):
        self.config = config or ReviewOrderingConfig()
        self.propagator = propagator or CreditPropagator()

    def score(self, due_items: Sequence[DueItemLike], graph: PrerequisiteGraph) -> list[ReviewScore]:
        """Score every due item, in input order."""
        due_keys = {NodeKey.of(item.node_id, item.node_type) for item in due_items}
        scores = []
        for item in due_items:
            key = NodeKey.of(item.node_id, item.node_type)
            credits = self.propagator.propagate(key.node_id, key.node_type, True, graph)
            impact = sum(
                c.credit
                for c in credits
                if not c.is_explicit and c.credit > 0 and c.key in due_keys
            )
            scores.append(ReviewScore(key, impact, distance_from_root(key, graph)))
        return scores

    def rank(self, due_items: Sequence[T], graph: PrerequisiteGraph) -> list[tuple[ReviewScore, T]]:
        """Score due items and sort them, highest impact first. Input is not mutated."""
        if not due_items:
            return []

        scores = self.score(due_items, graph)
        tolerance = self.config.tie_tolerance

        def compare(a: tuple[ReviewScore, T], b: tuple[ReviewScore, T]) -> int:
            sa, sb = a[0], b[0]
            diff = sa.impact - sb.impact
            if diff and abs(diff) >= tolerance:
                return -1 if diff > 0 else 1
            return sb.distance_from_root - sa.distance_from_root

        ranked = sorted(zip(scores, due_items), key=cmp_to_key(compare))
        logger.debug(
            "Review order: "
            + ", ".join(f"{s.key}(impact={s.impact:.3f}, depth={s.distance_from_root})" for s, _ in ranked)
        )
        return ranked

    def order(self, due_items: Sequence[T], graph: PrerequisiteGraph) -> list[T]:
        """
        Reorder due items for presentation.

        Args:
            due_items: Items currently due (not mutated)
            graph: Prerequisite graph of their domain

        Returns:
            New list with the same items, highest impact first
        """
        return [item for _, item in self.rank(due_items, graph)]


def distance_from_root(key: NodeKey, graph: PrerequisiteGraph) -> int:
    """
    Length of the longest prerequisite chain below ``key``.

    Walks the graph depth-first with an explicit stack and remembers each
    finished node's height, so shared prerequisites are measured once. An edge
    back onto the current path counts as one hop and is not followed.
    """
    heights: dict[NodeKey, int] = {}
    _chain_heights(key, graph, heights)
    return heights[key]


def _chain_heights(start: NodeKey, graph: PrerequisiteGraph, heights: dict[NodeKey, int]) -> None:
    on_path: set[NodeKey] = {start}
    best: dict[NodeKey, int] = {start: 0}
    stack: list[tuple[NodeKey, int]] = [(start, 0)]

    while stack:
        key, index = stack[-1]
        node = graph.get(key)
        edges = node.prerequisites if node is not None else []

        if index < len(edges):
            stack[-1] = (key, index + 1)
            target = edges[index].target
            if target in on_path:
                best[key] = max(best[key], 1)
            elif target in heights:
                best[key] = max(best[key], 1 + heights[target])
            else:
                on_path.add(target)
                best[target] = 0
                stack.append((target, 0))
            continue

        stack.pop()
        on_path.discard(key)
        heights[key] = best.pop(key)
        if stack:
            parent = stack[-1][0]
            best[parent] = max(best[parent], 1 + heights[key])


def order_reviews(
    due_items: Sequence[T],
    graph: PrerequisiteGraph,
    config: ReviewOrderingConfig | None = None,
) -> list[T]:
    """Convenience wrapper around ReviewOrderer.order."""
    return ReviewOrderer(config).order(due_items, graph)


def score_reviews(
    due_items: Sequence[DueItemLike],
    graph: PrerequisiteGraph,
    config: ReviewOrderingConfig | None = None,
) -> list[ReviewScore]:
    """Per-item impact and depth, in input order."""
    return ReviewOrderer(config).score(due_items, graph)
