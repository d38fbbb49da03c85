"""
Graph engines over the weighted prerequisite graph.

Components:
- build_graph: Adjacency map with prerequisite and dependent edges
- CreditPropagator: Implicit credit flow from one explicit review
- ReviewOrderer: Impact/depth ordering of a due batch
"""
from creditflow.graph.credit_propagation import (
    CreditPropagationConfig,
    CreditPropagator,
    propagate_credit,
)
from creditflow.graph.prerequisite_graph import (
    GraphEdge,
    GraphNode,
    PrerequisiteEdge,
    PrerequisiteGraph,
    build_graph,
)
from creditflow.graph.review_ordering import (
    ReviewOrderer,
    ReviewOrderingConfig,
    ReviewScore,
    distance_from_root,
    order_reviews,
    score_reviews,
)

__all__ = [
    "GraphEdge",
    "GraphNode",
    "PrerequisiteEdge",
    "PrerequisiteGraph",
    "build_graph",
    "CreditPropagationConfig",
    "CreditPropagator",
    "propagate_credit",
    "ReviewOrderer",
    "ReviewOrderingConfig",
    "ReviewScore",
    "distance_from_root",
    "order_reviews",
    "score_reviews",
]
