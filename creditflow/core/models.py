"""
Value types shared across the scheduling engines.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple


class NodeType(str, Enum):
    """Kinds of knowledge items that carry review state."""

    DEFINITION = "definition"
    EXERCISE = "exercise"


class ReviewScope(str, Enum):
    """Item kind filter for due-review queries."""

    DEFINITION = "definition"
    EXERCISE = "exercise"
    MIXED = "mixed"

    def includes(self, node_type: NodeType) -> bool:
        return self is ReviewScope.MIXED or self.value == node_type.value


class NodeStatus(str, Enum):
    """Coarse mastery state of an item for one user."""

    FRESH = "fresh"
    TACKLING = "tackling"
    GRASPED = "grasped"
    LEARNED = "learned"


class CreditType(str, Enum):
    """Whether a contribution comes from a direct review or from propagation."""

    EXPLICIT = "explicit"
    IMPLICIT = "implicit"


class NodeKey(NamedTuple):
    """Composite (kind, id) key identifying an item in the prerequisite graph."""

    node_type: NodeType
    node_id: int

    def __str__(self) -> str:
        return f"{self.node_type.value}_{self.node_id}"

    @classmethod
    def of(cls, node_id: int, node_type: NodeType | str) -> NodeKey:
        return cls(NodeType(node_type), int(node_id))


@dataclass(frozen=True)
class CreditUpdate:
    """One credit contribution produced by propagation."""

    node_id: int
    node_type: NodeType
    credit: float
    credit_type: CreditType

    @property
    def key(self) -> NodeKey:
        return NodeKey(self.node_type, self.node_id)

    @property
    def is_explicit(self) -> bool:
        return self.credit_type is CreditType.EXPLICIT

    def to_dict(self) -> dict[str, object]:
        return {
            "node_id": self.node_id,
            "node_type": self.node_type.value,
            "credit": self.credit,
            "type": self.credit_type.value,
        }
