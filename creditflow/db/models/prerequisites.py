"""
Weighted prerequisite edges between knowledge items.

An edge says that ``node`` depends on ``prerequisite``. The weight is a
probability-like multiplier in (0, 1] applied to credit flowing along the
edge. Items are addressed by (id, type) because definitions and exercises
live in separate tables.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, Float, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class NodePrerequisite(Base):
    """
    Prerequisite relationship between two items.

    Attributes:
        node_id/node_type: The dependent item
        prerequisite_id/prerequisite_type: The item it depends on
        weight: Credit multiplier along this edge, 0 < weight <= 1
        is_manual: Created by a person rather than imported
    """

    __tablename__ = "node_prerequisites"
    __table_args__ = (
        CheckConstraint("weight > 0 AND weight <= 1", name="node_prerequisites_weight_check"),
        CheckConstraint(
            "NOT (node_id = prerequisite_id AND node_type = prerequisite_type)",
            name="node_prerequisites_no_self_edge",
        ),
        UniqueConstraint(
            "node_id", "node_type", "prerequisite_id", "prerequisite_type",
            name="uq_node_prerequisites_edge",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    node_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    node_type: Mapped[str] = mapped_column(String(20), nullable=False)
    prerequisite_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    prerequisite_type: Mapped[str] = mapped_column(String(20), nullable=False)
    weight: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    is_manual: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(default=func.now())

    def __repr__(self) -> str:
        return (
            f"<NodePrerequisite({self.node_type}_{self.node_id} -> "
            f"{self.prerequisite_type}_{self.prerequisite_id}, w={self.weight})>"
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "node_id": self.node_id,
            "node_type": self.node_type,
            "prerequisite_id": self.prerequisite_id,
            "prerequisite_type": self.prerequisite_type,
            "weight": self.weight,
            "is_manual": self.is_manual,
        }
