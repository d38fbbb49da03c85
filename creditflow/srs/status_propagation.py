"""
Status cascades through the prerequisite graph.

- grasped: prerequisites (transitively) that are fresh/tackling become grasped
- tackling: dependents (transitively) that are fresh/grasped become tackling
- fresh: dependents that are grasped fall back to fresh; the cascade stops at
  any dependent that is not grasped
- learned: no cascade
"""
from __future__ import annotations

from collections.abc import Callable, Iterator

from loguru import logger

from creditflow.core.models import NodeKey, NodeStatus
from creditflow.db.models import UserNodeProgress
from creditflow.db.srs_repository import ProgressStore
from creditflow.graph.prerequisite_graph import GraphEdge, PrerequisiteGraph

_PROMOTE_TO_GRASPED = {NodeStatus.FRESH.value, NodeStatus.TACKLING.value}
_MOVE_TO_TACKLING = {NodeStatus.FRESH.value, NodeStatus.GRASPED.value}


class StatusPropagator:
    """Sets an item's status and cascades the change for one user."""

    def __init__(self, store: ProgressStore, user_id: int, graph: PrerequisiteGraph):
        self.store = store
        self.user_id = user_id
        self.graph = graph

    def set_status(self, key: NodeKey, status: NodeStatus) -> list[UserNodeProgress]:
        """
        Set ``status`` on ``key`` and cascade it.

        Returns:
            Every progress row whose status changed, target first
        """
        changed: list[UserNodeProgress] = []
        progress = self.store.get_progress(self.user_id, key)
        if progress is None:
            progress = self.store.create_progress(self.user_id, key, status)
            changed.append(progress)
        elif progress.status != status.value:
            progress.status = status.value
            changed.append(progress)
        self.store.save_progress(progress)

        visited: set[NodeKey] = set()
        if status is NodeStatus.GRASPED:
            self._walk(key, True, self._promote_to_grasped, visited, changed)
        elif status is NodeStatus.TACKLING:
            self._walk(key, False, self._move_to_tackling, visited, changed)
        elif status is NodeStatus.FRESH:
            self._walk(key, False, self._demote_to_fresh, visited, changed)

        logger.info(
            f"Status of {key} for user {self.user_id} set to {status.value}; "
            f"{max(0, len(changed) - 1)} related items changed"
        )
        return changed

    def _walk(
        self,
        start: NodeKey,
        towards_prerequisites: bool,
        visit: Callable[[NodeKey, list[UserNodeProgress]], bool],
        visited: set[NodeKey],
        changed: list[UserNodeProgress],
    ) -> None:
        """
        Depth-first cascade from ``start`` using an explicit stack.

        ``visit`` is called for every edge target and returns whether the
        cascade continues through it; each item is expanded at most once.
        """
        visited.add(start)
        stack: list[Iterator[GraphEdge]] = [iter(self._neighbours(start, towards_prerequisites))]
        while stack:
            edge = next(stack[-1], None)
            if edge is None:
                stack.pop()
                continue
            if visit(edge.target, changed) and edge.target not in visited:
                visited.add(edge.target)
                stack.append(iter(self._neighbours(edge.target, towards_prerequisites)))

    def _neighbours(self, key: NodeKey, towards_prerequisites: bool) -> list[GraphEdge]:
        node = self.graph.get(key)
        return node.neighbours(towards_prerequisites) if node is not None else []

    def _load_or_create(self, key: NodeKey) -> UserNodeProgress:
        # New rows start fresh, so both promoting cascades pick them up.
        progress = self.store.get_progress(self.user_id, key)
        if progress is None:
            progress = self.store.create_progress(self.user_id, key)
        return progress

    def _promote_to_grasped(self, key: NodeKey, changed: list[UserNodeProgress]) -> bool:
        progress = self._load_or_create(key)
        if progress.status in _PROMOTE_TO_GRASPED:
            progress.status = NodeStatus.GRASPED.value
            changed.append(progress)
            self.store.save_progress(progress)
        return True

    def _move_to_tackling(self, key: NodeKey, changed: list[UserNodeProgress]) -> bool:
        progress = self._load_or_create(key)
        if progress.status in _MOVE_TO_TACKLING:
            progress.status = NodeStatus.TACKLING.value
            changed.append(progress)
            self.store.save_progress(progress)
        return True

    def _demote_to_fresh(self, key: NodeKey, changed: list[UserNodeProgress]) -> bool:
        progress = self.store.get_progress(self.user_id, key)
        if progress is None or progress.status != NodeStatus.GRASPED.value:
            return False
        progress.status = NodeStatus.FRESH.value
        changed.append(progress)
        self.store.save_progress(progress)
        return True


def propagate_status(
    store: ProgressStore,
    user_id: int,
    key: NodeKey,
    status: NodeStatus,
    graph: PrerequisiteGraph,
) -> list[UserNodeProgress]:
    """Convenience wrapper around StatusPropagator.set_status."""
    return StatusPropagator(store, user_id, graph).set_status(key, status)
