"""
Data access for review scheduling.

SRSRepository implements the two narrow store contracts the engines depend on
(ProgressStore, PrerequisiteStore) plus the write-only history/session logs
and the read queries behind the due-review and progress listings. It works on
a caller-owned Session; committing or rolling back is the caller's job.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from loguru import logger
from sqlalchemy import and_, delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from creditflow.core.errors import ConcurrentUpdateError, InvalidInputError, NotFoundError, StorageError
from creditflow.core.models import NodeKey, NodeStatus, NodeType, ReviewScope
from creditflow.db.models import (
    DEFAULT_EASINESS,
    Definition,
    Domain,
    Exercise,
    NodePrerequisite,
    ReviewHistory,
    SessionReview,
    StudySession,
    UserNodeProgress,
)

CREDIT_CHECK_CONSTRAINT = "user_node_progress_accumulated_credit_check"

_CONTENT_TABLES = {
    NodeType.DEFINITION: Definition,
    NodeType.EXERCISE: Exercise,
}

# Attributes restored onto a progress row after a rolled-back savepoint expired it.
_PROGRESS_FIELDS = (
    "status",
    "easiness_factor",
    "interval_days",
    "repetitions",
    "last_review",
    "next_review",
    "accumulated_credit",
    "credit_postponed",
    "total_reviews",
    "successful_reviews",
)


def clamp_credit(value: float) -> float:
    """Clamp accumulated credit to [-1, 1]."""
    return max(-1.0, min(1.0, value))


class ProgressStore(Protocol):
    """Keyed access to per-user item progress."""

    def get_progress(self, user_id: int, key: NodeKey) -> UserNodeProgress | None: ...

    def create_progress(
        self, user_id: int, key: NodeKey, status: NodeStatus = NodeStatus.FRESH
    ) -> UserNodeProgress: ...

    def save_progress(self, progress: UserNodeProgress) -> None: ...


class PrerequisiteStore(Protocol):
    """Read access to the prerequisite edges of a domain."""

    def get_prerequisites_by_domain(self, domain_id: int) -> list[NodePrerequisite]: ...


@dataclass
class NodeInfo:
    """Display metadata of a knowledge item."""

    node_id: int
    node_type: NodeType
    code: str
    name: str
    domain_id: int


class SRSRepository:
    """SQLAlchemy-backed progress, prerequisite and log store."""

    def __init__(self, session: Session, initial_easiness: float = DEFAULT_EASINESS):
        self.session = session
        self.initial_easiness = initial_easiness

    # =========================================================================
    # Content lookups
    # =========================================================================

    def get_node(self, key: NodeKey) -> NodeInfo | None:
        model = _CONTENT_TABLES[key.node_type]
        row = self.session.get(model, key.node_id)
        if row is None:
            return None
        return NodeInfo(key.node_id, key.node_type, row.code, row.name, row.domain_id)

    def get_domain_id_for_node(self, key: NodeKey) -> int:
        """Resolve the domain an item belongs to."""
        node = self.get_node(key)
        if node is None:
            raise NotFoundError(f"{key.node_type.value} {key.node_id} not found")
        return node.domain_id

    def require_domain(self, domain_id: int) -> Domain:
        domain = self.session.get(Domain, domain_id)
        if domain is None:
            raise NotFoundError(f"Domain {domain_id} not found")
        return domain

    def list_domain_nodes(self, domain_id: int) -> list[NodeInfo]:
        """All definitions then all exercises of a domain, ordered by code."""
        nodes: list[NodeInfo] = []
        for node_type, model in _CONTENT_TABLES.items():
            rows = self.session.scalars(
                select(model).where(model.domain_id == domain_id).order_by(model.code, model.id)
            )
            nodes.extend(NodeInfo(r.id, node_type, r.code, r.name, r.domain_id) for r in rows)
        return nodes

    # =========================================================================
    # Prerequisites
    # =========================================================================

    def get_prerequisites_by_domain(self, domain_id: int) -> list[NodePrerequisite]:
        """Edges whose dependent item belongs to ``domain_id``."""
        edges: list[NodePrerequisite] = []
        for node_type, model in _CONTENT_TABLES.items():
            stmt = (
                select(NodePrerequisite)
                .join(
                    model,
                    and_(
                        NodePrerequisite.node_id == model.id,
                        NodePrerequisite.node_type == node_type.value,
                    ),
                )
                .where(model.domain_id == domain_id)
                .order_by(NodePrerequisite.id)
            )
            edges.extend(self.session.scalars(stmt))
        logger.debug(f"Loaded {len(edges)} prerequisite edges for domain {domain_id}")
        return edges

    def create_prerequisite(
        self,
        node: NodeKey,
        prerequisite: NodeKey,
        weight: float,
        is_manual: bool,
    ) -> NodePrerequisite:
        edge = NodePrerequisite(
            node_id=node.node_id,
            node_type=node.node_type.value,
            prerequisite_id=prerequisite.node_id,
            prerequisite_type=prerequisite.node_type.value,
            weight=weight,
            is_manual=is_manual,
        )
        try:
            with self.session.begin_nested():
                self.session.add(edge)
                self.session.flush()
        except IntegrityError as exc:
            raise InvalidInputError(f"Prerequisite {prerequisite} -> {node} already exists") from exc
        return edge

    def delete_prerequisite(self, prerequisite_id: int) -> bool:
        result = self.session.execute(
            delete(NodePrerequisite).where(NodePrerequisite.id == prerequisite_id)
        )
        return result.rowcount > 0

    # =========================================================================
    # Progress
    # =========================================================================

    def get_progress(self, user_id: int, key: NodeKey) -> UserNodeProgress | None:
        stmt = select(UserNodeProgress).where(
            UserNodeProgress.user_id == user_id,
            UserNodeProgress.node_id == key.node_id,
            UserNodeProgress.node_type == key.node_type.value,
        )
        return self.session.scalars(stmt).one_or_none()

    def create_progress(
        self, user_id: int, key: NodeKey, status: NodeStatus = NodeStatus.FRESH
    ) -> UserNodeProgress:
        """Create a row with default SM-2 state. Pending until save_progress."""
        progress = UserNodeProgress(
            user_id=user_id,
            node_id=key.node_id,
            node_type=key.node_type.value,
            status=status.value,
            easiness_factor=self.initial_easiness,
        )
        self.session.add(progress)
        return progress

    def save_progress(self, progress: UserNodeProgress) -> None:
        """
        Flush one progress row inside a SAVEPOINT.

        A rejected credit value is re-clamped and written once more; any other
        failure propagates as StorageError so the whole submission rolls back.
        """
        snapshot = {field: getattr(progress, field) for field in _PROGRESS_FIELDS}
        label = _describe(progress)
        try:
            self._flush_progress(progress, label)
            return
        except IntegrityError as exc:
            if CREDIT_CHECK_CONSTRAINT not in str(exc.orig):
                raise StorageError(f"Failed to save progress for {label}: {exc.orig}") from exc
            logger.warning(
                f"Credit constraint rejected {snapshot['accumulated_credit']} for "
                f"{label}; re-clamping and retrying once"
            )

        snapshot["accumulated_credit"] = clamp_credit(snapshot["accumulated_credit"])
        for field, value in snapshot.items():
            setattr(progress, field, value)
        try:
            self._flush_progress(progress, label)
        except IntegrityError as exc:
            raise StorageError(
                f"Failed to save progress for {label} after bounds correction: {exc.orig}"
            ) from exc

    def _flush_progress(self, progress: UserNodeProgress, label: str) -> None:
        # A failed flush expires the instance; describe it from the label only.
        try:
            with self.session.begin_nested():
                self.session.add(progress)
                self.session.flush()
        except StaleDataError as exc:
            raise ConcurrentUpdateError(
                f"Progress for {label} was modified by another transaction"
            ) from exc
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to save progress for {label}: {exc}") from exc

    def get_due_progress(
        self,
        user_id: int,
        domain_id: int,
        scope: ReviewScope,
        now: datetime,
    ) -> list[tuple[UserNodeProgress, NodeInfo]]:
        """Grasped items of a domain scheduled at or before ``now``, oldest first."""
        due: list[tuple[UserNodeProgress, NodeInfo]] = []
        for node_type, model in _CONTENT_TABLES.items():
            if not scope.includes(node_type):
                continue
            stmt = (
                select(UserNodeProgress, model)
                .join(
                    model,
                    and_(
                        UserNodeProgress.node_id == model.id,
                        UserNodeProgress.node_type == node_type.value,
                    ),
                )
                .where(
                    model.domain_id == domain_id,
                    UserNodeProgress.user_id == user_id,
                    UserNodeProgress.status == NodeStatus.GRASPED.value,
                    (UserNodeProgress.next_review.is_(None)) | (UserNodeProgress.next_review <= now),
                )
            )
            for progress, content in self.session.execute(stmt):
                due.append(
                    (progress, NodeInfo(content.id, node_type, content.code, content.name, domain_id))
                )

        # Never-scheduled items first, then by due time.
        due.sort(key=lambda pair: (pair[0].next_review is not None, pair[0].next_review or now))
        return due

    def get_progress_map(self, user_id: int, keys: Iterable[NodeKey]) -> dict[NodeKey, UserNodeProgress]:
        wanted = set(keys)
        if not wanted:
            return {}
        stmt = select(UserNodeProgress).where(
            UserNodeProgress.user_id == user_id,
            UserNodeProgress.node_id.in_({k.node_id for k in wanted}),
        )
        result = {}
        for row in self.session.scalars(stmt):
            key = NodeKey.of(row.node_id, row.node_type)
            if key in wanted:
                result[key] = row
        return result

    # =========================================================================
    # History & sessions (write-only side channels)
    # =========================================================================

    def add_review_history(self, history: ReviewHistory) -> None:
        self.session.add(history)

    def list_review_history(
        self,
        user_id: int,
        key: NodeKey | None = None,
        limit: int = 50,
    ) -> list[ReviewHistory]:
        stmt = select(ReviewHistory).where(ReviewHistory.user_id == user_id)
        if key is not None:
            stmt = stmt.where(
                ReviewHistory.node_id == key.node_id,
                ReviewHistory.node_type == key.node_type.value,
            )
        stmt = stmt.order_by(ReviewHistory.review_time.desc(), ReviewHistory.id.desc()).limit(limit)
        return list(self.session.scalars(stmt))

    def create_session(self, user_id: int, domain_id: int, session_type: str, start_time: datetime) -> StudySession:
        study_session = StudySession(
            user_id=user_id,
            domain_id=domain_id,
            session_type=session_type,
            start_time=start_time,
            total_reviews=0,
            successful_reviews=0,
        )
        self.session.add(study_session)
        self.session.flush()
        return study_session

    def get_session(self, session_id: int) -> StudySession | None:
        return self.session.get(StudySession, session_id)

    def list_sessions(self, user_id: int, limit: int = 20) -> list[StudySession]:
        stmt = (
            select(StudySession)
            .where(StudySession.user_id == user_id)
            .order_by(StudySession.start_time.desc(), StudySession.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt))

    def add_session_review(self, review: SessionReview) -> None:
        self.session.add(review)


def _describe(progress: UserNodeProgress) -> str:
    return f"user {progress.user_id} {progress.node_type}_{progress.node_id}"
