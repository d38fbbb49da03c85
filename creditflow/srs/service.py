"""
SRS Service: review submission, status updates and due-review listing.

Provides high-level operations for the API and the CLI:
- Submit an explicit review and propagate its credit through the domain graph
- Preview the credit flow of a review without applying it
- Set an item's status and cascade it
- List due reviews, ordered by downstream impact
- Domain progress overview and review history
- Study sessions and prerequisite edges

Every public method runs in one transaction. Database failures surface as
StorageError (ConcurrentUpdateError when a progress row was updated by another
transaction first) after the whole transaction has been rolled back.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from creditflow.core.clock import as_naive_utc, utcnow
from creditflow.core.errors import (
    ConcurrentUpdateError,
    InvalidInputError,
    NotFoundError,
    PreconditionError,
    SRSError,
    StorageError,
)
from creditflow.core.models import CreditUpdate, NodeKey, NodeStatus, NodeType, ReviewScope
from creditflow.db.database import session_scope
from creditflow.db.models import ReviewHistory, SessionReview, StudySession, UserNodeProgress
from creditflow.db.srs_repository import NodeInfo, PrerequisiteStore, SRSRepository
from creditflow.graph.credit_propagation import CreditPropagationConfig, CreditPropagator
from creditflow.graph.prerequisite_graph import PrerequisiteGraph, build_graph
from creditflow.graph.review_ordering import ReviewOrderer, ReviewOrderingConfig
from creditflow.srs.progress_updater import ProgressUpdater
from creditflow.srs.sm2 import SM2Config, SM2Scheduler
from creditflow.srs.status_propagation import StatusPropagator


@dataclass
class ReviewRequest:
    """An explicit review submitted by a user."""

    node_id: int
    node_type: str
    success: bool
    quality: int
    time_taken: int = 0  # seconds
    session_id: int | None = None


@dataclass
class ReviewOutcome:
    """Result of a review submission."""

    updated_progress: list[dict] = field(default_factory=list)
    credit_flow: list[CreditUpdate] = field(default_factory=list)


@dataclass
class DueReview:
    """A due item with the metadata needed to present it."""

    node_id: int
    node_type: str
    code: str
    name: str
    status: str
    easiness_factor: float
    interval_days: float
    repetitions: int
    last_review: datetime | None
    next_review: datetime | None
    accumulated_credit: float
    credit_postponed: bool
    total_reviews: int
    successful_reviews: int
    days_until_review: int
    is_due: bool
    impact: float = 0.0
    distance_from_root: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def _parse_node_type(value: NodeType | str) -> NodeType:
    try:
        return NodeType(value)
    except ValueError:
        raise InvalidInputError(
            f"Invalid node type {value!r}: expected 'definition' or 'exercise'"
        ) from None


def _parse_scope(value: ReviewScope | str) -> ReviewScope:
    try:
        return ReviewScope(value)
    except ValueError:
        raise InvalidInputError(
            f"Invalid review type {value!r}: expected 'definition', 'exercise' or 'mixed'"
        ) from None


def _parse_status(value: NodeStatus | str) -> NodeStatus:
    try:
        return NodeStatus(value)
    except ValueError:
        raise InvalidInputError(
            f"Invalid status {value!r}: expected one of "
            + ", ".join(s.value for s in NodeStatus)
        ) from None


class SRSService:
    """
    Transactional facade over the scheduling engines.

    Args:
        session_factory: SQLAlchemy sessionmaker; one session per call
        sm2_config: Interval scheduler configuration
        propagation_config: Credit propagation configuration
        ordering_config: Review ordering configuration
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        sm2_config: SM2Config | None = None,
        propagation_config: CreditPropagationConfig | None = None,
        ordering_config: ReviewOrderingConfig | None = None,
    ):
        self.session_factory = session_factory
        self.scheduler = SM2Scheduler(sm2_config)
        self.propagator = CreditPropagator(propagation_config)
        self.updater = ProgressUpdater(self.scheduler)
        self.orderer = ReviewOrderer(ordering_config, self.propagator)

    @classmethod
    def from_settings(cls, session_factory: sessionmaker[Session], settings) -> SRSService:
        """Build a service with engine configs taken from ``Settings``."""
        return cls(
            session_factory,
            sm2_config=settings.get_sm2_config(),
            propagation_config=settings.get_propagation_config(),
            ordering_config=settings.get_ordering_config(),
        )

    @contextmanager
    def _transaction(self) -> Generator[SRSRepository, None, None]:
        try:
            with session_scope(self.session_factory) as session:
                yield SRSRepository(session, self.scheduler.config.initial_easiness)
        except SRSError:
            raise
        except StaleDataError as exc:
            raise ConcurrentUpdateError(f"Concurrent update detected: {exc}") from exc
        except SQLAlchemyError as exc:
            raise StorageError(f"Database error: {exc}") from exc

    def _domain_graph(self, store: PrerequisiteStore, domain_id: int) -> PrerequisiteGraph:
        return build_graph(store.get_prerequisites_by_domain(domain_id))

    # =========================================================================
    # Reviews
    # =========================================================================

    def submit_review(
        self,
        user_id: int,
        request: ReviewRequest,
        now: datetime | None = None,
    ) -> ReviewOutcome:
        """
        Process an explicit review and propagate its credit.

        Args:
            user_id: Reviewing user
            request: Reviewed item, outcome, quality and timing
            now: Review time (defaults to current UTC time)

        Returns:
            ReviewOutcome with the updated progress rows and the credit flow

        Raises:
            InvalidInputError: Unknown node type or quality outside 0-5
            NotFoundError: Unknown item or session
            PreconditionError: The item is not grasped
            StorageError: The transaction failed and was rolled back
        """
        node_type = _parse_node_type(request.node_type)
        if not 0 <= request.quality <= 5:
            raise InvalidInputError(f"Quality must be between 0 and 5, got {request.quality}")
        key = NodeKey(node_type, request.node_id)
        now = as_naive_utc(now) if now else utcnow()

        with self._transaction() as repo:
            domain_id = repo.get_domain_id_for_node(key)

            progress = repo.get_progress(user_id, key)
            if progress is None or progress.status != NodeStatus.GRASPED.value:
                current = progress.status if progress else NodeStatus.FRESH.value
                raise PreconditionError(
                    f"{key} must be grasped before it can be reviewed (current status: {current})"
                )

            study_session = None
            if request.session_id is not None:
                study_session = self._require_session(repo, user_id, request.session_id)

            ef_before = progress.easiness_factor
            interval_before = progress.interval_days

            graph = self._domain_graph(repo, domain_id)
            credits = self.propagator.propagate(key.node_id, key.node_type, request.success, graph)
            updated = self.updater.apply_credits(repo, user_id, credits, request.quality, now)

            repo.add_review_history(
                ReviewHistory(
                    user_id=user_id,
                    node_id=key.node_id,
                    node_type=key.node_type.value,
                    review_time=now,
                    review_type="explicit",
                    success=request.success,
                    quality=request.quality,
                    time_taken=request.time_taken,
                    credit_applied=1.0,
                    easiness_factor_before=ef_before,
                    easiness_factor_after=progress.easiness_factor,
                    interval_before=interval_before,
                    interval_after=progress.interval_days,
                )
            )
            if study_session is not None:
                self._record_session_review(repo, study_session, key, request, now)

            logger.info(
                f"Review of {key} by user {user_id}: success={request.success}, "
                f"quality={request.quality}, {len(credits)} contributions, {len(updated)} items updated"
            )
            return ReviewOutcome(
                updated_progress=[p.to_dict() for p in updated],
                credit_flow=credits,
            )

    def _record_session_review(
        self,
        repo: SRSRepository,
        study_session: StudySession,
        key: NodeKey,
        request: ReviewRequest,
        now: datetime,
    ) -> None:
        study_session.total_reviews += 1
        if request.success:
            study_session.successful_reviews += 1
        repo.add_session_review(
            SessionReview(
                session_id=study_session.id,
                node_id=key.node_id,
                node_type=key.node_type.value,
                review_type="explicit",
                review_time=now,
                success=request.success,
                quality=request.quality,
                time_taken=request.time_taken,
                credit_applied=1.0,
            )
        )

    def preview_credit(
        self,
        domain_id: int,
        node_id: int,
        node_type: NodeType | str,
        success: bool = True,
    ) -> list[CreditUpdate]:
        """
        Credit flow a review of an item would produce, without applying it.

        Nothing is written: no progress, history or session rows change, and
        the reviewing user's status is not checked.

        Raises:
            InvalidInputError: Unknown node type
            NotFoundError: Unknown domain, or the item is not part of it
        """
        key = NodeKey(_parse_node_type(node_type), node_id)

        with self._transaction() as repo:
            repo.require_domain(domain_id)
            if repo.get_domain_id_for_node(key) != domain_id:
                raise NotFoundError(f"{key} is not part of domain {domain_id}")
            graph = self._domain_graph(repo, domain_id)
            credits = self.propagator.propagate(key.node_id, key.node_type, success, graph)

        logger.debug(f"Credit preview for {key} (success={success}): {len(credits)} contributions")
        return credits

    # =========================================================================
    # Status
    # =========================================================================

    def update_status(
        self,
        user_id: int,
        node_id: int,
        node_type: NodeType | str,
        status: NodeStatus | str,
    ) -> list[dict]:
        """Set an item's status and cascade it. Returns the rows whose status changed."""
        key = NodeKey(_parse_node_type(node_type), node_id)
        target = _parse_status(status)

        with self._transaction() as repo:
            domain_id = repo.get_domain_id_for_node(key)
            graph = self._domain_graph(repo, domain_id)
            changed = StatusPropagator(repo, user_id, graph).set_status(key, target)
            return [p.to_dict() for p in changed]

    # =========================================================================
    # Due reviews & progress
    # =========================================================================

    def get_due_reviews(
        self,
        user_id: int,
        domain_id: int,
        scope: ReviewScope | str = ReviewScope.MIXED,
        now: datetime | None = None,
    ) -> list[DueReview]:
        """Due items of a domain, highest downstream impact first."""
        review_scope = _parse_scope(scope)
        now = as_naive_utc(now) if now else utcnow()

        with self._transaction() as repo:
            repo.require_domain(domain_id)
            due = [
                _due_review(progress, info, now)
                for progress, info in repo.get_due_progress(user_id, domain_id, review_scope, now)
            ]
            if not due:
                return []

            graph = self._domain_graph(repo, domain_id)
            ordered = []
            for score, item in self.orderer.rank(due, graph):
                item.impact = score.impact
                item.distance_from_root = score.distance_from_root
                ordered.append(item)

            logger.debug(f"{len(ordered)} due reviews for user {user_id} in domain {domain_id}")
            return ordered

    def get_domain_progress(self, user_id: int, domain_id: int) -> list[dict]:
        """One entry per item of the domain; items without a row report as fresh."""
        with self._transaction() as repo:
            repo.require_domain(domain_id)
            nodes = repo.list_domain_nodes(domain_id)
            rows = repo.get_progress_map(
                user_id, (NodeKey(n.node_type, n.node_id) for n in nodes)
            )

            entries = []
            for node in nodes:
                progress = rows.get(NodeKey(node.node_type, node.node_id))
                if progress is None:
                    progress = UserNodeProgress(
                        user_id=user_id,
                        node_id=node.node_id,
                        node_type=node.node_type.value,
                        easiness_factor=self.scheduler.config.initial_easiness,
                    )
                entry = progress.to_dict()
                entry.update(code=node.code, name=node.name)
                entries.append(entry)
            return entries

    def get_review_history(
        self,
        user_id: int,
        node_id: int | None = None,
        node_type: NodeType | str | None = None,
        limit: int = 50,
    ) -> list[dict]:
        """Most recent explicit reviews, optionally for a single item."""
        if (node_id is None) != (node_type is None):
            raise InvalidInputError("node_id and node_type must be given together")
        if limit < 1:
            raise InvalidInputError(f"limit must be positive, got {limit}")
        key = NodeKey(_parse_node_type(node_type), node_id) if node_id is not None else None

        with self._transaction() as repo:
            return [h.to_dict() for h in repo.list_review_history(user_id, key, limit)]

    # =========================================================================
    # Study sessions
    # =========================================================================

    def start_session(
        self,
        user_id: int,
        domain_id: int,
        session_type: ReviewScope | str = ReviewScope.MIXED,
        now: datetime | None = None,
    ) -> dict:
        scope = _parse_scope(session_type)
        now = as_naive_utc(now) if now else utcnow()

        with self._transaction() as repo:
            repo.require_domain(domain_id)
            study_session = repo.create_session(user_id, domain_id, scope.value, now)
            logger.info(f"Started {scope.value} session {study_session.id} for user {user_id}")
            return study_session.to_dict()

    def end_session(self, user_id: int, session_id: int, now: datetime | None = None) -> dict:
        now = as_naive_utc(now) if now else utcnow()

        with self._transaction() as repo:
            study_session = self._require_session(repo, user_id, session_id)
            if study_session.end_time is None:
                study_session.end_time = max(now, study_session.start_time)
                logger.info(
                    f"Ended session {session_id}: {study_session.successful_reviews}/"
                    f"{study_session.total_reviews} successful reviews"
                )
            return study_session.to_dict()

    def list_sessions(self, user_id: int, limit: int = 20) -> list[dict]:
        if limit < 1:
            raise InvalidInputError(f"limit must be positive, got {limit}")
        with self._transaction() as repo:
            return [s.to_dict() for s in repo.list_sessions(user_id, limit)]

    def _require_session(self, repo: SRSRepository, user_id: int, session_id: int) -> StudySession:
        study_session = repo.get_session(session_id)
        # Another user's session is reported exactly like a missing one.
        if study_session is None or study_session.user_id != user_id:
            raise NotFoundError(f"Session {session_id} not found")
        return study_session

    # =========================================================================
    # Prerequisites
    # =========================================================================

    def create_prerequisite(
        self,
        node_id: int,
        node_type: NodeType | str,
        prerequisite_id: int,
        prerequisite_type: NodeType | str,
        weight: float = 1.0,
        is_manual: bool = True,
    ) -> dict:
        """Add an edge: ``node`` depends on ``prerequisite``."""
        node = NodeKey(_parse_node_type(node_type), node_id)
        prerequisite = NodeKey(_parse_node_type(prerequisite_type), prerequisite_id)
        if not 0 < weight <= 1:
            raise InvalidInputError(f"Weight must be in (0, 1], got {weight}")
        if node == prerequisite:
            raise InvalidInputError(f"{node} cannot be its own prerequisite")

        with self._transaction() as repo:
            for key in (node, prerequisite):
                if repo.get_node(key) is None:
                    raise NotFoundError(f"{key.node_type.value} {key.node_id} not found")
            edge = repo.create_prerequisite(node, prerequisite, weight, is_manual)
            logger.info(f"Created prerequisite {prerequisite} -> {node} (weight={weight})")
            return edge.to_dict()

    def list_prerequisites(self, domain_id: int) -> list[dict]:
        with self._transaction() as repo:
            repo.require_domain(domain_id)
            return [e.to_dict() for e in repo.get_prerequisites_by_domain(domain_id)]

    def delete_prerequisite(self, prerequisite_id: int) -> None:
        with self._transaction() as repo:
            if not repo.delete_prerequisite(prerequisite_id):
                raise NotFoundError(f"Prerequisite {prerequisite_id} not found")
            logger.info(f"Deleted prerequisite {prerequisite_id}")


def _due_review(progress: UserNodeProgress, info: NodeInfo, now: datetime) -> DueReview:
    days_until = 0
    if progress.next_review is not None:
        days_until = (progress.next_review.date() - now.date()).days
    return DueReview(
        node_id=info.node_id,
        node_type=info.node_type.value,
        code=info.code,
        name=info.name,
        status=progress.status,
        easiness_factor=progress.easiness_factor,
        interval_days=progress.interval_days,
        repetitions=progress.repetitions,
        last_review=progress.last_review,
        next_review=progress.next_review,
        accumulated_credit=progress.accumulated_credit,
        credit_postponed=progress.credit_postponed,
        total_reviews=progress.total_reviews,
        successful_reviews=progress.successful_reviews,
        days_until_review=days_until,
        is_due=progress.is_due(now),
    )
