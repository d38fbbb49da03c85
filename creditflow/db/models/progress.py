"""
Per-user review state and the write-only review/session logs.

UserNodeProgress is the only mutable table the scheduling engines touch. It
carries a version counter so that two transactions updating the same row
cannot both commit; the loser fails with StaleDataError.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

DEFAULT_EASINESS = 2.5


class UserNodeProgress(Base):
    """
    SM-2 and implicit-credit state for one (user, item) pair.

    Attributes:
        status: fresh / tackling / grasped / learned
        easiness_factor: SM-2 EF, never below 1.3
        interval_days: Current interval, fractional days allowed
        repetitions: Consecutive successful reviews
        accumulated_credit: Implicit credit in [-1, 1]
        credit_postponed: Positive credit already advanced the schedule once
    """

    __tablename__ = "user_node_progress"
    __table_args__ = (
        UniqueConstraint("user_id", "node_id", "node_type", name="uq_user_node_progress"),
        CheckConstraint(
            "accumulated_credit >= -1.0 AND accumulated_credit <= 1.0",
            name="user_node_progress_accumulated_credit_check",
        ),
        CheckConstraint(
            "status IN ('fresh', 'tackling', 'grasped', 'learned')",
            name="user_node_progress_status_check",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    node_id: Mapped[int] = mapped_column(Integer, nullable=False)
    node_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="fresh")

    # SM-2 state
    easiness_factor: Mapped[float] = mapped_column(Float, nullable=False, default=DEFAULT_EASINESS)
    interval_days: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    repetitions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_review: Mapped[datetime | None] = mapped_column()
    next_review: Mapped[datetime | None] = mapped_column(index=True)

    # Implicit credit
    accumulated_credit: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    credit_postponed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Counters
    total_reviews: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    successful_reviews: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(default=func.now())
    updated_at: Mapped[datetime] = mapped_column(default=func.now(), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version}

    def __init__(self, **kwargs) -> None:
        # Column defaults only apply at flush; engines read these before that.
        kwargs.setdefault("status", "fresh")
        kwargs.setdefault("easiness_factor", DEFAULT_EASINESS)
        kwargs.setdefault("interval_days", 0.0)
        kwargs.setdefault("repetitions", 0)
        kwargs.setdefault("accumulated_credit", 0.0)
        kwargs.setdefault("credit_postponed", False)
        kwargs.setdefault("total_reviews", 0)
        kwargs.setdefault("successful_reviews", 0)
        super().__init__(**kwargs)

    def __repr__(self) -> str:
        return (
            f"<UserNodeProgress(user:{self.user_id}, {self.node_type}_{self.node_id}, "
            f"{self.status}, credit={self.accumulated_credit:.3f})>"
        )

    def is_due(self, now: datetime) -> bool:
        """Grasped and scheduled at or before ``now`` (never scheduled counts as due)."""
        if self.status != "grasped":
            return False
        return self.next_review is None or self.next_review <= now

    def to_dict(self) -> dict[str, object]:
        return {
            "user_id": self.user_id,
            "node_id": self.node_id,
            "node_type": self.node_type,
            "status": self.status,
            "easiness_factor": self.easiness_factor,
            "interval_days": self.interval_days,
            "repetitions": self.repetitions,
            "last_review": self.last_review,
            "next_review": self.next_review,
            "accumulated_credit": self.accumulated_credit,
            "credit_postponed": self.credit_postponed,
            "total_reviews": self.total_reviews,
            "successful_reviews": self.successful_reviews,
        }


class ReviewHistory(Base):
    """Append-only record of one explicit review."""

    __tablename__ = "review_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    node_id: Mapped[int] = mapped_column(Integer, nullable=False)
    node_type: Mapped[str] = mapped_column(String(20), nullable=False)
    review_time: Mapped[datetime] = mapped_column(nullable=False)
    review_type: Mapped[str] = mapped_column(String(20), nullable=False, default="explicit")
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    quality: Mapped[int | None] = mapped_column(Integer)
    time_taken: Mapped[int | None] = mapped_column(Integer)  # seconds
    credit_applied: Mapped[float] = mapped_column(Float, default=1.0)
    easiness_factor_before: Mapped[float | None] = mapped_column(Float)
    easiness_factor_after: Mapped[float | None] = mapped_column(Float)
    interval_before: Mapped[float | None] = mapped_column(Float)
    interval_after: Mapped[float | None] = mapped_column(Float)

    def __repr__(self) -> str:
        return f"<ReviewHistory(user:{self.user_id}, {self.node_type}_{self.node_id}, q={self.quality})>"

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "node_id": self.node_id,
            "node_type": self.node_type,
            "review_time": self.review_time,
            "review_type": self.review_type,
            "success": self.success,
            "quality": self.quality,
            "time_taken": self.time_taken,
            "credit_applied": self.credit_applied,
            "easiness_factor_before": self.easiness_factor_before,
            "easiness_factor_after": self.easiness_factor_after,
            "interval_before": self.interval_before,
            "interval_after": self.interval_after,
        }


class StudySession(Base):
    """A study session; counters are bumped by each review submitted within it."""

    __tablename__ = "study_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    domain_id: Mapped[int] = mapped_column(
        ForeignKey("domains.id", ondelete="CASCADE"), nullable=False
    )
    session_type: Mapped[str] = mapped_column(String(20), nullable=False)  # definition/exercise/mixed
    start_time: Mapped[datetime] = mapped_column(nullable=False)
    end_time: Mapped[datetime | None] = mapped_column()
    total_reviews: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    successful_reviews: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    reviews: Mapped[list[SessionReview]] = relationship(
        back_populates="session", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<StudySession({self.id}, user:{self.user_id}, {self.session_type})>"

    @property
    def duration_seconds(self) -> int | None:
        if self.end_time is None:
            return None
        return int((self.end_time - self.start_time).total_seconds())

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "domain_id": self.domain_id,
            "session_type": self.session_type,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "total_reviews": self.total_reviews,
            "successful_reviews": self.successful_reviews,
            "duration_seconds": self.duration_seconds,
        }


class SessionReview(Base):
    """A review performed inside a study session."""

    __tablename__ = "session_reviews"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    session_id: Mapped[int] = mapped_column(
        ForeignKey("study_sessions.id", ondelete="CASCADE"), nullable=False
    )
    node_id: Mapped[int] = mapped_column(Integer, nullable=False)
    node_type: Mapped[str] = mapped_column(String(20), nullable=False)
    review_type: Mapped[str] = mapped_column(String(20), nullable=False, default="explicit")
    review_time: Mapped[datetime] = mapped_column(nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    quality: Mapped[int | None] = mapped_column(Integer)
    time_taken: Mapped[int | None] = mapped_column(Integer)
    credit_applied: Mapped[float] = mapped_column(Float, default=1.0)

    session: Mapped[StudySession] = relationship(back_populates="reviews")
