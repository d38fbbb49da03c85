"""
Applies a credit flow to persisted per-user progress.

Explicit contribution: a full SM-2 update with the submitted quality.
Implicit contribution: accumulated into ``accumulated_credit`` (kept in
[-1, 1]). Reaching +1 advances the schedule once with a "good" grade and
postpones further positive credit until the next explicit review; reaching -1
pulls the next review forward to now.

Only grasped items take part. The caller owns the transaction: if any save
fails the exception propagates and the whole batch is rolled back.
"""
from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from loguru import logger

from creditflow.core.clock import utcnow
from creditflow.core.models import CreditUpdate, NodeStatus
from creditflow.db.models import UserNodeProgress
from creditflow.db.srs_repository import ProgressStore, clamp_credit
from creditflow.srs.sm2 import SM2Scheduler


class ProgressUpdater:
    """Applies credit contributions to progress rows through a ProgressStore."""

    def __init__(self, scheduler: SM2Scheduler | None = None):
        self.scheduler = scheduler or SM2Scheduler()

    def apply_credits(
        self,
        store: ProgressStore,
        user_id: int,
        credits: Iterable[CreditUpdate],
        quality: int,
        now: datetime | None = None,
    ) -> list[UserNodeProgress]:
        """
        Apply a credit flow for one review submission.

        Args:
            store: Progress store bound to the submission's transaction
            user_id: Reviewing user
            credits: Contributions from credit propagation, explicit first
            quality: Submitted grade, used for the explicit contribution only
            now: Review time

        Returns:
            Progress rows that were updated, in contribution order
        """
        now = now or utcnow()
        updated: list[UserNodeProgress] = []
        clamped = 0

        for credit in credits:
            progress = store.get_progress(user_id, credit.key)
            if progress is None:
                # Implicit credit never reaches items the user has not engaged with.
                if not credit.is_explicit:
                    continue
                progress = store.create_progress(user_id, credit.key, NodeStatus.GRASPED)

            if progress.status != NodeStatus.GRASPED.value:
                continue

            # A lapsed schedule invalidates stale partial credit.
            if progress.next_review is not None and progress.next_review < now:
                progress.accumulated_credit = 0.0
                progress.credit_postponed = False

            if credit.is_explicit:
                self._apply_explicit(progress, quality, now)
            elif self._apply_implicit(progress, credit, now):
                clamped += 1

            store.save_progress(progress)
            updated.append(progress)

        if clamped:
            logger.info(f"Credit application for user {user_id} completed with {clamped} clamped values")
        return updated

    def _apply_explicit(self, progress: UserNodeProgress, quality: int, now: datetime) -> None:
        result = self.scheduler.schedule(progress, quality, now)
        progress.easiness_factor = result.easiness_factor
        progress.interval_days = result.interval_days
        progress.repetitions = result.repetitions
        progress.next_review = result.next_review
        progress.last_review = now
        progress.total_reviews += 1
        if quality >= 3:
            progress.successful_reviews += 1
        progress.accumulated_credit = 0.0
        progress.credit_postponed = False

    def _apply_implicit(self, progress: UserNodeProgress, credit: CreditUpdate, now: datetime) -> bool:
        """Accumulate implicit credit. Returns True when the value had to be clamped."""
        original = progress.accumulated_credit
        attempted = original + credit.credit
        new_credit = clamp_credit(attempted)
        was_clamped = new_credit != attempted
        if was_clamped:
            logger.warning(
                f"Credit limit reached for {progress.node_type}_{progress.node_id}. "
                f"Original: {original:.3f}, Attempted: {attempted:.3f}, Applied: {new_credit:.3f}"
            )

        if credit.credit > 0 and not progress.credit_postponed and new_credit >= 1.0:
            new_credit = 1.0
            progress.credit_postponed = True
            result = self.scheduler.schedule(progress, self.scheduler.config.implicit_quality, now)
            progress.interval_days = result.interval_days
            progress.repetitions = result.repetitions
            progress.next_review = result.next_review
            logger.debug(f"Implicit credit postponed review of {progress.node_type}_{progress.node_id}")

        if credit.credit < 0 and new_credit <= -1.0:
            new_credit = -1.0
            progress.next_review = now
            logger.debug(f"Implicit debit pulled review of {progress.node_type}_{progress.node_id} to now")

        progress.accumulated_credit = new_credit
        return was_clamped
