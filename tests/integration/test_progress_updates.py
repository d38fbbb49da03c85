"""
Integration tests for applying credit flows to persisted progress.

Runs the ProgressUpdater against SRSRepository on in-memory SQLite.
"""
from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from creditflow.core.errors import ConcurrentUpdateError, StorageError
from creditflow.core.models import CreditType, CreditUpdate, NodeKey, NodeStatus, NodeType
from creditflow.db.models import UserNodeProgress
from creditflow.db.srs_repository import SRSRepository
from creditflow.srs.progress_updater import ProgressUpdater

USER = 7


def key(node_id):
    return NodeKey(NodeType.DEFINITION, node_id)


def implicit(node_id, amount):
    return CreditUpdate(node_id, NodeType.DEFINITION, amount, CreditType.IMPLICIT)


def explicit(node_id):
    return CreditUpdate(node_id, NodeType.DEFINITION, 1.0, CreditType.EXPLICIT)


@pytest.fixture
def repo(db_session):
    return SRSRepository(db_session)


@pytest.fixture
def updater():
    return ProgressUpdater()


@pytest.fixture
def make_progress(repo):
    def _make(node_id, status=NodeStatus.GRASPED, **fields):
        progress = repo.create_progress(USER, key(node_id), status)
        for name, value in fields.items():
            setattr(progress, name, value)
        repo.save_progress(progress)
        return progress

    return _make


class TestImplicitCredit:
    """Accumulation, clamping, postponement and pull-forward."""

    def test_accumulates(self, repo, updater, make_progress, now):
        make_progress(1, next_review=now + timedelta(days=3), accumulated_credit=0.2)

        updated = updater.apply_credits(repo, USER, [implicit(1, 0.25)], quality=5, now=now)

        assert len(updated) == 1
        assert updated[0].accumulated_credit == pytest.approx(0.45)
        assert updated[0].credit_postponed is False

    def test_negative_clamped_and_review_pulled_forward(self, repo, updater, make_progress, now):
        """-0.8 plus -0.5 would be -1.3: clamped to -1.0 and due now."""
        progress = make_progress(
            1,
            next_review=now + timedelta(days=5),
            accumulated_credit=-0.8,
            interval_days=6.0,
            repetitions=2,
        )

        updater.apply_credits(repo, USER, [implicit(1, -0.5)], quality=5, now=now)

        assert progress.accumulated_credit == -1.0
        assert progress.next_review == now
        assert progress.interval_days == 6.0
        assert progress.repetitions == 2
        assert progress.easiness_factor == 2.5

    def test_positive_credit_advances_schedule_once(self, repo, updater, make_progress, now):
        progress = make_progress(
            1,
            next_review=now + timedelta(days=2),
            accumulated_credit=0.8,
            interval_days=6.0,
            repetitions=2,
        )

        updater.apply_credits(repo, USER, [implicit(1, 0.3)], quality=1, now=now)

        assert progress.accumulated_credit == 1.0
        assert progress.credit_postponed is True
        assert progress.repetitions == 3
        assert progress.interval_days == 15  # round(6 * 2.5), graded "good"
        assert progress.next_review == now + timedelta(days=15)
        # Implicit credit is not a review.
        assert progress.total_reviews == 0
        assert progress.last_review is None

    def test_postponed_credit_has_no_further_effect(self, repo, updater, make_progress, now):
        progress = make_progress(
            1,
            next_review=now + timedelta(days=15),
            accumulated_credit=1.0,
            credit_postponed=True,
            interval_days=15.0,
            repetitions=3,
        )

        updater.apply_credits(repo, USER, [implicit(1, 0.4)], quality=5, now=now)

        assert progress.accumulated_credit == 1.0
        assert progress.repetitions == 3
        assert progress.next_review == now + timedelta(days=15)

    def test_lapsed_schedule_resets_stale_credit(self, repo, updater, make_progress, now):
        progress = make_progress(
            1,
            next_review=now - timedelta(days=1),
            accumulated_credit=0.9,
            credit_postponed=True,
        )

        updater.apply_credits(repo, USER, [implicit(1, 0.2)], quality=5, now=now)

        assert progress.accumulated_credit == pytest.approx(0.2)
        assert progress.credit_postponed is False

    def test_never_creates_rows(self, repo, updater, now):
        updated = updater.apply_credits(repo, USER, [implicit(1, 0.5)], quality=5, now=now)

        assert updated == []
        assert repo.get_progress(USER, key(1)) is None

    @pytest.mark.parametrize("status", [NodeStatus.FRESH, NodeStatus.TACKLING, NodeStatus.LEARNED])
    def test_only_grasped_items_take_credit(self, repo, updater, make_progress, now, status):
        progress = make_progress(1, status=status, next_review=now + timedelta(days=1))

        updated = updater.apply_credits(repo, USER, [implicit(1, -2.0)], quality=5, now=now)

        assert updated == []
        assert progress.accumulated_credit == 0.0
        assert progress.next_review == now + timedelta(days=1)

    def test_credit_always_in_bounds(self, repo, updater, make_progress, now):
        progress = make_progress(1, next_review=now + timedelta(days=30))

        for amount in (0.7, 0.7, -0.9, -0.9, -0.9, 0.4):
            updater.apply_credits(repo, USER, [implicit(1, amount)], quality=5, now=now)
            assert -1.0 <= progress.accumulated_credit <= 1.0


class TestExplicitCredit:
    """Full SM-2 update for the reviewed item."""

    def test_updates_schedule_and_counters(self, repo, updater, make_progress, now):
        progress = make_progress(
            1,
            interval_days=6.0,
            repetitions=2,
            accumulated_credit=0.6,
            credit_postponed=True,
            next_review=now + timedelta(days=1),
        )

        updater.apply_credits(repo, USER, [explicit(1)], quality=5, now=now)

        assert progress.easiness_factor == pytest.approx(2.6)
        assert progress.repetitions == 3
        assert progress.interval_days == 16
        assert progress.next_review == now + timedelta(days=16)
        assert progress.last_review == now
        assert progress.total_reviews == 1
        assert progress.successful_reviews == 1
        assert progress.accumulated_credit == 0.0
        assert progress.credit_postponed is False

    def test_failed_review_counts_but_does_not_succeed(self, repo, updater, make_progress, now):
        progress = make_progress(1, interval_days=16.0, repetitions=3)

        updater.apply_credits(repo, USER, [explicit(1)], quality=2, now=now)

        assert progress.repetitions == 0
        assert progress.interval_days == 1
        assert progress.total_reviews == 1
        assert progress.successful_reviews == 0

    def test_creates_missing_row_as_grasped(self, repo, updater, now):
        updated = updater.apply_credits(repo, USER, [explicit(1)], quality=4, now=now)

        assert len(updated) == 1
        assert updated[0].status == NodeStatus.GRASPED.value
        assert updated[0].repetitions == 1
        assert repo.get_progress(USER, key(1)) is updated[0]

    def test_mixed_flow_in_order(self, repo, updater, make_progress, now):
        make_progress(1, next_review=now + timedelta(days=4))
        make_progress(2, next_review=now + timedelta(days=4))

        updated = updater.apply_credits(
            repo, USER, [explicit(2), implicit(1, 0.25), implicit(3, 0.1)], quality=4, now=now
        )

        assert [p.node_id for p in updated] == [2, 1]


class TestSaveProgress:
    """Savepoint writes and the bounds-correction retry."""

    def test_rejected_credit_is_reclamped(self, repo, db_session, make_progress):
        progress = make_progress(1)

        progress.accumulated_credit = 1.5
        repo.save_progress(progress)

        assert progress.accumulated_credit == 1.0
        stored = db_session.scalar(
            select(UserNodeProgress.accumulated_credit).where(UserNodeProgress.id == progress.id)
        )
        assert stored == 1.0

    def test_rejected_credit_on_new_row(self, repo, db_session):
        progress = repo.create_progress(USER, key(5), NodeStatus.GRASPED)
        progress.accumulated_credit = -3.0

        repo.save_progress(progress)

        assert progress.id is not None
        assert progress.accumulated_credit == -1.0

    def test_other_integrity_errors_fail(self, repo, make_progress):
        progress = make_progress(1)
        progress.status = "forgotten"

        with pytest.raises(StorageError):
            repo.save_progress(progress)

    def test_version_increments(self, repo, make_progress):
        progress = make_progress(1)
        first = progress.version

        progress.accumulated_credit = 0.3
        repo.save_progress(progress)

        assert progress.version == first + 1


class TestConcurrentWriters:
    """Two transactions writing the same progress row."""

    def test_second_writer_gets_concurrent_update_error(self, engine):
        factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        with factory() as setup:
            repo = SRSRepository(setup)
            repo.save_progress(repo.create_progress(USER, key(1), NodeStatus.GRASPED))
            setup.commit()

        first, second = factory(), factory()
        try:
            mine = SRSRepository(first).get_progress(USER, key(1))
            first.commit()
            theirs = SRSRepository(second).get_progress(USER, key(1))
            second.commit()

            mine.accumulated_credit = 0.4
            SRSRepository(first).save_progress(mine)
            first.commit()

            theirs.accumulated_credit = -0.2
            with pytest.raises(ConcurrentUpdateError, match="modified by another transaction"):
                SRSRepository(second).save_progress(theirs)
        finally:
            second.rollback()
            first.close()
            second.close()

        with factory() as check:
            stored = SRSRepository(check).get_progress(USER, key(1))
            assert stored.accumulated_credit == pytest.approx(0.4)
            assert stored.version == 2
