"""
Unit tests for the SM-2 interval scheduler.
"""
from datetime import datetime, timedelta

import pytest

from creditflow.srs.sm2 import SM2Config, SM2Scheduler

NOW = datetime(2024, 3, 1, 9, 0, 0)


class TestCalculateNextReview:
    """Test the SM-2 update rule."""

    @pytest.fixture
    def scheduler(self):
        return SM2Scheduler()

    def test_perfect_recall_after_two_repetitions(self, scheduler):
        """Quality 5 at EF 2.5, interval 6, reps 2 -> EF 2.6, reps 3, interval 16."""
        result = scheduler.calculate_next_review(2.5, 6, 2, 5, NOW)

        assert result.easiness_factor == pytest.approx(2.6)
        assert result.repetitions == 3
        assert result.interval_days == 16
        assert result.next_review == NOW + timedelta(days=16)

    def test_first_and_second_success(self, scheduler):
        """First success schedules one day ahead, second six days."""
        first = scheduler.calculate_next_review(2.5, 0, 0, 4, NOW)
        assert first.repetitions == 1
        assert first.interval_days == 1

        second = scheduler.calculate_next_review(first.easiness_factor, first.interval_days, 1, 4, NOW)
        assert second.repetitions == 2
        assert second.interval_days == 6

    @pytest.mark.parametrize("quality", [0, 1, 2])
    def test_failure_resets_progression(self, scheduler, quality):
        """Quality below 3 resets repetitions to 0 and interval to 1."""
        result = scheduler.calculate_next_review(2.5, 40, 7, quality, NOW)

        assert result.repetitions == 0
        assert result.interval_days == 1
        assert result.next_review == NOW + timedelta(days=1)

    def test_easiness_never_below_minimum(self, scheduler):
        """Repeated blackouts keep EF at 1.3."""
        result = scheduler.calculate_next_review(1.35, 1, 0, 0, NOW)
        assert result.easiness_factor == pytest.approx(1.3)

    def test_quality_four_keeps_easiness(self, scheduler):
        """Quality 4 leaves EF unchanged."""
        result = scheduler.calculate_next_review(2.2, 6, 2, 4, NOW)
        assert result.easiness_factor == pytest.approx(2.2)

    def test_rounds_half_away_from_zero(self, scheduler):
        """5 * 2.5 = 12.5 rounds to 13, not to the even 12."""
        result = scheduler.calculate_next_review(2.5, 5, 2, 4, NOW)
        assert result.interval_days == 13

    def test_out_of_range_quality_is_clamped(self, scheduler):
        """The function stays total for grades outside 0-5."""
        high = scheduler.calculate_next_review(2.5, 6, 2, 9, NOW)
        assert high == scheduler.calculate_next_review(2.5, 6, 2, 5, NOW)

        low = scheduler.calculate_next_review(2.5, 6, 2, -3, NOW)
        assert low == scheduler.calculate_next_review(2.5, 6, 2, 0, NOW)

    def test_success_moves_next_review_into_future(self, scheduler):
        for reps in range(5):
            result = scheduler.calculate_next_review(2.5, 6, reps, 3, NOW)
            assert result.next_review > NOW

    def test_custom_minimum_easiness(self):
        scheduler = SM2Scheduler(SM2Config(minimum_easiness=2.0))
        result = scheduler.calculate_next_review(2.1, 1, 0, 0, NOW)
        assert result.easiness_factor == pytest.approx(2.0)


class TestSchedule:
    """Test scheduling against an object carrying SM-2 fields."""

    def test_reads_fields_from_progress(self):
        class Progress:
            easiness_factor = 2.5
            interval_days = 6.0
            repetitions = 2

        result = SM2Scheduler().schedule(Progress(), 5, NOW)
        assert result.interval_days == 16


class TestGradeFromResponse:
    """Test deriving a grade from correctness and timing."""

    @pytest.fixture
    def scheduler(self):
        return SM2Scheduler()

    @pytest.mark.parametrize(
        "is_correct,seconds,expected",
        [
            (True, 2, 5),
            (True, 7, 4),
            (True, 30, 3),
            (False, 2, 2),
            (False, 7, 1),
            (False, 30, 0),
        ],
    )
    def test_grades(self, scheduler, is_correct, seconds, expected):
        assert scheduler.grade_from_response(is_correct, seconds) == expected
