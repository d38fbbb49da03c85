"""
SM-2 interval scheduler.

SM-2 Grade Scale:
0 - Complete blackout, wrong response
1 - Incorrect, but upon seeing answer remembered
2 - Incorrect, but answer seemed easy to recall
3 - Correct, but with significant difficulty
4 - Correct, with some hesitation
5 - Correct, with perfect recall
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from creditflow.core.clock import utcnow

# =============================================================================
# SM-2 Algorithm
# =============================================================================


@dataclass
class SM2Config:
    """Configuration for SM-2 algorithm."""

    initial_easiness: float = 2.5
    minimum_easiness: float = 1.3
    first_interval: float = 1  # Days for first review
    second_interval: float = 6  # Days for second review
    implicit_quality: int = 4  # "Good" grade used when implicit credit advances a schedule


@dataclass(frozen=True)
class SM2Result:
    """New scheduling state after one graded review."""

    easiness_factor: float
    interval_days: float
    repetitions: int
    next_review: datetime


class SM2Scheduler:
    """
    Implements the SM-2 spaced repetition algorithm.

    The SuperMemo 2 algorithm calculates optimal review intervals
    based on performance history. Each item has:
    - Easiness Factor (EF): How easy the item is (2.5 default, min 1.3)
    - Interval: Days until next review
    - Repetitions: Consecutive correct recalls
    """

    def __init__(self, config: SM2Config | None = None):
        """
        Initialize SM-2 scheduler.

        Args:
            config: Custom configuration (uses defaults if None)
        """
        self.config = config or SM2Config()

    def calculate_next_review(
        self,
        easiness_factor: float,
        interval_days: float,
        repetitions: int,
        quality: int,
        now: datetime | None = None,
    ) -> SM2Result:
        """
        Calculate the next review time for a graded review.

        Args:
            easiness_factor: Current EF
            interval_days: Current interval in days
            repetitions: Current consecutive successful reviews
            quality: Grade (0-5); out-of-range values are clamped
            now: Review time (defaults to current UTC time)

        Returns:
            SM2Result with new EF, interval, repetitions and next review time
        """
        quality = max(0, min(5, int(quality)))
        now = now or utcnow()

        # EF' = EF + (0.1 - (5 - q) * (0.08 + (5 - q) * 0.02))
        ef_delta = 0.1 - (5 - quality) * (0.08 + (5 - quality) * 0.02)
        new_ef = max(self.config.minimum_easiness, easiness_factor + ef_delta)

        if quality < 3:
            # Failed - reset to beginning
            new_repetitions = 0
            new_interval = self.config.first_interval
        else:
            new_repetitions = repetitions + 1

            if new_repetitions == 1:
                new_interval = self.config.first_interval
            elif new_repetitions == 2:
                new_interval = self.config.second_interval
            else:
                new_interval = _round_half_up(interval_days * new_ef)

        return SM2Result(
            easiness_factor=new_ef,
            interval_days=float(new_interval),
            repetitions=new_repetitions,
            next_review=now + timedelta(days=new_interval),
        )

    def schedule(self, progress, quality: int, now: datetime | None = None) -> SM2Result:
        """Run calculate_next_review against an object carrying SM-2 fields."""
        return self.calculate_next_review(
            progress.easiness_factor,
            progress.interval_days,
            progress.repetitions,
            quality,
            now,
        )

    def grade_from_response(
        self,
        is_correct: bool,
        time_taken_seconds: int,
        expected_seconds: int = 10,
    ) -> int:
        """
        Convert a response to an SM-2 grade.

        Args:
            is_correct: Whether the answer was correct
            time_taken_seconds: Time taken to respond
            expected_seconds: Expected response time

        Returns:
            Grade 0-5
        """
        if not is_correct:
            if time_taken_seconds < expected_seconds * 0.5:
                return 2  # Quick wrong = almost knew it
            elif time_taken_seconds < expected_seconds:
                return 1
            else:
                return 0

        if time_taken_seconds < expected_seconds * 0.5:
            return 5
        elif time_taken_seconds < expected_seconds:
            return 4
        else:
            return 3


def _round_half_up(value: float) -> float:
    """Round half away from zero (Python's round() rounds half to even)."""
    return math.floor(value + 0.5) if value >= 0 else math.ceil(value - 0.5)
