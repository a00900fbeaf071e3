"""
SM-2 Spaced Repetition Update Function.

Pure transition: (current state, grade, now) -> new state. No I/O and no
shared mutable state, so identical inputs always give identical outputs and
a submission can be recomputed safely from the same previous state.

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
from datetime import datetime

from .errors import InvalidGradeError
from .models import DEFAULT_EASE_FACTOR, MIN_EASE_FACTOR, CardScheduleState, add_days, ensure_utc

MIN_GRADE = 0
MAX_GRADE = 5


@dataclass(frozen=True)
class SM2Config:
    """Configuration for SM-2 algorithm."""

    initial_easiness: float = DEFAULT_EASE_FACTOR
    minimum_easiness: float = MIN_EASE_FACTOR
    first_interval: int = 1  # Days after the first pass
    second_interval: int = 6  # Days after the second pass
    pass_threshold: int = 3  # Lowest passing grade


def validate_grade(grade: object) -> int:
    """
    Check that a grade is an integer on the 0-5 scale.

    Raises:
        InvalidGradeError: for booleans, non-integers and out-of-range values
    """
    if isinstance(grade, bool) or not isinstance(grade, int):
        raise InvalidGradeError(grade, MIN_GRADE, MAX_GRADE)
    if grade < MIN_GRADE or grade > MAX_GRADE:
        raise InvalidGradeError(grade, MIN_GRADE, MAX_GRADE)
    return grade


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class SM2Scheduler:
    """
    Implements the SM-2 spaced repetition algorithm.

    Each card carries:
    - Ease Factor (EF): growth rate of the interval (2.5 default, min 1.3)
    - Interval: days until next review
    - Repetitions: consecutive correct recalls
    """

    def __init__(self, config: SM2Config | None = None):
        """
        Initialize SM-2 scheduler.

        Args:
            config: Custom configuration (uses defaults if None)
        """
        self.config = config or SM2Config()

    def is_passing(self, grade: int) -> bool:
        return grade >= self.config.pass_threshold

    def next_ease_factor(self, ease_factor: float, grade: int) -> float:
        # EF' = EF + (0.1 - (5 - q) * (0.08 + (5 - q) * 0.02))
        ef_delta = 0.1 - (5 - grade) * (0.08 + (5 - grade) * 0.02)
        # A configured floor below the SM-2 minimum of 1.3 is not honoured
        floor = max(MIN_EASE_FACTOR, self.config.minimum_easiness)
        return max(floor, ease_factor + ef_delta)

    def next_interval(self, state: CardScheduleState, new_repetitions: int) -> int:
        """Interval after a passing review that brings the streak to new_repetitions."""
        if new_repetitions == 1:
            return self.config.first_interval
        if new_repetitions == 2:
            return self.config.second_interval
        # Grow from the ease the card carried into this review; the floor keeps
        # growth strictly monotonic when the product rounds down to the old interval.
        grown = _round_half_up(state.interval_days * state.ease_factor)
        return max(grown, state.interval_days + 1)

    def calculate_next_review(
        self,
        state: CardScheduleState,
        grade: int,
        now: datetime,
    ) -> CardScheduleState:
        """
        Calculate the state after reviewing a card.

        Args:
            state: Current scheduling state of the card
            grade: User grade (0-5)
            now: Review timestamp

        Returns:
            New CardScheduleState; the input state is never modified

        Raises:
            InvalidGradeError: If grade is not an integer in [0, 5]
        """
        grade = validate_grade(grade)
        now = ensure_utc(now)

        new_ef = self.next_ease_factor(state.ease_factor, grade)

        if self.is_passing(grade):
            new_repetitions = state.repetition_count + 1
            new_interval = self.next_interval(state, new_repetitions)
            new_lapses = state.lapse_count
        else:
            # Failed - relearn tomorrow
            new_repetitions = 0
            new_interval = self.config.first_interval
            new_lapses = state.lapse_count + 1

        return state.with_changes(
            ease_factor=new_ef,
            interval_days=new_interval,
            repetition_count=new_repetitions,
            lapse_count=new_lapses,
            last_reviewed_at=now,
            due_at=add_days(now, new_interval),
        )

    def initial_state(
        self,
        user_id: str,
        card_id: str,
        created_at: datetime,
        subject_id: str | None = None,
    ) -> CardScheduleState:
        """State of a card that has never been reviewed."""
        return CardScheduleState.new(
            user_id=user_id,
            card_id=card_id,
            created_at=created_at,
            subject_id=subject_id,
            ease_factor=self.config.initial_easiness,
        )


_default_scheduler = SM2Scheduler()


def update(state: CardScheduleState, grade: int, now: datetime) -> CardScheduleState:
    """Apply one review to a state using the default SM-2 configuration."""
    return _default_scheduler.calculate_next_review(state, grade, now)
