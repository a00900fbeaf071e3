"""
Unit tests for the SM-2 update function.

Covers interval progression, ease factor bounds, failure collapse,
determinism and grade validation.
"""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from config import Settings
from src.scheduling import CardScheduleState, InvalidGradeError, SM2Config, SM2Scheduler, update
from src.scheduling.sm2 import validate_grade

pytestmark = pytest.mark.unit


def make_state(**overrides) -> CardScheduleState:
    base = CardScheduleState.new(
        "user-1", "card-1", datetime(2024, 3, 1, tzinfo=timezone.utc)
    )
    return base.with_changes(**overrides)


class TestIntervalProgression:
    def test_new_card_review_sequence(self, now):
        state = make_state()

        state = update(state, 4, now)
        assert state.repetition_count == 1
        assert state.interval_days == 1

        state = update(state, 5, now + timedelta(days=1))
        assert state.repetition_count == 2
        assert state.interval_days == 6

        ease_before_fail = state.ease_factor
        state = update(state, 2, now + timedelta(days=7))
        assert state.repetition_count == 0
        assert state.interval_days == 1
        assert state.lapse_count == 1
        assert state.ease_factor < ease_before_fail
        assert state.ease_factor >= 1.3

    def test_mature_card_grows_from_current_ease(self, now):
        state = make_state(repetition_count=3, interval_days=6, ease_factor=2.5)

        result = update(state, 5, now)

        assert result.interval_days == 15
        assert result.repetition_count == 4

    def test_rounding_is_half_up(self, now):
        # 5 * 2.5 = 12.5
        state = make_state(repetition_count=3, interval_days=5, ease_factor=2.5)

        assert update(state, 4, now).interval_days == 13

    def test_minimum_growth_when_ease_at_floor(self, now):
        # 1 * 1.3 rounds back to 1
        state = make_state(repetition_count=5, interval_days=1, ease_factor=1.3)

        assert update(state, 3, now).interval_days == 2

    def test_passing_intervals_strictly_increase(self, now):
        state = make_state()
        moment = now
        previous_interval = 0
        for _ in range(12):
            state = update(state, 3, moment)
            assert state.interval_days > previous_interval
            previous_interval = state.interval_days
            moment = state.due_at

    def test_due_at_is_review_time_plus_interval(self, now):
        state = update(make_state(), 4, now)

        assert state.due_at == now + timedelta(days=1)
        assert state.last_reviewed_at == now


class TestEaseFactor:
    @pytest.mark.parametrize(
        "grade,expected_delta",
        [(5, 0.1), (4, 0.0), (3, -0.14), (2, -0.32), (1, -0.54), (0, -0.8)],
    )
    def test_ease_delta_per_grade(self, now, grade, expected_delta):
        state = make_state(ease_factor=2.5)

        result = update(state, grade, now)

        assert result.ease_factor == pytest.approx(2.5 + expected_delta)

    def test_ease_never_below_floor(self, now):
        state = make_state()
        for _ in range(10):
            state = update(state, 0, now)
            assert state.ease_factor >= 1.3
        assert state.ease_factor == pytest.approx(1.3)

    def test_failure_keeps_lapses_cumulative(self, now):
        state = make_state()
        state = update(state, 1, now)
        state = update(state, 4, now)
        state = update(state, 0, now)

        assert state.lapse_count == 2
        assert state.repetition_count == 0


class TestPurity:
    def test_identical_inputs_identical_outputs(self, now):
        state = make_state(repetition_count=4, interval_days=10, ease_factor=2.2)

        assert update(state, 4, now) == update(state, 4, now)

    def test_input_state_is_not_modified(self, now):
        state = make_state()
        snapshot = state.to_snapshot()

        update(state, 5, now)

        assert state.to_snapshot() == snapshot

    def test_naive_now_treated_as_utc(self):
        state = make_state()

        result = update(state, 4, datetime(2024, 3, 10, 9, 30))

        assert result.last_reviewed_at.tzinfo is not None


class TestGradeValidation:
    @pytest.mark.parametrize("grade", [-1, 6, 100, 2.5, "4", None, True])
    def test_invalid_grades_rejected(self, now, grade):
        with pytest.raises(InvalidGradeError) as exc_info:
            update(make_state(), grade, now)
        assert exc_info.value.code == "InvalidGrade"

    @pytest.mark.parametrize("grade", [0, 1, 2, 3, 4, 5])
    def test_valid_grades_accepted(self, grade):
        assert validate_grade(grade) == grade

    def test_invalid_grade_is_value_error(self):
        with pytest.raises(ValueError):
            validate_grade(7)


class TestConfiguration:
    def test_custom_intervals(self, now):
        scheduler = SM2Scheduler(SM2Config(first_interval=2, second_interval=5))
        state = make_state()

        state = scheduler.calculate_next_review(state, 4, now)
        assert state.interval_days == 2
        state = scheduler.calculate_next_review(state, 4, now)
        assert state.interval_days == 5

    def test_initial_state_uses_configured_ease(self, now):
        scheduler = SM2Scheduler(SM2Config(initial_easiness=2.3))

        state = scheduler.initial_state("user-1", "card-9", now, subject_id="math")

        assert state.ease_factor == 2.3
        assert state.interval_days == 0
        assert state.repetition_count == 0
        assert state.due_at == now
        assert state.subject_id == "math"
        assert state.is_due(now)

    def test_ease_floor_never_below_sm2_minimum(self, now):
        scheduler = SM2Scheduler(SM2Config(minimum_easiness=1.0))
        state = make_state(ease_factor=1.35)

        for _ in range(5):
            state = scheduler.calculate_next_review(state, 0, now)

        assert state.ease_factor == pytest.approx(1.3)

    def test_settings_reject_minimum_ease_below_floor(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, sm2_minimum_ease=1.0)
