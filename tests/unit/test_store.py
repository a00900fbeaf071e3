"""
Unit tests for the in-memory Card Store and the default save_review.
"""

from datetime import timedelta

import pytest

from src.scheduling import (
    CardScheduleState,
    CardStore,
    InMemoryCardStore,
    NotEnrolledError,
    ReviewEvent,
    StorageError,
)

pytestmark = pytest.mark.unit


class LosingEventStore(InMemoryCardStore):
    """Uses the non-transactional save_review and fails every event append."""

    def append_event(self, event):
        raise StorageError("event log unavailable")

    save_review = CardStore.save_review


class TestEnrollment:
    def test_enroll_creates_due_state(self, store, now):
        enrollment = store.enroll("u1", "c1", subject_id="math", enrolled_at=now)

        state = store.get_state("u1", "c1")
        assert enrollment.subject_id == "math"
        assert state.due_at == now
        assert state.is_new
        assert state.subject_id == "math"

    def test_enroll_is_idempotent(self, store, now):
        first = store.enroll("u1", "c1", subject_id="math", enrolled_at=now)
        second = store.enroll("u1", "c1", subject_id="bio", enrolled_at=now + timedelta(days=1))

        assert second == first

    def test_enroll_with_initial_state(self, store, now):
        initial = CardScheduleState.new("u1", "c1", now, ease_factor=2.2)

        store.enroll("u1", "c1", enrolled_at=now, initial_state=initial)

        assert store.get_state("u1", "c1").ease_factor == 2.2

    def test_unenroll_removes_state(self, store, now):
        store.enroll("u1", "c1", enrolled_at=now)

        assert store.unenroll("u1", "c1") is True
        assert store.get_enrollment("u1", "c1") is None
        assert store.get_state("u1", "c1") is None
        assert store.unenroll("u1", "c1") is False


class TestStatesAndEvents:
    def test_list_states_filters(self, store, now):
        store.enroll("u1", "a", subject_id="math", enrolled_at=now)
        store.enroll("u1", "b", subject_id="bio", enrolled_at=now + timedelta(days=1))
        store.enroll("u2", "c", subject_id="math", enrolled_at=now)

        assert {s.card_id for s in store.list_states("u1")} == {"a", "b"}
        assert [s.card_id for s in store.list_states("u1", subject_id="bio")] == ["b"]
        assert [s.card_id for s in store.list_states("u1", due_before=now)] == ["a"]

    def test_events_get_sequential_ids(self, store, now):
        state = CardScheduleState.new("u1", "c1", now)
        first = store.append_event(ReviewEvent.from_transition(state, state, 4, True, now))
        second = store.append_event(ReviewEvent.from_transition(state, state, 2, False, now))

        assert (first.id, second.id) == (1, 2)
        assert store.list_events(card_id="c1") == [first, second]
        assert store.list_events(since=now + timedelta(seconds=1)) == []

    def test_default_save_review_keeps_state_when_event_lost(self, now):
        store = LosingEventStore()
        store.enroll("u1", "c1", enrolled_at=now)
        previous = store.get_state("u1", "c1")
        current = previous.with_changes(repetition_count=1, interval_days=1)
        event = ReviewEvent.from_transition(previous, current, 4, True, now)

        returned = store.save_review(current, event)

        assert returned.id is None
        assert store.get_state("u1", "c1") == current

    def test_save_review_rejects_unenrolled_pair(self, store, now):
        state = CardScheduleState.new("u1", "c1", now)
        event = ReviewEvent.from_transition(state, state, 4, True, now)

        with pytest.raises(NotEnrolledError):
            store.save_review(state, event)

        assert store.get_state("u1", "c1") is None
        assert store.list_events() == []
