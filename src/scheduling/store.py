"""
Card Store contract and in-memory implementation.

The scheduler needs an atomic read-modify-write of one CardScheduleState
(apply_review), an append-only review log and the enrollment lookup used
for ownership checks. A review never recreates state for an unenrolled
pair. Adapters:

- InMemoryCardStore: thread-safe dict-backed store (tests, single process)
- SqlCardStore (sql_store.py): SQLAlchemy-backed store
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime

from loguru import logger

from .errors import NotEnrolledError, StorageError
from .models import CardScheduleState, Enrollment, ReviewEvent, ensure_utc, utcnow

# previous state (None if the pair has no state row) -> (new state, event)
ReviewTransition = Callable[[CardScheduleState | None], tuple[CardScheduleState, ReviewEvent]]


class CardStore(ABC):
    """Abstract persistence for scheduling state."""

    # =========================================================================
    # Enrollment
    # =========================================================================

    @abstractmethod
    def get_enrollment(self, user_id: str, card_id: str) -> Enrollment | None:
        """Return the enrollment for a pair, or None if not enrolled."""

    @abstractmethod
    def enroll(
        self,
        user_id: str,
        card_id: str,
        subject_id: str | None = None,
        enrolled_at: datetime | None = None,
        initial_state: CardScheduleState | None = None,
    ) -> Enrollment:
        """Enroll a user in a card, creating its initial state eagerly."""

    @abstractmethod
    def unenroll(self, user_id: str, card_id: str) -> bool:
        """Remove an enrollment and its scheduling state. Returns False if absent."""

    # =========================================================================
    # Scheduling State
    # =========================================================================

    @abstractmethod
    def get_state(self, user_id: str, card_id: str) -> CardScheduleState | None:
        """Return the current state, or None if the pair has none yet."""

    @abstractmethod
    def put_state(self, state: CardScheduleState) -> None:
        """Insert or replace the state for ``state.key``."""

    @abstractmethod
    def list_states(
        self,
        user_id: str,
        subject_id: str | None = None,
        due_before: datetime | None = None,
    ) -> list[CardScheduleState]:
        """Snapshot of a user's states, optionally filtered by subject and due time."""

    # =========================================================================
    # Review Log
    # =========================================================================

    @abstractmethod
    def append_event(self, event: ReviewEvent) -> ReviewEvent:
        """Append a review event and return it with its assigned id."""

    @abstractmethod
    def list_events(
        self,
        user_id: str | None = None,
        card_id: str | None = None,
        since: datetime | None = None,
    ) -> list[ReviewEvent]:
        """Review events in occurrence order."""

    def save_review(self, state: CardScheduleState, event: ReviewEvent) -> ReviewEvent:
        """
        Persist a review: state first, then the event.

        Adapters that support transactions override this to write both
        atomically. Here a failed event append is logged and tolerated since
        the state row alone is authoritative for scheduling.
        """
        self.put_state(state)
        try:
            return self.append_event(event)
        except StorageError:
            logger.opt(exception=True).error(
                f"Review event lost for {state.user_id}/{state.card_id}; state was saved"
            )
            return event

    def apply_review(
        self,
        user_id: str,
        card_id: str,
        transition: ReviewTransition,
    ) -> tuple[CardScheduleState, ReviewEvent]:
        """
        Read the current state, apply ``transition`` and persist the result.

        The enrollment is checked again as part of the write, so a pair
        unenrolled after the caller's own check raises NotEnrolledError and
        nothing is stored. Adapters override this to run the read and the
        write as one atomic step.

        Returns:
            Tuple of (new state, stored event)
        """
        if self.get_enrollment(user_id, card_id) is None:
            raise NotEnrolledError(user_id, card_id)
        state, event = transition(self.get_state(user_id, card_id))
        return state, self.save_review(state, event)



class InMemoryCardStore(CardStore):
    """
    Dict-backed Card Store.

    A single re-entrant lock makes each call atomic and gives list_states a
    consistent snapshot. States are immutable, so returned objects can be
    shared without copying.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._enrollments: dict[tuple[str, str], Enrollment] = {}
        self._states: dict[tuple[str, str], CardScheduleState] = {}
        self._events: list[ReviewEvent] = []

    def get_enrollment(self, user_id: str, card_id: str) -> Enrollment | None:
        with self._lock:
            return self._enrollments.get((user_id, card_id))

    def enroll(
        self,
        user_id: str,
        card_id: str,
        subject_id: str | None = None,
        enrolled_at: datetime | None = None,
        initial_state: CardScheduleState | None = None,
    ) -> Enrollment:
        enrolled_at = ensure_utc(enrolled_at or utcnow())
        key = (user_id, card_id)
        with self._lock:
            existing = self._enrollments.get(key)
            if existing is not None:
                return existing
            enrollment = Enrollment(user_id, card_id, subject_id, enrolled_at)
            self._enrollments[key] = enrollment
            if key not in self._states:
                self._states[key] = initial_state or CardScheduleState.new(
                    user_id, card_id, enrolled_at, subject_id=subject_id
                )
            return enrollment

    def unenroll(self, user_id: str, card_id: str) -> bool:
        key = (user_id, card_id)
        with self._lock:
            self._states.pop(key, None)
            return self._enrollments.pop(key, None) is not None

    def get_state(self, user_id: str, card_id: str) -> CardScheduleState | None:
        with self._lock:
            return self._states.get((user_id, card_id))

    def put_state(self, state: CardScheduleState) -> None:
        with self._lock:
            self._states[state.key] = state

    def list_states(
        self,
        user_id: str,
        subject_id: str | None = None,
        due_before: datetime | None = None,
    ) -> list[CardScheduleState]:
        cutoff = ensure_utc(due_before) if due_before is not None else None
        with self._lock:
            snapshot = list(self._states.values())
        return [
            state
            for state in snapshot
            if state.user_id == user_id
            and (subject_id is None or state.subject_id == subject_id)
            and (cutoff is None or state.due_at <= cutoff)
        ]

    def append_event(self, event: ReviewEvent) -> ReviewEvent:
        with self._lock:
            stored = replace(event, id=len(self._events) + 1)
            self._events.append(stored)
            return stored

    def list_events(
        self,
        user_id: str | None = None,
        card_id: str | None = None,
        since: datetime | None = None,
    ) -> list[ReviewEvent]:
        cutoff = ensure_utc(since) if since is not None else None
        with self._lock:
            events = list(self._events)
        return [
            event
            for event in events
            if (user_id is None or event.user_id == user_id)
            and (card_id is None or event.card_id == card_id)
            and (cutoff is None or event.occurred_at >= cutoff)
        ]

    def save_review(self, state: CardScheduleState, event: ReviewEvent) -> ReviewEvent:
        with self._lock:
            if state.key not in self._enrollments:
                raise NotEnrolledError(state.user_id, state.card_id)
            self._states[state.key] = state
            return self.append_event(event)

    def apply_review(
        self,
        user_id: str,
        card_id: str,
        transition: ReviewTransition,
    ) -> tuple[CardScheduleState, ReviewEvent]:
        key = (user_id, card_id)
        with self._lock:
            if key not in self._enrollments:
                raise NotEnrolledError(user_id, card_id)
            state, event = transition(self._states.get(key))
            return state, self.save_review(state, event)


