"""
Review Session Manager.

Orchestrates one review submission:

1. Validate the grade (before any read)
2. Check the (user, card) enrollment
3. Acquire the per-card lock (bounded wait -> BusyError)
4. In one Card Store step: re-check the enrollment, read the current state
   (or start from a new-card state), apply the SM-2 update and persist
   state + review event
5. Release the lock, then notify the streak sink (best effort)

Competing submissions for the same card are applied in lock acquisition
order; each one starts from the state left by the previous winner. The lock
only covers this process, so the store step also rejects a write that lost
a race with another process (BusyError) or with an unenroll
(NotEnrolledError).
"""

from __future__ import annotations

import threading
from concurrent.futures import Executor, Future
from datetime import datetime

from loguru import logger

from .errors import NotEnrolledError, SchedulerError, StorageError
from .guard import CardLockTable
from .models import CardScheduleState, ReviewEvent, ReviewResult, ensure_utc, utcnow
from .sm2 import SM2Scheduler, validate_grade
from .store import CardStore
from .streaks import StreakSink


class ReviewSessionManager:
    """Applies review grades to card scheduling state."""

    def __init__(
        self,
        store: CardStore,
        sm2: SM2Scheduler | None = None,
        guard: CardLockTable | None = None,
        streak_sink: StreakSink | None = None,
        notify_executor: Executor | None = None,
    ):
        """
        Initialize the manager.

        Args:
            store: Card Store holding states and the review log
            sm2: SM2Scheduler (creates default if None)
            guard: Per-card lock table (creates default if None)
            streak_sink: Receiver of review notifications, if any
            notify_executor: Executor for sink notifications; notifications run
                inline (errors still swallowed) when None
        """
        self.store = store
        self.sm2 = sm2 or SM2Scheduler()
        self.guard = guard or CardLockTable()
        self.streak_sink = streak_sink
        self.notify_executor = notify_executor

    def submit_review(
        self,
        user_id: str,
        card_id: str,
        grade: int,
        now: datetime | None = None,
        lock_timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> ReviewResult:
        """
        Record a review and reschedule the card.

        Args:
            user_id: Reviewing user
            card_id: Reviewed card
            grade: SM-2 grade (0-5)
            now: Review timestamp (defaults to current UTC time)
            lock_timeout: Seconds to wait for the card lock (guard default if None)
            cancel: Event the caller may set to stop waiting for the lock

        Returns:
            ReviewResult with the new due date, interval and pass flag

        Raises:
            InvalidGradeError: grade outside [0, 5]
            NotEnrolledError: user is not enrolled in the card
            BusyError: lock not acquired in time (LockWaitCancelled if cancelled)
            StorageError: Card Store failure; stored state is unchanged
        """
        grade = validate_grade(grade)
        now = ensure_utc(now) if now is not None else utcnow()

        enrollment = self._call_store(self.store.get_enrollment, user_id, card_id)
        if enrollment is None:
            raise NotEnrolledError(user_id, card_id)
        passed = self.sm2.is_passing(grade)

        def transition(previous: CardScheduleState | None) -> tuple[CardScheduleState, ReviewEvent]:
            if previous is None:
                previous = self.sm2.initial_state(
                    user_id, card_id, created_at=now, subject_id=enrollment.subject_id
                )
            current = self.sm2.calculate_next_review(previous, grade, now)
            return current, ReviewEvent.from_transition(previous, current, grade, passed, now)

        with self.guard.hold(user_id, card_id, timeout=lock_timeout, cancel=cancel):
            current, event = self._call_store(self.store.apply_review, user_id, card_id, transition)

        logger.debug(
            f"Recorded review for {user_id}/{card_id}: grade={grade}, "
            f"due_at={current.due_at.isoformat()}, interval={current.interval_days}d, "
            f"ef={current.ease_factor:.2f}"
        )

        self._notify(user_id, now, passed)

        return ReviewResult(
            card_id=card_id,
            due_at=current.due_at,
            interval_days=current.interval_days,
            passed=passed,
            state=current,
            event=event,
        )

    def get_state(self, user_id: str, card_id: str) -> CardScheduleState:
        """
        Current state of an enrolled card, without locking.

        Callers re-fetch this after an ambiguous StorageError instead of
        blindly resubmitting.
        """
        enrollment = self._call_store(self.store.get_enrollment, user_id, card_id)
        if enrollment is None:
            raise NotEnrolledError(user_id, card_id)
        state = self._call_store(self.store.get_state, user_id, card_id)
        if state is None:
            return self.sm2.initial_state(
                user_id, card_id, enrollment.enrolled_at, subject_id=enrollment.subject_id
            )
        return state

    @staticmethod
    def _call_store(method, *args):
        try:
            return method(*args)
        except SchedulerError:
            raise
        except Exception as exc:  # Adapter bugs and driver errors surface as StorageError
            logger.exception(f"Card Store call {method.__name__} failed")
            raise StorageError(str(exc)) from exc

    def _notify(self, user_id: str, occurred_at: datetime, passed: bool) -> None:
        if self.streak_sink is None:
            return

        if self.notify_executor is None:
            self._deliver(user_id, occurred_at, passed)
            return

        try:
            future = self.notify_executor.submit(self._deliver, user_id, occurred_at, passed)
        except RuntimeError:
            # Executor already shut down
            logger.warning(f"Streak notification dropped for {user_id}: executor unavailable")
            return
        future.add_done_callback(self._log_future_failure)

    def _deliver(self, user_id: str, occurred_at: datetime, passed: bool) -> None:
        try:
            self.streak_sink.record_review(user_id, occurred_at, passed)
        except Exception:  # Best effort - a lost streak update must not fail the review
            logger.exception(f"Streak notification failed for {user_id}")

    @staticmethod
    def _log_future_failure(future: Future) -> None:
        if not future.cancelled() and future.exception() is not None:
            logger.error(f"Streak notification task crashed: {future.exception()!r}")
