"""
SQLAlchemy-backed Card Store.

Each call runs in its own transaction. apply_review reads the state, writes
the new state and appends the review event in a single transaction, and the
state row carries a version counter so concurrent writers from other
processes cannot both apply a review to the same previous state. Driver
errors are raised as StorageError.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import TypeVar

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from src.db.database import session_scope
from src.db.models import CardEnrollment, CardScheduleRow, ReviewEventRow

from .errors import BusyError, NotEnrolledError, StorageError
from .models import CardScheduleState, Enrollment, ReviewEvent, ensure_utc, utcnow
from .store import CardStore, ReviewTransition

T = TypeVar("T")


# =============================================================================
# Row Mapping
# =============================================================================


def _optional_utc(value: datetime | None) -> datetime | None:
    return ensure_utc(value) if value is not None else None


def state_from_row(row: CardScheduleRow) -> CardScheduleState:
    return CardScheduleState(
        user_id=row.user_id,
        card_id=row.card_id,
        subject_id=row.subject_id,
        ease_factor=row.ease_factor,
        interval_days=row.interval_days,
        repetition_count=row.repetition_count,
        lapse_count=row.lapse_count,
        due_at=ensure_utc(row.due_at),
        last_reviewed_at=_optional_utc(row.last_reviewed_at),
    )


def apply_state_to_row(state: CardScheduleState, row: CardScheduleRow) -> None:
    row.subject_id = state.subject_id
    row.ease_factor = state.ease_factor
    row.interval_days = state.interval_days
    row.repetition_count = state.repetition_count
    row.lapse_count = state.lapse_count
    row.due_at = ensure_utc(state.due_at)
    row.last_reviewed_at = _optional_utc(state.last_reviewed_at)


def event_from_row(row: ReviewEventRow) -> ReviewEvent:
    return ReviewEvent(
        id=row.id,
        user_id=row.user_id,
        card_id=row.card_id,
        grade=row.grade,
        passed=row.passed,
        previous_state=dict(row.previous_state),
        new_state=dict(row.new_state),
        occurred_at=ensure_utc(row.occurred_at),
    )


def enrollment_from_row(row: CardEnrollment) -> Enrollment:
    return Enrollment(
        user_id=row.user_id,
        card_id=row.card_id,
        subject_id=row.subject_id,
        enrolled_at=ensure_utc(row.enrolled_at),
    )


# =============================================================================
# Store
# =============================================================================


class SqlCardStore(CardStore):
    """
    Card Store over SQLAlchemy sessions.

    Args:
        session_factory: sessionmaker to use (the application's SessionLocal if None)
    """

    def __init__(self, session_factory: sessionmaker | None = None):
        self.session_factory = session_factory

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        try:
            with session_scope(self.session_factory) as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error(f"Card Store {operation} failed: {exc}")
            raise StorageError(f"{operation} failed: {exc}") from exc

    def _run(self, operation: str, fn: Callable[[Session], T]) -> T:
        with self._session(operation) as session:
            return fn(session)

    # =========================================================================
    # Enrollment
    # =========================================================================

    def get_enrollment(self, user_id: str, card_id: str) -> Enrollment | None:
        def query(session: Session) -> Enrollment | None:
            row = session.get(CardEnrollment, (user_id, card_id))
            return enrollment_from_row(row) if row else None

        return self._run("get_enrollment", query)

    def enroll(
        self,
        user_id: str,
        card_id: str,
        subject_id: str | None = None,
        enrolled_at: datetime | None = None,
        initial_state: CardScheduleState | None = None,
    ) -> Enrollment:
        enrolled_at = ensure_utc(enrolled_at or utcnow())

        def write(session: Session) -> Enrollment:
            existing = session.get(CardEnrollment, (user_id, card_id))
            if existing is not None:
                return enrollment_from_row(existing)

            row = CardEnrollment(
                user_id=user_id,
                card_id=card_id,
                subject_id=subject_id,
                enrolled_at=enrolled_at,
            )
            session.add(row)
            session.flush()

            if session.get(CardScheduleRow, (user_id, card_id)) is None:
                state = initial_state or CardScheduleState.new(
                    user_id, card_id, enrolled_at, subject_id=subject_id
                )
                state_row = CardScheduleRow(user_id=user_id, card_id=card_id)
                apply_state_to_row(state, state_row)
                session.add(state_row)

            return Enrollment(user_id, card_id, subject_id, enrolled_at)

        enrollment = self._run("enroll", write)
        logger.debug(f"Enrolled {user_id} in card {card_id} (subject={subject_id})")
        return enrollment

    def unenroll(self, user_id: str, card_id: str) -> bool:
        def write(session: Session) -> bool:
            session.execute(
                delete(CardScheduleRow).where(
                    CardScheduleRow.user_id == user_id,
                    CardScheduleRow.card_id == card_id,
                )
            )
            result = session.execute(
                delete(CardEnrollment).where(
                    CardEnrollment.user_id == user_id,
                    CardEnrollment.card_id == card_id,
                )
            )
            return result.rowcount > 0

        return self._run("unenroll", write)

    # =========================================================================
    # Scheduling State
    # =========================================================================

    def get_state(self, user_id: str, card_id: str) -> CardScheduleState | None:
        def query(session: Session) -> CardScheduleState | None:
            row = session.get(CardScheduleRow, (user_id, card_id))
            return state_from_row(row) if row else None

        return self._run("get_state", query)

    @staticmethod
    def _upsert_state(session: Session, state: CardScheduleState) -> None:
        row = session.get(CardScheduleRow, state.key, with_for_update=True)
        if row is None:
            row = CardScheduleRow(user_id=state.user_id, card_id=state.card_id)
            session.add(row)
        apply_state_to_row(state, row)

    def put_state(self, state: CardScheduleState) -> None:
        self._run("put_state", lambda session: self._upsert_state(session, state))

    def list_states(
        self,
        user_id: str,
        subject_id: str | None = None,
        due_before: datetime | None = None,
    ) -> list[CardScheduleState]:
        stmt = select(CardScheduleRow).where(CardScheduleRow.user_id == user_id)
        if subject_id is not None:
            stmt = stmt.where(CardScheduleRow.subject_id == subject_id)
        if due_before is not None:
            stmt = stmt.where(CardScheduleRow.due_at <= ensure_utc(due_before))
        stmt = stmt.order_by(CardScheduleRow.due_at, CardScheduleRow.card_id)

        def query(session: Session) -> list[CardScheduleState]:
            return [state_from_row(row) for row in session.scalars(stmt)]

        return self._run("list_states", query)

    # =========================================================================
    # Review Log
    # =========================================================================

    @staticmethod
    def _insert_event(session: Session, event: ReviewEvent) -> ReviewEvent:
        row = ReviewEventRow(
            user_id=event.user_id,
            card_id=event.card_id,
            grade=event.grade,
            passed=event.passed,
            previous_state=event.previous_state,
            new_state=event.new_state,
            occurred_at=ensure_utc(event.occurred_at),
        )
        session.add(row)
        session.flush()
        return event_from_row(row)

    def append_event(self, event: ReviewEvent) -> ReviewEvent:
        return self._run("append_event", lambda session: self._insert_event(session, event))

    def list_events(
        self,
        user_id: str | None = None,
        card_id: str | None = None,
        since: datetime | None = None,
    ) -> list[ReviewEvent]:
        stmt = select(ReviewEventRow)
        if user_id is not None:
            stmt = stmt.where(ReviewEventRow.user_id == user_id)
        if card_id is not None:
            stmt = stmt.where(ReviewEventRow.card_id == card_id)
        if since is not None:
            stmt = stmt.where(ReviewEventRow.occurred_at >= ensure_utc(since))
        stmt = stmt.order_by(ReviewEventRow.occurred_at, ReviewEventRow.id)

        def query(session: Session) -> list[ReviewEvent]:
            return [event_from_row(row) for row in session.scalars(stmt)]

        return self._run("list_events", query)

    def save_review(self, state: CardScheduleState, event: ReviewEvent) -> ReviewEvent:
        def write(session: Session) -> ReviewEvent:
            if session.get(CardEnrollment, state.key) is None:
                raise NotEnrolledError(state.user_id, state.card_id)
            self._upsert_state(session, state)
            return self._insert_event(session, event)

        return self._run("save_review", write)

    def apply_review(
        self,
        user_id: str,
        card_id: str,
        transition: ReviewTransition,
    ) -> tuple[CardScheduleState, ReviewEvent]:
        """
        Read, transition and write one state row in a single transaction.

        The enrollment and state rows are read FOR UPDATE where the backend
        supports it. The state UPDATE is also guarded by the row version, so
        a writer in another process that got in between the read and the
        write turns this review into a BusyError instead of a second
        transition from the same previous state.
        """
        key = (user_id, card_id)

        def write(session: Session) -> tuple[CardScheduleState, ReviewEvent]:
            if session.get(CardEnrollment, key, with_for_update=True) is None:
                raise NotEnrolledError(user_id, card_id)

            row = session.get(CardScheduleRow, key, with_for_update=True)
            state, event = transition(state_from_row(row) if row else None)

            if row is None:
                row = CardScheduleRow(user_id=user_id, card_id=card_id)
                session.add(row)
            apply_state_to_row(state, row)
            try:
                session.flush()
            except StaleDataError as exc:
                logger.warning(f"Concurrent review of {user_id}/{card_id} detected, rejecting")
                raise BusyError(
                    user_id,
                    card_id,
                    message=f"Card {card_id} for user {user_id} was updated by a concurrent review",
                ) from exc

            return state, self._insert_event(session, event)

        return self._run("apply_review", write)

