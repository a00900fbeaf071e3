"""
Scheduling data classes.

CardScheduleState is an immutable value: every review produces a new state
instead of mutating the stored one, so snapshots captured in ReviewEvents
can never drift from what was actually persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta, timezone
from typing import Any

DEFAULT_EASE_FACTOR = 2.5
MIN_EASE_FACTOR = 1.3


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# =============================================================================
# Card State
# =============================================================================


@dataclass(frozen=True)
class CardScheduleState:
    """SM-2 scheduling state for one (user, card) pair."""

    user_id: str
    card_id: str
    due_at: datetime
    subject_id: str | None = None
    ease_factor: float = DEFAULT_EASE_FACTOR
    interval_days: int = 0  # 0 = never reviewed, due immediately
    repetition_count: int = 0  # Consecutive passing reviews
    last_reviewed_at: datetime | None = None
    lapse_count: int = 0  # Cumulative failures, analytics only

    @classmethod
    def new(
        cls,
        user_id: str,
        card_id: str,
        created_at: datetime,
        subject_id: str | None = None,
        ease_factor: float = DEFAULT_EASE_FACTOR,
    ) -> CardScheduleState:
        """Create the state of a never-reviewed card, due at creation time."""
        return cls(
            user_id=user_id,
            card_id=card_id,
            subject_id=subject_id,
            due_at=ensure_utc(created_at),
            ease_factor=ease_factor,
        )

    @property
    def key(self) -> tuple[str, str]:
        return (self.user_id, self.card_id)

    @property
    def is_new(self) -> bool:
        return self.last_reviewed_at is None

    @property
    def is_freshly_failed(self) -> bool:
        """Lapsed on its latest review and not yet recovered."""
        return self.lapse_count > 0 and self.repetition_count == 0

    def is_due(self, now: datetime) -> bool:
        return self.due_at <= ensure_utc(now)

    def with_changes(self, **changes: Any) -> CardScheduleState:
        return replace(self, **changes)

    def to_snapshot(self) -> dict[str, Any]:
        """Serialise to a JSON-friendly dict."""
        return {
            "user_id": self.user_id,
            "card_id": self.card_id,
            "subject_id": self.subject_id,
            "ease_factor": self.ease_factor,
            "interval_days": self.interval_days,
            "repetition_count": self.repetition_count,
            "due_at": self.due_at.isoformat(),
            "last_reviewed_at": self.last_reviewed_at.isoformat() if self.last_reviewed_at else None,
            "lapse_count": self.lapse_count,
        }


@dataclass(frozen=True)
class Enrollment:
    """A user's enrollment in a card."""

    user_id: str
    card_id: str
    subject_id: str | None
    enrolled_at: datetime


# =============================================================================
# Review Records
# =============================================================================


@dataclass(frozen=True)
class ReviewEvent:
    """Append-only record of one applied review."""

    user_id: str
    card_id: str
    grade: int
    passed: bool
    previous_state: dict[str, Any]
    new_state: dict[str, Any]
    occurred_at: datetime
    id: int | None = None

    @classmethod
    def from_transition(
        cls,
        previous: CardScheduleState,
        current: CardScheduleState,
        grade: int,
        passed: bool,
        occurred_at: datetime,
    ) -> ReviewEvent:
        return cls(
            user_id=current.user_id,
            card_id=current.card_id,
            grade=grade,
            passed=passed,
            previous_state=previous.to_snapshot(),
            new_state=current.to_snapshot(),
            occurred_at=ensure_utc(occurred_at),
        )


@dataclass(frozen=True)
class ReviewResult:
    """Outcome of a successful review submission."""

    card_id: str
    due_at: datetime
    interval_days: int
    passed: bool
    state: CardScheduleState
    event: ReviewEvent


# =============================================================================
# Aggregates
# =============================================================================


@dataclass
class DailyStudyStat:
    """Review counters for one user on one calendar day (UTC)."""

    day: date
    cards_reviewed: int = 0
    reviews_correct: int = 0
    study_streak_day: int = 0

    @property
    def accuracy(self) -> float:
        if self.cards_reviewed == 0:
            return 0.0
        return self.reviews_correct / self.cards_reviewed


@dataclass
class StudyStats:
    """Study statistics for a user, optionally scoped to a subject."""

    total_cards: int = 0
    due_now: int = 0
    reviewed_today: int = 0
    average_ease_factor: float = DEFAULT_EASE_FACTOR
    mastered_cards: int = 0
    streak_days: int = 0


@dataclass
class SubjectProgress:
    """Card counts per learning stage."""

    total: int = 0
    new: int = 0
    learning: int = 0
    reviewing: int = 0
    mastered: int = 0


def add_days(moment: datetime, days: int) -> datetime:
    return ensure_utc(moment) + timedelta(days=days)
