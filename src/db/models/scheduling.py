"""
Review Scheduler Models.

SQLAlchemy models for spaced-repetition scheduling:
- Card enrollments (which user studies which card, in which subject)
- SM-2 scheduling state per (user, card)
- Append-only review event log
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKeyConstraint, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class CardEnrollment(Base):
    """A user's enrollment in a card. Owns the card's scheduling state."""

    __tablename__ = "card_enrollments"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    card_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    subject_id: Mapped[str | None] = mapped_column(String(64), index=True)
    enrolled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<CardEnrollment user={self.user_id} card={self.card_id} subject={self.subject_id}>"


class CardScheduleRow(Base):
    """
    SM-2 scheduling state for one (user, card) pair.

    Deleted together with its enrollment. An UPDATE whose ``version`` no
    longer matches the stored row raises StaleDataError.
    """

    __tablename__ = "card_schedule_states"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    card_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    subject_id: Mapped[str | None] = mapped_column(String(64))

    ease_factor: Mapped[float] = mapped_column(Float, nullable=False, default=2.5)
    interval_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    repetition_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lapse_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Optimistic lock counter, bumped by the mapper on every UPDATE
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    due_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        ForeignKeyConstraint(
            ["user_id", "card_id"],
            ["card_enrollments.user_id", "card_enrollments.card_id"],
            ondelete="CASCADE",
        ),
        Index("idx_schedule_user_due", "user_id", "due_at"),
        Index("idx_schedule_user_subject", "user_id", "subject_id"),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<CardScheduleRow user={self.user_id} card={self.card_id} "
            f"interval={self.interval_days} due={self.due_at}>"
        )


class ReviewEventRow(Base):
    """Append-only review log entry with before/after state snapshots."""

    __tablename__ = "review_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    card_id: Mapped[str] = mapped_column(String(64), nullable=False)
    grade: Mapped[int] = mapped_column(Integer, nullable=False)
    passed: Mapped[bool] = mapped_column(Boolean, nullable=False)
    previous_state: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    new_state: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_review_events_user_time", "user_id", "occurred_at"),
        Index("idx_review_events_card", "user_id", "card_id"),
    )

    def __repr__(self) -> str:
        return f"<ReviewEventRow id={self.id} card={self.card_id} grade={self.grade}>"
