"""
Enrollment router.

Enroll users in cards, remove enrollments, and read a card's current
scheduling state.
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Response, status
from loguru import logger
from pydantic import BaseModel, Field

from src.api.dependencies import get_scheduler_context, to_http_exception
from src.scheduling.context import SchedulerContext
from src.scheduling.errors import NotEnrolledError, SchedulerError
from src.scheduling.models import utcnow

router = APIRouter()


class EnrollRequest(BaseModel):
    """Request model for enrolling a user in a card."""

    user_id: str = Field(..., min_length=1)
    card_id: str = Field(..., min_length=1)
    subject_id: str | None = Field(None, description="Subject used for queue interleaving")


class EnrollmentResponse(BaseModel):
    """Enrollment record."""

    user_id: str
    card_id: str
    subject_id: str | None
    enrolled_at: datetime


class CardStateResponse(BaseModel):
    """Current SM-2 state of a card."""

    user_id: str
    card_id: str
    subject_id: str | None
    ease_factor: float
    interval_days: int
    repetition_count: int
    due_at: datetime
    last_reviewed_at: datetime | None
    lapse_count: int


@router.post(
    "",
    response_model=EnrollmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Enroll in card",
)
def enroll(
    request: EnrollRequest,
    ctx: SchedulerContext = Depends(get_scheduler_context),
) -> EnrollmentResponse:
    """
    Enroll a user in a card.

    The card becomes due immediately. Enrolling twice returns the existing
    enrollment unchanged.
    """
    now = utcnow()
    initial = ctx.sm2.initial_state(
        request.user_id, request.card_id, now, subject_id=request.subject_id
    )
    try:
        enrollment = ctx.store.enroll(
            request.user_id,
            request.card_id,
            subject_id=request.subject_id,
            enrolled_at=now,
            initial_state=initial,
        )
    except SchedulerError as exc:
        logger.exception(f"Enrollment failed for {request.user_id}/{request.card_id}")
        raise to_http_exception(exc) from exc

    return EnrollmentResponse(
        user_id=enrollment.user_id,
        card_id=enrollment.card_id,
        subject_id=enrollment.subject_id,
        enrolled_at=enrollment.enrolled_at,
    )


@router.delete(
    "/{user_id}/{card_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove enrollment",
)
def unenroll(
    user_id: str,
    card_id: str,
    ctx: SchedulerContext = Depends(get_scheduler_context),
) -> Response:
    """Remove an enrollment together with its scheduling state."""
    try:
        removed = ctx.store.unenroll(user_id, card_id)
    except SchedulerError as exc:
        raise to_http_exception(exc) from exc

    if not removed:
        raise to_http_exception(NotEnrolledError(user_id, card_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{user_id}/{card_id}/state", response_model=CardStateResponse, summary="Get card state")
def get_card_state(
    user_id: str,
    card_id: str,
    ctx: SchedulerContext = Depends(get_scheduler_context),
) -> CardStateResponse:
    """Read the current scheduling state without taking the card lock."""
    try:
        state = ctx.review_manager.get_state(user_id, card_id)
    except SchedulerError as exc:
        raise to_http_exception(exc) from exc

    return CardStateResponse(
        user_id=state.user_id,
        card_id=state.card_id,
        subject_id=state.subject_id,
        ease_factor=state.ease_factor,
        interval_days=state.interval_days,
        repetition_count=state.repetition_count,
        due_at=state.due_at,
        last_reviewed_at=state.last_reviewed_at,
        lapse_count=state.lapse_count,
    )
