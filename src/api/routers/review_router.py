"""
Review router.

Endpoints for spaced-repetition reviews:
- Submit a review grade for a card
- Build the due study queue
- Study statistics, subject progress and daily counters
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from loguru import logger
from pydantic import BaseModel, Field

from src.api.dependencies import get_scheduler_context, to_http_exception
from src.scheduling.context import SchedulerContext
from src.scheduling.errors import SchedulerError

router = APIRouter()


# ========================================
# Request/Response Models
# ========================================


class ReviewSubmitRequest(BaseModel):
    """Request model for submitting a review."""

    user_id: str = Field(..., min_length=1, description="Reviewing user")
    card_id: str = Field(..., min_length=1, description="Reviewed card")
    # Range is checked by the scheduler so out-of-range grades report InvalidGrade
    grade: int = Field(..., description="SM-2 grade, 0 (blackout) to 5 (perfect)")


class ReviewSubmitResponse(BaseModel):
    """Response model for an applied review."""

    card_id: str
    due_at: datetime
    interval_days: int
    passed: bool


class QueueResponse(BaseModel):
    """Ordered study queue."""

    user_id: str
    subject_id: str | None
    card_ids: list[str]
    count: int


class StudyStatsResponse(BaseModel):
    """Study statistics for a user."""

    total_cards: int
    due_now: int
    reviewed_today: int
    average_ease_factor: float
    mastered_cards: int
    streak_days: int


class SubjectProgressResponse(BaseModel):
    """Cards per learning stage."""

    total: int
    new: int
    learning: int
    reviewing: int
    mastered: int


class DailyStatResponse(BaseModel):
    """Review counters for one day."""

    day: date
    cards_reviewed: int
    reviews_correct: int
    study_streak_day: int


# ========================================
# Review Endpoints
# ========================================


@router.post("", response_model=ReviewSubmitResponse, summary="Submit review")
def submit_review(
    request: ReviewSubmitRequest,
    ctx: SchedulerContext = Depends(get_scheduler_context),
) -> ReviewSubmitResponse:
    """
    Apply a review grade and reschedule the card.

    Error codes:
    - InvalidGrade (422): grade outside 0-5
    - NotEnrolled (404): user not enrolled in the card
    - Busy (409): another review of the same card is in flight, retry shortly
    - StorageError (503): storage failure, re-fetch before retrying
    """
    try:
        result = ctx.review_manager.submit_review(request.user_id, request.card_id, request.grade)
    except SchedulerError as exc:
        logger.info(f"Review rejected for {request.user_id}/{request.card_id}: {exc.code}")
        raise to_http_exception(exc) from exc

    return ReviewSubmitResponse(
        card_id=result.card_id,
        due_at=result.due_at,
        interval_days=result.interval_days,
        passed=result.passed,
    )


@router.get("/queue", response_model=QueueResponse, summary="Get due queue")
def get_queue(
    user_id: str = Query(..., min_length=1),
    subject_id: str | None = Query(None),
    limit: int | None = Query(None, ge=0, description="Maximum cards (server default if omitted)"),
    ctx: SchedulerContext = Depends(get_scheduler_context),
) -> QueueResponse:
    """
    Get the ordered list of cards due now.

    Without a subject filter, subjects are interleaved in proportion to
    their share of due cards.
    """
    try:
        card_ids = ctx.queue_builder.build_queue(user_id, subject_id=subject_id, limit=limit)
    except SchedulerError as exc:
        raise to_http_exception(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    return QueueResponse(
        user_id=user_id,
        subject_id=subject_id,
        card_ids=card_ids,
        count=len(card_ids),
    )


@router.get("/stats", response_model=StudyStatsResponse, summary="Get study statistics")
def get_study_stats(
    user_id: str = Query(..., min_length=1),
    subject_id: str | None = Query(None),
    ctx: SchedulerContext = Depends(get_scheduler_context),
) -> StudyStatsResponse:
    """Get totals, due count, today's reviews, average ease, mastered cards and streak."""
    try:
        stats = ctx.stats.get_study_stats(user_id, subject_id=subject_id)
    except SchedulerError as exc:
        raise to_http_exception(exc) from exc
    return StudyStatsResponse(**asdict(stats))


@router.get("/progress", response_model=SubjectProgressResponse, summary="Get subject progress")
def get_subject_progress(
    user_id: str = Query(..., min_length=1),
    subject_id: str | None = Query(None),
    ctx: SchedulerContext = Depends(get_scheduler_context),
) -> SubjectProgressResponse:
    """Get card counts per stage: new, learning, reviewing, mastered."""
    try:
        progress = ctx.stats.get_subject_progress(user_id, subject_id=subject_id)
    except SchedulerError as exc:
        raise to_http_exception(exc) from exc
    return SubjectProgressResponse(**asdict(progress))


@router.get("/daily", response_model=list[DailyStatResponse], summary="Get daily study stats")
def get_daily_stats(
    user_id: str = Query(..., min_length=1),
    since: date | None = Query(None, description="First day to include"),
    ctx: SchedulerContext = Depends(get_scheduler_context),
) -> list[DailyStatResponse]:
    """Get per-day review counters and streak day numbers."""
    try:
        daily = ctx.stats.get_daily_stats(user_id, since=since)
    except SchedulerError as exc:
        raise to_http_exception(exc) from exc
    return [DailyStatResponse(**asdict(stat)) for stat in daily]
