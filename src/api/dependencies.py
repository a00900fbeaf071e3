"""
FastAPI dependencies.

The scheduler context is process-wide so the per-card lock table and the
streak aggregator are shared by every request. Tests replace it through
``app.dependency_overrides[get_scheduler_context]``.
"""

from __future__ import annotations

from functools import lru_cache

from fastapi import HTTPException

from src.scheduling.context import SchedulerContext
from src.scheduling.errors import SchedulerError

ERROR_STATUS = {
    "InvalidGrade": 422,
    "NotEnrolled": 404,
    "Busy": 409,
    "StorageError": 503,
}

BUSY_RETRY_AFTER_SECONDS = "1"


@lru_cache(maxsize=1)
def get_scheduler_context() -> SchedulerContext:
    """Get the cached process-wide scheduler context."""
    return SchedulerContext()


def to_http_exception(exc: SchedulerError) -> HTTPException:
    """Map a scheduler error to an HTTPException carrying its stable code."""
    headers = {"Retry-After": BUSY_RETRY_AFTER_SECONDS} if exc.code == "Busy" else None
    return HTTPException(
        status_code=ERROR_STATUS.get(exc.code, 500),
        detail={"code": exc.code, "message": str(exc)},
        headers=headers,
    )
