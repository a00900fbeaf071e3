"""
FastAPI application for the review scheduler.

Provides REST API for:
- Review submission (SM-2 rescheduling)
- Due queue construction
- Study statistics and streaks
- Card enrollment
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from config import get_settings
from src.api.dependencies import get_scheduler_context
from src.core.logging import configure_logging
from src.db.database import check_database_health, init_db

settings = get_settings()

SERVICE_NAME = "recall-scheduler"
SERVICE_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # Startup
    configure_logging(settings.log_level, settings.log_file)
    logger.info(f"Starting {SERVICE_NAME} service...")
    init_db()
    logger.info(f"Service started on {settings.api_host}:{settings.api_port}")

    yield

    # Shutdown
    logger.info(f"Shutting down {SERVICE_NAME} service...")
    if get_scheduler_context.cache_info().currsize:
        get_scheduler_context().close()


app = FastAPI(
    title="Recall Scheduler",
    description="""
    Spaced-repetition review scheduling service.

    ## Features

    - **Reviews**: Apply a 0-5 grade and reschedule the card with SM-2
    - **Queue**: Due cards, freshly failed first, interleaved across subjects
    - **Stats**: Study streaks, daily counters, subject progress
    - **Enrollments**: Register which cards a user studies

    ## Error Codes

    | Code | Status | Meaning |
    |------|--------|---------|
    | InvalidGrade | 422 | Grade outside 0-5 |
    | NotEnrolled | 404 | User not enrolled in the card |
    | Busy | 409 | Concurrent review of the same card, retry after `Retry-After` |
    | StorageError | 503 | Storage failure, re-fetch state before retrying |
    """,
    version=SERVICE_VERSION,
    lifespan=lifespan,
)

# CORS middleware for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ========================================
# Health & Status Endpoints
# ========================================


@app.get("/", tags=["Health"])
def root() -> dict[str, str]:
    """Root endpoint returning service info."""
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "status": "ok",
    }


@app.get("/health", tags=["Health"])
def health_check() -> dict[str, Any]:
    """Health check with an actual database round trip."""
    db_status, db_error = check_database_health()

    result: dict[str, Any] = {
        "status": "healthy" if db_status == "ok" else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "components": {"database": db_status},
    }
    if db_error:
        result["errors"] = {"database": db_error}
    return result


@app.get("/config", tags=["Health"])
def get_config() -> dict[str, Any]:
    """Get current scheduling configuration (non-sensitive)."""
    return {
        "database_url": settings.database_url.split("@")[-1]
        if "@" in settings.database_url
        else "configured",
        "sm2": settings.get_sm2_config(),
        "queue": settings.get_queue_config(),
        "lock_timeout_ms": settings.lock_timeout_ms,
        "mastered_interval_days": settings.mastered_interval_days,
    }


# ========================================
# Import and mount routers
# ========================================

from src.api.routers import enrollment_router, review_router  # noqa: E402

app.include_router(review_router.router, prefix="/api/reviews", tags=["Reviews"])
app.include_router(enrollment_router.router, prefix="/api/enrollments", tags=["Enrollments"])
