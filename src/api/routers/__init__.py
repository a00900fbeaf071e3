"""API routers for the review scheduler."""

from src.api.routers import enrollment_router, review_router

__all__ = [
    "review_router",
    "enrollment_router",
]
