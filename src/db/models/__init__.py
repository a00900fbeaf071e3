# SQLAlchemy models
from .base import Base
from .scheduling import CardEnrollment, CardScheduleRow, ReviewEventRow

__all__ = [
    "Base",
    "CardEnrollment",
    "CardScheduleRow",
    "ReviewEventRow",
]
