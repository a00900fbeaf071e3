"""
Spaced-repetition review scheduler.

Components:
- SM2Scheduler / update: pure SM-2 state transition
- ReviewSessionManager: applies one review under the per-card lock
- DueQueueBuilder: ordered, interleaved, bounded study queues
- StreakAggregator: daily review counters and study streaks
- CardLockTable: per-(user, card) mutual exclusion
- CardStore: persistence contract (InMemoryCardStore, SqlCardStore)
- StudyStatsService: dashboard statistics
"""

from .errors import (
    BusyError,
    InvalidGradeError,
    LockWaitCancelled,
    NotEnrolledError,
    SchedulerError,
    StorageError,
)
from .guard import CardLockTable
from .models import (
    CardScheduleState,
    DailyStudyStat,
    Enrollment,
    ReviewEvent,
    ReviewResult,
    StudyStats,
    SubjectProgress,
)
from .queue_builder import DueQueueBuilder, QueueConfig
from .review_session import ReviewSessionManager
from .sm2 import SM2Config, SM2Scheduler, update
from .stats import StudyStatsService
from .store import CardStore, InMemoryCardStore
from .streaks import StreakAggregator, StreakSink, calculate_streak

__all__ = [
    # State
    "CardScheduleState",
    "Enrollment",
    "ReviewEvent",
    "ReviewResult",
    "DailyStudyStat",
    "StudyStats",
    "SubjectProgress",
    # Algorithm
    "SM2Config",
    "SM2Scheduler",
    "update",
    # Services
    "ReviewSessionManager",
    "DueQueueBuilder",
    "QueueConfig",
    "StreakAggregator",
    "StreakSink",
    "calculate_streak",
    "StudyStatsService",
    # Concurrency
    "CardLockTable",
    # Persistence
    "CardStore",
    "InMemoryCardStore",
    # Errors
    "SchedulerError",
    "InvalidGradeError",
    "NotEnrolledError",
    "BusyError",
    "LockWaitCancelled",
    "StorageError",
]
