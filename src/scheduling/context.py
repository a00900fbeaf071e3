"""
Dependency injection container for the scheduler services.

Lazily builds the Card Store, SM-2 scheduler, lock table, streak aggregator
and the services on top of them from Settings. Shared by the API and the CLI.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

from loguru import logger

from config import Settings, get_settings

from .guard import CardLockTable
from .models import utcnow
from .queue_builder import DueQueueBuilder, QueueConfig
from .review_session import ReviewSessionManager
from .sm2 import SM2Config, SM2Scheduler
from .stats import StudyStatsService
from .store import CardStore
from .streaks import StreakAggregator


class SchedulerContext:
    """
    Holds all shared scheduler state for a process.

    Usage:
        ctx = SchedulerContext()
        ctx.review_manager.submit_review("user-1", "card-1", grade=4)
        ctx.queue_builder.build_queue("user-1")
        ctx.close()

    For testing:
        ctx = SchedulerContext(settings, store=InMemoryCardStore(), notify_inline=True)
    """

    def __init__(
        self,
        settings: Settings | None = None,
        store: CardStore | None = None,
        notify_inline: bool = False,
    ):
        self.settings = settings or get_settings()
        self.notify_inline = notify_inline
        self._store = store
        self._sm2: SM2Scheduler | None = None
        self._guard: CardLockTable | None = None
        self._streaks: StreakAggregator | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._review_manager: ReviewSessionManager | None = None
        self._queue_builder: DueQueueBuilder | None = None
        self._stats: StudyStatsService | None = None

    @property
    def store(self) -> CardStore:
        if self._store is None:
            from .sql_store import SqlCardStore

            self._store = SqlCardStore()
        return self._store

    @property
    def sm2(self) -> SM2Scheduler:
        if self._sm2 is None:
            self._sm2 = SM2Scheduler(SM2Config(**self.settings.get_sm2_config()))
        return self._sm2

    @property
    def guard(self) -> CardLockTable:
        if self._guard is None:
            self._guard = CardLockTable(default_timeout=self.settings.lock_timeout_seconds)
        return self._guard

    @property
    def streaks(self) -> StreakAggregator:
        if self._streaks is None:
            aggregator = StreakAggregator()
            # History is replayed for long-running processes only
            if not self.notify_inline:
                since = utcnow() - timedelta(days=self.settings.streak_replay_days)
                aggregator.replay(self.store.list_events(since=since))
            self._streaks = aggregator
        return self._streaks


    @property
    def review_manager(self) -> ReviewSessionManager:
        if self._review_manager is None:
            if not self.notify_inline and self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.settings.streak_notify_workers,
                    thread_name_prefix="streak-notify",
                )
            self._review_manager = ReviewSessionManager(
                store=self.store,
                sm2=self.sm2,
                guard=self.guard,
                streak_sink=self.streaks,
                notify_executor=self._executor,
            )
        return self._review_manager

    @property
    def queue_builder(self) -> DueQueueBuilder:
        if self._queue_builder is None:
            self._queue_builder = DueQueueBuilder(
                self.store, QueueConfig(**self.settings.get_queue_config())
            )
        return self._queue_builder

    @property
    def stats(self) -> StudyStatsService:
        if self._stats is None:
            self._stats = StudyStatsService(
                self.store,
                mastered_interval_days=self.settings.mastered_interval_days,
                streak_lookback_days=self.settings.streak_replay_days,
            )
        return self._stats

    def close(self) -> None:
        """Flush pending streak notifications."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
            self._review_manager = None
            logger.debug("Streak notification executor shut down")
