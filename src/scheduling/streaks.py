"""
Streak / Session Aggregator.

Accumulates per-user daily review counters and study streaks from review
notifications. The counters feed dashboards and gamification; they never
drive scheduling decisions.

A streak is the number of consecutive calendar days (UTC) with at least one
review, ending today or yesterday. A user who last studied two or more days
ago has a streak of 0.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from datetime import date, datetime, timedelta
from typing import Protocol

from loguru import logger

from .models import DailyStudyStat, ReviewEvent, ensure_utc


class StreakSink(Protocol):
    """Receiver of best-effort review notifications."""

    def record_review(self, user_id: str, occurred_at: datetime, passed: bool) -> None: ...


def calculate_streak(study_days: Iterable[date], today: date) -> int:
    """
    Count consecutive study days ending today or yesterday.

    Args:
        study_days: Days with at least one review (any order, duplicates ok)
        today: Reference day

    Returns:
        Streak length in days (0 if the most recent study day is older than yesterday)
    """
    days = set(study_days)
    if today in days:
        cursor = today
    elif today - timedelta(days=1) in days:
        cursor = today - timedelta(days=1)
    else:
        return 0

    streak = 0
    while cursor in days:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


class StreakAggregator:
    """
    Thread-safe in-memory aggregator of DailyStudyStat per user.

    Notifications may arrive out of order (they are delivered
    asynchronously), so the streak day of every affected day is recomputed
    on each update.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._days: dict[str, dict[date, DailyStudyStat]] = {}

    def record_review(self, user_id: str, occurred_at: datetime, passed: bool) -> None:
        """Count one review for the user's calendar day."""
        day = ensure_utc(occurred_at).date()
        with self._lock:
            user_days = self._days.setdefault(user_id, {})
            stat = user_days.get(day)
            if stat is None:
                stat = DailyStudyStat(day=day)
                user_days[day] = stat
            stat.cards_reviewed += 1
            if passed:
                stat.reviews_correct += 1
            self._renumber_from(user_days, day)

    @staticmethod
    def _renumber_from(user_days: dict[date, DailyStudyStat], day: date) -> None:
        previous = user_days.get(day - timedelta(days=1))
        streak = previous.study_streak_day if previous else 0
        cursor = day
        while cursor in user_days:
            streak += 1
            user_days[cursor].study_streak_day = streak
            cursor += timedelta(days=1)

    def replay(self, events: Iterable[ReviewEvent]) -> int:
        """Rebuild counters from a review log. Returns the number of events applied."""
        count = 0
        for event in events:
            self.record_review(event.user_id, event.occurred_at, event.passed)
            count += 1
        if count:
            logger.info(f"Streak aggregator replayed {count} review events")
        return count

    def get_daily_stat(self, user_id: str, day: date) -> DailyStudyStat:
        with self._lock:
            stat = self._days.get(user_id, {}).get(day)
            if stat is None:
                return DailyStudyStat(day=day)
            return DailyStudyStat(
                day=stat.day,
                cards_reviewed=stat.cards_reviewed,
                reviews_correct=stat.reviews_correct,
                study_streak_day=stat.study_streak_day,
            )

    def get_daily_stats(self, user_id: str, since: date | None = None) -> list[DailyStudyStat]:
        """Daily stats in chronological order."""
        with self._lock:
            user_days = dict(self._days.get(user_id, {}))
        return [
            DailyStudyStat(
                day=stat.day,
                cards_reviewed=stat.cards_reviewed,
                reviews_correct=stat.reviews_correct,
                study_streak_day=stat.study_streak_day,
            )
            for day, stat in sorted(user_days.items())
            if since is None or day >= since
        ]

    def current_streak(self, user_id: str, today: date) -> int:
        with self._lock:
            days = list(self._days.get(user_id, {}).keys())
        return calculate_streak(days, today)
