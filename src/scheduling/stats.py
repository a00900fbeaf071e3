"""
Study statistics.

Dashboard figures derived from scheduling states and the review log:
- StudyStats: totals, due now, reviewed today, average ease, mastered, streak
- SubjectProgress: cards per learning stage (new / learning / reviewing / mastered)
- DailyStudyStat: per-day review counters and streak day numbers
"""

from __future__ import annotations

from datetime import date, datetime, timedelta

from .models import DailyStudyStat, StudyStats, SubjectProgress, ensure_utc, utcnow
from .store import CardStore
from .streaks import StreakAggregator, calculate_streak

DEFAULT_MASTERED_INTERVAL_DAYS = 21


class StudyStatsService:
    """Read-only statistics over a Card Store."""

    def __init__(
        self,
        store: CardStore,
        mastered_interval_days: int = DEFAULT_MASTERED_INTERVAL_DAYS,
        streak_lookback_days: int = 400,
    ):
        self.store = store
        self.mastered_interval_days = mastered_interval_days
        self.streak_lookback_days = streak_lookback_days

    def get_study_stats(
        self,
        user_id: str,
        subject_id: str | None = None,
        now: datetime | None = None,
    ) -> StudyStats:
        """
        Compute study statistics.

        The streak always spans all subjects since it measures study days,
        not subject coverage.
        """
        now = ensure_utc(now) if now is not None else utcnow()
        today = now.date()
        day_start = datetime.combine(today, datetime.min.time(), tzinfo=now.tzinfo)

        states = self.store.list_states(user_id, subject_id=subject_id)
        stats = StudyStats(total_cards=len(states))
        if states:
            stats.due_now = sum(1 for state in states if state.is_due(now))
            stats.average_ease_factor = sum(s.ease_factor for s in states) / len(states)
            stats.mastered_cards = sum(
                1 for state in states if state.interval_days >= self.mastered_interval_days
            )

        card_ids = {state.card_id for state in states}
        recent = self.store.list_events(
            user_id=user_id, since=now - timedelta(days=self.streak_lookback_days)
        )
        stats.reviewed_today = sum(
            1
            for event in recent
            if day_start <= event.occurred_at <= now
            and (subject_id is None or event.card_id in card_ids)
        )
        stats.streak_days = calculate_streak((event.occurred_at.date() for event in recent), today)
        return stats

    def get_subject_progress(self, user_id: str, subject_id: str | None = None) -> SubjectProgress:
        """Count cards per learning stage."""
        progress = SubjectProgress()
        for state in self.store.list_states(user_id, subject_id=subject_id):
            progress.total += 1
            if state.interval_days >= self.mastered_interval_days:
                progress.mastered += 1
            elif state.repetition_count == 0:
                progress.new += 1
            elif state.repetition_count < 3:
                progress.learning += 1
            else:
                progress.reviewing += 1
        return progress

    def get_daily_stats(
        self,
        user_id: str,
        since: date | None = None,
        now: datetime | None = None,
    ) -> list[DailyStudyStat]:
        """
        Daily review counters rebuilt from the review log.

        Reviews written by any process are included. Streak day numbers are
        counted over the whole lookback window even when ``since`` trims the
        returned days.
        """
        now = ensure_utc(now) if now is not None else utcnow()
        events = self.store.list_events(
            user_id=user_id, since=now - timedelta(days=self.streak_lookback_days)
        )
        aggregator = StreakAggregator()
        for event in events:
            aggregator.record_review(event.user_id, event.occurred_at, event.passed)
        return aggregator.get_daily_stats(user_id, since=since)
