"""
Unit tests for streak calculation and the daily stat aggregator.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from src.scheduling import ReviewEvent, StreakAggregator, calculate_streak
from src.scheduling.context import SchedulerContext
from src.scheduling.models import utcnow

pytestmark = pytest.mark.unit

TODAY = date(2024, 3, 10)


def at(day: date, hour: int = 12) -> datetime:
    return datetime(day.year, day.month, day.day, hour, tzinfo=timezone.utc)


class TestCalculateStreak:
    def test_no_study_days(self):
        assert calculate_streak([], TODAY) == 0

    def test_studied_today_only(self):
        assert calculate_streak([TODAY], TODAY) == 1

    def test_streak_ending_yesterday_still_counts(self):
        days = [TODAY - timedelta(days=1), TODAY - timedelta(days=2)]

        assert calculate_streak(days, TODAY) == 2

    def test_gap_of_two_days_resets(self):
        assert calculate_streak([TODAY - timedelta(days=2)], TODAY) == 0

    def test_stops_at_first_gap(self):
        days = [TODAY, TODAY - timedelta(days=1), TODAY - timedelta(days=3)]

        assert calculate_streak(days, TODAY) == 2

    def test_duplicates_and_order_ignored(self):
        days = [TODAY - timedelta(days=1), TODAY, TODAY, TODAY - timedelta(days=1)]

        assert calculate_streak(days, TODAY) == 2


class TestStreakAggregator:
    def test_counts_reviews_and_correct_answers(self):
        aggregator = StreakAggregator()
        aggregator.record_review("u1", at(TODAY, 8), True)
        aggregator.record_review("u1", at(TODAY, 9), False)
        aggregator.record_review("u1", at(TODAY, 10), True)

        stat = aggregator.get_daily_stat("u1", TODAY)

        assert stat.cards_reviewed == 3
        assert stat.reviews_correct == 2
        assert stat.accuracy == pytest.approx(2 / 3)
        assert stat.study_streak_day == 1

    def test_consecutive_days_number_the_streak(self):
        aggregator = StreakAggregator()
        for offset in (2, 1, 0):
            aggregator.record_review("u1", at(TODAY - timedelta(days=offset)), True)

        stats = aggregator.get_daily_stats("u1")

        assert [s.study_streak_day for s in stats] == [1, 2, 3]
        assert aggregator.current_streak("u1", TODAY) == 3

    def test_out_of_order_notifications_renumber(self):
        aggregator = StreakAggregator()
        aggregator.record_review("u1", at(TODAY), True)
        aggregator.record_review("u1", at(TODAY - timedelta(days=2)), True)
        assert aggregator.get_daily_stat("u1", TODAY).study_streak_day == 1

        # The missing day arrives late and joins both sides
        aggregator.record_review("u1", at(TODAY - timedelta(days=1)), True)

        assert aggregator.get_daily_stat("u1", TODAY).study_streak_day == 3

    def test_users_are_separate(self):
        aggregator = StreakAggregator()
        aggregator.record_review("u1", at(TODAY), True)

        assert aggregator.get_daily_stat("u2", TODAY).cards_reviewed == 0
        assert aggregator.current_streak("u2", TODAY) == 0

    def test_day_boundary_is_utc(self):
        aggregator = StreakAggregator()
        late_evening = datetime(2024, 3, 9, 23, 30, tzinfo=timezone(timedelta(hours=-5)))

        aggregator.record_review("u1", late_evening, True)

        assert aggregator.get_daily_stat("u1", TODAY).cards_reviewed == 1

    def test_since_filter(self):
        aggregator = StreakAggregator()
        for offset in range(5):
            aggregator.record_review("u1", at(TODAY - timedelta(days=offset)), True)

        stats = aggregator.get_daily_stats("u1", since=TODAY - timedelta(days=1))

        assert [s.day for s in stats] == [TODAY - timedelta(days=1), TODAY]

    def test_returned_stats_are_copies(self):
        aggregator = StreakAggregator()
        aggregator.record_review("u1", at(TODAY), True)

        aggregator.get_daily_stat("u1", TODAY).cards_reviewed = 99

        assert aggregator.get_daily_stat("u1", TODAY).cards_reviewed == 1

    def test_replay_from_review_log(self):
        events = [
            ReviewEvent("u1", "c1", 4, True, {}, {}, at(TODAY - timedelta(days=1))),
            ReviewEvent("u1", "c2", 1, False, {}, {}, at(TODAY)),
            ReviewEvent("u2", "c1", 5, True, {}, {}, at(TODAY)),
        ]
        aggregator = StreakAggregator()

        assert aggregator.replay(events) == 3
        assert aggregator.current_streak("u1", TODAY) == 2
        assert aggregator.get_daily_stat("u1", TODAY).reviews_correct == 0
        assert aggregator.get_daily_stat("u2", TODAY).reviews_correct == 1


class TestContextAggregator:
    def test_one_shot_context_skips_replay(self, test_settings, store):
        store.append_event(ReviewEvent("u1", "c1", 4, True, {}, {}, utcnow()))
        one_shot = SchedulerContext(test_settings, store=store, notify_inline=True)
        served = SchedulerContext(test_settings, store=store)

        try:
            assert one_shot.streaks.get_daily_stats("u1") == []
            assert served.streaks.get_daily_stats("u1")[0].cards_reviewed == 1
        finally:
            one_shot.close()
            served.close()
