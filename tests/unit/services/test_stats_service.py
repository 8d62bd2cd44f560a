"""Unit tests for StatsAggregator and streak helpers."""

from datetime import date, datetime, timezone

import pytest
from focusflow.domain.models import CompletionDay, NewTask, Status
from focusflow.infrastructure.database import Database
from focusflow.services.stats_service import (
    StatsAggregator,
    best_streak,
    current_streak,
    week_start,
)


def utc_ms(*args: int) -> int:
    return int(datetime(*args, tzinfo=timezone.utc).timestamp() * 1000)


async def _complete_on(db: Database, *moments: int) -> None:
    for i, moment in enumerate(moments):
        task = await db.add_task(NewTask(title=f"task {i}"), now=moment)
        await db.update_task_status(task.id, Status.DONE, now=moment)


class TestStreakHelpers:
    """Tests for the pure streak functions."""

    def test_best_streak_with_gap(self) -> None:
        days = [date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 3), date(2024, 1, 5)]
        assert best_streak(days) == 3

    def test_best_streak_empty(self) -> None:
        assert best_streak([]) == 0

    def test_best_streak_ignores_duplicates_and_order(self) -> None:
        days = [date(2024, 1, 2), date(2024, 1, 1), date(2024, 1, 2)]
        assert best_streak(days) == 2

    def test_current_streak_from_today(self) -> None:
        days = {date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 3), date(2024, 1, 5)}
        assert current_streak(days, date(2024, 1, 5)) == 1

    def test_current_streak_from_yesterday(self) -> None:
        days = {date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 3)}
        assert current_streak(days, date(2024, 1, 4)) == 3

    def test_current_streak_broken(self) -> None:
        assert current_streak({date(2024, 1, 1)}, date(2024, 1, 5)) == 0

    def test_week_starts_monday(self) -> None:
        assert week_start(date(2024, 1, 7)) == date(2024, 1, 1)  # Sunday
        assert week_start(date(2024, 1, 1)) == date(2024, 1, 1)


class TestGetStats:
    """Tests for the aggregate snapshot."""

    @pytest.mark.asyncio
    async def test_empty_store(self, memory_db: Database) -> None:
        stats = await StatsAggregator(memory_db, timezone.utc).get_stats(utc_ms(2024, 1, 5))

        assert stats.total_tasks == 0
        assert stats.current_streak == 0
        assert stats.best_streak == 0
        assert stats.level == 1
        assert stats.points == 0

    @pytest.mark.asyncio
    async def test_streak_example(self, memory_db: Database) -> None:
        """Test completions on Jan 1, 2, 3 and 5 give best 3 and current 1 on Jan 5."""
        await _complete_on(
            memory_db,
            utc_ms(2024, 1, 1, 10),
            utc_ms(2024, 1, 2, 10),
            utc_ms(2024, 1, 3, 10),
            utc_ms(2024, 1, 5, 10),
        )

        stats = await StatsAggregator(memory_db, timezone.utc).get_stats(utc_ms(2024, 1, 5, 18))

        assert stats.best_streak == 3
        assert stats.current_streak == 1
        assert stats.completed_tasks == 4
        assert stats.points == 80
        assert stats.level == 1

    @pytest.mark.asyncio
    async def test_today_and_week_counts(self, memory_db: Database) -> None:
        """Test local midnight boundaries with a Monday week start."""
        # Wednesday 2024-01-10; the week began Monday 2024-01-08
        now = utc_ms(2024, 1, 10, 15)
        await _complete_on(
            memory_db,
            utc_ms(2024, 1, 10, 0, 5),  # today
            utc_ms(2024, 1, 8, 9),  # this week
            utc_ms(2024, 1, 7, 23, 59),  # last Sunday
        )
        await memory_db.add_task(NewTask(title="open"), now=utc_ms(2024, 1, 10, 14))

        stats = await StatsAggregator(memory_db, timezone.utc).get_stats(now)

        assert stats.total_tasks == 4
        assert stats.completed_today == 1
        assert stats.completed_week == 2
        assert stats.tasks_today == 2
        assert stats.tasks_week == 3

    @pytest.mark.asyncio
    async def test_level_and_focus_minutes(self, memory_db: Database) -> None:
        await _complete_on(memory_db, *(utc_ms(2024, 1, 1, h) for h in range(12)))
        session = await memory_db.start_focus_session()
        await memory_db.finish_focus_session(session.id, 50)

        stats = await StatsAggregator(memory_db, timezone.utc).get_stats(utc_ms(2024, 1, 1, 20))

        assert stats.level == 2
        assert stats.points == 240
        assert stats.total_focus_minutes == 50

    @pytest.mark.asyncio
    async def test_reopened_task_not_counted_as_completion(self, memory_db: Database) -> None:
        task = await memory_db.add_task(NewTask(title="x"), now=utc_ms(2024, 1, 1))
        await memory_db.update_task_status(task.id, Status.DONE, now=utc_ms(2024, 1, 1, 9))
        await memory_db.update_task_status(task.id, Status.TODO)

        stats = await StatsAggregator(memory_db, timezone.utc).get_stats(utc_ms(2024, 1, 1, 20))

        assert stats.completed_tasks == 0
        assert stats.current_streak == 0


class TestCompletionSeries:
    """Tests for the per-day completion series."""

    @pytest.mark.asyncio
    async def test_trailing_window_omits_empty_days(self, memory_db: Database) -> None:
        await _complete_on(
            memory_db,
            utc_ms(2024, 1, 1, 10),  # outside a 3-day window ending Jan 5
            utc_ms(2024, 1, 3, 10),
            utc_ms(2024, 1, 3, 11),
            utc_ms(2024, 1, 5, 8),
        )
        aggregator = StatsAggregator(memory_db, timezone.utc)

        series = await aggregator.get_completion_series(3, now=utc_ms(2024, 1, 5, 20))

        assert series == [
            CompletionDay(day="2024-01-03", count=2),
            CompletionDay(day="2024-01-05", count=1),
        ]

    @pytest.mark.asyncio
    async def test_non_positive_days_means_today(self, memory_db: Database) -> None:
        await _complete_on(memory_db, utc_ms(2024, 1, 4, 10), utc_ms(2024, 1, 5, 10))
        aggregator = StatsAggregator(memory_db, timezone.utc)

        series = await aggregator.get_completion_series(0, now=utc_ms(2024, 1, 5, 20))

        assert series == [CompletionDay(day="2024-01-05", count=1)]
