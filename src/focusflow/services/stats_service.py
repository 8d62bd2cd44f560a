"""Productivity statistics derived from the task store."""

from collections import Counter
from collections.abc import Iterable
from datetime import date, timedelta, tzinfo

from focusflow.domain.models import CompletionDay, UserStats, now_ms
from focusflow.domain.recurrence import combine, local_date
from focusflow.infrastructure.database import Database
from focusflow.infrastructure.logger import get_logger

logger = get_logger(__name__)

POINTS_PER_TASK = 20
TASKS_PER_LEVEL = 10


def week_start(d: date) -> date:
    """Monday of the week containing ``d``."""
    return d - timedelta(days=d.weekday())


def best_streak(days: Iterable[date]) -> int:
    """Longest run of consecutive calendar days."""
    best = 0
    run = 0
    prev: date | None = None
    for day in sorted(set(days)):
        if prev is not None and day == prev + timedelta(days=1):
            run += 1
        else:
            run = 1
        best = max(best, run)
        prev = day
    return best


def current_streak(days: Iterable[date], today: date) -> int:
    """Consecutive days ending today, or yesterday if today has none yet."""
    day_set = set(days)
    cursor = today if today in day_set else today - timedelta(days=1)
    streak = 0
    while cursor in day_set:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def level_for(completed: int) -> int:
    return completed // TASKS_PER_LEVEL + 1


def points_for(completed: int) -> int:
    return completed * POINTS_PER_TASK


class StatsAggregator:
    """Computes UserStats and completion series on demand.

    Day and week boundaries are local midnights in ``tz`` (system local time
    when None). Weeks start on Monday.
    """

    def __init__(self, database: Database, tz: tzinfo | None = None) -> None:
        self.database = database
        self.tz = tz

    def _midnight(self, d: date) -> int:
        return combine(d, 0, 0, self.tz)

    async def get_stats(self, now: int | None = None) -> UserStats:
        """Aggregate snapshot as of ``now`` (epoch ms)."""
        now = now if now is not None else now_ms()
        today = local_date(now, self.tz)
        day_start = self._midnight(today)
        day_end = self._midnight(today + timedelta(days=1))
        monday = week_start(today)
        week_begin = self._midnight(monday)
        week_end = self._midnight(monday + timedelta(days=7))

        total = await self.database.count_tasks()
        completed = await self.database.count_completed_tasks()
        completion_days = {
            local_date(ms, self.tz) for ms in await self.database.list_completion_times()
        }

        stats = UserStats(
            total_tasks=total,
            completed_tasks=completed,
            completed_today=await self.database.count_completed_between(day_start, day_end),
            completed_week=await self.database.count_completed_between(week_begin, week_end),
            tasks_today=await self.database.count_created_between(day_start, day_end),
            tasks_week=await self.database.count_created_between(week_begin, week_end),
            total_focus_minutes=await self.database.total_focus_minutes(),
            current_streak=current_streak(completion_days, today),
            best_streak=best_streak(completion_days),
            level=level_for(completed),
            points=points_for(completed),
        )
        logger.debug("stats_computed", total_tasks=total, completed_tasks=completed)
        return stats

    async def get_completion_series(
        self, days: int, now: int | None = None
    ) -> list[CompletionDay]:
        """Completions per local day over the trailing ``days`` days.

        Today is included, ``days <= 0`` counts as 1, and days without
        completions are omitted.
        """
        now = now if now is not None else now_ms()
        days = max(days, 1)
        today = local_date(now, self.tz)
        first = today - timedelta(days=days - 1)

        times = await self.database.list_completion_times(since_ms=self._midnight(first))
        counts = Counter(local_date(ms, self.tz) for ms in times)
        return [
            CompletionDay(day=day.isoformat(), count=count)
            for day, count in sorted(counts.items())
            if first <= day <= today
        ]
