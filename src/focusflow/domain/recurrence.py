"""Recurring task date arithmetic.

All functions are pure. Calendar dates are local dates in the zone passed as
``tz``; ``tz=None`` means the system local zone (naive datetimes).

Weekday bitmask: Monday is bit 0, Sunday is bit 6.
"""

from datetime import date, datetime, timedelta, tzinfo

from focusflow.domain.models import WEEKDAYS_MASK, RepeatMode

DEFAULT_HOUR = 9
DEFAULT_MINUTE = 0

# Upper bound on the custom-mask search. Two weeks always covers any
# non-empty 7-bit mask.
CUSTOM_SEARCH_DAYS = 14


def next_daily(d: date) -> date:
    return d + timedelta(days=1)


def next_weekdays(d: date) -> date:
    """Next Monday-Friday date strictly after ``d``."""
    nxt = d + timedelta(days=1)
    while not WEEKDAYS_MASK & (1 << nxt.weekday()):
        nxt += timedelta(days=1)
    return nxt


def next_custom(d: date, mask: int | None) -> date | None:
    """First date within the next 14 days whose weekday bit is set in ``mask``.

    Returns None for an empty or non-positive mask, or when no bit in the
    low seven matches.
    """
    if mask is None or mask <= 0:
        return None
    for offset in range(1, CUSTOM_SEARCH_DAYS + 1):
        candidate = d + timedelta(days=offset)
        if mask & (1 << candidate.weekday()):
            return candidate
    return None


def next_occurrence(mode: RepeatMode | None, d: date, mask: int | None = None) -> date | None:
    """Dispatch on the repeat mode; None when the task does not repeat."""
    if mode == RepeatMode.DAILY:
        return next_daily(d)
    if mode == RepeatMode.WEEKDAYS:
        return next_weekdays(d)
    if mode == RepeatMode.CUSTOM:
        return next_custom(d, mask)
    return None


def local_datetime(ms: int, tz: tzinfo | None = None) -> datetime:
    """Wall-clock datetime of an epoch-millisecond instant."""
    return datetime.fromtimestamp(ms / 1000, tz)


def local_date(ms: int, tz: tzinfo | None = None) -> date:
    return local_datetime(ms, tz).date()


def pick_time_of_day(old_deadline_ms: int | None, tz: tzinfo | None = None) -> tuple[int, int]:
    """Hour and minute to carry over to the next occurrence (09:00 by default)."""
    if old_deadline_ms is None:
        return DEFAULT_HOUR, DEFAULT_MINUTE
    dt = local_datetime(old_deadline_ms, tz)
    return dt.hour, dt.minute


def combine(d: date, hour: int, minute: int, tz: tzinfo | None = None) -> int:
    """Epoch milliseconds of local wall time ``d hour:minute``.

    Uses fold=0: an ambiguous wall time resolves to its earlier instant and a
    wall time inside a DST gap is read with the pre-transition offset, which
    lands just after the gap.
    """
    dt = datetime(d.year, d.month, d.day, hour, minute, tzinfo=tz, fold=0)
    return int(dt.timestamp() * 1000)


def next_deadline(
    mode: RepeatMode | None,
    mask: int | None,
    old_deadline_ms: int | None,
    now_ms: int,
    tz: tzinfo | None = None,
) -> int | None:
    """Deadline of the successor of a completed recurring task.

    The next date is computed from the old deadline's local date, or from
    today when the task had no deadline. The time of day carries over.

    Returns:
        Epoch milliseconds, or None when no next date exists
    """
    base_ms = old_deadline_ms if old_deadline_ms is not None else now_ms
    nxt = next_occurrence(mode, local_date(base_ms, tz), mask)
    if nxt is None:
        return None
    hour, minute = pick_time_of_day(old_deadline_ms, tz)
    return combine(nxt, hour, minute, tz)
