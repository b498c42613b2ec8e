"""
booking_engines.recurrence -- Expand a base window into a bounded series.

Responsibility:
    Turn a base ``TimeWindow`` plus a ``RecurrencePattern`` into the ordered,
    finite list of instance windows a recurring booking would occupy.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import booking_kernel.domain types and booking_kernel.exceptions.

Algorithm:
    DAILY    -- base start + k * interval days.
    WEEKLY   -- each period anchors at base start + k * interval weeks; every
                matching weekday in the seven days from the anchor is
                emitted in date order. ``end_date`` bounds the anchors, so a
                period that starts on or before ``end_date`` is emitted in
                full.
    MONTHLY  -- base start + k * interval months, always computed from the
                base (no drift), day clamped to the month's last day.
    Days are added as calendar days, keeping the wall-clock time of the
    base start. Each instance keeps the base window's duration.

Invariants enforced:
    - Deterministic: identical inputs yield identical, ascending output.
    - Bounded: at most ``max_instances`` (or the hard cap) windows.
    - ``exception_dates`` are skipped and do not count toward the limit.

Failure modes:
    - InvalidPatternError for interval < 1, an empty or out-of-range
      weekday set, max_instances < 1, or a bad ``day_of_month``.
    - An ``end_date`` before the base start yields an empty list.
"""

from __future__ import annotations

import calendar
from collections.abc import Iterator
from datetime import date, datetime, timedelta

from booking_engines.tracer import traced_engine
from booking_kernel.domain.recurrence import Frequency, RecurrencePattern
from booking_kernel.domain.values import TimeWindow
from booking_kernel.exceptions import InvalidPatternError
from booking_kernel.logging_config import get_logger

logger = get_logger("engines.recurrence")

HARD_INSTANCE_CAP = 365


def calendar_weekday(moment: date) -> int:
    """Weekday with 0 = Sunday ... 6 = Saturday."""
    return (moment.weekday() + 1) % 7


def validate_pattern(pattern: RecurrencePattern) -> None:
    """Raise InvalidPatternError if the pattern cannot define a series."""
    if pattern.interval < 1:
        raise InvalidPatternError(f"interval must be >= 1, got {pattern.interval}")

    if pattern.days_of_week is not None:
        if pattern.frequency != Frequency.WEEKLY:
            raise InvalidPatternError("days_of_week applies to WEEKLY patterns only")
        if not pattern.days_of_week:
            raise InvalidPatternError("days_of_week must not be empty")
        bad = sorted(d for d in pattern.days_of_week if not 0 <= d <= 6)
        if bad:
            raise InvalidPatternError(f"days_of_week values must be 0..6, got {bad}")

    if pattern.max_instances is not None and pattern.max_instances < 1:
        raise InvalidPatternError(f"max_instances must be >= 1, got {pattern.max_instances}")

    if pattern.day_of_month is not None:
        if pattern.frequency != Frequency.MONTHLY:
            raise InvalidPatternError("day_of_month applies to MONTHLY patterns only")
        if not 1 <= pattern.day_of_month <= 31:
            raise InvalidPatternError(f"day_of_month must be 1..31, got {pattern.day_of_month}")


def _daily_starts(base: datetime, pattern: RecurrencePattern) -> Iterator[datetime]:
    step = timedelta(days=pattern.interval)
    start = base
    while start.date() <= pattern.end_date:
        yield start
        start += step


def _weekly_starts(base: datetime, pattern: RecurrencePattern) -> Iterator[datetime]:
    days = pattern.days_of_week or frozenset({calendar_weekday(base)})
    period = timedelta(weeks=pattern.interval)
    anchor = base
    while anchor.date() <= pattern.end_date:
        for offset in range(7):
            candidate = anchor + timedelta(days=offset)
            if calendar_weekday(candidate) in days:
                yield candidate
        anchor += period


def _add_months(base: datetime, months: int, day: int) -> datetime:
    month_index = base.month - 1 + months
    year = base.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return base.replace(year=year, month=month, day=min(day, last_day))


def _monthly_starts(base: datetime, pattern: RecurrencePattern) -> Iterator[datetime]:
    day = pattern.day_of_month or base.day
    k = 0
    while True:
        candidate = _add_months(base, k * pattern.interval, day)
        if candidate.date() > pattern.end_date:
            return
        if candidate >= base:
            yield candidate
        k += 1


_GENERATORS = {
    Frequency.DAILY: _daily_starts,
    Frequency.WEEKLY: _weekly_starts,
    Frequency.MONTHLY: _monthly_starts,
}


@traced_engine("recurrence", "1.0", fingerprint_fields=("base_window", "pattern"))
def expand_recurrence(
    base_window: TimeWindow,
    pattern: RecurrencePattern,
    hard_cap: int = HARD_INSTANCE_CAP,
) -> list[TimeWindow]:
    """Expand ``base_window`` by ``pattern`` into ascending instance windows.

    Args:
        base_window: First occurrence; its duration is kept for every instance.
        pattern: Repetition rule.
        hard_cap: Upper bound applied on top of ``pattern.max_instances``.

    Returns:
        Ordered list of windows; empty if ``end_date`` precedes the base start.

    Raises:
        InvalidPatternError: If the pattern is malformed.
    """
    validate_pattern(pattern)

    if pattern.end_date < base_window.start.date():
        return []

    limit = hard_cap
    if pattern.max_instances is not None:
        limit = min(limit, pattern.max_instances)

    duration = base_window.duration
    windows: list[TimeWindow] = []
    for start in _GENERATORS[pattern.frequency](base_window.start, pattern):
        if start.date() in pattern.exception_dates:
            continue
        windows.append(TimeWindow(start, start + duration))
        if len(windows) >= limit:
            break

    logger.debug(
        "recurrence_expanded",
        extra={
            "frequency": pattern.frequency.value,
            "interval": pattern.interval,
            "instance_count": len(windows),
            "limit": limit,
        },
    )
    return windows


class RecurrenceExpander:
    """Stateless expander bound to a configured hard cap."""

    def __init__(self, hard_cap: int = HARD_INSTANCE_CAP) -> None:
        self.hard_cap = hard_cap

    def expand(self, base_window: TimeWindow, pattern: RecurrencePattern) -> list[TimeWindow]:
        return expand_recurrence(base_window, pattern, self.hard_cap)
