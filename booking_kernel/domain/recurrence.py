"""
Recurrence pattern value object (``booking_kernel.domain.recurrence``).

Pure data; expansion lives in ``booking_engines.recurrence``.

Weekday numbering follows the calendar convention used by the booking
front ends: 0 = Sunday, 1 = Monday, ... 6 = Saturday.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass(frozen=True)
class RecurrencePattern:
    """How a base window repeats.

    ``days_of_week`` of None means "the base window's weekday"; an empty
    set is invalid. ``exception_dates`` are skipped without counting toward
    ``max_instances``. ``day_of_month`` (MONTHLY only) overrides the base
    window's day and is clamped to the last day of shorter months.
    """

    frequency: Frequency
    end_date: date
    interval: int = 1
    days_of_week: frozenset[int] | None = None
    max_instances: int | None = None
    day_of_month: int | None = None
    exception_dates: frozenset[date] = frozenset()
