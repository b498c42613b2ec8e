"""
Time window value object (``booking_kernel.domain.values``).

Responsibility
--------------
The half-open interval ``[start, end)`` every scheduling decision is made
on, plus the single overlap predicate the whole system shares.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects. ZERO I/O.

Invariants enforced
-------------------
* ``start < end`` at construction (``InvalidWindowError`` otherwise).
* Overlap is symmetric: ``a.overlaps(b) == b.overlaps(a)``.
* Touching windows (``a.end == b.start``) do not overlap.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from booking_kernel.exceptions import InvalidWindowError


def overlaps(s1: datetime, e1: datetime, s2: datetime, e2: datetime) -> bool:
    """Half-open overlap test: ``[s1, e1)`` and ``[s2, e2)`` intersect."""
    return s1 < e2 and s2 < e1


@dataclass(frozen=True, order=True)
class TimeWindow:
    """Half-open time interval ``[start, end)``.

    Ordering is by ``(start, end)`` so sorted windows are ascending by
    start time.
    """

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if not self.start < self.end:
            raise InvalidWindowError(self.start, self.end)

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def duration_minutes(self) -> float:
        return self.duration.total_seconds() / 60

    def overlaps(self, other: TimeWindow) -> bool:
        return overlaps(self.start, self.end, other.start, other.end)

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end

    def expanded(self, minutes: float) -> TimeWindow:
        """Return the window grown by ``minutes`` on both sides."""
        if not minutes:
            return self
        delta = timedelta(minutes=minutes)
        return TimeWindow(self.start - delta, self.end + delta)

    def shifted_to(self, start: datetime) -> TimeWindow:
        """Same duration, new start."""
        return TimeWindow(start, start + self.duration)

    def __str__(self) -> str:
        return f"[{self.start.isoformat()}, {self.end.isoformat()})"
