"""
Scheduling result types (``booking_kernel.domain.scheduling``).

Frozen dataclasses returned by the availability engine and the scheduling
coordinator. ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from booking_kernel.domain.reservation import Reservation
from booking_kernel.domain.values import TimeWindow


class DenialReason(str, Enum):
    """Stable reason codes for a denied window."""

    DURATION_TOO_SHORT = "DURATION_TOO_SHORT"
    DURATION_TOO_LONG = "DURATION_TOO_LONG"
    TOO_FAR_IN_ADVANCE = "TOO_FAR_IN_ADVANCE"
    OVERLAP = "OVERLAP"


@dataclass(frozen=True)
class AvailabilityResult:
    """Outcome of checking one window.

    ``conflicts`` is populated even when an earlier rule already denied
    the window.
    """

    allowed: bool
    reason: DenialReason | None = None
    detail: str = ""
    conflicts: tuple[Reservation, ...] = ()


@dataclass(frozen=True)
class InstanceFailure:
    """A recurrence instance that was not created."""

    window: TimeWindow
    reason: str
    detail: str = ""
    conflicting_ids: tuple[str, ...] = ()


class InstanceOutcome(str, Enum):
    CREATED = "created"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


@dataclass(frozen=True)
class BatchSummary:
    """Counts for one batch.

    ``total == created + failed + rolled_back + not_attempted`` always holds;
    ``success_rate`` is ``created / total`` (0.0 for an empty series).
    """

    total: int
    created: int
    failed: int
    not_attempted: int
    success_rate: float
    rolled_back: int = 0
    aborted: bool = False
    cancelled: bool = False


@dataclass(frozen=True)
class BatchResult:
    """Result of a recurring booking call.

    Returned for partial failure as well; only infrastructure errors
    escape as exceptions.
    """

    series_id: str
    created: tuple[Reservation, ...]
    failed: tuple[InstanceFailure, ...]
    summary: BatchSummary


@dataclass(frozen=True)
class BatchProgress:
    """Progress notification emitted after each instance outcome."""

    series_id: str
    index: int
    total: int
    window: TimeWindow
    outcome: InstanceOutcome
    created_so_far: int
    failed_so_far: int


@dataclass(frozen=True)
class InstancePreview:
    """Dry-run verdict for one instance of a recurring request."""

    window: TimeWindow
    result: AvailabilityResult

    @property
    def allowed(self) -> bool:
        return self.result.allowed
