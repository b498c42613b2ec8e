"""
Reservation domain types (``booking_kernel.domain.reservation``).

Responsibility
--------------
Pure value objects for resources, their availability rules, booking
requests and reservations, plus the reservation status lifecycle.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects. ZERO I/O.

Invariants enforced
-------------------
* RS-1: Lifecycle -- ``RESERVATION_TRANSITIONS`` defines the only valid
  status changes; terminal statuses have no outgoing edges.
* RS-2: Only ``ACTIVE_RESERVATION_STATUSES`` occupy a resource for
  conflict purposes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from booking_kernel.domain.values import TimeWindow


class ReservationStatus(str, Enum):
    """Reservation lifecycle states."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


ACTIVE_RESERVATION_STATUSES: frozenset[ReservationStatus] = frozenset({
    ReservationStatus.PENDING,
    ReservationStatus.CONFIRMED,
    ReservationStatus.IN_PROGRESS,
})

RESERVATION_TRANSITIONS: dict[ReservationStatus, frozenset[ReservationStatus]] = {
    ReservationStatus.PENDING: frozenset({
        ReservationStatus.CONFIRMED,
        ReservationStatus.CANCELLED,
        ReservationStatus.REJECTED,
    }),
    ReservationStatus.CONFIRMED: frozenset({
        ReservationStatus.IN_PROGRESS,
        ReservationStatus.CANCELLED,
        ReservationStatus.COMPLETED,
    }),
    ReservationStatus.IN_PROGRESS: frozenset({
        ReservationStatus.COMPLETED,
        ReservationStatus.CANCELLED,
    }),
    ReservationStatus.COMPLETED: frozenset(),
    ReservationStatus.CANCELLED: frozenset(),
    ReservationStatus.REJECTED: frozenset(),
}


@dataclass(frozen=True)
class AvailabilityRules:
    """Per-resource booking constraints.

    ``max_duration_minutes`` and ``max_advance_booking_days`` of None mean
    unbounded.
    """

    requires_approval: bool = False
    min_duration_minutes: int = 0
    max_duration_minutes: int | None = None
    buffer_minutes_between_reservations: int = 0
    max_advance_booking_days: int | None = None
    allow_recurring: bool = True


@dataclass(frozen=True)
class ResourceInfo:
    """Read-only view of a bookable resource as returned by the lookup."""

    resource_id: str
    resource_type: str
    availability_rules: AvailabilityRules = field(default_factory=AvailabilityRules)
    name: str = ""


@dataclass(frozen=True)
class BookingRequest:
    """Intent to occupy a resource for one window.

    ``force_override`` bypasses the overlap check and is honoured only for
    actors holding an admin role.
    """

    resource_id: str
    requester_id: str
    window: TimeWindow
    purpose: str = ""
    force_override: bool = False


@dataclass(frozen=True)
class Reservation:
    """Immutable snapshot of a reservation.

    ``series_id`` links instances generated from one recurring request.
    """

    reservation_id: str
    resource_id: str
    requester_id: str
    window: TimeWindow
    status: ReservationStatus
    series_id: str | None = None
    purpose: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_RESERVATION_STATUSES
