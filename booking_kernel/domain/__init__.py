"""
Pure domain layer.

This module contains immutable value objects and collaborator protocols
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Time/clock (other than the Clock abstraction itself)
- I/O
"""

from booking_kernel.domain.approval import (
    APPROVAL_TRANSITIONS,
    OPEN_APPROVAL_STATUSES,
    SYSTEM_ACTOR,
    TERMINAL_APPROVAL_STATUSES,
    ActionPayload,
    ApprovalAction,
    ApprovalFlowConfig,
    ApprovalHistoryEntry,
    ApprovalPriority,
    ApprovalRequest,
    ApprovalStatus,
    ApprovalStepConfig,
    AutoApproveConditions,
)
from booking_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from booking_kernel.domain.recurrence import Frequency, RecurrencePattern
from booking_kernel.domain.reservation import (
    ACTIVE_RESERVATION_STATUSES,
    RESERVATION_TRANSITIONS,
    AvailabilityRules,
    BookingRequest,
    Reservation,
    ReservationStatus,
    ResourceInfo,
)
from booking_kernel.domain.scheduling import (
    AvailabilityResult,
    BatchProgress,
    BatchResult,
    BatchSummary,
    DenialReason,
    InstanceFailure,
    InstanceOutcome,
    InstancePreview,
)
from booking_kernel.domain.values import TimeWindow, overlaps

__all__ = [
    "APPROVAL_TRANSITIONS",
    "ACTIVE_RESERVATION_STATUSES",
    "OPEN_APPROVAL_STATUSES",
    "RESERVATION_TRANSITIONS",
    "SYSTEM_ACTOR",
    "TERMINAL_APPROVAL_STATUSES",
    "ActionPayload",
    "ApprovalAction",
    "ApprovalFlowConfig",
    "ApprovalHistoryEntry",
    "ApprovalPriority",
    "ApprovalRequest",
    "ApprovalStatus",
    "ApprovalStepConfig",
    "AutoApproveConditions",
    "AvailabilityResult",
    "AvailabilityRules",
    "BatchProgress",
    "BatchResult",
    "BatchSummary",
    "BookingRequest",
    "Clock",
    "DenialReason",
    "DeterministicClock",
    "Frequency",
    "InstanceFailure",
    "InstanceOutcome",
    "InstancePreview",
    "RecurrencePattern",
    "Reservation",
    "ReservationStatus",
    "ResourceInfo",
    "SystemClock",
    "TimeWindow",
    "overlaps",
]
