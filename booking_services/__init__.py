"""
booking_services -- Package init and public API.

Responsibility:
    Stateful orchestration that composes the pure engines
    (booking_engines/) with the kernel's stores, locks and clock.

Architecture position:
    Services -- orchestration over engines + kernel + config.

    Dependency direction (enforced by tests/architecture/test_layer_boundaries.py):
        booking_services/ -> booking_engines/  (allowed)
        booking_services/ -> booking_kernel/   (allowed)
        booking_services/ -> booking_config/   (allowed)
        booking_engines/  -> booking_services/ (FORBIDDEN)
        booking_kernel/   -> booking_services/ (FORBIDDEN)
"""

from booking_services.approval_workflow import ApprovalWorkflowEngine
from booking_services.scheduling_coordinator import (
    CancellationToken,
    RecurringOptions,
    SchedulingCoordinator,
)
from booking_services.wiring import BookingServices, build_booking_services

__all__ = [
    "ApprovalWorkflowEngine",
    "BookingServices",
    "CancellationToken",
    "RecurringOptions",
    "SchedulingCoordinator",
    "build_booking_services",
]
