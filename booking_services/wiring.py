"""
booking_services.wiring -- Single construction point for the booking services.

Responsibility:
    Builds the approval workflow engine and the scheduling coordinator
    exactly once from a configuration set and the caller's collaborators,
    and wires the coordinator's approval outcome listener.

Architecture position:
    Services -- top of the service layer. The only place where
    ``SchedulingCoordinator`` and ``ApprovalWorkflowEngine`` are composed.

Usage:
    services = build_booking_services(resources=directory, roles=roles)
    services.coordinator.create_single(request)
    services.approvals.check_timeouts()
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from booking_config import BookingConfiguration, StaticFlowConfigStore, get_active_config
from booking_engines.interval_index import IntervalIndex, SortedIntervalIndex
from booking_kernel.domain.clock import Clock, SystemClock
from booking_kernel.domain.protocols import (
    ApprovalStore,
    NotificationSink,
    ReservationStore,
    ResourceLookup,
    RoleLookup,
)
from booking_kernel.logging_config import get_logger
from booking_kernel.services.memory import InMemoryApprovalStore, InMemoryReservationStore
from booking_kernel.services.retry import RetryPolicy
from booking_services.approval_workflow import ApprovalWorkflowEngine
from booking_services.scheduling_coordinator import SchedulingCoordinator

logger = get_logger("services.wiring")


@dataclass(frozen=True)
class BookingServices:
    """The wired services plus the configuration they were built from."""

    config: BookingConfiguration
    flows: StaticFlowConfigStore
    approvals: ApprovalWorkflowEngine
    coordinator: SchedulingCoordinator


def build_booking_services(
    resources: ResourceLookup,
    roles: RoleLookup,
    reservation_store: ReservationStore | None = None,
    approval_store: ApprovalStore | None = None,
    index: IntervalIndex | None = None,
    clock: Clock | None = None,
    notifier: NotificationSink | None = None,
    config: BookingConfiguration | None = None,
    config_set: str = "default",
    config_dir: Path | None = None,
    warm_index: bool = True,
) -> BookingServices:
    """Build the booking services (single entrypoint for production).

    Stores default to the in-memory implementations and the index to a
    ``SortedIntervalIndex``; with ``warm_index`` the index is loaded from
    the reservation store before the services are returned.
    """
    config = config or get_active_config(config_set, config_dir=config_dir)
    settings = config.settings
    clock = clock or SystemClock()
    reservation_store = reservation_store or InMemoryReservationStore()
    approval_store = approval_store or InMemoryApprovalStore()
    index = index or SortedIntervalIndex()
    flows = StaticFlowConfigStore(config.approval_flows)

    approvals = ApprovalWorkflowEngine(
        approval_store=approval_store,
        reservation_store=reservation_store,
        role_lookup=roles,
        flow_store=flows,
        clock=clock,
        notifier=notifier,
        admin_roles=settings.admin_roles,
        lock_timeout_seconds=settings.lock_timeout_seconds,
        retry_policy=RetryPolicy(
            max_attempts=settings.retry_max_attempts,
            initial_backoff_seconds=settings.retry_initial_backoff_seconds,
            max_backoff_seconds=settings.retry_max_backoff_seconds,
        ),
    )
    coordinator = SchedulingCoordinator(
        resources=resources,
        reservations=reservation_store,
        index=index,
        approvals=approvals,
        flows=flows,
        roles=roles,
        clock=clock,
        notifier=notifier,
        settings=settings,
    )
    if warm_index:
        coordinator.warm_index()

    logger.info(
        "booking_services_built",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "config_checksum": config.checksum,
            "approval_flows": len(config.approval_flows),
        },
    )
    return BookingServices(
        config=config,
        flows=flows,
        approvals=approvals,
        coordinator=coordinator,
    )
