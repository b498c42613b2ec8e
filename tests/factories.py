"""Factory helpers shared across the booking test suite."""

from datetime import date, datetime, timedelta, timezone
from itertools import count

from booking_kernel.domain.approval import (
    ApprovalFlowConfig,
    ApprovalStepConfig,
    AutoApproveConditions,
)
from booking_kernel.domain.recurrence import Frequency, RecurrencePattern
from booking_kernel.domain.reservation import (
    AvailabilityRules,
    BookingRequest,
    Reservation,
    ReservationStatus,
    ResourceInfo,
)
from booking_kernel.domain.values import TimeWindow

# Clock origin for every test: Wednesday 2025-01-01 08:00 UTC.
T0 = datetime(2025, 1, 1, 8, 0, tzinfo=timezone.utc)

ROOM_ID = "room-101"
LAB_ID = "lab-chem"
LAB_FLOW_ID = "lab-two-step"


def at(day: int, hour: int, minute: int = 0, month: int = 1, year: int = 2025) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def window(
    start: datetime,
    minutes: int = 60,
) -> TimeWindow:
    return TimeWindow(start, start + timedelta(minutes=minutes))


def sequential_ids(prefix: str):
    """Deterministic id factory: ``prefix-1``, ``prefix-2``, ..."""
    counter = count(1)
    return lambda: f"{prefix}-{next(counter)}"


def make_rules(
    requires_approval: bool = False,
    min_duration_minutes: int = 0,
    max_duration_minutes: int | None = None,
    buffer_minutes: int = 0,
    max_advance_booking_days: int | None = None,
    allow_recurring: bool = True,
) -> AvailabilityRules:
    return AvailabilityRules(
        requires_approval=requires_approval,
        min_duration_minutes=min_duration_minutes,
        max_duration_minutes=max_duration_minutes,
        buffer_minutes_between_reservations=buffer_minutes,
        max_advance_booking_days=max_advance_booking_days,
        allow_recurring=allow_recurring,
    )


def make_room(resource_id: str = ROOM_ID, **rule_overrides) -> ResourceInfo:
    rules = make_rules(**rule_overrides) if rule_overrides else make_rules()
    return ResourceInfo(resource_id=resource_id, resource_type="room", availability_rules=rules)


def make_lab(resource_id: str = LAB_ID, **rule_overrides) -> ResourceInfo:
    params = {"requires_approval": True, "min_duration_minutes": 30, "buffer_minutes": 15}
    params.update(rule_overrides)
    return ResourceInfo(
        resource_id=resource_id, resource_type="lab", availability_rules=make_rules(**params),
    )


def make_step(
    order: int = 1,
    roles: tuple[str, ...] = ("lab_manager",),
    name: str | None = None,
    is_required: bool = True,
    allow_parallel: bool = False,
    timeout_hours: int | None = None,
) -> ApprovalStepConfig:
    return ApprovalStepConfig(
        name=name or f"step-{order}",
        approver_roles=frozenset(roles),
        order=order,
        is_required=is_required,
        allow_parallel=allow_parallel,
        timeout_hours=timeout_hours,
    )


def make_flow(
    steps: tuple[ApprovalStepConfig, ...],
    flow_id: str = "flow",
    resource_types: tuple[str, ...] = ("lab",),
    auto_approve: AutoApproveConditions | None = None,
    is_active: bool = True,
) -> ApprovalFlowConfig:
    return ApprovalFlowConfig(
        flow_id=flow_id,
        name=flow_id,
        resource_types=frozenset(resource_types),
        steps=steps,
        auto_approve_conditions=auto_approve,
        is_active=is_active,
    )


def make_two_step_flow(
    flow_id: str = LAB_FLOW_ID,
    first_timeout: int | None = None,
    second_required: bool = True,
    second_timeout: int | None = None,
) -> ApprovalFlowConfig:
    return make_flow(
        steps=(
            make_step(1, ("lab_manager",), timeout_hours=first_timeout),
            make_step(
                2, ("safety_officer",),
                is_required=second_required, timeout_hours=second_timeout,
            ),
        ),
        flow_id=flow_id,
    )


def make_request(
    start: datetime,
    minutes: int = 60,
    resource_id: str = ROOM_ID,
    requester_id: str = "alice",
    force_override: bool = False,
    purpose: str = "",
) -> BookingRequest:
    return BookingRequest(
        resource_id=resource_id,
        requester_id=requester_id,
        window=window(start, minutes),
        purpose=purpose,
        force_override=force_override,
    )


def make_reservation(
    reservation_id: str,
    start: datetime,
    minutes: int = 60,
    resource_id: str = ROOM_ID,
    status: ReservationStatus = ReservationStatus.CONFIRMED,
    requester_id: str = "alice",
    series_id: str | None = None,
) -> Reservation:
    return Reservation(
        reservation_id=reservation_id,
        resource_id=resource_id,
        requester_id=requester_id,
        window=window(start, minutes),
        status=status,
        series_id=series_id,
        created_at=T0,
        updated_at=T0,
    )


def make_pattern(
    frequency: Frequency = Frequency.DAILY,
    end_date: date = date(2025, 1, 31),
    interval: int = 1,
    days_of_week: set[int] | None = None,
    max_instances: int | None = None,
    day_of_month: int | None = None,
    exception_dates: set[date] | None = None,
) -> RecurrencePattern:
    return RecurrencePattern(
        frequency=frequency,
        end_date=end_date,
        interval=interval,
        days_of_week=frozenset(days_of_week) if days_of_week is not None else None,
        max_instances=max_instances,
        day_of_month=day_of_month,
        exception_dates=frozenset(exception_dates or ()),
    )
