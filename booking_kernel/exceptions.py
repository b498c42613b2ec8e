"""
Typed Exception Hierarchy for the Booking Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every rejection the engine produces is surfaced to a caller that must
decide what to show or whether to retry. Callers catch by TYPE and read
the stable ``code`` plus structured attributes; they never parse messages.

    try:
        coordinator.create_single(request)
    except OverlapError as e:
        offer_alternatives(e.conflicts)
    except ValidationError as e:
        api_response(code=e.code, detail=str(e))

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    BookingKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidWindowError
    |   +-- DurationTooShortError
    |   +-- DurationTooLongError
    |   +-- TooFarInAdvanceError
    |   +-- InvalidPatternError
    |   +-- RecurrenceNotAllowedError
    |   +-- RejectionReasonRequiredError
    |   +-- InvalidFlowConfigError
    |
    +-- ConflictError
    |   +-- OverlapError
    |
    +-- StateError
    |   +-- AlreadyTerminalError
    |   +-- ForbiddenRoleError
    |   +-- InvalidApprovalActionError
    |   +-- DuplicateApprovalError
    |   +-- DuplicateApprovalRequestError
    |   +-- InvalidReservationTransitionError
    |
    +-- NotFoundError
    |   +-- ResourceNotFoundError
    |   +-- ReservationNotFoundError
    |   +-- ApprovalRequestNotFoundError
    |   +-- ApprovalFlowNotFoundError
    |
    +-- InfrastructureError
    |   +-- LockAcquisitionError
    |   +-- PersistenceError
    |   +-- OptimisticLockError
    |   +-- RetryExhaustedError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | INVALID_WINDOW              | start >= end
                | DURATION_TOO_SHORT          | Below rules.min_duration_minutes
                | DURATION_TOO_LONG           | Above rules.max_duration_minutes
                | TOO_FAR_IN_ADVANCE          | Start beyond now + max_advance_booking_days
                | INVALID_PATTERN             | Bad interval / empty weekday set / bad bounds
                | RECURRENCE_NOT_ALLOWED      | Resource forbids recurring bookings
                | REJECTION_REASON_REQUIRED   | REJECT without a reason
                | INVALID_FLOW_CONFIG         | Step orders not 1..n, no approver roles
----------------|-----------------------------|-----------------------------------------
Conflict        | OVERLAP                     | Window (plus buffer) hits an active booking
----------------|-----------------------------|-----------------------------------------
State           | ALREADY_TERMINAL            | Action on a resolved approval request
                | FORBIDDEN_ROLE              | Actor lacks the role for the action
                | INVALID_APPROVAL_ACTION     | Action not valid in the current state
                | DUPLICATE_APPROVAL          | Same actor approving twice at one level
                | DUPLICATE_APPROVAL_REQUEST  | Open request already exists for reservation
                | INVALID_RESERVATION_TRANSITION | Reservation status change not allowed
----------------|-----------------------------|-----------------------------------------
Not found       | RESOURCE_NOT_FOUND          | Unknown resource id
                | RESERVATION_NOT_FOUND       | Unknown reservation id
                | APPROVAL_REQUEST_NOT_FOUND  | Unknown approval request id
                | APPROVAL_FLOW_NOT_FOUND     | Unknown flow id / no flow for resource type
----------------|-----------------------------|-----------------------------------------
Infrastructure  | LOCK_TIMEOUT                | Per-key lock not acquired in time
                | PERSISTENCE_ERROR           | Store failure
                | OPTIMISTIC_LOCK_CONFLICT    | Concurrent modification detected
                | RETRY_EXHAUSTED             | Retries used up on infrastructure errors
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Update/delete of an approval history row

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Validation and conflict errors are final for the given input. They are
   never retried automatically.

2. State errors indicate a stale UI or a caller bug. They are logged as
   warnings by the raising service.

3. Only InfrastructureError is eligible for retry (see
   ``booking_kernel.services.retry``).
"""

from __future__ import annotations

from typing import Any


class BookingKernelError(Exception):
    """
    Base exception for all booking kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "BOOKING_KERNEL_ERROR"


# Validation exceptions


class ValidationError(BookingKernelError):
    """Base exception for input that can never succeed as given."""

    code: str = "VALIDATION_ERROR"


class InvalidWindowError(ValidationError):
    """Time window does not satisfy start < end."""

    code: str = "INVALID_WINDOW"

    def __init__(self, start: Any, end: Any):
        self.start = start
        self.end = end
        super().__init__(f"Invalid time window: start {start} is not before end {end}")


class DurationTooShortError(ValidationError):
    """Requested duration is below the resource minimum."""

    code: str = "DURATION_TOO_SHORT"

    def __init__(self, duration_minutes: float, min_minutes: int):
        self.duration_minutes = duration_minutes
        self.min_minutes = min_minutes
        super().__init__(
            f"Duration {duration_minutes:g} min is shorter than the minimum {min_minutes} min"
        )


class DurationTooLongError(ValidationError):
    """Requested duration exceeds the resource maximum."""

    code: str = "DURATION_TOO_LONG"

    def __init__(self, duration_minutes: float, max_minutes: int):
        self.duration_minutes = duration_minutes
        self.max_minutes = max_minutes
        super().__init__(
            f"Duration {duration_minutes:g} min exceeds the maximum {max_minutes} min"
        )


class TooFarInAdvanceError(ValidationError):
    """Requested start lies beyond the advance-booking horizon."""

    code: str = "TOO_FAR_IN_ADVANCE"

    def __init__(self, start: Any, horizon: Any, max_days: int):
        self.start = start
        self.horizon = horizon
        self.max_days = max_days
        super().__init__(
            f"Start {start} is more than {max_days} days ahead (latest allowed {horizon})"
        )


class InvalidPatternError(ValidationError):
    """Recurrence pattern cannot produce a well-defined series."""

    code: str = "INVALID_PATTERN"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid recurrence pattern: {reason}")


class RecurrenceNotAllowedError(ValidationError):
    """Resource does not accept recurring bookings."""

    code: str = "RECURRENCE_NOT_ALLOWED"

    def __init__(self, resource_id: str):
        self.resource_id = resource_id
        super().__init__(f"Resource {resource_id} does not allow recurring reservations")


class RejectionReasonRequiredError(ValidationError):
    """REJECT was issued without a rejection reason."""

    code: str = "REJECTION_REASON_REQUIRED"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"A rejection reason is required to reject approval request {request_id}")


class InvalidFlowConfigError(ValidationError):
    """Approval flow configuration violates structural rules."""

    code: str = "INVALID_FLOW_CONFIG"

    def __init__(self, flow_id: str, problems: list[str]):
        self.flow_id = flow_id
        self.problems = problems
        super().__init__(
            f"Invalid approval flow {flow_id}: " + "; ".join(problems)
        )


# Conflict exceptions


class ConflictError(BookingKernelError):
    """Base exception for scheduling conflicts."""

    code: str = "CONFLICT"


class OverlapError(ConflictError):
    """
    Requested window overlaps one or more active reservations.

    ``conflicts`` holds the conflicting Reservation objects so callers can
    offer alternatives.
    """

    code: str = "OVERLAP"

    def __init__(self, resource_id: str, window: Any, conflicts: tuple[Any, ...]):
        self.resource_id = resource_id
        self.window = window
        self.conflicts = tuple(conflicts)
        super().__init__(
            f"Window {window} on resource {resource_id} conflicts with "
            f"{len(self.conflicts)} existing reservation(s)"
        )


# State exceptions


class StateError(BookingKernelError):
    """Base exception for actions that do not fit the current state."""

    code: str = "STATE_ERROR"


class AlreadyTerminalError(StateError):
    """Approval request has already reached a terminal status."""

    code: str = "ALREADY_TERMINAL"

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(f"Approval request {request_id} is already {status}")


class ForbiddenRoleError(StateError):
    """Actor lacks a role required for the action."""

    code: str = "FORBIDDEN_ROLE"

    def __init__(self, actor_id: str, action: str, required_roles: tuple[str, ...] = ()):
        self.actor_id = actor_id
        self.action = action
        self.required_roles = tuple(required_roles)
        roles = ", ".join(self.required_roles) or "requester/admin"
        super().__init__(f"Actor {actor_id} may not {action} (requires {roles})")


class InvalidApprovalActionError(StateError):
    """Action is not applicable to the request in its current state."""

    code: str = "INVALID_APPROVAL_ACTION"

    def __init__(self, request_id: str, action: str, reason: str):
        self.request_id = request_id
        self.action = action
        self.reason = reason
        super().__init__(f"Cannot {action} approval request {request_id}: {reason}")


class DuplicateApprovalError(StateError):
    """Same actor has already approved at the current level."""

    code: str = "DUPLICATE_APPROVAL"

    def __init__(self, request_id: str, actor_id: str, level: int):
        self.request_id = request_id
        self.actor_id = actor_id
        self.level = level
        super().__init__(
            f"Actor {actor_id} already approved request {request_id} at level {level}"
        )


class DuplicateApprovalRequestError(StateError):
    """An open approval request already exists for the reservation."""

    code: str = "DUPLICATE_APPROVAL_REQUEST"

    def __init__(self, reservation_id: str, existing_request_id: str):
        self.reservation_id = reservation_id
        self.existing_request_id = existing_request_id
        super().__init__(
            f"Reservation {reservation_id} already has open approval request {existing_request_id}"
        )


class InvalidReservationTransitionError(StateError):
    """Reservation status change is not allowed."""

    code: str = "INVALID_RESERVATION_TRANSITION"

    def __init__(self, reservation_id: str, from_status: str, to_status: str):
        self.reservation_id = reservation_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Reservation {reservation_id} cannot move from {from_status} to {to_status}"
        )


# Lookup exceptions


class NotFoundError(BookingKernelError):
    """Base exception for unknown identifiers."""

    code: str = "NOT_FOUND"


class ResourceNotFoundError(NotFoundError):
    code: str = "RESOURCE_NOT_FOUND"

    def __init__(self, resource_id: str):
        self.resource_id = resource_id
        super().__init__(f"Resource not found: {resource_id}")


class ReservationNotFoundError(NotFoundError):
    code: str = "RESERVATION_NOT_FOUND"

    def __init__(self, reservation_id: str):
        self.reservation_id = reservation_id
        super().__init__(f"Reservation not found: {reservation_id}")


class ApprovalRequestNotFoundError(NotFoundError):
    code: str = "APPROVAL_REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Approval request not found: {request_id}")


class ApprovalFlowNotFoundError(NotFoundError):
    code: str = "APPROVAL_FLOW_NOT_FOUND"

    def __init__(self, flow_ref: str):
        self.flow_ref = flow_ref
        super().__init__(f"Approval flow not found: {flow_ref}")


# Infrastructure exceptions


class InfrastructureError(BookingKernelError):
    """
    Base exception for lock and persistence failures.

    The only category eligible for retry with backoff.
    """

    code: str = "INFRASTRUCTURE_ERROR"


class LockAcquisitionError(InfrastructureError):
    """Per-key lock could not be acquired within the timeout."""

    code: str = "LOCK_TIMEOUT"

    def __init__(self, key: str, timeout_seconds: float):
        self.key = key
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Could not acquire lock for {key} within {timeout_seconds}s")


class PersistenceError(InfrastructureError):
    """Underlying store failed."""

    code: str = "PERSISTENCE_ERROR"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Persistence failure during {operation}: {detail}")


class OptimisticLockError(InfrastructureError):
    """Record was modified concurrently since it was read."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, expected_version: int, actual_version: int):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"{entity_type} {entity_id} was modified concurrently: "
            f"expected version {expected_version}, found {actual_version}"
        )


class RetryExhaustedError(InfrastructureError):
    """All retry attempts failed with infrastructure errors."""

    code: str = "RETRY_EXHAUSTED"

    def __init__(self, operation: str, attempts: int, last_error: BaseException):
        self.operation = operation
        self.attempts = attempts
        self.last_error_code = getattr(last_error, "code", type(last_error).__name__)
        super().__init__(
            f"{operation} failed after {attempts} attempt(s): {last_error}"
        )


# Immutability exceptions


class ImmutabilityViolationError(BookingKernelError):
    """Attempt to modify an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")
