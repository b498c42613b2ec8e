"""
booking_services.scheduling_coordinator -- Single and recurring bookings.

Responsibility:
    Turns booking intents into reservations. Runs the availability check,
    persistence and index insertion as one critical section per resource,
    expands recurring requests and applies the batch policy, opens approval
    requests for resources that need them, and maps approval outcomes back
    onto reservation status.

Architecture position:
    Services -- orchestration. Composes ``AvailabilityEngine``,
    ``RecurrenceExpander`` and ``ApprovalWorkflowEngine`` over the kernel
    collaborator protocols.

Invariants enforced:
    - No double booking: check -> save -> index insert runs under the
      resource's lock; a forced override (admin only) is the sole way
      past an OVERLAP denial.
    - Recurring instances are processed sequentially in ascending start
      order, taking the resource lock once per instance.
    - With ``skip_conflicts=False`` any denied instance rolls back every
      instance this call created; cancellation keeps created instances.
    - ``summary.total == created + failed + rolled_back + not_attempted``.
    - Every PENDING reservation left in the store has an open approval
      request: if one cannot be opened the reservation is withdrawn
      (CANCELLED), also when an infrastructure error interrupts a batch.

Failure modes:
    - Validation / conflict errors from ``create_single`` are raised typed
      (DurationTooShortError, OverlapError, ...).
    - ``create_recurring`` reports denials per instance and never raises
      for partial failure; only infrastructure errors escape.
    - RecurrenceNotAllowedError, InvalidPatternError before any instance
      is attempted.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Executor
from dataclasses import dataclass, replace
from datetime import datetime
from functools import partial
from uuid import uuid4

from booking_config.schema import EngineSettings
from booking_engines.approval import select_flow_for_resource_type
from booking_engines.availability import AvailabilityEngine, denial_to_error
from booking_engines.interval_index import IntervalIndex, SortedIntervalIndex
from booking_engines.recurrence import RecurrenceExpander
from booking_kernel.domain.approval import (
    ActionPayload,
    ApprovalAction,
    ApprovalFlowConfig,
    ApprovalPriority,
    ApprovalRequest,
    ApprovalStatus,
)
from booking_kernel.domain.clock import Clock
from booking_kernel.domain.protocols import (
    FlowConfigStore,
    NotificationSink,
    ReservationStore,
    ResourceLookup,
    RoleLookup,
)
from booking_kernel.domain.recurrence import RecurrencePattern
from booking_kernel.domain.reservation import (
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
from booking_kernel.domain.values import TimeWindow
from booking_kernel.exceptions import (
    ApprovalFlowNotFoundError,
    ForbiddenRoleError,
    InfrastructureError,
    InvalidReservationTransitionError,
    RecurrenceNotAllowedError,
    ReservationNotFoundError,
)
from booking_kernel.logging_config import LogContext, get_logger
from booking_kernel.services.locks import KeyedLockManager
from booking_kernel.services.notifier import (
    RESERVATION_CREATED,
    RESERVATION_SERIES_CREATED,
    RESERVATION_STATUS_CHANGED,
    safe_notify,
)
from booking_kernel.services.retry import RetryPolicy, call_with_retry
from booking_services.approval_workflow import ApprovalWorkflowEngine

logger = get_logger("services.scheduling_coordinator")

ProgressCallback = Callable[[BatchProgress], None]

# Reservation status each terminal approval outcome maps to.
_OUTCOME_STATUS: dict[ApprovalStatus, ReservationStatus] = {
    ApprovalStatus.APPROVED: ReservationStatus.CONFIRMED,
    ApprovalStatus.REJECTED: ReservationStatus.REJECTED,
    ApprovalStatus.EXPIRED: ReservationStatus.REJECTED,
    ApprovalStatus.CANCELLED: ReservationStatus.CANCELLED,
}


class CancellationToken:
    """Caller-owned flag checked between recurring instances."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class RecurringOptions:
    """
    Batch policy for ``create_recurring``.

    ``progress`` is called after each instance outcome (and each rollback),
    on ``progress_executor`` when one is given. ``priority`` applies to the
    approval requests opened for created instances.
    """

    skip_conflicts: bool = False
    progress: ProgressCallback | None = None
    progress_executor: Executor | None = None
    cancellation: CancellationToken | None = None
    priority: ApprovalPriority = ApprovalPriority.MEDIUM


class SchedulingCoordinator:
    """
    Entry point for booking.

    Contract:
        - ``create_single()`` returns the reservation or raises the typed
          denial.
        - ``create_recurring()`` returns a ``BatchResult`` for full and
          partial success alike.
        - ``preview_recurring()`` runs the same checks without persisting.
        - ``cancel_reservation()`` / ``cancel_series()`` release windows and
          cancel open approval requests.

    Non-goals:
        - Does NOT drive approvals beyond submission; reservation status
          follows approval outcomes through a registered listener.
    """

    def __init__(
        self,
        resources: ResourceLookup,
        reservations: ReservationStore,
        index: IntervalIndex,
        approvals: ApprovalWorkflowEngine,
        flows: FlowConfigStore,
        roles: RoleLookup,
        clock: Clock,
        notifier: NotificationSink | None = None,
        settings: EngineSettings | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._resources = resources
        self._reservations = reservations
        self._index = index
        self._approvals = approvals
        self._flows = flows
        self._roles = roles
        self._clock = clock
        self._notifier = notifier
        self._settings = settings or EngineSettings()
        self._new_id = id_factory or (lambda: str(uuid4()))

        self._availability = AvailabilityEngine(index, reservations.get_reservation, clock)
        self._expander = RecurrenceExpander(self._settings.max_recurrence_instances)
        self._locks = KeyedLockManager("resource", self._settings.lock_timeout_seconds)
        self._retry = RetryPolicy(
            max_attempts=self._settings.retry_max_attempts,
            initial_backoff_seconds=self._settings.retry_initial_backoff_seconds,
            max_backoff_seconds=self._settings.retry_max_backoff_seconds,
        )
        approvals.add_outcome_listener(self._on_approval_outcome)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def check_availability(
        self,
        resource_id: str,
        window: TimeWindow,
        exclude_id: str | None = None,
    ) -> AvailabilityResult:
        """Availability of ``window`` under the resource's own rules."""
        resource = self._resources.get_resource(resource_id)
        return self._availability.check_availability(
            resource_id, window, resource.availability_rules, exclude_id,
        )

    def warm_index(self) -> int:
        """Load every active reservation from the store into the index."""
        loaded = self._index.bulk_load(self._reservations.list_active_reservations())
        logger.info("interval_index_warmed", extra={"entries": loaded})
        return loaded

    # -------------------------------------------------------------------------
    # Single booking
    # -------------------------------------------------------------------------

    def create_single(
        self,
        request: BookingRequest,
        priority: ApprovalPriority = ApprovalPriority.MEDIUM,
    ) -> Reservation:
        """Book one window.

        Raises:
            ResourceNotFoundError: Unknown resource.
            ForbiddenRoleError: ``force_override`` without an admin role.
            ApprovalFlowNotFoundError: Approval required but no active flow.
            DurationTooShortError, DurationTooLongError,
            TooFarInAdvanceError, OverlapError: The window was denied.
            InfrastructureError: Lock or persistence failure after retries;
                a PENDING reservation whose approval request could not be
                opened is cancelled before the error propagates.
        """
        resource = self._resources.get_resource(request.resource_id)
        with LogContext.bind(resource_id=request.resource_id, actor_id=request.requester_id):
            self._authorize_override(request)
            flow = self._flow_for(resource)

            reservation, result = call_with_retry(
                "create_single",
                partial(self._try_place, request, resource, None),
                self._retry,
            )
            if reservation is None:
                logger.info(
                    "reservation_denied",
                    extra={
                        "window": str(request.window),
                        "reason": result.reason.value if result.reason else None,
                        "detail": result.detail,
                        "conflicting_ids": [c.reservation_id for c in result.conflicts],
                    },
                )
                raise denial_to_error(
                    result, request.resource_id, request.window,
                    resource.availability_rules, self._clock.now(),
                )

            if flow is not None:
                opened, error = self._open_approvals([reservation], flow, priority)
                if error is not None:
                    raise error
                reservation = opened[0]

        safe_notify(self._notifier, RESERVATION_CREATED, _reservation_payload(reservation))
        return reservation

    # -------------------------------------------------------------------------
    # Recurring booking
    # -------------------------------------------------------------------------

    def create_recurring(
        self,
        request: BookingRequest,
        pattern: RecurrencePattern,
        options: RecurringOptions | None = None,
    ) -> BatchResult:
        """Book every instance of ``pattern`` starting from ``request.window``.

        Raises:
            RecurrenceNotAllowedError: Resource forbids recurring bookings.
            InvalidPatternError: Malformed pattern.
            InfrastructureError: Lock or persistence failure after retries;
                instances committed before the failure are kept.
        """
        options = options or RecurringOptions()
        resource = self._resources.get_resource(request.resource_id)
        if not resource.availability_rules.allow_recurring:
            raise RecurrenceNotAllowedError(request.resource_id)
        self._authorize_override(request)
        flow = self._flow_for(resource)
        windows = self._expander.expand(request.window, pattern)

        series_id = self._new_id()
        total = len(windows)
        placed: list[tuple[int, Reservation]] = []
        failed: list[InstanceFailure] = []
        rolled_back = 0
        aborted = False
        cancelled = False

        with LogContext.bind(
            series_id=series_id,
            resource_id=request.resource_id,
            actor_id=request.requester_id,
        ):
            logger.info(
                "recurring_batch_started",
                extra={
                    "instances": total,
                    "frequency": pattern.frequency.value,
                    "skip_conflicts": options.skip_conflicts,
                },
            )

            try:
                for position, window in enumerate(windows):
                    if options.cancellation is not None and options.cancellation.cancelled:
                        cancelled = True
                        logger.info(
                            "recurring_batch_cancelled",
                            extra={"at_instance": position, "created_so_far": len(placed)},
                        )
                        break

                    instance = replace(request, window=window)
                    reservation, result = call_with_retry(
                        "create_recurring_instance",
                        partial(self._try_place, instance, resource, series_id),
                        self._retry,
                    )

                    if reservation is not None:
                        placed.append((position, reservation))
                        outcome = InstanceOutcome.CREATED
                    else:
                        failed.append(InstanceFailure(
                            window=window,
                            reason=result.reason.value if result.reason else "",
                            detail=result.detail,
                            conflicting_ids=tuple(c.reservation_id for c in result.conflicts),
                        ))
                        outcome = InstanceOutcome.FAILED
                        logger.info(
                            "recurring_instance_denied",
                            extra={
                                "instance": position,
                                "window": str(window),
                                "reason": failed[-1].reason,
                            },
                        )

                    self._emit_progress(options, BatchProgress(
                        series_id=series_id,
                        index=position,
                        total=total,
                        window=window,
                        outcome=outcome,
                        created_so_far=len(placed),
                        failed_so_far=len(failed),
                    ))

                    if outcome == InstanceOutcome.FAILED and not options.skip_conflicts:
                        aborted = True
                        break
            except InfrastructureError as exc:
                logger.error(
                    "recurring_batch_interrupted",
                    extra={"error_code": exc.code, "created_so_far": len(placed)},
                )
                if flow is not None:
                    self._open_approvals([r for _, r in placed], flow, options.priority)
                raise

            if aborted:
                rolled_back = self._roll_back(series_id, placed, total, len(failed), options)
                placed = []

            created = [r for _, r in placed]
            if flow is not None and created:
                created, error = self._open_approvals(created, flow, options.priority)
                if error is not None:
                    raise error

            not_attempted = total - len(created) - len(failed) - rolled_back
            summary = BatchSummary(
                total=total,
                created=len(created),
                failed=len(failed),
                not_attempted=not_attempted,
                success_rate=(len(created) / total) if total else 0.0,
                rolled_back=rolled_back,
                aborted=aborted,
                cancelled=cancelled,
            )

            logger.info(
                "recurring_batch_completed",
                extra={
                    "instances": summary.total,
                    "created_count": summary.created,
                    "failed_count": summary.failed,
                    "rolled_back": summary.rolled_back,
                    "not_attempted": summary.not_attempted,
                    "success_rate": summary.success_rate,
                    "aborted": aborted,
                    "cancelled": cancelled,
                },
            )

        safe_notify(self._notifier, RESERVATION_SERIES_CREATED, {
            "series_id": series_id,
            "resource_id": request.resource_id,
            "requester_id": request.requester_id,
            "created": summary.created,
            "failed": summary.failed,
            "aborted": aborted,
        })
        return BatchResult(
            series_id=series_id,
            created=tuple(created),
            failed=tuple(failed),
            summary=summary,
        )

    def preview_recurring(
        self,
        request: BookingRequest,
        pattern: RecurrencePattern,
    ) -> list[InstancePreview]:
        """Dry run of ``create_recurring``; nothing is persisted or indexed.

        Earlier allowed instances in the same preview count as conflicts
        for later ones.
        """
        resource = self._resources.get_resource(request.resource_id)
        rules = resource.availability_rules
        if not rules.allow_recurring:
            raise RecurrenceNotAllowedError(request.resource_id)

        siblings: dict[str, Reservation] = {}
        scratch = SortedIntervalIndex()
        sibling_engine = AvailabilityEngine(scratch, siblings.__getitem__, self._clock)
        previews: list[InstancePreview] = []

        for position, window in enumerate(self._expander.expand(request.window, pattern)):
            result = self._availability.check_availability(request.resource_id, window, rules)
            sibling_conflicts = sibling_engine.find_conflicts(request.resource_id, window, rules)
            if sibling_conflicts:
                conflicts = result.conflicts + sibling_conflicts
                if result.allowed:
                    result = AvailabilityResult(
                        allowed=False,
                        reason=DenialReason.OVERLAP,
                        detail=f"overlaps an earlier instance of the same series at {window}",
                        conflicts=conflicts,
                    )
                else:
                    result = replace(result, conflicts=conflicts)

            if result.allowed:
                preview_id = f"preview-{position}"
                siblings[preview_id] = Reservation(
                    reservation_id=preview_id,
                    resource_id=request.resource_id,
                    requester_id=request.requester_id,
                    window=window,
                    status=_initial_status(resource),
                    purpose=request.purpose,
                )
                scratch.insert(request.resource_id, preview_id, window)
            previews.append(InstancePreview(window=window, result=result))

        logger.debug(
            "recurring_preview_computed",
            extra={
                "resource_id": request.resource_id,
                "instances": len(previews),
                "allowed": sum(1 for p in previews if p.allowed),
            },
        )
        return previews

    # -------------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------------

    def cancel_reservation(self, reservation_id: str, actor: str) -> Reservation:
        """Cancel a reservation and any open approval request for it.

        Raises:
            ForbiddenRoleError: Actor is neither the requester nor an admin.
            InvalidReservationTransitionError: Reservation is not active.
        """
        reservation = self._reservations.get_reservation(reservation_id)
        with LogContext.bind(reservation_id=reservation_id, actor_id=actor):
            if not reservation.is_active:
                raise InvalidReservationTransitionError(
                    reservation_id, reservation.status.value, ReservationStatus.CANCELLED.value,
                )
            if actor != reservation.requester_id and not self._is_admin(actor):
                logger.warning(
                    "reservation_cancel_forbidden",
                    extra={"requester_id": reservation.requester_id},
                )
                raise ForbiddenRoleError(
                    actor, "cancel_reservation", tuple(sorted(self._settings.admin_roles)),
                )

            for open_request in self._approvals.pending_for_reservation(reservation_id):
                self._approvals.apply_action(
                    open_request.request_id,
                    ApprovalAction.CANCEL,
                    actor,
                    ActionPayload(comments="reservation cancelled"),
                )

            reservation = self._reservations.get_reservation(reservation_id)
            if reservation.is_active:
                reservation = self._set_status(reservation, ReservationStatus.CANCELLED)
        return reservation

    def cancel_series(
        self,
        series_id: str,
        actor: str,
        from_time: datetime | None = None,
    ) -> list[Reservation]:
        """Cancel the active instances of a series starting at or after ``from_time``."""
        targets = [
            r for r in self._reservations.list_series(series_id)
            if r.is_active and (from_time is None or r.window.start >= from_time)
        ]
        cancelled = [self.cancel_reservation(r.reservation_id, actor) for r in targets]
        logger.info(
            "reservation_series_cancelled",
            extra={"series_id": series_id, "actor_id": actor, "cancelled": len(cancelled)},
        )
        return cancelled

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _try_place(
        self,
        request: BookingRequest,
        resource: ResourceInfo,
        series_id: str | None,
    ) -> tuple[Reservation | None, AvailabilityResult]:
        """Check and, if allowed, save and index one window under the resource lock."""
        rules = resource.availability_rules
        with self._locks.acquire(request.resource_id):
            result = self._availability.check_availability(
                request.resource_id, request.window, rules,
            )
            forced = (
                not result.allowed
                and request.force_override
                and result.reason == DenialReason.OVERLAP
            )
            if not result.allowed and not forced:
                return None, result

            now = self._clock.now()
            reservation = self._reservations.save_reservation(Reservation(
                reservation_id=self._new_id(),
                resource_id=request.resource_id,
                requester_id=request.requester_id,
                window=request.window,
                status=_initial_status(resource),
                series_id=series_id,
                purpose=request.purpose,
                created_at=now,
                updated_at=now,
            ))
            self._index.insert(request.resource_id, reservation.reservation_id, request.window)

        logger.info(
            "reservation_created",
            extra={
                "reservation_id": reservation.reservation_id,
                "window": str(reservation.window),
                "status": reservation.status.value,
                "series_id": series_id,
                "forced_override": forced,
                "overridden_ids": [c.reservation_id for c in result.conflicts] if forced else [],
            },
        )
        return reservation, result

    def _roll_back(
        self,
        series_id: str,
        placed: list[tuple[int, Reservation]],
        total: int,
        failed: int,
        options: RecurringOptions,
    ) -> int:
        """Remove every reservation this batch created, newest first."""
        removed = 0
        for position, reservation in reversed(placed):
            with self._locks.acquire(reservation.resource_id):
                self._index.remove(reservation.reservation_id)
                self._reservations.delete_reservation(reservation.reservation_id)
            removed += 1
            self._emit_progress(options, BatchProgress(
                series_id=series_id,
                index=position,
                total=total,
                window=reservation.window,
                outcome=InstanceOutcome.ROLLED_BACK,
                created_so_far=len(placed) - removed,
                failed_so_far=failed,
            ))
        logger.warning("recurring_batch_rolled_back", extra={"rolled_back": removed})
        return removed

    def _open_approvals(
        self,
        reservations: list[Reservation],
        flow: ApprovalFlowConfig,
        priority: ApprovalPriority,
    ) -> tuple[list[Reservation], InfrastructureError | None]:
        """Submit an approval request for each PENDING reservation.

        A reservation whose request cannot be opened is withdrawn so it never
        holds its window without an approval path. Returns the reservations
        still held, re-read from the store, and the first failure.
        """
        opened: list[Reservation] = []
        first_error: InfrastructureError | None = None
        for reservation in reservations:
            try:
                self._approvals.submit(reservation.reservation_id, flow.flow_id, priority)
            except InfrastructureError as exc:
                first_error = first_error or exc
                self._withdraw(reservation, exc)
                continue
            opened.append(self._reservations.get_reservation(reservation.reservation_id))
        return opened, first_error

    def _withdraw(self, reservation: Reservation, cause: InfrastructureError) -> None:
        logger.error(
            "approval_submit_failed",
            extra={"reservation_id": reservation.reservation_id, "error_code": cause.code},
        )
        try:
            self._set_status(reservation, ReservationStatus.CANCELLED)
        except InfrastructureError:
            logger.exception(
                "reservation_withdraw_failed",
                extra={"reservation_id": reservation.reservation_id},
            )

    def _set_status(self, reservation: Reservation, status: ReservationStatus) -> Reservation:
        with self._locks.acquire(reservation.resource_id):
            updated = self._reservations.update_reservation_status(
                reservation.reservation_id, status, updated_at=self._clock.now(),
            )
            if not updated.is_active:
                self._index.remove(updated.reservation_id)

        logger.info(
            "reservation_status_changed",
            extra={
                "reservation_id": updated.reservation_id,
                "from_status": reservation.status.value,
                "to_status": updated.status.value,
            },
        )
        safe_notify(self._notifier, RESERVATION_STATUS_CHANGED, {
            **_reservation_payload(updated),
            "previous_status": reservation.status.value,
        })
        return updated

    def _on_approval_outcome(self, request: ApprovalRequest) -> None:
        target = _OUTCOME_STATUS.get(request.status)
        if target is None:
            return
        try:
            reservation = self._reservations.get_reservation(request.reservation_id)
        except ReservationNotFoundError:
            logger.warning(
                "approval_outcome_orphaned",
                extra={"request_id": request.request_id, "reservation_id": request.reservation_id},
            )
            return

        if not reservation.is_active or reservation.status == target:
            return
        if target == ReservationStatus.CONFIRMED and reservation.status != ReservationStatus.PENDING:
            return
        self._set_status(reservation, target)

    def _flow_for(self, resource: ResourceInfo) -> ApprovalFlowConfig | None:
        if not resource.availability_rules.requires_approval:
            return None
        flow = select_flow_for_resource_type(
            self._flows.list_approval_flows(), resource.resource_type,
        )
        if flow is None:
            raise ApprovalFlowNotFoundError(f"resource_type:{resource.resource_type}")
        return flow

    def _authorize_override(self, request: BookingRequest) -> None:
        if request.force_override and not self._is_admin(request.requester_id):
            logger.warning("force_override_denied", extra={"resource_id": request.resource_id})
            raise ForbiddenRoleError(
                request.requester_id, "force_override", tuple(sorted(self._settings.admin_roles)),
            )

    def _is_admin(self, actor: str) -> bool:
        return bool(self._roles.get_actor_roles(actor) & self._settings.admin_roles)

    def _emit_progress(self, options: RecurringOptions, progress: BatchProgress) -> None:
        if options.progress is None:
            return
        if options.progress_executor is not None:
            options.progress_executor.submit(_safe_progress, options.progress, progress)
        else:
            _safe_progress(options.progress, progress)


def _safe_progress(callback: ProgressCallback, progress: BatchProgress) -> None:
    try:
        callback(progress)
    except Exception:
        logger.exception(
            "progress_callback_failed",
            extra={"series_id": progress.series_id, "instance": progress.index},
        )


def _initial_status(resource: ResourceInfo) -> ReservationStatus:
    if resource.availability_rules.requires_approval:
        return ReservationStatus.PENDING
    return ReservationStatus.CONFIRMED


def _reservation_payload(reservation: Reservation) -> dict:
    return {
        "reservation_id": reservation.reservation_id,
        "resource_id": reservation.resource_id,
        "requester_id": reservation.requester_id,
        "status": reservation.status.value,
        "series_id": reservation.series_id,
        "start": reservation.window.start.isoformat(),
        "end": reservation.window.end.isoformat(),
    }
