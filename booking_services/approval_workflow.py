"""
booking_services.approval_workflow -- Multi-level approval state machine.

Responsibility:
    Owns the lifecycle of approval requests: submission (with
    auto-approval), caller actions (approve, reject, request changes,
    resubmit, delegate, escalate, cancel), the timeout sweep, and the
    read queries. Delegates rule questions to ``booking_engines.approval``.

Architecture position:
    Services -- orchestration. Talks to the approval and reservation
    stores, role lookup and flow store through the kernel protocols.

Invariants enforced:
    - Lifecycle: ``APPROVAL_TRANSITIONS`` is checked before every save;
      terminal requests reject all actions with AlreadyTerminalError.
    - Exactly one history entry per successful ``apply_action``, timeout
      escalation or expiry (submission writes SUBMIT, plus AUTO_APPROVE
      when it auto-approves).
    - ``current_level`` never decreases.
    - Per-request serialization: every transition runs under the
      request's lock and saves with ``expected_version``, so a user action
      and a timeout sweep racing on one request never both apply.

Failure modes:
    - AlreadyTerminalError, ForbiddenRoleError, InvalidApprovalActionError,
      DuplicateApprovalError (logged as warnings, then raised).
    - RejectionReasonRequiredError for REJECT without a reason.
    - DuplicateApprovalRequestError when submitting twice for a reservation.
    - LockAcquisitionError / OptimisticLockError (retried per RetryPolicy).
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from uuid import uuid4

from booking_engines.approval import (
    approvals_at_level,
    covered_roles,
    current_delegate,
    eligible_roles,
    evaluate_auto_approval,
    level_deadline,
    quorum_reached,
    select_acting_role,
    timeout_action,
)
from booking_kernel.domain.approval import (
    APPROVAL_TRANSITIONS,
    SYSTEM_ACTOR,
    ActionPayload,
    ApprovalAction,
    ApprovalFlowConfig,
    ApprovalHistoryEntry,
    ApprovalPriority,
    ApprovalRequest,
    ApprovalStatus,
)
from booking_kernel.domain.clock import Clock
from booking_kernel.domain.protocols import (
    ApprovalStore,
    FlowConfigStore,
    NotificationSink,
    ReservationStore,
    RoleLookup,
)
from booking_kernel.exceptions import (
    AlreadyTerminalError,
    ApprovalFlowNotFoundError,
    DuplicateApprovalError,
    DuplicateApprovalRequestError,
    ForbiddenRoleError,
    InfrastructureError,
    InvalidApprovalActionError,
    RejectionReasonRequiredError,
    StateError,
)
from booking_kernel.logging_config import LogContext, get_logger
from booking_kernel.services.locks import KeyedLockManager
from booking_kernel.services.notifier import (
    APPROVAL_SUBMITTED,
    APPROVAL_TRANSITIONED,
    safe_notify,
)
from booking_kernel.services.retry import NO_RETRY, RetryPolicy, call_with_retry

logger = get_logger("services.approval_workflow")

OutcomeListener = Callable[[ApprovalRequest], None]

# Actions produced only by the engine itself.
_INTERNAL_ACTIONS = frozenset({
    ApprovalAction.SUBMIT,
    ApprovalAction.AUTO_APPROVE,
    ApprovalAction.EXPIRE,
})


class ApprovalWorkflowEngine:
    """
    Approval request lifecycle.

    Contract:
        ``submit`` creates a request for a reservation; ``apply_action``
        moves it; ``check_timeouts`` escalates or expires stalled levels.
        Outcome listeners are called once a request reaches a terminal
        status, after the transition is persisted.

    Non-goals:
        - Does not change reservations itself; the scheduling coordinator
          registers an outcome listener for that.
        - Does not schedule the sweep; an external scheduler calls
          ``check_timeouts``.
    """

    def __init__(
        self,
        approval_store: ApprovalStore,
        reservation_store: ReservationStore,
        role_lookup: RoleLookup,
        flow_store: FlowConfigStore,
        clock: Clock,
        notifier: NotificationSink | None = None,
        admin_roles: frozenset[str] = frozenset({"admin"}),
        lock_timeout_seconds: float = 5.0,
        retry_policy: RetryPolicy = NO_RETRY,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._store = approval_store
        self._reservations = reservation_store
        self._roles = role_lookup
        self._flows = flow_store
        self._clock = clock
        self._notifier = notifier
        self._admin_roles = frozenset(admin_roles)
        self._lock_timeout = lock_timeout_seconds
        self._retry = retry_policy
        self._new_id = id_factory or (lambda: str(uuid4()))
        self._locks = KeyedLockManager("approval_request", lock_timeout_seconds)
        self._listeners: list[OutcomeListener] = []

    def add_outcome_listener(self, listener: OutcomeListener) -> None:
        self._listeners.append(listener)

    # -------------------------------------------------------------------------
    # Submit
    # -------------------------------------------------------------------------

    def submit(
        self,
        reservation_id: str,
        flow_id: str,
        priority: ApprovalPriority = ApprovalPriority.MEDIUM,
    ) -> ApprovalRequest:
        """Open an approval request for ``reservation_id`` under ``flow_id``.

        Auto-approval conditions are evaluated first; a satisfied request is
        created directly in APPROVED at the flow's last level.

        Raises:
            ReservationNotFoundError: Unknown reservation.
            ApprovalFlowNotFoundError: Unknown or inactive flow.
            DuplicateApprovalRequestError: An open request already exists.
        """
        reservation = self._reservations.get_reservation(reservation_id)
        flow = self._flows.get_approval_flow(flow_id)
        if not flow.is_active:
            raise ApprovalFlowNotFoundError(flow_id)

        with LogContext.bind(reservation_id=reservation_id, actor_id=reservation.requester_id):
            request = call_with_retry(
                "approval_submit",
                lambda: self._submit_locked(reservation_id, flow, priority),
                self._retry,
            )
        self._fire_outcome(request)
        return request

    def _submit_locked(
        self,
        reservation_id: str,
        flow: ApprovalFlowConfig,
        priority: ApprovalPriority,
    ) -> ApprovalRequest:
        with self._locks.acquire(f"reservation:{reservation_id}", self._lock_timeout):
            reservation = self._reservations.get_reservation(reservation_id)
            for existing in self._store.find_by_reservation(reservation_id):
                if not existing.is_terminal:
                    raise DuplicateApprovalRequestError(reservation_id, existing.request_id)

            now = self._clock.now()
            requester_roles = self._roles.get_actor_roles(reservation.requester_id)
            evaluation = evaluate_auto_approval(flow, requester_roles, reservation.window, now)
            request_id = self._new_id()

            if evaluation.auto_approved:
                level = flow.max_level
                request = ApprovalRequest(
                    request_id=request_id,
                    reservation_id=reservation_id,
                    flow_id=flow.flow_id,
                    requester_id=reservation.requester_id,
                    status=ApprovalStatus.APPROVED,
                    current_level=level,
                    max_level=level,
                    requested_at=now,
                    priority=priority,
                    level_entered_at=now,
                    resolved_at=now,
                )
                entries = [
                    self._entry(request, ApprovalAction.SUBMIT, reservation.requester_id, now),
                    self._entry(
                        request, ApprovalAction.AUTO_APPROVE, SYSTEM_ACTOR, now,
                        comments=evaluation.reason,
                    ),
                ]
            else:
                first = flow.steps[0]
                request = ApprovalRequest(
                    request_id=request_id,
                    reservation_id=reservation_id,
                    flow_id=flow.flow_id,
                    requester_id=reservation.requester_id,
                    status=ApprovalStatus.PENDING,
                    current_level=first.order,
                    max_level=flow.max_level,
                    requested_at=now,
                    priority=priority,
                    level_entered_at=now,
                    expires_at=level_deadline(first, now),
                )
                entries = [
                    self._entry(request, ApprovalAction.SUBMIT, reservation.requester_id, now),
                ]

            saved = self._store.save_approval_request(
                request, expected_version=0, entries=entries,
            )

        logger.info(
            "approval_submitted",
            extra={
                "request_id": request_id,
                "flow_id": flow.flow_id,
                "status": saved.status.value,
                "current_level": saved.current_level,
                "auto_approved": evaluation.auto_approved,
                "auto_approve_reason": evaluation.reason,
            },
        )
        safe_notify(self._notifier, APPROVAL_SUBMITTED, self._payload(saved, ApprovalAction.SUBMIT))
        return saved

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    def apply_action(
        self,
        request_id: str,
        action: ApprovalAction | str,
        actor: str,
        payload: ActionPayload | None = None,
    ) -> ApprovalRequest:
        """Apply one caller action and append exactly one history entry.

        Raises:
            AlreadyTerminalError: Request is already resolved.
            ForbiddenRoleError: Actor may not perform ``action`` now.
            InvalidApprovalActionError: Action does not fit the current state.
        """
        action = ApprovalAction(action)
        payload = payload or ActionPayload()
        if action in _INTERNAL_ACTIONS:
            raise InvalidApprovalActionError(
                request_id, action.value, "action is produced by the engine only",
            )

        with LogContext.bind(request_id=request_id, actor_id=actor):
            result = call_with_retry(
                "approval_apply_action",
                lambda: self._apply_locked(request_id, action, actor, payload),
                self._retry,
            )
        self._fire_outcome(result)
        return result

    def _apply_locked(
        self,
        request_id: str,
        action: ApprovalAction,
        actor: str,
        payload: ActionPayload,
    ) -> ApprovalRequest:
        with self._locks.acquire(request_id, self._lock_timeout):
            request = self._store.get_approval_request(request_id)
            try:
                if request.is_terminal:
                    raise AlreadyTerminalError(request_id, request.status.value)
                flow = self._flows.get_approval_flow(request.flow_id)
                actor_roles = self._roles.get_actor_roles(actor)
                now = self._clock.now()
                handler = self._handlers[action]
                updated, entry = handler(self, request, flow, actor, actor_roles, payload, now)
            except StateError as exc:
                logger.warning(
                    "approval_action_rejected",
                    extra={
                        "action": action.value,
                        "error_code": exc.code,
                        "status": request.status.value,
                        "current_level": request.current_level,
                    },
                )
                raise
            return self._persist(request, updated, entry)

    def _approve(self, request, flow, actor, actor_roles, payload, now):
        if request.awaiting_changes:
            raise InvalidApprovalActionError(
                request.request_id, "approve", "changes were requested; awaiting resubmission",
            )
        step, is_delegate = self._require_step_authority(
            request, flow, actor, actor_roles, ApprovalAction.APPROVE,
        )
        level = request.current_level
        if any(e.performed_by == actor for e in approvals_at_level(request.history, level)):
            raise DuplicateApprovalError(request.request_id, actor, level)

        covered = covered_roles(request.history, level)
        acting_role = select_acting_role(step, actor_roles, covered, is_delegate)
        if acting_role is None:
            raise InvalidApprovalActionError(
                request.request_id, "approve",
                "every role this actor can approve for is already covered at this level",
            )

        entry = self._entry(
            request, ApprovalAction.APPROVE, actor, now,
            comments=payload.comments, acting_role=acting_role,
        )
        if quorum_reached(step, covered | {acting_role}):
            return self._advanced(request, flow, now), entry
        return replace(request, status=ApprovalStatus.IN_REVIEW), entry

    def _reject(self, request, flow, actor, actor_roles, payload, now):
        self._require_step_authority(request, flow, actor, actor_roles, ApprovalAction.REJECT)
        reason = (payload.rejection_reason or "").strip()
        if not reason:
            raise RejectionReasonRequiredError(request.request_id)
        updated = replace(
            request,
            status=ApprovalStatus.REJECTED,
            resolved_at=now,
            expires_at=None,
            awaiting_changes=False,
        )
        return updated, self._entry(request, ApprovalAction.REJECT, actor, now, comments=reason)

    def _request_changes(self, request, flow, actor, actor_roles, payload, now):
        self._require_step_authority(
            request, flow, actor, actor_roles, ApprovalAction.REQUEST_CHANGES,
        )
        if request.awaiting_changes:
            raise InvalidApprovalActionError(
                request.request_id, "request_changes", "changes already requested",
            )
        updated = replace(
            request,
            status=ApprovalStatus.IN_REVIEW,
            awaiting_changes=True,
            expires_at=None,
        )
        return updated, self._entry(
            request, ApprovalAction.REQUEST_CHANGES, actor, now, comments=payload.comments,
        )

    def _resubmit(self, request, flow, actor, actor_roles, payload, now):
        if actor != request.requester_id:
            raise ForbiddenRoleError(actor, "resubmit")
        if not request.awaiting_changes:
            raise InvalidApprovalActionError(
                request.request_id, "resubmit", "no changes were requested",
            )
        updated = replace(
            request,
            status=ApprovalStatus.PENDING,
            awaiting_changes=False,
            level_entered_at=now,
            expires_at=level_deadline(flow.step_at(request.current_level), now),
        )
        return updated, self._entry(
            request, ApprovalAction.RESUBMIT, actor, now, comments=payload.comments,
        )

    def _delegate(self, request, flow, actor, actor_roles, payload, now):
        target = payload.delegate_to
        if not target or target == actor:
            raise InvalidApprovalActionError(
                request.request_id, "delegate", "delegate_to must name another actor",
            )
        step = flow.step_at(request.current_level)
        delegate = current_delegate(request.history, request.current_level)
        allowed = (
            bool(eligible_roles(step, actor_roles))
            or bool(actor_roles & self._admin_roles)
            or actor == delegate
        )
        if not allowed:
            raise ForbiddenRoleError(actor, "delegate", tuple(sorted(step.approver_roles)))
        return request, self._entry(
            request, ApprovalAction.DELEGATE, actor, now,
            comments=payload.comments, delegate_to=target,
        )

    def _escalate(self, request, flow, actor, actor_roles, payload, now):
        if actor != SYSTEM_ACTOR and not (actor_roles & self._admin_roles):
            raise ForbiddenRoleError(actor, "escalate", tuple(sorted(self._admin_roles)))
        comments = payload.comments
        if actor != SYSTEM_ACTOR:
            comments = f"escalated by {actor}" + (f": {comments}" if comments else "")
        return self._advanced(request, flow, now), self._entry(
            request, ApprovalAction.ESCALATE, SYSTEM_ACTOR, now, comments=comments,
        )

    def _cancel(self, request, flow, actor, actor_roles, payload, now):
        if actor != request.requester_id and not (actor_roles & self._admin_roles):
            raise ForbiddenRoleError(actor, "cancel", tuple(sorted(self._admin_roles)))
        updated = replace(
            request,
            status=ApprovalStatus.CANCELLED,
            resolved_at=now,
            expires_at=None,
            awaiting_changes=False,
        )
        return updated, self._entry(
            request, ApprovalAction.CANCEL, actor, now, comments=payload.comments,
        )

    _handlers = {
        ApprovalAction.APPROVE: _approve,
        ApprovalAction.REJECT: _reject,
        ApprovalAction.REQUEST_CHANGES: _request_changes,
        ApprovalAction.RESUBMIT: _resubmit,
        ApprovalAction.DELEGATE: _delegate,
        ApprovalAction.ESCALATE: _escalate,
        ApprovalAction.CANCEL: _cancel,
    }

    # -------------------------------------------------------------------------
    # Timeouts
    # -------------------------------------------------------------------------

    def check_timeouts(self, now: datetime | None = None) -> list[ApprovalRequest]:
        """Escalate or expire every open request whose level deadline passed.

        Idempotent: a request is re-read under its lock, and one already
        moved by a concurrent action or sweep is left alone. A request that
        cannot be processed is logged and retried by the next sweep.

        Returns:
            The requests this sweep transitioned.
        """
        now = now or self._clock.now()
        transitioned: list[ApprovalRequest] = []

        for candidate in self._store.list_open_requests():
            if candidate.expires_at is None or candidate.expires_at > now:
                continue
            request_id = candidate.request_id
            try:
                with LogContext.bind(request_id=request_id, actor_id=SYSTEM_ACTOR):
                    result = call_with_retry(
                        "approval_timeout",
                        lambda: self._timeout_locked(request_id, now),
                        self._retry,
                    )
            except InfrastructureError:
                logger.exception("approval_timeout_failed", extra={"request_id": request_id})
                continue
            if result is not None:
                transitioned.append(result)
                self._fire_outcome(result)

        logger.info(
            "approval_timeout_sweep_completed",
            extra={"as_of": now, "transitioned": len(transitioned)},
        )
        return transitioned

    def _timeout_locked(self, request_id: str, now: datetime) -> ApprovalRequest | None:
        with self._locks.acquire(request_id, self._lock_timeout):
            request = self._store.get_approval_request(request_id)
            if (
                request.is_terminal
                or request.awaiting_changes
                or request.expires_at is None
                or request.expires_at > now
            ):
                return None

            flow = self._flows.get_approval_flow(request.flow_id)
            step = flow.step_at(request.current_level)
            hours = step.timeout_hours if step is not None else None
            comments = f"no action within {hours} hour(s) at level {request.current_level}"

            if timeout_action(flow, request.current_level) == ApprovalAction.EXPIRE:
                updated = replace(
                    request, status=ApprovalStatus.EXPIRED, resolved_at=now, expires_at=None,
                )
                entry = self._entry(request, ApprovalAction.EXPIRE, SYSTEM_ACTOR, now, comments=comments)
            else:
                updated = self._advanced(request, flow, now)
                entry = self._entry(request, ApprovalAction.ESCALATE, SYSTEM_ACTOR, now, comments=comments)

            return self._persist(request, updated, entry)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_request(self, request_id: str) -> ApprovalRequest:
        return self._store.get_approval_request(request_id)

    def history(self, request_id: str) -> tuple[ApprovalHistoryEntry, ...]:
        return self._store.get_approval_request(request_id).history

    def pending_for_reservation(self, reservation_id: str) -> list[ApprovalRequest]:
        """Open (non-terminal) requests for a reservation, oldest first."""
        return [r for r in self._store.find_by_reservation(reservation_id) if not r.is_terminal]

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _require_step_authority(self, request, flow, actor, actor_roles, action):
        step = flow.step_at(request.current_level)
        if step is None:
            raise InvalidApprovalActionError(
                request.request_id, action.value,
                f"flow {flow.flow_id} has no step at level {request.current_level}",
            )
        delegate = current_delegate(request.history, request.current_level)
        is_delegate = delegate is not None and delegate == actor
        if not eligible_roles(step, actor_roles) and not is_delegate:
            raise ForbiddenRoleError(actor, action.value, tuple(sorted(step.approver_roles)))
        return step, is_delegate

    def _advanced(
        self,
        request: ApprovalRequest,
        flow: ApprovalFlowConfig,
        now: datetime,
    ) -> ApprovalRequest:
        """Request moved past its current level (APPROVED after the last)."""
        next_step = flow.next_step_after(request.current_level)
        if next_step is None:
            return replace(
                request,
                status=ApprovalStatus.APPROVED,
                resolved_at=now,
                expires_at=None,
                awaiting_changes=False,
            )
        return replace(
            request,
            status=ApprovalStatus.IN_REVIEW,
            current_level=next_step.order,
            level_entered_at=now,
            expires_at=level_deadline(next_step, now),
            awaiting_changes=False,
        )

    def _persist(
        self,
        before: ApprovalRequest,
        after: ApprovalRequest,
        entry: ApprovalHistoryEntry,
    ) -> ApprovalRequest:
        if after.status not in APPROVAL_TRANSITIONS[before.status]:
            raise InvalidApprovalActionError(
                before.request_id, entry.action.value,
                f"transition {before.status.value} -> {after.status.value} not allowed",
            )
        if after.current_level < before.current_level:
            raise InvalidApprovalActionError(
                before.request_id, entry.action.value, "approval level cannot decrease",
            )

        saved = self._store.save_approval_request(
            replace(after, version=before.version + 1, history=()),
            expected_version=before.version,
            entries=(entry,),
        )

        logger.info(
            "approval_transition_applied",
            extra={
                "request_id": saved.request_id,
                "action": entry.action.value,
                "performed_by": entry.performed_by,
                "from_status": before.status.value,
                "to_status": saved.status.value,
                "from_level": before.current_level,
                "to_level": saved.current_level,
                "version": saved.version,
            },
        )
        safe_notify(self._notifier, APPROVAL_TRANSITIONED, self._payload(saved, entry.action))
        return saved

    def _entry(
        self,
        request: ApprovalRequest,
        action: ApprovalAction,
        performed_by: str,
        now: datetime,
        comments: str | None = None,
        acting_role: str | None = None,
        delegate_to: str | None = None,
    ) -> ApprovalHistoryEntry:
        return ApprovalHistoryEntry(
            entry_id=self._new_id(),
            request_id=request.request_id,
            action=action,
            performed_by=performed_by,
            level=request.current_level,
            timestamp=now,
            comments=comments,
            acting_role=acting_role,
            delegate_to=delegate_to,
        )

    @staticmethod
    def _payload(request: ApprovalRequest, action: ApprovalAction) -> dict:
        return {
            "request_id": request.request_id,
            "reservation_id": request.reservation_id,
            "action": action.value,
            "status": request.status.value,
            "current_level": request.current_level,
            "priority": request.priority.value,
        }

    def _fire_outcome(self, request: ApprovalRequest) -> None:
        if not request.is_terminal:
            return
        for listener in self._listeners:
            try:
                listener(request)
            except Exception:
                logger.exception(
                    "approval_outcome_listener_failed",
                    extra={"request_id": request.request_id, "status": request.status.value},
                )
