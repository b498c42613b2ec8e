"""
Approval domain types (``booking_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the multi-level approval workflow. Defines the
approval lifecycle state machine, flow/step configuration, auto-approval
conditions, request snapshots and append-only history entries.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects. ZERO I/O.

Invariants enforced
-------------------
* AP-1: Lifecycle -- ``APPROVAL_TRANSITIONS`` defines the only valid
  status changes. Terminal states have no outgoing edges.
* AP-2: Step orders within a flow are 1..n, contiguous (validated by
  ``booking_config.validator``).
* AP-3: ``current_level`` never decreases.
* AP-4: History entries are immutable once appended; every state change
  appends exactly one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

SYSTEM_ACTOR = "system"


# =========================================================================
# Approval Status Lifecycle (AP-1)
# =========================================================================


class ApprovalStatus(str, Enum):
    """Approval request lifecycle states."""

    PENDING = "pending"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


APPROVAL_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.PENDING: frozenset({
        ApprovalStatus.PENDING,
        ApprovalStatus.IN_REVIEW,
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
        ApprovalStatus.CANCELLED,
        ApprovalStatus.EXPIRED,
    }),
    ApprovalStatus.IN_REVIEW: frozenset({
        ApprovalStatus.PENDING,
        ApprovalStatus.IN_REVIEW,
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
        ApprovalStatus.CANCELLED,
        ApprovalStatus.EXPIRED,
    }),
    ApprovalStatus.APPROVED: frozenset(),
    ApprovalStatus.REJECTED: frozenset(),
    ApprovalStatus.CANCELLED: frozenset(),
    ApprovalStatus.EXPIRED: frozenset(),
}

TERMINAL_APPROVAL_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED,
    ApprovalStatus.CANCELLED,
    ApprovalStatus.EXPIRED,
})

OPEN_APPROVAL_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.PENDING,
    ApprovalStatus.IN_REVIEW,
})


class ApprovalAction(str, Enum):
    """Actions recorded in approval history.

    SUBMIT, AUTO_APPROVE and EXPIRE are produced by the engine itself;
    the rest are accepted by ``apply_action``.
    """

    SUBMIT = "submit"
    AUTO_APPROVE = "auto_approve"
    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_CHANGES = "request_changes"
    RESUBMIT = "resubmit"
    DELEGATE = "delegate"
    ESCALATE = "escalate"
    EXPIRE = "expire"
    CANCEL = "cancel"


class ApprovalPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


# =========================================================================
# Flow Configuration
# =========================================================================


@dataclass(frozen=True)
class ApprovalStepConfig:
    """One level of an approval flow.

    With ``allow_parallel`` the step needs one approval per distinct role
    in ``approver_roles`` before it advances.
    """

    name: str
    approver_roles: frozenset[str]
    order: int
    is_required: bool = True
    allow_parallel: bool = False
    timeout_hours: int | None = None


@dataclass(frozen=True)
class AutoApproveConditions:
    """Criteria under which a submission skips human review.

    A criterion is configured when the whitelist is non-empty or the limit
    is positive. Auto-approval needs at least one configured criterion and
    all configured criteria satisfied.
    """

    role_whitelist: frozenset[str] = frozenset()
    max_duration_minutes: int = 0
    max_advance_days: int = 0

    @property
    def is_configured(self) -> bool:
        return bool(self.role_whitelist) or self.max_duration_minutes > 0 or self.max_advance_days > 0


@dataclass(frozen=True)
class ApprovalFlowConfig:
    """Immutable, externally managed approval flow."""

    flow_id: str
    name: str
    resource_types: frozenset[str] = frozenset()
    steps: tuple[ApprovalStepConfig, ...] = ()
    auto_approve_conditions: AutoApproveConditions | None = None
    is_active: bool = True

    @property
    def first_level(self) -> int:
        return self.steps[0].order if self.steps else 0

    @property
    def max_level(self) -> int:
        return self.steps[-1].order if self.steps else 0

    def step_at(self, level: int) -> ApprovalStepConfig | None:
        for step in self.steps:
            if step.order == level:
                return step
        return None

    def next_step_after(self, level: int) -> ApprovalStepConfig | None:
        for step in self.steps:
            if step.order > level:
                return step
        return None


# =========================================================================
# Request and History Records
# =========================================================================


@dataclass(frozen=True)
class ApprovalHistoryEntry:
    """One append-only audit record. Immutable (AP-4).

    ``level`` is the level at which the action was taken. ``acting_role``
    is the step role an approval counted for; ``delegate_to`` the target
    of a DELEGATE.
    """

    entry_id: str
    request_id: str
    action: ApprovalAction
    performed_by: str
    level: int
    timestamp: datetime
    comments: str | None = None
    acting_role: str | None = None
    delegate_to: str | None = None


@dataclass(frozen=True)
class ApprovalRequest:
    """Immutable snapshot of an approval request.

    Only ``ApprovalWorkflowEngine`` produces new snapshots; ``version``
    increases by one per saved transition.
    """

    request_id: str
    reservation_id: str
    flow_id: str
    requester_id: str
    status: ApprovalStatus
    current_level: int
    max_level: int
    requested_at: datetime
    priority: ApprovalPriority = ApprovalPriority.MEDIUM
    level_entered_at: datetime | None = None
    expires_at: datetime | None = None
    awaiting_changes: bool = False
    resolved_at: datetime | None = None
    version: int = 1
    history: tuple[ApprovalHistoryEntry, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_APPROVAL_STATUSES


@dataclass(frozen=True)
class ActionPayload:
    """Optional data accompanying an action."""

    comments: str | None = None
    rejection_reason: str | None = None
    delegate_to: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)
