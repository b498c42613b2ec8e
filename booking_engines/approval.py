"""
booking_engines.approval -- Pure approval rule evaluation.

Responsibility:
    Answer the questions the approval workflow asks before it changes a
    request: does this submission auto-approve, who may act at this level,
    which role does an approval count for, is the level's quorum reached,
    and what happens when a level times out.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import booking_kernel.domain types.

Invariants enforced:
    - Parallel quorum: one approval per distinct role in ``approver_roles``;
      a sequential step needs a single approval.
    - Approvals collected before a REQUEST_CHANGES at the same level do
      not count toward quorum.
    - Timeout outcome: a final step that is not required expires; every
      other step escalates.
    - Purity: the current time is always a parameter.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from booking_kernel.domain.approval import (
    ApprovalAction,
    ApprovalFlowConfig,
    ApprovalHistoryEntry,
    ApprovalStepConfig,
)
from booking_kernel.domain.values import TimeWindow


@dataclass(frozen=True)
class AutoApprovalEvaluation:
    auto_approved: bool
    reason: str


def evaluate_auto_approval(
    flow: ApprovalFlowConfig,
    requester_roles: frozenset[str],
    window: TimeWindow,
    now: datetime,
) -> AutoApprovalEvaluation:
    """Decide whether a submission skips human review.

    A flow without steps always auto-approves. Otherwise at least one
    condition must be configured and every configured condition must hold.
    """
    if not flow.steps:
        return AutoApprovalEvaluation(True, "Flow has no approval steps")

    conditions = flow.auto_approve_conditions
    if conditions is None or not conditions.is_configured:
        return AutoApprovalEvaluation(False, "No auto-approve conditions configured")

    if conditions.role_whitelist and not (conditions.role_whitelist & requester_roles):
        return AutoApprovalEvaluation(False, "Requester holds no whitelisted role")

    if conditions.max_duration_minutes > 0 and window.duration > timedelta(
        minutes=conditions.max_duration_minutes
    ):
        return AutoApprovalEvaluation(
            False,
            f"Duration {window.duration_minutes:g} min exceeds "
            f"{conditions.max_duration_minutes} min",
        )

    if conditions.max_advance_days > 0 and window.start > now + timedelta(
        days=conditions.max_advance_days
    ):
        return AutoApprovalEvaluation(
            False, f"Start is more than {conditions.max_advance_days} days ahead",
        )

    return AutoApprovalEvaluation(True, "All configured auto-approve conditions met")


def entries_since_reset(
    history: Iterable[ApprovalHistoryEntry],
    level: int,
) -> list[ApprovalHistoryEntry]:
    """History at ``level`` after the latest REQUEST_CHANGES at that level."""
    at_level = [e for e in history if e.level == level]
    for i in range(len(at_level) - 1, -1, -1):
        if at_level[i].action == ApprovalAction.REQUEST_CHANGES:
            return at_level[i + 1:]
    return at_level


def approvals_at_level(
    history: Iterable[ApprovalHistoryEntry],
    level: int,
) -> list[ApprovalHistoryEntry]:
    return [
        e for e in entries_since_reset(history, level)
        if e.action == ApprovalAction.APPROVE
    ]


def covered_roles(history: Iterable[ApprovalHistoryEntry], level: int) -> frozenset[str]:
    return frozenset(
        e.acting_role for e in approvals_at_level(history, level) if e.acting_role
    )


def current_delegate(history: Iterable[ApprovalHistoryEntry], level: int) -> str | None:
    """Actor the latest DELEGATE at ``level`` handed the step to, if any."""
    delegate = None
    for entry in history:
        if entry.level == level and entry.action == ApprovalAction.DELEGATE:
            delegate = entry.delegate_to
    return delegate


def eligible_roles(step: ApprovalStepConfig, actor_roles: frozenset[str]) -> frozenset[str]:
    return step.approver_roles & actor_roles


def select_acting_role(
    step: ApprovalStepConfig,
    actor_roles: frozenset[str],
    covered: frozenset[str],
    is_delegate: bool,
) -> str | None:
    """Role an approval by this actor counts for, or None if none remains.

    The actor's own uncovered step roles come first, in sorted order. A
    delegate without such a role stands in for the first uncovered step
    role.
    """
    own = sorted(eligible_roles(step, actor_roles) - covered)
    if own:
        return own[0]
    if is_delegate:
        remaining = sorted(step.approver_roles - covered)
        if remaining:
            return remaining[0]
    return None


def quorum_reached(step: ApprovalStepConfig, covered: frozenset[str]) -> bool:
    if step.allow_parallel:
        return step.approver_roles <= covered
    return bool(covered)


def level_deadline(step: ApprovalStepConfig | None, entered_at: datetime | None) -> datetime | None:
    if step is None or step.timeout_hours is None or entered_at is None:
        return None
    return entered_at + timedelta(hours=step.timeout_hours)


def timeout_action(flow: ApprovalFlowConfig, level: int) -> ApprovalAction:
    """ESCALATE forward, except a final non-required step which EXPIREs."""
    step = flow.step_at(level)
    is_final = flow.next_step_after(level) is None
    if is_final and step is not None and not step.is_required:
        return ApprovalAction.EXPIRE
    return ApprovalAction.ESCALATE


def select_flow_for_resource_type(
    flows: Iterable[ApprovalFlowConfig],
    resource_type: str,
) -> ApprovalFlowConfig | None:
    """First active flow listing ``resource_type``, by flow id for stability."""
    candidates = sorted(
        (f for f in flows if f.is_active and resource_type in f.resource_types),
        key=lambda f: f.flow_id,
    )
    return candidates[0] if candidates else None
