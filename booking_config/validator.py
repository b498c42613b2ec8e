"""
Configuration Validator (``booking_config.validator``).

Responsibility
--------------
Checks approval flows for structural integrity before they are used.

Invariants enforced
-------------------
* Step orders are strictly increasing, contiguous and start at 1.
* Every step lists at least one approver role.
* ``timeout_hours``, when present, is at least 1.
* Flow ids are unique within a configuration set.

Failure modes
-------------
* ``validate_approval_flow`` raises ``InvalidFlowConfigError`` listing
  every problem found, not just the first.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from booking_kernel.domain.approval import ApprovalFlowConfig
from booking_kernel.exceptions import InvalidFlowConfigError


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    ``is_valid`` returns ``True`` only when ``errors`` is empty.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def check_approval_flow(flow: ApprovalFlowConfig) -> ConfigValidationResult:
    """Collect every structural problem in ``flow`` without raising."""
    result = ConfigValidationResult()

    orders = [s.order for s in flow.steps]
    if orders != list(range(1, len(orders) + 1)):
        result.add_error(f"step orders must be 1..{len(orders)} without gaps, got {orders}")

    for step in flow.steps:
        if not step.approver_roles:
            result.add_error(f"step {step.order} ({step.name}) has no approver roles")
        if step.timeout_hours is not None and step.timeout_hours < 1:
            result.add_error(
                f"step {step.order} ({step.name}) timeout_hours must be >= 1, "
                f"got {step.timeout_hours}"
            )

    if flow.is_active and not flow.resource_types:
        result.add_warning(f"flow {flow.flow_id} is active but lists no resource types")

    return result


def validate_approval_flow(flow: ApprovalFlowConfig) -> None:
    """Raise InvalidFlowConfigError if ``flow`` is structurally invalid."""
    result = check_approval_flow(flow)
    if not result.is_valid:
        raise InvalidFlowConfigError(flow.flow_id, result.errors)


def validate_flow_set(flows: Iterable[ApprovalFlowConfig]) -> ConfigValidationResult:
    """Validate each flow and flag duplicate flow ids."""
    result = ConfigValidationResult()
    seen: set[str] = set()
    for flow in flows:
        if flow.flow_id in seen:
            result.add_error(f"duplicate flow_id {flow.flow_id}")
        seen.add(flow.flow_id)
        single = check_approval_flow(flow)
        result.errors.extend(f"{flow.flow_id}: {e}" for e in single.errors)
        result.warnings.extend(f"{flow.flow_id}: {w}" for w in single.warnings)
    return result
