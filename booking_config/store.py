"""In-process ``FlowConfigStore`` over loaded approval flows."""

from __future__ import annotations

from collections.abc import Iterable

from booking_config.validator import validate_approval_flow
from booking_engines.approval import select_flow_for_resource_type
from booking_kernel.domain.approval import ApprovalFlowConfig
from booking_kernel.exceptions import ApprovalFlowNotFoundError


class StaticFlowConfigStore:
    """Read-only flow lookup; every flow is validated on the way in."""

    def __init__(self, flows: Iterable[ApprovalFlowConfig] = ()) -> None:
        self._flows: dict[str, ApprovalFlowConfig] = {}
        for flow in flows:
            self.register(flow)

    def register(self, flow: ApprovalFlowConfig) -> None:
        validate_approval_flow(flow)
        self._flows[flow.flow_id] = flow

    def get_approval_flow(self, flow_id: str) -> ApprovalFlowConfig:
        try:
            return self._flows[flow_id]
        except KeyError:
            raise ApprovalFlowNotFoundError(flow_id) from None

    def list_approval_flows(self) -> list[ApprovalFlowConfig]:
        return sorted(self._flows.values(), key=lambda f: f.flow_id)

    def flow_for_resource_type(self, resource_type: str) -> ApprovalFlowConfig | None:
        """Active flow covering ``resource_type``; inactive flows are ignored."""
        return select_flow_for_resource_type(self._flows.values(), resource_type)
