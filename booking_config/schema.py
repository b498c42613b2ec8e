"""
Configuration Schema (``booking_config.schema``).

Frozen dataclasses describing a loaded configuration set. Approval flows
and availability rules reuse the kernel's domain types; this module only
adds the engine settings and the set container.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from booking_kernel.domain.approval import ApprovalFlowConfig
from booking_kernel.domain.reservation import AvailabilityRules


@dataclass(frozen=True)
class EngineSettings:
    """Tunables for locking, retry and recurrence expansion."""

    lock_timeout_seconds: float = 5.0
    retry_max_attempts: int = 3
    retry_initial_backoff_seconds: float = 0.05
    retry_max_backoff_seconds: float = 1.0
    max_recurrence_instances: int = 365
    admin_roles: frozenset[str] = frozenset({"admin"})


@dataclass(frozen=True)
class BookingConfiguration:
    """
    A complete configuration set.

    ``resource_rules`` maps a resource type to its default availability
    rules. ``checksum`` is the SHA-256 of the canonical source data.
    """

    config_id: str
    version: int
    settings: EngineSettings = field(default_factory=EngineSettings)
    approval_flows: tuple[ApprovalFlowConfig, ...] = ()
    resource_rules: dict[str, AvailabilityRules] = field(default_factory=dict)
    checksum: str = ""

    def rules_for(self, resource_type: str) -> AvailabilityRules:
        return self.resource_rules.get(resource_type, AvailabilityRules())
