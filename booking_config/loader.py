"""
Configuration Loader (``booking_config.loader``).

Responsibility
--------------
Loads YAML configuration files and parses them into typed frozen
dataclasses: approval flows, per-resource-type availability rules and
engine settings.

Architecture position
---------------------
**Config layer**.  Imports kernel domain types only; has no dependency on
engines or services.

Invariants enforced
-------------------
* Required keys raise ``KeyError``; no silent defaults for identity fields
  (``flow_id``, step ``order``, step ``approver_roles``).
* Every parsed object is a frozen dataclass.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.
* Every loaded flow passes ``validate_approval_flow``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Structurally invalid flow  -> ``InvalidFlowConfigError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from booking_config.schema import BookingConfiguration, EngineSettings
from booking_config.validator import validate_approval_flow
from booking_kernel.domain.approval import (
    ApprovalFlowConfig,
    ApprovalStepConfig,
    AutoApproveConditions,
)
from booking_kernel.domain.reservation import AvailabilityRules
from booking_kernel.logging_config import get_logger

logger = get_logger("config.loader")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_step(data: dict[str, Any]) -> ApprovalStepConfig:
    return ApprovalStepConfig(
        name=data.get("name", f"Step {data['order']}"),
        approver_roles=frozenset(data["approver_roles"]),
        order=int(data["order"]),
        is_required=bool(data.get("is_required", True)),
        allow_parallel=bool(data.get("allow_parallel", False)),
        timeout_hours=data.get("timeout_hours"),
    )


def parse_auto_approve_conditions(data: dict[str, Any] | None) -> AutoApproveConditions | None:
    if not data:
        return None
    return AutoApproveConditions(
        role_whitelist=frozenset(data.get("role_whitelist", ())),
        max_duration_minutes=int(data.get("max_duration_minutes", 0)),
        max_advance_days=int(data.get("max_advance_days", 0)),
    )


def parse_approval_flow(data: dict[str, Any]) -> ApprovalFlowConfig:
    """
    Parse an ``ApprovalFlowConfig`` from a dict.

    Steps are sorted by ``order``; structural problems are reported by
    ``validate_approval_flow``.

    Raises:
        KeyError: if ``flow_id`` or a step's required keys are missing.
    """
    steps = sorted((parse_step(s) for s in data.get("steps", ())), key=lambda s: s.order)
    return ApprovalFlowConfig(
        flow_id=data["flow_id"],
        name=data.get("name", data["flow_id"]),
        resource_types=frozenset(data.get("resource_types", ())),
        steps=tuple(steps),
        auto_approve_conditions=parse_auto_approve_conditions(
            data.get("auto_approve_conditions"),
        ),
        is_active=bool(data.get("is_active", True)),
    )


def parse_availability_rules(data: dict[str, Any]) -> AvailabilityRules:
    """Parse ``AvailabilityRules``; absent limits mean unbounded."""
    return AvailabilityRules(
        requires_approval=bool(data.get("requires_approval", False)),
        min_duration_minutes=int(data.get("min_duration_minutes", 0)),
        max_duration_minutes=data.get("max_duration_minutes"),
        buffer_minutes_between_reservations=int(
            data.get("buffer_minutes_between_reservations", 0),
        ),
        max_advance_booking_days=data.get("max_advance_booking_days"),
        allow_recurring=bool(data.get("allow_recurring", True)),
    )


def parse_engine_settings(data: dict[str, Any] | None) -> EngineSettings:
    data = data or {}
    defaults = EngineSettings()
    return EngineSettings(
        lock_timeout_seconds=float(data.get("lock_timeout_seconds", defaults.lock_timeout_seconds)),
        retry_max_attempts=int(data.get("retry_max_attempts", defaults.retry_max_attempts)),
        retry_initial_backoff_seconds=float(
            data.get("retry_initial_backoff_seconds", defaults.retry_initial_backoff_seconds),
        ),
        retry_max_backoff_seconds=float(
            data.get("retry_max_backoff_seconds", defaults.retry_max_backoff_seconds),
        ),
        max_recurrence_instances=int(
            data.get("max_recurrence_instances", defaults.max_recurrence_instances),
        ),
        admin_roles=frozenset(data.get("admin_roles", defaults.admin_roles)),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_configuration(data: dict[str, Any]) -> BookingConfiguration:
    """Build a validated ``BookingConfiguration`` from a raw dict."""
    flows = tuple(parse_approval_flow(f) for f in data.get("approval_flows", ()))
    for flow in flows:
        validate_approval_flow(flow)

    rules = {
        resource_type: parse_availability_rules(rule_data or {})
        for resource_type, rule_data in (data.get("resource_types") or {}).items()
    }

    return BookingConfiguration(
        config_id=data.get("config_id", "default"),
        version=int(data.get("version", 1)),
        settings=parse_engine_settings(data.get("settings")),
        approval_flows=flows,
        resource_rules=rules,
        checksum=compute_checksum(data),
    )


def load_configuration(path: Path) -> BookingConfiguration:
    """Load and validate a configuration set from a YAML file."""
    config = parse_configuration(load_yaml_file(Path(path)))
    logger.info(
        "configuration_loaded",
        extra={
            "config_id": config.config_id,
            "version": config.version,
            "flow_count": len(config.approval_flows),
            "resource_type_count": len(config.resource_rules),
            "checksum": config.checksum,
        },
    )
    return config
