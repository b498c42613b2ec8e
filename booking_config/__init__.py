"""
booking_config -- public entrypoint for booking configuration.

Responsibility:
    Provides ``get_active_config()``, which loads a YAML configuration set
    (approval flows, per-resource-type availability rules, engine settings)
    and returns a validated ``BookingConfiguration``.

Architecture position:
    Configuration -- sits above ``booking_kernel`` and ``booking_engines``
    and below ``booking_services``.  The kernel MUST NEVER import from
    ``booking_config``.

Invariants enforced:
    - Every approval flow passes structural validation before use.
    - Deterministic loading: the same YAML always yields the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- no configuration set with the requested name.
    - ``InvalidFlowConfigError`` -- a flow fails structural validation.
"""

from __future__ import annotations

from pathlib import Path

from booking_config.loader import (
    compute_checksum,
    load_configuration,
    load_yaml_file,
    parse_approval_flow,
    parse_availability_rules,
    parse_configuration,
    parse_engine_settings,
)
from booking_config.schema import BookingConfiguration, EngineSettings
from booking_config.store import StaticFlowConfigStore
from booking_config.validator import (
    ConfigValidationResult,
    check_approval_flow,
    validate_approval_flow,
    validate_flow_set,
)

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


def get_active_config(
    set_name: str = "default",
    config_dir: Path | None = None,
) -> BookingConfiguration:
    """Load ``<config_dir>/<set_name>.yaml`` (the packaged sets by default)."""
    sets_dir = config_dir or _DEFAULT_CONFIG_DIR
    return load_configuration(sets_dir / f"{set_name}.yaml")


__all__ = [
    "BookingConfiguration",
    "ConfigValidationResult",
    "EngineSettings",
    "StaticFlowConfigStore",
    "check_approval_flow",
    "compute_checksum",
    "get_active_config",
    "load_configuration",
    "load_yaml_file",
    "parse_approval_flow",
    "parse_availability_rules",
    "parse_configuration",
    "parse_engine_settings",
    "validate_approval_flow",
    "validate_flow_set",
]
