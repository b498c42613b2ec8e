"""
Module: booking_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    scheduling and approval engines.  This is the canonical import surface
    for higher layers (booking_services, booking_config).

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import booking_kernel.domain, booking_kernel.exceptions and
    booking_kernel.logging_config. MUST NOT import booking_services.

Invariants enforced:
    - Engines never call ``datetime.now()``; time comes from an injected
      Clock or an explicit parameter.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from booking_engines import AvailabilityEngine, SortedIntervalIndex
    from booking_engines import RecurrenceExpander, expand_recurrence
"""

from booking_engines.approval import (
    AutoApprovalEvaluation,
    covered_roles,
    current_delegate,
    evaluate_auto_approval,
    quorum_reached,
    select_acting_role,
    select_flow_for_resource_type,
    timeout_action,
)
from booking_engines.availability import (
    AvailabilityEngine,
    denial_to_error,
    evaluate_rules,
)
from booking_engines.interval_index import (
    IndexEntry,
    IntervalIndex,
    SortedIntervalIndex,
    StoreBackedIntervalIndex,
)
from booking_engines.recurrence import (
    HARD_INSTANCE_CAP,
    RecurrenceExpander,
    calendar_weekday,
    expand_recurrence,
    validate_pattern,
)

__all__ = [
    "HARD_INSTANCE_CAP",
    "AutoApprovalEvaluation",
    "AvailabilityEngine",
    "IndexEntry",
    "IntervalIndex",
    "RecurrenceExpander",
    "SortedIntervalIndex",
    "StoreBackedIntervalIndex",
    "calendar_weekday",
    "covered_roles",
    "current_delegate",
    "denial_to_error",
    "evaluate_auto_approval",
    "evaluate_rules",
    "expand_recurrence",
    "quorum_reached",
    "select_acting_role",
    "select_flow_for_resource_type",
    "timeout_action",
    "validate_pattern",
]
