"""
Pytest fixtures for the booking engine test suite.

Provides:
- Deterministic clock pinned to 2025-01-01 08:00 UTC
- In-memory collaborators (stores, resource and role directories, sink)
- Wired ApprovalWorkflowEngine and SchedulingCoordinator
- Structured log capture as parsed JSON
- SQLite-backed SQLAlchemy session factory for persistence tests
"""

import json
import logging
from io import StringIO

import pytest

from booking_config import EngineSettings, StaticFlowConfigStore
from booking_engines.interval_index import SortedIntervalIndex
from booking_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from booking_kernel.domain.clock import DeterministicClock
from booking_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from booking_kernel.services.memory import (
    InMemoryApprovalStore,
    InMemoryReservationStore,
    RecordingNotificationSink,
    StaticResourceDirectory,
    StaticRoleDirectory,
)
from booking_kernel.services.retry import NO_RETRY
from booking_services.approval_workflow import ApprovalWorkflowEngine
from booking_services.scheduling_coordinator import SchedulingCoordinator
from tests.factories import T0, make_lab, make_room, make_two_step_flow, sequential_ids


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture booking_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, coordinator):
            coordinator.create_single(...)
            logs = captured_logs()
            assert any(r["message"] == "reservation_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("booking_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(T0)


@pytest.fixture
def reservation_store():
    return InMemoryReservationStore()


@pytest.fixture
def approval_store():
    return InMemoryApprovalStore()


@pytest.fixture
def notifier():
    return RecordingNotificationSink()


@pytest.fixture
def resources():
    return StaticResourceDirectory([make_room(), make_lab()])


@pytest.fixture
def roles():
    return StaticRoleDirectory({
        "alice": ["student"],
        "bob": ["student"],
        "prof": ["faculty"],
        "manager": ["lab_manager"],
        "safety": ["safety_officer"],
        "root": ["admin"],
    })


@pytest.fixture
def flows():
    return StaticFlowConfigStore([make_two_step_flow()])


@pytest.fixture
def index():
    return SortedIntervalIndex()


@pytest.fixture
def settings():
    return EngineSettings(lock_timeout_seconds=2.0, retry_max_attempts=1)


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def approval_engine(approval_store, reservation_store, roles, flows, clock, notifier):
    return ApprovalWorkflowEngine(
        approval_store=approval_store,
        reservation_store=reservation_store,
        role_lookup=roles,
        flow_store=flows,
        clock=clock,
        notifier=notifier,
        lock_timeout_seconds=2.0,
        retry_policy=NO_RETRY,
        id_factory=sequential_ids("apr"),
    )


@pytest.fixture
def coordinator(
    resources, reservation_store, index, approval_engine, flows, roles, clock, notifier, settings,
):
    return SchedulingCoordinator(
        resources=resources,
        reservations=reservation_store,
        index=index,
        approvals=approval_engine,
        flows=flows,
        roles=roles,
        clock=clock,
        notifier=notifier,
        settings=settings,
        id_factory=sequential_ids("res"),
    )


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def session_factory():
    """Fresh in-memory SQLite schema per test."""
    reset_engine()
    init_engine_from_url("sqlite:///:memory:")
    create_tables()
    yield get_session_factory()
    drop_tables()
    reset_engine()

