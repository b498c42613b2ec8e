"""
Real-thread race tests.

Tests cover:
- N threads booking the same window: exactly one succeeds
- A recurring series racing single bookings never leaves overlapping
  active reservations
- A user action racing the timeout sweep: exactly one of them applies
"""

import threading
from datetime import timedelta
from itertools import combinations

import pytest

from booking_config import StaticFlowConfigStore
from booking_kernel.domain.approval import ApprovalAction
from booking_kernel.domain.reservation import ReservationStatus
from booking_kernel.exceptions import ForbiddenRoleError, OverlapError
from booking_kernel.services.retry import RetryPolicy
from booking_services.approval_workflow import ApprovalWorkflowEngine
from booking_services.scheduling_coordinator import RecurringOptions
from tests.factories import (
    LAB_FLOW_ID,
    LAB_ID,
    ROOM_ID,
    T0,
    at,
    make_pattern,
    make_request,
    make_reservation,
    make_two_step_flow,
)

THREADS = 12


def run_concurrently(targets):
    barrier = threading.Barrier(len(targets))
    errors = []

    def wrap(target):
        def runner():
            barrier.wait()
            try:
                target()
            except Exception as exc:
                errors.append(exc)
        return runner

    threads = [threading.Thread(target=wrap(t)) for t in targets]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)
    return errors


class TestDoubleBooking:

    def test_exactly_one_booking_wins(self, coordinator, reservation_store):
        requests = [make_request(at(6, 10), requester_id=f"user-{i}") for i in range(THREADS)]

        errors = run_concurrently([
            lambda r=r: coordinator.create_single(r) for r in requests
        ])

        assert len(reservation_store.list_active_reservations(ROOM_ID)) == 1
        assert len(errors) == THREADS - 1
        assert all(isinstance(e, OverlapError) for e in errors)

    def test_series_and_singles_never_overlap(self, coordinator, reservation_store):
        def series():
            coordinator.create_recurring(
                make_request(at(6, 10), requester_id="alice"),
                make_pattern(max_instances=10),
                RecurringOptions(skip_conflicts=True),
            )

        def single(day):
            def book():
                coordinator.create_single(make_request(at(day, 10, 30), requester_id="bob"))
            return book

        run_concurrently([series] + [single(d) for d in range(6, 16)])

        active = reservation_store.list_active_reservations(ROOM_ID)
        assert len(active) == 10
        for a, b in combinations(active, 2):
            assert not a.window.overlaps(b.window)


class TestActionVersusSweep:

    @pytest.fixture
    def engine(self, approval_store, reservation_store, roles, clock):
        return ApprovalWorkflowEngine(
            approval_store=approval_store,
            reservation_store=reservation_store,
            role_lookup=roles,
            flow_store=StaticFlowConfigStore([make_two_step_flow(first_timeout=1)]),
            clock=clock,
            lock_timeout_seconds=5.0,
            retry_policy=RetryPolicy(max_attempts=3, initial_backoff_seconds=0.01),
        )

    @pytest.mark.parametrize("attempt", range(10))
    def test_only_one_transition_applies(self, engine, reservation_store, attempt):
        reservation_store.save_reservation(make_reservation(
            f"res-{attempt}", at(6, 10), resource_id=LAB_ID, status=ReservationStatus.PENDING,
        ))
        request = engine.submit(f"res-{attempt}", LAB_FLOW_ID)
        deadline = T0 + timedelta(hours=1)

        errors = run_concurrently([
            lambda: engine.apply_action(request.request_id, ApprovalAction.APPROVE, "manager"),
            lambda: engine.check_timeouts(deadline),
        ])

        final = engine.get_request(request.request_id)
        level_one = [e for e in final.history if e.level == 1 and e.action != ApprovalAction.SUBMIT]
        assert len(level_one) == 1
        assert level_one[0].action in (ApprovalAction.APPROVE, ApprovalAction.ESCALATE)
        assert final.current_level == 2
        assert all(isinstance(e, ForbiddenRoleError) for e in errors)
