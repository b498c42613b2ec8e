"""
Tests for configuration loading, validation and service wiring.

Tests cover:
- The packaged default set loads, validates and has a stable checksum
- Parsing defaults (absent limits unbounded, steps sorted by order)
- Validator collects every structural problem
- StaticFlowConfigStore rejects invalid flows and ignores inactive ones
- build_booking_services wires a working end-to-end system
"""

from datetime import timedelta

import pytest
import yaml

from booking_config import (
    StaticFlowConfigStore,
    check_approval_flow,
    compute_checksum,
    get_active_config,
    parse_approval_flow,
    parse_availability_rules,
    parse_configuration,
    validate_flow_set,
)
from booking_kernel.domain.approval import ApprovalAction, ApprovalStatus
from booking_kernel.domain.reservation import ReservationStatus, ResourceInfo
from booking_kernel.exceptions import InvalidFlowConfigError, RecurrenceNotAllowedError
from booking_kernel.services.memory import (
    InMemoryReservationStore,
    StaticResourceDirectory,
    StaticRoleDirectory,
)
from booking_services import build_booking_services
from tests.factories import T0, make_flow, make_pattern, make_request, make_reservation, make_step


class TestDefaultConfiguration:

    def test_default_set_loads(self):
        config = get_active_config()

        assert config.config_id == "default"
        assert {f.flow_id for f in config.approval_flows} == {"lab-standard", "equipment-checkout"}
        assert config.rules_for("lab").requires_approval is True
        assert config.rules_for("lab").buffer_minutes_between_reservations == 15
        assert config.rules_for("equipment").allow_recurring is False
        assert config.settings.admin_roles == frozenset({"admin"})

    def test_unknown_resource_type_gets_permissive_rules(self):
        rules = get_active_config().rules_for("telescope")
        assert rules.requires_approval is False
        assert rules.max_duration_minutes is None

    def test_checksum_is_deterministic(self):
        assert get_active_config().checksum == get_active_config().checksum

    def test_default_flows_pass_validation(self):
        result = validate_flow_set(get_active_config().approval_flows)
        assert result.is_valid, result.errors

    def test_missing_set_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config("nope", config_dir=tmp_path)

    def test_custom_set_from_directory(self, tmp_path):
        (tmp_path / "small.yaml").write_text(yaml.safe_dump({
            "config_id": "small",
            "version": 3,
            "settings": {"retry_max_attempts": 1},
            "resource_types": {"room": {"min_duration_minutes": 10}},
            "approval_flows": [],
        }))

        config = get_active_config("small", config_dir=tmp_path)

        assert (config.config_id, config.version) == ("small", 3)
        assert config.settings.retry_max_attempts == 1
        assert config.settings.lock_timeout_seconds == 5.0
        assert config.rules_for("room").min_duration_minutes == 10


class TestParsing:

    def test_steps_sorted_by_order(self):
        flow = parse_approval_flow({
            "flow_id": "f",
            "steps": [
                {"order": 2, "approver_roles": ["b"]},
                {"order": 1, "approver_roles": ["a"]},
            ],
        })

        assert [s.order for s in flow.steps] == [1, 2]
        assert flow.steps[0].name == "Step 1"
        assert flow.is_active is True
        assert flow.auto_approve_conditions is None

    def test_missing_flow_id_is_key_error(self):
        with pytest.raises(KeyError):
            parse_approval_flow({"steps": []})

    def test_absent_limits_are_unbounded(self):
        rules = parse_availability_rules({})
        assert rules.max_duration_minutes is None
        assert rules.max_advance_booking_days is None
        assert rules.allow_recurring is True

    def test_invalid_flow_fails_whole_configuration(self):
        with pytest.raises(InvalidFlowConfigError):
            parse_configuration({
                "approval_flows": [
                    {"flow_id": "gap", "steps": [{"order": 2, "approver_roles": ["a"]}]},
                ],
            })

    def test_checksum_ignores_key_order(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})


class TestValidator:

    def test_every_problem_is_reported(self):
        flow = make_flow(steps=(
            make_step(1, roles=()),
            make_step(3, timeout_hours=0),
        ))

        result = check_approval_flow(flow)

        assert len(result.errors) == 3

    def test_active_flow_without_resource_types_warns(self):
        result = check_approval_flow(make_flow((make_step(1),), resource_types=()))
        assert result.is_valid
        assert result.warnings

    def test_duplicate_flow_ids(self):
        result = validate_flow_set([make_flow((make_step(1),)), make_flow((make_step(1),))])
        assert any("duplicate" in e for e in result.errors)

    def test_store_rejects_invalid_flow(self):
        with pytest.raises(InvalidFlowConfigError) as exc_info:
            StaticFlowConfigStore([make_flow((make_step(2),), flow_id="bad")])
        assert exc_info.value.flow_id == "bad"

    def test_store_ignores_inactive_flows_for_resource_type(self):
        store = StaticFlowConfigStore([
            make_flow((make_step(1),), flow_id="old", is_active=False),
            make_flow((make_step(1),), flow_id="new"),
        ])
        assert store.flow_for_resource_type("lab").flow_id == "new"


class TestWiring:

    @pytest.fixture
    def services(self, clock):
        config = get_active_config()
        resources = StaticResourceDirectory([
            ResourceInfo(rid, rtype, config.rules_for(rtype))
            for rid, rtype in (("room-1", "room"), ("lab-1", "lab"), ("scope-1", "equipment"))
        ])
        roles = StaticRoleDirectory({
            "alice": ["student"],
            "prof": ["faculty"],
            "manager": ["lab_manager"],
            "safety": ["safety_officer"],
        })
        return build_booking_services(resources, roles, clock=clock, config=config)

    def test_room_booking_confirms(self, services):
        reservation = services.coordinator.create_single(
            make_request(T0 + timedelta(days=1), resource_id="room-1"),
        )
        assert reservation.status == ReservationStatus.CONFIRMED

    def test_faculty_lab_booking_is_auto_approved(self, services):
        reservation = services.coordinator.create_single(
            make_request(T0 + timedelta(days=2), resource_id="lab-1", requester_id="prof"),
        )

        assert reservation.status == ReservationStatus.CONFIRMED
        assert services.approvals.pending_for_reservation(reservation.reservation_id) == []

    def test_student_lab_booking_goes_through_both_levels(self, services):
        reservation = services.coordinator.create_single(
            make_request(T0 + timedelta(days=2), resource_id="lab-1"),
        )
        [request] = services.approvals.pending_for_reservation(reservation.reservation_id)

        services.approvals.apply_action(request.request_id, ApprovalAction.APPROVE, "manager")
        final = services.approvals.apply_action(request.request_id, ApprovalAction.APPROVE, "safety")

        assert final.status == ApprovalStatus.APPROVED
        assert services.coordinator.check_availability(
            "lab-1", make_request(T0 + timedelta(days=2)).window,
        ).allowed is False

    def test_stalled_optional_signoff_expires(self, services):
        services.coordinator.create_single(make_request(T0 + timedelta(days=5), resource_id="lab-1"))

        services.approvals.check_timeouts(T0 + timedelta(hours=48))
        [expired] = services.approvals.check_timeouts(T0 + timedelta(hours=72))

        assert expired.status == ApprovalStatus.EXPIRED
        assert expired.current_level == 2

    def test_equipment_refuses_recurring(self, services):
        with pytest.raises(RecurrenceNotAllowedError):
            services.coordinator.create_recurring(
                make_request(T0 + timedelta(days=1), resource_id="scope-1"),
                make_pattern(max_instances=2),
            )

    def test_index_is_warmed_from_store(self, clock):
        store = InMemoryReservationStore()
        store.save_reservation(make_reservation("legacy", T0 + timedelta(days=1), resource_id="room-1"))
        config = get_active_config()
        services = build_booking_services(
            StaticResourceDirectory([ResourceInfo("room-1", "room", config.rules_for("room"))]),
            StaticRoleDirectory(),
            reservation_store=store,
            clock=clock,
            config=config,
        )

        result = services.coordinator.check_availability(
            "room-1", make_request(T0 + timedelta(days=1)).window,
        )

        assert result.allowed is False
