"""
In-memory collaborators.

Responsibility:
    Dict-backed implementations of every collaborator protocol in
    ``booking_kernel.domain.protocols``: reservation and approval stores,
    a static resource directory, a static role directory and a recording
    notification sink. Used by tests and by callers embedding the engine
    without a database.

Architecture position:
    Kernel > Services. Implements domain protocols; imports only domain
    types and exceptions.

Invariants enforced:
    - Each store guards its state with one ``threading.RLock``; every
      public method is atomic with respect to the others.
    - Returned objects are frozen snapshots; callers cannot mutate state.
    - Approval history is append-only; re-appending an entry id raises
      ImmutabilityViolationError.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from dataclasses import replace
from datetime import datetime
from typing import Any

from booking_kernel.domain.approval import (
    OPEN_APPROVAL_STATUSES,
    ApprovalHistoryEntry,
    ApprovalRequest,
)
from booking_kernel.domain.reservation import (
    RESERVATION_TRANSITIONS,
    Reservation,
    ReservationStatus,
    ResourceInfo,
)
from booking_kernel.domain.values import TimeWindow
from booking_kernel.exceptions import (
    ApprovalRequestNotFoundError,
    ImmutabilityViolationError,
    InvalidReservationTransitionError,
    OptimisticLockError,
    ReservationNotFoundError,
    ResourceNotFoundError,
)


class InMemoryReservationStore:
    """Thread-safe reservation store keyed by reservation id."""

    def __init__(self) -> None:
        self._reservations: dict[str, Reservation] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._reservations)

    def save_reservation(self, reservation: Reservation) -> Reservation:
        with self._lock:
            self._reservations[reservation.reservation_id] = reservation
            return reservation

    def get_reservation(self, reservation_id: str) -> Reservation:
        with self._lock:
            try:
                return self._reservations[reservation_id]
            except KeyError:
                raise ReservationNotFoundError(reservation_id) from None

    def find_overlapping(
        self,
        resource_id: str,
        window: TimeWindow,
        exclude_id: str | None = None,
    ) -> list[Reservation]:
        with self._lock:
            hits = [
                r for r in self._reservations.values()
                if r.resource_id == resource_id
                and r.is_active
                and r.reservation_id != exclude_id
                and r.window.overlaps(window)
            ]
        return sorted(hits, key=lambda r: (r.window.start, r.reservation_id))

    def update_reservation_status(
        self,
        reservation_id: str,
        status: ReservationStatus,
        updated_at: datetime | None = None,
    ) -> Reservation:
        with self._lock:
            current = self.get_reservation(reservation_id)
            if status not in RESERVATION_TRANSITIONS[current.status]:
                raise InvalidReservationTransitionError(
                    reservation_id, current.status.value, status.value,
                )
            updated = replace(current, status=status, updated_at=updated_at or current.updated_at)
            self._reservations[reservation_id] = updated
            return updated

    def delete_reservation(self, reservation_id: str) -> None:
        with self._lock:
            if self._reservations.pop(reservation_id, None) is None:
                raise ReservationNotFoundError(reservation_id)

    def list_series(self, series_id: str) -> list[Reservation]:
        with self._lock:
            members = [r for r in self._reservations.values() if r.series_id == series_id]
        return sorted(members, key=lambda r: (r.window.start, r.reservation_id))

    def list_active_reservations(self, resource_id: str | None = None) -> list[Reservation]:
        with self._lock:
            active = [
                r for r in self._reservations.values()
                if r.is_active and (resource_id is None or r.resource_id == resource_id)
            ]
        return sorted(active, key=lambda r: (r.resource_id, r.window.start, r.reservation_id))


class InMemoryApprovalStore:
    """Thread-safe approval store with a version check and append-only history."""

    def __init__(self) -> None:
        self._requests: dict[str, ApprovalRequest] = {}
        self._history: dict[str, list[ApprovalHistoryEntry]] = {}
        self._entry_ids: set[str] = set()
        self._lock = threading.RLock()

    def save_approval_request(
        self,
        request: ApprovalRequest,
        expected_version: int | None = None,
        entries: Iterable[ApprovalHistoryEntry] = (),
    ) -> ApprovalRequest:
        entries = list(entries)
        with self._lock:
            existing = self._requests.get(request.request_id)
            if expected_version is not None:
                actual = existing.version if existing is not None else 0
                if actual != expected_version:
                    raise OptimisticLockError(
                        "ApprovalRequest", request.request_id, expected_version, actual,
                    )
            for entry in entries:
                self._check_new_entry(entry)
            self._requests[request.request_id] = replace(request, history=())
            self._history.setdefault(request.request_id, [])
            for entry in entries:
                self._entry_ids.add(entry.entry_id)
                self._history[request.request_id].append(entry)
            return self._with_history(request.request_id)

    def get_approval_request(self, request_id: str) -> ApprovalRequest:
        with self._lock:
            if request_id not in self._requests:
                raise ApprovalRequestNotFoundError(request_id)
            return self._with_history(request_id)

    def find_by_reservation(self, reservation_id: str) -> list[ApprovalRequest]:
        with self._lock:
            ids = [
                r.request_id for r in self._requests.values()
                if r.reservation_id == reservation_id
            ]
            found = [self._with_history(i) for i in ids]
        return sorted(found, key=lambda r: (r.requested_at, r.request_id))

    def list_open_requests(self) -> list[ApprovalRequest]:
        with self._lock:
            ids = [
                r.request_id for r in self._requests.values()
                if r.status in OPEN_APPROVAL_STATUSES
            ]
            found = [self._with_history(i) for i in ids]
        return sorted(found, key=lambda r: (r.requested_at, r.request_id))

    def append_history_entry(self, entry: ApprovalHistoryEntry) -> None:
        with self._lock:
            if entry.request_id not in self._requests:
                raise ApprovalRequestNotFoundError(entry.request_id)
            self._check_new_entry(entry)
            self._entry_ids.add(entry.entry_id)
            self._history[entry.request_id].append(entry)

    def _check_new_entry(self, entry: ApprovalHistoryEntry) -> None:
        if entry.entry_id in self._entry_ids:
            raise ImmutabilityViolationError(
                "ApprovalHistoryEntry", entry.entry_id,
                "History entries are append-only -- cannot overwrite",
            )

    def _with_history(self, request_id: str) -> ApprovalRequest:
        return replace(
            self._requests[request_id],
            history=tuple(self._history.get(request_id, ())),
        )


class StaticResourceDirectory:
    """Resource lookup over a fixed mapping."""

    def __init__(self, resources: Iterable[ResourceInfo] = ()) -> None:
        self._resources = {r.resource_id: r for r in resources}

    def add(self, resource: ResourceInfo) -> None:
        self._resources[resource.resource_id] = resource

    def get_resource(self, resource_id: str) -> ResourceInfo:
        try:
            return self._resources[resource_id]
        except KeyError:
            raise ResourceNotFoundError(resource_id) from None


class StaticRoleDirectory:
    """Role lookup over a fixed mapping; unknown actors hold no roles."""

    def __init__(self, roles: Mapping[str, Iterable[str]] | None = None) -> None:
        self._roles: dict[str, frozenset[str]] = {
            actor: frozenset(r) for actor, r in (roles or {}).items()
        }

    def grant(self, actor_id: str, *roles: str) -> None:
        self._roles[actor_id] = self._roles.get(actor_id, frozenset()) | frozenset(roles)

    def get_actor_roles(self, actor_id: str) -> frozenset[str]:
        return self._roles.get(actor_id, frozenset())


class RecordingNotificationSink:
    """Keeps every notification in arrival order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []
        self._lock = threading.Lock()

    def notify(self, event: str, payload: dict[str, Any]) -> None:
        with self._lock:
            self.events.append((event, dict(payload)))

    def named(self, event: str) -> list[dict[str, Any]]:
        with self._lock:
            return [p for e, p in self.events if e == event]
