"""
Collaborator interfaces (``booking_kernel.domain.protocols``).

Responsibility
--------------
Narrow, in-process contracts for everything the scheduling and approval
core consumes but does not own: resource lookup, persistence, role
lookup, notification delivery and flow configuration.

Architecture position
---------------------
**Kernel domain layer**. Implementations live in
``booking_kernel.services.memory`` (in-process) and
``booking_kernel.services.sql_store`` (SQLAlchemy).

Contract notes
--------------
* Stores raise ``PersistenceError`` for infrastructure failures and the
  relevant ``NotFoundError`` subclass for unknown ids.
* ``save_approval_request`` with ``expected_version`` raises
  ``OptimisticLockError`` if the stored version differs; an
  ``expected_version`` of 0 means the request must not exist yet.
* Approval requests are saved without their history; reads return the
  request with ``history`` assembled from the appended entries.
* ``append_history_entry`` is append-only; entries are never updated.
* ``NotificationSink.notify`` is fire-and-forget; callers isolate its
  failures.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any, Protocol

from booking_kernel.domain.approval import (
    ApprovalFlowConfig,
    ApprovalHistoryEntry,
    ApprovalRequest,
)
from booking_kernel.domain.reservation import (
    Reservation,
    ReservationStatus,
    ResourceInfo,
)
from booking_kernel.domain.values import TimeWindow


class ResourceLookup(Protocol):
    def get_resource(self, resource_id: str) -> ResourceInfo:
        """Return the resource or raise ResourceNotFoundError."""
        ...


class ReservationStore(Protocol):
    def save_reservation(self, reservation: Reservation) -> Reservation:
        ...

    def get_reservation(self, reservation_id: str) -> Reservation:
        ...

    def find_overlapping(
        self,
        resource_id: str,
        window: TimeWindow,
        exclude_id: str | None = None,
    ) -> list[Reservation]:
        """Active reservations on the resource intersecting ``window``."""
        ...

    def update_reservation_status(
        self,
        reservation_id: str,
        status: ReservationStatus,
        updated_at: datetime | None = None,
    ) -> Reservation:
        """Apply a lifecycle transition or raise InvalidReservationTransitionError."""
        ...

    def delete_reservation(self, reservation_id: str) -> None:
        """Physically remove a reservation (all-or-nothing batch rollback only)."""
        ...

    def list_series(self, series_id: str) -> list[Reservation]:
        ...

    def list_active_reservations(self, resource_id: str | None = None) -> list[Reservation]:
        ...


class ApprovalStore(Protocol):
    def save_approval_request(
        self,
        request: ApprovalRequest,
        expected_version: int | None = None,
        entries: Iterable[ApprovalHistoryEntry] = (),
    ) -> ApprovalRequest:
        """Save ``request`` and append ``entries`` atomically."""
        ...

    def get_approval_request(self, request_id: str) -> ApprovalRequest:
        ...

    def find_by_reservation(self, reservation_id: str) -> list[ApprovalRequest]:
        ...

    def list_open_requests(self) -> list[ApprovalRequest]:
        ...

    def append_history_entry(self, entry: ApprovalHistoryEntry) -> None:
        ...


class RoleLookup(Protocol):
    def get_actor_roles(self, actor_id: str) -> frozenset[str]:
        ...


class NotificationSink(Protocol):
    def notify(self, event: str, payload: dict[str, Any]) -> None:
        ...


class FlowConfigStore(Protocol):
    def get_approval_flow(self, flow_id: str) -> ApprovalFlowConfig:
        """Return the flow or raise ApprovalFlowNotFoundError."""
        ...

    def list_approval_flows(self) -> list[ApprovalFlowConfig]:
        ...
