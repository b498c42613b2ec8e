"""
SQL stores -- SQLAlchemy implementations of the persistence protocols.

Responsibility:
    Persist reservations, approval requests and approval history through
    the ORM models, translating rows to frozen domain DTOs at the edge.

Architecture position:
    Kernel > Services.  May import from db/, models/ and domain/.
    Implements ``ReservationStore`` and ``ApprovalStore`` from
    ``booking_kernel.domain.protocols``.

Invariants enforced:
    - One session and one transaction per store call (commit or rollback).
      A request save and the history entries it carries commit together.
    - Approval request updates are conditioned on the expected version
      (``UPDATE ... WHERE version = :expected``), so two writers racing on
      the same request cannot both succeed, even across processes.
    - History rows are only ever inserted.

Failure modes:
    - PersistenceError wraps any SQLAlchemyError.
    - OptimisticLockError when the stored version differs from the expected one.
    - ReservationNotFoundError / ApprovalRequestNotFoundError for unknown ids.
    - InvalidReservationTransitionError for an illegal status change.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from booking_kernel.db.engine import session_scope
from booking_kernel.domain.approval import (
    OPEN_APPROVAL_STATUSES,
    ApprovalHistoryEntry,
    ApprovalRequest,
)
from booking_kernel.domain.reservation import (
    ACTIVE_RESERVATION_STATUSES,
    RESERVATION_TRANSITIONS,
    Reservation,
    ReservationStatus,
)
from booking_kernel.domain.values import TimeWindow
from booking_kernel.exceptions import (
    ApprovalRequestNotFoundError,
    ImmutabilityViolationError,
    InvalidReservationTransitionError,
    OptimisticLockError,
    PersistenceError,
    ReservationNotFoundError,
)
from booking_kernel.logging_config import get_logger
from booking_kernel.models.approval import ApprovalHistoryModel, ApprovalRequestModel
from booking_kernel.models.reservation import ReservationModel

logger = get_logger("services.sql_store")

_ACTIVE_VALUES = tuple(s.value for s in ACTIVE_RESERVATION_STATUSES)
_OPEN_VALUES = tuple(s.value for s in OPEN_APPROVAL_STATUSES)


class _SqlStoreBase:
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _scope(self, operation: str) -> Iterator[Session]:
        try:
            with session_scope(self._session_factory) as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error(
                "persistence_failure",
                extra={"operation": operation, "error_type": type(exc).__name__},
            )
            raise PersistenceError(operation, str(exc)) from exc


class SqlReservationStore(_SqlStoreBase):
    """ReservationStore backed by the ``reservations`` table."""

    def save_reservation(self, reservation: Reservation) -> Reservation:
        with self._scope("save_reservation") as session:
            model = session.get(ReservationModel, reservation.reservation_id)
            if model is None:
                session.add(ReservationModel.from_dto(reservation))
            else:
                model.apply_dto(reservation)
        return reservation

    def get_reservation(self, reservation_id: str) -> Reservation:
        with self._scope("get_reservation") as session:
            model = session.get(ReservationModel, reservation_id)
            if model is None:
                raise ReservationNotFoundError(reservation_id)
            return model.to_dto()

    def find_overlapping(
        self,
        resource_id: str,
        window: TimeWindow,
        exclude_id: str | None = None,
    ) -> list[Reservation]:
        stmt = (
            select(ReservationModel)
            .where(
                ReservationModel.resource_id == resource_id,
                ReservationModel.status.in_(_ACTIVE_VALUES),
                ReservationModel.start_at < window.end,
                ReservationModel.end_at > window.start,
            )
            .order_by(ReservationModel.start_at, ReservationModel.reservation_id)
        )
        if exclude_id is not None:
            stmt = stmt.where(ReservationModel.reservation_id != exclude_id)
        with self._scope("find_overlapping") as session:
            return [m.to_dto() for m in session.execute(stmt).scalars().all()]

    def update_reservation_status(
        self,
        reservation_id: str,
        status: ReservationStatus,
        updated_at: datetime | None = None,
    ) -> Reservation:
        with self._scope("update_reservation_status") as session:
            model = session.get(ReservationModel, reservation_id)
            if model is None:
                raise ReservationNotFoundError(reservation_id)
            current = ReservationStatus(model.status)
            if status not in RESERVATION_TRANSITIONS[current]:
                raise InvalidReservationTransitionError(
                    reservation_id, current.value, status.value,
                )
            model.status = status.value
            if updated_at is not None:
                model.updated_at = updated_at
            session.flush()
            return model.to_dto()

    def delete_reservation(self, reservation_id: str) -> None:
        with self._scope("delete_reservation") as session:
            model = session.get(ReservationModel, reservation_id)
            if model is None:
                raise ReservationNotFoundError(reservation_id)
            session.delete(model)

    def list_series(self, series_id: str) -> list[Reservation]:
        stmt = (
            select(ReservationModel)
            .where(ReservationModel.series_id == series_id)
            .order_by(ReservationModel.start_at, ReservationModel.reservation_id)
        )
        with self._scope("list_series") as session:
            return [m.to_dto() for m in session.execute(stmt).scalars().all()]

    def list_active_reservations(self, resource_id: str | None = None) -> list[Reservation]:
        stmt = select(ReservationModel).where(ReservationModel.status.in_(_ACTIVE_VALUES))
        if resource_id is not None:
            stmt = stmt.where(ReservationModel.resource_id == resource_id)
        stmt = stmt.order_by(
            ReservationModel.resource_id,
            ReservationModel.start_at,
            ReservationModel.reservation_id,
        )
        with self._scope("list_active_reservations") as session:
            return [m.to_dto() for m in session.execute(stmt).scalars().all()]


class SqlApprovalStore(_SqlStoreBase):
    """ApprovalStore backed by ``approval_requests`` and ``approval_history``."""

    def save_approval_request(
        self,
        request: ApprovalRequest,
        expected_version: int | None = None,
        entries: Iterable[ApprovalHistoryEntry] = (),
    ) -> ApprovalRequest:
        """Insert or update ``request`` and append ``entries`` in one transaction."""
        with self._scope("save_approval_request") as session:
            existing = session.get(ApprovalRequestModel, request.request_id)

            if existing is None:
                if expected_version not in (None, 0):
                    raise OptimisticLockError(
                        "ApprovalRequest", request.request_id, expected_version, 0,
                    )
                session.add(ApprovalRequestModel.from_dto(request))
                try:
                    session.flush()
                except IntegrityError:
                    session.rollback()
                    raise OptimisticLockError(
                        "ApprovalRequest", request.request_id, expected_version or 0, -1,
                    ) from None
            else:
                stmt = update(ApprovalRequestModel).where(
                    ApprovalRequestModel.request_id == request.request_id,
                )
                if expected_version is not None:
                    stmt = stmt.where(ApprovalRequestModel.version == expected_version)
                result = session.execute(
                    stmt.values(**ApprovalRequestModel.column_values(request)),
                )
                if result.rowcount == 0:
                    raise OptimisticLockError(
                        "ApprovalRequest", request.request_id,
                        expected_version if expected_version is not None else -1,
                        existing.version,
                    )
                session.expire(existing)

            session.flush()
            for entry in entries:
                _add_history(session, entry)
            session.expire_all()
            model = session.get(ApprovalRequestModel, request.request_id)
            return model.to_dto()

    def get_approval_request(self, request_id: str) -> ApprovalRequest:
        with self._scope("get_approval_request") as session:
            model = session.get(ApprovalRequestModel, request_id)
            if model is None:
                raise ApprovalRequestNotFoundError(request_id)
            return model.to_dto()

    def find_by_reservation(self, reservation_id: str) -> list[ApprovalRequest]:
        stmt = (
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.reservation_id == reservation_id)
            .order_by(ApprovalRequestModel.requested_at, ApprovalRequestModel.request_id)
        )
        with self._scope("find_by_reservation") as session:
            return [m.to_dto() for m in session.execute(stmt).scalars().all()]

    def list_open_requests(self) -> list[ApprovalRequest]:
        stmt = (
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.status.in_(_OPEN_VALUES))
            .order_by(ApprovalRequestModel.requested_at, ApprovalRequestModel.request_id)
        )
        with self._scope("list_open_requests") as session:
            return [m.to_dto() for m in session.execute(stmt).scalars().all()]

    def append_history_entry(self, entry: ApprovalHistoryEntry) -> None:
        with self._scope("append_history_entry") as session:
            if session.get(ApprovalRequestModel, entry.request_id) is None:
                raise ApprovalRequestNotFoundError(entry.request_id)
            _add_history(session, entry)


def _add_history(session: Session, entry: ApprovalHistoryEntry) -> None:
    duplicate = session.execute(
        select(ApprovalHistoryModel.seq).where(
            ApprovalHistoryModel.entry_id == entry.entry_id,
        )
    ).first()
    if duplicate is not None:
        raise ImmutabilityViolationError(
            "ApprovalHistoryEntry", entry.entry_id,
            "History entries are append-only -- cannot overwrite",
        )
    session.add(ApprovalHistoryModel.from_dto(entry))
    session.flush()
