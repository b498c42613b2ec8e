"""
Module: booking_kernel.models.reservation
Responsibility: ORM persistence for reservations.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ (for DTO conversion) only.

Invariants enforced:
    - DB check constraint limits status values to the reservation lifecycle.
    - DB check constraint keeps ``start_at < end_at``.
    - Covering index (resource_id, status, start_at) for overlap queries.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from booking_kernel.db.base import Base
from booking_kernel.domain.reservation import Reservation, ReservationStatus
from booking_kernel.domain.values import TimeWindow


class ReservationModel(Base):
    """Persistent reservation row."""

    __tablename__ = "reservations"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'in_progress', "
            "'completed', 'cancelled', 'rejected')",
            name="ck_reservations_valid_status",
        ),
        CheckConstraint("start_at < end_at", name="ck_reservations_window"),
        Index("ix_reservations_resource_status_start", "resource_id", "status", "start_at"),
        Index("ix_reservations_series", "series_id"),
    )

    reservation_id: Mapped[str] = mapped_column(primary_key=True)
    resource_id: Mapped[str] = mapped_column(nullable=False)
    requester_id: Mapped[str] = mapped_column(nullable=False)
    start_at: Mapped[datetime] = mapped_column(nullable=False)
    end_at: Mapped[datetime] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    series_id: Mapped[str | None] = mapped_column(nullable=True)
    purpose: Mapped[str] = mapped_column(Text, default="", nullable=False)
    created_at: Mapped[datetime | None] = mapped_column(nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Reservation {self.reservation_id} resource={self.resource_id} "
            f"[{self.start_at}, {self.end_at}) status={self.status}>"
        )

    def to_dto(self) -> Reservation:
        """Convert ORM model to frozen domain DTO."""
        return Reservation(
            reservation_id=self.reservation_id,
            resource_id=self.resource_id,
            requester_id=self.requester_id,
            window=TimeWindow(self.start_at, self.end_at),
            status=ReservationStatus(self.status),
            series_id=self.series_id,
            purpose=self.purpose,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    @classmethod
    def from_dto(cls, dto: Reservation) -> ReservationModel:
        """Create ORM model from domain DTO."""
        return cls(
            reservation_id=dto.reservation_id,
            resource_id=dto.resource_id,
            requester_id=dto.requester_id,
            start_at=dto.window.start,
            end_at=dto.window.end,
            status=dto.status.value,
            series_id=dto.series_id,
            purpose=dto.purpose,
            created_at=dto.created_at,
            updated_at=dto.updated_at,
        )

    def apply_dto(self, dto: Reservation) -> None:
        """Copy mutable fields from a DTO onto this row."""
        self.start_at = dto.window.start
        self.end_at = dto.window.end
        self.status = dto.status.value
        self.series_id = dto.series_id
        self.purpose = dto.purpose
        self.updated_at = dto.updated_at
