"""
Module: booking_kernel.models.approval
Responsibility: ORM persistence for approval requests and their history.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ (for DTO conversion) only.

Invariants enforced:
    - DB check constraint limits status values to the approval lifecycle.
    - ``version`` is bumped by the store on every saved transition; the
      store's UPDATE is conditioned on the expected version.
    - History rows are append-only: ORM listeners reject UPDATE and DELETE.

Failure modes:
    - ImmutabilityViolationError on history UPDATE/DELETE.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from booking_kernel.db.base import Base
from booking_kernel.domain.approval import (
    ApprovalAction,
    ApprovalHistoryEntry,
    ApprovalPriority,
    ApprovalRequest,
    ApprovalStatus,
)
from booking_kernel.exceptions import ImmutabilityViolationError


class ApprovalRequestModel(Base):
    """Persistent approval request.

    Guarantees:
        - Terminal statuses are never left (enforced by the workflow engine).
        - ``history`` is a read-only view ordered by append sequence.
    """

    __tablename__ = "approval_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'in_review', 'approved', 'rejected', "
            "'cancelled', 'expired')",
            name="ck_approval_requests_valid_status",
        ),
        Index("ix_approval_requests_reservation", "reservation_id"),
        Index("ix_approval_requests_status_expiry", "status", "expires_at"),
    )

    request_id: Mapped[str] = mapped_column(primary_key=True)
    reservation_id: Mapped[str] = mapped_column(nullable=False)
    flow_id: Mapped[str] = mapped_column(String(100), nullable=False)
    requester_id: Mapped[str] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    current_level: Mapped[int] = mapped_column(Integer, nullable=False)
    max_level: Mapped[int] = mapped_column(Integer, nullable=False)
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default="medium")
    requested_at: Mapped[datetime] = mapped_column(nullable=False)
    level_entered_at: Mapped[datetime | None] = mapped_column(nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    awaiting_changes: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    history: Mapped[list["ApprovalHistoryModel"]] = relationship(
        "ApprovalHistoryModel",
        order_by="ApprovalHistoryModel.seq",
        lazy="selectin",
        viewonly=True,
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.request_id} reservation={self.reservation_id} "
            f"status={self.status} level={self.current_level}/{self.max_level}>"
        )

    def to_dto(self) -> ApprovalRequest:
        """Convert ORM model to frozen domain DTO."""
        return ApprovalRequest(
            request_id=self.request_id,
            reservation_id=self.reservation_id,
            flow_id=self.flow_id,
            requester_id=self.requester_id,
            status=ApprovalStatus(self.status),
            current_level=self.current_level,
            max_level=self.max_level,
            requested_at=self.requested_at,
            priority=ApprovalPriority(self.priority),
            level_entered_at=self.level_entered_at,
            expires_at=self.expires_at,
            awaiting_changes=self.awaiting_changes,
            resolved_at=self.resolved_at,
            version=self.version,
            history=tuple(h.to_dto() for h in self.history),
        )

    @staticmethod
    def column_values(dto: ApprovalRequest) -> dict:
        """Column values for INSERT/UPDATE; history is never written here."""
        return {
            "reservation_id": dto.reservation_id,
            "flow_id": dto.flow_id,
            "requester_id": dto.requester_id,
            "status": dto.status.value,
            "current_level": dto.current_level,
            "max_level": dto.max_level,
            "priority": dto.priority.value,
            "requested_at": dto.requested_at,
            "level_entered_at": dto.level_entered_at,
            "expires_at": dto.expires_at,
            "awaiting_changes": dto.awaiting_changes,
            "resolved_at": dto.resolved_at,
            "version": dto.version,
        }

    @classmethod
    def from_dto(cls, dto: ApprovalRequest) -> ApprovalRequestModel:
        """Create ORM model from domain DTO."""
        return cls(request_id=dto.request_id, **cls.column_values(dto))


class ApprovalHistoryModel(Base):
    """Persistent approval history entry. Append-only."""

    __tablename__ = "approval_history"

    __table_args__ = (
        Index("ix_approval_history_request", "request_id", "seq"),
    )

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entry_id: Mapped[str] = mapped_column(nullable=False, unique=True)
    request_id: Mapped[str] = mapped_column(
        ForeignKey("approval_requests.request_id"), nullable=False,
    )
    action: Mapped[str] = mapped_column(String(30), nullable=False)
    performed_by: Mapped[str] = mapped_column(nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(nullable=False)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    acting_role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    delegate_to: Mapped[str | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<ApprovalHistory {self.entry_id} request={self.request_id} "
            f"action={self.action} level={self.level}>"
        )

    def to_dto(self) -> ApprovalHistoryEntry:
        return ApprovalHistoryEntry(
            entry_id=self.entry_id,
            request_id=self.request_id,
            action=ApprovalAction(self.action),
            performed_by=self.performed_by,
            level=self.level,
            timestamp=self.timestamp,
            comments=self.comments,
            acting_role=self.acting_role,
            delegate_to=self.delegate_to,
        )

    @classmethod
    def from_dto(cls, dto: ApprovalHistoryEntry) -> ApprovalHistoryModel:
        return cls(
            entry_id=dto.entry_id,
            request_id=dto.request_id,
            action=dto.action.value,
            performed_by=dto.performed_by,
            level=dto.level,
            timestamp=dto.timestamp,
            comments=dto.comments,
            acting_role=dto.acting_role,
            delegate_to=dto.delegate_to,
        )


# =============================================================================
# ORM-Level Immutability for History (Append-Only)
# =============================================================================


@event.listens_for(ApprovalHistoryModel, "before_update")
def prevent_history_update(mapper, connection, target):
    """Prevent updates to approval history records."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalHistoryEntry",
        entity_id=str(target.entry_id),
        reason="Approval history is append-only -- cannot modify",
    )


@event.listens_for(ApprovalHistoryModel, "before_delete")
def prevent_history_delete(mapper, connection, target):
    """Prevent deletion of approval history records."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalHistoryEntry",
        entity_id=str(target.entry_id),
        reason="Approval history is append-only -- cannot delete",
    )
