"""SQLAlchemy ORM models for the booking kernel."""

from booking_kernel.models.approval import ApprovalHistoryModel, ApprovalRequestModel
from booking_kernel.models.reservation import ReservationModel

__all__ = [
    "ApprovalHistoryModel",
    "ApprovalRequestModel",
    "ReservationModel",
]
