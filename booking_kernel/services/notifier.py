"""Fire-and-forget notification dispatch."""

from __future__ import annotations

from typing import Any

from booking_kernel.domain.protocols import NotificationSink
from booking_kernel.logging_config import get_logger

logger = get_logger("services.notifier")

# Event names emitted by the coordinator and the approval workflow.
RESERVATION_CREATED = "reservation.created"
RESERVATION_STATUS_CHANGED = "reservation.status_changed"
RESERVATION_SERIES_CREATED = "reservation.series_created"
APPROVAL_SUBMITTED = "approval.submitted"
APPROVAL_TRANSITIONED = "approval.transitioned"


def safe_notify(sink: NotificationSink | None, event: str, payload: dict[str, Any]) -> None:
    """Deliver ``event`` to ``sink``; failures are logged, never raised."""
    if sink is None:
        return
    try:
        sink.notify(event, payload)
    except Exception:
        logger.exception(
            "notification_failed",
            extra={"event_name": event},
        )
