"""
Kernel services: concurrency primitives, retry, notification dispatch and
the in-memory and SQLAlchemy implementations of the collaborator protocols.
"""

from booking_kernel.services.locks import KeyedLockManager
from booking_kernel.services.memory import (
    InMemoryApprovalStore,
    InMemoryReservationStore,
    RecordingNotificationSink,
    StaticResourceDirectory,
    StaticRoleDirectory,
)
from booking_kernel.services.notifier import safe_notify
from booking_kernel.services.retry import NO_RETRY, RetryPolicy, call_with_retry

__all__ = [
    "NO_RETRY",
    "InMemoryApprovalStore",
    "InMemoryReservationStore",
    "KeyedLockManager",
    "RecordingNotificationSink",
    "RetryPolicy",
    "StaticResourceDirectory",
    "StaticRoleDirectory",
    "call_with_retry",
    "safe_notify",
]
