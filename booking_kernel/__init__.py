"""
Booking Kernel - Scheduling & Approval Engine

Time-bounded reservations of shared institutional resources with:
- Half-open interval conflict detection with buffer time
- Bounded recurrence expansion with partial-failure batch semantics
- Multi-level approval workflows with delegation, escalation and expiry
- Append-only approval history
- Per-resource and per-request serialization
"""

__version__ = "0.1.0"
