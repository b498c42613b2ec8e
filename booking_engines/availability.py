"""
booking_engines.availability -- Decide whether a window may be booked.

Responsibility:
    Evaluate one candidate window on one resource against the resource's
    availability rules and the windows already held in the interval index.

Architecture position:
    Engines -- pure decision layer. Reads the index and the injected clock;
    never mutates the index and never persists anything.

Evaluation order:
    1. duration >= min_duration_minutes     else DURATION_TOO_SHORT
    2. duration <= max_duration_minutes     else DURATION_TOO_LONG
    3. start <= now + max_advance_booking_days  else TOO_FAR_IN_ADVANCE
    4. overlap search with the candidate grown by the buffer on both
       sides                                else OVERLAP
    The first failing rule supplies ``reason``; the overlap search always
    runs so ``conflicts`` is populated for callers offering alternatives.

Invariants enforced:
    - ``allowed`` is True only when every rule passes and no conflict remains.
    - Growing the candidate by the buffer is equivalent to growing each
      stored window, because the overlap test is symmetric.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta

from booking_engines.interval_index import IntervalIndex
from booking_engines.tracer import traced_engine
from booking_kernel.domain.clock import Clock
from booking_kernel.domain.reservation import AvailabilityRules, Reservation
from booking_kernel.domain.scheduling import AvailabilityResult, DenialReason
from booking_kernel.domain.values import TimeWindow
from booking_kernel.exceptions import (
    BookingKernelError,
    DurationTooLongError,
    DurationTooShortError,
    OverlapError,
    ReservationNotFoundError,
    TooFarInAdvanceError,
)
from booking_kernel.logging_config import get_logger

logger = get_logger("engines.availability")


def evaluate_rules(
    window: TimeWindow,
    rules: AvailabilityRules,
    now: datetime,
) -> tuple[DenialReason, str] | None:
    """First rule the window breaks, as ``(reason, detail)``, or None."""
    minutes = window.duration_minutes

    if window.duration < timedelta(minutes=rules.min_duration_minutes):
        return (
            DenialReason.DURATION_TOO_SHORT,
            f"Duration {minutes:g} min is shorter than the minimum "
            f"{rules.min_duration_minutes} min",
        )

    if (
        rules.max_duration_minutes is not None
        and window.duration > timedelta(minutes=rules.max_duration_minutes)
    ):
        return (
            DenialReason.DURATION_TOO_LONG,
            f"Duration {minutes:g} min exceeds the maximum "
            f"{rules.max_duration_minutes} min",
        )

    if rules.max_advance_booking_days is not None:
        horizon = now + timedelta(days=rules.max_advance_booking_days)
        if window.start > horizon:
            return (
                DenialReason.TOO_FAR_IN_ADVANCE,
                f"Start {window.start.isoformat()} is beyond the booking horizon "
                f"{horizon.isoformat()}",
            )

    return None


def denial_to_error(
    result: AvailabilityResult,
    resource_id: str,
    window: TimeWindow,
    rules: AvailabilityRules,
    now: datetime,
) -> BookingKernelError:
    """Typed exception matching a denied result."""
    if result.reason == DenialReason.DURATION_TOO_SHORT:
        return DurationTooShortError(window.duration_minutes, rules.min_duration_minutes)
    if result.reason == DenialReason.DURATION_TOO_LONG:
        return DurationTooLongError(window.duration_minutes, rules.max_duration_minutes or 0)
    if result.reason == DenialReason.TOO_FAR_IN_ADVANCE:
        days = rules.max_advance_booking_days or 0
        return TooFarInAdvanceError(window.start, now + timedelta(days=days), days)
    return OverlapError(resource_id, window, result.conflicts)


class AvailabilityEngine:
    """
    Checks candidate windows against rules and the interval index.

    Contract:
        ``resolve_reservation`` maps an indexed reservation id to its
        current ``Reservation``; typically ``ReservationStore.get_reservation``.
    Non-goals:
        Does not lock. Callers needing check-then-insert atomicity hold
        the per-resource lock around this call and the insert.
    """

    def __init__(
        self,
        index: IntervalIndex,
        resolve_reservation: Callable[[str], Reservation],
        clock: Clock,
    ) -> None:
        self._index = index
        self._resolve = resolve_reservation
        self._clock = clock

    @traced_engine(
        "availability", "1.0",
        fingerprint_fields=("resource_id", "window", "rules", "exclude_id"),
    )
    def check_availability(
        self,
        resource_id: str,
        window: TimeWindow,
        rules: AvailabilityRules,
        exclude_id: str | None = None,
    ) -> AvailabilityResult:
        denial = evaluate_rules(window, rules, self._clock.now())
        conflicts = self.find_conflicts(resource_id, window, rules, exclude_id)

        if denial is not None:
            reason, detail = denial
            return AvailabilityResult(
                allowed=False, reason=reason, detail=detail, conflicts=conflicts,
            )

        if conflicts:
            return AvailabilityResult(
                allowed=False,
                reason=DenialReason.OVERLAP,
                detail=(
                    f"{len(conflicts)} active reservation(s) overlap {window} "
                    f"with a {rules.buffer_minutes_between_reservations} min buffer"
                ),
                conflicts=conflicts,
            )

        return AvailabilityResult(allowed=True)

    def find_conflicts(
        self,
        resource_id: str,
        window: TimeWindow,
        rules: AvailabilityRules,
        exclude_id: str | None = None,
    ) -> tuple[Reservation, ...]:
        padded = window.expanded(rules.buffer_minutes_between_reservations)
        conflicts: list[Reservation] = []
        for entry in self._index.query_entries(resource_id, padded, exclude_id):
            try:
                reservation = self._resolve(entry.reservation_id)
            except ReservationNotFoundError:
                reservation = None
            if reservation is None or not reservation.is_active:
                logger.warning(
                    "index_entry_stale",
                    extra={
                        "resource_id": resource_id,
                        "reservation_id": entry.reservation_id,
                    },
                )
                continue
            conflicts.append(reservation)
        return tuple(conflicts)
