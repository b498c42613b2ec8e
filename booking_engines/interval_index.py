"""
booking_engines.interval_index -- Per-resource index of occupied windows.

Responsibility:
    Answer "which stored windows on this resource overlap this window?"
    quickly, and keep that answer current as reservations are inserted
    and removed.

Architecture position:
    Engines -- in-memory data structure, zero I/O.

Algorithm:
    Each resource keeps its entries sorted by ``(start, reservation_id)``
    together with the longest duration ever inserted for that resource.
    A stored window can only overlap ``[s, e)`` if its start lies in
    ``[s - longest, e)``, so a query bisects to ``s - longest`` and walks
    forward until a start reaches ``e``. Cost is O(log n + k + m) where k
    is the number of hits and m the number of long-window stragglers in
    the scanned band; insert/remove are O(n) list shifts, which stays
    cheap well past tens of thousands of windows per resource. The
    longest-duration bound is never shrunk on removal; it stays a valid
    (if looser) bound.

    ``StoreBackedIntervalIndex`` answers the same contract from
    ``ReservationStore.find_overlapping`` instead of memory.

Invariants enforced:
    - A reservation id appears at most once in the index.
    - Overlap uses half-open semantics via ``TimeWindow.overlaps``.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from bisect import bisect_left, insort
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from booking_kernel.domain.protocols import ReservationStore
from booking_kernel.domain.reservation import Reservation
from booking_kernel.domain.values import TimeWindow


@dataclass(frozen=True)
class IndexEntry:
    reservation_id: str
    resource_id: str
    window: TimeWindow


class IntervalIndex(ABC):
    """Contract shared by the in-memory and store-backed indexes."""

    @abstractmethod
    def query_entries(
        self,
        resource_id: str,
        window: TimeWindow,
        exclude_id: str | None = None,
    ) -> list[IndexEntry]:
        """Entries on ``resource_id`` overlapping ``window``, ascending by start."""
        ...

    @abstractmethod
    def insert(self, resource_id: str, reservation_id: str, window: TimeWindow) -> None:
        ...

    @abstractmethod
    def remove(self, reservation_id: str) -> bool:
        """Remove an entry; returns False if it was not indexed."""
        ...

    def query(
        self,
        resource_id: str,
        window: TimeWindow,
        exclude_id: str | None = None,
    ) -> list[TimeWindow]:
        return [e.window for e in self.query_entries(resource_id, window, exclude_id)]

    def bulk_load(self, reservations: Iterable[Reservation]) -> int:
        """Index every active reservation; returns how many were loaded."""
        loaded = 0
        for reservation in reservations:
            if reservation.is_active:
                self.insert(reservation.resource_id, reservation.reservation_id, reservation.window)
                loaded += 1
        return loaded


class _ResourceBucket:
    __slots__ = ("keys", "longest")

    def __init__(self) -> None:
        self.keys: list[tuple[datetime, str]] = []
        self.longest = timedelta(0)


class SortedIntervalIndex(IntervalIndex):
    """Sorted-list interval index with a per-resource duration bound."""

    def __init__(self) -> None:
        self._buckets: dict[str, _ResourceBucket] = {}
        self._entries: dict[str, IndexEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, reservation_id: object) -> bool:
        return reservation_id in self._entries

    def query_entries(
        self,
        resource_id: str,
        window: TimeWindow,
        exclude_id: str | None = None,
    ) -> list[IndexEntry]:
        with self._lock:
            bucket = self._buckets.get(resource_id)
            if bucket is None or not bucket.keys:
                return []

            lo = bisect_left(bucket.keys, (window.start - bucket.longest, ""))
            hits: list[IndexEntry] = []
            for start, reservation_id in bucket.keys[lo:]:
                if start >= window.end:
                    break
                if reservation_id == exclude_id:
                    continue
                entry = self._entries[reservation_id]
                if entry.window.overlaps(window):
                    hits.append(entry)
            return hits

    def insert(self, resource_id: str, reservation_id: str, window: TimeWindow) -> None:
        with self._lock:
            if reservation_id in self._entries:
                self._remove_locked(reservation_id)
            bucket = self._buckets.setdefault(resource_id, _ResourceBucket())
            insort(bucket.keys, (window.start, reservation_id))
            if window.duration > bucket.longest:
                bucket.longest = window.duration
            self._entries[reservation_id] = IndexEntry(reservation_id, resource_id, window)

    def remove(self, reservation_id: str) -> bool:
        with self._lock:
            return self._remove_locked(reservation_id)

    def _remove_locked(self, reservation_id: str) -> bool:
        entry = self._entries.pop(reservation_id, None)
        if entry is None:
            return False
        bucket = self._buckets[entry.resource_id]
        key = (entry.window.start, reservation_id)
        pos = bisect_left(bucket.keys, key)
        if pos < len(bucket.keys) and bucket.keys[pos] == key:
            del bucket.keys[pos]
        return True


class StoreBackedIntervalIndex(IntervalIndex):
    """Index answered by ``ReservationStore.find_overlapping``.

    Used when the store is the source of truth (a database shared by
    several processes). Inserts and removals are no-ops because the store
    reflects them once the reservation is saved or changes status.
    """

    def __init__(self, store: ReservationStore) -> None:
        self._store = store

    def query_entries(
        self,
        resource_id: str,
        window: TimeWindow,
        exclude_id: str | None = None,
    ) -> list[IndexEntry]:
        return [
            IndexEntry(r.reservation_id, r.resource_id, r.window)
            for r in self._store.find_overlapping(resource_id, window, exclude_id)
        ]

    def insert(self, resource_id: str, reservation_id: str, window: TimeWindow) -> None:
        return None

    def remove(self, reservation_id: str) -> bool:
        return True
