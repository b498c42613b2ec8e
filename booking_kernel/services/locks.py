"""
KeyedLockManager -- per-key mutual exclusion.

Responsibility:
    Hand out one lock per key (a resource id, an approval request id) so
    that work on the same key serializes while work on different keys runs
    in parallel.

Architecture position:
    Kernel > Services -- in-process concurrency infrastructure.

Invariants enforced:
    - At most one holder per key at a time.
    - Locks for a key are created lazily under a registry lock, so two
      threads racing on a new key always receive the same lock.
    - Callers hold a single key at a time; the manager never nests keys.

Failure modes:
    - LockAcquisitionError if the lock is not acquired within the timeout.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from booking_kernel.exceptions import LockAcquisitionError
from booking_kernel.logging_config import get_logger

logger = get_logger("services.locks")


class KeyedLockManager:
    """Lazily created ``threading.Lock`` per key."""

    def __init__(self, name: str, default_timeout: float = 5.0) -> None:
        self.name = name
        self._default_timeout = default_timeout
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def acquire(self, key: str, timeout: float | None = None) -> Iterator[None]:
        """Hold the lock for ``key`` for the duration of the block.

        Raises:
            LockAcquisitionError: If not acquired within ``timeout`` seconds.
        """
        wait = self._default_timeout if timeout is None else timeout
        lock = self._lock_for(key)
        if not lock.acquire(timeout=wait):
            logger.warning(
                "lock_acquisition_timeout",
                extra={"lock_name": self.name, "lock_key": key, "timeout_seconds": wait},
            )
            raise LockAcquisitionError(f"{self.name}:{key}", wait)
        try:
            yield
        finally:
            lock.release()

    def is_locked(self, key: str) -> bool:
        with self._registry_lock:
            lock = self._locks.get(key)
        return lock is not None and lock.locked()
