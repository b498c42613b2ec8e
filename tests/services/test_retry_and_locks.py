"""
Tests for KeyedLockManager and call_with_retry.
"""

import threading

import pytest

from booking_kernel.exceptions import (
    LockAcquisitionError,
    OptimisticLockError,
    OverlapError,
    RetryExhaustedError,
)
from booking_kernel.services.locks import KeyedLockManager
from booking_kernel.services.retry import NO_RETRY, RetryPolicy, call_with_retry


class TestKeyedLockManager:

    def test_lock_held_inside_block(self):
        locks = KeyedLockManager("resource")

        with locks.acquire("room-1"):
            assert locks.is_locked("room-1")
        assert not locks.is_locked("room-1")

    def test_same_key_times_out_while_held(self, captured_logs):
        locks = KeyedLockManager("resource", default_timeout=0.05)
        held = threading.Event()
        release = threading.Event()

        def holder():
            with locks.acquire("room-1"):
                held.set()
                release.wait(2)

        t = threading.Thread(target=holder)
        t.start()
        held.wait(2)
        try:
            with pytest.raises(LockAcquisitionError) as exc_info:
                with locks.acquire("room-1"):
                    pass
        finally:
            release.set()
            t.join()

        assert exc_info.value.code == "LOCK_TIMEOUT"
        assert exc_info.value.key == "resource:room-1"
        assert any(r["message"] == "lock_acquisition_timeout" for r in captured_logs())

    def test_different_keys_do_not_block(self):
        locks = KeyedLockManager("resource", default_timeout=0.05)

        with locks.acquire("room-1"):
            with locks.acquire("room-2"):
                assert locks.is_locked("room-2")

    def test_lock_released_on_exception(self):
        locks = KeyedLockManager("resource")

        with pytest.raises(RuntimeError):
            with locks.acquire("room-1"):
                raise RuntimeError("boom")

        assert not locks.is_locked("room-1")


class TestCallWithRetry:

    def flaky(self, failures):
        calls = []

        def func():
            calls.append(1)
            if len(calls) <= failures:
                raise OptimisticLockError("ApprovalRequest", "apr-1", 1, 2)
            return "ok"

        return func, calls

    def test_succeeds_after_transient_failures(self, captured_logs):
        func, calls = self.flaky(2)
        delays = []

        result = call_with_retry(
            "op", func, RetryPolicy(max_attempts=3, initial_backoff_seconds=0.1), sleep=delays.append,
        )

        assert result == "ok"
        assert len(calls) == 3
        assert delays == [0.1, 0.2]
        scheduled = [r for r in captured_logs() if r["message"] == "retry_scheduled"]
        assert [r["attempt"] for r in scheduled] == [1, 2]

    def test_exhaustion_raises_chained_error(self):
        func, calls = self.flaky(10)

        with pytest.raises(RetryExhaustedError) as exc_info:
            call_with_retry("op", func, RetryPolicy(max_attempts=2), sleep=lambda _: None)

        assert len(calls) == 2
        assert exc_info.value.last_error_code == "OPTIMISTIC_LOCK_CONFLICT"
        assert isinstance(exc_info.value.__cause__, OptimisticLockError)

    def test_single_attempt_reraises_original(self):
        func, _ = self.flaky(1)

        with pytest.raises(OptimisticLockError):
            call_with_retry("op", func, NO_RETRY)

    def test_domain_errors_are_not_retried(self):
        calls = []

        def func():
            calls.append(1)
            raise OverlapError("room-1", None, ())

        with pytest.raises(OverlapError):
            call_with_retry("op", func, RetryPolicy(max_attempts=5), sleep=lambda _: None)
        assert len(calls) == 1

    def test_backoff_is_capped(self):
        policy = RetryPolicy(initial_backoff_seconds=0.5, max_backoff_seconds=1.0)
        assert [policy.backoff_for(n) for n in (1, 2, 3, 4)] == [0.5, 1.0, 1.0, 1.0]

    def test_max_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
