"""
Retry with backoff for infrastructure failures.

Responsibility:
    Re-run an operation that failed with an ``InfrastructureError`` (lock
    timeout, store failure, optimistic lock conflict) under a bounded,
    exponentially backed-off policy.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - Only InfrastructureError is retried. Validation, conflict, state and
      not-found errors propagate on the first attempt.
    - ``max_attempts`` is a hard bound; exhaustion raises
      RetryExhaustedError chained to the last failure.
    - Nothing committed by an earlier attempt is rolled back here.

Usage:
    policy = RetryPolicy(max_attempts=3, initial_backoff_seconds=0.05)
    reservation = call_with_retry(
        "create_single", lambda: self._create_locked(request), policy,
    )
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from booking_kernel.exceptions import InfrastructureError, RetryExhaustedError
from booking_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt bound and backoff schedule.

    Attempt ``n`` (1-based) that fails waits
    ``min(initial * multiplier ** (n - 1), max)`` seconds before the next.
    """

    max_attempts: int = 3
    initial_backoff_seconds: float = 0.05
    max_backoff_seconds: float = 1.0
    multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")

    def backoff_for(self, attempt: int) -> float:
        delay = self.initial_backoff_seconds * (self.multiplier ** (attempt - 1))
        return min(delay, self.max_backoff_seconds)


NO_RETRY = RetryPolicy(max_attempts=1)


def call_with_retry(
    operation: str,
    func: Callable[[], T],
    policy: RetryPolicy = NO_RETRY,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``func`` until it succeeds or the policy is exhausted.

    Raises:
        RetryExhaustedError: All attempts failed with InfrastructureError.
            A single-attempt policy re-raises the original error instead.
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return func()
        except InfrastructureError as exc:
            if policy.max_attempts == 1:
                raise
            if attempt == policy.max_attempts:
                logger.error(
                    "retry_exhausted",
                    extra={
                        "operation": operation,
                        "attempts": attempt,
                        "error_code": exc.code,
                    },
                )
                raise RetryExhaustedError(operation, attempt, exc) from exc

            delay = policy.backoff_for(attempt)
            logger.warning(
                "retry_scheduled",
                extra={
                    "operation": operation,
                    "attempt": attempt,
                    "max_attempts": policy.max_attempts,
                    "backoff_seconds": delay,
                    "error_code": exc.code,
                },
            )
            sleep(delay)

    raise AssertionError("unreachable")
