"""
Cancellation tokens for kernel operations.

A caller hands a ``CancellationToken`` to any mutating operation.  The unit of
work checks it before every attempt and before commit, and services check it
between lines of multi-line work.  A cancelled or expired token aborts the
operation by raising ``OperationCancelledError``; the surrounding transaction
rolls back, so no partial snapshot mutation survives.
"""

import threading

from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.exceptions import OperationCancelledError


class CancellationToken:
    """Cooperative cancel signal with an optional deadline."""

    def __init__(self, clock: Clock | None = None, deadline: float | None = None):
        self._clock = clock or SystemClock()
        self._deadline = deadline
        self._cancelled = threading.Event()
        self._reason: str | None = None

    @classmethod
    def with_timeout(cls, seconds: float, clock: Clock | None = None) -> "CancellationToken":
        """Token that expires ``seconds`` from now on ``clock``."""
        if seconds <= 0:
            raise ValueError("timeout must be positive")
        clock = clock or SystemClock()
        return cls(clock=clock, deadline=clock.monotonic() + seconds)

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self._reason = reason
        self._cancelled.set()

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set() or self.is_expired

    @property
    def is_expired(self) -> bool:
        return self._deadline is not None and self._clock.monotonic() >= self._deadline

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None when there is none."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock.monotonic())

    def raise_if_cancelled(self, operation: str) -> None:
        if self._cancelled.is_set():
            raise OperationCancelledError(operation, self._reason or "cancelled")
        if self.is_expired:
            raise OperationCancelledError(operation, "deadline exceeded")


NEVER_CANCELLED = CancellationToken()
