"""
Injectable time source.

Services stamp ledger entries, documents and events with ``clock.now()`` and
measure cancellation deadlines with ``clock.monotonic()``; nothing in the
kernel reads the system clock directly.  Tests drive a DeterministicClock so
timestamps and deadline expiry are reproducible.
"""

import time
from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta

DEFAULT_TEST_EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


class Clock(ABC):
    """Wall-clock time (always tz-aware UTC) plus a monotonic reading for deadlines."""

    @abstractmethod
    def now(self) -> datetime: ...

    @abstractmethod
    def monotonic(self) -> float: ...


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(UTC)

    def monotonic(self) -> float:
        return time.monotonic()


class DeterministicClock(Clock):
    """
    Frozen clock for tests.

    Both readings stand still until ``advance()`` moves them together, so an
    expired deadline and a later ``now()`` always agree.
    """

    def __init__(self, start: datetime | None = None):
        self._start = start or DEFAULT_TEST_EPOCH
        self._elapsed = 0.0

    def now(self) -> datetime:
        return self._start + timedelta(seconds=self._elapsed)

    def monotonic(self) -> float:
        return self._elapsed

    def advance(self, seconds: float = 1) -> None:
        if seconds < 0:
            raise ValueError("A clock cannot be moved backwards")
        self._elapsed += seconds
