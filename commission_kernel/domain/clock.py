"""
Clock -- injectable time source for calculation runs.

Responsibility:
    Every timestamp the engine records (calculated_at, run started/finished,
    execution-history entries, replay reports) is taken from a ``Clock`` passed
    in by the caller.  Engine and domain code never call ``datetime.now()``.

Architecture position:
    Kernel > Domain.  ``SystemClock`` is the one place that touches the
    real wall clock.

Audit relevance:
    Replay reuses the timestamps stored at calculation time, so exports from
    a replay are only byte-identical when the original timestamps came from
    an explicit clock rather than from scattered ``now()`` calls.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta
from typing import Iterator


class Clock(ABC):
    """
    Abstract clock interface.

    Contract:
        ``now()`` returns a timezone-aware UTC ``datetime``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...


class SystemClock(Clock):
    """Production clock backed by the system time."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Guarantees:
        - ``now()`` returns the same value until ``advance()`` or
          ``set_time()`` is called.
        - ``tick()`` advances by exactly 1 second and returns the new time.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._fixed_time = fixed_time or datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)
        self._advance_seconds = 0

    def now(self) -> datetime:
        return self._fixed_time + timedelta(seconds=self._advance_seconds)

    def set_time(self, time: datetime) -> None:
        self._fixed_time = time
        self._advance_seconds = 0

    def advance(self, seconds: int = 1) -> None:
        self._advance_seconds += seconds

    def tick(self) -> datetime:
        """Advance by 1 second and return new time."""
        self.advance(1)
        return self.now()


class SequentialClock(Clock):
    """
    Clock that returns times from a predefined list, then repeats the last.

    Raises:
        ValueError: If initialized with an empty list.
    """

    def __init__(self, times: list[datetime]):
        if not times:
            raise ValueError("SequentialClock requires at least one time")
        self._times: Iterator[datetime] = iter(times)
        self._last_time: datetime | None = None

    def now(self) -> datetime:
        for value in self._times:
            self._last_time = value
            return value
        assert self._last_time is not None
        return self._last_time
