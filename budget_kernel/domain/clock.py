"""
Clock -- Injectable time source.

Responsibility:
    Gives domain and service code a single place to read "now" and "today"
    so delegation windows, phase timing and audit timestamps are testable.

Architecture position:
    Kernel > Domain -- pure functional core. SystemClock is the one
    sanctioned I/O boundary for time.

Failure modes:
    - SequentialClock raises ValueError when constructed with no times.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from typing import Iterable


class Clock(ABC):
    """
    Abstract clock interface.

    Contract:
        Services receive a Clock through their constructor and never call
        ``datetime.now()`` or ``date.today()`` themselves.

    Guarantees:
        - ``now()`` returns a timezone-aware ``datetime``.
        - ``today()`` is the calendar date of ``now()`` in its own timezone.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...

    def now_utc(self) -> datetime:
        """Get the current time normalized to UTC."""
        return self.now().astimezone(timezone.utc)

    def today(self) -> date:
        """Get the current calendar date."""
        return self.now().date()


class SystemClock(Clock):
    """Production clock returning the real UTC time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Guarantees:
        - ``now()`` returns the same value until ``advance()``,
          ``advance_days()`` or ``set_time()`` is called.
        - ``tick()`` advances by exactly one second and returns the new time.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._time = fixed_time or datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._time

    def set_time(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        self._time = time

    def advance(self, seconds: int = 1) -> None:
        """Advance the clock by the specified seconds."""
        self._time += timedelta(seconds=seconds)

    def advance_days(self, days: int = 1) -> None:
        """Advance the clock by whole days."""
        self._time += timedelta(days=days)

    def tick(self) -> datetime:
        """Advance by 1 second and return new time."""
        self.advance(1)
        return self._time


class SequentialClock(Clock):
    """
    Clock that returns times from a predefined sequence.

    After exhaustion it keeps returning the last value.
    """

    def __init__(self, times: Iterable[datetime]):
        self._times = list(times)
        if not self._times:
            raise ValueError("SequentialClock requires at least one time")
        self._index = 0

    def now(self) -> datetime:
        value = self._times[min(self._index, len(self._times) - 1)]
        self._index += 1
        return value
