"""
Clocks for the payments engine.

Services take a ``Clock`` in their constructor and never read wall-clock
time themselves.  Two rules depend on it: a schedule's payment date may not
be earlier than today, and a boletín is dated on the day it is created.
Tests pin both with ``DeterministicClock``.

All times are timezone-aware UTC.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone

_SECONDS_PER_DAY = 86_400


class Clock(ABC):
    """Source of the current instant and processing date."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    def today(self) -> date:
        """Processing date used for request dates and payment-date checks."""
        return self.now().date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    ``tick()`` moves one second forward, which is enough to give two
    operations distinct timestamps when a test cares about their order.
    """

    DEFAULT_START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __init__(self, fixed_time: datetime | None = None):
        start = fixed_time or self.DEFAULT_START
        if start.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware start time")
        self._current = start

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        self._current = time

    def advance(self, seconds: int = 1) -> None:
        self._current += timedelta(seconds=seconds)

    def advance_days(self, days: int) -> None:
        self.advance(days * _SECONDS_PER_DAY)

    def tick(self) -> datetime:
        self.advance(1)
        return self._current
