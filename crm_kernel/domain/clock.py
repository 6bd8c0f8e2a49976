"""
Clock -- injectable source of "now".

Movement created_at, delivery attempted_at and webhook payload timestamps
all come from a Clock passed in by the caller.  SystemClock is the only
place that reads the wall clock.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_TEST_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current time, timezone-aware UTC."""


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    Tests use it so movement ordering and webhook timestamps are exact.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._current = fixed_time or DEFAULT_TEST_TIME

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        self._current = time

    def advance(self, seconds: int = 1) -> None:
        self._current += timedelta(seconds=seconds)

    def tick(self) -> datetime:
        """Advance one second and return the new time."""
        self.advance(1)
        return self._current
