"""
Injectable time source.

Services never call ``datetime.now()``: challan numbers embed the issue
date, requisition windows compare against the current instant and every
audit row and stock movement is stamped.  Tests swap in
``DeterministicClock`` to pin all of these.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_TEST_INSTANT = datetime(2024, 6, 1, 10, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """``now()`` is always timezone-aware UTC."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Frozen clock that only moves when told to.

    Starts at 2024-06-01 10:00 UTC unless given another instant; a naive
    start is read as UTC.
    """

    def __init__(self, start: datetime | None = None):
        start = start or DEFAULT_TEST_INSTANT
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        self._current = start

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: float | timedelta = 1) -> datetime:
        """Move forward and return the new instant."""
        step = seconds if isinstance(seconds, timedelta) else timedelta(seconds=seconds)
        if step < timedelta(0):
            raise ValueError("DeterministicClock cannot move backwards")
        self._current += step
        return self._current
