"""
clock.py - Time source and identifier generation

Every registry receives a Clock through its constructor and never reads the
system time directly. ManualClock makes TTL and heartbeat behaviour testable
without sleeping.
"""

from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol, runtime_checkable
import threading
import uuid


@runtime_checkable
class Clock(Protocol):
    """Source of the current time. Implementations return timezone-aware UTC datetimes."""

    def now(self) -> datetime:
        ...


class SystemClock:
    """
    Wall clock that never moves backwards.

    If the system time steps back (NTP adjustment), the last observed time is
    returned until the wall clock catches up, so TTL checks stay monotonic.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._last: Optional[datetime] = None

    def now(self) -> datetime:
        current = datetime.now(timezone.utc)
        with self._lock:
            if self._last is not None and current < self._last:
                return self._last
            self._last = current
            return current


class ManualClock:
    """
    Deterministic clock for tests and replay.

    Time only changes through advance() or set_time(), and can only move forward.
    """

    def __init__(self, start: Optional[datetime] = None):
        self._time = start or datetime(2025, 1, 1, tzinfo=timezone.utc)
        if self._time.tzinfo is None:
            self._time = self._time.replace(tzinfo=timezone.utc)
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._time

    def advance(self, seconds: float = 0, delta: Optional[timedelta] = None) -> datetime:
        """
        Move the clock forward.

        Args:
            seconds: Seconds to add.
            delta: Additional timedelta to add.

        Returns:
            The new current time.

        Raises:
            ValueError: If the total step is negative.
        """
        step = timedelta(seconds=seconds) + (delta or timedelta(0))
        if step < timedelta(0):
            raise ValueError(f"Cannot move time backwards by {step}")
        with self._lock:
            self._time = self._time + step
            return self._time

    def set_time(self, new_time: datetime) -> None:
        if new_time.tzinfo is None:
            new_time = new_time.replace(tzinfo=timezone.utc)
        with self._lock:
            if new_time < self._time:
                raise ValueError(
                    f"Cannot move time backwards: {new_time} < {self._time}"
                )
            self._time = new_time


def epoch_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def new_id(prefix: str, clock: Clock) -> str:
    """
    Generate an opaque identifier.

    Format: {prefix}_{epoch_millis}_{random}. The random suffix keeps ids
    unique when many are created within the same millisecond.
    """
    return f"{prefix}_{epoch_millis(clock.now())}_{uuid.uuid4().hex[:10]}"
