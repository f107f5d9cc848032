"""
Timestamp source for local writes.

updated_at is the primary conflict-resolution signal, so two local
writes must never share a stamp and a later write must never sort
before an earlier one, even if the wall clock steps backwards.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

_TICK = timedelta(microseconds=1)


def utc_now() -> datetime:
    """Current wall-clock time, timezone-aware UTC."""
    return datetime.now(timezone.utc)


class MonotonicClock:
    """
    Wall clock that never repeats or goes backwards.

    Each call returns max(source(), previous + 1µs).
    """

    def __init__(self, source: Optional[Callable[[], datetime]] = None):
        self._source = source or utc_now
        self._last: Optional[datetime] = None
        self._lock = threading.Lock()

    def now(self) -> datetime:
        return self.stamp_after(None)

    def stamp_after(self, previous: Optional[datetime]) -> datetime:
        """A fresh stamp strictly later than `previous` and every earlier stamp."""
        with self._lock:
            current = self._source()
            floor = self._last
            if previous is not None and (floor is None or previous > floor):
                floor = previous
            if floor is not None and current <= floor:
                current = floor + _TICK
            self._last = current
            return current


default_clock = MonotonicClock()
