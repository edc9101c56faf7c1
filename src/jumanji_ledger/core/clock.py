"""
Clocks

The billing engine never reads the time itself. Whoever drives it (the API,
the ticker, a test) passes ``now`` in from one of these.
"""

from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Optional


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """A clock that only moves when told to. Used for tests and replays."""

    def __init__(self, start: Optional[datetime] = None):
        start = start or datetime.now(timezone.utc)
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        self._now = start
        self._lock = Lock()

    def now(self) -> datetime:
        return self._now

    def set(self, moment: datetime) -> None:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        with self._lock:
            self._now = moment

    def advance(self, delta: Optional[timedelta] = None, **kwargs) -> datetime:
        """Move forward by ``delta`` or by timedelta keyword arguments."""
        step = delta if delta is not None else timedelta(**kwargs)
        with self._lock:
            self._now = self._now + step
            return self._now
