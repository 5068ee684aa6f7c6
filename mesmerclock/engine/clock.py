"""Clock sources.

Components take a clock in their constructor instead of calling ``time`` or
``datetime`` directly, so tests can drive hours of session time instantly.
``now()`` supplies the weekday/time-of-day the scheduler needs; ``monotonic()``
measures elapsed run time for sessions and ramps.
"""

from __future__ import annotations

import time
from datetime import datetime, timedelta
from typing import Optional, Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...

    def monotonic(self) -> float: ...


class SystemClock:
    """Wall clock backed by the local time zone."""

    def now(self) -> datetime:
        return datetime.now()

    def monotonic(self) -> float:
        return time.monotonic()


class ManualClock:
    """Deterministic clock for tests and dry runs.

    ``advance`` moves wall time and monotonic time together. ``set_now`` jumps
    the wall clock only (e.g. to test a scheduler window) and leaves elapsed
    time untouched.
    """

    def __init__(self, start: Optional[datetime] = None, monotonic_start: float = 0.0) -> None:
        self._now = start or datetime(2024, 1, 1, 12, 0, 0)  # a Monday
        self._mono = float(monotonic_start)

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._mono

    def advance(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("ManualClock cannot move backwards")
        self._mono += seconds
        self._now = self._now + timedelta(seconds=seconds)

    def set_now(self, value: datetime) -> None:
        self._now = value
