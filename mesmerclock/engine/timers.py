"""Periodic timer services.

Every periodic process (session tick, ramp tick, scheduler check) posts its
callback through a :class:`TimerService`, so all of them run serialized on one
loop. Two implementations:

- :class:`AsyncioTimerService` schedules on an asyncio event loop. With
  ``qasync`` that loop is the Qt event loop, so a GUI host gets the same
  single-threaded guarantee.
- :class:`ManualTimerService` fires timers when a test advances a
  :class:`~mesmerclock.engine.clock.ManualClock`.

A callback that raises is logged; its timer keeps firing.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Callable, Optional, Protocol

from .clock import ManualClock

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], None]


class TimerHandle(Protocol):
    @property
    def active(self) -> bool: ...

    def cancel(self) -> None: ...


class TimerService(Protocol):
    def call_every(self, interval_s: float, callback: TimerCallback, *, name: str = "") -> TimerHandle: ...


def _run_guarded(name: str, callback: TimerCallback) -> None:
    try:
        callback()
    except Exception as exc:
        logger.error(f"[timers] Timer '{name}' callback failed: {exc}", exc_info=True)


class _AsyncioTimer:
    def __init__(self, loop: asyncio.AbstractEventLoop, interval_s: float, callback: TimerCallback, name: str):
        self._loop = loop
        self._interval = interval_s
        self._callback = callback
        self.name = name
        self._handle: Optional[asyncio.TimerHandle] = None
        self._active = True
        self._next_due = loop.time() + interval_s
        self._schedule()

    @property
    def active(self) -> bool:
        return self._active

    def _schedule(self) -> None:
        # Fixed-rate: drift from slow callbacks is not accumulated
        delay = max(0.0, self._next_due - self._loop.time())
        self._handle = self._loop.call_later(delay, self._fire)

    def _fire(self) -> None:
        if not self._active:
            return
        _run_guarded(self.name, self._callback)
        if self._active:
            self._next_due += self._interval
            self._schedule()

    def cancel(self) -> None:
        self._active = False
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class AsyncioTimerService:
    """Timer service on an asyncio loop (the running loop if none is given)."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_every(self, interval_s: float, callback: TimerCallback, *, name: str = "") -> _AsyncioTimer:
        if interval_s <= 0:
            raise ValueError(f"Timer interval must be positive, got {interval_s}")
        timer = _AsyncioTimer(self.loop, interval_s, callback, name or getattr(callback, "__name__", "timer"))
        logger.debug(f"[timers] Scheduled '{timer.name}' every {interval_s}s")
        return timer


class _ManualTimer:
    def __init__(self, due: float, seq: int, interval_s: float, callback: TimerCallback, name: str):
        self.due = due
        self.seq = seq
        self.interval = interval_s
        self.callback = callback
        self.name = name
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        self._active = False


class ManualTimerService:
    """Timer service driven by :meth:`advance` on a manual clock.

    Due timers fire in (due time, creation order); the clock is moved to each
    due time before the callback runs, so callbacks observe exact elapsed time.
    """

    def __init__(self, clock: ManualClock) -> None:
        self.clock = clock
        self._timers: list[_ManualTimer] = []
        self._seq = itertools.count()

    def call_every(self, interval_s: float, callback: TimerCallback, *, name: str = "") -> _ManualTimer:
        if interval_s <= 0:
            raise ValueError(f"Timer interval must be positive, got {interval_s}")
        timer = _ManualTimer(
            self.clock.monotonic() + interval_s,
            next(self._seq),
            interval_s,
            callback,
            name or getattr(callback, "__name__", "timer"),
        )
        self._timers.append(timer)
        return timer

    def active_timers(self) -> list[str]:
        return [t.name for t in self._timers if t.active]

    def advance(self, seconds: float) -> None:
        """Move the clock forward by ``seconds``, firing every timer that comes due."""
        target = self.clock.monotonic() + seconds
        while True:
            self._timers = [t for t in self._timers if t.active]
            due = [t for t in self._timers if t.due <= target + 1e-9]
            if not due:
                break
            timer = min(due, key=lambda t: (t.due, t.seq))
            step = timer.due - self.clock.monotonic()
            if step > 0:
                self.clock.advance(step)
            _run_guarded(timer.name, timer.callback)
            timer.due += timer.interval
        remaining = target - self.clock.monotonic()
        if remaining > 0:
            self.clock.advance(remaining)
