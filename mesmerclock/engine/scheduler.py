"""Weekly auto-start scheduler.

Every ``interval_s`` (and once immediately on :meth:`Scheduler.start`) the
scheduler compares the clock against the configured window and asks the
engine to start or stop. Two runtime flags keep it from fighting the user:

- ``auto_started``: only engines the scheduler started are stopped by it,
  and it starts at most once per window.
- ``manually_suppressed_this_window``: a manual stop inside the window keeps
  the scheduler from restarting until the window is left and re-entered.

Both flags reset whenever a tick observes the clock outside the window.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from ..config import ScheduleConfig, format_time_of_day
from ..logging_utils import PerfTracer
from ..session.events import SessionEvent, SessionEventEmitter, SessionEventType

if TYPE_CHECKING:
    from .clock import Clock
    from .control import EngineControl
    from .timers import TimerHandle, TimerService

logger = logging.getLogger(__name__)


def is_in_window(now: datetime, config: ScheduleConfig) -> bool:
    """True if ``now`` falls inside the weekly window.

    Same-day windows are half-open ``[start, end)``; when ``end < start`` the
    window wraps past midnight. ``start == end`` is an empty window. The
    weekday checked is that of ``now`` itself, so the after-midnight part of
    a wrapping window belongs to the following day.
    """
    if not config.active_days[now.weekday()]:
        return False
    t = now.time()
    start, end = config.start_time, config.end_time
    if end >= start:
        return start <= t < end
    return t >= start or t < end


@dataclass
class SchedulerRuntimeState:
    auto_started: bool = False
    manually_suppressed_this_window: bool = False

    def reset(self) -> None:
        self.auto_started = False
        self.manually_suppressed_this_window = False


class Scheduler:
    def __init__(
        self,
        config: ScheduleConfig,
        engine: EngineControl,
        clock: Clock,
        timers: TimerService,
        event_emitter: Optional[SessionEventEmitter] = None,
        *,
        interval_s: float = 30.0,
    ) -> None:
        if interval_s <= 0:
            raise ValueError(f"interval_s must be positive, got {interval_s}")
        self.config = config
        self.engine = engine
        self.clock = clock
        self.timers = timers
        self.event_emitter = event_emitter or SessionEventEmitter()
        self.interval_s = interval_s
        self.runtime = SchedulerRuntimeState()
        self._timer: Optional[TimerHandle] = None
        self._perf = PerfTracer("scheduler")

    @property
    def running(self) -> bool:
        return self._timer is not None

    @property
    def perf_tracer(self) -> PerfTracer:
        return self._perf

    def start(self) -> bool:
        """Check once right away, then every ``interval_s``."""
        if self._timer is not None:
            return False
        logger.info(
            f"[scheduler] Watching {format_time_of_day(self.config.start_time)}-"
            f"{format_time_of_day(self.config.end_time)} "
            f"({'enabled' if self.config.enabled else 'disabled'})"
        )
        self.tick()
        self._timer = self.timers.call_every(self.interval_s, self.tick, name="scheduler.tick")
        return True

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def update_config(self, config: ScheduleConfig) -> None:
        """Swap the window definition; takes effect on the next tick."""
        self.config = config

    def in_window(self) -> bool:
        return is_in_window(self.clock.now(), self.config)

    def tick(self) -> None:
        if not self.config.enabled:
            return
        with self._perf.span("scheduler.tick", category="scheduler"):
            now = self.clock.now()
            inside = is_in_window(now, self.config)
            running = self.engine.is_running
            rt = self.runtime
            logger.debug(
                f"[tick.trace] [scheduler] now={now:%a %H:%M:%S} inside={inside} running={running} "
                f"auto={rt.auto_started} suppressed={rt.manually_suppressed_this_window}"
            )

            if inside and not running and not rt.auto_started and not rt.manually_suppressed_this_window:
                logger.info("[scheduler] Window open; starting engine")
                if self.engine.request_start():
                    rt.auto_started = True
                    self.event_emitter.emit(SessionEvent(
                        SessionEventType.SCHEDULER_AUTO_START, data={"at": now.isoformat()}
                    ))
                else:
                    logger.warning("[scheduler] Engine refused auto-start")
            elif not inside and running and rt.auto_started:
                logger.info("[scheduler] Window closed; stopping engine")
                self.engine.request_stop()
                rt.auto_started = False
                self.event_emitter.emit(SessionEvent(
                    SessionEventType.SCHEDULER_AUTO_STOP, data={"at": now.isoformat()}
                ))
            elif not inside:
                rt.reset()

    def notify_manual_stop(self) -> None:
        """User stopped the engine; stay off for the rest of this window."""
        if self.config.enabled and self.in_window():
            self.runtime.manually_suppressed_this_window = True
            logger.info("[scheduler] Manual stop inside window; auto-start suppressed until next window")

    def notify_manual_start(self) -> None:
        if self.runtime.manually_suppressed_this_window:
            logger.info("[scheduler] Manual start clears suppression")
        self.runtime.manually_suppressed_this_window = False
