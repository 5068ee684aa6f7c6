"""Intensity ramp.

Linearly scales a set of numeric parameters from their captured baseline
towards ``baseline * multiplier`` over a fixed duration, capped by each
parameter's ceiling in the store. Stopping always writes the captured
baseline values back unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, Optional, Protocol

from ..logging_utils import PerfTracer
from ..session.events import SessionEvent, SessionEventEmitter, SessionEventType

if TYPE_CHECKING:
    from .clock import Clock
    from .parameters import ParameterStore
    from .timers import TimerHandle, TimerService


class _StopRequester(Protocol):
    def request_stop(self) -> bool: ...


@dataclass
class RampState:
    """Runtime-only state of an active ramp."""

    baseline_values: dict[str, float]
    started_at: float
    duration_minutes: float
    multiplier: float
    linked_parameters: tuple[str, ...]
    end_on_complete: bool = False
    completed: bool = False
    current_multiplier: float = 1.0
    last_values: dict[str, float] = field(default_factory=dict)


class IntensityRamp:
    """Periodic linear escalation of linked parameters.

    Usage:
        ramp = IntensityRamp(store, timers, clock, engine_control=engine)
        ramp.start(["flash_opacity"], duration_minutes=30, multiplier=2.0)
        ...
        ramp.stop()  # restores baselines
    """

    def __init__(
        self,
        store: ParameterStore,
        timers: TimerService,
        clock: Clock,
        event_emitter: Optional[SessionEventEmitter] = None,
        *,
        engine_control: Optional[_StopRequester] = None,
        tick_interval_s: float = 2.0,
    ) -> None:
        if tick_interval_s <= 0:
            raise ValueError(f"tick_interval_s must be positive, got {tick_interval_s}")
        self.store = store
        self.timers = timers
        self.clock = clock
        self.event_emitter = event_emitter or SessionEventEmitter()
        self.engine_control = engine_control
        self.tick_interval_s = tick_interval_s
        self.logger = logging.getLogger(__name__)
        self._state: Optional[RampState] = None
        self._timer: Optional[TimerHandle] = None
        self._perf = PerfTracer("ramp")

    @property
    def active(self) -> bool:
        return self._state is not None

    @property
    def state(self) -> Optional[RampState]:
        return self._state

    @property
    def perf_tracer(self) -> PerfTracer:
        return self._perf

    def start(
        self,
        linked_parameters: Iterable[str],
        duration_minutes: float,
        multiplier: float,
        end_on_complete: bool = False,
    ) -> bool:
        """Capture baselines and begin ticking. Returns False if already active or invalid."""
        if self._state is not None:
            self.logger.warning("[ramp] Cannot start: ramp already active")
            return False
        if duration_minutes <= 0:
            self.logger.warning(f"[ramp] Cannot start: duration must be positive (got {duration_minutes})")
            return False
        if multiplier <= 0:
            self.logger.warning(f"[ramp] Cannot start: multiplier must be positive (got {multiplier})")
            return False

        baseline: dict[str, float] = {}
        for name in linked_parameters:
            if name in baseline:
                continue
            try:
                baseline[name] = self.store.get(name)
            except KeyError:
                self.logger.warning(f"[ramp] Unknown parameter '{name}' skipped")

        self._state = RampState(
            baseline_values=baseline,
            started_at=self.clock.monotonic(),
            duration_minutes=float(duration_minutes),
            multiplier=float(multiplier),
            linked_parameters=tuple(baseline),
            end_on_complete=bool(end_on_complete),
        )
        self._timer = self.timers.call_every(self.tick_interval_s, self.tick, name="ramp.tick")
        self.logger.info(
            f"[ramp] Started: x{multiplier:g} over {duration_minutes:g} min on {', '.join(baseline) or 'nothing'}"
            f"{' (ends session)' if end_on_complete else ''}"
        )
        self.event_emitter.emit(SessionEvent(
            SessionEventType.RAMP_START,
            data={
                "parameters": list(baseline),
                "duration_minutes": duration_minutes,
                "multiplier": multiplier,
                "end_on_complete": bool(end_on_complete),
            },
        ))
        return True

    def progress(self) -> float:
        state = self._state
        if state is None:
            return 0.0
        elapsed_minutes = (self.clock.monotonic() - state.started_at) / 60.0
        return max(0.0, min(elapsed_minutes / state.duration_minutes, 1.0))

    def tick(self) -> None:
        state = self._state
        if state is None:
            return
        with self._perf.span("ramp.tick", category="ramp"):
            progress = self.progress()
            current = 1.0 + (state.multiplier - 1.0) * progress
            state.current_multiplier = current
            for name, base in state.baseline_values.items():
                try:
                    value = min(base * current, self.store.max_allowed(name))
                    self.store.set(name, value)
                except Exception as exc:
                    self.logger.error(f"[ramp] Failed to write {name}: {exc}", exc_info=True)
                    continue
                state.last_values[name] = value
            self.logger.debug(f"[tick.trace] [ramp] progress={progress:.3f} mult={current:.3f}")
            self.event_emitter.emit(SessionEvent(SessionEventType.RAMP_PROGRESS, data=self.snapshot()))

            if progress >= 1.0 and not state.completed and self._state is state:
                state.completed = True
                self.logger.info("[ramp] Reached target multiplier")
                self.event_emitter.emit(SessionEvent(
                    SessionEventType.RAMP_COMPLETE,
                    data={"multiplier": state.multiplier, "end_on_complete": state.end_on_complete},
                ))
                if state.end_on_complete:
                    if self.engine_control is not None:
                        self.logger.info("[ramp] Requesting engine stop")
                        self.engine_control.request_stop()
                    else:
                        self.stop()

    def stop(self) -> bool:
        """Cancel ticking and restore captured baselines exactly. Idempotent."""
        state = self._state
        if state is None:
            return False
        self._state = None
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for name, value in state.baseline_values.items():
            try:
                self.store.set(name, value)
            except Exception as exc:
                self.logger.error(f"[ramp] Failed to restore {name}: {exc}", exc_info=True)
        self.logger.info(f"[ramp] Stopped; restored {len(state.baseline_values)} parameter(s)")
        self.event_emitter.emit(SessionEvent(
            SessionEventType.RAMP_STOP,
            data={"restored": dict(state.baseline_values), "completed": state.completed},
        ))
        return True

    def snapshot(self) -> Optional[dict[str, Any]]:
        """Progress info for display, or None when inactive."""
        state = self._state
        if state is None:
            return None
        progress = self.progress()
        elapsed_s = max(0.0, self.clock.monotonic() - state.started_at)
        return {
            "progress": progress,
            "current_multiplier": 1.0 + (state.multiplier - 1.0) * progress,
            "remaining_seconds": max(0.0, state.duration_minutes * 60.0 - elapsed_s),
            "values": dict(state.last_values),
        }
