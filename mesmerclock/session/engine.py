"""
Session Engine - Plays a TimelineModel against the feature gateway.

The SessionEngine drives one timeline at a time:
- Captures the gateway state of every feature the timeline touches
- Applies minute-0 events immediately, then ticks on the timer service
- Applies events as session minutes are crossed (STOP before START on ties)
- Restores the captured state when the session completes or is stopped
- Emits progress/phase/completion events for UI and logging

Architecture:
    timer fires every ``tick_interval_s`` of wall time
    -> elapsed session seconds = wall elapsed * time_scale
    -> apply all events with minute <= floor(elapsed / 60)
    -> emit PROGRESS_UPDATED (and PHASE_CHANGED if anything fired)
    -> complete once elapsed minutes reach the duration

A failing feature never halts the session: the error is logged, published as
FEATURE_ERROR and the remaining events of that tick still run.

With a parameter store attached, a START carrying ``start_value``/``end_value``
interpolates its feature's ramp parameter linearly over the segment (START
minute to its STOP, or to the session end). Those parameters are restored
with the feature baseline.
"""

from __future__ import annotations
import logging
import math
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Mapping, Optional

import psutil

from ..features import FEATURE_CATALOG, FeatureDefinition, get_feature
from ..logging_utils import PerfTracer
from .difficulty import DEFAULT_POLICY, DifficultyPolicy, DifficultyResult, calculate_difficulty
from .events import SessionEvent, SessionEventEmitter, SessionEventType
from .timeline import TimelineEvent, TimelineModel

if TYPE_CHECKING:
    from ..engine.clock import Clock
    from ..engine.gateway import FeatureGateway
    from ..engine.parameters import ParameterStore
    from ..engine.timers import TimerHandle, TimerService


class SessionState(Enum):
    """Session execution states.

    COMPLETED and STOPPED_EARLY are resting states: a new session may start
    from them directly (the engine passes through IDLE implicitly).
    """
    IDLE = auto()
    RUNNING = auto()
    COMPLETED = auto()
    STOPPED_EARLY = auto()


class Rejection(Enum):
    """Why the last request was refused."""
    ALREADY_RUNNING = auto()
    NOT_RUNNING = auto()
    INVALID_TIMELINE = auto()


@dataclass
class ValueSegment:
    """Linear value ramp of one parameter across a timeline segment."""
    feature_id: str
    parameter: str
    start_minute: int
    end_minute: int
    start_value: float
    end_value: float
    last_value: Optional[float] = None

    def value_at(self, minute: float) -> float:
        span = self.end_minute - self.start_minute
        progress = 1.0 if span <= 0 else (minute - self.start_minute) / span
        progress = max(0.0, min(progress, 1.0))
        return self.start_value + (self.end_value - self.start_value) * progress

    def covers(self, minute: float) -> bool:
        return self.start_minute <= minute < self.end_minute


class SessionEngine:
    """
    Execution engine for timeline playback.

    Usage:
        engine = SessionEngine(gateway, timers, clock)
        engine.event_emitter.subscribe(SessionEventType.SESSION_COMPLETED, on_done)
        engine.start_session(timeline)
    """

    def __init__(
        self,
        gateway: FeatureGateway,
        timers: TimerService,
        clock: Clock,
        event_emitter: Optional[SessionEventEmitter] = None,
        *,
        store: Optional[ParameterStore] = None,
        tick_interval_s: float = 1.0,
        time_scale: float = 1.0,
        catalog: Mapping[str, FeatureDefinition] = FEATURE_CATALOG,
        policy: DifficultyPolicy = DEFAULT_POLICY,
        memory_sample_every: int = 60,
        memory_warn_mb: float = 1024.0,
    ):
        if tick_interval_s <= 0:
            raise ValueError(f"tick_interval_s must be positive, got {tick_interval_s}")
        if time_scale <= 0:
            raise ValueError(f"time_scale must be positive, got {time_scale}")
        self.gateway = gateway
        self.store = store
        self.timers = timers
        self.clock = clock
        self.event_emitter = event_emitter or SessionEventEmitter()
        self.tick_interval_s = tick_interval_s
        self.time_scale = time_scale
        self.catalog = catalog
        self.policy = policy

        self.logger = logging.getLogger(__name__)

        self._state = SessionState.IDLE
        self.last_rejection: Optional[Rejection] = None

        self._model: Optional[TimelineModel] = None
        self._schedule: list[TimelineEvent] = []
        self._next_index = 0
        self._baseline: dict[str, bool] = {}
        self._segments: list[ValueSegment] = []
        self._parameter_baseline: dict[str, float] = {}
        self._started_at = 0.0
        self._elapsed_s = 0.0
        self._timer: Optional[TimerHandle] = None
        self._last_result: Optional[DifficultyResult] = None

        self._perf = PerfTracer("session")
        self._process = psutil.Process()
        self._memory_samples: list[float] = []
        self._memory_sample_every = max(1, int(memory_sample_every))
        self._memory_warn_mb = memory_warn_mb
        self._tick_count = 0

    # ----- properties -----

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is SessionState.RUNNING

    @property
    def model(self) -> Optional[TimelineModel]:
        """Frozen copy of the timeline being (or last) played."""
        return self._model

    @property
    def elapsed_seconds(self) -> float:
        return self._elapsed_s

    @property
    def last_result(self) -> Optional[DifficultyResult]:
        return self._last_result

    @property
    def perf_tracer(self) -> PerfTracer:
        return self._perf

    def progress(self) -> dict[str, Any]:
        duration_s = (self._model.duration_minutes * 60.0) if self._model else 0.0
        elapsed = min(self._elapsed_s, duration_s)
        remaining = max(0.0, duration_s - elapsed)
        percent = (elapsed / duration_s * 100.0) if duration_s > 0 else 0.0
        return {
            "elapsed_seconds": elapsed,
            "remaining_seconds": remaining,
            "percent": percent,
        }

    def phrases(self, pool: str) -> list[str]:
        """Phrase list ``pool`` from the current timeline (empty if absent)."""
        if self._model is None:
            return []
        return list(self._model.phrase_pools.get(pool, ()))

    def memory_samples(self) -> list[float]:
        return list(self._memory_samples)

    def segment_values(self) -> dict[str, float]:
        """Last value written per ramped parameter in the current session."""
        return {s.parameter: s.last_value for s in self._segments if s.last_value is not None}

    # ----- control -----

    def rejection_for(self, model: TimelineModel) -> Optional[Rejection]:
        """Why ``start_session(model)`` would be refused right now, or None."""
        if self._state is SessionState.RUNNING:
            return Rejection.ALREADY_RUNNING
        duration = model.duration_minutes
        if isinstance(duration, bool) or not isinstance(duration, int) or duration <= 0:
            return Rejection.INVALID_TIMELINE
        return None

    def start_session(self, model: TimelineModel) -> bool:
        """Start playing ``model``. Returns False (and sets ``last_rejection``) if refused."""
        rejection = self.rejection_for(model)
        if rejection is not None:
            self.last_rejection = rejection
            if rejection is Rejection.ALREADY_RUNNING:
                self.logger.warning(f"[session] Cannot start: already {self._state.name}")
            else:
                self.logger.warning(
                    f"[session] Cannot start '{model.name}': invalid duration {model.duration_minutes!r}"
                )
            return False

        if self._state is not SessionState.IDLE:
            self._state = SessionState.IDLE

        duration = model.duration_minutes
        frozen = model.frozen_copy()
        for event in frozen.events:
            event.minute = max(0, min(int(event.minute), duration))

        self._model = frozen
        self._schedule = frozen.ordered_events()
        self._next_index = 0
        self._last_result = None
        self._elapsed_s = 0.0
        self._tick_count = 0
        self._baseline = self._capture_baseline(frozen.feature_ids())
        self._parameter_baseline = {}
        self._segments = self._build_segments(frozen)
        self._started_at = self.clock.monotonic()
        self.last_rejection = None
        self._state = SessionState.RUNNING
        self._perf.set_context(timeline=frozen.name, duration_minutes=duration)

        self.logger.info(
            f"[session] Starting '{frozen.name}' ({duration} min, {len(frozen.events)} events, "
            f"speed x{self.time_scale:g})"
        )
        self.event_emitter.emit(SessionEvent(
            SessionEventType.SESSION_START,
            data={"timeline_id": frozen.id, "name": frozen.name, "duration_minutes": duration},
        ))

        self._apply_through(frozen, 0)
        if self._state is not SessionState.RUNNING:
            return True
        self._write_segment_values(0.0)

        self._timer = self.timers.call_every(self.tick_interval_s, self._tick, name="session.tick")
        return True

    def stop_session(self, completed: bool = False) -> bool:
        """Stop a running session early.

        Always lands in STOPPED_EARLY. ``completed`` chooses whether
        SESSION_COMPLETED (with XP) or SESSION_ABANDONED (xp=0) is emitted.
        Returns False without doing anything if no session is running.
        """
        model = self._model
        if self._state is not SessionState.RUNNING or model is None:
            self.logger.debug(f"[session] stop_session ignored in state {self._state.name}")
            return False

        self._cancel_timer()
        self._update_elapsed()
        self._restore_baseline()
        self._state = SessionState.STOPPED_EARLY

        self.logger.info(
            f"[session] Stopped '{model.name}' at {self._elapsed_s:.0f}s "
            f"({'credited' if completed else 'abandoned'})"
        )
        self.event_emitter.emit(SessionEvent(
            SessionEventType.SESSION_STOP,
            data={"timeline_id": model.id, "reason": "stopped", "elapsed_seconds": self._elapsed_s},
        ))
        if completed:
            result = calculate_difficulty(model, self.catalog, self.policy)
            self._last_result = result
            self.event_emitter.emit(SessionEvent(
                SessionEventType.SESSION_COMPLETED,
                data=self._completion_payload(model, result.xp, result, early=True),
            ))
        else:
            self.event_emitter.emit(SessionEvent(
                SessionEventType.SESSION_ABANDONED,
                data=self._completion_payload(model, 0, None, early=True),
            ))
        return True

    def reset(self) -> bool:
        """Return a finished engine to IDLE. Refused while running."""
        if self._state is SessionState.RUNNING:
            self.last_rejection = Rejection.ALREADY_RUNNING
            self.logger.warning("[session] Cannot reset: session is running")
            return False
        self._state = SessionState.IDLE
        return True

    # ----- ticking -----

    def _update_elapsed(self) -> None:
        wall = max(0.0, self.clock.monotonic() - self._started_at)
        self._elapsed_s = wall * self.time_scale

    def _tick(self) -> None:
        model = self._model
        if self._state is not SessionState.RUNNING or model is None:
            return
        with self._perf.span("session.tick", category="session") as span:
            self._update_elapsed()
            self._tick_count += 1
            duration = model.duration_minutes
            elapsed_minutes = self._elapsed_s / 60.0
            boundary = min(int(math.floor(elapsed_minutes)), duration)
            span.annotate(minute=boundary)

            self._apply_through(model, boundary)
            if self._state is not SessionState.RUNNING:
                return
            self._write_segment_values(elapsed_minutes)

            progress = self.progress()
            self.logger.debug(
                f"[tick.trace] [session] t={self._elapsed_s:.1f}s "
                f"minute={boundary} pct={progress['percent']:.1f}"
            )
            self.event_emitter.emit(SessionEvent(SessionEventType.PROGRESS_UPDATED, data=progress))

            if self._tick_count % self._memory_sample_every == 0:
                self._sample_memory()

            if self._state is SessionState.RUNNING and elapsed_minutes >= duration:
                self._complete(model)

    def _apply_through(self, model: TimelineModel, minute: int) -> None:
        """Apply every pending event with ``event.minute <= minute``."""
        changes: list[dict[str, Any]] = []
        while self._next_index < len(self._schedule):
            event = self._schedule[self._next_index]
            if event.minute > minute:
                break
            self._next_index += 1
            change = self._apply_event(model, event)
            if change is not None:
                changes.append(change)
            if self._state is not SessionState.RUNNING:
                return
        if changes:
            self.event_emitter.emit(SessionEvent(
                SessionEventType.PHASE_CHANGED,
                data={"minute": minute, "changes": changes},
            ))

    def _apply_event(self, model: TimelineModel, event: TimelineEvent) -> Optional[dict[str, Any]]:
        if event.is_stop and model.paired_start_of(event) is None:
            self.logger.debug(f"[session] Ignoring orphan stop {event.id} ({event.feature_id})")
            return None
        try:
            if event.is_start:
                self.gateway.enable(event.feature_id)
            else:
                self.gateway.disable(event.feature_id)
        except Exception as exc:
            self._report_feature_error(event.feature_id, event.kind.value, exc, event.minute)
            return None
        self.logger.info(f"[session] minute {event.minute}: {event.kind.value} {event.feature_id}")
        change: dict[str, Any] = {
            "event_id": event.id,
            "feature_id": event.feature_id,
            "kind": event.kind.value,
            "minute": event.minute,
        }
        if event.settings:
            change["settings"] = dict(event.settings)
        if event.start_value is not None or event.end_value is not None:
            change["start_value"] = event.start_value
            change["end_value"] = event.end_value
        return change

    def _complete(self, model: TimelineModel) -> None:
        self._apply_through(model, model.duration_minutes)
        if self._state is not SessionState.RUNNING:
            return
        self._cancel_timer()
        self._restore_baseline()
        result = calculate_difficulty(model, self.catalog, self.policy)
        self._last_result = result
        self._state = SessionState.COMPLETED

        self.logger.info(
            f"[session] Completed '{model.name}' after {self._elapsed_s:.0f}s "
            f"(tier={result.tier.value}, xp={result.xp})"
        )
        self.event_emitter.emit(SessionEvent(
            SessionEventType.SESSION_STOP,
            data={"timeline_id": model.id, "reason": "completed", "elapsed_seconds": self._elapsed_s},
        ))
        self.event_emitter.emit(SessionEvent(
            SessionEventType.SESSION_COMPLETED,
            data=self._completion_payload(model, result.xp, result, early=False),
        ))

    # ----- ramped segments -----

    def _build_segments(self, model: TimelineModel) -> list[ValueSegment]:
        """Collect START events with start/end values and capture their parameters."""
        ramped = [e for e in model.starts() if e.start_value is not None or e.end_value is not None]
        if not ramped:
            return []
        if self.store is None:
            self.logger.debug(f"[session] No parameter store; ignoring {len(ramped)} ramped segment(s)")
            return []

        segments: list[ValueSegment] = []
        for start in ramped:
            parameter = start.settings.get("parameter") or get_feature(start.feature_id, self.catalog).ramp_parameter
            if not parameter:
                self.logger.warning(f"[session] Feature '{start.feature_id}' has no ramp parameter; values ignored")
                continue
            if parameter not in self._parameter_baseline:
                try:
                    self._parameter_baseline[parameter] = self.store.get(parameter)
                except KeyError:
                    self.logger.warning(f"[session] Unknown parameter '{parameter}' for {start.feature_id}; skipped")
                    continue
            baseline = self._parameter_baseline[parameter]
            first = float(start.start_value) if start.start_value is not None else baseline
            last = float(start.end_value) if start.end_value is not None else first
            stop = model.paired_stop_of(start)
            segments.append(ValueSegment(
                feature_id=start.feature_id,
                parameter=parameter,
                start_minute=start.minute,
                end_minute=stop.minute if stop is not None else model.duration_minutes,
                start_value=first,
                end_value=last,
            ))
        return segments

    def _write_segment_values(self, elapsed_minutes: float) -> None:
        if self.store is None:
            return
        for segment in self._segments:
            if not segment.covers(elapsed_minutes):
                continue
            try:
                value = min(segment.value_at(elapsed_minutes), self.store.max_allowed(segment.parameter))
                self.store.set(segment.parameter, value)
            except Exception as exc:
                self.logger.error(f"[session] Failed to write {segment.parameter}: {exc}", exc_info=True)
                continue
            segment.last_value = value

    # ----- helpers -----

    def _completion_payload(
        self,
        model: TimelineModel,
        xp: int,
        result: Optional[DifficultyResult],
        *,
        early: bool,
    ) -> dict[str, Any]:
        return {
            "timeline_id": model.id,
            "name": model.name,
            "elapsed_seconds": self._elapsed_s,
            "xp": xp,
            "tier": result.tier.value if result is not None else None,
            "early": early,
        }

    def _capture_baseline(self, feature_ids: list[str]) -> dict[str, bool]:
        baseline: dict[str, bool] = {}
        for feature_id in feature_ids:
            try:
                baseline[feature_id] = bool(self.gateway.is_enabled(feature_id))
            except Exception as exc:
                self.logger.warning(f"[session] Could not read state of {feature_id}: {exc}; assuming off")
                baseline[feature_id] = False
        return baseline

    def _restore_baseline(self) -> None:
        for feature_id, was_enabled in self._baseline.items():
            try:
                if was_enabled:
                    self.gateway.enable(feature_id)
                else:
                    self.gateway.disable(feature_id)
            except Exception as exc:
                self._report_feature_error(feature_id, "restore", exc, None)
        if self.store is not None:
            for name, value in self._parameter_baseline.items():
                try:
                    self.store.set(name, value)
                except Exception as exc:
                    self.logger.error(f"[session] Failed to restore {name}: {exc}", exc_info=True)
        self.logger.debug(
            f"[session] Restored baseline for {len(self._baseline)} feature(s), "
            f"{len(self._parameter_baseline)} parameter(s)"
        )

    def _report_feature_error(self, feature_id: str, action: str, exc: Exception, minute: Optional[int]) -> None:
        self.logger.error(f"[session] Feature '{feature_id}' failed to {action}: {exc}", exc_info=True)
        self.event_emitter.emit(SessionEvent(
            SessionEventType.FEATURE_ERROR,
            data={"feature_id": feature_id, "action": action, "minute": minute, "error": str(exc)},
        ))

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _sample_memory(self) -> None:
        try:
            mem_mb = self._process.memory_info().rss / 1024 / 1024
        except psutil.Error as exc:
            self.logger.debug(f"[session] Memory sample failed: {exc}")
            return
        self._memory_samples.append(mem_mb)
        if len(self._memory_samples) > 100:
            del self._memory_samples[0]
        if mem_mb > self._memory_warn_mb:
            self.logger.warning(f"[session] High memory usage: {mem_mb:.0f} MB")
        else:
            self.logger.debug(f"[session] Memory: {mem_mb:.0f} MB")
