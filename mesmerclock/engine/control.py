"""Main engine: the start/stop target shared by the user, scheduler and ramp.

A run is either a timeline session (the SessionEngine plays a model) or the
default mode (a configured set of features switched on for as long as the
engine runs). The intensity ramp, when enabled, runs alongside either mode
and is stopped with the engine.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional, Protocol

from ..config import EngineConfig
from ..logging_utils import PerfTracer
from ..session.engine import SessionEngine
from ..session.events import SessionEvent, SessionEventEmitter, SessionEventType
from ..session.timeline import TimelineModel
from .ramp import IntensityRamp
from .scheduler import Scheduler

if TYPE_CHECKING:
    from .clock import Clock
    from .gateway import FeatureGateway
    from .parameters import ParameterStore
    from .timers import TimerService


class EngineControl(Protocol):
    @property
    def is_running(self) -> bool: ...

    def request_start(self, model: Optional[TimelineModel] = None) -> bool: ...

    def request_stop(self) -> bool: ...


class MainEngine:
    """Owns the session engine and ramp; implements :class:`EngineControl`.

    ``user_start``/``user_stop`` are for manual requests: they also inform the
    attached scheduler so a manual stop suppresses auto-start for the rest of
    the current window.
    """

    def __init__(
        self,
        config: EngineConfig,
        gateway: FeatureGateway,
        store: ParameterStore,
        timers: TimerService,
        clock: Clock,
        event_emitter: Optional[SessionEventEmitter] = None,
        *,
        default_timeline: Optional[TimelineModel] = None,
        time_scale: float = 1.0,
    ) -> None:
        self.config = config
        self.gateway = gateway
        self.store = store
        self.timers = timers
        self.clock = clock
        self.event_emitter = event_emitter or SessionEventEmitter()
        self.default_timeline = default_timeline
        self.logger = logging.getLogger(__name__)

        self.session = SessionEngine(
            gateway,
            timers,
            clock,
            self.event_emitter,
            store=store,
            tick_interval_s=config.session_tick_s,
            time_scale=time_scale,
        )
        self.ramp = IntensityRamp(
            store,
            timers,
            clock,
            self.event_emitter,
            engine_control=self,
            tick_interval_s=config.ramp_tick_s,
        )
        self.scheduler: Optional[Scheduler] = None

        self._running = False
        self._mode: Optional[str] = None
        self._default_baseline: dict[str, bool] = {}

        self.event_emitter.subscribe(SessionEventType.SESSION_STOP, self._on_session_stopped)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def mode(self) -> Optional[str]:
        """``"session"``, ``"default"`` or None when stopped."""
        return self._mode

    def attach_scheduler(self, scheduler: Optional[Scheduler] = None) -> Scheduler:
        """Attach (or build from config) the scheduler driving this engine."""
        if scheduler is None:
            scheduler = Scheduler(
                self.config.schedule,
                self,
                self.clock,
                self.timers,
                self.event_emitter,
                interval_s=self.config.scheduler_interval_s,
            )
        self.scheduler = scheduler
        return scheduler

    # ----- EngineControl -----

    def request_start(self, model: Optional[TimelineModel] = None) -> bool:
        if self._running:
            self.logger.warning("[engine] Cannot start: already running")
            return False

        timeline = model if model is not None else self.default_timeline
        if timeline is not None:
            rejection = self.session.rejection_for(timeline)
            if rejection is not None:
                self.session.last_rejection = rejection
                self.logger.warning(f"[engine] Session refused: {rejection.name}")
                return False

        self._running = True
        self._mode = "session" if timeline is not None else "default"
        for tracer in self.perf_tracers().values():
            tracer.set_context(mode=self._mode)

        # Ramp baselines are captured before the session writes any segment value
        ramp_cfg = self.config.ramp
        if ramp_cfg.enabled:
            self.ramp.start(
                ramp_cfg.linked_parameters,
                ramp_cfg.duration_minutes,
                ramp_cfg.multiplier,
                ramp_cfg.end_on_complete,
            )

        if timeline is not None:
            self.session.start_session(timeline)
        else:
            self._start_default_mode()
        self.logger.info(f"[engine] Started ({self._mode} mode)")
        return True

    def request_stop(self) -> bool:
        if not self._running:
            self.logger.debug("[engine] request_stop ignored: not running")
            return False
        self._running = False
        self.ramp.stop()
        if self.session.is_running:
            self.session.stop_session(completed=False)
        self._restore_default_mode()
        self.logger.info(f"[engine] Stopped ({self._mode} mode)")
        self._mode = None
        return True

    # ----- manual control -----

    def user_start(self, model: Optional[TimelineModel] = None) -> bool:
        if self.scheduler is not None:
            self.scheduler.notify_manual_start()
        return self.request_start(model)

    def user_stop(self) -> bool:
        stopped = self.request_stop()
        if stopped and self.scheduler is not None:
            self.scheduler.notify_manual_stop()
        return stopped

    def shutdown(self) -> list[str]:
        """Stop scheduler and engine, restoring every captured baseline.

        Returns the perf report (empty unless tracing was on); its lines are
        also logged.
        """
        if self.scheduler is not None:
            self.scheduler.stop()
        self.request_stop()
        report = self.drain_perf_report()
        for line in report:
            self.logger.info(f"[perf] {line}")
        self.logger.info("[engine] Shutdown complete")
        return report

    # ----- perf -----

    def perf_tracers(self) -> dict[str, PerfTracer]:
        tracers = {"session": self.session.perf_tracer, "ramp": self.ramp.perf_tracer}
        if self.scheduler is not None:
            tracers["scheduler"] = self.scheduler.perf_tracer
        return tracers

    def enable_perf(self, enabled: bool = True) -> None:
        """Turn tick tracing on regardless of the log mode (``run --diag``)."""
        for tracer in self.perf_tracers().values():
            tracer.enabled = enabled

    def drain_perf_report(self, *, limit: int = 10) -> list[str]:
        """Slowest spans per tracer as text lines; recorded spans are consumed."""
        lines: list[str] = []
        for label, tracer in self.perf_tracers().items():
            if not tracer.enabled:
                continue
            table = tracer.dump_table(limit=limit)
            snap = tracer.consume()
            if not snap["span_count"]:
                continue
            totals = ", ".join(f"{cat}={ms:.2f}ms" for cat, ms in snap["categories"].items())
            lines.append(f"{label}: {snap['span_count']} span(s), {totals}, context={snap['context']}")
            lines.extend(table)
        return lines

    def status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "mode": self._mode,
            "session_state": self.session.state.name,
            "session_progress": self.session.progress(),
            "ramp": self.ramp.snapshot(),
            "scheduler": None if self.scheduler is None else {
                "watching": self.scheduler.running,
                "auto_started": self.scheduler.runtime.auto_started,
                "suppressed": self.scheduler.runtime.manually_suppressed_this_window,
            },
        }

    # ----- internals -----

    def _on_session_stopped(self, event: SessionEvent) -> None:
        # request_stop clears _running before stopping the session, so this is a no-op then
        if self._running and self._mode == "session":
            reason = (event.data or {}).get("reason", "stopped")
            self.logger.info(f"[engine] Session {reason}; stopping engine")
            self.request_stop()

    def _start_default_mode(self) -> None:
        self._default_baseline = {}
        for feature_id in self.config.default_features:
            try:
                self._default_baseline[feature_id] = bool(self.gateway.is_enabled(feature_id))
                self.gateway.enable(feature_id)
            except Exception as exc:
                self.logger.error(f"[engine] Feature '{feature_id}' failed to enable: {exc}", exc_info=True)

    def _restore_default_mode(self) -> None:
        for feature_id, was_enabled in self._default_baseline.items():
            try:
                if was_enabled:
                    self.gateway.enable(feature_id)
                else:
                    self.gateway.disable(feature_id)
            except Exception as exc:
                self.logger.error(f"[engine] Feature '{feature_id}' failed to restore: {exc}", exc_info=True)
        self._default_baseline = {}
