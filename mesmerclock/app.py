"""Host process: wires the engine onto one event loop and runs it.

The loop is a plain asyncio loop for headless runs, or the Qt event loop via
qasync when ``use_qt`` is set (the same arrangement a GUI front-end uses), so
session, ramp and scheduler ticks always run on a single thread.
"""

from __future__ import annotations

import asyncio
import faulthandler
import logging
import os
import signal
import sys
import threading
import traceback
from typing import Any, Optional

from . import __app_name__, __version__
from .config import EngineConfig
from .engine.clock import Clock, SystemClock
from .engine.control import MainEngine
from .engine.gateway import FeatureGateway, LoggingFeatureGateway
from .engine.parameters import InMemoryParameterStore, ParameterStore
from .engine.timers import AsyncioTimerService, TimerService
from .session.events import SessionEvent, SessionEventEmitter, SessionEventType
from .session.timeline import TimelineModel

log = logging.getLogger(__name__)

DEFAULT_PARAMETER_VALUES = {
    "flash_opacity": 30.0,
    "spiral_opacity": 15.0,
    "pink_filter_opacity": 10.0,
    "master_volume": 40.0,
    "sub_audio_volume": 30.0,
    "brain_drain_intensity": 20.0,
}

_DIAG_INSTALLED = False


def _install_diagnostics() -> None:
    global _DIAG_INSTALLED
    if _DIAG_INSTALLED:
        return
    if os.environ.get("MESMERCLOCK_NO_DIAG", "0") in ("1", "true", "True", "yes"):
        return
    _DIAG_INSTALLED = True
    diag = logging.getLogger("diag")
    try:
        faulthandler.enable(all_threads=True)
    except (RuntimeError, ValueError, OSError) as exc:
        diag.debug("DIAG faulthandler unavailable: %s", exc)

    def _excepthook(t, v, tb):
        diag.error("UNCAUGHT %s: %s", t.__name__, v)
        for line in traceback.format_tb(tb):
            diag.error(line.rstrip())

    sys.excepthook = _excepthook

    def _thread_excepthook(args):
        diag.error("THREAD EXC in %s: %s", getattr(args, "thread", None), args.exc_value)
        for line in traceback.format_tb(args.exc_traceback):
            diag.error(line.rstrip())

    threading.excepthook = _thread_excepthook


def _loop_exception_handler(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
    exc = context.get("exception")
    logging.getLogger("diag").error("LOOP %s", context.get("message", "error"), exc_info=exc)


def build_engine(
    config: EngineConfig,
    *,
    clock: Clock,
    timers: TimerService,
    gateway: Optional[FeatureGateway] = None,
    store: Optional[ParameterStore] = None,
    timeline: Optional[TimelineModel] = None,
    time_scale: float = 1.0,
    event_emitter: Optional[SessionEventEmitter] = None,
) -> MainEngine:
    """Assemble a MainEngine with an attached (not yet started) scheduler."""
    engine = MainEngine(
        config,
        gateway if gateway is not None else LoggingFeatureGateway(),
        store if store is not None else InMemoryParameterStore(DEFAULT_PARAMETER_VALUES),
        timers,
        clock,
        event_emitter,
        default_timeline=timeline,
        time_scale=time_scale,
    )
    engine.attach_scheduler()
    return engine


def _make_loop(use_qt: bool) -> tuple[asyncio.AbstractEventLoop, Any]:
    if not use_qt:
        return asyncio.new_event_loop(), None
    import qasync
    from PyQt6.QtCore import QCoreApplication

    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
    return qasync.QEventLoop(app), app


def _install_signal_handlers(loop: asyncio.AbstractEventLoop) -> None:
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, loop.stop)
        except (NotImplementedError, RuntimeError, ValueError):
            try:
                signal.signal(sig, lambda signum, frame: loop.call_soon_threadsafe(loop.stop))
            except (ValueError, OSError):
                log.debug("[host] Cannot install handler for signal %s", sig)


def run_host(
    config: EngineConfig,
    timeline: Optional[TimelineModel] = None,
    *,
    use_qt: bool = False,
    duration_s: Optional[float] = None,
    time_scale: float = 1.0,
    start_now: bool = True,
    gateway: Optional[FeatureGateway] = None,
    store: Optional[ParameterStore] = None,
    diag: bool = False,
) -> int:
    """Run the engine until interrupted, ``duration_s`` passes, or (with the
    scheduler disabled) the started run ends. Baselines are restored on exit.

    With ``diag`` the tick spans are traced and the slowest ones printed on exit.
    """
    _install_diagnostics()
    loop, qt_app = _make_loop(use_qt)
    asyncio.set_event_loop(loop)
    loop.set_exception_handler(_loop_exception_handler)

    engine = build_engine(
        config,
        clock=SystemClock(),
        timers=AsyncioTimerService(loop),
        gateway=gateway,
        store=store,
        timeline=timeline,
        time_scale=time_scale,
    )
    if diag:
        engine.enable_perf()
    emitter = engine.event_emitter
    scheduler = engine.scheduler or engine.attach_scheduler()

    def _stop_when_idle() -> None:
        if not engine.is_running:
            loop.stop()

    def _on_finished(event: SessionEvent) -> None:
        data = event.data or {}
        if event.event_type is not SessionEventType.RAMP_STOP:
            log.info(f"[host] {event.event_type.name}: '{data.get('name')}' xp={data.get('xp')}")
        # With no scheduler to restart it, the host is done once the run ends
        if not config.schedule.enabled:
            loop.call_soon(_stop_when_idle)

    emitter.subscribe(SessionEventType.SESSION_COMPLETED, _on_finished)
    emitter.subscribe(SessionEventType.SESSION_ABANDONED, _on_finished)
    emitter.subscribe(SessionEventType.RAMP_STOP, _on_finished)

    def _boot() -> None:
        log.info(f"[host] {__app_name__} {__version__} on {'qasync/Qt' if use_qt else 'asyncio'}")
        scheduler.start()
        if start_now and not engine.is_running:
            engine.user_start(timeline)
        if not engine.is_running and not config.schedule.enabled:
            log.warning("[host] Nothing to run (scheduler disabled and engine idle)")
            loop.stop()

    _install_signal_handlers(loop)
    loop.call_soon(_boot)
    if duration_s is not None:
        loop.call_later(max(0.0, duration_s), loop.stop)

    try:
        loop.run_forever()
    finally:
        report = engine.shutdown()
        loop.close()
        if qt_app is not None:
            qt_app.quit()
    if diag:
        print("\n".join(report) if report else "No tick spans recorded")
    return 0
