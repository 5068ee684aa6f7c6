"""MesmerClock command-line interface.

Argparse-based CLI that initializes logging early and exposes developer
tooling around the engine. Exposed via ``python -m mesmerclock``.
"""

from __future__ import annotations

import argparse
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from . import __app_name__, __version__
from .config import (
    DEFAULT_WINDOW_END,
    DEFAULT_WINDOW_START,
    EngineConfig,
    ScheduleConfig,
    load_engine_config,
    parse_active_days,
    parse_time_of_day,
)
from .features import FEATURE_CATALOG, features_by_category
from .logging_utils import LogMode, get_default_log_path, setup_logging


def _add_logging_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Set log level (default: INFO)",
    )
    parser.add_argument(
        "--log-mode",
        choices=[mode.value for mode in LogMode],
        default=LogMode.NORMAL.value,
        help="Logging preset: quiet suppresses console info, perf forces DEBUG",
    )
    parser.add_argument(
        "--log-file",
        default=str(get_default_log_path()),
        help="Path to log file (default: per-user MesmerClock directory)",
    )
    parser.add_argument(
        "--log-format",
        choices=["plain", "json"],
        default="plain",
        help="Log format (plain or json)",
    )


def _build_logging_parent() -> argparse.ArgumentParser:
    parent = argparse.ArgumentParser(add_help=False)
    _add_logging_args(parent)
    return parent


def selftest() -> int:
    """Fast import-and-init smoke test. Returns exit code."""
    try:
        from .engine import ManualClock, ManualTimerService, LoggingFeatureGateway
        from .session import SessionEngine, TimelineModel

        clock = ManualClock()
        timers = ManualTimerService(clock)
        engine = SessionEngine(LoggingFeatureGateway(), timers, clock)
        model = TimelineModel(name="selftest", duration_minutes=1)
        model.add_start("flash", 0)
        if not engine.start_session(model):
            raise RuntimeError("session refused to start")
        timers.advance(60)
        if engine.state.name != "COMPLETED":
            raise RuntimeError(f"session ended in {engine.state.name}")

        msg = f"Selftest OK: {__app_name__} {__version__} engine imports and completes a session"
        logging.getLogger(__name__).info(msg)
        print(msg)
        return 0
    except Exception as e:
        logging.getLogger(__name__).error("Selftest failed: %s", e)
        return 1


def build_parser() -> argparse.ArgumentParser:
    logging_parent = _build_logging_parent()
    parser = argparse.ArgumentParser(
        description="MesmerClock CLI",
        parents=[logging_parent],
    )
    sub = parser.add_subparsers(dest="command", required=False)

    def add_subparser(name: str, **kwargs: object) -> argparse.ArgumentParser:
        parents = list(kwargs.pop("parents", []))
        parents.insert(0, logging_parent)
        return sub.add_parser(name, parents=parents, **kwargs)

    add_subparser("selftest", help="Quick import/init smoke test")

    p_features = add_subparser("features", help="List the feature catalog")
    p_features.add_argument("--json", action="store_true", help="Emit JSON instead of a table")

    p_timeline = add_subparser("timeline", help="Inspect, validate, or dry-run a timeline file")
    p_timeline.add_argument("--load", required=True, help="Path to timeline JSON file")
    g_timeline = p_timeline.add_mutually_exclusive_group()
    g_timeline.add_argument("--validate", action="store_true", help="Validate and exit")
    g_timeline.add_argument("--print", action="store_true", help="Print the ordered event list")
    g_timeline.add_argument("--stats", action="store_true", help="Print difficulty tier and XP")
    g_timeline.add_argument("--simulate", action="store_true", help="Play the timeline on a simulated clock")
    p_timeline.add_argument("--json", action="store_true", help="Emit JSON output")

    p_window = add_subparser("window", help="Check whether a time falls inside a schedule window")
    p_window.add_argument("--start", default="16:00", help="Window start HH:MM (default: 16:00)")
    p_window.add_argument("--end", default="22:00", help="Window end HH:MM (default: 22:00)")
    p_window.add_argument("--days", default=None, help="Comma-separated active days, e.g. mon,tue,fri (default: all)")
    p_window.add_argument("--at", default=None, help="ISO timestamp to test (default: now)")

    p_run = add_subparser("run", help="Run the engine headless against a logging feature gateway")
    p_run.add_argument("--timeline", default=None, help="Timeline JSON to play (default: default mode)")
    p_run.add_argument("--config", default=None, help="Engine config JSON (schedule, ramp, tick intervals)")
    p_run.add_argument("--speed", type=float, default=1.0, help="Session seconds per wall second (default: 1)")
    p_run.add_argument("--qt", action="store_true", help="Run on the Qt event loop via qasync")
    p_run.add_argument("--duration", type=float, default=None, help="Exit after N wall seconds")
    p_run.add_argument("--wait", action="store_true", help="Do not start now; let the scheduler decide")
    p_run.add_argument("--diag", action="store_true", help="Trace tick timings and print the slowest spans on exit")

    return parser


def _load_timeline(path_str: str):
    from .session.timeline import TimelineModel

    path = Path(path_str)
    if not path.exists():
        print(f"Error: timeline file not found: {path}")
        return None
    try:
        return TimelineModel.load(path)
    except (ValueError, KeyError, json.JSONDecodeError) as exc:
        logging.getLogger(__name__).error("Failed to load timeline %s: %s", path, exc)
        print(f"Error: failed to load timeline: {exc}")
        return None


def cmd_features(args) -> int:
    if getattr(args, "json", False):
        print(json.dumps([d.to_dict() for d in FEATURE_CATALOG.values()], indent=2))
        return 0
    for category, defs in features_by_category().items():
        if not defs:
            continue
        print(f"{category.value}:")
        for d in defs:
            ramp = " ramp" if d.supports_ramping else ""
            print(f"  {d.id:<18} xp+{d.xp_bonus:<4} weight={d.difficulty_weight}{ramp}")
    return 0


def _simulate(model) -> dict[str, Any]:
    from .engine import CallbackFeatureGateway, ManualClock, ManualTimerService
    from .session import SessionEngine, SessionEventType

    clock = ManualClock()
    timers = ManualTimerService(clock)
    gateway = CallbackFeatureGateway()
    for feature_id in model.feature_ids():
        gateway.register(feature_id)
    engine = SessionEngine(gateway, timers, clock)
    transitions: list[dict[str, Any]] = []
    result: dict[str, Any] = {}

    engine.event_emitter.subscribe(
        SessionEventType.PHASE_CHANGED,
        lambda evt: transitions.extend((evt.data or {}).get("changes", [])),
    )
    engine.event_emitter.subscribe(
        SessionEventType.SESSION_COMPLETED,
        lambda evt: result.update(evt.data or {}),
    )
    engine.start_session(model)
    timers.advance(model.duration_minutes * 60.0)
    return {
        "transitions": [
            {"minute": t["minute"], "feature_id": t["feature_id"], "kind": t["kind"]} for t in transitions
        ],
        "xp": result.get("xp"),
        "tier": result.get("tier"),
        "state": engine.state.name,
    }


def cmd_timeline(args) -> int:
    """Inspect, validate, or simulate timeline files without running the engine."""
    from .session.difficulty import calculate_difficulty

    model = _load_timeline(args.load)
    if model is None:
        return 1
    as_json = getattr(args, "json", False)

    if getattr(args, "validate", False):
        # load() already validated
        if as_json:
            print(json.dumps({"valid": True, "name": model.name}))
        else:
            print(f"Timeline '{model.name}' is valid")
        return 0

    if getattr(args, "stats", False):
        result = calculate_difficulty(model)
        payload = {
            "name": model.name,
            "duration_minutes": model.duration_minutes,
            "segments": len(model.starts()),
            "tier": result.tier.value,
            "score": result.score,
            "xp": result.xp,
        }
        if as_json:
            print(json.dumps(payload))
        else:
            print(f"{model.name}: {result.tier.label} (score {result.score}), {result.xp} XP")
        return 0

    if getattr(args, "simulate", False):
        outcome = _simulate(model)
        if as_json:
            print(json.dumps(outcome))
        else:
            for t in outcome["transitions"]:
                print(f"  {t['minute']:>4} min  {t['kind']:<5} {t['feature_id']}")
            print(f"Finished {outcome['state']} with {outcome['xp']} XP ({outcome['tier']})")
        return 0

    # default: print
    if as_json:
        print(json.dumps(model.to_dict(), ensure_ascii=False, indent=2))
        return 0
    print(f"{model.name} ({model.duration_minutes} min)")
    for event in model.ordered_events():
        print(f"  {event.minute:>4} min  {event.kind.value:<5} {event.feature_id}")
    return 0


def cmd_window(args) -> int:
    from .engine.scheduler import is_in_window

    days = parse_active_days(args.days.split(",") if args.days else None)
    config = ScheduleConfig(
        enabled=True,
        active_days=days,
        start_time=parse_time_of_day(args.start, DEFAULT_WINDOW_START),
        end_time=parse_time_of_day(args.end, DEFAULT_WINDOW_END),
    )
    if args.at:
        try:
            at = datetime.fromisoformat(args.at)
        except ValueError:
            print(f"Error: invalid timestamp: {args.at}")
            return 1
    else:
        at = datetime.now()
    inside = is_in_window(at, config)
    print("inside" if inside else "outside")
    return 0


def cmd_run(args) -> int:
    from .app import run_host

    config: EngineConfig = load_engine_config(args.config)
    timeline = None
    if args.timeline:
        timeline = _load_timeline(args.timeline)
        if timeline is None:
            return 1
    if args.speed <= 0:
        print("Error: --speed must be positive")
        return 1
    return run_host(
        config,
        timeline,
        use_qt=args.qt,
        duration_s=args.duration,
        time_scale=args.speed,
        start_now=not args.wait,
        diag=args.diag,
    )


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Configure logging before doing any work
    setup_logging(
        level=args.log_level,
        log_file=args.log_file,
        json_format=(args.log_format == "json"),
        log_mode=args.log_mode,
        add_console=True,
    )

    cmd = args.command
    if cmd is None:
        parser.print_help()
        return 0
    if cmd == "selftest":
        return selftest()
    if cmd == "features":
        return cmd_features(args)
    if cmd == "timeline":
        return cmd_timeline(args)
    if cmd == "window":
        return cmd_window(args)
    if cmd == "run":
        return cmd_run(args)
    parser.error(f"Unknown command: {cmd}")
    return 2
