"""Engine configuration: weekly schedule, intensity ramp and tick intervals.

All values are plain dataclasses passed into each component's constructor;
nothing reads configuration from a global. ``from_dict`` is tolerant: bad
values fall back to documented defaults with a warning instead of raising,
so a broken settings file never takes the tick loops down.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import time as dtime
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_START = dtime(16, 0)
DEFAULT_WINDOW_END = dtime(22, 0)

RAMP_DURATION_MIN = 10
RAMP_DURATION_MAX = 180
RAMP_MULTIPLIER_MIN = 1.0
RAMP_MULTIPLIER_MAX = 3.0

DEFAULT_RAMP_PARAMETERS = (
    "flash_opacity",
    "spiral_opacity",
    "pink_filter_opacity",
    "master_volume",
    "sub_audio_volume",
)

WEEKDAY_NAMES = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")

_ENV_SESSION_TICK = "MESMERCLOCK_SESSION_TICK_S"
_ENV_RAMP_TICK = "MESMERCLOCK_RAMP_TICK_S"
_ENV_SCHEDULER_INTERVAL = "MESMERCLOCK_SCHEDULER_INTERVAL_S"


def parse_time_of_day(value: Any, default: dtime) -> dtime:
    """Parse ``HH:MM`` (or ``HH:MM:SS``) into a time, falling back to ``default``."""
    if isinstance(value, dtime):
        return value
    if not isinstance(value, str) or not value.strip():
        logger.warning("[config] Missing time of day %r; using %s", value, default.strftime("%H:%M"))
        return default
    parts = value.strip().split(":")
    try:
        if len(parts) not in (2, 3):
            raise ValueError(value)
        numbers = [int(p) for p in parts]
        return dtime(*numbers)
    except ValueError:
        logger.warning("[config] Unparsable time of day %r; using %s", value, default.strftime("%H:%M"))
        return default


def format_time_of_day(value: dtime) -> str:
    return value.strftime("%H:%M")


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def parse_active_days(value: Any) -> tuple[bool, ...]:
    """Accept 7 booleans (Mon..Sun), weekday indices or weekday names."""
    if value is None:
        return (True,) * 7
    items = list(value)
    if len(items) == 7 and all(isinstance(v, bool) for v in items):
        return tuple(items)
    days = [False] * 7
    for item in items:
        if isinstance(item, bool):
            continue
        if isinstance(item, int) and 0 <= item < 7:
            days[item] = True
        elif isinstance(item, str) and item.strip().lower()[:3] in WEEKDAY_NAMES:
            days[WEEKDAY_NAMES.index(item.strip().lower()[:3])] = True
        else:
            logger.warning("[config] Ignoring unknown weekday %r", item)
    return tuple(days)


@dataclass(frozen=True)
class ScheduleConfig:
    """Weekly auto-start window. ``active_days`` is indexed Mon=0..Sun=6."""

    enabled: bool = False
    active_days: tuple[bool, ...] = (True,) * 7
    start_time: dtime = DEFAULT_WINDOW_START
    end_time: dtime = DEFAULT_WINDOW_END

    def __post_init__(self) -> None:
        if len(self.active_days) != 7:
            raise ValueError(f"active_days must have 7 entries, got {len(self.active_days)}")

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> ScheduleConfig:
        data = data or {}
        return cls(
            enabled=bool(data.get("enabled", False)),
            active_days=parse_active_days(data.get("active_days")),
            start_time=parse_time_of_day(data.get("start_time", "16:00"), DEFAULT_WINDOW_START),
            end_time=parse_time_of_day(data.get("end_time", "22:00"), DEFAULT_WINDOW_END),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "active_days": list(self.active_days),
            "start_time": format_time_of_day(self.start_time),
            "end_time": format_time_of_day(self.end_time),
        }


@dataclass(frozen=True)
class RampConfig:
    """Intensity ramp settings. Duration and multiplier are clamped on load."""

    enabled: bool = False
    duration_minutes: int = 60
    multiplier: float = 1.0
    linked_parameters: tuple[str, ...] = DEFAULT_RAMP_PARAMETERS
    end_on_complete: bool = False

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> RampConfig:
        data = data or {}
        try:
            duration = int(data.get("duration_minutes", 60))
        except (TypeError, ValueError):
            logger.warning("[config] Bad ramp duration %r; using 60", data.get("duration_minutes"))
            duration = 60
        try:
            multiplier = float(data.get("multiplier", 1.0))
        except (TypeError, ValueError):
            logger.warning("[config] Bad ramp multiplier %r; using 1.0", data.get("multiplier"))
            multiplier = 1.0
        linked = data.get("linked_parameters")
        return cls(
            enabled=bool(data.get("enabled", False)),
            duration_minutes=int(_clamp(duration, RAMP_DURATION_MIN, RAMP_DURATION_MAX)),
            multiplier=_clamp(multiplier, RAMP_MULTIPLIER_MIN, RAMP_MULTIPLIER_MAX),
            linked_parameters=tuple(linked) if linked is not None else DEFAULT_RAMP_PARAMETERS,
            end_on_complete=bool(data.get("end_on_complete", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "duration_minutes": self.duration_minutes,
            "multiplier": self.multiplier,
            "linked_parameters": list(self.linked_parameters),
            "end_on_complete": self.end_on_complete,
        }


@dataclass
class EngineConfig:
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    ramp: RampConfig = field(default_factory=RampConfig)
    default_features: tuple[str, ...] = ()
    session_tick_s: float = 1.0
    ramp_tick_s: float = 2.0
    scheduler_interval_s: float = 30.0

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> EngineConfig:
        data = data or {}
        return cls(
            schedule=ScheduleConfig.from_dict(data.get("schedule")),
            ramp=RampConfig.from_dict(data.get("ramp")),
            default_features=tuple(data.get("default_features", ())),
            session_tick_s=_positive_float(data.get("session_tick_s"), 1.0, "session_tick_s"),
            ramp_tick_s=_positive_float(data.get("ramp_tick_s"), 2.0, "ramp_tick_s"),
            scheduler_interval_s=_positive_float(data.get("scheduler_interval_s"), 30.0, "scheduler_interval_s"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "schedule": self.schedule.to_dict(),
            "ramp": self.ramp.to_dict(),
            "default_features": list(self.default_features),
            "session_tick_s": self.session_tick_s,
            "ramp_tick_s": self.ramp_tick_s,
            "scheduler_interval_s": self.scheduler_interval_s,
        }

    def apply_env(self, environ: Optional[dict[str, str]] = None) -> EngineConfig:
        """Override tick intervals from ``MESMERCLOCK_*`` environment variables."""
        env = os.environ if environ is None else environ
        for key, attr in (
            (_ENV_SESSION_TICK, "session_tick_s"),
            (_ENV_RAMP_TICK, "ramp_tick_s"),
            (_ENV_SCHEDULER_INTERVAL, "scheduler_interval_s"),
        ):
            raw = env.get(key)
            if raw:
                setattr(self, attr, _positive_float(raw, getattr(self, attr), key))
        return self


def _positive_float(raw: Any, default: float, label: str) -> float:
    if raw is None:
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        logger.warning("[config] %s is not a number: %r", label, raw)
        return default
    if value <= 0:
        logger.warning("[config] %s must be positive (got %s)", label, raw)
        return default
    return value


def load_engine_config(path: Optional[str | Path] = None, *, apply_env: bool = True) -> EngineConfig:
    """Load an :class:`EngineConfig` from a JSON file.

    A missing path or file yields defaults. Invalid JSON raises, since that is
    a developer error rather than a runtime condition.
    """
    data: dict[str, Any] = {}
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "r", encoding="utf-8") as f:
                data = json.load(f)
            logger.info("[config] Loaded engine config from %s", p)
        else:
            logger.warning("[config] Config file %s not found; using defaults", p)
    config = EngineConfig.from_dict(data)
    if apply_env:
        config.apply_env()
    return config
