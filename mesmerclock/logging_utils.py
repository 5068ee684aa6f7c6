"""Logging setup and per-tick perf tracing for MesmerClock.

``setup_logging`` is called once by the CLI (or a host) before any engine is
built. Engines then log through ``logging.getLogger(__name__)`` with a
bracketed component prefix. Per-tick chatter carries ``TICK_TRACE_TAG`` and is
dropped unless tick tracing is switched on.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import os
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Optional


DEFAULT_LOG_FILENAME = "mesmerclock.log"
TICK_TRACE_TAG = "[tick.trace]"
TICK_TRACE_ENV = "MESMERCLOCK_TICK_TRACE"

_LOG_MAX_BYTES = 1_000_000
_LOG_BACKUPS = 3
_TRUTHY = frozenset({"1", "true", "yes", "on"})


class LogMode(str, Enum):
    """Verbosity presets selectable with ``--log-mode``."""

    QUIET = "quiet"
    NORMAL = "normal"
    PERF = "perf"

    @classmethod
    def parse(cls, value: "LogMode | str | None") -> "LogMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.NORMAL


_active_mode: LogMode = LogMode.NORMAL


def set_log_mode(mode: LogMode | str | None) -> LogMode:
    global _active_mode
    _active_mode = LogMode.parse(mode)
    return _active_mode


def get_log_mode() -> LogMode:
    return _active_mode


def is_perf_logging_enabled() -> bool:
    return _active_mode is LogMode.PERF


def is_quiet_logging_enabled() -> bool:
    return _active_mode is LogMode.QUIET


def _candidate_log_dirs() -> Iterator[Path]:
    local_appdata = os.environ.get("LOCALAPPDATA")
    if local_appdata:
        yield Path(local_appdata) / "MesmerClock"
    yield Path.home() / ".mesmerclock"


def get_default_log_dir() -> Path:
    """First writable per-user log directory, or the cwd if none is."""
    for candidate in _candidate_log_dirs():
        try:
            candidate.mkdir(parents=True, exist_ok=True)
        except OSError:
            continue
        return candidate
    return Path.cwd()


def get_default_log_path() -> Path:
    return get_default_log_dir() / DEFAULT_LOG_FILENAME


def tick_trace_enabled() -> bool:
    """Tick chatter is kept when ``MESMERCLOCK_TICK_TRACE`` is truthy or in perf mode."""
    if os.environ.get(TICK_TRACE_ENV, "").strip().lower() in _TRUTHY:
        return True
    return is_perf_logging_enabled()


class _TickTraceFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if TICK_TRACE_TAG not in str(record.msg):
            return True
        return tick_trace_enabled()


_TICK_TRACE_FILTER = _TickTraceFilter()


class _JsonFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _make_formatter(json_format: bool) -> logging.Formatter:
    if json_format:
        return _JsonFormatter()
    return logging.Formatter("[%(asctime)s] %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S")


def _resolve_level(level: str | int) -> int:
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.INFO)
    return int(level)


def _levels_for(level: str | int, mode: LogMode) -> tuple[int, int]:
    """(file level, console level) for a requested level under ``mode``."""
    file_level = _resolve_level(level)
    if mode is LogMode.PERF:
        file_level = min(file_level, logging.DEBUG)
    console_level = max(file_level, logging.WARNING) if mode is LogMode.QUIET else file_level
    return file_level, console_level


def _is_console(handler: logging.Handler) -> bool:
    return isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler)


def _attach_handlers(
    logger: logging.Logger,
    log_path: Path,
    formatter: logging.Formatter,
    levels: tuple[int, int],
    add_console: bool,
) -> None:
    file_level, console_level = levels
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path, maxBytes=_LOG_MAX_BYTES, backupCount=_LOG_BACKUPS, encoding="utf-8"
        )
    except OSError:
        # Unwritable log location: console only
        file_handler = None
    if file_handler is not None:
        file_handler.setLevel(file_level)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(_TICK_TRACE_FILTER)
        logger.addHandler(file_handler)

    if add_console:
        console = logging.StreamHandler()
        console.setLevel(console_level)
        console.setFormatter(formatter)
        console.addFilter(_TICK_TRACE_FILTER)
        logger.addHandler(console)


def setup_logging(
    *,
    level: str | int = "INFO",
    log_file: Optional[str | Path] = None,
    json_format: bool = False,
    logger_name: Optional[str] = None,
    log_mode: LogMode | str | None = None,
    add_console: bool = True,
) -> logging.Logger:
    """Configure the root logger (or ``logger_name``) once.

    A rotating UTF-8 file handler goes to ``log_file`` (default: per-user log
    dir) and, unless ``add_console`` is False, a console handler is added.
    Calling again only re-applies levels, so the CLI and tests can both call it.
    """
    mode = set_log_mode(log_mode) if log_mode is not None else get_log_mode()
    levels = _levels_for(level, mode)
    file_level, console_level = levels

    logger = logging.getLogger(logger_name) if logger_name else logging.getLogger()
    if _TICK_TRACE_FILTER not in logger.filters:
        logger.addFilter(_TICK_TRACE_FILTER)
    logger.setLevel(file_level)

    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(console_level if _is_console(handler) else file_level)
        return logger

    log_path = Path(log_file) if log_file else get_default_log_path()
    _attach_handlers(logger, log_path, _make_formatter(json_format), levels, add_console)
    return logger


@dataclass
class PerfRecord:
    """One timed span."""

    name: str
    category: str
    duration_ms: float
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "category": self.category,
            "duration_ms": round(self.duration_ms, 3),
            "metadata": dict(self.metadata),
        }


class _Span:
    __slots__ = ("_sink", "name", "category", "metadata", "_t0")

    def __init__(self, sink: deque, name: str, category: str, metadata: dict[str, Any]) -> None:
        self._sink = sink
        self.name = name
        self.category = category
        self.metadata = metadata
        self._t0 = 0.0

    def annotate(self, **metadata: Any) -> "_Span":
        self.metadata.update(metadata)
        return self

    def __enter__(self) -> "_Span":
        self._t0 = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, exc_tb) -> None:
        elapsed_ms = (time.perf_counter() - self._t0) * 1000.0
        self._sink.append(PerfRecord(self.name, self.category, elapsed_ms, self.metadata))


class _NullSpan:
    __slots__ = ()

    def annotate(self, **_metadata: Any) -> "_NullSpan":
        return self

    def __enter__(self) -> "_NullSpan":
        return self

    def __exit__(self, exc_type, exc, exc_tb) -> None:
        return None


_NULL_SPAN = _NullSpan()


class PerfTracer:
    """Span timings for the session, ramp and scheduler ticks.

    Disabled tracers hand out a shared no-op span. Enabled ones keep at most
    ``max_records`` spans, discarding the oldest, so a tracer left on through
    a long session stays bounded.
    """

    def __init__(self, label: str, *, enabled: Optional[bool] = None, max_records: int = 5000) -> None:
        self.label = label
        self.enabled = is_perf_logging_enabled() if enabled is None else bool(enabled)
        self._records: deque[PerfRecord] = deque(maxlen=max(1, int(max_records)))
        self._context: dict[str, Any] = {}

    def set_context(self, **metadata: Any) -> None:
        self._context.update(metadata)

    def span(
        self,
        name: str,
        *,
        category: str = "misc",
        metadata: Optional[dict[str, Any]] = None,
    ) -> _Span | _NullSpan:
        if not self.enabled:
            return _NULL_SPAN
        return _Span(self._records, name, category, dict(metadata or {}))

    def snapshot(self) -> dict[str, Any]:
        totals: dict[str, float] = {}
        for record in self._records:
            totals[record.category] = totals.get(record.category, 0.0) + record.duration_ms
        return {
            "label": self.label,
            "context": dict(self._context),
            "spans": [record.to_dict() for record in self._records],
            "categories": {name: round(total, 3) for name, total in totals.items()},
            "span_count": len(self._records),
        }

    def top_spans(self, *, limit: int = 10, threshold_ms: float = 0.0) -> list[dict[str, Any]]:
        ranked = sorted(
            (r for r in self._records if r.duration_ms >= threshold_ms),
            key=lambda r: r.duration_ms,
            reverse=True,
        )
        return [r.to_dict() for r in ranked[:limit]]

    def clear(self) -> None:
        self._records.clear()

    def consume(self) -> dict[str, Any]:
        """Snapshot, then drop the recorded spans (context is kept)."""
        snapshot = self.snapshot()
        self.clear()
        return snapshot

    def dump_table(self, *, limit: int = 10, threshold_ms: float = 0.0) -> list[str]:
        """Text table of the slowest spans, header first."""
        rows = self.top_spans(limit=limit, threshold_ms=threshold_ms)
        width = max([4, *(len(row["name"]) for row in rows)])
        header = f"{'Span':<{width}} | Category | Duration (ms) | Metadata"
        lines = [header, "-" * len(header)]
        for row in rows:
            meta = json.dumps(row["metadata"], ensure_ascii=False, sort_keys=True)
            lines.append(f"{row['name']:<{width}} | {row['category']:<8} | {row['duration_ms']:>13.3f} | {meta}")
        return lines
