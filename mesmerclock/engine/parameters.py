"""Numeric parameter store shared by the ramp and the host.

Ceilings are policy data owned by the store: the ramp asks ``max_allowed``
instead of hard-coding limits per parameter.
"""

from __future__ import annotations

import logging
import math
import threading
from typing import Mapping, Optional, Protocol

logger = logging.getLogger(__name__)

DEFAULT_PARAMETER_CEILINGS: Mapping[str, float] = {
    "flash_opacity": 100.0,
    "spiral_opacity": 50.0,
    "pink_filter_opacity": 50.0,
    "master_volume": 100.0,
    "sub_audio_volume": 100.0,
    "brain_drain_intensity": 100.0,
}


class ParameterStore(Protocol):
    def get(self, name: str) -> float: ...

    def set(self, name: str, value: float) -> None: ...

    def max_allowed(self, name: str) -> float: ...


class InMemoryParameterStore:
    """Dict-backed store. ``get`` of an unknown name raises ``KeyError``."""

    def __init__(
        self,
        values: Optional[Mapping[str, float]] = None,
        ceilings: Optional[Mapping[str, float]] = None,
    ) -> None:
        self._values: dict[str, float] = dict(values or {})
        self._ceilings: dict[str, float] = dict(DEFAULT_PARAMETER_CEILINGS if ceilings is None else ceilings)
        self._lock = threading.RLock()

    def get(self, name: str) -> float:
        with self._lock:
            return self._values[name]

    def set(self, name: str, value: float) -> None:
        with self._lock:
            self._values[name] = value
        logger.debug(f"[tick.trace] [params] {name}={value}")

    def max_allowed(self, name: str) -> float:
        with self._lock:
            return self._ceilings.get(name, math.inf)

    def set_ceiling(self, name: str, ceiling: float) -> None:
        with self._lock:
            self._ceilings[name] = float(ceiling)

    def snapshot(self) -> dict[str, float]:
        with self._lock:
            return dict(self._values)
