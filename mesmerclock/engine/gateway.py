"""Feature gateway: the boundary where feature ids meet real effects.

The engines only ever call ``enable``/``disable`` with opaque ids and read
``is_enabled`` to capture a baseline. Hosts register one pair of callbacks per
feature; the registry keeps the enabled set and makes both calls idempotent.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)

FeatureHook = Callable[[], None]


class FeatureGateway(Protocol):
    def enable(self, feature_id: str) -> None: ...

    def disable(self, feature_id: str) -> None: ...

    def is_enabled(self, feature_id: str) -> bool: ...


class CallbackFeatureGateway:
    """Registered-capability map from feature id to enable/disable hooks.

    Unknown ids raise ``KeyError``; the session engine catches that per event
    like any other feature failure. Enabling an enabled feature (or disabling
    a disabled one) does not call the hook again.
    """

    def __init__(self) -> None:
        self._hooks: dict[str, tuple[Optional[FeatureHook], Optional[FeatureHook]]] = {}
        self._enabled: set[str] = set()
        self._lock = threading.RLock()

    def register(
        self,
        feature_id: str,
        on_enable: Optional[FeatureHook] = None,
        on_disable: Optional[FeatureHook] = None,
        *,
        enabled: bool = False,
    ) -> None:
        with self._lock:
            self._hooks[feature_id] = (on_enable, on_disable)
            if enabled:
                self._enabled.add(feature_id)
            else:
                self._enabled.discard(feature_id)

    def is_registered(self, feature_id: str) -> bool:
        with self._lock:
            return feature_id in self._hooks

    def _hooks_for(self, feature_id: str) -> tuple[Optional[FeatureHook], Optional[FeatureHook]]:
        try:
            return self._hooks[feature_id]
        except KeyError:
            raise KeyError(f"Unknown feature '{feature_id}'") from None

    def enable(self, feature_id: str) -> None:
        with self._lock:
            on_enable, _ = self._hooks_for(feature_id)
            if feature_id in self._enabled:
                return
            if on_enable is not None:
                on_enable()
            self._enabled.add(feature_id)
            logger.debug(f"[gateway] Enabled {feature_id}")

    def disable(self, feature_id: str) -> None:
        with self._lock:
            _, on_disable = self._hooks_for(feature_id)
            if feature_id not in self._enabled:
                return
            if on_disable is not None:
                on_disable()
            self._enabled.discard(feature_id)
            logger.debug(f"[gateway] Disabled {feature_id}")

    def is_enabled(self, feature_id: str) -> bool:
        with self._lock:
            return feature_id in self._enabled

    def enabled_features(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._enabled)


class LoggingFeatureGateway(CallbackFeatureGateway):
    """Accepts any feature id and just logs transitions. Used by the headless CLI host."""

    def _hooks_for(self, feature_id: str) -> tuple[Optional[FeatureHook], Optional[FeatureHook]]:
        return self._hooks.get(feature_id, (None, None))

    def enable(self, feature_id: str) -> None:
        was = self.is_enabled(feature_id)
        super().enable(feature_id)
        if not was:
            logger.info(f"[gateway] ON  {feature_id}")

    def disable(self, feature_id: str) -> None:
        was = self.is_enabled(feature_id)
        super().disable(feature_id)
        if was:
            logger.info(f"[gateway] OFF {feature_id}")
