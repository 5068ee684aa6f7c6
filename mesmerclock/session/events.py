"""Event system for broadcasting session, ramp and scheduler changes.

Provides event types, event data structures, and event emitter for decoupled
communication between the engines and UI/logging/external systems.

Usage:
    emitter = SessionEventEmitter()
    emitter.subscribe(SessionEventType.PHASE_CHANGED, lambda evt: print(evt.data))
    emitter.emit(SessionEvent(SessionEventType.PHASE_CHANGED, data={"minute": 3}))
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Any, Optional
import logging
import time


class SessionEventType(Enum):
    """Types of events that can occur while the engines run."""

    # Session lifecycle
    SESSION_START = auto()      # Timeline session started
    SESSION_COMPLETED = auto()  # Session finished (naturally or stopped with credit)
    SESSION_ABANDONED = auto()  # Session stopped early without credit (xp=0)
    SESSION_STOP = auto()       # Session ticking stopped for any reason

    # Playback
    PROGRESS_UPDATED = auto()   # Every session tick
    PHASE_CHANGED = auto()      # One or more timeline events applied

    # Errors
    FEATURE_ERROR = auto()      # Feature gateway failed for one event

    # Intensity ramp
    RAMP_START = auto()
    RAMP_PROGRESS = auto()
    RAMP_COMPLETE = auto()
    RAMP_STOP = auto()

    # Scheduler
    SCHEDULER_AUTO_START = auto()
    SCHEDULER_AUTO_STOP = auto()


@dataclass
class SessionEvent:
    """Represents an event with optional payload data.

    Attributes:
        event_type: Type of event that occurred
        data: Optional dictionary with event-specific data
        timestamp: Optional timestamp (can be set by emitter)
    """
    event_type: SessionEventType
    data: Optional[dict[str, Any]] = None
    timestamp: Optional[float] = None

    def __str__(self) -> str:
        """Human-readable event representation."""
        if self.data:
            data_str = ", ".join(f"{k}={v}" for k, v in self.data.items())
            return f"SessionEvent({self.event_type.name}, {data_str})"
        return f"SessionEvent({self.event_type.name})"


EventCallback = Callable[[SessionEvent], None]


class SessionEventEmitter:
    """Event bus shared by the session engine, ramp and scheduler.

    Allows components to subscribe to specific event types and receive
    notifications when those events occur. Supports multiple subscribers
    per event type. A failing subscriber is logged and skipped.
    """

    def __init__(self, time_provider: Optional[Callable[[], float]] = None):
        self._subscribers: dict[SessionEventType, list[EventCallback]] = {}
        self._time = time_provider or time.time
        self.logger = logging.getLogger(__name__)

    def subscribe(self, event_type: SessionEventType, callback: EventCallback) -> None:
        """Subscribe to a specific event type.

        Args:
            event_type: Type of event to listen for
            callback: Function to call when event occurs (receives SessionEvent)
        """
        if event_type not in self._subscribers:
            self._subscribers[event_type] = []

        if callback not in self._subscribers[event_type]:
            self._subscribers[event_type].append(callback)
            self.logger.debug(f"[events] Subscribed to {event_type.name} (total={len(self._subscribers[event_type])})")

    def subscribe_all(self, callback: EventCallback) -> None:
        for event_type in SessionEventType:
            self.subscribe(event_type, callback)

    def unsubscribe(self, event_type: SessionEventType, callback: EventCallback) -> None:
        if event_type in self._subscribers:
            if callback in self._subscribers[event_type]:
                self._subscribers[event_type].remove(callback)
                self.logger.debug(f"[events] Unsubscribed from {event_type.name} (total={len(self._subscribers[event_type])})")

    def emit(self, event: SessionEvent) -> None:
        """Emit an event to all subscribed callbacks."""
        if event.timestamp is None:
            event.timestamp = self._time()

        if event.event_type is SessionEventType.PROGRESS_UPDATED:
            self.logger.debug(f"[tick.trace] [events] Emitting: {event}")
        else:
            self.logger.debug(f"[events] Emitting: {event}")

        # Copy so a callback may unsubscribe itself
        for callback in list(self._subscribers.get(event.event_type, ())):
            try:
                callback(event)
            except Exception as e:
                self.logger.error(f"[events] Callback error for {event.event_type.name}: {e}", exc_info=True)

    def clear_all(self) -> None:
        """Remove all event subscribers (useful for testing/cleanup)."""
        self._subscribers.clear()
        self.logger.debug("[events] Cleared all subscribers")
