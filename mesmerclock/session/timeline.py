"""
Timeline Data Model - Feature start/stop events anchored to session minutes.

A TimelineModel describes one bounded session: for each feature, Start events
paired with the Stop event that closes them, at integer minute offsets in
``[0, duration_minutes]``. An unpaired Start runs to the end of the session.

Editing helpers keep the pairing invariants intact (a paired Stop always lies
after its Start, minutes never leave the session). The SessionEngine runs a
frozen copy, so edits made while a session is playing do not affect it.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Dict, Any, List
import copy
import json
import uuid


class TimelineEventKind(Enum):
    """Whether an event switches its feature on or off."""
    START = "start"
    STOP = "stop"


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class TimelineEvent:
    """
    A single feature transition at a minute offset.

    Attributes:
        feature_id: Opaque id of the feature to enable/disable
        kind: START or STOP
        minute: Offset from session start in whole minutes
        id: Unique event id (generated when omitted)
        paired_event_id: Id of the matching STOP (on a START) or START (on a STOP)
        settings: Feature-specific settings applied with a START
        start_value: Optional intensity at segment start (rampable features)
        end_value: Optional intensity at segment end (rampable features)
    """
    feature_id: str
    kind: TimelineEventKind
    minute: int
    id: str = field(default_factory=_new_id)
    paired_event_id: Optional[str] = None
    settings: Dict[str, Any] = field(default_factory=dict)
    start_value: Optional[float] = None
    end_value: Optional[float] = None

    @property
    def is_start(self) -> bool:
        return self.kind is TimelineEventKind.START

    @property
    def is_stop(self) -> bool:
        return self.kind is TimelineEventKind.STOP

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "feature_id": self.feature_id,
            "kind": self.kind.value,
            "minute": self.minute,
        }
        if self.paired_event_id:
            data["paired_event_id"] = self.paired_event_id
        if self.settings:
            data["settings"] = dict(self.settings)
        if self.start_value is not None:
            data["start_value"] = self.start_value
        if self.end_value is not None:
            data["end_value"] = self.end_value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TimelineEvent:
        """Deserialize from dict. Raises KeyError/ValueError on malformed data."""
        minute = data["minute"]
        if isinstance(minute, bool) or not isinstance(minute, int):
            raise ValueError(f"Event minute must be an integer, got {minute!r}")
        return cls(
            feature_id=str(data["feature_id"]),
            kind=TimelineEventKind(data["kind"]),
            minute=minute,
            id=str(data.get("id") or _new_id()),
            paired_event_id=data.get("paired_event_id"),
            settings=dict(data.get("settings") or {}),
            start_value=data.get("start_value"),
            end_value=data.get("end_value"),
        )


@dataclass
class TimelineModel:
    """
    Complete session script.

    Attributes:
        name: Display name
        duration_minutes: Session length (positive)
        events: Start/stop events (use the editing helpers to keep pairs valid)
        id: Unique timeline id
        description: Optional description
        icon: Optional display glyph
        phrase_pools: Named phrase lists used by text-emitting features
    """
    name: str
    duration_minutes: int = 30
    events: List[TimelineEvent] = field(default_factory=list)
    id: str = field(default_factory=_new_id)
    description: str = ""
    icon: str = ""
    phrase_pools: Dict[str, List[str]] = field(default_factory=dict)

    # ----- queries -----

    def get_event(self, event_id: Optional[str]) -> Optional[TimelineEvent]:
        if not event_id:
            return None
        for event in self.events:
            if event.id == event_id:
                return event
        return None

    def paired_stop_of(self, start_event: TimelineEvent) -> Optional[TimelineEvent]:
        """Return the STOP closing ``start_event``, or None if it runs to the end."""
        if not start_event.is_start:
            return None
        stop = self.get_event(start_event.paired_event_id)
        if stop is None or not stop.is_stop:
            return None
        return stop

    def paired_start_of(self, stop_event: TimelineEvent) -> Optional[TimelineEvent]:
        if not stop_event.is_stop:
            return None
        start = self.get_event(stop_event.paired_event_id)
        if start is None or not start.is_start:
            return None
        return start

    def starts(self) -> List[TimelineEvent]:
        return [e for e in self.events if e.is_start]

    def active_minutes(self, start_event: TimelineEvent) -> int:
        """Minutes a START keeps its feature on (to its STOP or session end)."""
        stop = self.paired_stop_of(start_event)
        end = stop.minute if stop is not None else self.duration_minutes
        return max(0, min(end, self.duration_minutes) - start_event.minute)

    def feature_ids(self) -> List[str]:
        seen: List[str] = []
        for event in self.events:
            if event.feature_id not in seen:
                seen.append(event.feature_id)
        return seen

    def ordered_events(self) -> List[TimelineEvent]:
        """Events in application order.

        Nondecreasing minute; at a shared minute STOP events come before START
        events; otherwise insertion order is kept.
        """
        indexed = list(enumerate(self.events))
        indexed.sort(key=lambda pair: (pair[1].minute, 0 if pair[1].is_stop else 1, pair[0]))
        return [event for _, event in indexed]

    # ----- editing -----

    def _clamp_minute(self, minute: int) -> int:
        if isinstance(minute, bool) or not isinstance(minute, int):
            raise ValueError(f"Minute must be an integer, got {minute!r}")
        return max(0, min(minute, self.duration_minutes))

    def add_start(
        self,
        feature_id: str,
        minute: int,
        *,
        settings: Optional[Dict[str, Any]] = None,
        start_value: Optional[float] = None,
        end_value: Optional[float] = None,
    ) -> TimelineEvent:
        """Append an unpaired START for ``feature_id`` at ``minute`` (clamped)."""
        if not feature_id:
            raise ValueError("Feature id cannot be empty")
        event = TimelineEvent(
            feature_id=feature_id,
            kind=TimelineEventKind.START,
            minute=self._clamp_minute(minute),
            settings=dict(settings or {}),
            start_value=start_value,
            end_value=end_value,
        )
        self.events.append(event)
        return event

    def add_stop(self, start_event: TimelineEvent, minute: int) -> TimelineEvent:
        """Close ``start_event`` with a STOP.

        A minute at or before the start is moved to ``min(start + 1, duration)``.
        If the start already has a STOP, that STOP is moved instead of adding a
        second one.
        """
        if start_event not in self.events or not start_event.is_start:
            raise ValueError("add_stop requires a START event belonging to this timeline")
        target = self._clamp_minute(minute)
        if target <= start_event.minute:
            target = min(start_event.minute + 1, self.duration_minutes)

        existing = self.paired_stop_of(start_event)
        if existing is not None:
            existing.minute = target
            return existing

        stop = TimelineEvent(
            feature_id=start_event.feature_id,
            kind=TimelineEventKind.STOP,
            minute=target,
            paired_event_id=start_event.id,
        )
        start_event.paired_event_id = stop.id
        self.events.append(stop)
        return stop

    def remove_event(self, event: TimelineEvent) -> List[TimelineEvent]:
        """Remove ``event``; returns every event actually removed.

        Removing a START also removes its STOP. Removing a STOP leaves its START
        unpaired (running to session end).
        """
        if event not in self.events:
            return []
        removed = [event]
        if event.is_start:
            stop = self.paired_stop_of(event)
            if stop is not None:
                removed.append(stop)
        else:
            start = self.paired_start_of(event)
            if start is not None:
                start.paired_event_id = None
        self.events = [e for e in self.events if all(e is not r for r in removed)]
        return removed

    def set_duration(self, minutes: int) -> None:
        """Change the session length, clamping later events onto the new end."""
        if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes <= 0:
            raise ValueError(f"Duration must be a positive integer, got {minutes!r}")
        self.duration_minutes = minutes
        for event in self.events:
            if event.minute > minutes:
                event.minute = minutes

    def frozen_copy(self) -> TimelineModel:
        """Independent deep copy handed to a running session."""
        return copy.deepcopy(self)

    # ----- validation & persistence -----

    def validate(self) -> tuple[bool, str]:
        """
        Validate timeline structure.

        Returns:
            (is_valid, error_message)
        """
        if not self.name or not self.name.strip():
            return False, "Timeline name cannot be empty"

        if isinstance(self.duration_minutes, bool) or not isinstance(self.duration_minutes, int) \
                or self.duration_minutes <= 0:
            return False, f"Duration must be a positive integer, got {self.duration_minutes!r}"

        ids = [e.id for e in self.events]
        if len(ids) != len(set(ids)):
            return False, "Duplicate event ids"

        for event in self.events:
            if not (0 <= event.minute <= self.duration_minutes):
                return False, f"Event {event.id} minute {event.minute} outside [0, {self.duration_minutes}]"
            if event.is_stop:
                start = self.paired_start_of(event)
                if start is None:
                    return False, f"Stop event {event.id} ({event.feature_id}) has no start"
                if start.paired_event_id != event.id:
                    return False, f"Stop event {event.id} is not the stop of its start"
                if start.feature_id != event.feature_id:
                    return False, f"Stop event {event.id} closes a different feature"
                if event.minute < start.minute:
                    return False, f"Stop event {event.id} is before its start"
            elif event.paired_event_id and self.paired_stop_of(event) is None:
                return False, f"Start event {event.id} references missing stop {event.paired_event_id}"

        return True, ""

    def to_dict(self) -> Dict[str, Any]:
        """Serialize timeline to JSON-compatible dict."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "duration_minutes": self.duration_minutes,
            "events": [e.to_dict() for e in self.events],
            "phrase_pools": {k: list(v) for k, v in self.phrase_pools.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TimelineModel:
        """Deserialize from dict."""
        pools = data.get("phrase_pools") or {}
        return cls(
            name=data["name"],
            duration_minutes=data.get("duration_minutes", 30),
            events=[TimelineEvent.from_dict(e) for e in data.get("events", [])],
            id=str(data.get("id") or _new_id()),
            description=data.get("description", ""),
            icon=data.get("icon", ""),
            phrase_pools={str(k): [str(p) for p in v] for k, v in pools.items()},
        )

    def save(self, path: Path) -> None:
        """
        Save timeline to JSON file.

        Raises:
            ValueError: If timeline validation fails
        """
        is_valid, msg = self.validate()
        if not is_valid:
            raise ValueError(f"Cannot save invalid timeline: {msg}")

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)

    @classmethod
    def load(cls, path: Path) -> TimelineModel:
        """
        Load timeline from JSON file.

        Raises:
            FileNotFoundError: If file doesn't exist
            json.JSONDecodeError: If file contains invalid JSON
            ValueError: If timeline validation fails
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Timeline file not found: {path}")

        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        timeline = cls.from_dict(data)
        is_valid, msg = timeline.validate()
        if not is_valid:
            raise ValueError(f"Invalid timeline in {path}: {msg}")
        return timeline
