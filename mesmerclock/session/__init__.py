"""Timeline sessions: data model, difficulty/XP calculation and playback engine."""

from .timeline import TimelineEvent, TimelineEventKind, TimelineModel
from .difficulty import (
    DEFAULT_POLICY,
    DifficultyPolicy,
    DifficultyResult,
    DifficultyTier,
    calculate_difficulty,
    tier_for_score,
)
from .events import SessionEvent, SessionEventEmitter, SessionEventType
from .engine import Rejection, SessionEngine, SessionState

__all__ = [
    # Data models
    "TimelineEvent",
    "TimelineEventKind",
    "TimelineModel",
    # Difficulty
    "DEFAULT_POLICY",
    "DifficultyPolicy",
    "DifficultyResult",
    "DifficultyTier",
    "calculate_difficulty",
    "tier_for_score",
    # Events
    "SessionEvent",
    "SessionEventEmitter",
    "SessionEventType",
    # Engine
    "Rejection",
    "SessionEngine",
    "SessionState",
]
