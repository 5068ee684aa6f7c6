"""Difficulty tier and XP award for a timeline.

Pure functions over a :class:`TimelineModel`. The coefficients live in a
:class:`DifficultyPolicy` so hosts can tune rewards without touching the
calculation; the defaults mirror the feature catalog's weights.

Both score and XP only grow when the session gets longer or gains feature
segments, and the same model always yields the same result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping

from ..features import FEATURE_CATALOG, FeatureDefinition, get_feature
from .timeline import TimelineModel


class DifficultyTier(Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    EXTREME = "extreme"

    @property
    def color(self) -> str:
        return _TIER_COLORS[self]

    @property
    def label(self) -> str:
        return self.value.title()


_TIER_COLORS = {
    DifficultyTier.EASY: "#90EE90",
    DifficultyTier.MEDIUM: "#FFD700",
    DifficultyTier.HARD: "#FFA500",
    DifficultyTier.EXTREME: "#FF6347",
}


@dataclass(frozen=True)
class DifficultyPolicy:
    """Tunable coefficients.

    ``tier_thresholds`` are inclusive upper score bounds for easy/medium/hard;
    anything above the last bound is extreme. ``duration_bonus`` maps a
    minimum duration to the score bonus it grants (highest match wins).
    """

    xp_per_minute: int = 2
    tier_thresholds: tuple[int, int, int] = (1, 3, 6)
    duration_bonus: tuple[tuple[int, int], ...] = ((60, 1), (90, 2))
    tier_multipliers: Mapping[DifficultyTier, float] = field(
        default_factory=lambda: {
            DifficultyTier.EASY: 1.0,
            DifficultyTier.MEDIUM: 1.25,
            DifficultyTier.HARD: 1.5,
            DifficultyTier.EXTREME: 2.0,
        }
    )


DEFAULT_POLICY = DifficultyPolicy()


@dataclass(frozen=True)
class DifficultyResult:
    tier: DifficultyTier
    xp: int
    score: int


def _duration_bonus(minutes: int, policy: DifficultyPolicy) -> int:
    bonus = 0
    for threshold, value in policy.duration_bonus:
        if minutes >= threshold:
            bonus = max(bonus, value)
    return bonus


def tier_for_score(score: int, policy: DifficultyPolicy = DEFAULT_POLICY) -> DifficultyTier:
    easy, medium, hard = policy.tier_thresholds
    if score <= easy:
        return DifficultyTier.EASY
    if score <= medium:
        return DifficultyTier.MEDIUM
    if score <= hard:
        return DifficultyTier.HARD
    return DifficultyTier.EXTREME


def calculate_difficulty(
    model: TimelineModel,
    catalog: Mapping[str, FeatureDefinition] = FEATURE_CATALOG,
    policy: DifficultyPolicy = DEFAULT_POLICY,
) -> DifficultyResult:
    """Compute tier and XP for ``model``.

    score = sum(weight of each START) + duration bonus
    base  = xp_per_minute * duration + sum(xp_bonus) + sum(weight * active minutes)
    xp    = round(base * tier multiplier)
    """
    duration = max(0, int(model.duration_minutes))
    score = _duration_bonus(duration, policy)
    base = policy.xp_per_minute * duration

    for start in model.starts():
        definition = get_feature(start.feature_id, catalog)
        score += definition.difficulty_weight
        base += definition.xp_bonus
        base += definition.difficulty_weight * model.active_minutes(start)

    tier = tier_for_score(score, policy)
    xp = int(round(base * policy.tier_multipliers.get(tier, 1.0)))
    return DifficultyResult(tier=tier, xp=xp, score=score)
