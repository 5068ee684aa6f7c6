"""Tests for the difficulty tier / XP calculator."""

import pytest

from mesmerclock.features import FEATURE_CATALOG, FeatureCategory, get_feature
from mesmerclock.session import (
    DifficultyPolicy,
    DifficultyTier,
    TimelineModel,
    calculate_difficulty,
    tier_for_score,
)


def _model(duration, *segments):
    model = TimelineModel(name="t", duration_minutes=duration)
    for feature_id, start_min, stop_min in segments:
        start = model.add_start(feature_id, start_min)
        if stop_min is not None:
            model.add_stop(start, stop_min)
    return model


def test_flash_segment_xp():
    # 2*5 + 50 (xp bonus) + 1*3 (weight * active minutes), easy tier
    result = calculate_difficulty(_model(5, ("flash", 0, 3)))
    assert result.tier is DifficultyTier.EASY
    assert result.score == 1
    assert result.xp == 63


def test_empty_timeline_is_easy_and_pays_for_time():
    result = calculate_difficulty(_model(20))
    assert result.tier is DifficultyTier.EASY
    assert result.xp == 40


def test_deterministic():
    model = _model(45, ("brain_drain", 0, 30), ("spiral", 10, None), ("bubbles", 5, 15))
    assert calculate_difficulty(model) == calculate_difficulty(model)


def test_monotonic_in_duration():
    previous = -1
    for duration in (5, 30, 59, 60, 89, 90, 180):
        xp = calculate_difficulty(_model(duration, ("spiral", 0, None))).xp
        assert xp > previous
        previous = xp


def test_monotonic_in_feature_count():
    segments = [("corner_gif", 0, 5), ("flash", 0, 10), ("mandatory_videos", 2, 8), ("lock_cards", 1, None)]
    previous = -1
    for n in range(len(segments) + 1):
        xp = calculate_difficulty(_model(30, *segments[:n])).xp
        assert xp > previous
        previous = xp


def test_hard_features_raise_tier():
    model = _model(90, ("brain_drain", 0, 60), ("mandatory_videos", 0, 30), ("lock_cards", 10, 20))
    result = calculate_difficulty(model)
    # weights 2 + 2 + 1 plus duration bonus 2
    assert result.score == 7
    assert result.tier is DifficultyTier.EXTREME


def test_unknown_feature_uses_neutral_definition():
    definition = get_feature("mystery_effect")
    assert definition.difficulty_weight == 0
    assert definition.category is FeatureCategory.EXTRAS
    result = calculate_difficulty(_model(10, ("mystery_effect", 0, 5)))
    assert result.xp == 20 + definition.xp_bonus


@pytest.mark.parametrize(
    "score,tier",
    [(0, DifficultyTier.EASY), (1, DifficultyTier.EASY), (2, DifficultyTier.MEDIUM),
     (3, DifficultyTier.MEDIUM), (6, DifficultyTier.HARD), (7, DifficultyTier.EXTREME)],
)
def test_tier_thresholds(score, tier):
    assert tier_for_score(score) is tier


def test_custom_policy():
    policy = DifficultyPolicy(xp_per_minute=1, tier_thresholds=(0, 1, 2))
    result = calculate_difficulty(_model(10, ("flash", 0, 4)), policy=policy)
    assert result.tier is DifficultyTier.MEDIUM
    assert result.xp == round((10 + 50 + 4) * 1.25)


def test_tier_colors():
    assert DifficultyTier.EASY.color == "#90EE90"
    assert DifficultyTier.EXTREME.color == "#FF6347"
    assert DifficultyTier.HARD.label == "Hard"


def test_catalog_ramping_features():
    rampable = {fid for fid, d in FEATURE_CATALOG.items() if d.supports_ramping}
    assert rampable == {"flash", "pink_filter", "spiral", "brain_drain"}
