"""Feature catalog.

Each toggleable effect is addressed by an opaque string id. The engine never
interprets ids; the catalog only carries the policy data used by the
difficulty calculator and by tooling that lists what a timeline may contain.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional


class FeatureCategory(Enum):
    AUDIO = "audio"
    VIDEO = "video"
    OVERLAYS = "overlays"
    INTERACTIVE = "interactive"
    EXTRAS = "extras"


@dataclass(frozen=True)
class FeatureDefinition:
    """Static description of a feature.

    Attributes:
        id: Opaque feature id used by timelines and the feature gateway
        name: Display name
        category: Grouping used by editors
        xp_bonus: Flat XP granted for every timeline segment using the feature
        difficulty_weight: Contribution to the difficulty score (0 = trivial)
        supports_ramping: Whether a segment may carry start/end values
        ramp_parameter: Parameter-store name a ramped segment interpolates
    """

    id: str
    name: str
    category: FeatureCategory = FeatureCategory.EXTRAS
    xp_bonus: int = 10
    difficulty_weight: int = 0
    supports_ramping: bool = False
    ramp_parameter: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category.value,
            "xp_bonus": self.xp_bonus,
            "difficulty_weight": self.difficulty_weight,
            "supports_ramping": self.supports_ramping,
            "ramp_parameter": self.ramp_parameter,
        }


def _define(*defs: FeatureDefinition) -> dict[str, FeatureDefinition]:
    return {d.id: d for d in defs}


FEATURE_CATALOG: Mapping[str, FeatureDefinition] = _define(
    FeatureDefinition("audio_whispers", "Audio Whispers", FeatureCategory.AUDIO, 20, 0),
    FeatureDefinition("mind_wipe", "Mind Wipe", FeatureCategory.AUDIO, 50, 1),
    FeatureDefinition("flash", "Flash Images", FeatureCategory.VIDEO, 50, 1, True, "flash_opacity"),
    FeatureDefinition("mandatory_videos", "Mandatory Videos", FeatureCategory.VIDEO, 100, 2),
    FeatureDefinition("subliminal", "Subliminals", FeatureCategory.VIDEO, 30, 0),
    FeatureDefinition("bouncing_text", "Bouncing Text", FeatureCategory.VIDEO, 20, 0),
    FeatureDefinition("pink_filter", "Pink Filter", FeatureCategory.OVERLAYS, 40, 0, True, "pink_filter_opacity"),
    FeatureDefinition("spiral", "Spiral Overlay", FeatureCategory.OVERLAYS, 50, 1, True, "spiral_opacity"),
    FeatureDefinition("brain_drain", "Brain Drain", FeatureCategory.OVERLAYS, 80, 2, True, "brain_drain_intensity"),
    FeatureDefinition("bubbles", "Bubbles", FeatureCategory.INTERACTIVE, 30, 0),
    FeatureDefinition("lock_cards", "Lock Cards", FeatureCategory.INTERACTIVE, 60, 1),
    FeatureDefinition("bubble_count", "Bubble Count", FeatureCategory.INTERACTIVE, 40, 0),
    FeatureDefinition("corner_gif", "Corner GIF", FeatureCategory.EXTRAS, 10, 0),
)


def get_feature(feature_id: str, catalog: Mapping[str, FeatureDefinition] = FEATURE_CATALOG) -> FeatureDefinition:
    """Look up a feature; unknown ids get a neutral definition (no weight)."""
    found = catalog.get(feature_id)
    if found is not None:
        return found
    return FeatureDefinition(feature_id, feature_id.replace("_", " ").title())


def features_by_category(
    catalog: Mapping[str, FeatureDefinition] = FEATURE_CATALOG,
) -> dict[FeatureCategory, list[FeatureDefinition]]:
    grouped: dict[FeatureCategory, list[FeatureDefinition]] = {c: [] for c in FeatureCategory}
    for definition in catalog.values():
        grouped[definition.category].append(definition)
    return grouped
