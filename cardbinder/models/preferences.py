"""
Per-rarity collection preferences.

Two threshold concepts are kept apart:
- ``collected``: copies needed for a card to count as collected (default 1)
- ``playset``: copies needed for a complete playset (default 4)
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator

from cardbinder.config import settings
from cardbinder.services.variant_classifier import (
    RARITY_OPTIONS,
    RarityKey,
    classify,
    normalize_rarity,
)


def _defaults(value: int) -> dict[str, int]:
    return {key: value for key in RARITY_OPTIONS}


def _name(key: RarityKey | str) -> str:
    return key.value if isinstance(key, RarityKey) else key


def _known_keys(values: dict[str, Any]) -> dict[str, Any]:
    unknown = sorted(set(values) - set(RARITY_OPTIONS))
    if unknown:
        raise ValueError(f"Unknown rarity keys: {', '.join(unknown)}")
    return values


class RarityThresholds(BaseModel):
    """Copies required per classification key."""

    collected: dict[str, int] = Field(
        default_factory=lambda: _defaults(settings.default_collected_threshold),
        description="Copies needed for a card to count as collected",
    )
    playset: dict[str, int] = Field(
        default_factory=lambda: _defaults(settings.default_playset_threshold),
        description="Copies needed for a complete playset",
    )

    @field_validator("collected", "playset")
    @classmethod
    def _check_thresholds(cls, values: dict[str, int]) -> dict[str, int]:
        if any(count < 0 for count in values.values()):
            raise ValueError("Thresholds cannot be negative")
        return _known_keys(values)

    def collected_threshold(self, key: RarityKey | str | None) -> int:
        if key is None:
            return settings.default_collected_threshold
        return self.collected.get(_name(key)) or settings.default_collected_threshold

    def playset_threshold(self, key: RarityKey | str | None) -> int:
        """Unset or zero thresholds fall back to the default playset size."""
        if key is None:
            return settings.default_playset_threshold
        return self.playset.get(_name(key)) or settings.default_playset_threshold


class CollectionPreferences(BaseModel):
    """Rarity visibility toggles plus thresholds."""

    enabled_rarities: dict[str, bool] = Field(
        default_factory=lambda: dict.fromkeys(RARITY_OPTIONS, True),
        description="Rarity keys shown in card lists",
    )
    thresholds: RarityThresholds = Field(default_factory=RarityThresholds)

    @field_validator("enabled_rarities")
    @classmethod
    def _check_rarities(cls, values: dict[str, bool]) -> dict[str, bool]:
        return _known_keys(values)

    def set_rarity_enabled(self, rarity: str, enabled: bool) -> None:
        self.enabled_rarities[rarity] = enabled

    def toggle_rarity(self, rarity: str) -> None:
        self.enabled_rarities[rarity] = not self.enabled_rarities.get(rarity, True)

    def set_all(self, enabled: bool) -> None:
        self.enabled_rarities = dict.fromkeys(RARITY_OPTIONS, enabled)

    def is_rarity_enabled(self, rarity: str | None) -> bool:
        """Check a raw rarity code against the toggles."""
        key = normalize_rarity(rarity)
        if key is None:
            return True
        return self.enabled_rarities.get(key.value, True)

    def is_card_visible(self, card: object) -> bool:
        key = classify(card)
        if key is None:
            return True
        return self.enabled_rarities.get(key.value, True)

    def update_thresholds(self, thresholds: RarityThresholds) -> None:
        self.thresholds = thresholds
