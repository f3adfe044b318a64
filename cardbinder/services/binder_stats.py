"""
Summary statistics for the cards filed in a binder.

Prices missing from the catalog (None or 0) add nothing to the total
value; the card is still counted.
"""

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field

from cardbinder.models.card import Card
from cardbinder.services.variant_classifier import classify

DEFAULT_TOP_RARITIES = 4

UNKNOWN_RARITY = "Unknown"


@dataclass(frozen=True, slots=True)
class BinderStats:
    total_cards: int = 0
    total_value: float = 0.0
    rarity_breakdown: dict[str, int] = field(default_factory=dict)

    def top_rarities(self, limit: int = DEFAULT_TOP_RARITIES) -> list[tuple[str, int]]:
        """Most common rarity keys first; ties keep first-seen order."""
        ranked = sorted(self.rarity_breakdown.items(), key=lambda item: -item[1])
        return ranked[:limit]


def compute_stats(cards: Iterable[Card]) -> BinderStats:
    breakdown: Counter[str] = Counter()
    total_cards = 0
    total_value = 0.0

    for card in cards:
        total_cards += 1
        key = classify(card)
        breakdown[key.value if key is not None else UNKNOWN_RARITY] += 1
        if card.market_price:
            total_value += card.market_price

    return BinderStats(
        total_cards=total_cards,
        total_value=round(total_value, 2),
        rarity_breakdown=dict(breakdown),
    )
