"""
System Collection Engine - the computed "Missing Alts" and "Missing Playsets" binders.

Both are derived from the catalog, the owned counts and the playset
thresholds each time they are read. Nothing about them is stored; the
only state held here is a cached copy of the full catalog, refreshed
explicitly with refresh().

    Missing Alts     = Alternative Art cards with an owned count of 0
    Missing Playsets = base printings (not Alternative Art, Manga, SP or
                       Treasure Rare) owned fewer times than the playset
                       threshold for their rarity

Both lists are sorted by (card_set_id, card_image_id).
"""

import asyncio
import logging

from cardbinder.config import MISSING_ALTS_ID, MISSING_PLAYSETS_ID, SYSTEM_BINDER_NAMES
from cardbinder.models.binder import BinderEntry, VirtualBinder
from cardbinder.models.card import Card
from cardbinder.models.failure import GatewayError
from cardbinder.models.preferences import RarityThresholds
from cardbinder.services.catalog import Catalog
from cardbinder.services.owned_counts import OwnedCountStore
from cardbinder.services.variant_classifier import VARIANT_KEYS, RarityKey, classify

logger = logging.getLogger(__name__)


def _catalog_order(card: Card) -> tuple[str, str]:
    return (card.card_set_id, card.card_image_id)


class SystemCollectionEngine:
    """Derives the system binders for the owner of an OwnedCountStore."""

    def __init__(
        self,
        catalog: Catalog,
        counts: OwnedCountStore,
        thresholds: RarityThresholds | None = None,
    ) -> None:
        self._catalog = catalog
        self._counts = counts
        self._thresholds = thresholds or RarityThresholds()
        self._cards: list[Card] = []
        self._by_id: dict[str, Card] = {}
        self._loaded = False
        self._loading = False

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def cards(self) -> tuple[Card, ...]:
        return tuple(self._cards)

    def card(self, card_image_id: str) -> Card | None:
        """Catalog lookup by id from the cached copy."""
        return self._by_id.get(card_image_id)

    @property
    def thresholds(self) -> RarityThresholds:
        return self._thresholds

    def update_thresholds(self, thresholds: RarityThresholds) -> None:
        self._thresholds = thresholds

    async def refresh(self) -> bool:
        """
        Refetch every set's cards from the catalog.

        Returns:
            True if the cache was replaced, False if the catalog could not
            be read (the previous cache is kept).
        """
        self._loading = True
        try:
            sets = await self._catalog.list_sets()
            per_set = await asyncio.gather(
                *(self._catalog.list_cards_in_set(summary.id) for summary in sets)
            )
        except GatewayError as e:
            logger.error("Failed to load catalog for system collections: %s", e.message)
            return False
        finally:
            self._loading = False

        self._cards = [card for cards in per_set for card in cards]
        self._by_id = {card.card_image_id: card for card in self._cards}
        self._loaded = True
        logger.info("Loaded %d catalog cards from %d sets", len(self._cards), len(sets))
        return True

    def missing_alts(self) -> list[Card]:
        missing = [
            card
            for card in self._cards
            if classify(card) is RarityKey.ALTERNATIVE_ART
            and self._counts.get_count(card.card_image_id) == 0
        ]
        return sorted(missing, key=_catalog_order)

    def missing_playsets(self) -> list[Card]:
        missing = []
        for card in self._cards:
            key = classify(card)
            if key in VARIANT_KEYS:
                continue
            if self._counts.get_count(card.card_image_id) < self._thresholds.playset_threshold(key):
                missing.append(card)
        return sorted(missing, key=_catalog_order)

    def system_collections(self) -> list[VirtualBinder]:
        """Both system binders; empty until counts and catalog are both loaded."""
        if not self._counts.ready or not self._loaded or self._loading:
            return []
        return [
            _virtual(MISSING_ALTS_ID, self.missing_alts()),
            _virtual(MISSING_PLAYSETS_ID, self.missing_playsets()),
        ]

    def get(self, binder_id: str) -> VirtualBinder | None:
        for binder in self.system_collections():
            if binder.id == binder_id:
                return binder
        return None


def _virtual(binder_id: str, cards: list[Card]) -> VirtualBinder:
    return VirtualBinder(
        id=binder_id,
        name=SYSTEM_BINDER_NAMES[binder_id],
        entries=tuple(BinderEntry(card=card, position=i) for i, card in enumerate(cards)),
    )
