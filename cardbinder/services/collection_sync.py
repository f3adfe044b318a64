"""
Sync Coordinator - prunes system binder rows as owned counts rise.

Watches the Owned-Count Store. For every card whose count went up since
the previous snapshot:

- an Alternative Art card reaching exactly 1 is removed from Missing Alts
- a base printing reaching exactly its playset threshold is removed from
  Missing Playsets (variants are never listed there)

Only exact-equality transitions trigger. A count that jumps past the
threshold in one step (possible only through an external bulk write, not
through increment()) does not; the system binders themselves are still
correct because they are recomputed from the counts.

System binders are computed views, so normally no stored rows back them
and every removal is a no-op. The removal only has an effect when a binder
with a system id is actually held by the Binder Store.
"""

import asyncio
import logging
from collections.abc import Callable, Mapping

from cardbinder.config import MISSING_ALTS_ID, MISSING_PLAYSETS_ID
from cardbinder.models.card import Card
from cardbinder.models.failure import PersistenceError
from cardbinder.models.preferences import RarityThresholds
from cardbinder.services.binders import BinderStore
from cardbinder.services.owned_counts import OwnedCountStore
from cardbinder.services.variant_classifier import VARIANT_KEYS, RarityKey, classify

logger = logging.getLogger(__name__)

CardLookup = Callable[[str], Card | None]


class SyncCoordinator:
    """
    Observer wiring the Owned-Count Store to Binder Store removals.

    Usage:
        coordinator = SyncCoordinator(counts, binders, engine.card, lambda: engine.thresholds)
        coordinator.start()
        ...
        await coordinator.drain()
        coordinator.stop()
    """

    def __init__(
        self,
        counts: OwnedCountStore,
        binders: BinderStore,
        card_lookup: CardLookup,
        thresholds: Callable[[], RarityThresholds],
    ) -> None:
        self._counts = counts
        self._binders = binders
        self._card_lookup = card_lookup
        self._thresholds = thresholds
        self._previous: dict[str, int] = {}
        self._remove_listener: Callable[[], None] | None = None
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def running(self) -> bool:
        return self._remove_listener is not None

    def start(self) -> None:
        if self._remove_listener is not None:
            return
        self._previous = dict(self._counts.counts)
        self._remove_listener = self._counts.add_listener(self._on_counts)

    def stop(self) -> None:
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None
        for task in self._pending:
            task.cancel()
        self._pending.clear()

    def removals_for(self, card_image_id: str, count: int) -> list[str]:
        """System binder ids a card should leave now that its count is ``count``."""
        card = self._card_lookup(card_image_id)
        if card is None:
            return []

        key = classify(card)
        targets = []
        if count == 1 and key is RarityKey.ALTERNATIVE_ART:
            targets.append(MISSING_ALTS_ID)
        if key not in VARIANT_KEYS and count == self._thresholds().playset_threshold(key):
            targets.append(MISSING_PLAYSETS_ID)
        return targets

    def _on_counts(self, snapshot: Mapping[str, int]) -> None:
        previous = self._previous
        self._previous = dict(snapshot)

        # The first hydration of an owner session is a baseline, not a transition
        if not self._counts.ready:
            return

        for card_image_id, count in snapshot.items():
            if count <= previous.get(card_image_id, 0):
                continue
            for binder_id in self.removals_for(card_image_id, count):
                self._schedule(binder_id, card_image_id)

    def _schedule(self, binder_id: str, card_image_id: str) -> None:
        task = asyncio.get_running_loop().create_task(self._remove(binder_id, card_image_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _remove(self, binder_id: str, card_image_id: str) -> None:
        try:
            removed = await self._binders.remove_all_by_card_id(binder_id, card_image_id)
        except PersistenceError as e:
            logger.error(
                "Failed to update system collection %s for %s: %s",
                binder_id,
                card_image_id,
                e.message,
            )
            return
        if removed:
            logger.info("Removed %d x %s from %s", removed, card_image_id, binder_id)

    async def drain(self) -> None:
        """Wait for scheduled removals to finish."""
        while self._pending:
            await asyncio.wait(set(self._pending))
