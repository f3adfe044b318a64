"""
Collector session - one owner's stores wired together.

A CollectorSession owns:

- an OwnedCountStore (card id -> owned quantity)
- a BinderStore (user binders and their entries)
- a SystemCollectionEngine (computed Missing Alts / Missing Playsets)
- a SyncCoordinator (prunes system binder rows as counts rise)
- CollectionPreferences (rarity toggles and thresholds)
- a FavoritesStore (watched cards and their price moves)

INVARIANT: Every store in a session is scoped to the same owner. Switching
owner clears all of them before the new owner's data is loaded.

SessionRegistry keeps one open session per owner for the HTTP layer.
"""

import asyncio
import logging
from types import TracebackType

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardbinder.config import settings
from cardbinder.db.change_feed import ChangeFeed
from cardbinder.db.gateway import PersistenceGateway, SqlAlchemyGateway
from cardbinder.models.binder import VirtualBinder
from cardbinder.models.favorites import FavoriteEntry
from cardbinder.models.preferences import CollectionPreferences, RarityThresholds
from cardbinder.services.binders import BinderStore
from cardbinder.services.catalog import Catalog, SqlCatalog
from cardbinder.services.collection_sync import SyncCoordinator
from cardbinder.services.favorites import FavoritesStore
from cardbinder.services.owned_counts import OwnedCountStore
from cardbinder.services.system_collections import SystemCollectionEngine
from cardbinder.services.variant_classifier import classify

logger = logging.getLogger(__name__)


class CollectorSession:
    """
    Composition root for one owner.

    Usage:
        async with CollectorSession.from_session_factory(factory) as session:
            await session.open("user-123")
            await session.counts.increment("OP01-001")
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        catalog: Catalog,
        preferences: CollectionPreferences | None = None,
    ) -> None:
        self.gateway = gateway
        self.catalog = catalog
        self.preferences = preferences or CollectionPreferences()
        self.counts = OwnedCountStore(gateway, page_size=settings.owned_count_page_size)
        self.binders = BinderStore(
            gateway,
            catalog,
            debounce_seconds=settings.binder_refresh_debounce_seconds,
            default_binder_size=settings.default_binder_size,
        )
        self.system = SystemCollectionEngine(catalog, self.counts, self.preferences.thresholds)
        self.favorites = FavoritesStore()
        self.coordinator = SyncCoordinator(
            self.counts,
            self.binders,
            self.system.card,
            lambda: self.system.thresholds,
        )
        self._closed = False

    @classmethod
    def from_session_factory(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        feed: ChangeFeed | None = None,
        preferences: CollectionPreferences | None = None,
    ) -> "CollectorSession":
        """Build a session over SQLAlchemy, sharing ``feed`` with other sessions."""
        gateway = SqlAlchemyGateway.for_factory(session_factory, feed)
        catalog = SqlCatalog(session_factory, lock=gateway.lock)
        return cls(gateway, catalog, preferences)

    @property
    def owner_id(self) -> str | None:
        return self.counts.owner_id

    @property
    def ready(self) -> bool:
        return self.counts.ready and self.binders.ready

    async def open(self, owner_id: str | None) -> None:
        """
        Scope every store to ``owner_id`` and load its data.

        Passing None signs out: all stores are cleared and stay empty.
        """
        self.coordinator.stop()
        await self.counts.set_owner(owner_id)
        await self.binders.set_owner(owner_id)
        self.favorites.set_owner(owner_id)
        if owner_id is None:
            return

        if not self.system.loaded:
            await self.system.refresh()
        self.coordinator.start()
        logger.info(
            "Opened session for %s: %d owned cards, %d binders",
            owner_id,
            self.counts.unique_cards(),
            len(self.binders.binders),
        )

    async def switch_owner(self, owner_id: str | None) -> None:
        await self.open(owner_id)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.coordinator.stop()
        await self.counts.close()
        await self.binders.close()

    def update_thresholds(self, thresholds: RarityThresholds) -> None:
        self.preferences.update_thresholds(thresholds)
        self.system.update_thresholds(self.preferences.thresholds)

    def update_preferences(self, preferences: CollectionPreferences) -> None:
        """Replace rarity toggles and thresholds in one step."""
        self.preferences.enabled_rarities = dict(preferences.enabled_rarities)
        self.update_thresholds(preferences.thresholds)

    def is_collected(self, card_image_id: str) -> bool:
        """Owned count against the collected threshold of the card's rarity."""
        card = self.system.card(card_image_id)
        key = classify(card) if card is not None else None
        threshold = self.preferences.thresholds.collected_threshold(key)
        return self.counts.is_collected(card_image_id, threshold)

    async def refresh_favorite_prices(self) -> list[FavoriteEntry]:
        """
        Reload the catalog and record each favorite's price move.

        If the catalog cannot be read, the cached prices are used, so no
        favorite moves.
        """
        await self.system.refresh()
        refreshed = []
        for card_image_id in list(self.favorites.favorites):
            card = self.system.card(card_image_id)
            if card is not None:
                refreshed.append(self.favorites.update_price(card))
        return refreshed

    def system_collections(self) -> list[VirtualBinder]:
        return self.system.system_collections()

    async def wait_idle(self) -> None:
        """Wait until change-driven refreshes and coordinator removals settle."""
        await asyncio.gather(self.counts.wait_idle(), self.binders.wait_idle())
        await self.coordinator.drain()

    async def __aenter__(self) -> "CollectorSession":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()


class SessionRegistry:
    """
    One open CollectorSession per owner.

    All sessions share one gateway, so they share its change feed and, on
    SQLite, its lock.

    Sessions are opened lazily on first use and live until close_all().
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.gateway = SqlAlchemyGateway.for_factory(session_factory)
        self.catalog = SqlCatalog(session_factory, lock=self.gateway.lock)
        self._sessions: dict[str, CollectorSession] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    async def get(self, owner_id: str) -> CollectorSession:
        async with self._lock:
            session = self._sessions.get(owner_id)
            if session is None:
                session = CollectorSession(self.gateway, self.catalog)
                await session.open(owner_id)
                self._sessions[owner_id] = session
            return session

    async def close_all(self) -> None:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            await session.close()
