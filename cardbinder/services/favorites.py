"""
Favorites Store - cards the owner watches for price moves.

Favorites are held in memory for the life of the owner's session and are
cleared when the session switches owner. Nothing is written through the
gateway.
"""

import logging
from collections.abc import Mapping
from types import MappingProxyType

from cardbinder.models.card import Card
from cardbinder.models.failure import FavoriteNotFoundError, SessionScopeError
from cardbinder.models.favorites import FavoriteEntry

logger = logging.getLogger(__name__)


class FavoritesStore:
    """
    Favorited cards for one owner session, keyed by card image id.

    Usage:
        store = FavoritesStore()
        store.set_owner("user-123")
        store.toggle(card)             # True, now a favorite
        store.update_price(repriced)   # records the price delta
    """

    def __init__(self) -> None:
        self._owner_id: str | None = None
        self._favorites: dict[str, FavoriteEntry] = {}

    @property
    def owner_id(self) -> str | None:
        return self._owner_id

    @property
    def favorites(self) -> Mapping[str, FavoriteEntry]:
        return MappingProxyType(self._favorites)

    def set_owner(self, owner_id: str | None) -> None:
        if owner_id != self._owner_id:
            self._favorites = {}
        self._owner_id = owner_id

    def _require_owner(self) -> str:
        if self._owner_id is None:
            raise SessionScopeError("FavoritesStore used without an owner; call set_owner() first")
        return self._owner_id

    def is_favorite(self, card_image_id: str) -> bool:
        return card_image_id in self._favorites

    def get(self, card_image_id: str) -> FavoriteEntry | None:
        return self._favorites.get(card_image_id)

    def toggle(self, card: Card) -> bool:
        """Add the card, or drop it if it already is a favorite. Returns the new state."""
        owner_id = self._require_owner()
        if self._favorites.pop(card.card_image_id, None) is not None:
            logger.debug("Unfavorited %s for %s", card.card_image_id, owner_id)
            return False
        self._favorites[card.card_image_id] = FavoriteEntry.of(card)
        logger.debug("Favorited %s for %s", card.card_image_id, owner_id)
        return True

    def remove(self, card_image_id: str) -> bool:
        """Returns False if the card was not a favorite."""
        self._require_owner()
        return self._favorites.pop(card_image_id, None) is not None

    def update_price(self, card: Card) -> FavoriteEntry:
        """
        Refresh a favorite with the card's current snapshot and price.

        Raises:
            FavoriteNotFoundError: If the card is not a favorite
        """
        self._require_owner()
        existing = self._favorites.get(card.card_image_id)
        if existing is None:
            raise FavoriteNotFoundError(card.card_image_id)
        refreshed = existing.refreshed(card)
        self._favorites[card.card_image_id] = refreshed
        return refreshed
