"""
Favorite card models.

A favorite keeps the card snapshot it was last refreshed with, the last
market price seen, and the change between the last two distinct prices.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime

from cardbinder.models.card import Card


def _utcnow() -> datetime:
    return datetime.now(UTC)


def price_delta(last_price: float | None, current: float | None) -> float | None:
    """
    Change from last_price to current, rounded to cents.

    None when either price is unknown or the price did not move.
    """
    if last_price is None or current is None or current == last_price:
        return None
    return round(current - last_price, 2)


@dataclass(frozen=True, slots=True)
class FavoriteEntry:
    """
    One favorited card.

    Attributes:
        card: Card snapshot from the latest refresh
        last_price: Last known market price, None while unpriced
        price_delta: Change at the last price move; kept until the next move
        updated_at: Time of the latest toggle or refresh
    """

    card: Card
    last_price: float | None = None
    price_delta: float | None = None
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def card_image_id(self) -> str:
        return self.card.card_image_id

    @classmethod
    def of(cls, card: Card) -> "FavoriteEntry":
        return cls(card=card, last_price=card.market_price)

    def refreshed(self, card: Card) -> "FavoriteEntry":
        """
        Entry after seeing ``card`` with its current price.

        An unknown or unchanged price only refreshes the snapshot, so the
        previous delta stays visible. A favorite added while unpriced takes
        the first known price as its baseline.
        """
        current = card.market_price
        delta = price_delta(self.last_price, current)
        if delta is not None:
            return FavoriteEntry(card=card, last_price=current, price_delta=delta)
        last_price = self.last_price if self.last_price is not None else current
        return FavoriteEntry(card=card, last_price=last_price, price_delta=self.price_delta)
