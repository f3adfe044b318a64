"""
Catalog card and set models.

Card doubles as the denormalized snapshot stored with each binder entry,
so it is rebuilt from both catalog rows and stored JSON. Prices that do
not parse become None rather than failing the whole card.
"""

from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields, replace
from typing import Any


def _text(value: Any) -> str | None:
    """Free-form catalog fields arrive as str, int or null; keep them as text."""
    if value is None:
        return None
    return str(value)


def _price(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def set_id_from_card_set_id(card_set_id: str | None) -> str:
    """OP01-001 -> OP01."""
    if not card_set_id:
        return ""
    return card_set_id.split("-")[0]


@dataclass(frozen=True, slots=True)
class SetSummary:
    """A released set: id (e.g. OP01) and display name (e.g. Romance Dawn)."""

    id: str
    name: str


@dataclass(frozen=True, slots=True)
class Card:
    """
    A catalog card, also used as the denormalized snapshot stored in binders.

    Attributes:
        card_image_id: Unique within a set and variant (e.g. "OP01-001_p1")
        card_name: Display name, may carry variant markers ("Zoro (Parallel)")
        set_id: Set prefix (e.g. "OP01")
        card_set_id: Printed collector id (e.g. "OP01-001")
        rarity: Raw rarity code or name as delivered upstream
        card_image: Image URL, empty when unknown
        market_price: Last known market price, None when unpriced
    """

    card_image_id: str
    card_name: str
    set_id: str = ""
    card_set_id: str = ""
    set_name: str = ""
    rarity: str = ""
    card_color: str | None = None
    card_type: str | None = None
    card_cost: str | None = None
    card_power: str | None = None
    counter_amount: str | None = None
    attribute: str | None = None
    card_text: str | None = None
    card_image: str = ""
    market_price: float | None = None

    @classmethod
    def from_snapshot(cls, data: Mapping[str, Any]) -> "Card":
        """
        Rebuild a card from a stored snapshot.

        Unknown keys are ignored so snapshots written by older or newer
        clients still load.
        """
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        card_set_id = values.get("card_set_id") or ""
        return cls(
            card_image_id=str(values.get("card_image_id") or ""),
            card_name=str(values.get("card_name") or ""),
            set_id=values.get("set_id") or set_id_from_card_set_id(card_set_id),
            card_set_id=card_set_id,
            set_name=values.get("set_name") or "",
            rarity=values.get("rarity") or "",
            card_color=_text(values.get("card_color")),
            card_type=_text(values.get("card_type")),
            card_cost=_text(values.get("card_cost")),
            card_power=_text(values.get("card_power")),
            counter_amount=_text(values.get("counter_amount")),
            attribute=_text(values.get("attribute")),
            card_text=_text(values.get("card_text")),
            card_image=values.get("card_image") or "",
            market_price=_price(values.get("market_price")),
        )

    @classmethod
    def from_catalog_row(cls, row: Mapping[str, Any]) -> "Card":
        """Build a card from a row of the ``cards`` catalog table."""
        card_set_id = row.get("card_set_id") or ""
        return cls(
            card_image_id=row["card_image_id"],
            card_name=row.get("card_name") or "",
            set_id=set_id_from_card_set_id(card_set_id),
            card_set_id=card_set_id,
            set_name=row.get("set_name") or "",
            rarity=row.get("rarity") or "",
            card_color=_text(row.get("card_color")),
            card_type=_text(row.get("card_type")),
            card_cost=_text(row.get("cost")),
            card_power=_text(row.get("power")),
            counter_amount=_text(row.get("counter")),
            attribute=_text(row.get("attribute")),
            card_text=_text(row.get("card_effect") or row.get("card_trigger")),
            card_image=row.get("card_image") or "",
            market_price=_price(row.get("market_price")),
        )

    def to_snapshot(self) -> dict[str, Any]:
        """Serialize for denormalized storage in a binder entry."""
        return asdict(self)

    def with_image(self, card_image: str) -> "Card":
        return replace(self, card_image=card_image)
