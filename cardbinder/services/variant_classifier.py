"""
Variant Classifier - maps a raw card record to one canonical rarity key.

Upstream rarity data is noisy: short codes ("sec"), full names
("Secret Rare"), variant markers in the card name ("Zoro (Parallel)") and
variant suffixes on the image id ("OP01-002_p1") all appear. Classification
is priority ordered and mutually exclusive; the first match wins:

    1. Manga
    2. SP
    3. Treasure Rare
    4. Alternative Art
    5. Normalized rarity code (or None)

INVARIANT: classify() is a pure function of rarity, card_name and
card_image_id. Nothing is cached, so editing a card's fields can never
leave a stale classification behind.
"""

import re
from collections.abc import Mapping
from enum import Enum
from typing import Any


class RarityKey(str, Enum):
    """Canonical classification keys, in display order."""

    COMMON = "Common"
    UNCOMMON = "Uncommon"
    RARE = "Rare"
    SUPER_RARE = "Super Rare"
    SECRET_RARE = "Secret Rare"
    TREASURE_RARE = "Treasure Rare"
    LEADER = "Leader"
    MANGA = "Manga"
    ALTERNATIVE_ART = "Alternative Art"
    SP = "SP"


RARITY_OPTIONS: tuple[str, ...] = tuple(key.value for key in RarityKey)

# Variant keys never count toward playsets
VARIANT_KEYS = frozenset(
    {RarityKey.ALTERNATIVE_ART, RarityKey.MANGA, RarityKey.SP, RarityKey.TREASURE_RARE}
)

_SHORT_CODES: dict[str, RarityKey] = {
    "c": RarityKey.COMMON,
    "uc": RarityKey.UNCOMMON,
    "r": RarityKey.RARE,
    "sr": RarityKey.SUPER_RARE,
    "sec": RarityKey.SECRET_RARE,
    "l": RarityKey.LEADER,
    "leader": RarityKey.LEADER,
    "tr": RarityKey.TREASURE_RARE,
    "sp": RarityKey.SP,
}

_MANGA_ID = re.compile(r"_m\d+$")
_SP_ID = re.compile(r"_sp\d*$")
_PARALLEL_ID = re.compile(r"_p\d+$")

_ALT_NAME_MARKERS = ("parallel", "(alt)", "alt art", "alternative art")
_ALT_RARITY_MARKERS = ("alternative art", "alt art")
_SP_NAME_MARKERS = ("(sp)", " sp ", " sp)")


def _field(card: Any, name: str) -> str:
    """Read a field from an object or mapping, lowercased, None as empty."""
    if isinstance(card, Mapping):
        value = card.get(name)
    else:
        value = getattr(card, name, None)
    return (value or "").strip().lower() if isinstance(value, str) else ""


def normalize_rarity(rarity: str | None) -> RarityKey | None:
    """
    Normalize a raw rarity code or name.

    Exact short codes are tried first, then substring fallbacks for full
    English names. Returns None when nothing matches (including "pr",
    parallel rare, which only has meaning together with the name or id
    checks in classify()).
    """
    s = (rarity or "").strip().lower()

    if s in _SHORT_CODES:
        return _SHORT_CODES[s]

    # "uncommon" contains "common", so the order of these checks matters
    if "uncommon" in s:
        return RarityKey.UNCOMMON
    if "common" in s:
        return RarityKey.COMMON
    if "super rare" in s:
        return RarityKey.SUPER_RARE
    if "secret rare" in s:
        return RarityKey.SECRET_RARE
    if "treasure" in s:
        return RarityKey.TREASURE_RARE
    if "rare" in s:
        return RarityKey.RARE
    if "leader" in s:
        return RarityKey.LEADER
    if "sp" in s:
        return RarityKey.SP

    return None


def is_manga_card(card: Any) -> bool:
    name = _field(card, "card_name")
    image_id = _field(card, "card_image_id")
    return "manga" in name or bool(_MANGA_ID.search(image_id))


def is_sp_card(card: Any) -> bool:
    name = _field(card, "card_name")
    image_id = _field(card, "card_image_id")
    rarity = _field(card, "rarity")

    if "sp" in rarity:
        return True
    if any(marker in name for marker in _SP_NAME_MARKERS) or name.endswith("sp"):
        return True
    return bool(_SP_ID.search(image_id))


def is_treasure_rare_card(card: Any) -> bool:
    name = _field(card, "card_name")
    if normalize_rarity(_field(card, "rarity")) is RarityKey.TREASURE_RARE:
        return True
    return "(tr)" in name or "treasure rare" in name


def is_alternate_art_card(card: Any) -> bool:
    """
    Parallel / alternative art printing.

    Manga, SP and Treasure Rare printings are often parallels too, but they
    have their own buckets and are excluded here.
    """
    if is_manga_card(card) or is_sp_card(card) or is_treasure_rare_card(card):
        return False

    name = _field(card, "card_name")
    rarity = _field(card, "rarity")
    image_id = _field(card, "card_image_id")

    if any(marker in name for marker in _ALT_NAME_MARKERS):
        return True
    if any(marker in rarity for marker in _ALT_RARITY_MARKERS):
        return True
    return bool(_PARALLEL_ID.search(image_id))


def classify(card: Any) -> RarityKey | None:
    """
    Classify a card into its canonical rarity key.

    Args:
        card: Object or mapping exposing rarity, card_name and card_image_id

    Returns:
        The first matching key in priority order, or None when the raw
        rarity is unrecognized and no variant marker is present.
    """
    if is_manga_card(card):
        return RarityKey.MANGA
    if is_sp_card(card):
        return RarityKey.SP
    if is_treasure_rare_card(card):
        return RarityKey.TREASURE_RARE
    if is_alternate_art_card(card):
        return RarityKey.ALTERNATIVE_ART
    return normalize_rarity(_field(card, "rarity"))


def counts_toward_playset(card: Any) -> bool:
    """Only base printings are tracked for playset completeness."""
    return classify(card) not in VARIANT_KEYS
