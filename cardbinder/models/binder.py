"""
Binder domain models.

INVARIANT: Entries are displayed in (position, membership_id) order.
Positions are ordering hints only. Concurrent sessions of the same owner
may write colliding positions, so the membership id breaks ties.

INVARIANT: All models are frozen. Stores swap whole values, which keeps
rolling back an optimistic change a matter of restoring the old value.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from cardbinder.config import SYSTEM_BINDER_NAMES
from cardbinder.models.card import Card


def is_system_binder(binder_id: str) -> bool:
    """System binders are computed views and cannot be renamed, resized or deleted."""
    return binder_id in SYSTEM_BINDER_NAMES


@dataclass(frozen=True, slots=True)
class BinderEntry:
    """
    One copy of a card filed in a binder.

    Attributes:
        card: Denormalized card snapshot
        position: Display ordering hint, per binder
        membership_id: Row id assigned on insert; None for entries that were
            never persisted (virtual binder entries)
    """

    card: Card
    position: int
    membership_id: int | None = None

    @property
    def card_image_id(self) -> str:
        return self.card.card_image_id

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "BinderEntry":
        """Build an entry from a ``binder_entries`` row."""
        data = dict(row.get("card_data") or {})
        data.setdefault("card_image_id", row["card_image_id"])
        return cls(
            card=Card.from_snapshot(data),
            position=int(row.get("position") or 0),
            membership_id=row.get("id"),
        )


def entry_sort_key(entry: BinderEntry) -> tuple[int, int]:
    """
    Stable display order.

    Entries without a membership id sort after persisted ones at the same
    position; Python's sort is stable so their relative order is kept.
    """
    membership = entry.membership_id if entry.membership_id is not None else 2**63
    return (entry.position, membership)


def sort_entries(entries: list[BinderEntry] | tuple[BinderEntry, ...]) -> tuple[BinderEntry, ...]:
    return tuple(sorted(entries, key=entry_sort_key))


@dataclass(frozen=True, slots=True)
class Binder:
    """A user-created binder with a square page grid."""

    id: str
    name: str
    binder_size: int = 3
    entries: tuple[BinderEntry, ...] = field(default_factory=tuple)

    @classmethod
    def from_row(cls, row: Mapping[str, Any], entries: tuple[BinderEntry, ...] = ()) -> "Binder":
        return cls(
            id=row["id"],
            name=row["name"],
            binder_size=int(row.get("binder_size") or 3),
            entries=entries,
        )

    @property
    def page_capacity(self) -> int:
        """Cards per page: a binder_size x binder_size grid."""
        return self.binder_size * self.binder_size

    def pages(self) -> list[tuple[BinderEntry, ...]]:
        """Split entries into display pages, the last one possibly partial."""
        capacity = self.page_capacity
        return [self.entries[i : i + capacity] for i in range(0, len(self.entries), capacity)]

    def max_position(self) -> int | None:
        if not self.entries:
            return None
        return max(entry.position for entry in self.entries)

    def count_of(self, card_image_id: str) -> int:
        """Number of copies of a card filed in this binder."""
        return sum(1 for entry in self.entries if entry.card_image_id == card_image_id)

    def with_entries(self, entries: tuple[BinderEntry, ...]) -> "Binder":
        return replace(self, entries=entries)


@dataclass(frozen=True, slots=True)
class VirtualBinder:
    """
    A read-only binder computed from the catalog and owned counts.

    Never stored as a binder row.
    """

    id: str
    name: str
    entries: tuple[BinderEntry, ...] = field(default_factory=tuple)
    is_system: bool = True

    @property
    def missing_count(self) -> int:
        return len(self.entries)

    @property
    def cards(self) -> list[Card]:
        return [entry.card for entry in self.entries]


@dataclass(frozen=True, slots=True)
class ReorderResult:
    """
    Outcome of persisting a reorder.

    Attributes:
        persisted: Membership ids whose new position was written
        skipped: Card ids of entries without a membership id (cannot be persisted)
        failed: Membership ids whose write failed
    """

    persisted: tuple[int, ...] = ()
    skipped: tuple[str, ...] = ()
    failed: tuple[int, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.skipped and not self.failed
