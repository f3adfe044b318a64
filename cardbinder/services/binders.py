"""
Binder Store - the owner's binders and their ordered entries.

Every mutation goes through apply_optimistic(): local state changes first
(or, for inserts that need a generated id, right after the write), and a
failed write is rolled back before a PersistenceError reaches the caller.

Remote change notifications on the binders and binder_entries tables are
debounced, so a burst of writes (a bulk add from another session) causes a
single full refetch instead of one per row.

INVARIANT: remove_entry() removes exactly one entry. Duplicates of the
same card are told apart by membership id.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import replace
from typing import TypeVar

from cardbinder.config import ALLOWED_BINDER_SIZES, UNTITLED_BINDER_NAME, settings
from cardbinder.db.change_feed import Subscription
from cardbinder.db.gateway import BINDER_ENTRIES, BINDERS, PersistenceGateway, Row
from cardbinder.models.binder import (
    Binder,
    BinderEntry,
    ReorderResult,
    is_system_binder,
    sort_entries,
)
from cardbinder.models.card import Card
from cardbinder.models.failure import (
    BinderNotFoundError,
    EntryNotFoundError,
    FailureDetail,
    GatewayError,
    InvalidBinderSizeError,
    PersistenceError,
    SessionScopeError,
    SystemBinderError,
)
from cardbinder.services.catalog import Catalog
from cardbinder.services.debounce import Debouncer
from cardbinder.services.optimistic import apply_optimistic

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _noop() -> None:
    pass


def clean_binder_name(name: str) -> str:
    return name.strip() or UNTITLED_BINDER_NAME


class BinderStore:
    """
    Binders for one owner session.

    Usage:
        store = BinderStore(gateway, catalog)
        await store.set_owner("user-123")
        binder = await store.create("Romance Dawn")
        await store.add_entry(binder.id, card)
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        catalog: Catalog | None = None,
        *,
        debounce_seconds: float | None = None,
        default_binder_size: int | None = None,
    ) -> None:
        self._gateway = gateway
        self._catalog = catalog
        self._default_size = default_binder_size or settings.default_binder_size
        delay = (
            settings.binder_refresh_debounce_seconds
            if debounce_seconds is None
            else debounce_seconds
        )
        self._debouncer = Debouncer(delay, self._refresh_from_remote)
        self._owner_id: str | None = None
        self._binders: list[Binder] = []
        self._ready = False
        self._last_error: FailureDetail | None = None
        self._subscriptions: list[Subscription] = []
        self._generation = 0
        self._closed = False

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def owner_id(self) -> str | None:
        return self._owner_id

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def binders(self) -> tuple[Binder, ...]:
        return tuple(self._binders)

    @property
    def last_error(self) -> FailureDetail | None:
        return self._last_error

    def clear_error(self) -> None:
        self._last_error = None

    def get(self, binder_id: str) -> Binder | None:
        for binder in self._binders:
            if binder.id == binder_id:
                return binder
        return None

    def require(self, binder_id: str) -> Binder:
        binder = self.get(binder_id)
        if binder is None:
            raise BinderNotFoundError(binder_id)
        return binder

    def card_count_in_binder(self, binder_id: str, card_image_id: str) -> int:
        binder = self.get(binder_id)
        return binder.count_of(card_image_id) if binder else 0

    def _index(self, binder_id: str) -> int | None:
        for index, binder in enumerate(self._binders):
            if binder.id == binder_id:
                return index
        return None

    def _put(self, binder: Binder) -> None:
        """Replace the held binder with the same id; no-op if it is gone."""
        index = self._index(binder.id)
        if index is not None:
            self._binders[index] = binder

    def _update_entries(
        self, binder_id: str, change: Callable[[tuple[BinderEntry, ...]], tuple[BinderEntry, ...]]
    ) -> None:
        binder = self.get(binder_id)
        if binder is not None:
            self._put(binder.with_entries(change(binder.entries)))

    # -------------------------------------------------------------------------
    # Session lifecycle
    # -------------------------------------------------------------------------

    async def set_owner(self, owner_id: str | None) -> None:
        """Switch owner, hydrate, and subscribe to remote changes."""
        self._require_open()
        if owner_id == self._owner_id and self._ready:
            return

        self._detach()
        self._owner_id = owner_id
        self._binders = []
        self._last_error = None
        self._ready = False

        if owner_id is not None:
            await self.hydrate()
            self._subscriptions = [
                self._gateway.subscribe(table, owner_id, self._debouncer.trigger)
                for table in (BINDERS, BINDER_ENTRIES)
            ]

        self._ready = True

    async def close(self) -> None:
        self._closed = True
        self._detach()

    def _detach(self) -> None:
        self._generation += 1
        self._debouncer.cancel()
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []

    def _require_open(self) -> None:
        if self._closed:
            raise SessionScopeError("BinderStore used after close()")

    def _require_owner(self) -> str:
        self._require_open()
        if self._owner_id is None:
            raise SessionScopeError("BinderStore used without an owner; call set_owner() first")
        return self._owner_id

    # -------------------------------------------------------------------------
    # Hydration
    # -------------------------------------------------------------------------

    async def hydrate(self) -> bool:
        """
        Refetch all binders and their entries, replacing local state.

        Returns:
            True if state was replaced. False if the binder list could not
            be fetched (previous state kept) or the owner changed meanwhile.
        """
        owner_id = self._require_owner()
        generation = self._generation

        try:
            rows = await self._gateway.fetch_rows(
                BINDERS, {"owner_id": owner_id}, order_by=("created_at", "id")
            )
        except GatewayError as e:
            logger.warning("Failed to load binders for %s: %s", owner_id, e.message)
            return False

        binders = await asyncio.gather(*(self._load_binder(row) for row in rows))

        if generation != self._generation:
            logger.debug("Discarding binders fetched for previous session of %s", owner_id)
            return False

        self._binders = list(binders)
        logger.debug("Hydrated %d binders for %s", len(self._binders), owner_id)
        return True

    async def _load_binder(self, row: Row) -> Binder:
        """A binder whose entries cannot be fetched is shown empty."""
        try:
            entry_rows = await self._gateway.fetch_rows(
                BINDER_ENTRIES, {"binder_id": row["id"]}, order_by=("position", "id")
            )
        except GatewayError as e:
            logger.warning("Failed to load entries of binder %s: %s", row["id"], e.message)
            entry_rows = []
        entries = sort_entries([BinderEntry.from_row(entry_row) for entry_row in entry_rows])
        return Binder.from_row(row, entries)

    async def _refresh_from_remote(self) -> None:
        if self._closed or self._owner_id is None:
            return
        await self.hydrate()

    async def wait_idle(self) -> None:
        """Wait for a debounced refetch, if one is pending."""
        await self._debouncer.wait()

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def _write(
        self,
        message: str,
        persist: Callable[[], Awaitable[T]],
        apply: Callable[[], None] = _noop,
        revert: Callable[[], None] = _noop,
        *,
        binder_id: str | None = None,
        card_image_id: str | None = None,
    ) -> T:
        generation = self._generation

        def guarded_revert() -> None:
            if generation == self._generation:
                revert()

        try:
            return await apply_optimistic(apply, persist, guarded_revert)
        except GatewayError as e:
            logger.warning("%s: %s", message, e.message)
            error = PersistenceError(message, e)
            self._last_error = error.to_detail(card_image_id=card_image_id, binder_id=binder_id)
            raise error from e

    async def create(self, name: str) -> Binder:
        """Create an empty binder with the default page size."""
        owner_id = self._require_owner()
        row = await self._write(
            "Failed to create binder",
            lambda: self._gateway.insert(
                BINDERS,
                {
                    "owner_id": owner_id,
                    "name": clean_binder_name(name),
                    "binder_size": self._default_size,
                },
            ),
        )
        binder = Binder.from_row(row)
        if self._index(binder.id) is None:
            self._binders.append(binder)
        return binder

    async def rename(self, binder_id: str, name: str) -> Binder:
        owner_id = self._require_owner()
        self._reject_system(binder_id, "renamed")
        before = self.require(binder_id)
        after = replace(before, name=clean_binder_name(name))

        await self._write(
            "Failed to rename binder",
            lambda: self._gateway.update(
                BINDERS, {"name": after.name}, {"id": binder_id, "owner_id": owner_id}
            ),
            apply=lambda: self._put(after),
            revert=lambda: self._put(replace(self.get(binder_id) or before, name=before.name)),
            binder_id=binder_id,
        )
        return after

    async def resize(self, binder_id: str, binder_size: int) -> Binder:
        """
        Change the page grid.

        Raises:
            InvalidBinderSizeError: Before any change, if size is not 2, 3 or 4
        """
        owner_id = self._require_owner()
        if binder_size not in ALLOWED_BINDER_SIZES:
            raise InvalidBinderSizeError(binder_size, ALLOWED_BINDER_SIZES)
        self._reject_system(binder_id, "resized")
        before = self.require(binder_id)
        after = replace(before, binder_size=binder_size)

        await self._write(
            "Failed to resize binder",
            lambda: self._gateway.update(
                BINDERS, {"binder_size": binder_size}, {"id": binder_id, "owner_id": owner_id}
            ),
            apply=lambda: self._put(after),
            revert=lambda: self._put(
                replace(self.get(binder_id) or before, binder_size=before.binder_size)
            ),
            binder_id=binder_id,
        )
        return after

    async def delete(self, binder_id: str) -> None:
        """Delete a binder; its entries go with it."""
        owner_id = self._require_owner()
        self._reject_system(binder_id, "deleted")
        binder = self.require(binder_id)
        index = self._binders.index(binder)

        def apply() -> None:
            self._binders = [b for b in self._binders if b.id != binder_id]

        def revert() -> None:
            if self._index(binder_id) is None:
                self._binders.insert(min(index, len(self._binders)), binder)

        await self._write(
            "Failed to delete binder",
            lambda: self._gateway.delete(BINDERS, {"id": binder_id, "owner_id": owner_id}),
            apply=apply,
            revert=revert,
            binder_id=binder_id,
        )

    async def add_entry(self, binder_id: str, card: Card) -> BinderEntry:
        """
        File one more copy of a card at the end of a binder.

        The card snapshot is stored denormalized. A missing image URL is
        looked up in the catalog first; if that lookup fails the card is
        stored without one.
        """
        owner_id = self._require_owner()
        binder = self.require(binder_id)
        card = await self._with_image(card)
        highest = binder.max_position()
        position = 0 if highest is None else highest + 1

        row = await self._write(
            "Failed to add card to binder",
            lambda: self._gateway.insert(
                BINDER_ENTRIES,
                {
                    "binder_id": binder_id,
                    "owner_id": owner_id,
                    "card_image_id": card.card_image_id,
                    "card_data": card.to_snapshot(),
                    "position": position,
                },
            ),
            binder_id=binder_id,
            card_image_id=card.card_image_id,
        )
        entry = BinderEntry(card=card, position=int(row["position"]), membership_id=row["id"])

        def append(entries: tuple[BinderEntry, ...]) -> tuple[BinderEntry, ...]:
            if any(e.membership_id == entry.membership_id for e in entries):
                return entries
            return sort_entries(entries + (entry,))

        self._update_entries(binder_id, append)
        return entry

    async def _with_image(self, card: Card) -> Card:
        if card.card_image or self._catalog is None:
            return card
        try:
            found = await self._catalog.lookup_cards_by_ids([card.card_image_id])
        except GatewayError as e:
            logger.warning("Image lookup for %s failed: %s", card.card_image_id, e.message)
            return card
        for match in found:
            if match.card_image_id == card.card_image_id and match.card_image:
                return card.with_image(match.card_image)
        return card

    async def remove_entry(
        self, binder_id: str, card_image_id: str, membership_id: int | None = None
    ) -> BinderEntry:
        """
        Remove exactly one copy of a card from a binder.

        With a membership id that exact copy is removed; other copies of
        the same card stay. Without one, the first copy in display order
        is removed.

        Raises:
            EntryNotFoundError: If no entry matches
        """
        self._require_owner()
        binder = self.require(binder_id)
        target = self._find_entry(binder, card_image_id, membership_id)

        if target.membership_id is not None:
            row_id = target.membership_id
        else:
            row_id = await self._resolve_row_id(binder_id, card_image_id)

        await self._write(
            "Failed to remove card from binder",
            lambda: self._gateway.delete(BINDER_ENTRIES, {"id": row_id, "binder_id": binder_id}),
            apply=lambda: self._update_entries(
                binder_id, lambda entries: _without_one(entries, target)
            ),
            revert=lambda: self._update_entries(
                binder_id, lambda entries: _restore(entries, [target])
            ),
            binder_id=binder_id,
            card_image_id=card_image_id,
        )
        return target

    @staticmethod
    def _find_entry(binder: Binder, card_image_id: str, membership_id: int | None) -> BinderEntry:
        for entry in binder.entries:
            if entry.card_image_id != card_image_id:
                continue
            if membership_id is None or entry.membership_id == membership_id:
                return entry
        raise EntryNotFoundError(binder.id, card_image_id, membership_id)

    async def _resolve_row_id(self, binder_id: str, card_image_id: str) -> int:
        """Pick one stored row for a card when the local entry has no membership id."""
        try:
            rows = await self._gateway.fetch_rows(
                BINDER_ENTRIES,
                {"binder_id": binder_id, "card_image_id": card_image_id},
                order_by=("position", "id"),
                limit=1,
            )
        except GatewayError as e:
            raise PersistenceError("Failed to remove card from binder", e) from e
        if not rows:
            raise EntryNotFoundError(binder_id, card_image_id)
        return int(rows[0]["id"])

    async def remove_all_by_card_id(self, binder_id: str, card_image_id: str) -> int:
        """
        Remove every copy of a card from a binder, locally and remotely.

        A binder that is not held (system binders never are) is left alone.

        Returns:
            Number of copies removed.
        """
        owner_id = self._require_owner()
        binder = self.get(binder_id)
        if binder is None:
            logger.debug("No stored rows for %s in %s; nothing to prune", card_image_id, binder_id)
            return 0

        removed = [entry for entry in binder.entries if entry.card_image_id == card_image_id]
        deleted = await self._write(
            "Failed to remove card from binder",
            lambda: self._gateway.delete(
                BINDER_ENTRIES,
                {"binder_id": binder_id, "owner_id": owner_id, "card_image_id": card_image_id},
            ),
            apply=lambda: self._update_entries(
                binder_id,
                lambda entries: tuple(e for e in entries if e.card_image_id != card_image_id),
            ),
            revert=lambda: self._update_entries(
                binder_id, lambda entries: _restore(entries, removed)
            ),
            binder_id=binder_id,
            card_image_id=card_image_id,
        )
        return max(deleted, len(removed))

    async def reorder(
        self, binder_id: str, ordered_entries: Sequence[BinderEntry]
    ) -> ReorderResult:
        """
        Persist a new display order.

        Each entry gets position = its index. Position writes run
        concurrently and are not a transaction; their completion order is
        unspecified. Entries without a membership id cannot be persisted and
        are skipped (reported in the result). Entries of the binder missing
        from ordered_entries follow the listed ones in their current order.
        The local order is replaced once the writes have settled.
        """
        owner_id = self._require_owner()
        binder = self.require(binder_id)

        complete = _with_unlisted(binder.entries, ordered_entries)
        reordered = tuple(replace(entry, position=index) for index, entry in enumerate(complete))
        updates = [
            (entry.membership_id, entry.position)
            for entry in reordered
            if entry.membership_id is not None
        ]
        skipped = tuple(entry.card_image_id for entry in reordered if entry.membership_id is None)

        results = await asyncio.gather(
            *(
                self._gateway.update(
                    BINDER_ENTRIES,
                    {"position": position},
                    {"id": membership_id, "binder_id": binder_id, "owner_id": owner_id},
                )
                for membership_id, position in updates
            ),
            return_exceptions=True,
        )

        persisted: list[int] = []
        failed: list[int] = []
        for (membership_id, _), result in zip(updates, results, strict=True):
            if isinstance(result, GatewayError):
                failed.append(membership_id)
            elif isinstance(result, BaseException):
                raise result
            else:
                persisted.append(membership_id)

        if skipped:
            logger.warning(
                "Reorder of %s skipped %d entries without membership id", binder_id, len(skipped)
            )
        if failed:
            logger.warning("Reorder of %s failed to save %d positions", binder_id, len(failed))
            self._last_error = PersistenceError(
                "Failed to save binder order",
                next(r for r in results if isinstance(r, GatewayError)),
            ).to_detail(binder_id=binder_id)

        self._update_entries(binder_id, lambda _: reordered)
        return ReorderResult(persisted=tuple(persisted), skipped=skipped, failed=tuple(failed))

    @staticmethod
    def _reject_system(binder_id: str, operation: str) -> None:
        if is_system_binder(binder_id):
            raise SystemBinderError(binder_id, operation)


def _without_one(
    entries: tuple[BinderEntry, ...], target: BinderEntry
) -> tuple[BinderEntry, ...]:
    """Drop the first entry equal to target, keeping any duplicates."""
    result = list(entries)
    for index, entry in enumerate(result):
        if entry == target:
            del result[index]
            break
    return tuple(result)


def _restore(
    entries: tuple[BinderEntry, ...], removed: Sequence[BinderEntry]
) -> tuple[BinderEntry, ...]:
    present = {e.membership_id for e in entries if e.membership_id is not None}
    missing = [e for e in removed if e.membership_id is None or e.membership_id not in present]
    return sort_entries(entries + tuple(missing))


def _with_unlisted(
    current: Sequence[BinderEntry], ordered: Sequence[BinderEntry]
) -> list[BinderEntry]:
    """ordered, then the entries of current it leaves out."""
    listed_ids = {e.membership_id for e in ordered if e.membership_id is not None}
    listed_unsaved = [e for e in ordered if e.membership_id is None]
    result = list(ordered)
    for entry in current:
        if entry.membership_id is not None:
            if entry.membership_id not in listed_ids:
                result.append(entry)
        elif entry in listed_unsaved:
            listed_unsaved.remove(entry)
        else:
            result.append(entry)
    return result
