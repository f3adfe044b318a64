"""
Owned-Count Store - card id -> owned quantity for the current owner.

INVARIANT: Only positive counts are held. A card at zero is absent, both
in memory and in the collected_cards table (decrementing to zero deletes
the row instead of writing a zero).

Mutations are optimistic: the new count is visible immediately, persisted
through the gateway, and reverted to the pre-mutation value if the write
fails. Failures never escape increment()/decrement(); they are recorded
in ``last_error`` and the call returns False. There is no retry.

Hydration (owner change, or a remote change notification for this owner)
refetches every row and replaces the map wholesale, except for cards with
a write still in flight, which keep their optimistic value. Otherwise this
is last writer wins.
"""

import asyncio
import logging
from collections.abc import Callable, Mapping
from types import MappingProxyType

from cardbinder.config import settings
from cardbinder.db.change_feed import Subscription
from cardbinder.db.gateway import COLLECTED_CARDS, PersistenceGateway, Row
from cardbinder.models.failure import FailureDetail, GatewayError, SessionScopeError
from cardbinder.services.optimistic import apply_optimistic

logger = logging.getLogger(__name__)

CountsListener = Callable[[Mapping[str, int]], None]

CONFLICT_KEY = ("owner_id", "card_image_id")


class OwnedCountStore:
    """
    Owned counts for one owner session.

    Usage:
        store = OwnedCountStore(gateway)
        await store.set_owner("user-123")
        await store.increment("OP01-001")
        store.get_count("OP01-001")  # 1
    """

    def __init__(self, gateway: PersistenceGateway, *, page_size: int | None = None) -> None:
        self._gateway = gateway
        self._page_size = page_size or settings.owned_count_page_size
        self._owner_id: str | None = None
        self._counts: dict[str, int] = {}
        self._ready = False
        self._saving: dict[str, int] = {}
        self._last_error: FailureDetail | None = None
        self._listeners: list[CountsListener] = []
        self._subscription: Subscription | None = None
        self._hydrations: set[asyncio.Task[bool]] = set()
        # Bumped on owner change and close; work started under an older
        # generation must not touch state.
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
        """True once the first hydration for the current owner has finished."""
        return self._ready

    @property
    def saving(self) -> bool:
        """True while any mutation is awaiting its write."""
        return bool(self._saving)

    def is_saving(self, card_image_id: str) -> bool:
        return card_image_id in self._saving

    @property
    def last_error(self) -> FailureDetail | None:
        return self._last_error

    def clear_error(self) -> None:
        self._last_error = None

    @property
    def counts(self) -> Mapping[str, int]:
        """Read-only snapshot of the current counts."""
        return MappingProxyType(dict(self._counts))

    def get_count(self, card_image_id: str) -> int:
        return self._counts.get(card_image_id, 0)

    def is_collected(self, card_image_id: str, threshold: int = 1) -> bool:
        return self._counts.get(card_image_id, 0) >= threshold

    def total_cards(self) -> int:
        return sum(self._counts.values())

    def unique_cards(self) -> int:
        return len(self._counts)

    # -------------------------------------------------------------------------
    # Observers
    # -------------------------------------------------------------------------

    def add_listener(self, listener: CountsListener) -> Callable[[], None]:
        """
        Call ``listener`` with a snapshot after every state change.

        Returns:
            A callable that removes the listener.
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self) -> None:
        snapshot = self.counts
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Owned count listener failed")

    # -------------------------------------------------------------------------
    # Session lifecycle
    # -------------------------------------------------------------------------

    async def set_owner(self, owner_id: str | None) -> None:
        """
        Switch to another owner (login/logout) and hydrate.

        Clears state first, so nothing from the previous owner is ever
        visible under the new one.
        """
        self._require_open()
        if owner_id == self._owner_id and self._ready:
            return

        self._detach()
        self._owner_id = owner_id
        self._counts = {}
        self._saving = {}
        self._last_error = None
        self._ready = False

        if owner_id is not None:
            await self.hydrate()
            self._subscription = self._gateway.subscribe(
                COLLECTED_CARDS, owner_id, self._on_remote_change
            )

        self._ready = True
        self._notify()

    async def close(self) -> None:
        """Unsubscribe and drop pending hydrations. The store is unusable afterwards."""
        self._closed = True
        self._detach()
        self._listeners.clear()

    def _detach(self) -> None:
        self._generation += 1
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        for task in self._hydrations:
            task.cancel()
        self._hydrations.clear()

    def _require_open(self) -> None:
        if self._closed:
            raise SessionScopeError("OwnedCountStore used after close()")

    def _require_owner(self) -> str:
        self._require_open()
        if self._owner_id is None:
            raise SessionScopeError("OwnedCountStore used without an owner; call set_owner() first")
        return self._owner_id

    # -------------------------------------------------------------------------
    # Hydration
    # -------------------------------------------------------------------------

    async def hydrate(self) -> bool:
        """
        Refetch every owned count and replace state.

        Returns:
            True if state was replaced. False if the fetch failed (previous
            state is kept) or the owner changed while fetching.
        """
        owner_id = self._require_owner()
        generation = self._generation

        try:
            rows = await self._fetch_all(owner_id)
        except GatewayError as e:
            logger.warning("Failed to load owned counts for %s: %s", owner_id, e.message)
            return False

        if generation != self._generation:
            logger.debug("Discarding owned counts fetched for previous session of %s", owner_id)
            return False

        counts = {
            row["card_image_id"]: int(row["count"]) for row in rows if int(row["count"]) > 0
        }
        # A card with a write in flight keeps its optimistic value until the write settles
        for card_image_id in self._saving:
            if card_image_id in self._counts:
                counts[card_image_id] = self._counts[card_image_id]
            else:
                counts.pop(card_image_id, None)
        self._counts = counts
        logger.debug("Hydrated %d owned counts for %s", len(self._counts), owner_id)
        self._notify()
        return True

    async def _fetch_all(self, owner_id: str) -> list[Row]:
        """Fetch in fixed-size pages until a short page comes back."""
        rows: list[Row] = []
        offset = 0
        while True:
            page = await self._gateway.fetch_rows(
                COLLECTED_CARDS,
                {"owner_id": owner_id},
                order_by=("card_image_id",),
                offset=offset,
                limit=self._page_size,
            )
            rows.extend(page)
            if len(page) < self._page_size:
                return rows
            offset += self._page_size

    def _on_remote_change(self) -> None:
        if self._closed or self._owner_id is None:
            return
        task = asyncio.get_running_loop().create_task(self.hydrate())
        self._hydrations.add(task)
        task.add_done_callback(self._hydrations.discard)

    async def wait_idle(self) -> None:
        """Wait for hydrations triggered by change notifications."""
        while self._hydrations:
            await asyncio.wait(set(self._hydrations))

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def increment(self, card_image_id: str) -> bool:
        """
        Add one copy.

        Returns:
            True if persisted, False if the write failed and was rolled back.
        """
        owner_id = self._require_owner()
        current = self.get_count(card_image_id)
        return await self._mutate(owner_id, card_image_id, current, current + 1)

    async def decrement(self, card_image_id: str) -> bool:
        """
        Remove one copy. At zero this is a no-op and no write is issued.

        Returns:
            True if persisted (or nothing to do), False if rolled back.
        """
        owner_id = self._require_owner()
        current = self.get_count(card_image_id)
        if current == 0:
            return True
        return await self._mutate(owner_id, card_image_id, current, current - 1)

    async def _mutate(self, owner_id: str, card_image_id: str, current: int, target: int) -> bool:
        generation = self._generation

        async def persist() -> None:
            if target == 0:
                await self._gateway.delete(
                    COLLECTED_CARDS, {"owner_id": owner_id, "card_image_id": card_image_id}
                )
            else:
                await self._gateway.upsert(
                    COLLECTED_CARDS,
                    {"owner_id": owner_id, "card_image_id": card_image_id, "count": target},
                    conflict_key=CONFLICT_KEY,
                )

        def revert() -> None:
            if generation == self._generation:
                self._set(card_image_id, current)

        self._saving[card_image_id] = self._saving.get(card_image_id, 0) + 1
        try:
            await apply_optimistic(lambda: self._set(card_image_id, target), persist, revert)
        except GatewayError as e:
            logger.warning(
                "Failed to save count %d for %s, rolled back to %d: %s",
                target,
                card_image_id,
                current,
                e.message,
            )
            if generation == self._generation:
                self._last_error = e.to_detail(card_image_id=card_image_id)
            return False
        finally:
            self._release_saving(card_image_id)

        return True

    def _release_saving(self, card_image_id: str) -> None:
        remaining = self._saving.get(card_image_id, 0) - 1
        if remaining > 0:
            self._saving[card_image_id] = remaining
        else:
            self._saving.pop(card_image_id, None)

    def _set(self, card_image_id: str, count: int) -> None:
        if count > 0:
            self._counts[card_image_id] = count
        else:
            self._counts.pop(card_image_id, None)
        self._notify()
