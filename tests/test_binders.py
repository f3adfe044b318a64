"""Tests for the binder store."""

from itertools import count
from unittest.mock import MagicMock

import pytest

from cardbinder.config import MISSING_ALTS_ID, MISSING_PLAYSETS_ID
from cardbinder.db.gateway import BINDER_ENTRIES, BINDERS, SqlAlchemyGateway
from cardbinder.models.binder import BinderEntry
from cardbinder.models.card import Card
from cardbinder.models.failure import (
    BinderNotFoundError,
    EntryNotFoundError,
    FailureKind,
    GatewayError,
    InvalidBinderSizeError,
    PersistenceError,
    SessionScopeError,
    SystemBinderError,
)
from cardbinder.services.binders import BinderStore
from cardbinder.services.catalog import SqlCatalog


@pytest.fixture
async def store(gateway: SqlAlchemyGateway) -> BinderStore:
    """Store on the real database. Its own writes schedule refetches far in the future."""
    store = BinderStore(gateway, debounce_seconds=60)
    await store.set_owner("user-123")
    yield store
    await store.close()


@pytest.fixture
def fake_rows(mock_gateway: MagicMock) -> MagicMock:
    """Make the mock gateway hand out ids on insert like the database does."""
    ids = count(1)

    async def insert(table, record):
        row = dict(record)
        row["id"] = f"binder-{next(ids)}" if table == BINDERS else next(ids)
        return row

    mock_gateway.insert.side_effect = insert
    return mock_gateway


@pytest.fixture
async def mock_store(fake_rows: MagicMock) -> BinderStore:
    store = BinderStore(fake_rows, debounce_seconds=0)
    await store.set_owner("user-123")
    return store


class TestCreate:
    async def test_create_defaults(self, store: BinderStore, gateway: SqlAlchemyGateway) -> None:
        """New binders get the default 3x3 grid and are stored."""
        binder = await store.create("Romance Dawn")

        assert binder.name == "Romance Dawn"
        assert binder.binder_size == 3
        assert binder.entries == ()
        assert store.binders == (binder,)
        rows = await gateway.fetch_rows(BINDERS, {"owner_id": "user-123"})
        assert [r["id"] for r in rows] == [binder.id]

    async def test_blank_name_becomes_untitled(self, mock_store: BinderStore) -> None:
        binder = await mock_store.create("   ")

        assert binder.name == "Untitled"

    async def test_failed_create_raises(
        self, mock_store: BinderStore, mock_gateway: MagicMock
    ) -> None:
        mock_gateway.insert.side_effect = GatewayError("insert into", BINDERS)

        with pytest.raises(PersistenceError):
            await mock_store.create("Decks")

        assert mock_store.binders == ()
        assert mock_store.last_error is not None
        assert mock_store.last_error.kind == FailureKind.WRITE_REJECTED


class TestEditBinder:
    async def test_rename(self, store: BinderStore, gateway: SqlAlchemyGateway) -> None:
        binder = await store.create("Old")

        renamed = await store.rename(binder.id, "New")

        assert renamed.name == "New"
        assert store.require(binder.id).name == "New"
        rows = await gateway.fetch_rows(BINDERS, {"id": binder.id})
        assert rows[0]["name"] == "New"

    async def test_failed_rename_rolls_back(
        self, mock_store: BinderStore, mock_gateway: MagicMock
    ) -> None:
        binder = await mock_store.create("Old")
        mock_gateway.update.side_effect = GatewayError("update", BINDERS)

        with pytest.raises(PersistenceError):
            await mock_store.rename(binder.id, "New")

        assert mock_store.require(binder.id).name == "Old"
        assert mock_store.last_error.binder_id == binder.id

    @pytest.mark.parametrize("size", [2, 3, 4])
    async def test_resize(self, mock_store: BinderStore, size: int) -> None:
        binder = await mock_store.create("Grid")

        resized = await mock_store.resize(binder.id, size)

        assert resized.binder_size == size
        assert resized.page_capacity == size * size

    @pytest.mark.parametrize("size", [0, 1, 5, 9])
    async def test_invalid_size_rejected_before_write(
        self, mock_store: BinderStore, mock_gateway: MagicMock, size: int
    ) -> None:
        binder = await mock_store.create("Grid")

        with pytest.raises(InvalidBinderSizeError):
            await mock_store.resize(binder.id, size)

        mock_gateway.update.assert_not_awaited()
        assert mock_store.require(binder.id).binder_size == 3

    async def test_delete_cascades_entries(
        self, store: BinderStore, gateway: SqlAlchemyGateway, zoro: Card
    ) -> None:
        """Deleting a binder removes its entries too."""
        binder = await store.create("Doomed")
        await store.add_entry(binder.id, zoro)

        await store.delete(binder.id)

        assert store.get(binder.id) is None
        assert await gateway.fetch_rows(BINDER_ENTRIES, {"binder_id": binder.id}) == []

    async def test_failed_delete_restores_position(
        self, mock_store: BinderStore, mock_gateway: MagicMock
    ) -> None:
        first = await mock_store.create("First")
        second = await mock_store.create("Second")
        third = await mock_store.create("Third")
        mock_gateway.delete.side_effect = GatewayError("delete from", BINDERS)

        with pytest.raises(PersistenceError):
            await mock_store.delete(second.id)

        assert [b.id for b in mock_store.binders] == [first.id, second.id, third.id]

    async def test_unknown_binder(self, mock_store: BinderStore) -> None:
        with pytest.raises(BinderNotFoundError):
            await mock_store.rename("nope", "x")

    @pytest.mark.parametrize("binder_id", [MISSING_ALTS_ID, MISSING_PLAYSETS_ID])
    async def test_system_binders_are_read_only(
        self, mock_store: BinderStore, mock_gateway: MagicMock, binder_id: str
    ) -> None:
        with pytest.raises(SystemBinderError):
            await mock_store.rename(binder_id, "Mine now")
        with pytest.raises(SystemBinderError):
            await mock_store.resize(binder_id, 4)
        with pytest.raises(SystemBinderError):
            await mock_store.delete(binder_id)

        mock_gateway.update.assert_not_awaited()
        mock_gateway.delete.assert_not_awaited()


class TestEntries:
    async def test_add_entry_appends(
        self, store: BinderStore, zoro: Card, nami: Card
    ) -> None:
        """Positions continue after the highest existing one."""
        binder = await store.create("Binder")

        first = await store.add_entry(binder.id, zoro)
        second = await store.add_entry(binder.id, nami)

        assert (first.position, second.position) == (0, 1)
        assert first.membership_id is not None
        assert first.membership_id != second.membership_id
        held = store.require(binder.id)
        assert [e.card_image_id for e in held.entries] == ["OP01-001", "OP01-016"]

    async def test_entry_snapshot_is_stored(
        self, store: BinderStore, gateway: SqlAlchemyGateway, zoro: Card
    ) -> None:
        binder = await store.create("Binder")
        await store.add_entry(binder.id, zoro)

        rows = await gateway.fetch_rows(BINDER_ENTRIES, {"binder_id": binder.id})

        assert rows[0]["card_data"]["card_name"] == "Roronoa Zoro"
        assert rows[0]["owner_id"] == "user-123"

    async def test_missing_image_looked_up(
        self, gateway: SqlAlchemyGateway, seeded_catalog: SqlCatalog
    ) -> None:
        store = BinderStore(gateway, seeded_catalog, debounce_seconds=60)
        await store.set_owner("user-123")
        binder = await store.create("Binder")

        entry = await store.add_entry(binder.id, Card(card_image_id="OP01-016", card_name="Nami"))

        assert entry.card.card_image == "https://img.example/OP01-016.png"
        await store.close()

    async def test_failed_image_lookup_still_adds(self, fake_rows: MagicMock) -> None:
        catalog = MagicMock(spec=SqlCatalog)
        catalog.lookup_cards_by_ids.side_effect = GatewayError("fetch", "cards")
        store = BinderStore(fake_rows, catalog, debounce_seconds=0)
        await store.set_owner("user-123")
        binder = await store.create("Binder")

        entry = await store.add_entry(binder.id, Card(card_image_id="OP01-016", card_name="Nami"))

        assert entry.card.card_image == ""

    async def test_remove_one_of_duplicates(
        self, store: BinderStore, gateway: SqlAlchemyGateway, zoro: Card
    ) -> None:
        """Without a membership id, exactly one copy is removed."""
        binder = await store.create("Binder")
        await store.add_entry(binder.id, zoro)
        await store.add_entry(binder.id, zoro)

        await store.remove_entry(binder.id, "OP01-001")

        assert store.card_count_in_binder(binder.id, "OP01-001") == 1
        rows = await gateway.fetch_rows(BINDER_ENTRIES, {"binder_id": binder.id})
        assert len(rows) == 1

    async def test_remove_by_membership_id(
        self, store: BinderStore, zoro: Card
    ) -> None:
        """The named copy goes; the other copy of the same card stays."""
        binder = await store.create("Binder")
        first = await store.add_entry(binder.id, zoro)
        second = await store.add_entry(binder.id, zoro)

        removed = await store.remove_entry(binder.id, "OP01-001", second.membership_id)

        assert removed.membership_id == second.membership_id
        assert [e.membership_id for e in store.require(binder.id).entries] == [
            first.membership_id
        ]

    async def test_remove_missing_entry(self, mock_store: BinderStore, zoro: Card) -> None:
        binder = await mock_store.create("Binder")
        await mock_store.add_entry(binder.id, zoro)

        with pytest.raises(EntryNotFoundError):
            await mock_store.remove_entry(binder.id, "OP01-016")
        with pytest.raises(EntryNotFoundError):
            await mock_store.remove_entry(binder.id, "OP01-001", membership_id=999)

    async def test_failed_remove_restores_entry(
        self, mock_store: BinderStore, mock_gateway: MagicMock, zoro: Card, nami: Card
    ) -> None:
        binder = await mock_store.create("Binder")
        await mock_store.add_entry(binder.id, zoro)
        await mock_store.add_entry(binder.id, nami)
        before = mock_store.require(binder.id).entries
        mock_gateway.delete.side_effect = GatewayError("delete from", BINDER_ENTRIES)

        with pytest.raises(PersistenceError):
            await mock_store.remove_entry(binder.id, "OP01-001")

        assert mock_store.require(binder.id).entries == before
        assert mock_store.last_error.card_image_id == "OP01-001"

    async def test_remove_all_by_card_id(
        self, store: BinderStore, gateway: SqlAlchemyGateway, zoro: Card, nami: Card
    ) -> None:
        binder = await store.create("Binder")
        await store.add_entry(binder.id, zoro)
        await store.add_entry(binder.id, nami)
        await store.add_entry(binder.id, zoro)

        removed = await store.remove_all_by_card_id(binder.id, "OP01-001")

        assert removed == 2
        assert [e.card_image_id for e in store.require(binder.id).entries] == ["OP01-016"]
        rows = await gateway.fetch_rows(BINDER_ENTRIES, {"binder_id": binder.id})
        assert [r["card_image_id"] for r in rows] == ["OP01-016"]

    async def test_remove_all_from_unheld_binder_is_noop(
        self, mock_store: BinderStore, mock_gateway: MagicMock
    ) -> None:
        """System binders are never held, so pruning them touches nothing."""
        assert await mock_store.remove_all_by_card_id(MISSING_ALTS_ID, "OP01-001") == 0

        mock_gateway.delete.assert_not_awaited()


class TestReorder:
    async def test_reorder_persists(
        self, store: BinderStore, gateway: SqlAlchemyGateway, zoro: Card, nami: Card
    ) -> None:
        binder = await store.create("Binder")
        a = await store.add_entry(binder.id, zoro)
        b = await store.add_entry(binder.id, nami)

        result = await store.reorder(binder.id, [b, a])

        assert result.ok
        assert set(result.persisted) == {a.membership_id, b.membership_id}
        assert [e.card_image_id for e in store.require(binder.id).entries] == [
            "OP01-016",
            "OP01-001",
        ]
        assert await store.hydrate()
        assert [e.card_image_id for e in store.require(binder.id).entries] == [
            "OP01-016",
            "OP01-001",
        ]

    async def test_unlisted_entries_follow_listed_ones(
        self, store: BinderStore, zoro: Card, nami: Card
    ) -> None:
        """Entries left out of the order keep their relative order after the listed ones."""
        binder = await store.create("Binder")
        a = await store.add_entry(binder.id, zoro)
        b = await store.add_entry(binder.id, nami)
        c = await store.add_entry(binder.id, zoro)

        result = await store.reorder(binder.id, [c])

        assert result.ok
        assert set(result.persisted) == {a.membership_id, b.membership_id, c.membership_id}
        entries = store.require(binder.id).entries
        assert [e.membership_id for e in entries] == [
            c.membership_id,
            a.membership_id,
            b.membership_id,
        ]
        assert [e.position for e in entries] == [0, 1, 2]
        assert await store.hydrate()
        assert [e.membership_id for e in store.require(binder.id).entries] == [
            c.membership_id,
            a.membership_id,
            b.membership_id,
        ]

    async def test_entries_without_membership_id_are_skipped(
        self, mock_store: BinderStore, mock_gateway: MagicMock, zoro: Card, nami: Card
    ) -> None:
        binder = await mock_store.create("Binder")
        stored = await mock_store.add_entry(binder.id, zoro)
        unsaved = BinderEntry(card=nami, position=5)

        result = await mock_store.reorder(binder.id, [unsaved, stored])

        assert result.skipped == ("OP01-016",)
        assert result.persisted == (stored.membership_id,)
        assert not result.ok
        mock_gateway.update.assert_awaited_once_with(
            BINDER_ENTRIES,
            {"position": 1},
            {"id": stored.membership_id, "binder_id": binder.id, "owner_id": "user-123"},
        )

    async def test_partial_failure_is_reported(
        self, mock_store: BinderStore, mock_gateway: MagicMock, zoro: Card, nami: Card
    ) -> None:
        binder = await mock_store.create("Binder")
        a = await mock_store.add_entry(binder.id, zoro)
        b = await mock_store.add_entry(binder.id, nami)
        mock_gateway.update.side_effect = [1, GatewayError("update", BINDER_ENTRIES)]

        result = await mock_store.reorder(binder.id, [b, a])

        assert result.persisted == (b.membership_id,)
        assert result.failed == (a.membership_id,)
        assert mock_store.last_error.kind == FailureKind.WRITE_REJECTED

    async def test_colliding_positions_sort_by_membership(
        self, mock_store: BinderStore, mock_gateway: MagicMock
    ) -> None:
        """Duplicate positions from concurrent writers still order deterministically."""
        mock_gateway.fetch_rows.side_effect = [
            [{"id": "binder-1", "owner_id": "user-123", "name": "B", "binder_size": 3}],
            [
                {"id": 7, "card_image_id": "OP01-016", "position": 0, "card_data": {}},
                {"id": 3, "card_image_id": "OP01-001", "position": 0, "card_data": {}},
            ],
        ]

        await mock_store.hydrate()

        entries = mock_store.require("binder-1").entries
        assert [e.membership_id for e in entries] == [3, 7]


class TestRefresh:
    async def test_remote_change_refreshes(
        self, store: BinderStore, gateway: SqlAlchemyGateway, zoro: Card
    ) -> None:
        """Writes by another session of the owner appear after the debounce."""
        watcher = BinderStore(gateway, debounce_seconds=0.01)
        await watcher.set_owner("user-123")

        binder = await store.create("Shared")
        await store.add_entry(binder.id, zoro)
        await watcher.wait_idle()

        assert watcher.require(binder.id).count_of("OP01-001") == 1
        await watcher.close()

    async def test_burst_collapses_into_one_refetch(
        self, mock_store: BinderStore, mock_gateway: MagicMock
    ) -> None:
        mock_gateway.fetch_rows.reset_mock()
        subscribe_calls = mock_gateway.subscribe.call_args_list
        callbacks = [c.args[2] for c in subscribe_calls]

        for _ in range(5):
            for callback in callbacks:
                callback()
        await mock_store.wait_idle()

        assert mock_gateway.fetch_rows.await_count == 1

    async def test_close_cancels_pending_refresh(
        self, mock_store: BinderStore, mock_gateway: MagicMock
    ) -> None:
        mock_gateway.fetch_rows.reset_mock()
        callback = mock_gateway.subscribe.call_args_list[0].args[2]
        callback()

        await mock_store.close()
        await mock_store.wait_idle()

        mock_gateway.fetch_rows.assert_not_awaited()


class TestSessionScope:
    async def test_requires_owner(self, mock_gateway: MagicMock) -> None:
        store = BinderStore(mock_gateway)

        with pytest.raises(SessionScopeError):
            await store.create("x")

    async def test_owner_switch_clears(self, mock_store: BinderStore) -> None:
        await mock_store.create("Mine")

        await mock_store.set_owner("user-456")

        assert mock_store.binders == ()
