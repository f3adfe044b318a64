"""Tests for the coordinator pruning system binders as counts rise."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from cardbinder.config import MISSING_ALTS_ID, MISSING_PLAYSETS_ID
from cardbinder.models.card import Card
from cardbinder.models.failure import GatewayError, PersistenceError
from cardbinder.models.preferences import RarityThresholds
from cardbinder.services.binders import BinderStore
from cardbinder.services.collection_sync import SyncCoordinator
from cardbinder.services.owned_counts import OwnedCountStore

CARDS = {
    "OP01-016": Card(card_image_id="OP01-016", card_name="Nami", rarity="R"),
    "OP01-001_p1": Card(
        card_image_id="OP01-001_p1", card_name="Roronoa Zoro (Parallel)", rarity="L"
    ),
    "OP02-004": Card(card_image_id="OP02-004", card_name="Edward.Newgate", rarity="C"),
}


@pytest.fixture
async def counts(mock_gateway: MagicMock) -> OwnedCountStore:
    store = OwnedCountStore(mock_gateway)
    await store.set_owner("user-123")
    return store


@pytest.fixture
def binders() -> MagicMock:
    binders = MagicMock(spec=BinderStore)
    binders.remove_all_by_card_id = AsyncMock(return_value=0)
    return binders


@pytest.fixture
def thresholds() -> RarityThresholds:
    return RarityThresholds()


@pytest.fixture
def coordinator(counts, binders, thresholds) -> SyncCoordinator:
    coordinator = SyncCoordinator(counts, binders, CARDS.get, lambda: thresholds)
    coordinator.start()
    yield coordinator
    coordinator.stop()


def removal_calls(binders: MagicMock) -> list[tuple[str, str]]:
    return [c.args for c in binders.remove_all_by_card_id.await_args_list]


class TestPlaysetThreshold:
    async def test_exactly_one_removal_on_reaching_threshold(
        self, counts: OwnedCountStore, binders: MagicMock, coordinator: SyncCoordinator
    ) -> None:
        """Counting 0 -> 4 prunes Missing Playsets once, on the step into 4."""
        calls_after_each = []
        for _ in range(4):
            await counts.increment("OP01-016")
            await coordinator.drain()
            calls_after_each.append(len(removal_calls(binders)))

        assert calls_after_each == [0, 0, 0, 1]
        assert removal_calls(binders) == [(MISSING_PLAYSETS_ID, "OP01-016")]

    async def test_no_removal_past_threshold(
        self, counts: OwnedCountStore, binders: MagicMock, coordinator: SyncCoordinator
    ) -> None:
        for _ in range(5):
            await counts.increment("OP01-016")
        await coordinator.drain()

        assert removal_calls(binders) == [(MISSING_PLAYSETS_ID, "OP01-016")]

    async def test_decrease_then_increase_fires_again(
        self, counts: OwnedCountStore, binders: MagicMock, coordinator: SyncCoordinator
    ) -> None:
        for _ in range(4):
            await counts.increment("OP01-016")
        await counts.decrement("OP01-016")
        await counts.increment("OP01-016")
        await coordinator.drain()

        assert len(removal_calls(binders)) == 2

    async def test_uses_rarity_threshold(
        self,
        counts: OwnedCountStore,
        binders: MagicMock,
        thresholds: RarityThresholds,
        coordinator: SyncCoordinator,
    ) -> None:
        thresholds.playset["Common"] = 2

        await counts.increment("OP02-004")
        await counts.increment("OP02-004")
        await coordinator.drain()

        assert removal_calls(binders) == [(MISSING_PLAYSETS_ID, "OP02-004")]


class TestAltArt:
    async def test_first_copy_prunes_missing_alts(
        self, counts: OwnedCountStore, binders: MagicMock, coordinator: SyncCoordinator
    ) -> None:
        await counts.increment("OP01-001_p1")
        await counts.increment("OP01-001_p1")
        await coordinator.drain()

        assert removal_calls(binders) == [(MISSING_ALTS_ID, "OP01-001_p1")]

    async def test_alt_never_prunes_playsets(
        self, counts: OwnedCountStore, binders: MagicMock, coordinator: SyncCoordinator
    ) -> None:
        for _ in range(4):
            await counts.increment("OP01-001_p1")
        await coordinator.drain()

        assert MISSING_PLAYSETS_ID not in {binder_id for binder_id, _ in removal_calls(binders)}


class TestCoordinatorLifecycle:
    async def test_unknown_card_ignored(
        self, counts: OwnedCountStore, binders: MagicMock, coordinator: SyncCoordinator
    ) -> None:
        await counts.increment("ST01-001")
        await coordinator.drain()

        binders.remove_all_by_card_id.assert_not_awaited()

    async def test_hydration_is_a_baseline(
        self, mock_gateway: MagicMock, binders: MagicMock, thresholds: RarityThresholds
    ) -> None:
        """Counts loaded for a new owner are not treated as increases."""
        mock_gateway.fetch_rows.return_value = [
            {"card_image_id": "OP01-016", "count": 4},
            {"card_image_id": "OP01-001_p1", "count": 1},
        ]
        counts = OwnedCountStore(mock_gateway)
        coordinator = SyncCoordinator(counts, binders, CARDS.get, lambda: thresholds)
        coordinator.start()

        await counts.set_owner("user-123")
        await coordinator.drain()

        binders.remove_all_by_card_id.assert_not_awaited()
        coordinator.stop()

    async def test_stopped_coordinator_is_silent(
        self, counts: OwnedCountStore, binders: MagicMock, coordinator: SyncCoordinator
    ) -> None:
        coordinator.stop()

        await counts.increment("OP01-001_p1")
        await coordinator.drain()

        binders.remove_all_by_card_id.assert_not_awaited()
        assert not coordinator.running

    async def test_failed_removal_is_logged(
        self,
        counts: OwnedCountStore,
        binders: MagicMock,
        coordinator: SyncCoordinator,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        binders.remove_all_by_card_id.side_effect = PersistenceError(
            "Failed to remove card from binder", GatewayError("delete from", "binder_entries")
        )

        await counts.increment("OP01-001_p1")
        await coordinator.drain()

        assert "Failed to update system collection" in caplog.text
        assert counts.get_count("OP01-001_p1") == 1

    async def test_removals_for(self, counts, binders, thresholds) -> None:
        coordinator = SyncCoordinator(counts, binders, CARDS.get, lambda: thresholds)

        assert coordinator.removals_for("OP01-001_p1", 1) == [MISSING_ALTS_ID]
        assert coordinator.removals_for("OP01-016", 4) == [MISSING_PLAYSETS_ID]
        assert coordinator.removals_for("OP01-016", 3) == []
        assert coordinator.removals_for("missing", 1) == []
