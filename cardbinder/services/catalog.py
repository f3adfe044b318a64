"""
Catalog service.

Read-only access to the sets/cards reference tables. The tables are filled
by the catalog sync job; here they are only read.
"""

import asyncio
from collections.abc import Sequence
from contextlib import AbstractAsyncContextManager, nullcontext
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardbinder.db.gateway import to_row
from cardbinder.models.card import Card, SetSummary
from cardbinder.models.db import CardDB, SetDB
from cardbinder.models.failure import GatewayError


class Catalog(Protocol):
    """Catalog contract consumed by the binder store and system collections."""

    async def list_sets(self) -> list[SetSummary]: ...

    async def list_cards_in_set(self, set_id: str) -> list[Card]: ...

    async def lookup_cards_by_ids(self, card_image_ids: Sequence[str]) -> list[Card]: ...


class SqlCatalog:
    """Catalog backed by the ``sets`` and ``cards`` tables."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lock: asyncio.Lock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._lock = lock

    def _guard(self) -> AbstractAsyncContextManager[Any]:
        return self._lock if self._lock is not None else nullcontext()

    async def list_sets(self) -> list[SetSummary]:
        """All sets, newest release first."""
        try:
            async with self._guard(), self._session_factory() as session:
                result = await session.execute(
                    select(SetDB).order_by(SetDB.release_date.desc().nulls_last(), SetDB.id)
                )
                return [SetSummary(id=s.id, name=s.name) for s in result.scalars().all()]
        except SQLAlchemyError as e:
            raise GatewayError("fetch", "sets", detail=str(e)) from e

    async def list_cards_in_set(self, set_id: str) -> list[Card]:
        """Cards of one set, in collector number order."""
        try:
            async with self._guard(), self._session_factory() as session:
                result = await session.execute(
                    select(CardDB)
                    .where(CardDB.set_code == set_id)
                    .order_by(CardDB.card_set_id, CardDB.card_image_id)
                )
                return [Card.from_catalog_row(to_row(c)) for c in result.scalars().all()]
        except SQLAlchemyError as e:
            raise GatewayError("fetch", "cards", detail=str(e)) from e

    async def lookup_cards_by_ids(self, card_image_ids: Sequence[str]) -> list[Card]:
        if not card_image_ids:
            return []
        try:
            async with self._guard(), self._session_factory() as session:
                result = await session.execute(
                    select(CardDB).where(CardDB.card_image_id.in_(list(card_image_ids)))
                )
                return [Card.from_catalog_row(to_row(c)) for c in result.scalars().all()]
        except SQLAlchemyError as e:
            raise GatewayError("fetch", "cards", detail=str(e)) from e
