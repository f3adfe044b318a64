"""
Persistence Gateway - row CRUD over the synced tables.

The stores never touch SQLAlchemy directly. They speak to a
PersistenceGateway in terms of table names and plain dict rows:

    fetch_rows  - filtered, ordered, paginated read
    insert      - add a row, returning it with generated ids
    upsert      - insert or update by a conflict key
    update      - update matching rows
    delete      - delete matching rows
    subscribe   - coarse change notifications scoped by owner id

SqlAlchemyGateway implements the contract on an async session factory and
publishes a change event after every committed write.

INVARIANT: Every SQLAlchemy failure leaves the gateway as a GatewayError.
"""

import asyncio
import logging
from collections.abc import Callable, Mapping, Sequence
from contextlib import AbstractAsyncContextManager, nullcontext
from typing import Any, Protocol

from sqlalchemy import delete, inspect, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardbinder.db.change_feed import ChangeCallback, ChangeFeed, Subscription
from cardbinder.models.db import Base, BinderDB, BinderEntryDB, CollectedCardDB
from cardbinder.models.failure import GatewayError

logger = logging.getLogger(__name__)

Row = dict[str, Any]

COLLECTED_CARDS = "collected_cards"
BINDERS = "binders"
BINDER_ENTRIES = "binder_entries"

TABLES: dict[str, type[Base]] = {
    COLLECTED_CARDS: CollectedCardDB,
    BINDERS: BinderDB,
    BINDER_ENTRIES: BinderEntryDB,
}


class PersistenceGateway(Protocol):
    """Remote store contract consumed by the stores."""

    async def fetch_rows(
        self,
        table: str,
        filters: Mapping[str, Any],
        *,
        order_by: Sequence[str] = (),
        offset: int = 0,
        limit: int | None = None,
    ) -> list[Row]: ...

    async def insert(self, table: str, record: Mapping[str, Any]) -> Row: ...

    async def upsert(
        self, table: str, record: Mapping[str, Any], conflict_key: Sequence[str]
    ) -> Row: ...

    async def update(
        self, table: str, values: Mapping[str, Any], filters: Mapping[str, Any]
    ) -> int: ...

    async def delete(self, table: str, filters: Mapping[str, Any]) -> int: ...

    def subscribe(self, table: str, owner_id: str, callback: ChangeCallback) -> Subscription: ...


def _model(table: str) -> type[Base]:
    try:
        return TABLES[table]
    except KeyError:
        raise ValueError(f"Unknown table '{table}'") from None


def to_row(obj: Base) -> Row:
    return {attr.key: getattr(obj, attr.key) for attr in inspect(obj).mapper.column_attrs}


def _where(model: type[Base], filters: Mapping[str, Any]) -> list[Any]:
    return [getattr(model, column) == value for column, value in filters.items()]


def _order(model: type[Base], order_by: Sequence[str]) -> list[Any]:
    """Column names, "-" prefix for descending."""
    clauses = []
    for column in order_by:
        if column.startswith("-"):
            clauses.append(getattr(model, column[1:]).desc())
        else:
            clauses.append(getattr(model, column).asc())
    return clauses


def _dialect_insert(session: AsyncSession) -> Callable[..., Any]:
    """INSERT construct with ON CONFLICT support for the bound dialect."""
    dialect = session.bind.dialect.name
    if dialect == "postgresql":
        return postgresql_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise ValueError(f"Upsert is not supported on dialect '{dialect}'")


def _conflict_updates(
    model: type[Base], stmt: Any, record: Mapping[str, Any], conflict_key: Sequence[str]
) -> dict[str, Any]:
    """Columns overwritten on conflict: the record's own plus onupdate timestamps."""
    columns = [column for column in record if column not in conflict_key]
    columns += [
        column.key
        for column in model.__table__.columns
        if column.onupdate is not None and column.key not in record
    ]
    return {column: stmt.excluded[column] for column in columns}


class SqlAlchemyGateway:
    """
    PersistenceGateway backed by an async SQLAlchemy session factory.

    Sessions sharing one gateway share its ChangeFeed, so every session of
    an owner hears about writes made by the others.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        feed: ChangeFeed | None = None,
        *,
        serialize: bool = False,
    ) -> None:
        self._session_factory = session_factory
        self.feed = feed or ChangeFeed()
        # An in-memory SQLite database is a single shared connection; its
        # sessions must not interleave.
        self._lock = asyncio.Lock() if serialize else None

    @classmethod
    def for_factory(
        cls, session_factory: async_sessionmaker[AsyncSession], feed: ChangeFeed | None = None
    ) -> "SqlAlchemyGateway":
        """Build a gateway, serializing access when the bound engine is SQLite."""
        bind = session_factory.kw.get("bind")
        serialize = bind is not None and bind.dialect.name == "sqlite"
        return cls(session_factory, feed, serialize=serialize)

    @property
    def lock(self) -> asyncio.Lock | None:
        """Lock serializing database access, shared with readers of the same engine."""
        return self._lock

    def _guard(self) -> AbstractAsyncContextManager[Any]:
        return self._lock if self._lock is not None else nullcontext()

    async def fetch_rows(
        self,
        table: str,
        filters: Mapping[str, Any],
        *,
        order_by: Sequence[str] = (),
        offset: int = 0,
        limit: int | None = None,
    ) -> list[Row]:
        model = _model(table)
        stmt = select(model).where(*_where(model, filters)).order_by(*_order(model, order_by))
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)

        try:
            async with self._guard(), self._session_factory() as session:
                result = await session.execute(stmt)
                return [to_row(obj) for obj in result.scalars().all()]
        except SQLAlchemyError as e:
            raise GatewayError("fetch", table, detail=str(e)) from e

    async def insert(self, table: str, record: Mapping[str, Any]) -> Row:
        model = _model(table)
        try:
            async with self._guard(), self._session_factory() as session:
                obj = model(**record)
                session.add(obj)
                await session.flush()
                row = to_row(obj)
                await session.commit()
        except SQLAlchemyError as e:
            raise GatewayError("insert into", table, detail=str(e)) from e

        self._publish(table, [row.get("owner_id")])
        return row

    async def upsert(
        self, table: str, record: Mapping[str, Any], conflict_key: Sequence[str]
    ) -> Row:
        """
        Insert a row, or update the row that matches on conflict_key.

        One INSERT ... ON CONFLICT DO UPDATE statement, so concurrent writers
        of the same key never collide on the unique constraint.

        Raises:
            ValueError: If a conflict key column is missing from the record
        """
        model = _model(table)
        missing = [column for column in conflict_key if column not in record]
        if missing:
            raise ValueError(f"Upsert into {table} is missing conflict columns {missing}")

        key = {column: record[column] for column in conflict_key}
        try:
            async with self._guard(), self._session_factory() as session:
                stmt = _dialect_insert(session)(model).values(**record)
                stmt = stmt.on_conflict_do_update(
                    index_elements=list(conflict_key),
                    set_=_conflict_updates(model, stmt, record, conflict_key),
                )
                await session.execute(stmt)
                result = await session.execute(select(model).where(*_where(model, key)))
                row = to_row(result.scalar_one())
                await session.commit()
        except SQLAlchemyError as e:
            raise GatewayError("upsert into", table, detail=str(e)) from e

        self._publish(table, [row.get("owner_id")])
        return row

    async def update(
        self, table: str, values: Mapping[str, Any], filters: Mapping[str, Any]
    ) -> int:
        model = _model(table)
        where = _where(model, filters)
        try:
            async with self._guard(), self._session_factory() as session:
                owners = await self._owners(session, model, where)
                result = await session.execute(update(model).where(*where).values(**values))
                await session.commit()
        except SQLAlchemyError as e:
            raise GatewayError("update", table, detail=str(e)) from e

        self._publish(table, owners)
        # rowcount is available on UPDATE results; type stubs incomplete for async
        return int(result.rowcount)  # type: ignore[attr-defined]

    async def delete(self, table: str, filters: Mapping[str, Any]) -> int:
        model = _model(table)
        where = _where(model, filters)
        try:
            async with self._guard(), self._session_factory() as session:
                owners = await self._owners(session, model, where)
                result = await session.execute(delete(model).where(*where))
                await session.commit()
        except SQLAlchemyError as e:
            raise GatewayError("delete from", table, detail=str(e)) from e

        self._publish(table, owners)
        return int(result.rowcount)  # type: ignore[attr-defined]

    def subscribe(self, table: str, owner_id: str, callback: ChangeCallback) -> Subscription:
        _model(table)
        return self.feed.subscribe(table, owner_id, callback)

    @staticmethod
    async def _owners(session: AsyncSession, model: type[Base], where: list[Any]) -> list[str]:
        owner_column = getattr(model, "owner_id")
        result = await session.execute(select(owner_column).where(*where).distinct())
        return list(result.scalars().all())

    def _publish(self, table: str, owners: Sequence[str | None]) -> None:
        for owner_id in set(owners):
            if owner_id is None:
                continue
            notified = self.feed.publish(table, owner_id)
            logger.debug("Published change on %s to %d subscriber(s)", table, notified)
