"""
Database engine and session management.

Provides the async SQLAlchemy engine and session factory shared by the
persistence gateway, the catalog and the FastAPI readiness probe.
"""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from cardbinder.config import settings
from cardbinder.models.db import Base


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine.

    SQLite only honours ON DELETE CASCADE with foreign keys switched on,
    so the pragma is set on every new connection.
    """
    engine = create_async_engine(database_url, echo=echo, pool_pre_ping=True)

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine.sync_engine, "connect")
        def _enable_foreign_keys(dbapi_connection: Any, _record: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.database_url, echo=settings.debug)

async_session_factory = build_session_factory(engine)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request, committed on success."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError:
            await session.rollback()
            raise


async def init_db(target: AsyncEngine | None = None) -> None:
    """Create the collection and catalog tables that do not exist yet."""
    async with (target or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db(target: AsyncEngine | None = None) -> None:
    """Drop every table, data included. Test teardown only."""
    async with (target or engine).begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
