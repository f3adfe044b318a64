from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from importlib.metadata import version as pkg_version

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cardbinder.api import (
    binders_router,
    counts_router,
    favorites_router,
    health_router,
    preferences_router,
    system_router,
)
from cardbinder.config import settings
from cardbinder.db.database import async_session_factory, init_db
from cardbinder.session import SessionRegistry


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Create tables, then keep one collector session per owner until shutdown."""
    await init_db()
    app.state.registry = SessionRegistry(async_session_factory)
    yield
    await app.state.registry.close_all()


app = FastAPI(
    title=settings.app_name,
    version=pkg_version("cardbinder"),
    lifespan=lifespan,
)

app.include_router(binders_router)
app.include_router(counts_router)
app.include_router(favorites_router)
app.include_router(health_router)
app.include_router(preferences_router)
app.include_router(system_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Tighten in production
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)
