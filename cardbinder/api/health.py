"""
Liveness and readiness probes.

/ready also reports whether the card catalog has been populated. An empty
catalog does not fail readiness: counts and binders still work, only the
system collections stay empty until the sync job has run.
"""

from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cardbinder.api.deps import get_registry
from cardbinder.db.database import get_session
from cardbinder.models.db import SetDB
from cardbinder.session import SessionRegistry

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: Literal["healthy", "ready", "not ready"]
    database: Literal["connected", "disconnected"] | None = None
    catalog_sets: int | None = None
    open_sessions: int | None = None


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Answers while the process is serving; touches nothing else."""
    return HealthResponse(status="healthy")


@router.get(
    "/ready",
    response_model=HealthResponse,
    responses={503: {"model": HealthResponse}},
)
async def ready(
    response: Response,
    session: Annotated[AsyncSession, Depends(get_session)],
    registry: Annotated[SessionRegistry, Depends(get_registry)],
) -> HealthResponse:
    try:
        catalog_sets = await session.scalar(select(func.count()).select_from(SetDB))
    except SQLAlchemyError:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not ready", database="disconnected")

    return HealthResponse(
        status="ready",
        database="connected",
        catalog_sets=catalog_sets or 0,
        open_sessions=len(registry),
    )
