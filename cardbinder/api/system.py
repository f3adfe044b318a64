"""
System collection endpoints.

Missing Alts and Missing Playsets are recomputed on every read from the
cached catalog and the owner's counts. Both lists are empty until the
catalog has loaded.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from cardbinder.api.binders import BinderResponse, binder_response
from cardbinder.api.deps import get_collector
from cardbinder.session import CollectorSession

router = APIRouter(prefix="/owners/{owner_id}/system-collections", tags=["system-collections"])


class SystemCollectionsResponse(BaseModel):
    owner_id: str
    ready: bool = False
    collections: list[BinderResponse] = Field(default_factory=list)


def _collections(owner_id: str, session: CollectorSession) -> SystemCollectionsResponse:
    binders = session.system_collections()
    return SystemCollectionsResponse(
        owner_id=owner_id,
        ready=bool(binders),
        collections=[binder_response(b) for b in binders],
    )


@router.get("", response_model=SystemCollectionsResponse)
async def list_system_collections(
    owner_id: str,
    session: Annotated[CollectorSession, Depends(get_collector)],
) -> SystemCollectionsResponse:
    return _collections(owner_id, session)


@router.post("/refresh", response_model=SystemCollectionsResponse)
async def refresh_system_collections(
    owner_id: str,
    session: Annotated[CollectorSession, Depends(get_collector)],
) -> SystemCollectionsResponse:
    """Reload the catalog. Answers 503 if it cannot be read."""
    if not await session.system.refresh():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Card catalog is unavailable",
        )
    return _collections(owner_id, session)
