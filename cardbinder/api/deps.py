"""
Shared API dependencies.

The SessionRegistry lives on ``app.state`` (created in the lifespan
handler). Tests override ``get_registry`` to supply their own.
"""

from typing import Annotated, NoReturn

from fastapi import Depends, HTTPException, Request

from cardbinder.models.failure import KnownError
from cardbinder.session import CollectorSession, SessionRegistry


def get_registry(request: Request) -> SessionRegistry:
    registry: SessionRegistry = request.app.state.registry
    return registry


async def get_collector(
    owner_id: str,
    registry: Annotated[SessionRegistry, Depends(get_registry)],
) -> CollectorSession:
    """The open session for the owner in the path, opened on first use."""
    return await registry.get(owner_id)


def raise_known(
    error: KnownError,
    *,
    card_image_id: str | None = None,
    binder_id: str | None = None,
) -> NoReturn:
    """Translate a KnownError into an HTTP error carrying its FailureDetail."""
    raise HTTPException(
        status_code=error.status_code,
        detail=error.to_detail(card_image_id=card_image_id, binder_id=binder_id).model_dump(
            mode="json"
        ),
    ) from error
