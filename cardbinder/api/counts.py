"""
Owned count endpoints.

Increments and decrements are optimistic on the server-side store; a
failed write is rolled back and reported as 503 with the failure detail.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from cardbinder.api.deps import get_collector
from cardbinder.models.failure import FailureDetail
from cardbinder.session import CollectorSession

router = APIRouter(prefix="/owners/{owner_id}/counts", tags=["counts"])


class CountsResponse(BaseModel):
    """All owned counts for an owner."""

    owner_id: str
    counts: dict[str, int] = Field(default_factory=dict)
    total_cards: int = 0
    unique_cards: int = 0


class CountResponse(BaseModel):
    """Owned count of one card."""

    owner_id: str
    card_image_id: str
    count: int = Field(..., ge=0)
    collected: bool = False


def _count_response(session: CollectorSession, owner_id: str, card_image_id: str) -> CountResponse:
    return CountResponse(
        owner_id=owner_id,
        card_image_id=card_image_id,
        count=session.counts.get_count(card_image_id),
        collected=session.is_collected(card_image_id),
    )


def _raise_rolled_back(session: CollectorSession, card_image_id: str) -> None:
    error = session.counts.last_error
    detail = (
        error.model_dump(mode="json")
        if isinstance(error, FailureDetail)
        else f"Could not save count for '{card_image_id}'"
    )
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)


@router.get("", response_model=CountsResponse)
async def get_counts(
    owner_id: str,
    session: Annotated[CollectorSession, Depends(get_collector)],
) -> CountsResponse:
    return CountsResponse(
        owner_id=owner_id,
        counts=dict(session.counts.counts),
        total_cards=session.counts.total_cards(),
        unique_cards=session.counts.unique_cards(),
    )


@router.get("/{card_image_id}", response_model=CountResponse)
async def get_count(
    owner_id: str,
    card_image_id: str,
    session: Annotated[CollectorSession, Depends(get_collector)],
) -> CountResponse:
    """Cards that are not owned report a count of 0."""
    return _count_response(session, owner_id, card_image_id)


@router.post("/{card_image_id}/increment", response_model=CountResponse)
async def increment_count(
    owner_id: str,
    card_image_id: str,
    session: Annotated[CollectorSession, Depends(get_collector)],
) -> CountResponse:
    if not await session.counts.increment(card_image_id):
        _raise_rolled_back(session, card_image_id)
    return _count_response(session, owner_id, card_image_id)


@router.post("/{card_image_id}/decrement", response_model=CountResponse)
async def decrement_count(
    owner_id: str,
    card_image_id: str,
    session: Annotated[CollectorSession, Depends(get_collector)],
) -> CountResponse:
    """Decrementing a card that is not owned is a no-op."""
    if not await session.counts.decrement(card_image_id):
        _raise_rolled_back(session, card_image_id)
    return _count_response(session, owner_id, card_image_id)
