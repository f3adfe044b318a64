"""
Favorite card endpoints.

Favorites live on the owner's open session. A refresh reloads the catalog
and reports, per favorite, the change between its last two known prices.
"""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from cardbinder.api.binders import CardPayload
from cardbinder.api.deps import get_collector, raise_known
from cardbinder.models.card import Card
from cardbinder.models.failure import FavoriteNotFoundError, GatewayError
from cardbinder.models.favorites import FavoriteEntry
from cardbinder.session import CollectorSession

router = APIRouter(prefix="/owners/{owner_id}/favorites", tags=["favorites"])


class FavoriteResponse(BaseModel):
    card: CardPayload
    last_price: float | None = None
    price_delta: float | None = None
    updated_at: datetime


class FavoritesResponse(BaseModel):
    owner_id: str
    favorites: list[FavoriteResponse] = Field(default_factory=list)


class FavoriteStatusResponse(BaseModel):
    card_image_id: str
    favorite: bool
    entry: FavoriteResponse | None = None


def favorite_response(entry: FavoriteEntry) -> FavoriteResponse:
    return FavoriteResponse(
        card=CardPayload(**entry.card.to_snapshot()),
        last_price=entry.last_price,
        price_delta=entry.price_delta,
        updated_at=entry.updated_at,
    )


def _status(session: CollectorSession, card_image_id: str) -> FavoriteStatusResponse:
    entry = session.favorites.get(card_image_id)
    return FavoriteStatusResponse(
        card_image_id=card_image_id,
        favorite=entry is not None,
        entry=favorite_response(entry) if entry is not None else None,
    )


async def _catalog_card(session: CollectorSession, card_image_id: str) -> Card:
    cached = session.system.card(card_image_id)
    if cached is not None:
        return cached
    try:
        found = await session.catalog.lookup_cards_by_ids([card_image_id])
    except GatewayError as e:
        raise_known(e, card_image_id=card_image_id)
    if not found:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Card '{card_image_id}' is not in the catalog",
        )
    return found[0]


@router.get("", response_model=FavoritesResponse)
async def list_favorites(
    owner_id: str,
    session: Annotated[CollectorSession, Depends(get_collector)],
) -> FavoritesResponse:
    return FavoritesResponse(
        owner_id=owner_id,
        favorites=[favorite_response(e) for e in session.favorites.favorites.values()],
    )


@router.post("/refresh", response_model=FavoritesResponse)
async def refresh_favorites(
    owner_id: str,
    session: Annotated[CollectorSession, Depends(get_collector)],
) -> FavoritesResponse:
    """Reload catalog prices and record each favorite's price move."""
    await session.refresh_favorite_prices()
    return await list_favorites(owner_id, session)


@router.get("/{card_image_id}", response_model=FavoriteStatusResponse)
async def get_favorite(
    card_image_id: str,
    session: Annotated[CollectorSession, Depends(get_collector)],
) -> FavoriteStatusResponse:
    return _status(session, card_image_id)


@router.post("/{card_image_id}/toggle", response_model=FavoriteStatusResponse)
async def toggle_favorite(
    card_image_id: str,
    session: Annotated[CollectorSession, Depends(get_collector)],
) -> FavoriteStatusResponse:
    """Favorite a catalog card, or unfavorite it if it already is one."""
    existing = session.favorites.get(card_image_id)
    card = existing.card if existing is not None else await _catalog_card(session, card_image_id)
    session.favorites.toggle(card)
    return _status(session, card_image_id)


@router.delete("/{card_image_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_favorite(
    card_image_id: str,
    session: Annotated[CollectorSession, Depends(get_collector)],
) -> None:
    if not session.favorites.remove(card_image_id):
        raise_known(FavoriteNotFoundError(card_image_id), card_image_id=card_image_id)
