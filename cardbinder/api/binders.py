"""
Binder endpoints.

User binders can be created, renamed, resized, deleted and filled. The
two system binders are listed under /system-collections and are read-only
here: any mutation targeting them answers 409.
"""

from typing import Annotated, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from cardbinder.api.deps import get_collector, raise_known
from cardbinder.models.binder import Binder, BinderEntry, VirtualBinder, is_system_binder
from cardbinder.models.card import Card
from cardbinder.models.failure import BinderNotFoundError, GatewayError, KnownError
from cardbinder.services.binder_stats import DEFAULT_TOP_RARITIES, compute_stats
from cardbinder.services.pricing import format_price
from cardbinder.session import CollectorSession

router = APIRouter(prefix="/owners/{owner_id}/binders", tags=["binders"])


# =============================================================================
# SCHEMAS
# =============================================================================


class CardPayload(BaseModel):
    """Card snapshot as sent by clients and stored in entries."""

    card_image_id: str
    card_name: str = ""
    set_id: str = ""
    card_set_id: str = ""
    set_name: str = ""
    rarity: str = ""
    card_color: str | None = None
    card_type: str | None = None
    card_cost: str | None = None
    card_power: str | None = None
    counter_amount: str | None = None
    attribute: str | None = None
    card_text: str | None = None
    card_image: str = ""
    market_price: float | None = None


class EntryResponse(BaseModel):
    membership_id: int | None = None
    position: int
    card: CardPayload


class BinderResponse(BaseModel):
    id: str
    name: str
    binder_size: int | None = None
    is_system: bool = False
    entries: list[EntryResponse] = Field(default_factory=list)
    page_count: int = 0


class BinderListResponse(BaseModel):
    owner_id: str
    binders: list[BinderResponse] = Field(default_factory=list)


class CreateBinderRequest(BaseModel):
    name: str = Field(default="", description="Blank names become 'Untitled'")


class RenameBinderRequest(BaseModel):
    name: str


class ResizeBinderRequest(BaseModel):
    binder_size: int = Field(..., description="Page grid size: 2, 3 or 4")


class AddEntryRequest(BaseModel):
    card_image_id: str
    card: CardPayload | None = Field(
        default=None,
        description="Snapshot to store; looked up in the catalog when omitted",
    )


class ReorderRequest(BaseModel):
    membership_ids: list[int] = Field(
        ...,
        description="Membership ids of the binder's entries in their new display order",
    )


class ReorderResponse(BaseModel):
    binder: BinderResponse
    persisted: list[int] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    failed: list[int] = Field(default_factory=list)


class BinderStatsResponse(BaseModel):
    binder_id: str
    total_cards: int = 0
    total_value: float = 0.0
    formatted_value: str = ""
    rarity_breakdown: dict[str, int] = Field(default_factory=dict)
    top_rarities: list[tuple[str, int]] = Field(default_factory=list)


# =============================================================================
# CONVERSION
# =============================================================================


def entry_response(entry: BinderEntry) -> EntryResponse:
    return EntryResponse(
        membership_id=entry.membership_id,
        position=entry.position,
        card=CardPayload(**entry.card.to_snapshot()),
    )


def binder_response(binder: Binder | VirtualBinder) -> BinderResponse:
    if isinstance(binder, VirtualBinder):
        return BinderResponse(
            id=binder.id,
            name=binder.name,
            is_system=True,
            entries=[entry_response(e) for e in binder.entries],
        )
    return BinderResponse(
        id=binder.id,
        name=binder.name,
        binder_size=binder.binder_size,
        entries=[entry_response(e) for e in binder.entries],
        page_count=len(binder.pages()),
    )


async def _resolve_card(session: CollectorSession, request: AddEntryRequest) -> Card:
    if request.card is not None:
        return Card.from_snapshot(request.card.model_dump())

    cached = session.system.card(request.card_image_id)
    if cached is not None:
        return cached
    try:
        found = await session.catalog.lookup_cards_by_ids([request.card_image_id])
    except GatewayError as e:
        raise_known(e, card_image_id=request.card_image_id)
    if not found:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Card '{request.card_image_id}' is not in the catalog",
        )
    return found[0]


# =============================================================================
# ROUTES
# =============================================================================


@router.get("", response_model=BinderListResponse)
async def list_binders(
    owner_id: str,
    session: Annotated[CollectorSession, Depends(get_collector)],
) -> BinderListResponse:
    """User binders in creation order."""
    return BinderListResponse(
        owner_id=owner_id,
        binders=[binder_response(b) for b in session.binders.binders],
    )


@router.post("", response_model=BinderResponse, status_code=status.HTTP_201_CREATED)
async def create_binder(
    request: CreateBinderRequest,
    session: Annotated[CollectorSession, Depends(get_collector)],
) -> BinderResponse:
    try:
        binder = await session.binders.create(request.name)
    except KnownError as e:
        raise_known(e)
    return binder_response(binder)


@router.get("/{binder_id}", response_model=BinderResponse)
async def get_binder(
    binder_id: str,
    session: Annotated[CollectorSession, Depends(get_collector)],
) -> BinderResponse:
    binder = session.binders.get(binder_id) or session.system.get(binder_id)
    if binder is None:
        raise_known(BinderNotFoundError(binder_id), binder_id=binder_id)
    return binder_response(binder)


@router.patch("/{binder_id}/name", response_model=BinderResponse)
async def rename_binder(
    binder_id: str,
    request: RenameBinderRequest,
    session: Annotated[CollectorSession, Depends(get_collector)],
) -> BinderResponse:
    try:
        binder = await session.binders.rename(binder_id, request.name)
    except KnownError as e:
        raise_known(e, binder_id=binder_id)
    return binder_response(binder)


@router.patch("/{binder_id}/size", response_model=BinderResponse)
async def resize_binder(
    binder_id: str,
    request: ResizeBinderRequest,
    session: Annotated[CollectorSession, Depends(get_collector)],
) -> BinderResponse:
    try:
        binder = await session.binders.resize(binder_id, request.binder_size)
    except KnownError as e:
        raise_known(e, binder_id=binder_id)
    return binder_response(binder)


@router.delete("/{binder_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_binder(
    binder_id: str,
    session: Annotated[CollectorSession, Depends(get_collector)],
) -> None:
    try:
        await session.binders.delete(binder_id)
    except KnownError as e:
        raise_known(e, binder_id=binder_id)


@router.post(
    "/{binder_id}/entries",
    response_model=EntryResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_entry(
    binder_id: str,
    request: AddEntryRequest,
    session: Annotated[CollectorSession, Depends(get_collector)],
) -> EntryResponse:
    """File one more copy of a card at the end of the binder."""
    if is_system_binder(binder_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"System binder '{binder_id}' is computed and cannot be edited",
        )
    card = await _resolve_card(session, request)
    try:
        entry = await session.binders.add_entry(binder_id, card)
    except KnownError as e:
        raise_known(e, binder_id=binder_id, card_image_id=request.card_image_id)
    return entry_response(entry)


@router.delete("/{binder_id}/entries/{card_image_id}", response_model=EntryResponse)
async def remove_entry(
    binder_id: str,
    card_image_id: str,
    session: Annotated[CollectorSession, Depends(get_collector)],
    membership_id: Annotated[int | None, Query()] = None,
) -> EntryResponse:
    """
    Remove exactly one copy.

    Pass ``membership_id`` to remove a specific copy; otherwise the first
    copy in display order goes.
    """
    try:
        entry = await session.binders.remove_entry(binder_id, card_image_id, membership_id)
    except KnownError as e:
        raise_known(e, binder_id=binder_id, card_image_id=card_image_id)
    return entry_response(entry)


@router.put("/{binder_id}/order", response_model=ReorderResponse)
async def reorder_binder(
    binder_id: str,
    request: ReorderRequest,
    session: Annotated[CollectorSession, Depends(get_collector)],
) -> ReorderResponse:
    try:
        binder = session.binders.require(binder_id)
    except KnownError as e:
        raise_known(e, binder_id=binder_id)

    by_membership = {e.membership_id: e for e in binder.entries if e.membership_id is not None}
    unknown = [m for m in request.membership_ids if m not in by_membership]
    if unknown or len(set(request.membership_ids)) != len(request.membership_ids):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Order must list each entry of the binder at most once",
        )

    ordered = [by_membership[m] for m in request.membership_ids]
    result = await session.binders.reorder(binder_id, ordered)
    return ReorderResponse(
        binder=binder_response(session.binders.require(binder_id)),
        persisted=list(result.persisted),
        skipped=list(result.skipped),
        failed=list(result.failed),
    )


@router.get("/{binder_id}/stats", response_model=BinderStatsResponse)
async def binder_stats(
    binder_id: str,
    session: Annotated[CollectorSession, Depends(get_collector)],
    currency: Literal["USD", "EUR"] = "USD",
    top: Annotated[int, Query(ge=1)] = DEFAULT_TOP_RARITIES,
) -> BinderStatsResponse:
    """Totals for a user or system binder."""
    binder = session.binders.get(binder_id) or session.system.get(binder_id)
    if binder is None:
        raise_known(BinderNotFoundError(binder_id), binder_id=binder_id)

    stats = compute_stats(entry.card for entry in binder.entries)
    return BinderStatsResponse(
        binder_id=binder_id,
        total_cards=stats.total_cards,
        total_value=stats.total_value,
        formatted_value=format_price(stats.total_value, currency),
        rarity_breakdown=stats.rarity_breakdown,
        top_rarities=stats.top_rarities(top),
    )
