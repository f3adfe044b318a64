"""
Collection preference endpoints.

Preferences live on the owner's open session: rarity visibility toggles,
the copies needed for a card to count as collected, and the copies needed
for a playset. Changing playset thresholds changes Missing Playsets on the
next read.
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from cardbinder.api.deps import get_collector
from cardbinder.models.preferences import CollectionPreferences, RarityThresholds
from cardbinder.session import CollectorSession

router = APIRouter(prefix="/owners/{owner_id}/preferences", tags=["preferences"])


class PreferencesResponse(BaseModel):
    owner_id: str
    enabled_rarities: dict[str, bool] = Field(default_factory=dict)
    thresholds: RarityThresholds


def _response(owner_id: str, session: CollectorSession) -> PreferencesResponse:
    return PreferencesResponse(
        owner_id=owner_id,
        enabled_rarities=dict(session.preferences.enabled_rarities),
        thresholds=session.preferences.thresholds,
    )


@router.get("", response_model=PreferencesResponse)
async def get_preferences(
    owner_id: str,
    session: Annotated[CollectorSession, Depends(get_collector)],
) -> PreferencesResponse:
    return _response(owner_id, session)


@router.put("", response_model=PreferencesResponse)
async def put_preferences(
    owner_id: str,
    request: CollectionPreferences,
    session: Annotated[CollectorSession, Depends(get_collector)],
) -> PreferencesResponse:
    """
    Replace toggles and thresholds.

    Unknown rarity keys or negative thresholds answer 422. Keys left out
    of a threshold map use the defaults.
    """
    session.update_preferences(request)
    return _response(owner_id, session)
