"""Google Places lookup used by the onboarding search box."""

import structlog
from fastapi import APIRouter, Depends, Query

from antistatic.api.dependencies import CurrentUser, get_current_user, get_places_client
from antistatic.integrations.google_places import GooglePlacesClient

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/places", tags=["Onboarding"])


@router.get(
    "/autocomplete",
    summary="Autocomplete businesses",
    description="Suggest establishments matching the typed text.",
)
async def autocomplete(
    input: str = Query("", description="Text typed by the user"),
    user: CurrentUser = Depends(get_current_user),
    places: GooglePlacesClient = Depends(get_places_client),
) -> dict:
    suggestions = await places.autocomplete(input)
    logger.debug("places_autocomplete", user_id=user.id, results=len(suggestions))
    return {"suggestions": suggestions}
