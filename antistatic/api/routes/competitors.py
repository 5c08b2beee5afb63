"""Competitor endpoints: discovery, search-term rankings and nearest competitors."""

import hmac
from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Header, Query
from supabase import Client

from antistatic.api.dependencies import (
    CurrentUser,
    get_current_user,
    get_owned_location,
    get_places_client,
    get_supabase,
)
from antistatic.api.models import RankingsRefreshRequest, SearchTermCreate, SearchTermSyncRequest
from antistatic.config.settings import get_settings
from antistatic.core.exceptions import ConfigurationError, UnauthorizedError
from antistatic.integrations.google_places import GooglePlacesClient
from antistatic.services.competitors import CompetitorService
from antistatic.services.insights_refresh import refresh_competitor_insights

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Competitors"])


@router.get(
    "/api/competitors/discover",
    summary="Discover competitors",
    description="Nearby businesses in the same category, most reviewed first.",
)
async def discover_competitors(
    location_id: UUID = Query(..., alias="locationId"),
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
    places: GooglePlacesClient = Depends(get_places_client),
) -> dict:
    location = get_owned_location(supabase, location_id, user.id)
    return await CompetitorService(supabase, places).discover(location)


@router.get("/api/competitors/search-terms", summary="List search terms")
async def list_search_terms(
    location_id: UUID = Query(..., alias="locationId"),
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    location = get_owned_location(supabase, location_id, user.id)
    return {"searchTerms": CompetitorService(supabase).list_search_terms(location["id"])}


@router.post("/api/competitors/search-terms", status_code=201, summary="Add a search term")
async def add_search_term(
    body: SearchTermCreate,
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    location = get_owned_location(supabase, body.business_location_id, user.id)
    term = CompetitorService(supabase).add_search_term(location["id"], body.term)
    return {"searchTerm": term}


@router.post(
    "/api/competitors/search-terms/sync",
    summary="Sync search terms from Google",
    description="Replaces Google-sourced terms with the location's Business Profile search keywords.",
)
async def sync_search_terms(
    body: SearchTermSyncRequest,
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    location = get_owned_location(supabase, body.business_location_id, user.id)
    return await CompetitorService(supabase).sync_gbp_search_terms(location, user.id)


@router.get(
    "/api/competitors/rankings",
    summary="Latest rankings snapshot",
    description="Most recent ranking snapshot for a search term.",
)
async def get_rankings(
    location_id: UUID = Query(..., alias="locationId"),
    search_term_id: UUID = Query(..., alias="searchTermId"),
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
    places: GooglePlacesClient = Depends(get_places_client),
) -> dict:
    location = get_owned_location(supabase, location_id, user.id)
    return await CompetitorService(supabase, places).get_rankings(location, str(search_term_id))


@router.post(
    "/api/competitors/rankings/refresh",
    summary="Refresh rankings",
    description="Run the search term through Google and store a new snapshot.",
)
async def refresh_rankings(
    body: RankingsRefreshRequest,
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
    places: GooglePlacesClient = Depends(get_places_client),
) -> dict:
    location = get_owned_location(supabase, body.business_location_id, user.id)
    snapshot = await CompetitorService(supabase, places).refresh_rankings(
        location, str(body.search_term_id)
    )
    return {"success": True, "snapshot": snapshot}


@router.get(
    "/api/competitors/nearest",
    summary="Nearest competitors",
    description="Competitors from the last competitor scrape, closest first.",
)
async def nearest_competitors(
    location_id: UUID = Query(..., alias="locationId"),
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
    places: GooglePlacesClient = Depends(get_places_client),
) -> dict:
    location = get_owned_location(supabase, location_id, user.id)
    competitors = await CompetitorService(supabase, places).nearest_competitors(location)
    return {"competitors": competitors}


# =============================================================================
# Cron
# =============================================================================


def verify_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    """Require ``Authorization: Bearer {CRON_SECRET}``."""
    secret = get_settings().cron_secret
    if secret is None:
        raise ConfigurationError("Cron secret not configured", "cron_secret")

    expected = f"Bearer {secret.get_secret_value()}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        logger.warning("cron_unauthorized")
        raise UnauthorizedError("Unauthorized")


@router.post(
    "/api/cron/apify-refresh",
    summary="Refresh competitor insights",
    description="Re-scrape competitor data for every linked location.",
    dependencies=[Depends(verify_cron_secret)],
)
async def apify_refresh(supabase: Client = Depends(get_supabase)) -> dict:
    summary = await refresh_competitor_insights(supabase)
    logger.info(
        "cron_apify_refresh_complete",
        processed=summary["processed"],
        errors=summary["errorCount"],
    )
    return {"success": True, **summary}
