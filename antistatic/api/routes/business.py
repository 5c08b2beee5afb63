"""Onboarding endpoints: business selection, enabled tools and prescriptions."""

from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query
from supabase import Client

from antistatic.api.dependencies import (
    CurrentUser,
    get_current_user,
    get_owned_location,
    get_places_client,
    get_supabase,
)
from antistatic.api.models import BusinessLocationCreate, EnabledToolsUpdate, PrescriptionsRequest
from antistatic.integrations.google_places import GooglePlacesClient
from antistatic.services.onboarding import OnboardingService, extract_prescribed_modules

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api", tags=["Onboarding"])


@router.post(
    "/business-location",
    summary="Save business location",
    description="Store the business picked from Places autocomplete for the signed-in user.",
)
async def save_business_location(
    body: BusinessLocationCreate,
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
    places: GooglePlacesClient = Depends(get_places_client),
) -> dict:
    location = await OnboardingService(supabase, user.id).save_business_location(
        places, body.place_id
    )
    return {"success": True, "location": location}


@router.get("/me/enabled-tools", summary="Get enabled tools")
async def get_enabled_tools(
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    return {"enabledTools": OnboardingService(supabase, user.id).get_enabled_tools()}


@router.put("/me/enabled-tools", summary="Update enabled tools")
async def set_enabled_tools(
    body: EnabledToolsUpdate,
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    enabled = OnboardingService(supabase, user.id).set_enabled_tools(body.enabled_tools)
    return {"success": True, "enabledTools": enabled}


@router.get(
    "/onboarding/prescriptions",
    summary="Prescribed modules for a location",
    description="Modules recommended by the stored channel analyses.",
)
async def get_prescriptions(
    location_id: UUID = Query(..., alias="locationId"),
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    location = get_owned_location(supabase, location_id, user.id)
    modules = OnboardingService(supabase, user.id).prescribed_modules(location["id"])
    return {"prescribedModules": modules}


@router.post(
    "/onboarding/prescriptions",
    summary="Extract prescribed modules",
    description="Scan an analysis payload for recommended modules.",
)
async def extract_prescriptions(
    body: PrescriptionsRequest,
    user: CurrentUser = Depends(get_current_user),
) -> dict:
    modules = extract_prescribed_modules(body.payload)
    logger.info("prescriptions_extracted", user_id=user.id, modules=modules)
    return {"prescribedModules": modules}
