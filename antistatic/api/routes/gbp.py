"""Google Business Profile connect flow."""

from typing import Optional
from urllib.parse import urlencode
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from supabase import Client

from antistatic.api.dependencies import CurrentUser, get_current_user, get_owned_location, get_supabase
from antistatic.config.settings import get_settings
from antistatic.core.exceptions import AntistaticError
from antistatic.integrations.gbp import callback_error_message, complete_connect, start_connect
from antistatic.services.reviews import ReviewService

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Google Business Profile"])

CONNECT_RESULT_PATH = "/onboarding/connect"


def _connect_result_url(status: str, reason: Optional[str] = None) -> str:
    params = {"gbp": status}
    if status == "connected":
        params["allowBack"] = "true"
    if reason:
        params["reason"] = reason
    return f"{get_settings().app_url.rstrip('/')}{CONNECT_RESULT_PATH}?{urlencode(params)}"


@router.get(
    "/api/google/gbp/auth",
    summary="Start Google Business Profile connection",
    description="Returns the Google consent URL for the location.",
)
async def connect_gbp(
    business_location_id: UUID = Query(..., alias="businessLocationId"),
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    location = get_owned_location(supabase, business_location_id, user.id)
    url = start_connect(supabase, get_settings(), user.id, location["id"])
    return {"url": url}


@router.get(
    "/api/gbp/oauth/callback",
    summary="Google OAuth callback",
    description="Stores the tokens, links the GBP location and redirects back to the web app.",
)
async def gbp_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    supabase: Client = Depends(get_supabase),
) -> RedirectResponse:
    if error:
        logger.warning("gbp_oauth_denied", error=error)
        return RedirectResponse(_connect_result_url("error", callback_error_message(error)))
    if not code or not state:
        return RedirectResponse(_connect_result_url("error", "Missing code or state"))

    try:
        account = await complete_connect(supabase, get_settings(), code, state)
    except AntistaticError as e:
        logger.warning("gbp_oauth_failed", error=str(e))
        return RedirectResponse(_connect_result_url("error", e.message))

    # Linking the GBP location is retried by the first review sync.
    try:
        location = get_owned_location(supabase, account["business_location_id"], account["user_id"])
        await ReviewService(supabase, account["user_id"]).link_gbp_location(location)
    except AntistaticError as e:
        logger.warning(
            "gbp_location_link_failed",
            location_id=account["business_location_id"],
            error=str(e),
        )

    return RedirectResponse(_connect_result_url("connected"))
