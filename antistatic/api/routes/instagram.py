"""Instagram endpoints: OAuth connect, media and comments, the DM inbox and insights."""

from typing import Optional
from urllib.parse import urlencode
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from supabase import Client

from antistatic.api.dependencies import CurrentUser, get_current_user, get_owned_location, get_supabase
from antistatic.api.models import (
    CommentReplyRequest,
    InboxMarkReadRequest,
    InstagramLocationRequest,
    InstagramMessageRequest,
)
from antistatic.config.settings import get_settings
from antistatic.core.exceptions import AntistaticError
from antistatic.integrations.instagram import InstagramGraphClient, get_instagram_access_token
from antistatic.integrations.instagram.oauth import (
    callback_error_message,
    complete_connect,
    connection_status,
    disconnect,
    start_connect,
)
from antistatic.services.instagram_inbox import InstagramInboxService

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Instagram"])

CONNECT_RESULT_PATH = "/onboarding/connect"


def _connect_result_url(status: str, reason: Optional[str] = None) -> str:
    params = {"ig": status}
    if reason:
        params["reason"] = reason
    return f"{get_settings().app_url.rstrip('/')}{CONNECT_RESULT_PATH}?{urlencode(params)}"


# =============================================================================
# OAuth
# =============================================================================


@router.get(
    "/api/integrations/instagram/connect",
    summary="Start Instagram connection",
    description="Returns the Instagram authorize URL for the location.",
)
async def connect_instagram(
    business_location_id: UUID = Query(..., alias="businessLocationId"),
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    location = get_owned_location(supabase, business_location_id, user.id)
    url = start_connect(supabase, get_settings(), user.id, location["id"])
    return {"url": url}


@router.get(
    "/api/integrations/instagram/callback",
    summary="Instagram OAuth callback",
    description="Finishes the connection and redirects back to the web app.",
)
async def instagram_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    supabase: Client = Depends(get_supabase),
) -> RedirectResponse:
    if error:
        logger.warning("instagram_oauth_denied", error=error)
        return RedirectResponse(_connect_result_url("error", callback_error_message(error)))
    if not code or not state:
        return RedirectResponse(_connect_result_url("error", "Missing code or state"))

    try:
        await complete_connect(supabase, get_settings(), code, state)
    except AntistaticError as e:
        logger.warning("instagram_oauth_failed", error=str(e))
        return RedirectResponse(_connect_result_url("error", e.message))

    return RedirectResponse(_connect_result_url("connected"))


@router.get("/api/integrations/instagram/status", summary="Instagram connection status")
async def instagram_status(
    business_location_id: UUID = Query(..., alias="businessLocationId"),
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    location = get_owned_location(
        supabase, business_location_id, user.id, "Business location not found or access denied"
    )
    return connection_status(supabase, location["id"])


@router.post("/api/integrations/instagram/disconnect", summary="Disconnect Instagram")
async def disconnect_instagram(
    body: InstagramLocationRequest,
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    location = get_owned_location(supabase, body.business_location_id, user.id)
    disconnect(supabase, location["id"])
    return {"success": True}


# =============================================================================
# Media and comments
# =============================================================================


@router.get(
    "/api/social/instagram/media",
    summary="Media with comments",
    description="Recent posts with their comments and replies.",
)
async def list_media(
    business_location_id: UUID = Query(..., alias="businessLocationId"),
    limit: int = Query(10, ge=1, le=50),
    after: Optional[str] = None,
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    location = get_owned_location(supabase, business_location_id, user.id)
    credentials = await get_instagram_access_token(supabase, location["id"])
    async with InstagramGraphClient(credentials) as ig:
        return await ig.list_media_with_comments_page(limit_media=limit, after=after)


@router.post("/api/social/instagram/comments/reply", summary="Reply to a comment")
async def reply_to_comment(
    body: CommentReplyRequest,
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    location = get_owned_location(supabase, body.business_location_id, user.id)
    credentials = await get_instagram_access_token(supabase, location["id"])
    async with InstagramGraphClient(credentials) as ig:
        result = await ig.reply_to_comment(body.comment_id, body.message.strip())

    logger.info("instagram_comment_replied", location_id=location["id"], comment_id=body.comment_id)
    return result


@router.get("/api/social/instagram/insights", summary="Account insights")
async def get_insights(
    business_location_id: UUID = Query(..., alias="businessLocationId"),
    since: Optional[str] = None,
    until: Optional[str] = None,
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    location = get_owned_location(supabase, business_location_id, user.id)
    credentials = await get_instagram_access_token(supabase, location["id"])
    async with InstagramGraphClient(credentials) as ig:
        insights = await ig.get_insights(since=since, until=until)
    return {"insights": insights}


# =============================================================================
# Direct messages
# =============================================================================


@router.post("/api/social/instagram/messages/send", summary="Send a direct message")
async def send_message(
    body: InstagramMessageRequest,
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    location = get_owned_location(supabase, body.business_location_id, user.id)
    return await InstagramInboxService(supabase).send_message(
        location["id"], body.recipient_id, body.text
    )


@router.get("/api/social/instagram/inbox/threads", summary="DM conversations")
async def list_threads(
    location_id: UUID = Query(..., alias="locationId"),
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    location = get_owned_location(supabase, location_id, user.id, "Location not found")
    return {"threads": InstagramInboxService(supabase).list_threads(location["id"])}


@router.get("/api/social/instagram/inbox/messages", summary="Messages of a conversation")
async def list_messages(
    location_id: UUID = Query(..., alias="locationId"),
    conversation_id: str = Query(..., alias="conversationId", min_length=1),
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    location = get_owned_location(supabase, location_id, user.id, "Location not found")
    messages = InstagramInboxService(supabase).list_messages(location["id"], conversation_id)
    return {"messages": messages}


@router.post("/api/social/instagram/inbox/mark-read", summary="Mark a conversation read")
async def mark_read(
    body: InboxMarkReadRequest,
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    location = get_owned_location(supabase, body.business_location_id, user.id, "Location not found")
    marked = InstagramInboxService(supabase).mark_read(location["id"], body.conversation_id)
    return {"success": True, "marked": marked}


@router.post(
    "/api/social/instagram/inbox/sync",
    summary="Sync the DM inbox",
    description="Backfills conversations and recent messages from the Graph API.",
)
async def sync_inbox(
    body: InstagramLocationRequest,
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    location = get_owned_location(supabase, body.business_location_id, user.id, "Location not found")
    return await InstagramInboxService(supabase).sync_inbox(location["id"])
