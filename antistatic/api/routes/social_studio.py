"""Social Studio endpoints: post calendar, scheduling and AI captions."""

from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from supabase import Client

from antistatic.api.dependencies import CurrentUser, get_current_user, get_owned_location, get_supabase
from antistatic.api.models import GenerateCaptionRequest, PostCreate, PostUpdate
from antistatic.core.exceptions import ValidationFailedError
from antistatic.services.business_context import load_business_context
from antistatic.services.caption_generator import (
    CaptionRequest,
    fallback_caption,
    get_caption_generator,
    load_review_highlights,
)
from antistatic.services.social_posts import SocialPostService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/social-studio", tags=["Social Studio"])


# =============================================================================
# Posts
# =============================================================================


@router.get(
    "/posts",
    summary="List posts",
    description="Posts for a location as calendar events, optionally within a date range.",
)
async def list_posts(
    business_location_id: UUID = Query(..., alias="businessLocationId"),
    start: Optional[datetime] = Query(None, alias="from"),
    end: Optional[datetime] = Query(None, alias="to"),
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    if start is not None and end is not None and start > end:
        raise ValidationFailedError("'from' must be before 'to'")

    location = get_owned_location(supabase, business_location_id, user.id)
    return SocialPostService(supabase, user.id).calendar(location["id"], start, end)


@router.post("/posts", status_code=201, summary="Create a post")
async def create_post(
    body: PostCreate,
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    location = get_owned_location(supabase, body.business_location_id, user.id)
    values = body.model_dump(exclude={"business_location_id"})
    post = SocialPostService(supabase, user.id).create_post(location["id"], values)
    return {"post": post}


@router.patch("/posts/{post_id}", summary="Update a post")
async def update_post(
    post_id: UUID,
    body: PostUpdate,
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    changes = body.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationFailedError("No fields to update")
    post = SocialPostService(supabase, user.id).update_post(str(post_id), changes)
    return {"post": post}


@router.delete("/posts/{post_id}", summary="Delete a post")
async def delete_post(
    post_id: UUID,
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    SocialPostService(supabase, user.id).delete_post(str(post_id))
    return {"success": True}


# =============================================================================
# AI captions
# =============================================================================


@router.post(
    "/ai/generate-caption",
    summary="Generate a caption",
    description="Draft a caption for a topic using business details and recent reviews.",
)
async def generate_caption(
    body: GenerateCaptionRequest,
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
):
    location = get_owned_location(supabase, body.business_location_id, user.id)
    request = CaptionRequest(
        topic=body.topic,
        platform=body.platform,
        include_emojis=body.include_emojis,
        include_hashtags=body.include_hashtags,
        include_image_suggestions=body.include_image_suggestions,
    )

    try:
        context = load_business_context(supabase, location["id"])
        highlights = load_review_highlights(supabase, location["id"])
        caption = await get_caption_generator().generate(request, context, highlights)
    except Exception as e:
        logger.error(
            "caption_generation_failed",
            location_id=location["id"],
            error=str(e),
            error_type=type(e).__name__,
        )
        fallback = fallback_caption(body.topic)
        return JSONResponse(
            status_code=500,
            content={"error": getattr(e, "message", None) or str(e), **fallback.model_dump()},
        )

    return caption.model_dump()
