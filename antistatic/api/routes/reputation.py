"""Reputation endpoints: Google reviews, AI replies and review requests.

Reply, sync and WhatsApp calls go out to Google and Meta; their errors carry
the provider status and are rendered by the application exception handler.
"""

from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query
from supabase import Client

from antistatic.api.dependencies import CurrentUser, get_current_user, get_owned_location, get_supabase
from antistatic.api.models import (
    GenerateReplyRequest,
    ReviewReplyDelete,
    ReviewReplyRequest,
    ReviewRequestMessage,
    ReviewSyncRequest,
    WhatsAppReviewRequest,
)
from antistatic.core.exceptions import ValidationFailedError
from antistatic.services.business_context import load_business_context
from antistatic.services.reply_generator import ReplyRequest, get_reply_generator
from antistatic.services.review_requests import (
    ReviewRequestInput,
    ReviewRequestService,
    WhatsAppRequestInput,
    get_request_generator,
)
from antistatic.services.reviews import ReviewService

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Reputation"])

LOCATION_ACCESS_MESSAGE = "Business location not found or access denied"


# =============================================================================
# Reviews
# =============================================================================


@router.get(
    "/api/reputation/reviews",
    summary="List reviews",
    description="Synced Google reviews for a location, newest first.",
)
async def list_reviews(
    location_id: UUID = Query(..., alias="locationId"),
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    location = get_owned_location(supabase, location_id, user.id)
    return {"reviews": ReviewService(supabase, user.id).list_reviews(location["id"])}


@router.post(
    "/api/reputation/reviews/sync",
    summary="Sync reviews",
    description="Pull every review for the location from Google Business Profile.",
)
async def sync_reviews(
    body: ReviewSyncRequest,
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    location = get_owned_location(supabase, body.business_location_id, user.id, LOCATION_ACCESS_MESSAGE)
    result = await ReviewService(supabase, user.id).sync_reviews(location)
    return {"success": True, **result}


async def _save_reply(body: ReviewReplyRequest, user: CurrentUser, supabase: Client) -> dict:
    if not body.comment.strip():
        raise ValidationFailedError("comment is required and cannot be empty")
    if not body.review_id and not body.review_name:
        raise ValidationFailedError("reviewId or reviewName is required")

    location = get_owned_location(supabase, body.business_location_id, user.id, LOCATION_ACCESS_MESSAGE)
    reply = await ReviewService(supabase, user.id).reply(
        location, body.comment, review_id=body.review_id, review_name=body.review_name
    )
    return {"success": True, "reply": reply}


@router.post("/api/reputation/reviews/reply", summary="Reply to a review")
async def create_reply(
    body: ReviewReplyRequest,
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    return await _save_reply(body, user, supabase)


@router.put("/api/reputation/reviews/reply", summary="Update a review reply")
async def update_reply(
    body: ReviewReplyRequest,
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    return await _save_reply(body, user, supabase)


@router.delete("/api/reputation/reviews/reply", summary="Delete a review reply")
async def delete_reply(
    body: ReviewReplyDelete,
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    if not body.review_id and not body.review_name:
        raise ValidationFailedError("reviewId or reviewName is required")

    location = get_owned_location(supabase, body.business_location_id, user.id, LOCATION_ACCESS_MESSAGE)
    await ReviewService(supabase, user.id).delete_reply(
        location, review_id=body.review_id, review_name=body.review_name
    )
    return {"success": True, "message": "Reply deleted successfully"}


@router.post(
    "/api/reputation/generate-reply",
    summary="Generate reply drafts",
    description="Three distinct AI reply drafts for a review.",
)
async def generate_reply(
    body: GenerateReplyRequest,
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    location = get_owned_location(supabase, body.location_id, user.id)
    context = load_business_context(supabase, location["id"])

    request = ReplyRequest(
        review_text=body.review.text,
        rating=body.review.rating,
        reviewer_name=body.review.author_name,
        created_at=body.review.created_at,
        review_id=body.review.review_id,
        tone=body.tone,
        length=body.length,
    )
    replies = await get_reply_generator().generate_replies(request, context)
    return {"success": True, "replies": replies}


# =============================================================================
# Review requests
# =============================================================================


@router.get("/api/reputation/review-requests", summary="List review requests")
async def list_review_requests(
    location_id: UUID = Query(..., alias="locationId"),
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    location = get_owned_location(supabase, location_id, user.id)
    requests = ReviewRequestService(supabase, user.id).list_review_requests(location["id"])
    return {"requests": requests}


@router.post(
    "/api/reputation/review-requests",
    summary="Render a review request",
    description="Email or SMS copy asking a customer for a Google review. Nothing is sent.",
)
async def render_review_request(
    body: ReviewRequestMessage,
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    location = get_owned_location(supabase, body.business_location_id, user.id)
    if not location.get("place_id"):
        raise ValidationFailedError("Connect Google Business Profile first to get place ID")

    req = ReviewRequestInput(
        customer_name=body.customer_name,
        business_name=location.get("name") or "our business",
        business_type=location.get("category") or "",
        google_place_id=location["place_id"],
        customer_email=body.customer_email,
        customer_phone=body.customer_phone,
    )
    generator = get_request_generator()
    if body.channel == "sms":
        generated = generator.generate_sms_request(req)
    else:
        generated = generator.generate_email_request(req)

    return {
        "subject": generated.subject,
        "body": generated.body,
        "channel": generated.channel.value,
        "reviewUrl": generated.review_url,
    }


@router.post(
    "/api/review-requests/whatsapp/send",
    summary="Send a WhatsApp review request",
    description="Send the approved review template to a customer's WhatsApp number.",
)
async def send_whatsapp_review_request(
    body: WhatsAppReviewRequest,
    user: CurrentUser = Depends(get_current_user),
    supabase: Client = Depends(get_supabase),
) -> dict:
    location = get_owned_location(supabase, body.business_location_id, user.id, LOCATION_ACCESS_MESSAGE)
    return await ReviewRequestService(supabase, user.id).send_whatsapp(
        location,
        WhatsAppRequestInput(
            to=body.to,
            customer_name=body.customer_name,
            header_image_url=str(body.header_image_url),
            business_name=body.business_name,
            business_phone=body.business_phone,
        ),
    )
