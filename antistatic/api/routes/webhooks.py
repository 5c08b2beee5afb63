"""Meta webhook receiver for Instagram messaging events."""

import json
from typing import Optional

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import PlainTextResponse
from supabase import Client

from antistatic.api.dependencies import get_supabase
from antistatic.config.settings import get_settings
from antistatic.core.exceptions import ConfigurationError, ForbiddenError, ValidationFailedError
from antistatic.services.instagram_inbox import (
    InstagramInboxService,
    verify_signature,
    verify_subscription,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])


@router.get(
    "/meta/instagram",
    response_class=PlainTextResponse,
    summary="Verify webhook subscription",
)
async def verify_instagram_webhook(
    mode: Optional[str] = Query(None, alias="hub.mode"),
    token: Optional[str] = Query(None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(None, alias="hub.challenge"),
    supabase: Client = Depends(get_supabase),
) -> PlainTextResponse:
    settings = get_settings()
    expected = (
        settings.meta_webhook_verify_token.get_secret_value()
        if settings.meta_webhook_verify_token
        else None
    )
    if not verify_subscription(mode, token, expected):
        logger.warning("instagram_webhook_verification_failed", mode=mode)
        raise ForbiddenError("Forbidden")

    InstagramInboxService(supabase).mark_webhook_verified()
    logger.info("instagram_webhook_verified")
    return PlainTextResponse(challenge or "")


@router.post("/meta/instagram", summary="Receive Instagram events")
async def receive_instagram_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    supabase: Client = Depends(get_supabase),
) -> dict:
    """Verify the signature, acknowledge, then store events after the response."""
    settings = get_settings()
    if not settings.meta_app_secret:
        logger.error("meta_app_secret_not_configured")
        raise ConfigurationError("Webhook secret not configured", "meta_app_secret")

    raw_body = await request.body()
    signature = request.headers.get("X-Hub-Signature-256")
    if not verify_signature(settings.meta_app_secret.get_secret_value(), raw_body, signature):
        logger.warning("instagram_webhook_invalid_signature", has_header=bool(signature))
        raise ForbiddenError("invalid_signature")

    try:
        payload = json.loads(raw_body)
    except ValueError:
        raise ValidationFailedError("invalid_payload")
    if not isinstance(payload, dict):
        raise ValidationFailedError("invalid_payload")

    background_tasks.add_task(InstagramInboxService(supabase).process_webhook, payload)
    return {"ok": True}
