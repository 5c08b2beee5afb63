"""Instagram Business Login OAuth flow.

``start_connect`` records a one-time state for the user and location and
returns the Instagram authorize URL. ``complete_connect`` validates the state,
exchanges the code for a long-lived token and stores the connection.
``connection_status`` and ``disconnect`` read and remove it.
"""

from datetime import timedelta
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
import structlog
from supabase import Client

from antistatic.config.settings import Settings
from antistatic.core import oauth_state
from antistatic.core.db import first_row, utc_now, utc_now_iso
from antistatic.core.exceptions import (
    ConfigurationError,
    IntegrationError,
    IntegrationUnavailableError,
)

logger = structlog.get_logger(__name__)

SERVICE = "instagram"

AUTHORIZE_URL = "https://www.instagram.com/oauth/authorize"
SHORT_LIVED_TOKEN_URL = "https://api.instagram.com/oauth/access_token"
LONG_LIVED_TOKEN_URL = "https://graph.instagram.com/access_token"
PROFILE_URL = "https://graph.instagram.com/me"

REQUIRED_SCOPES = (
    "instagram_business_basic",
    "instagram_manage_comments",
    "instagram_business_manage_messages",
    "instagram_business_content_publish",
)

STATE_TABLE = "instagram_oauth_states"

DEFAULT_SHORT_LIVED_EXPIRES_IN = 3600
DEFAULT_LONG_LIVED_EXPIRES_IN = 5184000

CALLBACK_ERROR_MESSAGES = {
    "access_denied": "Connection cancelled. Please try again when ready.",
    "invalid_request": "Invalid OAuth request. Please check redirect URI configuration.",
    "redirect_uri_mismatch": "Redirect URI mismatch. Please contact support.",
}


def _require_app(settings: Settings) -> tuple[str, str]:
    if not settings.instagram_app_id:
        raise ConfigurationError("Instagram OAuth not configured", "instagram_app_id")
    if not settings.instagram_app_secret:
        raise ConfigurationError("Instagram OAuth not configured", "instagram_app_secret")
    return settings.instagram_app_id, settings.instagram_app_secret.get_secret_value()


def build_authorize_url(settings: Settings, state: str) -> str:
    app_id, _ = _require_app(settings)
    params = {
        "client_id": app_id,
        "redirect_uri": settings.instagram_redirect_uri,
        "scope": ",".join(REQUIRED_SCOPES),
        "response_type": "code",
        "state": state,
        "force_reauth": "true",
    }
    return f"{AUTHORIZE_URL}?{urlencode(params)}"


def start_connect(
    supabase: Client, settings: Settings, user_id: str, business_location_id: str
) -> str:
    """Persist a fresh OAuth state and return the authorize URL."""
    _require_app(settings)
    state = oauth_state.create_state(supabase, STATE_TABLE, user_id, business_location_id)
    logger.info("instagram_oauth_started", user_id=user_id, location_id=business_location_id)
    return build_authorize_url(settings, state)


def consume_state(supabase: Client, state: str, user_id: Optional[str] = None) -> dict[str, Any]:
    return oauth_state.consume_state(supabase, STATE_TABLE, state, user_id)


def parse_scopes(value: Any) -> list[str]:
    """Granted scopes arrive either comma separated or as a list."""
    if isinstance(value, str):
        return [scope.strip() for scope in value.split(",") if scope.strip()]
    if isinstance(value, list):
        return [str(scope) for scope in value]
    return []


def _json_body(response: httpx.Response) -> dict[str, Any]:
    if not response.content:
        return {}
    try:
        data = response.json()
    except ValueError as e:
        logger.warning(
            "instagram_unexpected_response",
            url=str(response.url.copy_with(query=None)),
            status_code=response.status_code,
        )
        raise IntegrationUnavailableError(
            SERVICE, "Unexpected response from Instagram. Please try again."
        ) from e
    return data if isinstance(data, dict) else {}


async def _exchange_code(
    client: httpx.AsyncClient,
    settings: Settings,
    app_id: str,
    app_secret: str,
    code: str,
) -> dict[str, Any]:
    """Code -> short-lived token -> profile -> long-lived token.

    A failed long-lived exchange keeps the short-lived token.
    """
    response = await client.post(
        SHORT_LIVED_TOKEN_URL,
        data={
            "client_id": app_id,
            "client_secret": app_secret,
            "grant_type": "authorization_code",
            "redirect_uri": settings.instagram_redirect_uri,
            "code": code,
        },
    )
    token_data = _json_body(response)
    if response.status_code >= 400:
        message = token_data.get("error_message") or token_data.get("error_type") or "Token exchange failed"
        raise IntegrationError(SERVICE, message, status_code=400)

    access_token = token_data.get("access_token")
    instagram_user_id = token_data.get("user_id")
    if not access_token or not instagram_user_id:
        raise IntegrationError(SERVICE, "Invalid response from Instagram. Please try again.")

    username = None
    profile_response = await client.get(
        PROFILE_URL, params={"fields": "user_id,username", "access_token": access_token}
    )
    if profile_response.status_code < 400:
        username = _json_body(profile_response).get("username")

    long_lived_token = access_token
    expires_in = int(token_data.get("expires_in") or DEFAULT_SHORT_LIVED_EXPIRES_IN)
    exchange = await client.get(
        LONG_LIVED_TOKEN_URL,
        params={
            "grant_type": "ig_exchange_token",
            "client_secret": app_secret,
            "access_token": access_token,
        },
    )
    exchange_data = _json_body(exchange) if exchange.status_code < 400 else {}
    if exchange_data.get("access_token"):
        long_lived_token = exchange_data["access_token"]
        expires_in = int(exchange_data.get("expires_in") or DEFAULT_LONG_LIVED_EXPIRES_IN)
    else:
        logger.warning("instagram_long_lived_exchange_failed", status_code=exchange.status_code)

    return {
        "access_token": long_lived_token,
        "expires_in": expires_in,
        "instagram_user_id": str(instagram_user_id),
        "username": username,
        "scopes": parse_scopes(token_data.get("permissions") or token_data.get("scope")),
    }


async def complete_connect(
    supabase: Client,
    settings: Settings,
    code: str,
    state: str,
    user_id: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict[str, Any]:
    """Finish the OAuth callback and upsert ``instagram_connections``.

    Returns:
        The stored connection payload (without the token).
    """
    app_id, app_secret = _require_app(settings)
    record = consume_state(supabase, state, user_id)
    business_location_id = record["business_location_id"]

    try:
        async with httpx.AsyncClient(timeout=15.0, transport=transport) as client:
            tokens = await _exchange_code(client, settings, app_id, app_secret, code)
    except httpx.RequestError as e:
        logger.warning("instagram_token_exchange_unreachable", error=str(e))
        raise IntegrationUnavailableError(
            SERVICE, "Could not reach Instagram. Please try again."
        ) from e

    instagram_user_id = tokens["instagram_user_id"]
    scopes = tokens["scopes"]
    payload = {
        "business_location_id": business_location_id,
        "instagram_user_id": instagram_user_id,
        "access_token": tokens["access_token"],
        "token_expires_at": (utc_now() + timedelta(seconds=tokens["expires_in"])).isoformat(),
        "scopes": scopes or None,
        "connected_at": utc_now_iso(),
    }
    if tokens["username"]:
        payload["instagram_username"] = tokens["username"]

    supabase.table("instagram_connections").upsert(
        payload, on_conflict="business_location_id"
    ).execute()

    logger.info(
        "instagram_connected",
        location_id=business_location_id,
        instagram_user_id=instagram_user_id,
        scopes=scopes,
    )
    return {key: value for key, value in payload.items() if key != "access_token"}


def callback_error_message(error: str) -> str:
    return CALLBACK_ERROR_MESSAGES.get(error, "Failed to connect Instagram account.")


def connection_status(supabase: Client, business_location_id: str) -> dict[str, Any]:
    connection = first_row(
        supabase.table("instagram_connections")
        .select("instagram_user_id, instagram_username, scopes")
        .eq("business_location_id", business_location_id)
        .limit(1)
        .execute()
    )
    if not connection:
        return {"connected": False}
    return {
        "connected": True,
        "username": connection.get("instagram_username"),
        "instagram_user_id": connection["instagram_user_id"],
        "scopes": connection.get("scopes") or [],
    }


def disconnect(supabase: Client, business_location_id: str) -> None:
    """Delete the stored connection. Synced DMs stay until the location is removed."""
    supabase.table("instagram_connections").delete().eq(
        "business_location_id", business_location_id
    ).execute()
    logger.info("instagram_disconnected", location_id=business_location_id)
