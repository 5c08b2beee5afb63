"""Instagram access token lookup and refresh.

Long-lived Instagram Login tokens last 60 days and can only be refreshed while
still valid (or within a day of expiring). Tokens close to expiry are refreshed
proactively; tokens expired for longer require the user to reconnect.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional

import httpx
import structlog
from supabase import Client

from antistatic.core.db import first_row, parse_timestamp, utc_now, utc_now_iso
from antistatic.core.exceptions import NotConnectedError, TokenExpiredError

logger = structlog.get_logger(__name__)

REFRESH_URL = "https://graph.instagram.com/refresh_access_token"

DEFAULT_LONG_LIVED_EXPIRES_IN = 5184000  # 60 days

REFRESH_WINDOW = timedelta(days=7)
REFRESH_GRACE = timedelta(hours=24)

EXPIRY_MESSAGE_MARKERS = ("expired", "Session has expired", "Error validating access token")


class InstagramAuthError(TokenExpiredError):
    """The stored Instagram token is missing or unusable."""

    def __init__(self, reason: str, message: str):
        self.reason = reason
        super().__init__(message)


@dataclass
class InstagramCredentials:
    access_token: str
    ig_account_id: str
    scopes: list[str] = field(default_factory=list)


def is_token_expired_error(error: Any) -> bool:
    """Whether a Graph API error payload means the token is no longer valid."""
    if not isinstance(error, dict):
        return False

    nested = error.get("error") if isinstance(error.get("error"), dict) else {}
    if error.get("code") == 190 or nested.get("code") == 190:
        return True

    message = error.get("message") or nested.get("message") or ""
    return isinstance(message, str) and any(marker in message for marker in EXPIRY_MESSAGE_MARKERS)


async def refresh_instagram_token(
    access_token: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> tuple[str, int]:
    """Refresh a long-lived token. Returns ``(token, expires_in)``."""
    async with httpx.AsyncClient(timeout=15.0, transport=transport) as client:
        response = await client.get(
            REFRESH_URL,
            params={"grant_type": "ig_refresh_token", "access_token": access_token},
        )

    data = response.json() if response.content else {}
    if response.status_code >= 400 or not data.get("access_token"):
        message = (data.get("error") or {}).get("message", "Unknown error")
        raise InstagramAuthError("EXPIRED", f"Token refresh failed: {message}")

    return data["access_token"], int(data.get("expires_in") or DEFAULT_LONG_LIVED_EXPIRES_IN)


def load_connection(supabase: Client, business_location_id: str) -> Optional[dict[str, Any]]:
    result = (
        supabase.table("instagram_connections")
        .select("access_token, instagram_user_id, instagram_username, scopes, token_expires_at")
        .eq("business_location_id", business_location_id)
        .limit(1)
        .execute()
    )
    return first_row(result)


async def get_instagram_access_token(
    supabase: Client,
    business_location_id: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> InstagramCredentials:
    """Credentials for a location, refreshing the token when it nears expiry.

    Raises:
        NotConnectedError: No Instagram connection for the location.
        InstagramAuthError: Token expired too long ago, or refresh failed.
    """
    connection = load_connection(supabase, business_location_id)
    if not connection or not connection.get("access_token"):
        raise NotConnectedError("Instagram account not connected")

    access_token = connection["access_token"]
    expires_at = parse_timestamp(connection.get("token_expires_at"))
    now = utc_now()

    needs_refresh = False
    if expires_at is not None:
        if expires_at <= now - REFRESH_GRACE:
            logger.warning(
                "instagram_token_expired_too_long",
                location_id=business_location_id,
                expires_at=expires_at.isoformat(),
            )
            raise InstagramAuthError(
                "EXPIRED",
                "Instagram access token has been expired for too long and cannot be "
                "automatically refreshed. Please reconnect your Instagram account.",
            )
        needs_refresh = expires_at <= now + REFRESH_WINDOW

    if needs_refresh:
        try:
            access_token, expires_in = await refresh_instagram_token(access_token, transport)
        except (InstagramAuthError, httpx.HTTPError) as e:
            logger.warning("instagram_token_refresh_failed", location_id=business_location_id, error=str(e))
            raise InstagramAuthError(
                "EXPIRED",
                "Instagram access token could not be refreshed. Please reconnect your Instagram account.",
            )

        supabase.table("instagram_connections").update(
            {
                "access_token": access_token,
                "token_expires_at": (utc_now() + timedelta(seconds=expires_in)).isoformat(),
                "updated_at": utc_now_iso(),
            }
        ).eq("business_location_id", business_location_id).execute()
        logger.info("instagram_token_refreshed", location_id=business_location_id)

    return InstagramCredentials(
        access_token=access_token,
        ig_account_id=connection.get("instagram_user_id") or "",
        scopes=list(connection.get("scopes") or []),
    )
