"""Instagram Graph API integration (Instagram API with Instagram Login)."""

from antistatic.integrations.instagram.graph import (
    InstagramGraphClient,
    InstagramGraphError,
    ig_request,
)
from antistatic.integrations.instagram.tokens import (
    InstagramAuthError,
    InstagramCredentials,
    get_instagram_access_token,
    is_token_expired_error,
)

__all__ = [
    "InstagramAuthError",
    "InstagramCredentials",
    "InstagramGraphClient",
    "InstagramGraphError",
    "get_instagram_access_token",
    "ig_request",
    "is_token_expired_error",
]
