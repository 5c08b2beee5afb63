"""FastAPI dependency injection providers.

This module provides dependency functions for injecting the Supabase client,
the signed-in user and shared HTTP clients into route handlers.
"""

from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

import structlog
from fastapi import Depends, Header
from supabase import Client, create_client

from antistatic.config.settings import get_settings
from antistatic.core.db import first_row
from antistatic.core.exceptions import NotFoundError, UnauthorizedError
from antistatic.integrations.google_places import GooglePlacesClient
from antistatic.scheduler.scheduler import Scheduler

logger = structlog.get_logger(__name__)

# Global instances for singleton pattern
_supabase_client: Optional[Client] = None
_scheduler_instance: Optional[Scheduler] = None


@dataclass
class CurrentUser:
    id: str
    email: Optional[str] = None


def get_supabase() -> Client:
    """
    Get Supabase client instance.

    Uses a singleton pattern to reuse the same client across requests.
    The service role key is used, so every query must filter by owner.
    """
    global _supabase_client

    if _supabase_client is None:
        settings = get_settings()
        _supabase_client = create_client(
            settings.supabase_url,
            settings.supabase_key.get_secret_value(),
        )

    return _supabase_client


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_current_user(
    authorization: Optional[str] = Header(None),
    supabase: Client = Depends(get_supabase),
) -> CurrentUser:
    """Resolve the Supabase user from the ``Authorization: Bearer`` header.

    Raises:
        UnauthorizedError: Missing, malformed or rejected token.
    """
    token = _bearer_token(authorization)
    if not token:
        raise UnauthorizedError("Unauthorized")

    try:
        response = supabase.auth.get_user(token)
    except Exception as e:
        logger.info("auth_token_rejected", error_type=type(e).__name__)
        raise UnauthorizedError("Unauthorized")

    user = getattr(response, "user", None)
    if user is None:
        raise UnauthorizedError("Unauthorized")
    return CurrentUser(id=str(user.id), email=getattr(user, "email", None))


def get_owned_location(
    supabase: Client,
    location_id: Any,
    user_id: str,
    message: str = "Business location not found",
) -> dict[str, Any]:
    """Load a ``business_locations`` row the user owns.

    Raises:
        NotFoundError: No such row for this user.
    """
    location = first_row(
        supabase.table("business_locations")
        .select("*")
        .eq("id", str(location_id))
        .eq("user_id", user_id)
        .limit(1)
        .execute()
    )
    if not location:
        raise NotFoundError(message)
    return location


async def get_places_client() -> AsyncIterator[GooglePlacesClient]:
    """A Places client scoped to one request."""
    async with GooglePlacesClient() as places:
        yield places


def get_scheduler() -> Scheduler:
    """
    Get Scheduler instance.

    Raises:
        RuntimeError: If scheduler has not been initialized.
    """
    if _scheduler_instance is None:
        raise RuntimeError(
            "Scheduler not initialized. Ensure the application startup event has run."
        )

    return _scheduler_instance


def set_scheduler(scheduler: Optional[Scheduler]) -> None:
    """Set the global scheduler instance. Called during application startup."""
    global _scheduler_instance
    _scheduler_instance = scheduler


def reset_dependencies() -> None:
    """
    Reset all global dependency instances.

    Useful for testing or application shutdown.
    """
    global _supabase_client, _scheduler_instance
    _supabase_client = None
    _scheduler_instance = None
