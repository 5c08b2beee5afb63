"""One-time OAuth ``state`` rows for provider connect flows.

Each provider keeps its own table with ``state, user_id,
business_location_id, expires_at``. A state is deleted as soon as it is
read, so a callback can only be completed once.
"""

import secrets
from datetime import timedelta
from typing import Any, Optional

from supabase import Client

from antistatic.core.db import first_row, parse_timestamp, utc_now
from antistatic.core.exceptions import ValidationFailedError

STATE_TTL = timedelta(minutes=10)


def new_state() -> str:
    """32 random bytes, base64url encoded without padding."""
    return secrets.token_urlsafe(32)


def create_state(
    supabase: Client,
    table: str,
    user_id: str,
    business_location_id: str,
    ttl: timedelta = STATE_TTL,
) -> str:
    state = new_state()
    supabase.table(table).insert(
        {
            "state": state,
            "user_id": user_id,
            "business_location_id": business_location_id,
            "expires_at": (utc_now() + ttl).isoformat(),
        }
    ).execute()
    return state


def consume_state(
    supabase: Client, table: str, state: str, user_id: Optional[str] = None
) -> dict[str, Any]:
    """Load and delete a state. Raises if missing, foreign or expired."""
    record = first_row(
        supabase.table(table)
        .select("user_id, business_location_id, expires_at")
        .eq("state", state)
        .limit(1)
        .execute()
    )
    if not record:
        raise ValidationFailedError("Invalid or expired state. Please try connecting again.")

    supabase.table(table).delete().eq("state", state).execute()

    if user_id and record.get("user_id") != user_id:
        raise ValidationFailedError("State does not belong to the current user.")

    expires_at = parse_timestamp(record.get("expires_at"))
    if expires_at is None or expires_at < utc_now():
        raise ValidationFailedError("OAuth state expired. Please try connecting again.")

    return record
