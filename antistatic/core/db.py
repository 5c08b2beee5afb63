"""Small helpers shared by code that talks to Supabase."""

from datetime import datetime, timezone
from typing import Any, Optional

# Postgres unique_violation
UNIQUE_VIOLATION = "23505"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def first_row(response: Any) -> Optional[dict[str, Any]]:
    """First row of a PostgREST response, or None."""
    if response is None:
        return None
    data = getattr(response, "data", None)
    if isinstance(data, list):
        return data[0] if data else None
    return data or None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp from the database into an aware datetime."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
