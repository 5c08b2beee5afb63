"""
Onboarding: business selection, module prescriptions and enabled tools.

The onboarding channel analysis stores free-form AI output; the modules it
recommends are scraped out of that JSON and normalised to registry keys so
the "Choose tools" step can preselect them.
"""

import re
from typing import Any, Optional

import structlog
from pydantic import BaseModel
from supabase import Client

from antistatic.core.db import first_row, utc_now_iso
from antistatic.core.exceptions import NotFoundError, ValidationFailedError
from antistatic.integrations.google_places import (
    LOCATION_DETAIL_FIELDS,
    GooglePlacesClient,
    place_coordinates,
)
from antistatic.services.competitors import format_categories, title_category

logger = structlog.get_logger(__name__)


# =============================================================================
# Module Registry
# =============================================================================


class ModuleInfo(BaseModel):
    key: str
    name: str
    tagline: str
    coming_soon: bool = False


MODULES: dict[str, ModuleInfo] = {
    "reputation_hub": ModuleInfo(
        key="reputation_hub", name="Reputation Hub", tagline="Reviews & messaging"
    ),
    "social_studio": ModuleInfo(
        key="social_studio", name="Social Studio", tagline="Content & scheduling"
    ),
    "competitor_radar": ModuleInfo(
        key="competitor_radar", name="Competitor Radar", tagline="Watchlist & alerts"
    ),
    "insights_lab": ModuleInfo(
        key="insights_lab", name="Insights Lab", tagline="Analytics & reports", coming_soon=True
    ),
    "profile_manager": ModuleInfo(
        key="profile_manager", name="Profile Manager", tagline="Business info", coming_soon=True
    ),
    "influencer_hub": ModuleInfo(
        key="influencer_hub", name="Influencer Hub", tagline="Creator partnerships"
    ),
}

# Names used by older analysis payloads
MODULE_ALIASES = {
    "competitortracker": "competitor_radar",
    "competitor_tracker": "competitor_radar",
}

MAX_SCAN_DEPTH = 8

_PRESCRIPTION_KEY_MARKERS = ("prescribed", "module", "solution")

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def is_module_key(value: Any) -> bool:
    return isinstance(value, str) and value in MODULES


def available_modules() -> list[str]:
    return [key for key, info in MODULES.items() if not info.coming_soon]


def normalize_module_id(value: Any) -> Optional[str]:
    """
    Map a module reference to its registry key.

    Accepts registry keys, camelCase ids, display names and UPPER_CASE
    constants. Unknown values map to None.
    """
    if not isinstance(value, str) or not value.strip():
        return None

    candidate = _CAMEL_BOUNDARY.sub("_", value.strip())
    candidate = re.sub(r"[\s\-]+", "_", candidate).lower()
    candidate = MODULE_ALIASES.get(candidate, candidate)
    return candidate if candidate in MODULES else None


def _scan(value: Any, depth: int, found: list[str]) -> None:
    if depth > MAX_SCAN_DEPTH or value is None:
        return

    if isinstance(value, list):
        for item in value:
            _scan(item, depth + 1, found)
        return
    if not isinstance(value, dict):
        return

    for key, child in value.items():
        if not any(marker in key.lower() for marker in _PRESCRIPTION_KEY_MARKERS):
            _scan(child, depth + 1, found)
        elif isinstance(child, str):
            found.append(child)
        elif isinstance(child, list):
            for item in child:
                if isinstance(item, str):
                    found.append(item)
                elif isinstance(item, dict):
                    found.extend(
                        item[k] for k in ("moduleId", "module_id") if isinstance(item.get(k), str)
                    )
        elif isinstance(child, dict):
            _scan(child, depth + 1, found)


def extract_prescribed_modules(payload: Any) -> list[str]:
    """
    Module keys recommended anywhere in an analysis payload.

    Lists are read as module references directly; objects are deep scanned
    for prescription-looking keys. Result is deduplicated in first-seen
    order with coming-soon modules removed.
    """
    found: list[str] = []
    if isinstance(payload, list):
        for item in payload:
            if isinstance(item, str):
                found.append(item)
            else:
                _scan(item, 1, found)
    else:
        _scan(payload, 0, found)

    modules: list[str] = []
    for raw in found:
        key = normalize_module_id(raw)
        if key and key not in modules and not MODULES[key].coming_soon:
            modules.append(key)
    return modules


# =============================================================================
# Service
# =============================================================================


def location_row_from_place(user_id: str, place: dict[str, Any]) -> dict[str, Any]:
    """``business_locations`` columns for a Places details result."""
    lat, lng = place_coordinates(place)
    types = place.get("types") or []
    return {
        "user_id": user_id,
        "place_id": place["place_id"],
        "name": place.get("name"),
        "formatted_address": place.get("formatted_address"),
        "lat": lat,
        "lng": lng,
        "phone_number": place.get("formatted_phone_number") or place.get("international_phone_number"),
        "website": place.get("website"),
        "rating": place.get("rating"),
        "review_count": place.get("user_ratings_total"),
        "category": title_category(types),
        "categories": format_categories(types),
        "opening_hours": place.get("opening_hours"),
        "updated_at": utc_now_iso(),
    }


class OnboardingService:
    """Business selection and tool preferences for one user."""

    def __init__(self, supabase: Client, user_id: str):
        self.supabase = supabase
        self.user_id = user_id

    async def save_business_location(
        self, places: GooglePlacesClient, place_id: str
    ) -> dict[str, Any]:
        """Look up a Places business and store it as the user's location."""
        place_id = (place_id or "").strip()
        if not place_id:
            raise ValidationFailedError("placeId is required")

        details = await places.place_details(place_id, LOCATION_DETAIL_FIELDS)
        if not details:
            raise NotFoundError("Place not found")
        details.setdefault("place_id", place_id)

        row = location_row_from_place(self.user_id, details)
        result = (
            self.supabase.table("business_locations")
            .upsert(row, on_conflict="user_id,place_id")
            .execute()
        )
        location = first_row(result) or row
        logger.info(
            "business_location_saved",
            user_id=self.user_id,
            location_id=location.get("id"),
            place_id=place_id,
        )
        return location

    def primary_location(self) -> Optional[dict[str, Any]]:
        return first_row(
            self.supabase.table("business_locations")
            .select("id, enabled_tools")
            .eq("user_id", self.user_id)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )

    def get_enabled_tools(self) -> list[str]:
        location = self.primary_location()
        tools = (location or {}).get("enabled_tools")
        if not isinstance(tools, list):
            return []
        return [tool for tool in tools if is_module_key(tool)]

    def set_enabled_tools(self, tools: list[str]) -> list[str]:
        invalid = [tool for tool in tools if not is_module_key(tool)]
        if invalid:
            raise ValidationFailedError(
                "Invalid module keys", {"invalid": invalid, "allowed": list(MODULES)}
            )

        location = self.primary_location()
        if not location:
            raise NotFoundError("Business location not found")

        enabled = list(dict.fromkeys(tools))
        self.supabase.table("business_locations").update(
            {"enabled_tools": enabled, "updated_at": utc_now_iso()}
        ).eq("id", location["id"]).eq("user_id", self.user_id).execute()
        logger.info("enabled_tools_updated", location_id=location["id"], tools=enabled)
        return enabled

    def prescribed_modules(self, location_id: str) -> list[str]:
        """Modules recommended by the stored channel analyses for a location."""
        insights = first_row(
            self.supabase.table("business_insights")
            .select("instagram_ai_analysis, facebook_ai_analysis, gbp_ai_analysis")
            .eq("location_id", location_id)
            .eq("source", "google")
            .limit(1)
            .execute()
        )
        if not insights:
            return []
        return extract_prescribed_modules(
            [
                insights.get("instagram_ai_analysis"),
                insights.get("facebook_ai_analysis"),
                insights.get("gbp_ai_analysis"),
            ]
        )
