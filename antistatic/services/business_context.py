"""
Business context for AI prompts.

Collects what we know about a location (name, category, city, contact
details, hours, service highlights) from ``business_locations`` and the
Google row of ``business_insights`` so generated replies can reference it.
"""

import json
from typing import Any, Optional

from pydantic import BaseModel, Field
from supabase import Client

from antistatic.core.db import first_row

DEFAULT_BUSINESS_NAME = "our business"

HOURS_JSON_MAX_LENGTH = 200


class BusinessContext(BaseModel):
    """What the prompt is allowed to say about the business."""
    business_name: str
    primary_category: Optional[str] = None
    city: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    hours_summary: Optional[str] = None
    service_highlights: list[str] = Field(default_factory=list)

    def to_prompt(self) -> str:
        """Render as ``Label: value`` lines, skipping unknown fields."""
        lines = [f"Business name: {self.business_name}"]
        optional = [
            ("Primary category", self.primary_category),
            ("Location/city", self.city),
            ("Address", self.address),
            ("Phone", self.phone),
            ("Website", self.website),
            ("Hours summary", self.hours_summary),
        ]
        lines.extend(f"{label}: {value}" for label, value in optional if value)
        if self.service_highlights:
            lines.append(f"Service highlights: {', '.join(self.service_highlights)}")
        return "\n".join(lines)


def extract_city(address: Optional[str]) -> Optional[str]:
    """City from a formatted address: the second to last comma separated part.

    "123 Main St, New York, NY 10001" -> "New York"
    """
    if not address:
        return None
    parts = address.split(",")
    if len(parts) < 2:
        return None
    return parts[-2].strip() or None


def format_hours_summary(hours: Any) -> Optional[str]:
    """Readable hours from scraped opening hours.

    A list of ``{day, hours}`` entries becomes ``"Monday: 9-5, Tuesday: 9-5"``.
    Other JSON is used verbatim when short enough to fit in a prompt.
    """
    if not hours or not isinstance(hours, (dict, list)):
        return None

    if isinstance(hours, list):
        formatted = [
            f"{entry['day']}: {entry['hours']}"
            for entry in hours
            if isinstance(entry, dict) and entry.get("day") and entry.get("hours")
        ]
        return ", ".join(formatted) or None

    serialized = json.dumps(hours, separators=(",", ":"))
    return serialized if len(serialized) < HOURS_JSON_MAX_LENGTH else None


def build_business_context(
    location: Optional[dict[str, Any]], insights: Optional[dict[str, Any]]
) -> BusinessContext:
    location = location or {}
    insights = insights or {}

    google_name = location.get("google_location_name") or ""
    business_name = (
        location.get("name")
        or google_name.rsplit("/", 1)[-1].replace("-", " ")
        or DEFAULT_BUSINESS_NAME
    )

    highlights = [c for c in (location.get("categories") or []) if isinstance(c, str)]
    gbp_category = insights.get("gbp_primary_category")
    if gbp_category and gbp_category not in highlights:
        highlights.insert(0, gbp_category)

    address = location.get("formatted_address")
    return BusinessContext(
        business_name=business_name,
        primary_category=gbp_category or location.get("category"),
        city=extract_city(address),
        address=address,
        phone=insights.get("gbp_phone") or location.get("phone_number"),
        website=insights.get("gbp_website_url") or location.get("website"),
        hours_summary=format_hours_summary(insights.get("apify_opening_hours")),
        service_highlights=highlights,
    )


def load_business_context(supabase: Client, location_id: str) -> BusinessContext:
    """Fetch the location and its Google insights row, then build the context."""
    location = first_row(
        supabase.table("business_locations")
        .select("name, google_location_name, formatted_address, phone_number, website, category, categories")
        .eq("id", location_id)
        .limit(1)
        .execute()
    )
    insights = first_row(
        supabase.table("business_insights")
        .select("gbp_primary_category, gbp_website_url, gbp_phone, gbp_address, apify_opening_hours")
        .eq("location_id", location_id)
        .eq("source", "google")
        .limit(1)
        .execute()
    )
    return build_business_context(location, insights)
