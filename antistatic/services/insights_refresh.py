"""
Competitor insights refresh.

For each business location with a connected Google profile: discover nearby
competitors, scrape them together with the business through Apify and store
the comparison in ``business_insights.apify_competitors``. Runs nightly from
the scheduler and on demand from the cron endpoint.
"""

from typing import Any, Optional

import structlog
from supabase import Client

from antistatic.core.db import utc_now_iso
from antistatic.integrations.apify_places import ApifyPlacesScraper, compare_places
from antistatic.integrations.google_places import GooglePlacesClient
from antistatic.services.competitors import CompetitorService

logger = structlog.get_logger(__name__)

MAX_LOCATIONS_PER_RUN = 100

INSIGHTS_SOURCE = "google"


def _upsert_insights(supabase: Client, payload: dict[str, Any]) -> None:
    supabase.table("business_insights").upsert(
        payload, on_conflict="location_id,source"
    ).execute()


async def refresh_location_insights(
    supabase: Client,
    location: dict[str, Any],
    places: GooglePlacesClient,
    scraper: ApifyPlacesScraper,
) -> Optional[dict[str, Any]]:
    """Refresh one location. Returns the stored ``apify_competitors`` value."""
    discovery = await CompetitorService(supabase, places).discover(location)
    anchor_place_id = discovery["anchor"]["placeId"]
    place_ids = [anchor_place_id, *(c["placeId"] for c in discovery["competitors"])]

    scraped = await scraper.scrape_place_ids(place_ids, anchor_place_id)
    places_data = scraped["places"]

    apify_competitors = {
        "places": places_data,
        "comparison": compare_places(places_data, anchor_place_id),
        "primaryCategoryKeyword": discovery["primaryCategoryKeyword"],
        "scrapedAt": utc_now_iso(),
    }

    now = utc_now_iso()
    _upsert_insights(
        supabase,
        {
            "location_id": location["id"],
            "source": INSIGHTS_SOURCE,
            "apify_raw_payload": scraped["rawItems"],
            "apify_competitors": apify_competitors,
            "last_scraped_at": now,
            "scrape_status": "success",
            "scrape_error": None,
            "updated_at": now,
        },
    )
    logger.info(
        "location_insights_refreshed",
        location_id=location["id"],
        places=len(places_data),
        rating_percentile=apify_competitors["comparison"]["ratingPercentile"],
    )
    return apify_competitors


async def refresh_competitor_insights(
    supabase: Client,
    places: Optional[GooglePlacesClient] = None,
    scraper: Optional[ApifyPlacesScraper] = None,
) -> dict[str, Any]:
    """
    Refresh every location with a linked Google profile.

    A failing location is recorded as ``scrape_status = "error"`` and does not
    stop the run.
    """
    result = (
        supabase.table("business_locations")
        .select("*")
        .not_.is_("google_location_name", "null")
        .limit(MAX_LOCATIONS_PER_RUN)
        .execute()
    )
    locations = result.data or []
    summary: dict[str, Any] = {"processed": len(locations), "successCount": 0, "errorCount": 0, "errors": []}
    if not locations:
        logger.info("insights_refresh_no_locations")
        return summary

    scraper = scraper or ApifyPlacesScraper()
    owns_places = places is None
    places = places or GooglePlacesClient()
    try:
        for location in locations:
            if not location.get("place_id"):
                logger.warning("insights_refresh_missing_place_id", location_id=location["id"])
                continue
            try:
                await refresh_location_insights(supabase, location, places, scraper)
                summary["successCount"] += 1
            except Exception as e:
                logger.exception("insights_refresh_failed", location_id=location["id"])
                summary["errorCount"] += 1
                summary["errors"].append({"locationId": location["id"], "error": str(e)})
                _upsert_insights(
                    supabase,
                    {
                        "location_id": location["id"],
                        "source": INSIGHTS_SOURCE,
                        "scrape_status": "error",
                        "scrape_error": str(e) or "Unknown error",
                        "updated_at": utc_now_iso(),
                    },
                )
    finally:
        if owns_places:
            await places.aclose()

    logger.info(
        "insights_refresh_completed",
        processed=summary["processed"],
        success=summary["successCount"],
        errors=summary["errorCount"],
    )
    return summary
