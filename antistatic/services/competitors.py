"""
Competitor discovery and local search rankings.

Discovery uses a Places nearby search around the business to find
comparable places. Rankings run a text search for one of the owner's search
terms and snapshot the order Google returns, so position changes can be
tracked over time. Search terms are added by hand or synced from the
keywords customers used to find the location on Google. Nearest
competitors re-hydrate the places found by the last Apify scrape with fresh
Places details.
"""

import asyncio
from typing import Any, Optional

import httpx
import structlog
from supabase import Client

from antistatic.core.db import first_row, utc_now_iso
from antistatic.core.exceptions import NotConnectedError, NotFoundError, ValidationFailedError
from antistatic.core.geo import distance_km
from antistatic.integrations.gbp import (
    GBPClient,
    get_valid_access_token,
    location_resource,
    normalize_search_terms,
)
from antistatic.integrations.google_places import (
    COMPETITOR_DETAIL_FIELDS,
    GooglePlacesClient,
    place_coordinates,
)

logger = structlog.get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

DISCOVERY_RADIUS_METERS = 2500
MIN_REVIEWS = 5
MAX_COMPETITORS = 20
MAX_CATEGORIES = 5

GENERIC_TYPES = frozenset({"point_of_interest", "establishment", "premise"})

RANKING_PHOTOS = 3
RANKING_PHOTO_WIDTH = 400
NEAREST_PHOTOS = 10
NEAREST_PHOTO_WIDTH = 800

GBP_TERMS_SOURCE = "gbp_insights"


# =============================================================================
# Pure Helpers
# =============================================================================


def primary_category_keyword(category: Optional[str]) -> Optional[str]:
    """First comma separated segment of the location's category string."""
    if not category or not category.strip():
        return None
    keyword = category.split(",")[0].strip().lower()
    return keyword or None


def format_category(place_type: str) -> str:
    """``hair_care`` -> ``Hair care``."""
    words = [word for word in place_type.split("_") if word]
    if not words:
        return place_type
    return " ".join([words[0].capitalize(), *(word.lower() for word in words[1:])])


def format_categories(types: Optional[list[str]]) -> list[str]:
    specific = [t for t in (types or []) if t and t not in GENERIC_TYPES]
    return [format_category(t) for t in specific][:MAX_CATEGORIES]


def title_category(types: Optional[list[str]]) -> Optional[str]:
    """First non-generic type, title cased (``beauty_salon`` -> ``Beauty Salon``)."""
    types = types or []
    chosen = next((t for t in types if t not in GENERIC_TYPES), types[0] if types else None)
    if not chosen:
        return None
    return " ".join(word.capitalize() for word in chosen.split("_"))


def matches_category(place: dict[str, Any], keyword: Optional[str]) -> bool:
    """Whether a place plausibly belongs to the same category as the anchor."""
    if not keyword or not keyword.strip():
        return True
    keyword = keyword.lower().strip()

    if keyword in (place.get("name") or "").lower():
        return True

    for place_type in place.get("types") or []:
        raw = place_type.lower()
        spaced = raw.replace("_", " ")
        if spaced in keyword or keyword in spaced or raw in keyword or keyword in raw:
            return True
    return False


def summarize_opening_hours(opening_hours: Optional[dict[str, Any]]) -> Optional[str]:
    """``"Monday: 9-5, Tuesday: 9-5 (+5 more)"`` or an open-now fallback."""
    if not opening_hours:
        return None
    weekday_text = opening_hours.get("weekday_text")
    if isinstance(weekday_text, list) and weekday_text:
        summary = ", ".join(weekday_text[:2])
        if len(weekday_text) > 2:
            summary += f" (+{len(weekday_text) - 2} more)"
        return summary
    if opening_hours.get("open_now") is not None:
        return "Open now" if opening_hours["open_now"] else "Closed now"
    return None


def find_rank(results: list[dict[str, Any]], place_id: Optional[str]) -> Optional[int]:
    if not place_id:
        return None
    match = next((r for r in results if r.get("placeId") == place_id), None)
    return match.get("rank") if match else None


def _sort_key_reviews(place: dict[str, Any]) -> tuple[int, float]:
    return (place.get("reviewsCount") or 0, place.get("rating") or 0)


# =============================================================================
# Service
# =============================================================================


class CompetitorService:
    """
    Competitor features for one tenant's locations.

    Example:
        async with GooglePlacesClient() as places:
            service = CompetitorService(supabase, places)
            competitors = await service.discover(location)
    """

    def __init__(self, supabase: Client, places: Optional[GooglePlacesClient] = None):
        self.supabase = supabase
        self.places = places

    async def anchor_coordinates(
        self, location: dict[str, Any]
    ) -> tuple[Optional[float], Optional[float]]:
        """Stored coordinates, or fetched from Places and persisted."""
        if location.get("lat") is not None and location.get("lng") is not None:
            return location["lat"], location["lng"]
        if not location.get("place_id"):
            return None, None

        details = await self.places.place_details(location["place_id"], ["geometry"])
        lat, lng = place_coordinates(details)
        if lat is not None and lng is not None:
            self.supabase.table("business_locations").update({"lat": lat, "lng": lng}).eq(
                "id", location["id"]
            ).execute()
            logger.info("location_coordinates_stored", location_id=location["id"])
        return lat, lng

    # -------------------------------------------------------------------------
    # Discovery
    # -------------------------------------------------------------------------

    async def discover(self, location: dict[str, Any]) -> dict[str, Any]:
        """
        Find nearby competitors for a location.

        Returns:
            ``{"anchor": {...}, "competitors": [...], "primaryCategoryKeyword": ...}``
        """
        anchor_place_id = location.get("place_id")
        if not anchor_place_id:
            raise ValidationFailedError("Business location missing place_id")

        keyword = primary_category_keyword(location.get("category"))
        lat, lng = await self.anchor_coordinates(location)
        if lat is None or lng is None:
            raise ValidationFailedError("Could not determine location coordinates")

        results = await self.places.nearby_search(lat, lng, DISCOVERY_RADIUS_METERS, keyword)

        matched: list[dict[str, Any]] = []
        valid: list[dict[str, Any]] = []
        for result in results:
            if result.get("place_id") == anchor_place_id:
                continue
            reviews_count = result.get("user_ratings_total") or 0
            if reviews_count < MIN_REVIEWS:
                continue
            if result.get("business_status") == "CLOSED_PERMANENTLY":
                continue

            place_lat, place_lng = place_coordinates(result)
            insight = {
                "placeId": result.get("place_id"),
                "name": result.get("name") or "Unknown",
                "address": result.get("vicinity") or result.get("formatted_address"),
                "categories": format_categories(result.get("types")) or None,
                "rating": result.get("rating"),
                "reviewsCount": reviews_count,
                "isSelf": False,
                "lat": place_lat,
                "lng": place_lng,
                "distanceKm": distance_km(lat, lng, place_lat, place_lng),
            }
            valid.append(insight)
            if matches_category(result, keyword):
                matched.append(insight)

        competitors = matched
        if keyword and not matched and valid:
            logger.warning("competitor_category_fallback", keyword=keyword, count=len(valid))
            competitors = valid

        competitors = sorted(competitors, key=_sort_key_reviews, reverse=True)[:MAX_COMPETITORS]

        anchor_categories = location.get("categories") or [
            c.strip() for c in (location.get("category") or "").split(",") if c.strip()
        ]

        logger.info(
            "competitors_discovered",
            location_id=location.get("id"),
            keyword=keyword,
            found=len(valid),
            selected=len(competitors),
        )
        return {
            "anchor": {
                "placeId": anchor_place_id,
                "name": location.get("name"),
                "address": location.get("formatted_address"),
                "categories": anchor_categories or None,
                "lat": lat,
                "lng": lng,
            },
            "competitors": competitors,
            "primaryCategoryKeyword": keyword,
        }

    # -------------------------------------------------------------------------
    # Search terms and rankings
    # -------------------------------------------------------------------------

    def list_search_terms(self, location_id: str) -> list[dict[str, Any]]:
        """Search terms for a location, newest first, deduplicated case-insensitively."""
        result = (
            self.supabase.table("search_terms")
            .select("*")
            .eq("business_location_id", location_id)
            .order("created_at", desc=True)
            .execute()
        )
        seen: set[str] = set()
        terms = []
        for row in result.data or []:
            normalized = (row.get("term") or "").strip().lower()
            if not normalized or normalized in seen:
                continue
            seen.add(normalized)
            terms.append(row)
        return terms

    def add_search_term(self, location_id: str, term: str) -> dict[str, Any]:
        term = term.strip()
        if not term:
            raise ValidationFailedError("term is required")
        existing = next(
            (t for t in self.list_search_terms(location_id) if t["term"].strip().lower() == term.lower()),
            None,
        )
        if existing:
            return existing
        result = (
            self.supabase.table("search_terms")
            .insert({"business_location_id": location_id, "term": term, "source": "manual"})
            .execute()
        )
        return first_row(result) or {}

    def get_search_term(self, location_id: str, search_term_id: str) -> dict[str, Any]:
        term = first_row(
            self.supabase.table("search_terms")
            .select("*")
            .eq("id", search_term_id)
            .eq("business_location_id", location_id)
            .limit(1)
            .execute()
        )
        if not term:
            raise NotFoundError("Search term not found")
        return term

    async def sync_gbp_search_terms(
        self,
        location: dict[str, Any],
        user_id: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> dict[str, Any]:
        """
        Replace the ``gbp_insights`` terms with the keywords customers used
        to find the location on Google over the last two months.

        Manual terms are left alone.
        """
        location_name = location.get("google_location_name")
        if not location_name:
            raise NotConnectedError(
                "Google location name not found. Please connect your Google Business Profile."
            )
        resource = location_resource(location_name)

        token = await get_valid_access_token(self.supabase, user_id, location["id"], transport)
        async with GBPClient(token, transport=transport) as gbp:
            keywords = await gbp.search_keywords(resource)
        terms = normalize_search_terms(keywords)

        self.supabase.table("search_terms").delete().eq("business_location_id", location["id"]).eq(
            "source", GBP_TERMS_SOURCE
        ).execute()
        if terms:
            self.supabase.table("search_terms").insert(
                [
                    {"business_location_id": location["id"], "term": term, "source": GBP_TERMS_SOURCE}
                    for term in terms
                ]
            ).execute()

        logger.info("gbp_search_terms_synced", location_id=location["id"], count=len(terms))
        return {"success": True, "termsCount": len(terms), "terms": terms}

    async def _photos_for(self, place: dict[str, Any]) -> list[str]:
        urls = self.places.photo_urls(place.get("photos"), RANKING_PHOTOS, RANKING_PHOTO_WIDTH)
        if not urls and place.get("place_id"):
            urls = await self.places.photo_urls_for_place(
                place["place_id"], RANKING_PHOTOS, RANKING_PHOTO_WIDTH
            )
        return urls

    async def refresh_rankings(
        self, location: dict[str, Any], search_term_id: str
    ) -> dict[str, Any]:
        """Run a text search for the term and store a ranking snapshot."""
        if not location.get("place_id"):
            raise ValidationFailedError("Business location missing place_id")

        term = self.get_search_term(location["id"], search_term_id)
        places = await self.places.text_search(term["term"])
        your_lat, your_lng = location.get("lat"), location.get("lng")

        async def _rank(index: int, place: dict[str, Any]) -> dict[str, Any]:
            image_urls = await self._photos_for(place)
            lat, lng = place_coordinates(place)
            return {
                "placeId": place.get("place_id"),
                "title": place.get("name"),
                "rank": index + 1,
                "score": place.get("rating"),
                "reviewsCount": place.get("user_ratings_total") or 0,
                "address": place.get("formatted_address") or place.get("vicinity"),
                "imageUrl": image_urls[0] if image_urls else None,
                "imageUrls": image_urls,
                "distanceKm": distance_km(your_lat, your_lng, lat, lng),
            }

        results = list(await asyncio.gather(*(_rank(i, p) for i, p in enumerate(places))))
        your_rank = find_rank(results, location["place_id"])

        snapshot = {
            "business_location_id": location["id"],
            "search_term_id": search_term_id,
            "captured_at": utc_now_iso(),
            "results": results,
            "your_place_id": location["place_id"],
            "your_rank": your_rank,
        }
        stored = first_row(self.supabase.table("competitor_rank_snapshots").insert(snapshot).execute())

        logger.info(
            "rankings_refreshed",
            location_id=location["id"],
            search_term=term["term"],
            results=len(results),
            your_rank=your_rank,
        )
        return stored or snapshot

    async def _enrich_result(
        self, result: dict[str, Any], your_lat: Optional[float], your_lng: Optional[float]
    ) -> dict[str, Any]:
        enriched = dict(result)
        place_id = result.get("placeId")
        if not place_id:
            return enriched

        needs_photos = not result.get("imageUrls")
        needs_distance = result.get("distanceKm") is None and your_lat is not None and your_lng is not None
        if not needs_photos and not needs_distance:
            return enriched

        fields = (["photos"] if needs_photos else []) + (["geometry"] if needs_distance else [])
        details = (await self.places.details_many([place_id], fields))[0] or {}
        if needs_photos:
            urls = self.places.photo_urls(details.get("photos"), RANKING_PHOTOS, RANKING_PHOTO_WIDTH)
            enriched["imageUrls"] = urls
            enriched["imageUrl"] = urls[0] if urls else None
        if needs_distance:
            lat, lng = place_coordinates(details)
            enriched["distanceKm"] = distance_km(your_lat, your_lng, lat, lng)
        return enriched

    async def get_rankings(
        self, location: dict[str, Any], search_term_id: str
    ) -> dict[str, Any]:
        """Latest snapshot for a term with photos and distances filled in."""
        snapshot = first_row(
            self.supabase.table("competitor_rank_snapshots")
            .select("*")
            .eq("business_location_id", location["id"])
            .eq("search_term_id", search_term_id)
            .order("captured_at", desc=True)
            .limit(1)
            .execute()
        )
        your_place_id = location.get("place_id")
        if not snapshot:
            return {"snapshot": None, "yourPlaceId": your_place_id}

        results = snapshot.get("results") or []
        if isinstance(results, list) and your_place_id:
            results = list(
                await asyncio.gather(
                    *(self._enrich_result(r, location.get("lat"), location.get("lng")) for r in results)
                )
            )
            snapshot["results"] = results
            snapshot["yourRank"] = find_rank(results, your_place_id)
            snapshot["yourPlaceId"] = your_place_id

        return {"snapshot": snapshot, "yourPlaceId": your_place_id}

    # -------------------------------------------------------------------------
    # Nearest competitors
    # -------------------------------------------------------------------------

    def _apify_place_ids(self, location: dict[str, Any]) -> list[str]:
        insights = first_row(
            self.supabase.table("business_insights")
            .select("apify_competitors")
            .eq("location_id", location["id"])
            .eq("source", "google")
            .limit(1)
            .execute()
        )
        places = ((insights or {}).get("apify_competitors") or {}).get("places") or []
        place_ids = []
        for place in places:
            place_id = place.get("placeId") or place.get("cid") or place.get("kgmid")
            if place_id and place_id != location.get("place_id") and place_id not in place_ids:
                place_ids.append(place_id)
        return place_ids

    def _competitor_card(
        self,
        place_id: str,
        details: Optional[dict[str, Any]],
        your_lat: Optional[float],
        your_lng: Optional[float],
    ) -> dict[str, Any]:
        if not details:
            return {
                "placeId": place_id,
                "title": None,
                "categoryName": None,
                "address": None,
                "lat": None,
                "lng": None,
                "phone": None,
                "website": None,
                "imageUrls": [],
                "imageUrl": None,
                "totalScore": None,
                "reviewsCount": 0,
                "openingHours": None,
                "openNow": None,
                "distanceKm": None,
            }

        lat, lng = place_coordinates(details)
        image_urls = self.places.photo_urls(details.get("photos"), NEAREST_PHOTOS, NEAREST_PHOTO_WIDTH)
        opening_hours = details.get("opening_hours") or {}
        return {
            "placeId": place_id,
            "title": details.get("name"),
            "categoryName": title_category(details.get("types")),
            "address": details.get("formatted_address") or details.get("vicinity"),
            "lat": lat,
            "lng": lng,
            "phone": details.get("formatted_phone_number"),
            "website": details.get("website"),
            "imageUrls": image_urls,
            "imageUrl": image_urls[0] if image_urls else None,
            "totalScore": details.get("rating"),
            "reviewsCount": details.get("user_ratings_total") or 0,
            "openingHours": summarize_opening_hours(opening_hours),
            "openingHoursList": opening_hours.get("weekday_text"),
            "openNow": opening_hours.get("open_now"),
            "businessStatus": details.get("business_status"),
            "types": details.get("types") or [],
            "distanceKm": distance_km(your_lat, your_lng, lat, lng),
        }

    async def nearest_competitors(self, location: dict[str, Any]) -> list[dict[str, Any]]:
        """Competitors from the last Apify scrape, closest first."""
        place_ids = self._apify_place_ids(location)
        if not place_ids:
            return []

        details = await self.places.details_many(
            place_ids, [*COMPETITOR_DETAIL_FIELDS, "business_status", "vicinity"]
        )
        cards = [
            self._competitor_card(place_id, detail, location.get("lat"), location.get("lng"))
            for place_id, detail in zip(place_ids, details)
        ]
        cards.sort(key=lambda c: (c["distanceKm"] is None, c["distanceKm"] or 0))
        return cards
