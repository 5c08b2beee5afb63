"""Apify Google Places scraper wrapper.

Used as the fallback competitor data source: one actor run scrapes the anchor
business and its competitors (ratings, review distribution, recent reviews)
so the dashboard can compare them without a Places quota.
"""

import asyncio
from typing import Any, Optional

import structlog
from apify_client import ApifyClient
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from antistatic.config.settings import get_settings
from antistatic.core.exceptions import ConfigurationError, IntegrationError

logger = structlog.get_logger(__name__)

SERVICE = "apify"

MAX_REVIEWS = 150
MAX_IMAGES = 5

SELF_PLACEHOLDER_NAME = "Your Business"

DISTRIBUTION_KEYS = ("oneStar", "twoStar", "threeStar", "fourStar", "fiveStar")

REVIEW_LIST_KEYS = ("reviews", "reviewsList", "reviewList", "userReviews")


def _first(source: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = source.get(key)
        if value:
            return value
    return default


def _as_rating(value: Any) -> float:
    """Scraped ratings arrive as numbers or numeric strings; anything else is 0."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def map_review(review: dict[str, Any]) -> dict[str, Any]:
    """Normalize a scraped review; actor versions disagree on field names."""
    return {
        "reviewId": _first(review, "reviewId", "id", "review_id"),
        "reviewerName": _first(review, "reviewerName", "authorName", "name", "author", "reviewer"),
        "reviewerPhotoUrl": _first(
            review, "reviewerPhotoUrl", "authorPhotoUrl", "photoUrl", "photo", "avatar"
        ),
        "rating": _as_rating(_first(review, "rating", "starRating", "score", "stars", default=0)),
        "comment": _first(review, "comment", "text", "content", "reviewText", "message"),
        "date": _first(review, "date", "createdAt", "time", "publishedAt", "timestamp"),
        "relativeTime": _first(review, "relativeTime", "timeDescription", "timeAgo"),
    }


def map_place(item: dict[str, Any], anchor_place_id: str) -> dict[str, Any]:
    """Map one dataset item to a competitor insight entry."""
    place_id = item.get("placeId") or item.get("inputPlaceId") or ""

    distribution = None
    if item.get("reviewsDistribution"):
        raw = item["reviewsDistribution"]
        distribution = {key: raw.get(key) or 0 for key in DISTRIBUTION_KEYS}

    reviews = None
    raw_reviews = _first(item, *REVIEW_LIST_KEYS, default=[])
    if isinstance(raw_reviews, list) and raw_reviews:
        reviews = [r for r in (map_review(review) for review in raw_reviews) if r["rating"] > 0]

    categories = item.get("categories")
    return {
        "placeId": place_id,
        "name": item.get("title") or item.get("name") or "Unknown",
        "address": item.get("address"),
        "categories": categories if isinstance(categories, list) else None,
        "rating": item.get("totalScore") or item.get("rating") or None,
        "reviewsCount": item.get("reviewsCount") or item.get("user_ratings_total") or None,
        "reviewsDistribution": distribution,
        "reviews": reviews,
        "imageUrl": item.get("imageUrl") or item.get("photoUrl"),
        "isSelf": place_id == anchor_place_id,
    }


def compare_places(places: list[dict[str, Any]], anchor_place_id: str) -> dict[str, Any]:
    """Local averages and where the anchor sits among its competitors."""
    rated = [p["rating"] for p in places if p.get("rating") is not None]
    counted = [p["reviewsCount"] for p in places if p.get("reviewsCount") is not None]

    self_place = next((p for p in places if p.get("isSelf")), None)
    others = [p for p in places if not p.get("isSelf") and p.get("placeId") != anchor_place_id]

    def percentile(field: str) -> Optional[int]:
        if not self_place or self_place.get(field) is None:
            return None
        values = [p[field] for p in others if p.get(field) is not None]
        if not values:
            return None
        at_or_below = sum(1 for value in values if value <= self_place[field])
        return round(at_or_below / len(values) * 100)

    return {
        "sampleSize": len(places),
        "localAverageRating": round(sum(rated) / len(rated), 1) if rated else None,
        "localAverageReviews": round(sum(counted) / len(counted)) if counted else None,
        "ratingPercentile": percentile("rating"),
        "reviewVolumePercentile": percentile("reviewsCount"),
    }


class ApifyPlacesScraper:
    """Run the Google Places actor for a batch of place ids.

    Example:
        scraper = ApifyPlacesScraper()
        result = await scraper.scrape_place_ids([anchor_id, *competitor_ids], anchor_id)
        result["places"]  # mapped entries, anchor flagged with isSelf
    """

    def __init__(
        self,
        api_token: Optional[str] = None,
        actor_id: Optional[str] = None,
        client: Optional[ApifyClient] = None,
    ):
        settings = get_settings()
        if client is None:
            token = api_token or (
                settings.apify_api_token.get_secret_value() if settings.apify_api_token else None
            )
            if not token:
                raise ConfigurationError("Apify API token is not configured", "apify_api_token")
            client = ApifyClient(token)
        self.client = client
        self.actor_id = actor_id or settings.apify_places_actor_id

    def _run_actor_sync(self, run_input: dict[str, Any]) -> list[dict[str, Any]]:
        """Blocking actor run; the Apify client is synchronous."""
        run = self.client.actor(self.actor_id).call(run_input=run_input)
        if not run:
            raise IntegrationError(SERVICE, "Actor run did not return a result")
        logger.info(
            "apify_run_completed",
            run_id=run.get("id"),
            status=run.get("status"),
            dataset_id=run.get("defaultDatasetId"),
        )
        return list(self.client.dataset(run["defaultDatasetId"]).list_items().items)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(initial=2, max=60),
        retry=retry_if_exception_type(IntegrationError),
        reraise=True,
        before_sleep=lambda retry_state: logger.warning(
            "apify_retry",
            attempt=retry_state.attempt_number,
            error=str(retry_state.outcome.exception()),
        ),
    )
    async def _run(self, run_input: dict[str, Any]) -> list[dict[str, Any]]:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._run_actor_sync, run_input)
        except IntegrationError:
            raise
        except Exception as e:
            raise IntegrationError(SERVICE, f"Apify scrape failed: {e}") from e

    async def scrape_place_ids(
        self, place_ids: list[str], anchor_place_id: str
    ) -> dict[str, Any]:
        """Scrape places and map them.

        Returns:
            ``{"places": [...], "rawItems": [...]}``. The anchor is always
            present; a placeholder is appended when the actor skipped it.
        """
        run_input = {
            "placeIds": place_ids,
            "maxReviews": MAX_REVIEWS,
            "maxImages": MAX_IMAGES,
            "maxCrawledPlacesPerSearch": len(place_ids),
        }
        logger.info("apify_scrape_started", place_count=len(place_ids), anchor_place_id=anchor_place_id)

        items = await self._run(run_input)
        places = [map_place(item, anchor_place_id) for item in items]

        if anchor_place_id in place_ids and not any(p["placeId"] == anchor_place_id for p in places):
            logger.info("apify_anchor_missing", anchor_place_id=anchor_place_id)
            places.append(
                {"placeId": anchor_place_id, "name": SELF_PLACEHOLDER_NAME, "isSelf": True}
            )

        logger.info(
            "apify_scrape_mapped",
            place_count=len(places),
            competitor_count=sum(1 for p in places if not p.get("isSelf")),
        )
        return {"places": places, "rawItems": items}
