"""
Google review inbox.

Syncs Business Profile reviews into ``business_reviews``, serves them to the
Reputation Hub, and posts, edits or removes owner replies. The reply flow
accepts whatever identifier the UI has (full review name or bare review id)
and resolves it to ``accounts/*/locations/*/reviews/*`` before calling Google.
"""

from typing import Any, Optional

import httpx
import structlog
from supabase import Client

from antistatic.core.db import first_row, parse_timestamp, utc_now_iso
from antistatic.core.exceptions import (
    IntegrationNotFoundError,
    IntegrationPermissionError,
    NotFoundError,
    ReviewNotFoundError,
    ValidationFailedError,
)
from antistatic.integrations.gbp import (
    LOCATION_NAME_RE,
    SERVICE as GBP_SERVICE,
    GBPClient,
    build_review_name,
    get_valid_access_token,
    is_valid_review_name,
    normalize_review,
    resolve_account_name,
    summarize_reviews,
)

logger = structlog.get_logger(__name__)

REVIEW_SOURCE = "gbp"
LIST_LIMIT = 100

# Keyword buckets for the review list filters
TOPIC_KEYWORDS: dict[str, tuple[str, ...]] = {
    "service": ("service", "staff", "employee"),
    "pricing": ("price", "cost", "expensive", "cheap"),
    "food": ("food", "meal", "dish"),
    "cleanliness": ("clean", "dirty", "hygiene"),
    "speed": ("wait", "slow", "fast"),
}

PERMISSION_MESSAGE = (
    "Permission denied. Please ensure your Google Business Profile location is verified "
    "and you have permission to reply to reviews."
)
DELETED_MESSAGE = "Review not found. The review may have been deleted."


# =============================================================================
# Pure Helpers
# =============================================================================


def review_sentiment(rating: Optional[int]) -> str:
    if rating and rating >= 4:
        return "positive"
    if rating and rating <= 2:
        return "negative"
    return "neutral"


def review_topics(text: Optional[str]) -> list[str]:
    lowered = (text or "").lower()
    topics = [topic for topic, words in TOPIC_KEYWORDS.items() if any(w in lowered for w in words)]
    return topics or ["general"]


def review_images(raw: dict[str, Any]) -> list[str]:
    """Photo URLs attached to a raw GBP review."""
    images = []
    for media in raw.get("reviewMedia") or []:
        url = media.get("googleUrl") or media.get("photoUrl") or media.get("thumbnailUrl")
        if url:
            images.append(url)
    for photo in raw.get("photos") or []:
        url = photo.get("url") or photo.get("thumbnailUrl")
        if url:
            images.append(url)
    return images


def review_row(location_id: str, raw: dict[str, Any]) -> dict[str, Any]:
    """Map a raw GBP review to a ``business_reviews`` row."""
    review = normalize_review(raw)
    published = parse_timestamp(review["createTime"])
    images = review_images(raw)
    payload: dict[str, Any] = {
        "starRating": review["starRating"],
        "createTime": review["createTime"],
        "updateTime": review["updateTime"],
        "name": review["name"] or None,
        "reply": review["reply"],
    }
    if images:
        payload["images"] = images
    return {
        "location_id": location_id,
        "source": REVIEW_SOURCE,
        "rating": review["rating"],
        "review_text": review["comment"],
        "author_name": review["reviewerName"],
        "author_photo_url": review["reviewerPhotoUrl"],
        "published_at": published.isoformat() if published else None,
        "review_id": review["reviewId"],
        "raw_payload": payload,
        "updated_at": utc_now_iso(),
    }


def present_review(row: dict[str, Any]) -> dict[str, Any]:
    """Shape a stored review for the Reputation Hub."""
    payload = row.get("raw_payload") if isinstance(row.get("raw_payload"), dict) else {}
    reply = payload.get("reply")
    return {
        "id": row.get("id"),
        "reviewId": row.get("review_id"),
        "reviewName": payload.get("name"),
        "rating": row.get("rating") or 0,
        "authorName": row.get("author_name") or "Anonymous",
        "authorPhotoUrl": row.get("author_photo_url"),
        "text": row.get("review_text") or "",
        "createTime": row.get("published_at"),
        "source": "google",
        "replied": bool(reply),
        "reply": reply,
        "sentiment": review_sentiment(row.get("rating")),
        "categories": review_topics(row.get("review_text")),
        "images": payload.get("images") or [],
    }


def _normalize_url(url: str) -> str:
    url = url.lower()
    for prefix in ("https://", "http://"):
        if url.startswith(prefix):
            url = url[len(prefix):]
    return url.rstrip("/")


def choose_gbp_location(
    locations: list[dict[str, Any]], website: Optional[str]
) -> Optional[dict[str, Any]]:
    """Prefer the GBP location whose website matches the business, else the first."""
    if not locations:
        return None
    if website and len(locations) > 1:
        wanted = _normalize_url(website)
        for location in locations:
            if location.get("websiteUri") and _normalize_url(location["websiteUri"]) == wanted:
                return location
    return locations[0]


# =============================================================================
# Service
# =============================================================================


class ReviewService:
    """
    Review sync, listing and replies for one user's locations.

    ``transport`` is forwarded to the Google HTTP clients (tests use
    ``httpx.MockTransport``).
    """

    def __init__(
        self,
        supabase: Client,
        user_id: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.supabase = supabase
        self.user_id = user_id
        self.transport = transport

    def list_reviews(self, location_id: str) -> list[dict[str, Any]]:
        result = (
            self.supabase.table("business_reviews")
            .select("id, review_id, rating, author_name, author_photo_url, review_text, published_at, source, raw_payload")
            .eq("location_id", location_id)
            .eq("source", REVIEW_SOURCE)
            .order("published_at", desc=True)
            .limit(LIST_LIMIT)
            .execute()
        )
        return [present_review(row) for row in result.data or []]

    async def _client(self, location_id: str) -> GBPClient:
        token = await get_valid_access_token(self.supabase, self.user_id, location_id, self.transport)
        return GBPClient(token, transport=self.transport)

    async def resolve_location_name(
        self, gbp: GBPClient, location: dict[str, Any], account_name: str
    ) -> str:
        """Stored ``google_location_name`` or the matching GBP location, persisted."""
        if location.get("google_location_name"):
            return location["google_location_name"]

        chosen = choose_gbp_location(await gbp.list_locations(account_name), location.get("website"))
        if not chosen or not chosen.get("name"):
            raise NotFoundError("No GBP locations found")

        name = chosen["name"]
        if not name.startswith("accounts/"):
            name = f"{account_name}/{name}"
        self.supabase.table("business_locations").update({"google_location_name": name}).eq(
            "id", location["id"]
        ).eq("user_id", self.user_id).execute()
        location["google_location_name"] = name
        logger.info("gbp_location_resolved", location_id=location["id"], google_location_name=name)
        return name

    async def link_gbp_location(self, location: dict[str, Any]) -> str:
        """Resolve and store ``google_location_name`` right after connecting."""
        async with await self._client(location["id"]) as gbp:
            account_name = resolve_account_name(await gbp.list_accounts())
            return await self.resolve_location_name(gbp, location, account_name)

    async def sync_reviews(self, location: dict[str, Any]) -> dict[str, Any]:
        """Pull all reviews from GBP into ``business_reviews``."""
        async with await self._client(location["id"]) as gbp:
            account_name = resolve_account_name(await gbp.list_accounts())
            location_name = await self.resolve_location_name(gbp, location, account_name)
            raw_reviews = await gbp.list_reviews(account_name, location_name)

        rows = [review_row(location["id"], raw) for raw in raw_reviews]
        if rows:
            self.supabase.table("business_reviews").upsert(
                rows, on_conflict="location_id,source,review_id"
            ).execute()

        summary = summarize_reviews([normalize_review(raw) for raw in raw_reviews])
        logger.info(
            "gbp_reviews_synced",
            location_id=location["id"],
            count=len(rows),
            average_rating=summary["averageRating"],
        )
        return {"synced": len(rows), "summary": summary}

    async def _resolve_review_name(
        self,
        gbp: GBPClient,
        location: dict[str, Any],
        review_id: Optional[str],
        review_name: Optional[str],
    ) -> str:
        if review_name:
            resolved: Optional[str] = review_name
        else:
            resolved = build_review_name(location.get("google_location_name"), review_id)

        if not resolved and review_id:
            account_name = resolve_account_name(await gbp.list_accounts())
            location_name = await self.resolve_location_name(gbp, location, account_name)
            for raw in await gbp.list_reviews(account_name, location_name):
                if review_id in (raw.get("reviewId"), raw.get("name")):
                    resolved = raw.get("name")
                    break
            if resolved and not resolved.startswith("accounts/") and LOCATION_NAME_RE.match(location_name):
                resolved = f"{location_name}/reviews/{resolved.rsplit('/', 1)[-1]}"

        if not resolved:
            raise ReviewNotFoundError(
                "Review not found. Please provide reviewName or ensure the review exists."
            )
        if not is_valid_review_name(resolved):
            raise ValidationFailedError(
                f"Invalid review name format: {resolved}. "
                "Expected: accounts/{accountId}/locations/{locationId}/reviews/{reviewId}"
            )
        return resolved

    def _store_reply(self, location_id: str, review_name: str, reply: Optional[dict[str, Any]]) -> None:
        review_id = review_name.rsplit("/", 1)[-1]
        existing = first_row(
            self.supabase.table("business_reviews")
            .select("raw_payload")
            .eq("location_id", location_id)
            .eq("source", REVIEW_SOURCE)
            .eq("review_id", review_id)
            .limit(1)
            .execute()
        )
        payload = dict((existing or {}).get("raw_payload") or {})
        payload["reply"] = reply
        self.supabase.table("business_reviews").update(
            {"raw_payload": payload, "updated_at": utc_now_iso()}
        ).eq("location_id", location_id).eq("source", REVIEW_SOURCE).eq("review_id", review_id).execute()

    async def reply(
        self,
        location: dict[str, Any],
        comment: str,
        review_id: Optional[str] = None,
        review_name: Optional[str] = None,
    ) -> dict[str, Any]:
        """Create or update the owner reply. Returns ``{comment, updateTime}``."""
        comment = (comment or "").strip()
        if not comment:
            raise ValidationFailedError("comment is required and cannot be empty")

        async with await self._client(location["id"]) as gbp:
            name = await self._resolve_review_name(gbp, location, review_id, review_name)
            try:
                response = await gbp.update_reply(name, comment)
            except IntegrationPermissionError:
                raise IntegrationPermissionError(GBP_SERVICE, PERMISSION_MESSAGE)
            except IntegrationNotFoundError:
                raise ReviewNotFoundError(DELETED_MESSAGE)

        reply_data = response.get("reply") or response
        reply = {
            "comment": reply_data.get("comment") or comment,
            "updateTime": reply_data.get("updateTime") or utc_now_iso(),
        }
        self._store_reply(location["id"], name, reply)
        logger.info("gbp_reply_posted", location_id=location["id"], review_name=name)
        return reply

    async def delete_reply(
        self,
        location: dict[str, Any],
        review_id: Optional[str] = None,
        review_name: Optional[str] = None,
    ) -> None:
        async with await self._client(location["id"]) as gbp:
            name = await self._resolve_review_name(gbp, location, review_id, review_name)
            try:
                await gbp.delete_reply(name)
            except IntegrationPermissionError:
                raise IntegrationPermissionError(GBP_SERVICE, PERMISSION_MESSAGE)
            except IntegrationNotFoundError:
                raise ReviewNotFoundError(DELETED_MESSAGE)

        self._store_reply(location["id"], name, None)
        logger.info("gbp_reply_deleted", location_id=location["id"], review_name=name)
