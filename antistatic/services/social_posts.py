"""
Social Studio posts.

Drafts and scheduled posts live in ``social_studio_posts``. The calendar reads
them as events; the scheduler publishes due Instagram posts.
"""

from datetime import datetime
from typing import Any, Optional

import httpx
import structlog
from supabase import Client

from antistatic.core.db import first_row, parse_timestamp, utc_now, utc_now_iso
from antistatic.core.exceptions import ForbiddenError, NotFoundError
from antistatic.integrations.instagram.graph import InstagramGraphClient
from antistatic.integrations.instagram.publishing import publish_image
from antistatic.integrations.instagram.tokens import get_instagram_access_token

logger = structlog.get_logger(__name__)

POSTS_TABLE = "social_studio_posts"

PLATFORMS = ("instagram", "facebook", "google_business", "linkedin", "tiktok")
STATUSES = ("draft", "scheduled", "published", "failed")
DELETED_STATUS = "deleted"

TITLE_LENGTH = 50
PUBLISH_BATCH_SIZE = 25

# Request field -> column
_COLUMNS = {
    "platforms": "platforms",
    "platform": "platform",
    "topic": "topic",
    "caption": "caption",
    "media": "media",
    "media_url": "media_url",
    "cta": "cta",
    "link_url": "link_url",
    "utm": "utm",
    "scheduled_at": "scheduled_at",
    "published_at": "published_at",
    "status": "status",
    "platform_meta": "platform_meta",
}

_NULLABLE_TEXT = {"platform", "topic", "caption", "media_url", "link_url"}


# =============================================================================
# Pure Helpers
# =============================================================================


def _iso(value: Any) -> Optional[str]:
    if isinstance(value, datetime):
        return value.isoformat()
    return value or None


def event_date(post: dict[str, Any]) -> Optional[str]:
    return post.get("scheduled_at") or post.get("published_at") or post.get("created_at")


def post_media_url(post: dict[str, Any]) -> Optional[str]:
    """``media_url``, else the first media item's ``sourceUrl``/``url``."""
    if post.get("media_url"):
        return post["media_url"]
    media = post.get("media")
    if isinstance(media, list) and media and isinstance(media[0], dict):
        return media[0].get("sourceUrl") or media[0].get("url")
    return None


def post_title(post: dict[str, Any]) -> str:
    if post.get("topic"):
        return post["topic"]
    if post.get("caption"):
        return post["caption"][:TITLE_LENGTH]
    return "Post"


def to_calendar_event(post: dict[str, Any]) -> dict[str, Any]:
    start = event_date(post)
    return {
        "id": post.get("id"),
        "title": post_title(post),
        "start": start,
        "end": start,
        "extendedProps": {
            "status": post.get("status"),
            "platforms": post.get("platforms") or [],
            "platform": post.get("platform"),
            "caption": post.get("caption"),
            "media": post.get("media") or [],
            "mediaUrl": post_media_url(post),
            "topic": post.get("topic"),
            "cta": post.get("cta"),
            "linkUrl": post.get("link_url"),
            "utm": post.get("utm"),
            "scheduledAt": post.get("scheduled_at"),
            "publishedAt": post.get("published_at"),
            "platformMeta": post.get("platform_meta"),
        },
    }


def in_range(
    post: dict[str, Any], start: Optional[datetime], end: Optional[datetime]
) -> bool:
    """Inclusive range check on the post's event date."""
    when = parse_timestamp(event_date(post))
    if when is None:
        return start is None and end is None
    if start is not None and when < start:
        return False
    if end is not None and when > end:
        return False
    return True


def build_update(changes: dict[str, Any]) -> dict[str, Any]:
    """
    Column values for a partial update.

    Setting ``scheduled_at`` without a status schedules the post; clearing
    it without a status returns the post to draft.
    """
    update: dict[str, Any] = {}
    for field, value in changes.items():
        column = _COLUMNS.get(field)
        if column is None:
            continue
        if field in ("scheduled_at", "published_at"):
            value = _iso(value)
        elif field in _NULLABLE_TEXT:
            value = value or None
        update[column] = value

    if "scheduled_at" in changes and changes.get("status") is None:
        update["status"] = "scheduled" if changes["scheduled_at"] else "draft"
    if update.get("status") is None:
        update.pop("status", None)
    return update


# =============================================================================
# Service
# =============================================================================


class SocialPostService:
    """CRUD for a user's Social Studio posts."""

    def __init__(self, supabase: Client, user_id: str):
        self.supabase = supabase
        self.user_id = user_id

    def create_post(self, location_id: str, values: dict[str, Any]) -> dict[str, Any]:
        status = values.get("status") or ("scheduled" if values.get("scheduled_at") else "draft")
        row = {
            "business_location_id": location_id,
            "status": status,
            "platforms": values["platforms"],
            "platform": values.get("platform") or None,
            "topic": values.get("topic") or None,
            "caption": values.get("caption") or None,
            "media": values.get("media") or [],
            "media_url": values.get("media_url") or None,
            "cta": values.get("cta"),
            "link_url": values.get("link_url") or None,
            "utm": values.get("utm"),
            "scheduled_at": _iso(values.get("scheduled_at")),
            "published_at": _iso(values.get("published_at")),
            "platform_meta": values.get("platform_meta"),
        }
        result = self.supabase.table(POSTS_TABLE).insert(row).execute()
        post = result.data[0]
        logger.info(
            "social_post_created",
            post_id=post.get("id"),
            location_id=location_id,
            status=status,
            platforms=values["platforms"],
        )
        return post

    def list_posts(
        self,
        location_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[dict[str, Any]]:
        result = (
            self.supabase.table(POSTS_TABLE)
            .select("*")
            .eq("business_location_id", location_id)
            .neq("status", DELETED_STATUS)
            .order("scheduled_at", nullsfirst=True)
            .order("published_at", nullsfirst=True)
            .order("created_at")
            .execute()
        )
        posts = result.data or []
        if start is not None or end is not None:
            posts = [post for post in posts if in_range(post, start, end)]
        return posts

    def calendar(
        self,
        location_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> dict[str, Any]:
        posts = self.list_posts(location_id, start, end)
        return {"events": [to_calendar_event(post) for post in posts], "posts": posts}

    def _owned_post(self, post_id: str) -> dict[str, Any]:
        post = first_row(
            self.supabase.table(POSTS_TABLE)
            .select("id, business_location_id")
            .eq("id", post_id)
            .limit(1)
            .execute()
        )
        if not post:
            raise NotFoundError("Post not found")

        owner = first_row(
            self.supabase.table("business_locations")
            .select("id")
            .eq("id", post["business_location_id"])
            .eq("user_id", self.user_id)
            .limit(1)
            .execute()
        )
        if not owner:
            raise ForbiddenError("Unauthorized")
        return post

    def update_post(self, post_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        self._owned_post(post_id)
        update = build_update(changes)
        update["updated_at"] = utc_now_iso()
        result = self.supabase.table(POSTS_TABLE).update(update).eq("id", post_id).execute()
        logger.info("social_post_updated", post_id=post_id, fields=sorted(update))
        return result.data[0] if result.data else {"id": post_id, **update}

    def delete_post(self, post_id: str) -> None:
        self._owned_post(post_id)
        self.supabase.table(POSTS_TABLE).delete().eq("id", post_id).execute()
        logger.info("social_post_deleted", post_id=post_id)


# =============================================================================
# Publisher
# =============================================================================


async def publish_post(
    supabase: Client,
    post: dict[str, Any],
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """Publish one post to Instagram. Returns the Instagram media id."""
    image_url = post_media_url(post)
    if not image_url:
        raise ValueError("Instagram posts need an image. Add media before scheduling.")

    credentials = await get_instagram_access_token(
        supabase, post["business_location_id"], transport
    )
    async with InstagramGraphClient(credentials, transport=transport) as ig:
        return await publish_image(ig.http, credentials, image_url, post.get("caption"))


async def publish_due_posts(
    supabase: Client,
    now: Optional[datetime] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict[str, int]:
    """
    Publish scheduled Instagram posts whose time has come.

    Other platforms are stored for manual posting and are left untouched.
    Each post ends up ``published`` or ``failed``; one failure never stops
    the batch.
    """
    now = now or utc_now()
    result = (
        supabase.table(POSTS_TABLE)
        .select("*")
        .eq("status", "scheduled")
        .lte("scheduled_at", now.isoformat())
        .contains("platforms", ["instagram"])
        .order("scheduled_at")
        .limit(PUBLISH_BATCH_SIZE)
        .execute()
    )
    posts = result.data or []
    summary = {"due": len(posts), "published": 0, "failed": 0}

    for post in posts:
        meta = dict(post.get("platform_meta") or {})
        try:
            media_id = await publish_post(supabase, post, transport)
        except Exception as e:
            logger.exception("social_post_publish_failed", post_id=post["id"])
            meta["instagram"] = {"error": getattr(e, "message", None) or str(e)}
            supabase.table(POSTS_TABLE).update(
                {"status": "failed", "platform_meta": meta, "updated_at": utc_now_iso()}
            ).eq("id", post["id"]).execute()
            summary["failed"] += 1
            continue

        published_at = utc_now_iso()
        meta["instagram"] = {"mediaId": media_id}
        supabase.table(POSTS_TABLE).update(
            {
                "status": "published",
                "published_at": published_at,
                "platform_meta": meta,
                "updated_at": published_at,
            }
        ).eq("id", post["id"]).execute()
        summary["published"] += 1
        logger.info("social_post_published", post_id=post["id"], media_id=media_id)

    if posts:
        logger.info("publish_due_posts_completed", **summary)
    return summary
