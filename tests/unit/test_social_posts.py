"""Unit tests for Social Studio posts and the scheduled publisher."""

from datetime import datetime, timezone

import pytest

from antistatic.core.exceptions import ForbiddenError, NotFoundError
from antistatic.services import social_posts
from antistatic.services.social_posts import (
    SocialPostService,
    build_update,
    in_range,
    post_media_url,
    publish_due_posts,
    publish_post,
    to_calendar_event,
)

from tests.conftest import LOCATION_ID, OTHER_USER_ID, TEST_USER_ID


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def owned(fake_supabase, sample_location):
    fake_supabase.seed("business_locations", sample_location)
    return fake_supabase


class TestHelpers:
    def test_build_update_schedules(self):
        update = build_update({"scheduled_at": _utc(2025, 6, 1, 9), "caption": ""})
        assert update == {"scheduled_at": "2025-06-01T09:00:00+00:00", "caption": None, "status": "scheduled"}

    def test_build_update_clearing_schedule_returns_to_draft(self):
        assert build_update({"scheduled_at": None}) == {"scheduled_at": None, "status": "draft"}

    def test_build_update_explicit_status_wins(self):
        update = build_update({"scheduled_at": _utc(2025, 6, 1), "status": "failed"})
        assert update["status"] == "failed"

    def test_build_update_ignores_unknown_fields(self):
        assert build_update({"business_location_id": "x", "status": None}) == {}

    def test_post_media_url(self):
        assert post_media_url({"media_url": "https://a"}) == "https://a"
        assert post_media_url({"media": [{"sourceUrl": "https://b"}]}) == "https://b"
        assert post_media_url({"media": []}) is None

    def test_calendar_event_title(self):
        event = to_calendar_event({"id": "p1", "caption": "x" * 80, "created_at": "2025-01-01T00:00:00+00:00"})
        assert event["title"] == "x" * 50
        assert event["start"] == event["end"] == "2025-01-01T00:00:00+00:00"
        assert event["extendedProps"]["platforms"] == []

    def test_in_range_is_inclusive(self):
        post = {"scheduled_at": "2025-06-01T00:00:00+00:00"}
        assert in_range(post, _utc(2025, 6, 1), _utc(2025, 6, 1))
        assert not in_range(post, _utc(2025, 6, 2), None)
        assert in_range({}, None, None)
        assert not in_range({}, _utc(2025, 1, 1), None)


class TestSocialPostService:
    def test_create_defaults_status(self, owned):
        service = SocialPostService(owned, TEST_USER_ID)

        draft = service.create_post(LOCATION_ID, {"platforms": ["instagram"], "caption": "Hello"})
        scheduled = service.create_post(
            LOCATION_ID, {"platforms": ["instagram"], "scheduled_at": _utc(2025, 6, 1, 9)}
        )

        assert draft["status"] == "draft"
        assert draft["media"] == []
        assert scheduled["status"] == "scheduled"
        assert scheduled["scheduled_at"] == "2025-06-01T09:00:00+00:00"

    def test_calendar_filters_range(self, owned):
        owned.seed(
            "social_studio_posts",
            {"business_location_id": LOCATION_ID, "status": "scheduled", "topic": "June",
             "scheduled_at": "2025-06-10T09:00:00+00:00"},
            {"business_location_id": LOCATION_ID, "status": "published", "topic": "May",
             "published_at": "2025-05-10T09:00:00+00:00"},
            {"business_location_id": "other", "status": "scheduled", "topic": "Elsewhere",
             "scheduled_at": "2025-06-11T09:00:00+00:00"},
        )

        calendar = SocialPostService(owned, TEST_USER_ID).calendar(
            LOCATION_ID, _utc(2025, 6, 1), _utc(2025, 6, 30)
        )

        assert [event["title"] for event in calendar["events"]] == ["June"]
        assert len(calendar["posts"]) == 1

    def test_update_owned_post(self, owned):
        owned.seed("social_studio_posts", {"id": "p1", "business_location_id": LOCATION_ID, "status": "draft"})

        post = SocialPostService(owned, TEST_USER_ID).update_post("p1", {"scheduled_at": _utc(2025, 7, 1)})

        assert post["status"] == "scheduled"
        assert post["updated_at"]

    def test_foreign_post_is_forbidden(self, owned):
        owned.seed("social_studio_posts", {"id": "p1", "business_location_id": LOCATION_ID, "status": "draft"})

        with pytest.raises(ForbiddenError):
            SocialPostService(owned, OTHER_USER_ID).delete_post("p1")
        assert len(owned.rows("social_studio_posts")) == 1

    def test_missing_post(self, owned):
        with pytest.raises(NotFoundError):
            SocialPostService(owned, TEST_USER_ID).update_post("nope", {"caption": "x"})

    def test_delete_removes_row(self, owned):
        owned.seed("social_studio_posts", {"id": "p1", "business_location_id": LOCATION_ID, "status": "draft"})
        SocialPostService(owned, TEST_USER_ID).delete_post("p1")
        assert owned.rows("social_studio_posts") == []


class TestPublisher:
    NOW = _utc(2025, 6, 1, 12)

    def _seed_posts(self, db):
        db.seed(
            "social_studio_posts",
            {"id": "due", "business_location_id": LOCATION_ID, "status": "scheduled",
             "platforms": ["instagram"], "media_url": "https://cdn.example.com/a.jpg",
             "scheduled_at": "2025-06-01T09:00:00+00:00", "platform_meta": {"note": "keep"}},
            {"id": "broken", "business_location_id": LOCATION_ID, "status": "scheduled",
             "platforms": ["instagram", "facebook"], "scheduled_at": "2025-06-01T10:00:00+00:00"},
            {"id": "later", "business_location_id": LOCATION_ID, "status": "scheduled",
             "platforms": ["instagram"], "scheduled_at": "2025-06-02T09:00:00+00:00"},
            {"id": "facebook", "business_location_id": LOCATION_ID, "status": "scheduled",
             "platforms": ["facebook"], "scheduled_at": "2025-06-01T08:00:00+00:00"},
            {"id": "draft", "business_location_id": LOCATION_ID, "status": "draft",
             "platforms": ["instagram"], "scheduled_at": "2025-06-01T08:00:00+00:00"},
        )

    @pytest.mark.asyncio
    async def test_publishes_due_instagram_posts(self, fake_supabase, monkeypatch):
        self._seed_posts(fake_supabase)

        async def fake_publish(supabase, post, transport=None):
            if post["id"] == "broken":
                raise ValueError("Instagram posts need an image. Add media before scheduling.")
            return "media-42"

        monkeypatch.setattr(social_posts, "publish_post", fake_publish)

        summary = await publish_due_posts(fake_supabase, now=self.NOW)

        assert summary == {"due": 2, "published": 1, "failed": 1}
        posts = {row["id"]: row for row in fake_supabase.rows("social_studio_posts")}
        assert posts["due"]["status"] == "published"
        assert posts["due"]["platform_meta"] == {"note": "keep", "instagram": {"mediaId": "media-42"}}
        assert posts["due"]["published_at"]
        assert posts["broken"]["status"] == "failed"
        assert "need an image" in posts["broken"]["platform_meta"]["instagram"]["error"]
        assert posts["later"]["status"] == "scheduled"
        assert posts["facebook"]["status"] == "scheduled"

    @pytest.mark.asyncio
    async def test_publish_post_requires_image(self, fake_supabase):
        with pytest.raises(ValueError):
            await publish_post(fake_supabase, {"business_location_id": LOCATION_ID, "media": []})
