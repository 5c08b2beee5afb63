"""End-to-end API tests through the FastAPI application."""

import json
from unittest.mock import AsyncMock

import pytest

from antistatic.api.dependencies import get_places_client
from antistatic.api.main import app
from antistatic.api.routes import competitors as competitors_routes
from antistatic.api.routes import gbp as gbp_routes
from antistatic.api.routes import instagram as instagram_routes
from antistatic.api.routes import reputation as reputation_routes
from antistatic.api.routes import social_studio as social_studio_routes
from antistatic.core.exceptions import ConfigurationError, IntegrationUnavailableError
from antistatic.services.instagram_inbox import compute_signature

from tests.conftest import LOCATION_ID, TEST_USER_ID

OTHER_LOCATION_ID = "44444444-4444-4444-4444-444444444444"


class TestHealth:
    def test_health_reports_scheduler_disabled(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "degraded"
        assert data["services"]["supabase"]["status"] == "healthy"
        assert data["services"]["scheduler"]["status"] == "degraded"

    def test_liveness_and_readiness(self, client):
        assert client.get("/health/live").json()["status"] == "alive"
        assert client.get("/health/ready").json()["status"] == "ready"

    def test_root(self, client):
        assert client.get("/").json()["docs"] == "/docs"


class TestAuthentication:
    def test_missing_token(self, client):
        response = client.get("/api/me/enabled-tools")
        assert response.status_code == 401
        assert response.json()["error"] == "Unauthorized"

    def test_rejected_token(self, client):
        response = client.get("/api/me/enabled-tools", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_wrong_scheme(self, client):
        response = client.get("/api/me/enabled-tools", headers={"Authorization": "Basic abc"})
        assert response.status_code == 401

    def test_api_key_middleware(self, client, auth_headers, monkeypatch):
        monkeypatch.setenv("API_KEY_ENABLED", "true")
        monkeypatch.setenv("API_KEY", "secret-key")

        assert client.get("/api/me/enabled-tools", headers=auth_headers).status_code == 401
        ok = client.get("/api/me/enabled-tools", headers={**auth_headers, "X-API-Key": "secret-key"})
        assert ok.status_code == 200
        assert client.get("/health/live").status_code == 200


class TestOnboarding:
    def test_autocomplete(self, client, fake_places, auth_headers):
        fake_places.suggestions = [{"placeId": "ChIJabc", "description": "Bean There Cafe, Cape Town"}]

        response = client.get("/api/places/autocomplete", params={"input": "bean"}, headers=auth_headers)

        assert response.json() == {"suggestions": fake_places.suggestions}
        assert fake_places.calls == [("autocomplete", "bean")]

    def test_save_business_location(self, client, fake_places, fake_supabase, auth_headers):
        fake_places.details["ChIJabc"] = {
            "place_id": "ChIJabc",
            "name": "Bean There Cafe",
            "geometry": {"location": {"lat": -33.92, "lng": 18.42}},
            "types": ["cafe"],
        }

        response = client.post("/api/business-location", json={"placeId": "ChIJabc"}, headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["location"]["name"] == "Bean There Cafe"
        assert fake_supabase.rows("business_locations")[0]["user_id"] == TEST_USER_ID

    def test_save_unknown_place(self, client, auth_headers):
        response = client.post("/api/business-location", json={"placeId": "ChIJgone"}, headers=auth_headers)
        assert response.status_code == 404

    def test_enabled_tools_round_trip(self, client, owned_location, auth_headers):
        put = client.put(
            "/api/me/enabled-tools",
            json={"enabledTools": ["social_studio", "competitor_radar"]},
            headers=auth_headers,
        )
        assert put.json() == {"success": True, "enabledTools": ["social_studio", "competitor_radar"]}

        get = client.get("/api/me/enabled-tools", headers=auth_headers)
        assert get.json() == {"enabledTools": ["social_studio", "competitor_radar"]}

    def test_invalid_tool(self, client, owned_location, auth_headers):
        response = client.put("/api/me/enabled-tools", json={"enabledTools": ["crm"]}, headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid module keys"

    def test_extract_prescriptions(self, client, auth_headers):
        response = client.post(
            "/api/onboarding/prescriptions",
            json={"payload": {"prescribedModules": ["reputationHub", "insightsLab"]}},
            headers=auth_headers,
        )
        assert response.json() == {"prescribedModules": ["reputation_hub"]}


class TestOwnership:
    def test_foreign_location_is_not_found(self, client, owned_location, other_headers):
        response = client.get("/api/reputation/reviews", params={"locationId": LOCATION_ID}, headers=other_headers)
        assert response.status_code == 404

    def test_malformed_location_id(self, client, auth_headers):
        response = client.get("/api/reputation/reviews", params={"locationId": "abc"}, headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request data"

    def test_reply_to_missing_location(self, client, auth_headers):
        response = client.post(
            "/api/reputation/reviews/reply",
            json={"businessLocationId": OTHER_LOCATION_ID, "reviewId": "rev1", "comment": "Thanks"},
            headers=auth_headers,
        )
        assert response.status_code == 404
        assert response.json()["error"] == "Business location not found or access denied"


class TestReputation:
    def test_blank_reply_comment(self, client, owned_location, auth_headers):
        response = client.post(
            "/api/reputation/reviews/reply",
            json={"businessLocationId": LOCATION_ID, "reviewId": "rev1", "comment": "  "},
            headers=auth_headers,
        )
        assert response.status_code == 400

    def test_delete_reply_requires_a_review(self, client, owned_location, auth_headers):
        response = client.request(
            "DELETE",
            "/api/reputation/reviews/reply",
            json={"businessLocationId": LOCATION_ID},
            headers=auth_headers,
        )
        assert response.status_code == 400

    def test_sync_without_connection(self, client, owned_location, auth_headers):
        response = client.post(
            "/api/reputation/reviews/sync", json={"businessLocationId": LOCATION_ID}, headers=auth_headers
        )
        assert response.status_code == 400
        assert response.json()["code"] == "NOT_CONNECTED"

    def test_generate_reply(self, client, owned_location, auth_headers, monkeypatch):
        generator = AsyncMock()
        generator.generate_replies.return_value = ["Thank you!", "So glad!", "Come again!"]
        monkeypatch.setattr(reputation_routes, "get_reply_generator", lambda: generator)

        response = client.post(
            "/api/reputation/generate-reply",
            json={"locationId": LOCATION_ID, "review": {"text": "Lovely coffee", "rating": 5}},
            headers=auth_headers,
        )

        assert response.json() == {"success": True, "replies": ["Thank you!", "So glad!", "Come again!"]}
        request = generator.generate_replies.call_args.args[0]
        assert request.review_text == "Lovely coffee"

    def test_render_sms_request(self, client, owned_location, auth_headers):
        response = client.post(
            "/api/reputation/review-requests",
            json={"businessLocationId": LOCATION_ID, "customerName": "Sarah", "channel": "sms"},
            headers=auth_headers,
        )

        data = response.json()
        assert data["channel"] == "sms"
        assert data["subject"] is None
        assert data["reviewUrl"].endswith("placeid=ChIJanchor")

    def test_whatsapp_number_must_be_south_african(self, client, owned_location, auth_headers):
        response = client.post(
            "/api/review-requests/whatsapp/send",
            json={
                "to": "+447700900123",
                "customerName": "Sam",
                "headerImageUrl": "https://project.supabase.co/storage/v1/object/public/review-headers/logo.png",
                "businessLocationId": LOCATION_ID,
            },
            headers=auth_headers,
        )
        assert response.status_code == 400


class TestSocialStudio:
    def _create(self, client, headers, **overrides):
        body = {"businessLocationId": LOCATION_ID, "platforms": ["instagram"], "caption": "Fresh bakes"}
        body.update(overrides)
        return client.post("/api/social-studio/posts", json=body, headers=headers)

    def test_post_lifecycle(self, client, owned_location, auth_headers, fake_supabase):
        created = self._create(client, auth_headers, scheduledAt="2025-06-10T09:00:00Z")
        assert created.status_code == 201
        post = created.json()["post"]
        assert post["status"] == "scheduled"

        listed = client.get(
            "/api/social-studio/posts",
            params={"businessLocationId": LOCATION_ID, "from": "2025-06-01T00:00:00Z", "to": "2025-06-30T00:00:00Z"},
            headers=auth_headers,
        )
        assert [event["id"] for event in listed.json()["events"]] == [post["id"]]

        patched = client.patch(
            f"/api/social-studio/posts/{post['id']}", json={"scheduledAt": None}, headers=auth_headers
        )
        assert patched.json()["post"]["status"] == "draft"

        deleted = client.delete(f"/api/social-studio/posts/{post['id']}", headers=auth_headers)
        assert deleted.json() == {"success": True}
        assert fake_supabase.rows("social_studio_posts") == []

    def test_requires_a_platform(self, client, owned_location, auth_headers):
        response = self._create(client, auth_headers, platforms=[])
        assert response.status_code == 400
        assert response.json()["details"][0]["field"] == "platforms"

    def test_range_must_be_ordered(self, client, owned_location, auth_headers):
        response = client.get(
            "/api/social-studio/posts",
            params={"businessLocationId": LOCATION_ID, "from": "2025-07-01T00:00:00Z", "to": "2025-06-01T00:00:00Z"},
            headers=auth_headers,
        )
        assert response.status_code == 400

    def test_empty_update(self, client, owned_location, auth_headers):
        post = self._create(client, auth_headers).json()["post"]
        response = client.patch(f"/api/social-studio/posts/{post['id']}", json={}, headers=auth_headers)
        assert response.status_code == 400

    def test_other_user_cannot_delete(self, client, owned_location, auth_headers, other_headers):
        post = self._create(client, auth_headers).json()["post"]

        response = client.delete(f"/api/social-studio/posts/{post['id']}", headers=other_headers)

        assert response.status_code == 403
        assert response.json()["error"] == "Unauthorized"

    def test_caption_failure_returns_fallback(self, client, owned_location, auth_headers, monkeypatch):
        generator = AsyncMock()
        generator.generate.side_effect = ValueError("OpenAI response did not contain content")
        monkeypatch.setattr(social_studio_routes, "get_caption_generator", lambda: generator)

        response = client.post(
            "/api/social-studio/ai/generate-caption",
            json={"businessLocationId": LOCATION_ID, "topic": "Winter Specials"},
            headers=auth_headers,
        )

        assert response.status_code == 500
        data = response.json()
        assert data["error"] == "OpenAI response did not contain content"
        assert data["caption"] == "We're excited to share winter specials with you! Stay tuned for more updates."
        assert data["hashtags"] == []


class TestGoogleConnect:
    def test_auth_url_for_owned_location(self, client, owned_location, auth_headers, monkeypatch):
        monkeypatch.setenv("GOOGLE_CLIENT_ID", "client-id")
        monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "client-secret")

        response = client.get(
            "/api/google/gbp/auth", params={"businessLocationId": LOCATION_ID}, headers=auth_headers
        )

        assert response.status_code == 200
        assert response.json()["url"].startswith("https://accounts.google.com/o/oauth2/v2/auth?")

    def test_auth_for_foreign_location(self, client, owned_location, other_headers):
        response = client.get(
            "/api/google/gbp/auth", params={"businessLocationId": LOCATION_ID}, headers=other_headers
        )
        assert response.status_code == 404

    def test_callback_denied(self, client):
        response = client.get(
            "/api/gbp/oauth/callback", params={"error": "access_denied"}, follow_redirects=False
        )

        assert response.status_code == 307
        location = response.headers["location"]
        assert location.startswith("https://app.example.com/onboarding/connect?gbp=error")
        assert "Connection+cancelled" in location

    def test_callback_bad_state(self, client):
        response = client.get(
            "/api/gbp/oauth/callback", params={"code": "c", "state": "unknown"}, follow_redirects=False
        )
        assert "gbp=error" in response.headers["location"]

    def test_callback_connected_even_if_linking_fails(self, client, owned_location, monkeypatch):
        monkeypatch.setattr(
            gbp_routes,
            "complete_connect",
            AsyncMock(return_value={"user_id": TEST_USER_ID, "business_location_id": LOCATION_ID}),
        )

        response = client.get(
            "/api/gbp/oauth/callback", params={"code": "c", "state": "s"}, follow_redirects=False
        )

        assert response.status_code == 307
        assert response.headers["location"].endswith("/onboarding/connect?gbp=connected&allowBack=true")


class TestInstagramConnection:
    @pytest.fixture
    def connected(self, fake_supabase, owned_location):
        fake_supabase.seed(
            "instagram_connections",
            {
                "business_location_id": LOCATION_ID,
                "instagram_user_id": "17841400000000000",
                "instagram_username": "beanthere",
                "access_token": "ig-token",
                "scopes": ["instagram_business_basic"],
            },
        )
        return fake_supabase

    def test_status_not_connected(self, client, owned_location, auth_headers):
        response = client.get(
            "/api/integrations/instagram/status", params={"businessLocationId": LOCATION_ID}, headers=auth_headers
        )
        assert response.json() == {"connected": False}

    def test_status_connected(self, client, connected, auth_headers):
        response = client.get(
            "/api/integrations/instagram/status", params={"businessLocationId": LOCATION_ID}, headers=auth_headers
        )
        assert response.json() == {
            "connected": True,
            "username": "beanthere",
            "instagram_user_id": "17841400000000000",
            "scopes": ["instagram_business_basic"],
        }

    def test_disconnect(self, client, connected, auth_headers):
        response = client.post(
            "/api/integrations/instagram/disconnect",
            json={"businessLocationId": LOCATION_ID},
            headers=auth_headers,
        )

        assert response.json() == {"success": True}
        assert connected.rows("instagram_connections") == []

    def test_disconnect_foreign_location(self, client, connected, other_headers):
        response = client.post(
            "/api/integrations/instagram/disconnect",
            json={"businessLocationId": LOCATION_ID},
            headers=other_headers,
        )

        assert response.status_code == 404
        assert len(connected.rows("instagram_connections")) == 1

    def test_callback_network_failure_redirects(self, client, monkeypatch):
        monkeypatch.setattr(
            instagram_routes,
            "complete_connect",
            AsyncMock(
                side_effect=IntegrationUnavailableError("instagram", "Could not reach Instagram. Please try again.")
            ),
        )

        response = client.get(
            "/api/integrations/instagram/callback", params={"code": "c", "state": "s"}, follow_redirects=False
        )

        assert response.status_code == 307
        location = response.headers["location"]
        assert "ig=error" in location
        assert "Could+not+reach+Instagram" in location

    def test_inbox_threads_and_mark_read(self, client, connected, auth_headers):
        connected.seed(
            "instagram_conversations",
            {
                "id": "conv_17841400000000000_654321",
                "business_location_id": LOCATION_ID,
                "ig_account_id": "17841400000000000",
                "participant_igsid": "654321",
                "last_message_at": "2025-01-01T00:00:00+00:00",
                "unread_count": 1,
            },
        )
        connected.seed(
            "instagram_messages",
            {
                "id": "m_1",
                "business_location_id": LOCATION_ID,
                "ig_account_id": "17841400000000000",
                "conversation_id": "conv_17841400000000000_654321",
                "direction": "inbound",
                "text": "Hi",
                "created_time": "2025-01-01T00:00:00+00:00",
                "read_at": None,
            },
        )

        threads = client.get(
            "/api/social/instagram/inbox/threads", params={"locationId": LOCATION_ID}, headers=auth_headers
        ).json()["threads"]
        assert [t["unreadCount"] for t in threads] == [1]

        messages = client.get(
            "/api/social/instagram/inbox/messages",
            params={"locationId": LOCATION_ID, "conversationId": threads[0]["id"]},
            headers=auth_headers,
        ).json()["messages"]
        assert [m["text"] for m in messages] == ["Hi"]

        marked = client.post(
            "/api/social/instagram/inbox/mark-read",
            json={"businessLocationId": LOCATION_ID, "conversationId": threads[0]["id"]},
            headers=auth_headers,
        )
        assert marked.json() == {"success": True, "marked": 1}
        assert connected.rows("instagram_conversations")[0]["unread_count"] == 0

    def test_inbox_without_connection(self, client, owned_location, auth_headers):
        response = client.get(
            "/api/social/instagram/inbox/threads", params={"locationId": LOCATION_ID}, headers=auth_headers
        )
        assert response.status_code == 404
        assert response.json()["error"] == "Instagram not connected"


class TestWebhooks:
    URL = "/api/webhooks/meta/instagram"

    def test_verify_subscription(self, client, fake_supabase, monkeypatch):
        monkeypatch.setenv("META_WEBHOOK_VERIFY_TOKEN", "verify-me")

        response = client.get(
            self.URL, params={"hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "12345"}
        )

        assert response.status_code == 200
        assert response.text == "12345"

    def test_verify_rejects_wrong_token(self, client, monkeypatch):
        monkeypatch.setenv("META_WEBHOOK_VERIFY_TOKEN", "verify-me")
        response = client.get(
            self.URL, params={"hub.mode": "subscribe", "hub.verify_token": "guess", "hub.challenge": "1"}
        )
        assert response.status_code == 403

    def test_signed_event_is_acknowledged(self, client, monkeypatch):
        monkeypatch.setenv("META_APP_SECRET", "app-secret")
        body = json.dumps({"object": "instagram", "entry": []}).encode()

        response = client.post(
            self.URL,
            content=body,
            headers={"X-Hub-Signature-256": compute_signature("app-secret", body), "Content-Type": "application/json"},
        )

        assert response.status_code == 200
        assert response.json() == {"ok": True}

    def test_bad_signature(self, client, monkeypatch):
        monkeypatch.setenv("META_APP_SECRET", "app-secret")
        response = client.post(self.URL, content=b"{}", headers={"X-Hub-Signature-256": "sha256=deadbeef"})
        assert response.status_code == 403
        assert response.json()["error"] == "invalid_signature"


class TestSearchTerms:
    URL = "/api/competitors/search-terms"

    @pytest.fixture
    def places_unconfigured(self, client):
        def _missing_key():
            raise ConfigurationError("GOOGLE_PLACES_API_KEY is not set", "google_places_api_key")

        app.dependency_overrides[get_places_client] = _missing_key

    def test_terms_work_without_places_key(self, client, owned_location, auth_headers, places_unconfigured):
        created = client.post(
            self.URL, json={"businessLocationId": LOCATION_ID, "term": " brunch "}, headers=auth_headers
        )
        assert created.status_code == 201
        assert created.json()["searchTerm"]["term"] == "brunch"

        listed = client.get(self.URL, params={"locationId": LOCATION_ID}, headers=auth_headers)
        assert listed.status_code == 200
        assert [t["term"] for t in listed.json()["searchTerms"]] == ["brunch"]

    def test_rankings_still_need_places(self, client, owned_location, auth_headers, places_unconfigured):
        response = client.post(
            "/api/competitors/rankings/refresh",
            json={"businessLocationId": LOCATION_ID, "searchTermId": OTHER_LOCATION_ID},
            headers=auth_headers,
        )
        assert response.status_code == 500

    def test_sync_without_google_connection(self, client, owned_location, auth_headers):
        response = client.post(
            f"{self.URL}/sync", json={"businessLocationId": LOCATION_ID}, headers=auth_headers
        )
        assert response.status_code == 400
        assert response.json()["code"] == "NOT_CONNECTED"


class TestCron:
    URL = "/api/cron/apify-refresh"

    @pytest.fixture(autouse=True)
    def cron_secret(self, monkeypatch):
        monkeypatch.setenv("CRON_SECRET", "cron-secret")

    def test_requires_secret(self, client):
        assert client.post(self.URL).status_code == 401
        assert client.post(self.URL, headers={"Authorization": "Bearer wrong"}).status_code == 401

    def test_runs_refresh(self, client, monkeypatch):
        refresh = AsyncMock(return_value={"processed": 2, "errorCount": 0, "errors": []})
        monkeypatch.setattr(competitors_routes, "refresh_competitor_insights", refresh)

        response = client.post(self.URL, headers={"Authorization": "Bearer cron-secret"})

        assert response.json() == {"success": True, "processed": 2, "errorCount": 0, "errors": []}
        refresh.assert_awaited_once()
