"""Unit tests for onboarding: module prescriptions, business selection and tools."""

import pytest

from antistatic.core.exceptions import NotFoundError, ValidationFailedError
from antistatic.services.onboarding import (
    OnboardingService,
    available_modules,
    extract_prescribed_modules,
    location_row_from_place,
    normalize_module_id,
)

from tests.conftest import LOCATION_ID, TEST_USER_ID

PLACE = {
    "place_id": "ChIJnew",
    "name": "Bean There Cafe",
    "formatted_address": "12 Long Street, Cape Town, 8001, South Africa",
    "geometry": {"location": {"lat": -33.9249, "lng": 18.4241}},
    "international_phone_number": "+27 21 555 0101",
    "types": ["cafe", "food", "point_of_interest", "establishment"],
    "rating": 4.6,
    "user_ratings_total": 212,
}


class TestNormalizeModuleId:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("reputation_hub", "reputation_hub"),
            ("reputationHub", "reputation_hub"),
            ("Social Studio", "social_studio"),
            ("COMPETITOR_RADAR", "competitor_radar"),
            ("competitorTracker", "competitor_radar"),
            ("influencer-hub", "influencer_hub"),
            ("email_marketing", None),
            ("  ", None),
            (42, None),
        ],
    )
    def test_normalize(self, value, expected):
        assert normalize_module_id(value) == expected

    def test_available_modules_skip_coming_soon(self):
        assert "insights_lab" not in available_modules()
        assert "reputation_hub" in available_modules()


class TestExtractPrescribedModules:
    def test_deep_scan_of_channel_analyses(self):
        payload = [
            {"prescribedModules": ["reputationHub", "insights_lab"]},
            {"analysis": {"recommendations": {"modules": [{"moduleId": "socialStudio"}]}}},
            None,
            {"solution": "Reputation Hub"},
        ]
        assert extract_prescribed_modules(payload) == ["reputation_hub", "social_studio"]

    def test_plain_list_of_ids(self):
        assert extract_prescribed_modules(["competitorRadar", "nope"]) == ["competitor_radar"]

    def test_ignores_unrelated_keys(self):
        assert extract_prescribed_modules({"summary": "reputation_hub", "score": 7}) == []

    def test_depth_limit(self):
        payload = {"modules": "social_studio"}
        for _ in range(10):
            payload = {"nested": payload}
        assert extract_prescribed_modules(payload) == []


class TestLocationRow:
    def test_maps_places_details(self):
        row = location_row_from_place(TEST_USER_ID, PLACE)
        assert row["user_id"] == TEST_USER_ID
        assert (row["lat"], row["lng"]) == (-33.9249, 18.4241)
        assert row["phone_number"] == "+27 21 555 0101"
        assert row["category"] == "Cafe"
        assert row["categories"] == ["Cafe", "Food"]
        assert row["review_count"] == 212


class TestOnboardingService:
    @pytest.mark.asyncio
    async def test_save_business_location_upserts(self, fake_supabase, fake_places):
        fake_places.details["ChIJnew"] = dict(PLACE)
        service = OnboardingService(fake_supabase, TEST_USER_ID)

        first = await service.save_business_location(fake_places, "ChIJnew")
        second = await service.save_business_location(fake_places, " ChIJnew ")

        assert first["id"] == second["id"]
        assert len(fake_supabase.rows("business_locations")) == 1

    @pytest.mark.asyncio
    async def test_blank_place_id(self, fake_supabase, fake_places):
        with pytest.raises(ValidationFailedError):
            await OnboardingService(fake_supabase, TEST_USER_ID).save_business_location(fake_places, "")

    @pytest.mark.asyncio
    async def test_unknown_place(self, fake_supabase, fake_places):
        with pytest.raises(NotFoundError):
            await OnboardingService(fake_supabase, TEST_USER_ID).save_business_location(fake_places, "ChIJgone")

    def test_enabled_tools(self, fake_supabase, sample_location):
        sample_location["enabled_tools"] = ["reputation_hub", "retired_tool"]
        fake_supabase.seed("business_locations", sample_location)
        service = OnboardingService(fake_supabase, TEST_USER_ID)

        assert service.get_enabled_tools() == ["reputation_hub"]
        assert service.set_enabled_tools(["social_studio", "social_studio", "reputation_hub"]) == [
            "social_studio",
            "reputation_hub",
        ]
        assert fake_supabase.rows("business_locations")[0]["enabled_tools"] == ["social_studio", "reputation_hub"]

    def test_invalid_tools(self, fake_supabase, sample_location):
        fake_supabase.seed("business_locations", sample_location)
        with pytest.raises(ValidationFailedError) as exc_info:
            OnboardingService(fake_supabase, TEST_USER_ID).set_enabled_tools(["reputation_hub", "crm"])
        assert exc_info.value.details["invalid"] == ["crm"]

    def test_tools_without_location(self, fake_supabase):
        service = OnboardingService(fake_supabase, TEST_USER_ID)
        assert service.get_enabled_tools() == []
        with pytest.raises(NotFoundError):
            service.set_enabled_tools(["reputation_hub"])

    def test_prescribed_modules_from_insights(self, fake_supabase):
        fake_supabase.seed(
            "business_insights",
            {
                "location_id": LOCATION_ID,
                "source": "google",
                "instagram_ai_analysis": {"prescribedModules": ["socialStudio"]},
                "gbp_ai_analysis": {"modules": ["reputation_hub", "social_studio"]},
            },
        )
        modules = OnboardingService(fake_supabase, TEST_USER_ID).prescribed_modules(LOCATION_ID)
        assert modules == ["social_studio", "reputation_hub"]

    def test_no_insights(self, fake_supabase):
        assert OnboardingService(fake_supabase, TEST_USER_ID).prescribed_modules(LOCATION_ID) == []
