"""Unit tests for the AI prompt business context."""

from antistatic.services.business_context import (
    build_business_context,
    extract_city,
    format_hours_summary,
    load_business_context,
)

from tests.conftest import LOCATION_ID


class TestHelpers:
    def test_extract_city(self):
        assert extract_city("123 Main St, New York, NY 10001") == "New York"
        assert extract_city("Cape Town") is None
        assert extract_city(None) is None

    def test_hours_from_day_list(self):
        hours = [{"day": "Monday", "hours": "7am-4pm"}, {"day": "Tuesday", "hours": "7am-4pm"}, {"day": "x"}]
        assert format_hours_summary(hours) == "Monday: 7am-4pm, Tuesday: 7am-4pm"

    def test_hours_json_only_when_short(self):
        assert format_hours_summary({"mon": "9-5"}) == '{"mon":"9-5"}'
        assert format_hours_summary({"note": "x" * 300}) is None
        assert format_hours_summary("9-5") is None


class TestBuildBusinessContext:
    def test_insights_override_location_fields(self, sample_location):
        context = build_business_context(
            sample_location,
            {"gbp_primary_category": "Coffee roaster", "gbp_phone": "+27 21 000 0000"},
        )
        assert context.business_name == "Bean There Cafe"
        assert context.primary_category == "Coffee roaster"
        assert context.city == "8001"
        assert context.phone == "+27 21 000 0000"
        assert context.website == "https://beanthere.example.com"
        assert context.service_highlights == ["Coffee roaster", "Cafe", "Coffee shop"]

    def test_name_falls_back_to_google_location(self):
        context = build_business_context({"google_location_name": "locations/bean-there"}, None)
        assert context.business_name == "bean there"

    def test_empty_context(self):
        context = build_business_context(None, None)
        assert context.business_name == "our business"
        assert context.to_prompt() == "Business name: our business"

    def test_to_prompt_skips_unknown_fields(self, sample_location):
        prompt = build_business_context(sample_location, None).to_prompt()
        assert "Phone: +27 21 555 0101" in prompt
        assert "Hours summary" not in prompt
        assert prompt.endswith("Service highlights: Cafe, Coffee shop")


class TestLoadBusinessContext:
    def test_reads_location_and_google_insights(self, fake_supabase, sample_location):
        fake_supabase.seed("business_locations", sample_location)
        fake_supabase.seed(
            "business_insights",
            {"location_id": LOCATION_ID, "source": "apify", "gbp_phone": "wrong"},
            {
                "location_id": LOCATION_ID,
                "source": "google",
                "apify_opening_hours": [{"day": "Monday", "hours": "8-5"}],
            },
        )

        context = load_business_context(fake_supabase, LOCATION_ID)

        assert context.business_name == "Bean There Cafe"
        assert context.phone == "+27 21 555 0101"
        assert context.hours_summary == "Monday: 8-5"
