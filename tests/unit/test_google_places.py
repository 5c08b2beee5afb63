"""Unit tests for the Google Places client."""

import httpx
import pytest

from antistatic.core.exceptions import ConfigurationError, IntegrationAuthError
from antistatic.integrations.google_places import GooglePlacesClient, place_coordinates


def _places(transport) -> GooglePlacesClient:
    return GooglePlacesClient(api_key="places-key", transport=transport)


class TestGooglePlacesClient:
    """Test request building and status handling."""

    def test_missing_key_is_configuration_error(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_PLACES_API_KEY", raising=False)
        with pytest.raises(ConfigurationError):
            GooglePlacesClient()

    @pytest.mark.asyncio
    async def test_autocomplete_maps_structured_formatting(self, json_transport):
        transport = json_transport(
            lambda request: httpx.Response(
                200,
                json={
                    "status": "OK",
                    "predictions": [
                        {
                            "place_id": "ChIJ1",
                            "description": "Bean There, Long Street, Cape Town",
                            "structured_formatting": {
                                "main_text": "Bean There",
                                "secondary_text": "Long Street, Cape Town",
                            },
                        }
                    ],
                },
            )
        )

        async with _places(transport) as places:
            suggestions = await places.autocomplete("bean")

        assert suggestions == [
            {"place_id": "ChIJ1", "primaryText": "Bean There", "secondaryText": "Long Street, Cape Town"}
        ]
        request = transport.requests[0]
        assert request.url.path.endswith("/autocomplete/json")
        assert request.url.params["types"] == "establishment"
        assert request.url.params["key"] == "places-key"

    @pytest.mark.asyncio
    async def test_blank_autocomplete_skips_request(self, json_transport):
        transport = json_transport(lambda request: httpx.Response(500))

        async with _places(transport) as places:
            assert await places.autocomplete("   ") == []
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_zero_results_is_empty(self, json_transport):
        transport = json_transport(lambda request: httpx.Response(200, json={"status": "ZERO_RESULTS"}))

        async with _places(transport) as places:
            assert await places.text_search("vegan bakery") == []

    @pytest.mark.asyncio
    async def test_request_denied_raises_auth_error(self, json_transport):
        transport = json_transport(
            lambda request: httpx.Response(
                200, json={"status": "REQUEST_DENIED", "error_message": "The provided API key is invalid."}
            )
        )

        async with _places(transport) as places:
            with pytest.raises(IntegrationAuthError) as exc_info:
                await places.place_details("ChIJ1")

        assert "API key is invalid" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_nearby_search_passes_keyword(self, json_transport):
        transport = json_transport(
            lambda request: httpx.Response(200, json={"status": "OK", "results": [{"place_id": "a"}]})
        )

        async with _places(transport) as places:
            results = await places.nearby_search(-33.9, 18.4, 2500, "cafe")

        assert results == [{"place_id": "a"}]
        params = transport.requests[0].url.params
        assert params["location"] == "-33.9,18.4"
        assert params["radius"] == "2500"
        assert params["keyword"] == "cafe"

    @pytest.mark.asyncio
    async def test_photo_urls_for_place_swallows_not_found(self, json_transport):
        transport = json_transport(lambda request: httpx.Response(200, json={"status": "NOT_FOUND"}))

        async with _places(transport) as places:
            assert await places.photo_urls_for_place("missing") == []

    @pytest.mark.asyncio
    async def test_details_many_returns_none_for_failures(self, json_transport):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params["place_id"] == "good":
                return httpx.Response(200, json={"status": "OK", "result": {"name": "Good"}})
            return httpx.Response(200, json={"status": "INVALID_REQUEST"})

        async with _places(json_transport(handler)) as places:
            details = await places.details_many(["good", "bad"])

        assert details == [{"name": "Good"}, None]

    def test_photo_url(self):
        url = GooglePlacesClient(api_key="k").photo_url("ref123", 800)
        assert url.endswith("/photo?maxwidth=800&photo_reference=ref123&key=k")

    def test_photo_urls_limits_count(self):
        places = GooglePlacesClient(api_key="k")
        photos = [{"photo_reference": f"r{i}"} for i in range(5)] + [{}]
        assert len(places.photo_urls(photos, 3, 400)) == 3


class TestPlaceCoordinates:
    def test_extracts_lat_lng(self):
        assert place_coordinates({"geometry": {"location": {"lat": 1.5, "lng": 2.5}}}) == (1.5, 2.5)

    def test_missing_geometry(self):
        assert place_coordinates({}) == (None, None)
