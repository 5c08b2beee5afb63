"""Unit tests for the Apify Google Places scraper wrapper."""

from unittest.mock import MagicMock

import pytest

from antistatic.core.exceptions import ConfigurationError
from antistatic.integrations.apify_places import (
    ApifyPlacesScraper,
    compare_places,
    map_place,
    map_review,
)


class TestMapping:
    def test_map_review_accepts_alternate_keys(self):
        review = map_review(
            {"id": "r1", "authorName": "Sam", "stars": 5, "text": "Great brunch", "publishedAt": "2025-02-01"}
        )
        assert review["reviewId"] == "r1"
        assert review["reviewerName"] == "Sam"
        assert review["rating"] == 5
        assert review["comment"] == "Great brunch"
        assert review["date"] == "2025-02-01"

    def test_string_ratings_are_parsed(self):
        place = map_place(
            {
                "placeId": "ChIJother",
                "reviews": [
                    {"id": "r1", "stars": "4", "text": "Good"},
                    {"id": "r2", "stars": "0", "text": "No rating"},
                    {"id": "r3", "stars": "n/a", "text": "Garbled"},
                ],
            },
            "ChIJanchor",
        )
        assert [r["reviewId"] for r in place["reviews"]] == ["r1"]
        assert place["reviews"][0]["rating"] == 4.0

    def test_map_place(self):
        place = map_place(
            {
                "placeId": "ChIJother",
                "title": "Rival Roasters",
                "totalScore": 4.6,
                "reviewsCount": 321,
                "reviewsDistribution": {"oneStar": 3, "fiveStar": 250},
                "reviews": [{"reviewId": "a", "stars": 4}, {"reviewId": "b"}],
                "categories": ["Cafe"],
            },
            "ChIJanchor",
        )
        assert place["name"] == "Rival Roasters"
        assert place["rating"] == 4.6
        assert place["reviewsDistribution"] == {
            "oneStar": 3,
            "twoStar": 0,
            "threeStar": 0,
            "fourStar": 0,
            "fiveStar": 250,
        }
        assert [r["reviewId"] for r in place["reviews"]] == ["a"]
        assert place["isSelf"] is False

    def test_map_place_flags_anchor(self):
        place = map_place({"inputPlaceId": "ChIJanchor"}, "ChIJanchor")
        assert place["isSelf"] is True
        assert place["name"] == "Unknown"
        assert place["reviews"] is None


class TestComparePlaces:
    def test_percentiles_against_competitors(self):
        places = [
            {"placeId": "me", "rating": 4.5, "reviewsCount": 100, "isSelf": True},
            {"placeId": "a", "rating": 4.0, "reviewsCount": 300},
            {"placeId": "b", "rating": 4.8, "reviewsCount": 50},
        ]
        comparison = compare_places(places, "me")
        assert comparison["sampleSize"] == 3
        assert comparison["localAverageRating"] == 4.4
        assert comparison["localAverageReviews"] == 150
        assert comparison["ratingPercentile"] == 50
        assert comparison["reviewVolumePercentile"] == 50

    def test_without_anchor(self):
        comparison = compare_places([{"placeId": "a", "rating": 4.0}], "me")
        assert comparison["ratingPercentile"] is None
        assert comparison["localAverageReviews"] is None


class TestApifyPlacesScraper:
    def test_requires_token(self, monkeypatch):
        monkeypatch.delenv("APIFY_API_TOKEN", raising=False)
        with pytest.raises(ConfigurationError):
            ApifyPlacesScraper()

    @pytest.mark.asyncio
    async def test_scrape_appends_missing_anchor(self):
        client = MagicMock()
        client.actor.return_value.call.return_value = {
            "id": "run-1",
            "status": "SUCCEEDED",
            "defaultDatasetId": "dataset-1",
        }
        client.dataset.return_value.list_items.return_value.items = [
            {"placeId": "ChIJother", "title": "Rival Roasters", "totalScore": 4.2}
        ]
        scraper = ApifyPlacesScraper(client=client, actor_id="compass/crawler-google-places")

        result = await scraper.scrape_place_ids(["ChIJanchor", "ChIJother"], "ChIJanchor")

        run_input = client.actor.return_value.call.call_args.kwargs["run_input"]
        assert run_input["placeIds"] == ["ChIJanchor", "ChIJother"]
        assert run_input["maxCrawledPlacesPerSearch"] == 2
        client.actor.assert_called_with("compass/crawler-google-places")
        client.dataset.assert_called_with("dataset-1")
        assert [p["placeId"] for p in result["places"]] == ["ChIJother", "ChIJanchor"]
        assert result["places"][-1] == {"placeId": "ChIJanchor", "name": "Your Business", "isSelf": True}
        assert len(result["rawItems"]) == 1
