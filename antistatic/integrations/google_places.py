"""Google Places web service client.

Async wrapper over the Places web service endpoints the app relies on:
autocomplete for onboarding, details for location setup and competitor cards,
text search for rankings and nearby search for competitor discovery.

API Reference: https://developers.google.com/maps/documentation/places/web-service/overview
"""

import asyncio
from typing import Any, Optional

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from antistatic.config.settings import get_settings
from antistatic.core.exceptions import (
    ConfigurationError,
    IntegrationAuthError,
    IntegrationError,
    IntegrationNotFoundError,
    IntegrationRateLimitError,
    IntegrationUnavailableError,
)

logger = structlog.get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

PLACES_API_BASE = "https://maps.googleapis.com/maps/api/place"

SERVICE = "google_places"

LOCATION_DETAIL_FIELDS = [
    "place_id",
    "name",
    "formatted_address",
    "geometry",
    "formatted_phone_number",
    "international_phone_number",
    "website",
    "rating",
    "user_ratings_total",
    "types",
    "opening_hours",
    "business_status",
]

COMPETITOR_DETAIL_FIELDS = [
    "place_id",
    "name",
    "formatted_address",
    "geometry",
    "rating",
    "user_ratings_total",
    "types",
    "photos",
    "opening_hours",
    "website",
    "formatted_phone_number",
]

# Status values that carry a usable (possibly empty) payload
OK_STATUSES = {"OK", "ZERO_RESULTS"}


# =============================================================================
# Client
# =============================================================================


class GooglePlacesClient:
    """Async client for the Google Places web service.

    Example:
        async with GooglePlacesClient() as places:
            suggestions = await places.autocomplete("blue bottle coffee")
            details = await places.place_details(suggestions[0]["place_id"])
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            api_key: Places API key. If not provided, loads from settings.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        settings = get_settings()
        self._api_key = api_key or (
            settings.google_places_api_key.get_secret_value()
            if settings.google_places_api_key
            else None
        )
        if not self._api_key:
            raise ConfigurationError(
                "Google Places API key not configured", "google_places_api_key"
            )

        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "GooglePlacesClient":
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Ensure HTTP client is initialized."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
        return self._client

    @retry(
        retry=retry_if_exception_type((IntegrationRateLimitError, IntegrationUnavailableError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _request(self, endpoint: str, params: dict[str, Any]) -> dict[str, Any]:
        """GET a Places endpoint and check the body ``status`` field.

        Raises:
            IntegrationRateLimitError: OVER_QUERY_LIMIT or HTTP 429.
            IntegrationAuthError: REQUEST_DENIED.
            IntegrationNotFoundError: NOT_FOUND / INVALID_REQUEST.
            IntegrationUnavailableError: HTTP 5xx or timeouts.
            IntegrationError: Any other failure.
        """
        client = await self._ensure_client()
        url = f"{PLACES_API_BASE}/{endpoint}/json"

        try:
            response = await client.get(url, params={**params, "key": self._api_key})
        except httpx.TimeoutException as e:
            logger.error("google_places_timeout", endpoint=endpoint, error=str(e))
            raise IntegrationUnavailableError(SERVICE, f"Request timeout: {e}", {"endpoint": endpoint})
        except httpx.RequestError as e:
            logger.error("google_places_request_error", endpoint=endpoint, error=str(e))
            raise IntegrationError(SERVICE, f"Request failed: {e}", {"endpoint": endpoint})

        if response.status_code == 429:
            raise IntegrationRateLimitError(SERVICE, "Rate limited by Google Places API", {"endpoint": endpoint})
        if response.status_code >= 500:
            raise IntegrationUnavailableError(
                SERVICE, f"Google Places returned {response.status_code}", {"endpoint": endpoint}
            )
        if response.status_code >= 400:
            raise IntegrationError(
                SERVICE,
                f"API error {response.status_code}",
                {"endpoint": endpoint, "status_code": response.status_code},
            )

        data = response.json() if response.content else {}
        status = data.get("status", "OK")

        if status in OK_STATUSES:
            return data

        error_message = data.get("error_message") or status
        logger.warning("google_places_status_error", endpoint=endpoint, status=status, error=error_message)

        if status == "OVER_QUERY_LIMIT":
            raise IntegrationRateLimitError(SERVICE, error_message, {"endpoint": endpoint})
        if status == "REQUEST_DENIED":
            raise IntegrationAuthError(SERVICE, error_message, {"endpoint": endpoint})
        if status in ("NOT_FOUND", "INVALID_REQUEST"):
            raise IntegrationNotFoundError(SERVICE, error_message, {"endpoint": endpoint})
        raise IntegrationError(SERVICE, error_message, {"endpoint": endpoint, "status": status})

    # -------------------------------------------------------------------------
    # Public API Methods
    # -------------------------------------------------------------------------

    async def autocomplete(self, text: str) -> list[dict[str, Any]]:
        """Suggest establishments for an onboarding search box.

        Returns:
            ``[{place_id, primaryText, secondaryText}]``; empty for blank input.
        """
        if not text or not text.strip():
            return []

        data = await self._request(
            "autocomplete", {"input": text.strip(), "types": "establishment"}
        )

        suggestions = []
        for prediction in data.get("predictions", []):
            formatting = prediction.get("structured_formatting") or {}
            suggestions.append(
                {
                    "place_id": prediction.get("place_id"),
                    "primaryText": formatting.get("main_text") or prediction.get("description", ""),
                    "secondaryText": formatting.get("secondary_text", ""),
                }
            )
        return suggestions

    async def place_details(
        self, place_id: str, fields: Optional[list[str]] = None
    ) -> dict[str, Any]:
        """Fetch the ``result`` object for a place id."""
        data = await self._request(
            "details",
            {"place_id": place_id, "fields": ",".join(fields or LOCATION_DETAIL_FIELDS)},
        )
        return data.get("result") or {}

    async def text_search(self, query: str) -> list[dict[str, Any]]:
        """Run a text search and return results in Google's ranking order."""
        data = await self._request("textsearch", {"query": query})
        return data.get("results", [])

    async def nearby_search(
        self,
        lat: float,
        lng: float,
        radius: int,
        keyword: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """Search around a coordinate, optionally narrowed by a keyword."""
        params: dict[str, Any] = {"location": f"{lat},{lng}", "radius": radius}
        if keyword:
            params["keyword"] = keyword
        data = await self._request("nearbysearch", params)
        return data.get("results", [])

    def photo_url(self, photo_reference: str, max_width: int = 400) -> str:
        """Build a Place Photo URL for a photo reference."""
        return (
            f"{PLACES_API_BASE}/photo?maxwidth={max_width}"
            f"&photo_reference={photo_reference}&key={self._api_key}"
        )

    def photo_urls(
        self, photos: Optional[list[dict[str, Any]]], max_photos: int, max_width: int
    ) -> list[str]:
        """Photo URLs for the first ``max_photos`` photo references."""
        urls = []
        for photo in (photos or [])[:max_photos]:
            reference = photo.get("photo_reference")
            if reference:
                urls.append(self.photo_url(reference, max_width))
        return urls

    async def photo_urls_for_place(
        self, place_id: str, max_photos: int = 3, max_width: int = 400
    ) -> list[str]:
        """Photo URLs from a details lookup. Failures return an empty list."""
        try:
            details = await self.place_details(place_id, ["photos"])
        except IntegrationError as e:
            logger.warning("place_photos_fetch_failed", place_id=place_id, error=str(e))
            return []
        return self.photo_urls(details.get("photos"), max_photos, max_width)

    async def details_many(
        self, place_ids: list[str], fields: Optional[list[str]] = None
    ) -> list[Optional[dict[str, Any]]]:
        """Fetch details concurrently. Failed lookups come back as None."""

        async def _one(place_id: str) -> Optional[dict[str, Any]]:
            try:
                return await self.place_details(place_id, fields)
            except IntegrationError as e:
                logger.warning("place_details_failed", place_id=place_id, error=str(e))
                return None

        return await asyncio.gather(*(_one(pid) for pid in place_ids))


def place_coordinates(place: dict[str, Any]) -> tuple[Optional[float], Optional[float]]:
    """Extract ``(lat, lng)`` from a Places result's geometry."""
    location = (place.get("geometry") or {}).get("location") or {}
    return location.get("lat"), location.get("lng")
