"""Google Business Profile API client.

Runs the OAuth connect flow, handles the token stored in
``connected_accounts`` (refreshing it when it is about to expire) and calls
the handful of Business Profile endpoints the review inbox and competitor
terms need: account lookup, paginated review listing,
reply updates and search keyword impressions.

The Business Profile surface is split over several hosts; ``base_url_for``
picks the right one from the endpoint path.
"""

import re
from datetime import date, timedelta
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
import structlog
from supabase import Client

from antistatic.config.settings import Settings, get_settings
from antistatic.core import oauth_state
from antistatic.core.db import first_row, parse_timestamp, utc_now, utc_now_iso
from antistatic.core.exceptions import (
    ConfigurationError,
    IntegrationError,
    IntegrationNotFoundError,
    IntegrationPermissionError,
    IntegrationUnavailableError,
    NotConnectedError,
    TokenExpiredError,
    ValidationFailedError,
)

logger = structlog.get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

SERVICE = "google_business_profile"

GBP_PROVIDER = "google_gbp"

TOKEN_URL = "https://oauth2.googleapis.com/token"

AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

BUSINESS_MANAGE_SCOPE = "https://www.googleapis.com/auth/business.manage"
REQUIRED_SCOPES = ("openid", "email", "profile", BUSINESS_MANAGE_SCOPE)

STATE_TABLE = "gbp_oauth_states"

CALLBACK_ERROR_MESSAGES = {
    "access_denied": "Connection cancelled. Please try again when ready.",
    "invalid_request": "Invalid OAuth request. Please check redirect URI configuration.",
    "redirect_uri_mismatch": "Redirect URI mismatch. Please contact support.",
}

TOKEN_ERROR_MESSAGES = {
    "invalid_grant": "Authorization code expired or already used. Please try connecting again.",
    "invalid_client": "Google OAuth client is misconfigured. Please contact support.",
    "redirect_uri_mismatch": "Redirect URI mismatch. Please contact support.",
}

ACCOUNT_MANAGEMENT_BASE = "https://mybusinessaccountmanagement.googleapis.com/v1"
BUSINESS_INFORMATION_BASE = "https://mybusinessbusinessinformation.googleapis.com/v1"
REVIEWS_BASE = "https://mybusiness.googleapis.com/v4"
PERFORMANCE_BASE = "https://businessprofileperformance.googleapis.com/v1"

PERFORMANCE_MARKERS = ("/fetchMultiDailyMetricsTimeSeries", "/searchkeywords", "/impressions")

EXPIRY_BUFFER = timedelta(minutes=5)
DEFAULT_EXPIRES_IN = 3600

REVIEWS_PAGE_SIZE = 50
SEARCH_KEYWORDS_PAGE_SIZE = 50

LOCATION_READ_MASK = "name,title,storeCode,websiteUri,openInfo,metadata,primaryCategory,categories"

STAR_RATINGS = {"ONE": 1, "TWO": 2, "THREE": 3, "FOUR": 4, "FIVE": 5}

LOCATION_NAME_RE = re.compile(r"^accounts/[^/]+/locations/[^/]+$")
REVIEW_NAME_RE = re.compile(r"^accounts/[^/]+/locations/[^/]+/reviews/[^/]+$")


# =============================================================================
# Token Management
# =============================================================================


def find_connected_account(
    supabase: Client, user_id: str, business_location_id: str
) -> Optional[dict[str, Any]]:
    """The connected GBP account row for a location, if any."""
    result = (
        supabase.table("connected_accounts")
        .select("*")
        .eq("user_id", user_id)
        .eq("business_location_id", business_location_id)
        .eq("provider", GBP_PROVIDER)
        .eq("status", "connected")
        .limit(1)
        .execute()
    )
    return first_row(result)


async def refresh_access_token(
    refresh_token: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> tuple[str, int]:
    """Exchange a refresh token for a new access token.

    Returns:
        ``(access_token, expires_in_seconds)``.
    """
    settings = get_settings()
    if not settings.google_client_id or not settings.google_client_secret:
        raise ConfigurationError("Google OAuth client is not configured", "google_client_id")

    async with httpx.AsyncClient(timeout=15.0, transport=transport) as client:
        response = await client.post(
            TOKEN_URL,
            data={
                "client_id": settings.google_client_id,
                "client_secret": settings.google_client_secret.get_secret_value(),
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
        )

    data = response.json() if response.content else {}
    if response.status_code >= 400:
        reason = data.get("error_description") or data.get("error") or response.status_code
        raise IntegrationError(SERVICE, f"Token refresh failed: {reason}")

    return data["access_token"], int(data.get("expires_in") or DEFAULT_EXPIRES_IN)


async def get_valid_access_token(
    supabase: Client,
    user_id: str,
    business_location_id: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """Return a usable access token, refreshing it within 5 minutes of expiry.

    Raises:
        NotConnectedError: No connected GBP account for the location.
        TokenExpiredError: Expired with no refresh token, or the refresh failed.
    """
    account = find_connected_account(supabase, user_id, business_location_id)
    if not account or not account.get("access_token"):
        raise NotConnectedError(
            "Google Business Profile not connected. Please connect your account first."
        )

    expires_at = parse_timestamp(account.get("expires_at"))
    if expires_at is None or expires_at - utc_now() >= EXPIRY_BUFFER:
        return account["access_token"]

    refresh_token = account.get("refresh_token")
    if not refresh_token:
        raise TokenExpiredError(
            "Access token expired and no refresh token available. Please reconnect."
        )

    try:
        access_token, expires_in = await refresh_access_token(refresh_token, transport)
    except (IntegrationError, httpx.HTTPError, KeyError) as e:
        logger.warning("gbp_token_refresh_failed", location_id=business_location_id, error=str(e))
        raise TokenExpiredError(
            "Failed to refresh access token. Please reconnect your Google Business Profile."
        )

    supabase.table("connected_accounts").update(
        {
            "access_token": access_token,
            "expires_at": (utc_now() + timedelta(seconds=expires_in)).isoformat(),
            "updated_at": utc_now_iso(),
        }
    ).eq("user_id", user_id).eq("business_location_id", business_location_id).eq(
        "provider", GBP_PROVIDER
    ).execute()

    logger.info("gbp_token_refreshed", location_id=business_location_id)
    return access_token


# =============================================================================
# OAuth Connect
# =============================================================================


def _require_oauth_client(settings: Settings) -> tuple[str, str]:
    if not settings.google_client_id or not settings.google_client_secret:
        raise ConfigurationError("Google OAuth client is not configured", "google_client_id")
    return settings.google_client_id, settings.google_client_secret.get_secret_value()


def build_authorize_url(settings: Settings, state: str) -> str:
    client_id, _ = _require_oauth_client(settings)
    params = {
        "client_id": client_id,
        "redirect_uri": settings.gbp_redirect_uri,
        "response_type": "code",
        "scope": " ".join(REQUIRED_SCOPES),
        "access_type": "offline",
        "prompt": "consent",
        "include_granted_scopes": "true",
        "state": state,
    }
    return f"{AUTHORIZE_URL}?{urlencode(params)}"


def start_connect(
    supabase: Client, settings: Settings, user_id: str, business_location_id: str
) -> str:
    """Persist a fresh OAuth state and return the Google consent URL."""
    _require_oauth_client(settings)
    state = oauth_state.create_state(supabase, STATE_TABLE, user_id, business_location_id)
    logger.info("gbp_oauth_started", user_id=user_id, location_id=business_location_id)
    return build_authorize_url(settings, state)


def callback_error_message(error: str) -> str:
    return CALLBACK_ERROR_MESSAGES.get(error, "Failed to connect Google Business Profile.")


def _token_error_message(data: dict[str, Any]) -> str:
    return TOKEN_ERROR_MESSAGES.get(
        data.get("error") or "", "Failed to exchange authorization code for tokens."
    )


async def complete_connect(
    supabase: Client,
    settings: Settings,
    code: str,
    state: str,
    user_id: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict[str, Any]:
    """Exchange the callback code and upsert the ``connected_accounts`` row.

    The refresh token is only written when Google returns one, so a
    reconnect without ``prompt=consent`` keeps the stored token.

    Returns:
        The stored account payload (without tokens).
    """
    client_id, client_secret = _require_oauth_client(settings)
    record = oauth_state.consume_state(supabase, STATE_TABLE, state, user_id)
    owner_id = record["user_id"]
    business_location_id = record["business_location_id"]

    try:
        async with httpx.AsyncClient(timeout=15.0, transport=transport) as client:
            response = await client.post(
                TOKEN_URL,
                data={
                    "code": code,
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "redirect_uri": settings.gbp_redirect_uri,
                    "grant_type": "authorization_code",
                },
            )
            try:
                tokens = response.json() if response.content else {}
            except ValueError:
                tokens = {}
            if response.status_code >= 400 or not tokens.get("access_token"):
                logger.warning(
                    "gbp_token_exchange_failed",
                    status_code=response.status_code,
                    error=tokens.get("error"),
                )
                raise IntegrationError(SERVICE, _token_error_message(tokens), status_code=400)

            scopes = str(tokens.get("scope") or "").split()
            if BUSINESS_MANAGE_SCOPE not in scopes:
                raise IntegrationPermissionError(
                    SERVICE,
                    "Missing business.manage scope. Please grant access to your Business Profile.",
                    required_permission=BUSINESS_MANAGE_SCOPE,
                )

            profile: dict[str, Any] = {}
            userinfo = await client.get(
                USERINFO_URL, headers={"Authorization": f"Bearer {tokens['access_token']}"}
            )
            if userinfo.status_code < 400:
                try:
                    profile = userinfo.json()
                except ValueError:
                    profile = {}
            else:
                logger.warning("gbp_userinfo_failed", status_code=userinfo.status_code)
    except httpx.RequestError as e:
        logger.warning("gbp_token_exchange_unreachable", error=str(e))
        raise IntegrationUnavailableError(SERVICE, "Could not reach Google. Please try again.") from e

    expires_in = int(tokens.get("expires_in") or DEFAULT_EXPIRES_IN)
    payload: dict[str, Any] = {
        "user_id": owner_id,
        "business_location_id": business_location_id,
        "provider": GBP_PROVIDER,
        "provider_account_id": profile.get("id"),
        "display_name": profile.get("name") or profile.get("email"),
        "avatar_url": profile.get("picture"),
        "access_token": tokens["access_token"],
        "expires_at": (utc_now() + timedelta(seconds=expires_in)).isoformat(),
        "scopes": scopes,
        "status": "connected",
        "updated_at": utc_now_iso(),
    }
    if tokens.get("refresh_token"):
        payload["refresh_token"] = tokens["refresh_token"]

    supabase.table("connected_accounts").upsert(
        payload, on_conflict="user_id,business_location_id,provider"
    ).execute()

    logger.info("gbp_connected", user_id=owner_id, location_id=business_location_id)
    return {
        key: value
        for key, value in payload.items()
        if key not in ("access_token", "refresh_token")
    }


# =============================================================================
# Pure Helpers
# =============================================================================


def base_url_for(endpoint: str) -> str:
    """Pick the Business Profile host serving an endpoint."""
    if any(marker in endpoint for marker in PERFORMANCE_MARKERS):
        return PERFORMANCE_BASE
    if "/reviews" in endpoint:
        return REVIEWS_BASE
    if endpoint.rstrip("/") == "/accounts":
        return ACCOUNT_MANAGEMENT_BASE
    return BUSINESS_INFORMATION_BASE


def resolve_account_name(accounts: list[dict[str, Any]]) -> str:
    """Choose the primary account and return its ``accounts/...`` name."""
    if not accounts:
        raise NotConnectedError("No GBP accounts found")

    primary = next(
        (acc for acc in accounts if "accounts/" in (acc.get("accountName") or "")),
        accounts[0],
    )
    name = primary.get("name") or ""
    if not name.startswith("accounts/"):
        raise ValidationFailedError(
            f"Invalid account name format: {name}. Expected format: accounts/123456789"
        )
    return name


def reviews_path(account_name: str, location_name: str) -> str:
    """Reviews collection for a location, whether or not it is account-qualified."""
    if location_name.startswith(account_name):
        return f"{location_name}/reviews"
    return f"{account_name}/{location_name}/reviews"


def star_rating_to_int(star_rating: Optional[str]) -> int:
    return STAR_RATINGS.get((star_rating or "").upper(), 0)


def normalize_review(raw: dict[str, Any]) -> dict[str, Any]:
    """Flatten a Business Profile review into the shape the app uses."""
    reviewer = raw.get("reviewer") or {}
    name = raw.get("name") or ""
    return {
        "reviewId": raw.get("reviewId") or name.rsplit("/", 1)[-1],
        "name": name,
        "rating": star_rating_to_int(raw.get("starRating")),
        "starRating": raw.get("starRating"),
        "comment": raw.get("comment"),
        "reviewerName": reviewer.get("displayName") or "Anonymous",
        "reviewerPhotoUrl": reviewer.get("profilePhotoUrl"),
        "createTime": raw.get("createTime") or "",
        "updateTime": raw.get("updateTime") or raw.get("createTime") or "",
        "reply": raw.get("reviewReply") or raw.get("reply"),
    }


def summarize_reviews(reviews: list[dict[str, Any]]) -> dict[str, Any]:
    """Counts, average and sentiment split for normalized reviews.

    Ratings of 4 and 5 are positive and everything else is negative; the
    neutral bucket is reported for the dashboard but stays empty.
    """
    total = len(reviews)
    if total == 0:
        return {
            "totalReviews": 0,
            "averageRating": 0,
            "positive": 0,
            "neutral": 0,
            "negative": 0,
            "positivePercent": 0,
            "neutralPercent": 0,
            "negativePercent": 0,
        }

    ratings = [review["rating"] for review in reviews]
    positive = sum(1 for rating in ratings if rating >= 4)
    negative = sum(1 for rating in ratings if rating <= 3)

    return {
        "totalReviews": total,
        "averageRating": round(sum(ratings) / total, 1),
        "positive": positive,
        "neutral": 0,
        "negative": negative,
        "positivePercent": round(positive / total * 100, 1),
        "neutralPercent": 0,
        "negativePercent": round(negative / total * 100, 1),
    }


def location_resource(location_name: str) -> str:
    """``accounts/1/locations/2`` or ``locations/2`` -> ``locations/2``."""
    match = re.search(r"(?:^|/)(locations/[^/]+)$", location_name or "")
    if not match:
        raise ValidationFailedError("Invalid location name format")
    return match.group(1)


def extract_search_keywords(data: Any) -> list[str]:
    """Keywords from a ``searchKeywordsCounts`` response (dict or list form)."""
    counts: list[Any] = []
    if isinstance(data, dict):
        counts = data.get("searchKeywordsCounts") or []
    elif isinstance(data, list):
        for item in data:
            if isinstance(item, dict):
                counts.extend(item.get("searchKeywordsCounts") or [])
    keywords = []
    for entry in counts:
        keyword = entry.get("searchKeyword") if isinstance(entry, dict) else None
        if keyword:
            keywords.append(str(keyword))
    return keywords


def normalize_search_terms(keywords: list[str]) -> list[str]:
    """Trim, dedupe case-insensitively and capitalize the first letter."""
    terms: list[str] = []
    seen: set[str] = set()
    for keyword in keywords:
        key = keyword.strip().lower()
        if not key or key in seen:
            continue
        seen.add(key)
        terms.append(key[0].upper() + key[1:])
    return terms


def build_review_name(location_name: Optional[str], review_id: Optional[str]) -> Optional[str]:
    """``{location}/reviews/{id}`` when the stored location name is fully qualified."""
    if not location_name or not review_id or not LOCATION_NAME_RE.match(location_name):
        return None
    return f"{location_name}/reviews/{review_id.rsplit('/', 1)[-1]}"


def is_valid_review_name(review_name: Optional[str]) -> bool:
    return bool(review_name and REVIEW_NAME_RE.match(review_name))


# =============================================================================
# API Client
# =============================================================================


class GBPClient:
    """Authenticated Business Profile API client.

    Example:
        token = await get_valid_access_token(supabase, user_id, location_id)
        async with GBPClient(token) as gbp:
            account = resolve_account_name(await gbp.list_accounts())
            reviews = await gbp.list_reviews(account, "locations/123")
    """

    def __init__(
        self,
        access_token: str,
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._access_token = access_token
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "GBPClient":
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout),
            transport=self._transport,
            headers={"Authorization": f"Bearer {self._access_token}"},
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json_data: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Call an endpoint (path starting with ``/``) on the right host."""
        if self._client is None:
            raise RuntimeError("GBPClient must be used as an async context manager")

        url = f"{base_url_for(endpoint)}{endpoint}"
        response = await self._client.request(method, url, params=params, json=json_data)

        if response.status_code < 400:
            return response.json() if response.content else {}

        try:
            body = response.json()
        except ValueError:
            body = {}
        error = body.get("error") if isinstance(body, dict) else None
        message = error.get("message") if isinstance(error, dict) else None
        message = message or f"GBP API error {response.status_code}"

        logger.warning(
            "gbp_api_error",
            method=method,
            endpoint=endpoint,
            status_code=response.status_code,
            error=message,
        )

        if response.status_code == 401:
            raise TokenExpiredError("Google authorization expired. Please reconnect your Google Business Profile.")
        if response.status_code == 403:
            raise IntegrationPermissionError(SERVICE, message)
        if response.status_code == 404:
            raise IntegrationNotFoundError(SERVICE, message)
        raise IntegrationError(SERVICE, message, {"status_code": response.status_code})

    async def list_accounts(self) -> list[dict[str, Any]]:
        data = await self.request("GET", "/accounts")
        return data.get("accounts", [])

    async def list_reviews(
        self, account_name: str, location_name: str, max_pages: int = 20
    ) -> list[dict[str, Any]]:
        """All reviews of a location, following ``nextPageToken``."""
        endpoint = f"/{reviews_path(account_name, location_name)}"
        reviews: list[dict[str, Any]] = []
        page_token: Optional[str] = None

        for _ in range(max_pages):
            params: dict[str, Any] = {"pageSize": REVIEWS_PAGE_SIZE}
            if page_token:
                params["pageToken"] = page_token
            data = await self.request("GET", endpoint, params=params)
            reviews.extend(data.get("reviews", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                break

        return reviews

    async def list_locations(self, account_name: str) -> list[dict[str, Any]]:
        data = await self.request(
            "GET",
            f"/{account_name}/locations",
            params={"readMask": LOCATION_READ_MASK},
        )
        return data.get("locations", [])

    async def update_reply(self, review_name: str, comment: str) -> dict[str, Any]:
        """Create or replace the owner reply on a review."""
        return await self.request("PUT", f"/{review_name}/reply", json_data={"comment": comment})

    async def delete_reply(self, review_name: str) -> None:
        await self.request("DELETE", f"/{review_name}/reply")

    async def search_keywords(self, location_name: str) -> list[dict[str, Any]]:
        """Monthly search keyword impressions for ``locations/{id}``.

        The range covers the previous month through the current one.
        """
        today = date.today()
        start = date(today.year, today.month, 1) - timedelta(days=1)
        data = await self.request(
            "GET",
            f"/{location_name}/searchkeywords/impressions/monthly",
            params={
                "monthlyRange.start_month.year": start.year,
                "monthlyRange.start_month.month": start.month,
                "monthlyRange.end_month.year": today.year,
                "monthlyRange.end_month.month": today.month,
                "pageSize": SEARCH_KEYWORDS_PAGE_SIZE,
            },
        )
        return extract_search_keywords(data)
