"""Instagram Graph API client.

Two layers:

- ``ig_request``: a single Graph call with retries on transient Meta errors
  and a one-time switch to ``graph.facebook.com`` when ``graph.instagram.com``
  answers with ``OAuthException`` code 2. Used by publishing and DM sending,
  where a flaky call is worth retrying.
- ``InstagramGraphClient``: read endpoints (profile, media, comments,
  insights) plus comment replies and direct messages for one connected account.
"""

import asyncio
import json
from typing import Any, Optional

import httpx
import structlog

from antistatic.config.settings import get_settings
from antistatic.core.exceptions import (
    TOKEN_EXPIRED,
    IntegrationError,
    IntegrationPermissionError,
    IntegrationUnavailableError,
    TokenExpiredError,
)
from antistatic.integrations.instagram.tokens import InstagramCredentials, is_token_expired_error

logger = structlog.get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

SERVICE = "instagram"

API_BASE = "https://graph.instagram.com"
API_BASE_FALLBACK = "https://graph.facebook.com"

BACKOFF_DELAYS = [0.5, 1.5, 3.0, 6.0]

INSIGHTS_SCOPE = "instagram_business_manage_insights"
COMMENTS_SCOPE = "instagram_manage_comments"

DEFAULT_INSIGHT_METRICS = [
    "impressions",
    "reach",
    "profile_views",
    "website_clicks",
    "email_contacts",
    "phone_call_clicks",
]

MEDIA_FIELDS = "id,caption,like_count,comments_count,timestamp,media_type,media_url,thumbnail_url,permalink"
COMMENT_FIELDS = "id,text,timestamp,from"
MESSAGE_FIELDS = "id,created_time,from,to,message,attachments"

IMAGE_HINT = "Image must be JPEG format and publicly accessible."
VIDEO_HINT = (
    "Video may not meet Instagram requirements for {media_type}: MP4 (H.264 codec), AAC audio, "
    "max 25 Mbps bitrate, 1080p max resolution, 3-60 seconds duration, aspect ratio 4:5 to 16:9. "
    "Ensure the video URL is publicly accessible and not HDR."
)


# =============================================================================
# Errors
# =============================================================================


class InstagramGraphError(IntegrationError):
    """A Graph call failed after retries.

    Carries the failing ``step``, the Meta error payload (``meta``), an optional
    remediation ``hint`` and the request with the token redacted.
    """

    def __init__(
        self,
        step: str,
        message: str,
        *,
        meta: Optional[dict[str, Any]] = None,
        hint: Optional[str] = None,
        request: Optional[dict[str, str]] = None,
        status_code: Optional[int] = None,
    ):
        self.step = step
        self.meta = meta or {}
        self.hint = hint
        self.request = request or {}
        expired = is_token_expired_error(self.meta)
        super().__init__(
            SERVICE,
            message,
            {"step": step, "meta": self.meta},
            code=TOKEN_EXPIRED if expired else None,
            status_code=401 if expired else status_code,
        )

    def to_response(self) -> dict[str, Any]:
        body = super().to_response()
        body["step"] = self.step
        if self.hint:
            body["hint"] = self.hint
        if self.meta:
            body["meta"] = self.meta
        return body


def _meta_error(payload: dict[str, Any], http_status: int) -> dict[str, Any]:
    error = payload.get("error") if isinstance(payload.get("error"), dict) else {}
    code = error.get("code") or http_status
    subcode = error.get("error_subcode")
    return {
        "message": error.get("message") or "Unknown error",
        "type": error.get("type") or "APIError",
        "code": code,
        "error_subcode": subcode,
        "fbtrace_id": error.get("fbtrace_id"),
        "is_transient": (
            code in (1, 2)
            or (code == 190 and subcode != 463)
            or http_status >= 500
        ),
    }


def _redact(url: str, token: str) -> str:
    return url.replace(token, "REDACTED") if token else url


def _hint_for(step: str, meta: dict[str, Any], data: Optional[dict[str, Any]]) -> Optional[str]:
    if meta.get("code") != 100 or step != "create_container" or not data:
        return None
    if data.get("video_url"):
        return VIDEO_HINT.format(media_type=data.get("media_type") or "REELS")
    if data.get("image_url"):
        return IMAGE_HINT
    return None


async def ig_request(
    client: httpx.AsyncClient,
    step: str,
    method: str,
    path: str,
    access_token: str,
    *,
    params: Optional[dict[str, Any]] = None,
    data: Optional[dict[str, Any]] = None,
    retries: int = 4,
    version: Optional[str] = None,
    use_fallback_host: bool = False,
) -> dict[str, Any]:
    """Make one Graph API call with retry and host fallback.

    POST bodies are form-encoded with the token in the body; other calls carry
    the token as a query parameter.

    Raises:
        InstagramGraphError: Non-transient failure or retries exhausted.
    """
    version = version or get_settings().instagram_publish_graph_version
    base = API_BASE_FALLBACK if use_fallback_host else API_BASE
    url = f"{base}/{version}/{path}"

    form: Optional[dict[str, str]] = None
    query: dict[str, Any] = dict(params or {})
    if method.upper() == "POST" and data:
        form = {"access_token": access_token}
        form.update({key: str(value) for key, value in data.items() if value is not None})
    else:
        query["access_token"] = access_token

    request_info = {"method": method.upper(), "url": _redact(url, access_token)}

    for attempt in range(retries + 1):
        try:
            response = await client.request(method.upper(), url, params=query, data=form)
        except httpx.RequestError as e:
            if attempt < retries:
                delay = BACKOFF_DELAYS[min(attempt, len(BACKOFF_DELAYS) - 1)]
                logger.warning("instagram_request_retry", step=step, attempt=attempt + 1, delay=delay, error=str(e))
                await asyncio.sleep(delay)
                continue
            raise InstagramGraphError(step, f"Network error: {e}", request=request_info, status_code=503)

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.status_code < 400 and not (isinstance(payload, dict) and "error" in payload):
            if use_fallback_host:
                logger.info("instagram_fallback_host_succeeded", step=step)
            return payload

        meta = _meta_error(payload if isinstance(payload, dict) else {}, response.status_code)

        if meta["code"] == 2 and not use_fallback_host and attempt == 0:
            logger.warning("instagram_switching_to_fallback_host", step=step, fallback=API_BASE_FALLBACK)
            return await ig_request(
                client,
                step,
                method,
                path,
                access_token,
                params=params,
                data=data,
                retries=retries,
                version=version,
                use_fallback_host=True,
            )

        if attempt < retries and meta["is_transient"]:
            delay = BACKOFF_DELAYS[min(attempt, len(BACKOFF_DELAYS) - 1)]
            logger.warning(
                "instagram_request_retry",
                step=step,
                attempt=attempt + 1,
                delay=delay,
                code=meta["code"],
                error=meta["message"],
            )
            await asyncio.sleep(delay)
            continue

        logger.error("instagram_request_failed", step=step, code=meta["code"], error=meta["message"])
        raise InstagramGraphError(
            step,
            meta["message"],
            meta=meta,
            hint=_hint_for(step, meta, data),
            request=request_info,
            status_code=response.status_code if response.status_code >= 400 else 400,
        )

    raise InstagramGraphError(step, "Max retries exceeded", request=request_info)


# =============================================================================
# Client
# =============================================================================


class InstagramGraphClient:
    """Graph API client bound to one connected Instagram professional account.

    Example:
        creds = await get_instagram_access_token(supabase, location_id)
        async with InstagramGraphClient(creds) as ig:
            media = await ig.list_media(limit=10)
    """

    def __init__(
        self,
        credentials: InstagramCredentials,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.credentials = credentials
        self._version = get_settings().instagram_graph_version
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "InstagramGraphClient":
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
        return self._client

    @property
    def http(self) -> Optional[httpx.AsyncClient]:
        return self._client

    def has_scope(self, scope: str) -> bool:
        return any(scope in granted for granted in self.credentials.scopes)

    async def _get(self, path: str, params: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        client = await self._ensure_client()
        query = {key: value for key, value in (params or {}).items() if value is not None}
        query["access_token"] = self.credentials.access_token
        url = f"{API_BASE}/{self._version}/{path}"

        try:
            response = await client.get(url, params=query)
        except httpx.TimeoutException:
            logger.warning("instagram_request_timeout", path=path)
            raise IntegrationUnavailableError(
                SERVICE,
                "Request timeout. Instagram API is taking too long to respond.",
                status_code=504,
            )
        except httpx.RequestError as e:
            raise IntegrationUnavailableError(SERVICE, f"Network error connecting to Instagram API: {e}")

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        error = payload.get("error") if isinstance(payload, dict) else None
        if response.status_code < 400 and not error:
            return payload

        error = error or {}
        logger.warning(
            "instagram_api_error",
            path=path,
            status_code=response.status_code,
            code=error.get("code"),
            error=error.get("message"),
        )
        if is_token_expired_error(error):
            raise TokenExpiredError("Access token has expired. Please reconnect your Instagram account.")
        raise IntegrationError(
            SERVICE,
            error.get("message") or f"Instagram API error {response.status_code}",
            {"code": error.get("code"), "path": path},
            status_code=response.status_code if response.status_code >= 400 else 400,
        )

    # -------------------------------------------------------------------------
    # Read endpoints
    # -------------------------------------------------------------------------

    async def me(self, fields: str = "id,username") -> dict[str, Any]:
        return await self._get("me", {"fields": fields})

    async def list_media(
        self,
        limit: int = 25,
        after: Optional[str] = None,
        since: Optional[str] = None,
        until: Optional[str] = None,
    ) -> dict[str, Any]:
        data = await self._get(
            "me/media",
            {"fields": MEDIA_FIELDS, "limit": limit, "after": after, "since": since, "until": until},
        )
        return {"data": data.get("data", []), "paging": data.get("paging")}

    async def list_comments(
        self, media_id: str, limit: int = 25, after: Optional[str] = None
    ) -> dict[str, Any]:
        data = await self._get(
            f"{media_id}/comments", {"fields": COMMENT_FIELDS, "limit": limit, "after": after}
        )
        return {"data": data.get("data", []), "paging": data.get("paging")}

    async def list_media_with_comments_page(
        self,
        limit_media: int = 10,
        limit_comments: int = 25,
        limit_replies: int = 10,
        after: Optional[str] = None,
    ) -> dict[str, Any]:
        """Media with nested comments and replies in one call (field expansion)."""
        comment_fields = (
            f"id,text,timestamp,from{{id,username}},"
            f"replies.limit({limit_replies}){{id,text,timestamp,from{{id,username}}}}"
        )
        fields = (
            "id,caption,media_type,media_url,thumbnail_url,permalink,timestamp,comments_count,"
            f"comments.limit({limit_comments}){{{comment_fields}}}"
        )
        data = await self._get("me/media", {"fields": fields, "limit": limit_media, "after": after})
        return {"media": data.get("data", []), "paging": data.get("paging")}

    async def list_conversations(
        self, limit: int = 25, messages_per_conversation: int = 20
    ) -> list[dict[str, Any]]:
        """DM conversations with their most recent messages (field expansion)."""
        fields = (
            "id,updated_time,participants,"
            f"messages.limit({messages_per_conversation}){{{MESSAGE_FIELDS}}}"
        )
        data = await self._get(
            "me/conversations", {"platform": "instagram", "fields": fields, "limit": limit}
        )
        return data.get("data", [])

    async def get_insights(
        self,
        metrics: Optional[list[str]] = None,
        since: Optional[str] = None,
        until: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        if not self.has_scope(INSIGHTS_SCOPE):
            raise IntegrationPermissionError(
                SERVICE, "insights permission not granted", required_permission=INSIGHTS_SCOPE
            )
        data = await self._get(
            "me/insights",
            {
                "metric": ",".join(metrics or DEFAULT_INSIGHT_METRICS),
                "period": "day",
                "since": since,
                "until": until,
            },
        )
        return data.get("data", [])

    # -------------------------------------------------------------------------
    # Write endpoints
    # -------------------------------------------------------------------------

    async def reply_to_comment(self, comment_id: str, message: str) -> dict[str, Any]:
        """Post a public reply under a comment."""
        client = await self._ensure_client()
        url = f"{API_BASE}/{self._version}/{comment_id}/replies"
        response = await client.post(
            url,
            data={"message": message, "access_token": self.credentials.access_token},
        )

        try:
            payload = response.json()
        except ValueError:
            raise IntegrationError(
                SERVICE,
                f"Unexpected response from Instagram API: {response.text[:200]}",
                status_code=response.status_code if response.status_code >= 400 else 502,
            )

        if response.status_code < 400:
            return {"success": True, "id": payload.get("id")}

        error = payload.get("error") or {}
        if is_token_expired_error(error):
            raise TokenExpiredError("Access token has expired. Please reconnect your Instagram account.")
        if error.get("code") == 10 or error.get("type") == "OAuthException" or response.status_code == 403:
            required = (
                COMMENTS_SCOPE
                if "comment" in (error.get("message") or "")
                else "instagram_business_manage_comments"
            )
            raise IntegrationPermissionError(
                SERVICE,
                error.get("message") or f"Permission denied: {required} required",
                required_permission=required,
            )
        raise IntegrationError(
            SERVICE,
            error.get("message") or "Failed to reply to comment",
            status_code=response.status_code,
        )

    async def send_message(self, recipient_id: str, text: str, retries: int = 3) -> dict[str, Any]:
        """Send a DM to an IGSID. Retries transient failures with host fallback."""
        client = await self._ensure_client()
        try:
            return await ig_request(
                client,
                "send_message",
                "POST",
                f"{self.credentials.ig_account_id}/messages",
                self.credentials.access_token,
                data={
                    "recipient": json.dumps({"id": recipient_id}),
                    "message": json.dumps({"text": text}),
                },
                retries=retries,
                version=self._version,
            )
        except InstagramGraphError as e:
            if e.meta.get("code") in (10, 200) or e.status_code == 403:
                raise IntegrationPermissionError(
                    SERVICE,
                    e.meta.get("message") or "Permission denied",
                    required_permission="instagram_business_manage_messages",
                )
            raise
