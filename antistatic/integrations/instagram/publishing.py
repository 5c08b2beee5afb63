"""Instagram content publishing.

Publishing is a two step Graph flow: create a media container from a public
URL, wait for Instagram to finish ingesting it, then publish the container.
Each step goes through ``ig_request`` so transient Meta errors are retried.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
import structlog

from antistatic.core.exceptions import IntegrationPermissionError
from antistatic.integrations.instagram.graph import InstagramGraphError, ig_request
from antistatic.integrations.instagram.tokens import InstagramCredentials

logger = structlog.get_logger(__name__)

PUBLISH_SCOPE = "instagram_business_content_publish"
BASIC_SCOPE = "instagram_business_basic"

CONTAINER_POLL_INTERVAL = 2.0
CONTAINER_MAX_WAIT = 10.0

PREFLIGHT_TIMEOUT = 10.0


@dataclass
class PreflightResult:
    ok: bool
    status: int
    content_type: Optional[str]
    content_length: Optional[str]
    final_url: str
    error: Optional[str] = None


@dataclass
class PublishingDiagnostics:
    ig_id_used: str
    token_valid: bool = False
    me_username: Optional[str] = None
    me_account_type: Optional[str] = None
    scopes: list[str] = field(default_factory=list)
    has_publish_permission: bool = False
    has_basic_permission: bool = False
    publishing_limit: Optional[dict[str, Any]] = None


async def preflight_media_url(
    url: str, client: Optional[httpx.AsyncClient] = None
) -> PreflightResult:
    """Check that Meta will be able to fetch a media URL.

    Tries HEAD first and falls back to a ranged GET for hosts rejecting HEAD.
    """
    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=PREFLIGHT_TIMEOUT, follow_redirects=True)
    try:
        response: Optional[httpx.Response] = None
        try:
            response = await client.head(url, follow_redirects=True)
        except httpx.HTTPError:
            response = None
        if response is None or response.status_code != 200:
            try:
                response = await client.get(
                    url, headers={"Range": "bytes=0-4095"}, follow_redirects=True
                )
            except httpx.HTTPError as e:
                return PreflightResult(False, 0, None, None, url, error=str(e) or "Failed to fetch media URL")
    finally:
        if owns_client:
            await client.aclose()

    result = PreflightResult(
        ok=response.status_code in (200, 206),
        status=response.status_code,
        content_type=response.headers.get("content-type"),
        content_length=response.headers.get("content-length"),
        final_url=str(response.url),
    )
    logger.info("instagram_media_preflight", url=url, status=result.status, content_type=result.content_type)
    return result


async def assert_publishing_ready(
    client: httpx.AsyncClient, credentials: InstagramCredentials
) -> PublishingDiagnostics:
    """Verify the token, scopes and account type allow content publishing.

    Raises:
        IntegrationPermissionError: Missing scope or a personal account.
        InstagramGraphError: The token cannot read ``/me``.
    """
    diagnostics = PublishingDiagnostics(ig_id_used=credentials.ig_account_id)

    me = await ig_request(
        client,
        "capability_check",
        "GET",
        "me",
        credentials.access_token,
        params={"fields": "id,username,account_type"},
        retries=1,
    )
    diagnostics.token_valid = True
    diagnostics.me_username = me.get("username")
    diagnostics.me_account_type = me.get("account_type")
    if me.get("id") and me["id"] != credentials.ig_account_id:
        logger.warning("instagram_account_id_mismatch", stored=credentials.ig_account_id, actual=me["id"])
        diagnostics.ig_id_used = me["id"]

    diagnostics.scopes = list(credentials.scopes)
    diagnostics.has_basic_permission = BASIC_SCOPE in diagnostics.scopes
    diagnostics.has_publish_permission = PUBLISH_SCOPE in diagnostics.scopes

    if not diagnostics.has_publish_permission:
        raise IntegrationPermissionError(
            "instagram",
            f"Missing permission {PUBLISH_SCOPE}. Reconnect and approve publish access.",
            required_permission=PUBLISH_SCOPE,
        )
    if not diagnostics.has_basic_permission:
        raise IntegrationPermissionError(
            "instagram", f"Missing permission {BASIC_SCOPE}", required_permission=BASIC_SCOPE
        )
    if diagnostics.me_account_type == "PERSONAL":
        raise IntegrationPermissionError(
            "instagram",
            "Instagram account must be Professional (Business/Creator) to publish.",
        )

    try:
        limit = await ig_request(
            client,
            "capability_check",
            "GET",
            f"{diagnostics.ig_id_used}/content_publishing_limit",
            credentials.access_token,
            params={"fields": "quota_usage,config"},
            retries=0,
        )
    except InstagramGraphError as e:
        logger.warning("instagram_publishing_limit_unavailable", error=e.message)
    else:
        diagnostics.publishing_limit = limit
        usage = (limit.get("data") or [{}])[0]
        quota_total = (usage.get("config") or {}).get("quota_total")
        if quota_total is not None and usage.get("quota_usage", 0) >= quota_total:
            raise IntegrationPermissionError(
                "instagram", "Instagram publishing limit reached for the last 24 hours."
            )

    return diagnostics


async def check_container_status(
    client: httpx.AsyncClient, container_id: str, access_token: str
) -> str:
    data = await ig_request(
        client,
        "check_status",
        "GET",
        container_id,
        access_token,
        params={"fields": "status_code"},
        retries=0,
    )
    return data.get("status_code") or ""


async def wait_for_container(
    client: httpx.AsyncClient,
    container_id: str,
    access_token: str,
    max_wait: float = CONTAINER_MAX_WAIT,
    poll_interval: float = CONTAINER_POLL_INTERVAL,
) -> str:
    """Poll a container until ``FINISHED``; one last check after ``max_wait``.

    Raises:
        InstagramGraphError: The container reached ``ERROR`` or ``EXPIRED``.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + max_wait

    while loop.time() < deadline:
        status = await check_container_status(client, container_id, access_token)
        if status == "FINISHED":
            return status
        if status in ("ERROR", "EXPIRED"):
            raise InstagramGraphError("check_status", f"Container status: {status}")
        await asyncio.sleep(poll_interval)

    return await check_container_status(client, container_id, access_token)


async def publish_image(
    client: httpx.AsyncClient,
    credentials: InstagramCredentials,
    image_url: str,
    caption: Optional[str] = None,
) -> str:
    """Publish a single image post. Returns the new media id."""
    preflight = await preflight_media_url(image_url, client)
    if not preflight.ok:
        raise InstagramGraphError(
            "preflight",
            preflight.error or f"Media URL is not publicly reachable (HTTP {preflight.status})",
            hint="Make sure the image URL is public and returns the file directly.",
            status_code=400,
        )

    diagnostics = await assert_publishing_ready(client, credentials)
    ig_id = diagnostics.ig_id_used

    container = await ig_request(
        client,
        "create_container",
        "POST",
        f"{ig_id}/media",
        credentials.access_token,
        data={"image_url": image_url, "caption": caption or ""},
    )
    container_id = container.get("id")
    if not container_id:
        raise InstagramGraphError("create_container", "No creation ID returned from Instagram API")

    status = await wait_for_container(client, container_id, credentials.access_token)
    if status != "FINISHED":
        logger.warning("instagram_container_not_finished", container_id=container_id, status=status)

    published = await ig_request(
        client,
        "publish",
        "POST",
        f"{ig_id}/media_publish",
        credentials.access_token,
        data={"creation_id": container_id},
    )
    media_id = published.get("id")
    if not media_id:
        raise InstagramGraphError("publish", "No media ID returned from Instagram API")

    logger.info("instagram_media_published", ig_id=ig_id, media_id=media_id)
    return media_id
