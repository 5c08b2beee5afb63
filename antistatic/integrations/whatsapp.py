"""WhatsApp Cloud API client (template messages only)."""

from typing import Any, Optional

import httpx
import structlog

from antistatic.config.settings import get_settings
from antistatic.core.exceptions import ConfigurationError, IntegrationError

logger = structlog.get_logger(__name__)

SERVICE = "whatsapp"

GRAPH_BASE = "https://graph.facebook.com"

REVIEW_TEMPLATE = "review_temp_1"
TEMPLATE_LANGUAGE = "en"


def build_review_template(
    to: str,
    header_image_url: str,
    customer_name: str,
    business_name: str,
    business_phone: str,
    place_id: str,
) -> dict[str, Any]:
    """Message payload for the review request template.

    The body takes customer name, business name and phone in that order; the
    URL button's dynamic suffix is the place id of the Google review link.
    """
    return {
        "messaging_product": "whatsapp",
        "to": to,
        "type": "template",
        "template": {
            "name": REVIEW_TEMPLATE,
            "language": {"code": TEMPLATE_LANGUAGE},
            "components": [
                {
                    "type": "header",
                    "parameters": [{"type": "image", "image": {"link": header_image_url}}],
                },
                {
                    "type": "body",
                    "parameters": [
                        {"type": "text", "text": customer_name},
                        {"type": "text", "text": business_name},
                        {"type": "text", "text": business_phone},
                    ],
                },
                {
                    "type": "button",
                    "sub_type": "url",
                    "index": "0",
                    "parameters": [{"type": "text", "text": place_id}],
                },
            ],
        },
    }


class WhatsAppClient:
    """Sends messages from the configured business phone number.

    Example:
        async with WhatsAppClient() as wa:
            message_id = await wa.send(build_review_template(...))
    """

    def __init__(
        self,
        phone_number_id: Optional[str] = None,
        access_token: Optional[str] = None,
        graph_version: Optional[str] = None,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.phone_number_id = phone_number_id or settings.whatsapp_phone_number_id
        if access_token is None and settings.whatsapp_access_token:
            access_token = settings.whatsapp_access_token.get_secret_value()
        self._access_token = access_token
        self.graph_version = graph_version or settings.whatsapp_graph_version
        if not self.phone_number_id or not self._access_token:
            raise ConfigurationError(
                "WhatsApp service not configured", "whatsapp_phone_number_id"
            )
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "WhatsAppClient":
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

    @property
    def messages_url(self) -> str:
        return f"{GRAPH_BASE}/{self.graph_version}/{self.phone_number_id}/messages"

    async def send(self, payload: dict[str, Any]) -> Optional[str]:
        """POST a message. Returns the Meta message id.

        Raises:
            IntegrationError: Graph rejected the message; ``status_code`` is
                the Graph HTTP status.
        """
        if self._client is None:
            raise RuntimeError("WhatsAppClient must be used as an async context manager")

        response = await self._client.post(self.messages_url, json=payload)
        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 400:
            error = data.get("error") if isinstance(data, dict) else None
            message = (error or {}).get("message") or "Failed to send WhatsApp message"
            logger.warning("whatsapp_send_failed", status_code=response.status_code, error=message)
            raise IntegrationError(SERVICE, message, status_code=response.status_code)

        messages = data.get("messages") or [{}]
        return messages[0].get("id")
