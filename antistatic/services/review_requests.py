"""
Review Request System.

Asks customers for a Google review after a visit. WhatsApp requests go out
through the Cloud API template ``review_temp_1`` and are tracked in
``review_requests``; email and SMS copy is rendered from Jinja2 templates
for the business to send itself.

Standalone usage:
    from antistatic.services.review_requests import ReviewRequestGenerator, ReviewRequestInput

    generator = ReviewRequestGenerator()
    req = ReviewRequestInput(
        customer_name="Sarah",
        business_name="Bean There Coffee",
        business_type="cafe",
        google_place_id="ChIJ...",
    )
    email = generator.generate_email_request(req)
    sms   = generator.generate_sms_request(req)
"""

from enum import Enum
from pathlib import Path
from typing import Any, Optional

import httpx
import structlog
from jinja2 import Environment, FileSystemLoader, select_autoescape
from pydantic import BaseModel, Field
from supabase import Client

from antistatic.config.settings import get_settings
from antistatic.core.db import utc_now_iso
from antistatic.core.exceptions import IntegrationError, ValidationFailedError
from antistatic.integrations.whatsapp import REVIEW_TEMPLATE, WhatsAppClient, build_review_template

logger = structlog.get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

GOOGLE_REVIEW_BASE = "https://search.google.com/local/writereview?placeid="

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"

SMS_MAX_LENGTH = 160

LIST_LIMIT = 50


# =============================================================================
# Models
# =============================================================================


class RequestChannel(str, Enum):
    """Delivery channel for a review request."""
    WHATSAPP = "whatsapp"
    EMAIL = "email"
    SMS = "sms"


class RequestStatus(str, Enum):
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"


class ReviewRequestInput(BaseModel):
    """Input data for generating a review request."""
    customer_name: str = Field(..., description="Customer's first name")
    business_name: str = Field(..., description="Name of the business")
    business_type: str = Field("", description="Type of business, e.g. 'cafe'")
    google_place_id: str = Field(..., description="Google Places ID for the review link")
    customer_email: Optional[str] = Field(None, description="Customer email address")
    customer_phone: Optional[str] = Field(None, description="Customer phone number")


class GeneratedRequest(BaseModel):
    """A generated review request message."""
    subject: Optional[str] = Field(None, description="Email subject line (None for SMS)")
    body: str = Field(..., description="Message body (HTML for email, plain text for SMS)")
    channel: RequestChannel
    review_url: str


class WhatsAppRequestInput(BaseModel):
    """A WhatsApp review request for one customer."""
    to: str
    customer_name: str
    header_image_url: str
    business_name: Optional[str] = None
    business_phone: Optional[str] = None


# =============================================================================
# Helpers
# =============================================================================


def build_google_review_url(place_id: str) -> str:
    """Construct a direct Google review URL from a Google Place ID.

    Args:
        place_id: The Google Places identifier (e.g. 'ChIJN1t_tDeuEmsRUsoyG83frY4').

    Returns:
        Full URL that opens the Google review form for the business.
    """
    return f"{GOOGLE_REVIEW_BASE}{place_id}"


def is_allowed_header_image(url: str, supabase_url: str) -> bool:
    """Header images must be https and, with a Supabase project configured,
    a public object in that project's storage."""
    if not url.startswith("https://"):
        return False
    if not supabase_url:
        return True
    return url.startswith(f"{supabase_url.rstrip('/')}/storage/v1/object/public/")


# =============================================================================
# Tone Copy
# =============================================================================

# Copy fragments shared by both templates.
# Keys: greeting, opening_line, ask_line, closing_line, sign_off, header_colour

_TONE_COPY = {
    "friendly": {
        "greeting": "Hi",
        "opening_line": "We hope you had a great experience with us!",
        "ask_line": "We'd really appreciate it if you could leave us a quick review. It helps other locals find us.",
        "closing_line": "Thanks so much, it means the world to us!",
        "sign_off": "Cheers,",
        "header_colour": "#4CAF50",
    },
    "warm": {
        "greeting": "Hello",
        "opening_line": "Thank you for choosing us. We hope you enjoyed your visit!",
        "ask_line": "If you have a moment, we'd love to hear how your experience was.",
        "closing_line": "Your feedback genuinely helps us improve and lets others know what to expect.",
        "sign_off": "With thanks,",
        "header_colour": "#E67E22",
    },
    "professional": {
        "greeting": "Dear",
        "opening_line": "Thank you for your recent visit. We trust everything met your expectations.",
        "ask_line": "We would be grateful if you could take a moment to share your experience.",
        "closing_line": "Your feedback is invaluable in helping us maintain the highest standards.",
        "sign_off": "Kind regards,",
        "header_colour": "#2C3E50",
    },
    "casual": {
        "greeting": "Hey",
        "opening_line": "Great to see you recently, hope you had a good time!",
        "ask_line": "Fancy leaving us a quick review? It really helps us out.",
        "closing_line": "We appreciate it!",
        "sign_off": "See you soon,",
        "header_colour": "#3498DB",
    },
}

# Business-type keywords to tone keys
_TONE_MAP: dict[str, str] = {
    "salon": "friendly",
    "spa": "friendly",
    "pet": "friendly",
    "plumber": "friendly",
    "electrician": "friendly",
    "cafe": "warm",
    "coffee": "warm",
    "restaurant": "warm",
    "bakery": "warm",
    "bar": "casual",
    "pub": "casual",
    "gym": "casual",
    "fitness": "casual",
    "accountant": "professional",
    "attorney": "professional",
    "lawyer": "professional",
    "dentist": "professional",
    "clinic": "professional",
}

_DEFAULT_TONE = "professional"


def _resolve_tone(business_type: str) -> str:
    """Pick a tone key based on the business type string."""
    bt_lower = business_type.lower()
    for keyword, tone in _TONE_MAP.items():
        if keyword in bt_lower:
            return tone
    return _DEFAULT_TONE


# =============================================================================
# Generator
# =============================================================================


class ReviewRequestGenerator:
    """
    Renders email and SMS review requests from Jinja2 templates.

    No LLM calls; review requests are formulaic.
    """

    def __init__(self) -> None:
        self._env = Environment(
            loader=FileSystemLoader(str(TEMPLATES_DIR)),
            autoescape=select_autoescape(enabled_extensions=["html"]),
        )
        self._email_tpl = self._env.get_template("review_request_email.html")
        self._sms_tpl = self._env.get_template("review_request_sms.txt")

    def generate_email_request(self, req: ReviewRequestInput) -> GeneratedRequest:
        """Generate an HTML email review request."""
        review_url = build_google_review_url(req.google_place_id)
        copy = _TONE_COPY[_resolve_tone(req.business_type)]

        body = self._email_tpl.render(
            customer_name=req.customer_name,
            business_name=req.business_name,
            review_url=review_url,
            **copy,
        )

        return GeneratedRequest(
            subject=f"{req.business_name}: We'd Love Your Feedback!",
            body=body,
            channel=RequestChannel.EMAIL,
            review_url=review_url,
        )

    def generate_sms_request(self, req: ReviewRequestInput) -> GeneratedRequest:
        """Generate a plain-text SMS review request of at most 160 characters.

        Long bodies first fall back to a plain "Hi", then drop the business
        name. The review link is never shortened.
        """
        review_url = build_google_review_url(req.google_place_id)
        copy = _TONE_COPY[_resolve_tone(req.business_type)]

        context = {
            "customer_name": req.customer_name,
            "business_name": req.business_name,
            "review_url": review_url,
            "greeting": copy["greeting"],
            "ask_line": "We'd love a quick review:",
        }
        body = self._sms_tpl.render(**context).strip()

        if len(body) > SMS_MAX_LENGTH:
            context["greeting"] = "Hi"
            body = self._sms_tpl.render(**context).strip()
        if len(body) > SMS_MAX_LENGTH:
            context["business_name"] = ""
            body = self._sms_tpl.render(**context).strip()

        return GeneratedRequest(
            subject=None,
            body=body,
            channel=RequestChannel.SMS,
            review_url=review_url,
        )


# =============================================================================
# Service
# =============================================================================


class ReviewRequestService:
    """Sends and lists review requests for an owned business location."""

    def __init__(
        self,
        supabase: Client,
        user_id: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.supabase = supabase
        self.user_id = user_id
        self.transport = transport

    def list_review_requests(self, location_id: str) -> list[dict[str, Any]]:
        result = (
            self.supabase.table("review_requests")
            .select("*")
            .eq("business_location_id", location_id)
            .order("created_at", desc=True)
            .limit(LIST_LIMIT)
            .execute()
        )
        return result.data or []

    def _update(self, request_id: str, values: dict[str, Any]) -> None:
        self.supabase.table("review_requests").update(
            {**values, "updated_at": utc_now_iso()}
        ).eq("id", request_id).execute()

    async def send_whatsapp(
        self, location: dict[str, Any], req: WhatsAppRequestInput
    ) -> dict[str, Any]:
        """
        Send the review template over WhatsApp.

        The ``review_requests`` row is written as ``sending`` before the
        Graph call and finalised as ``sent`` or ``failed``.

        Raises:
            ValidationFailedError: Bad header image or no Google place id.
            ConfigurationError: WhatsApp credentials are missing.
            IntegrationError: Graph rejected the message (carries its status).
        """
        if not is_allowed_header_image(req.header_image_url, get_settings().supabase_url):
            raise ValidationFailedError("Header image URL must be from Supabase Storage")

        place_id = location.get("place_id")
        if not place_id:
            raise ValidationFailedError("Connect Google Business Profile first to get place ID")

        business_name = (req.business_name or "").strip() or location.get("name") or "Business"
        business_phone = (req.business_phone or "").strip() or location.get("phone_number") or ""

        payload = build_review_template(
            to=req.to,
            header_image_url=req.header_image_url,
            customer_name=req.customer_name,
            business_name=business_name,
            business_phone=business_phone,
            place_id=place_id,
        )

        # Constructing the client validates credentials before any row is written
        client = WhatsAppClient(transport=self.transport)

        inserted = (
            self.supabase.table("review_requests")
            .insert(
                {
                    "org_id": self.user_id,
                    "business_location_id": location["id"],
                    "channel": RequestChannel.WHATSAPP.value,
                    "to_recipient": req.to,
                    "customer_name": req.customer_name,
                    "template_name": REVIEW_TEMPLATE,
                    "header_image_url": req.header_image_url,
                    "place_id": place_id,
                    "status": RequestStatus.SENDING.value,
                }
            )
            .execute()
        )
        request_id = inserted.data[0]["id"]

        try:
            async with client:
                message_id = await client.send(payload)
        except IntegrationError as e:
            self._update(request_id, {"status": RequestStatus.FAILED.value, "error": e.message})
            logger.warning(
                "review_request_failed",
                request_id=request_id,
                location_id=location["id"],
                status_code=e.status_code,
            )
            raise

        self._update(
            request_id, {"status": RequestStatus.SENT.value, "meta_message_id": message_id}
        )
        logger.info(
            "review_request_sent",
            request_id=request_id,
            location_id=location["id"],
            channel=RequestChannel.WHATSAPP.value,
        )
        return {"success": True, "messageId": message_id, "status": RequestStatus.SENT.value}


# =============================================================================
# Singleton
# =============================================================================

_generator_instance: Optional[ReviewRequestGenerator] = None


def get_request_generator() -> ReviewRequestGenerator:
    """Get or create the singleton ReviewRequestGenerator."""
    global _generator_instance
    if _generator_instance is None:
        _generator_instance = ReviewRequestGenerator()
    return _generator_instance


def reset_request_generator() -> None:
    """Reset the singleton (for testing)."""
    global _generator_instance
    _generator_instance = None
