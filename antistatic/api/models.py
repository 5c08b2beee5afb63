"""Pydantic models for API requests and responses.

Request bodies use the web app's camelCase field names; handlers read them
through the snake_case attributes.
"""

from datetime import datetime
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from antistatic.services.reply_generator import ReplyLength, ReplyTone


class CamelModel(BaseModel):
    """Accepts camelCase JSON and snake_case attribute names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Enums and Types
# =============================================================================

Platform = Literal["instagram", "facebook", "google_business", "linkedin", "tiktok"]
PostStatus = Literal["draft", "scheduled", "published", "failed"]


# =============================================================================
# Onboarding Models
# =============================================================================


class BusinessLocationCreate(CamelModel):
    """Select a business from Places autocomplete."""

    place_id: str = Field(..., min_length=1, description="Google Places id")


class EnabledToolsUpdate(CamelModel):
    enabled_tools: list[str] = Field(..., description="Module keys to enable")


class PrescriptionsRequest(CamelModel):
    """Free-form channel analysis output to scan for recommended modules."""

    payload: Any = Field(..., description="Analysis JSON (object or list)")


# =============================================================================
# Competitor Models
# =============================================================================


class SearchTermCreate(CamelModel):
    business_location_id: UUID
    term: str = Field(..., min_length=1, max_length=120)


class RankingsRefreshRequest(CamelModel):
    business_location_id: UUID
    search_term_id: UUID


class SearchTermSyncRequest(CamelModel):
    business_location_id: UUID


# =============================================================================
# Reputation Models
# =============================================================================


class ReviewSyncRequest(CamelModel):
    business_location_id: UUID


class ReviewReplyRequest(CamelModel):
    """Create or update the owner reply on a Google review."""

    business_location_id: UUID
    review_id: Optional[str] = None
    review_name: Optional[str] = Field(
        None, description="accounts/{a}/locations/{l}/reviews/{r}"
    )
    comment: str = ""


class ReviewReplyDelete(CamelModel):
    business_location_id: UUID
    review_id: Optional[str] = None
    review_name: Optional[str] = None


class ReviewInput(CamelModel):
    review_id: Optional[str] = None
    author_name: Optional[str] = None
    rating: Optional[int] = Field(None, ge=1, le=5)
    text: str = Field(..., min_length=1)
    created_at: Optional[str] = None
    platform: Optional[str] = None


class GenerateReplyRequest(CamelModel):
    location_id: UUID
    review: ReviewInput
    tone: ReplyTone = ReplyTone.WARM
    length: ReplyLength = ReplyLength.MEDIUM


class ReviewRequestMessage(CamelModel):
    """Render email or SMS review request copy for a customer."""

    business_location_id: UUID
    customer_name: str = Field(..., min_length=1, max_length=100)
    channel: Literal["email", "sms"] = "email"
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None


class WhatsAppReviewRequest(CamelModel):
    """Send the WhatsApp review template to a South African number."""

    to: str = Field(..., pattern=r"^\+27\d{9,10}$", description="E.164 number, +27...")
    customer_name: str = Field(..., min_length=1)
    header_image_url: AnyHttpUrl
    business_location_id: UUID
    business_name: Optional[str] = None
    business_phone: Optional[str] = None


# =============================================================================
# Instagram Models
# =============================================================================


class CommentReplyRequest(CamelModel):
    business_location_id: UUID
    comment_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1, max_length=2200)


class InstagramLocationRequest(CamelModel):
    business_location_id: UUID


class InboxMarkReadRequest(CamelModel):
    business_location_id: UUID
    conversation_id: str = Field(..., min_length=1)


class InstagramMessageRequest(CamelModel):
    business_location_id: UUID
    recipient_id: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1, max_length=1000)

    @field_validator("text")
    @classmethod
    def text_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("text cannot be empty")
        return value


# =============================================================================
# Social Studio Models
# =============================================================================


class PostCreate(CamelModel):
    business_location_id: UUID
    platforms: list[Platform] = Field(..., min_length=1)
    platform: Optional[str] = None
    topic: Optional[str] = None
    caption: Optional[str] = None
    media: list[Any] = Field(default_factory=list)
    media_url: Optional[str] = None
    cta: Optional[dict[str, Any]] = None
    link_url: Optional[str] = None
    utm: Optional[dict[str, Any]] = None
    scheduled_at: Optional[datetime] = None
    status: Optional[PostStatus] = None
    published_at: Optional[datetime] = None
    platform_meta: Optional[dict[str, Any]] = None


class PostUpdate(CamelModel):
    scheduled_at: Optional[datetime] = None
    status: Optional[PostStatus] = None
    platforms: Optional[list[Platform]] = None
    topic: Optional[str] = None
    caption: Optional[str] = None
    media: Optional[list[Any]] = None
    link_url: Optional[str] = None
    utm: Optional[dict[str, Any]] = None


class GenerateCaptionRequest(CamelModel):
    business_location_id: UUID
    platform: Optional[Platform] = None
    topic: str = Field(..., min_length=1)
    include_emojis: bool = True
    include_hashtags: bool = True
    include_image_suggestions: bool = False


# =============================================================================
# Health Check Models
# =============================================================================


class HealthStatus(BaseModel):
    """Individual service health status."""

    status: Literal["healthy", "unhealthy", "degraded"] = Field(
        ..., description="Service status"
    )
    latency_ms: Optional[float] = Field(None, description="Response latency in milliseconds")
    message: Optional[str] = Field(None, description="Additional status message")


class HealthCheckResponse(BaseModel):
    """Response model for health check endpoint."""

    status: Literal["healthy", "unhealthy", "degraded"] = Field(
        ..., description="Overall system status"
    )
    version: str = Field(..., description="API version")
    timestamp: datetime = Field(..., description="Check timestamp")
    services: dict[str, HealthStatus] = Field(
        default_factory=dict,
        description="Individual service statuses",
    )
    uptime_seconds: Optional[float] = Field(None, description="Server uptime in seconds")


# =============================================================================
# Error Models
# =============================================================================


class ValidationErrorDetail(BaseModel):
    """Details for validation errors."""

    field: str = Field(..., description="Field that failed validation")
    message: str = Field(..., description="Validation error message")
