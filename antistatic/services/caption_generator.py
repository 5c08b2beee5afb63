"""
Social Caption Generator.

Drafts a platform-aware social media caption for a local business, grounded
in its business context and recent positive reviews. The model is asked for
a JSON object which is validated and trimmed before it reaches the composer.
"""

import json
from typing import Any, Optional

import structlog
from pydantic import BaseModel, Field
from supabase import Client

from antistatic.integrations.openai_chat import ChatService
from antistatic.services.business_context import BusinessContext

logger = structlog.get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

PLATFORM_GUIDANCE: dict[str, str] = {
    "instagram": (
        "Write for Instagram: use line breaks, emojis are common, hashtags are important, "
        "keep it engaging and visual. Max ~2200 characters."
    ),
    "facebook": (
        "Write for Facebook: conversational, can be longer, emojis optional, hashtags less "
        "common. Max ~5000 characters."
    ),
    "google_business": (
        "Write for Google Business Profile: professional, concise, focus on local relevance. "
        "Max ~1500 characters."
    ),
    "linkedin": (
        "Write for LinkedIn: professional tone, industry-focused, no emojis unless very "
        "sparing. Max ~3000 characters."
    ),
    "tiktok": (
        "Write for TikTok: short, punchy, trending language, emojis encouraged. "
        "Max ~300 characters."
    ),
}

GENERIC_GUIDANCE = "Write for social media (adaptable to multiple platforms)."

CTA_TYPES = ("call", "whatsapp", "book", "visit", "directions", "website", "none")

MAX_HASHTAGS = 10
MAX_IMAGE_SUGGESTIONS = 3
MAX_HIGHLIGHTS = 3
HIGHLIGHT_LENGTH = 150
MAX_COMPLETION_TOKENS = 2000


# =============================================================================
# Models
# =============================================================================


class CaptionRequest(BaseModel):
    topic: str = Field(..., min_length=1)
    platform: Optional[str] = None
    include_emojis: bool = True
    include_hashtags: bool = True
    include_image_suggestions: bool = False


class CaptionCta(BaseModel):
    type: str = "none"
    text: str = ""


class GeneratedCaption(BaseModel):
    topic: str
    caption: str
    hashtags: list[str] = Field(default_factory=list)
    imageSuggestions: list[str] = Field(default_factory=list)
    cta: CaptionCta = Field(default_factory=CaptionCta)


def fallback_caption(topic: Optional[str]) -> GeneratedCaption:
    """Placeholder copy returned alongside an error so the composer is never empty."""
    subject = topic.lower() if topic else "this topic"
    return GeneratedCaption(
        topic=topic or "this topic",
        caption=f"We're excited to share {subject} with you! Stay tuned for more updates.",
    )


# =============================================================================
# Review Highlights
# =============================================================================


def load_review_highlights(supabase: Client, location_id: str) -> list[dict[str, Any]]:
    """Recent four and five star reviews with text, newest first."""
    result = (
        supabase.table("business_reviews")
        .select("review_text, rating")
        .eq("location_id", location_id)
        .gte("rating", 4)
        .not_.is_("review_text", "null")
        .order("published_at", desc=True)
        .limit(MAX_HIGHLIGHTS)
        .execute()
    )
    return [
        {"text": row["review_text"], "rating": row.get("rating")}
        for row in result.data or []
        if (row.get("review_text") or "").strip()
    ]


# =============================================================================
# Prompt
# =============================================================================


def _build_system_prompt(
    request: CaptionRequest, context: BusinessContext, highlights: list[dict[str, Any]]
) -> str:
    business = [
        f"- Name: {context.business_name}",
        f"- Category: {context.primary_category or 'Local business'}",
        f"- Location: {context.city or context.address or 'Local area'}",
    ]
    if context.phone:
        business.append(f"- Phone: {context.phone}")
    if context.website:
        business.append(f"- Website: {context.website}")
    if context.hours_summary:
        business.append(f"- Hours: {context.hours_summary}")

    sections = [
        "You are a social media copywriter for local businesses. Write engaging, authentic "
        "captions that drive real business outcomes (calls, visits, website clicks).",
        "Business context:\n" + "\n".join(business),
    ]

    if highlights:
        quotes = "\n".join(
            f'- "{(h.get("text") or "")[:HIGHLIGHT_LENGTH]}" ({h.get("rating")}/5)'
            for h in highlights[:MAX_HIGHLIGHTS]
        )
        sections.append(f"What customers say (use as proof points):\n{quotes}")

    if context.service_highlights:
        sections.append(f"Services: {', '.join(context.service_highlights)}")

    platform_note = (
        PLATFORM_GUIDANCE.get(request.platform, "") if request.platform else GENERIC_GUIDANCE
    )
    rules = [
        "Write in the business owner's voice (first person \"we\" or \"I\" is fine)",
        "Be specific to THIS business (use real details from context)",
        "No unverifiable claims (don't say \"best in town\" unless reviews say it)",
        "No medical/legal promises",
        "No pricing unless explicitly provided in context",
        "Keep it authentic and human (not corporate jargon)",
        "Use 2-4 relevant emojis naturally throughout" if request.include_emojis else "No emojis",
        "Include 5-10 relevant hashtags at the end" if request.include_hashtags else "No hashtags",
        platform_note,
    ]
    sections.append("CRITICAL RULES:\n" + "\n".join(f"- {rule}" for rule in rules if rule))
    sections.append(f'Topic to write about: "{request.topic}"')
    sections.append(
        "Return ONLY valid JSON with this structure:\n"
        "{\n"
        '  "topic": "the topic title",\n'
        '  "caption": "the full caption text (with line breaks as \\n)",\n'
        '  "hashtags": ["hashtag1", "hashtag2"],\n'
        '  "imageSuggestions": ["suggestion 1", "suggestion 2"],\n'
        '  "cta": {\n'
        f'    "type": "{"|".join(CTA_TYPES)}",\n'
        '    "text": "CTA text (e.g., \'Call us today!\' or \'Visit our website\')"\n'
        "  }\n"
        "}"
    )
    return "\n\n".join(sections)


def _build_user_prompt(request: CaptionRequest) -> str:
    prompt = f'Write a {request.platform or "social media"} caption about: "{request.topic}"'
    if request.include_image_suggestions:
        prompt += "\n\nAlso suggest 2-3 image ideas that would work well with this caption."
    return prompt


def parse_caption(content: str, request: CaptionRequest) -> GeneratedCaption:
    """Validate the model's JSON and apply the composer's limits."""
    parsed = json.loads(content)
    if not isinstance(parsed, dict):
        raise ValueError("Caption response is not a JSON object")

    cta = parsed.get("cta") if isinstance(parsed.get("cta"), dict) else {}
    cta_type = str(cta.get("type") or "").lower()
    if cta_type not in CTA_TYPES:
        cta_type = "none"

    hashtags = parsed.get("hashtags")
    suggestions = parsed.get("imageSuggestions")

    return GeneratedCaption(
        topic=parsed.get("topic") or request.topic,
        caption=(parsed.get("caption") or "").replace("\\n", "\n"),
        hashtags=hashtags[:MAX_HASHTAGS]
        if request.include_hashtags and isinstance(hashtags, list)
        else [],
        imageSuggestions=suggestions[:MAX_IMAGE_SUGGESTIONS]
        if request.include_image_suggestions and isinstance(suggestions, list)
        else [],
        cta=CaptionCta(
            type=cta_type,
            text=cta.get("text") or ("Learn more" if cta_type != "none" else ""),
        ),
    )


# =============================================================================
# Generator
# =============================================================================


class CaptionGenerator:
    """Generates social captions with OpenAI JSON mode."""

    def __init__(self, chat: Optional[ChatService] = None):
        self.chat = chat or ChatService()

    async def generate(
        self,
        request: CaptionRequest,
        context: BusinessContext,
        highlights: Optional[list[dict[str, Any]]] = None,
    ) -> GeneratedCaption:
        """
        Generate a caption.

        Raises:
            ValueError: The response was filtered, empty or not valid JSON.
        """
        logger.info(
            "caption_generation_started",
            platform=request.platform,
            topic=request.topic,
            include_hashtags=request.include_hashtags,
        )

        result = await self.chat.complete(
            [
                {"role": "system", "content": _build_system_prompt(request, context, highlights or [])},
                {"role": "user", "content": _build_user_prompt(request)},
            ],
            temperature=0.8,
            max_tokens=MAX_COMPLETION_TOKENS,
            json_response=True,
        )

        if result.finish_reason == "content_filter":
            raise ValueError(
                "OpenAI content filter blocked the response. Please try a different topic."
            )
        if result.finish_reason == "length":
            logger.warning("caption_truncated", model=result.model)
        if not result.content:
            raise ValueError("OpenAI response did not contain content")

        return parse_caption(result.content, request)


_generator_instance: Optional[CaptionGenerator] = None


def get_caption_generator() -> CaptionGenerator:
    global _generator_instance
    if _generator_instance is None:
        _generator_instance = CaptionGenerator()
    return _generator_instance


def reset_caption_generator() -> None:
    global _generator_instance
    _generator_instance = None
