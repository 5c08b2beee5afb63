"""
Review Reply Generator.

Uses OpenAI to draft three distinct public replies to a Google review, each
with its own approach, and drops near-duplicates so the owner gets real
alternatives to choose from.

Standalone usage:
    from antistatic.services.reply_generator import ReplyGenerator, ReplyRequest
    generator = ReplyGenerator()
    request = ReplyRequest(
        review_text="Amazing coffee but the queue was long",
        rating=4,
        reviewer_name="Sarah",
        tone=ReplyTone.WARM,
        length=ReplyLength.SHORT,
    )
    replies = await generator.generate_replies(request, context)
"""

import asyncio
import re
from enum import Enum
from typing import Optional

import structlog
from pydantic import BaseModel, Field

from antistatic.integrations.openai_chat import ChatService
from antistatic.services.business_context import BusinessContext

logger = structlog.get_logger(__name__)


# =============================================================================
# Models
# =============================================================================


class ReplyTone(str, Enum):
    """Tone presets offered in the reply composer."""
    WARM = "Warm"
    PROFESSIONAL = "Professional"
    APOLOGETIC = "Apologetic"
    FRIENDLY = "Friendly"
    SHORT_AND_DIRECT = "Short & direct"


class ReplyLength(str, Enum):
    SHORT = "Short"
    MEDIUM = "Medium"
    LONG = "Long"


class ReplyRequest(BaseModel):
    """The review being answered plus the owner's tone and length choice."""
    review_text: str = Field(..., min_length=1)
    rating: Optional[int] = Field(None, ge=1, le=5)
    reviewer_name: Optional[str] = None
    created_at: Optional[str] = None
    review_id: Optional[str] = None
    tone: ReplyTone = ReplyTone.WARM
    length: ReplyLength = ReplyLength.MEDIUM


class Variation(BaseModel):
    approach: str
    temperature: float


# =============================================================================
# Prompts
# =============================================================================

SYSTEM_PROMPT = """You are writing a public reply to a Google review on behalf of a business.
Rules:

* Output ONLY the final reply text. No headings, no quotes, no bullet points, no "AI suggestions".
* Never use placeholders like {{businessName}} or {{name}}. If a field is missing, write naturally without it.
* Never mention Antistatic or any software/tool.
* Keep it human, specific, and not repetitive.
* Do not claim actions you can't verify (refund issued, manager called, etc).
* Don't ask for personal info publicly.
* If negative: apologize, acknowledge the issue, briefly state intent to fix, invite them to contact the business offline (use phone/website if available), and keep it calm.
* If positive: thank them, mirror a specific detail from the review, reinforce trust, invite them back.
* If review is short/vague: keep reply short and warm.

Tone handling:

* Warm = friendly, appreciative, conversational, not too formal.
* Professional = polite, concise, businesslike.
* Apologetic = empathetic, calm, resolution-focused.
* Friendly = upbeat, casual but still respectful.
* Short & direct = minimal words, no fluff.

Length handling:

* Short = 1-2 sentences
* Medium = 3-5 sentences
* Long = 6-9 sentences (only if it stays natural)

Business context (use when relevant):
{context}"""

VARIATIONS = [
    Variation(
        approach=(
            'Focus on empathy and personal connection. Use "I" statements and be warm '
            "and understanding."
        ),
        temperature=0.8,
    ),
    Variation(
        approach=(
            "Focus on professionalism and action. Be direct about what you'll do to "
            'resolve the issue. Use "we" statements.'
        ),
        temperature=0.7,
    ),
    Variation(
        approach=(
            "Focus on appreciation and future improvement. Emphasize learning from "
            "feedback and commitment to better service."
        ),
        temperature=0.9,
    ),
]

RETRY_TEMPERATURE = 0.85
MAX_EXTRA_ATTEMPTS = 3
TARGET_REPLIES = 3
DUPLICATE_THRESHOLD = 0.8
MAX_TOKENS = 500


# =============================================================================
# Similarity
# =============================================================================


def normalize_text(text: str) -> str:
    return re.sub(r"\s+", " ", text.strip().lower())


def similarity(a: str, b: str) -> float:
    """Share of A's words that also appear in B, over the longer word count."""
    words_a = normalize_text(a).split(" ")
    words_b = normalize_text(b).split(" ")
    vocabulary = set(words_b)
    common = sum(1 for word in words_a if word in vocabulary)
    return common / max(len(words_a), len(words_b))


def is_duplicate(candidate: str, existing: list[str]) -> bool:
    return any(similarity(candidate, other) > DUPLICATE_THRESHOLD for other in existing)


def dedupe_replies(replies: list[str]) -> list[str]:
    """Keep the first of each group of near-identical replies."""
    unique: list[str] = []
    for reply in replies:
        if not is_duplicate(reply, unique):
            unique.append(reply)
    return unique


# =============================================================================
# Generator
# =============================================================================


class ReplyGenerator:
    """
    Generates review reply variations using OpenAI chat completions.
    """

    def __init__(self, chat: Optional[ChatService] = None):
        self.chat = chat or ChatService()

    def _build_user_message(self, request: ReplyRequest) -> str:
        lines = [
            "Review details:",
            f"Rating: {request.rating or 'Not specified'}/5",
            f"Reviewer: {request.reviewer_name or 'Anonymous'}",
            f"Review text: {request.review_text}",
        ]
        if request.created_at:
            lines.append(f"Posted: {request.created_at}")
        lines += [
            "",
            f"Selected tone: {request.tone.value}",
            f"Selected length: {request.length.value}",
            "",
            "Write a reply that matches the tone and length. Use the business context above. "
            "If the review is negative (rating <= 3), include contact information (phone/website) "
            "ONLY if available in the business context.",
        ]
        return "\n".join(lines)

    async def _generate_variation(
        self, system_prompt: str, user_message: str, variation: Variation
    ) -> str:
        content = (
            f"{user_message}\n\n"
            f"IMPORTANT: Generate a reply with this specific approach:\n{variation.approach}\n\n"
            "Make this variation distinctly different from the others. "
            "Use different phrasing, structure, and emphasis."
        )
        result = await self.chat.complete(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": content},
            ],
            temperature=variation.temperature,
            max_tokens=MAX_TOKENS,
        )
        if not result.content:
            raise ValueError("OpenAI response did not contain reply text")
        if "{" in result.content or "}" in result.content:
            logger.warning("reply_contains_placeholder", temperature=variation.temperature)
        return result.content

    async def generate_replies(
        self, request: ReplyRequest, context: BusinessContext
    ) -> list[str]:
        """
        Generate up to three distinct replies.

        The three base variations run concurrently. When deduplication leaves
        fewer than three, extra variations are requested one at a time.
        """
        system_prompt = SYSTEM_PROMPT.format(context=context.to_prompt())
        user_message = self._build_user_message(request)

        logger.info(
            "reply_generation_started",
            review_id=request.review_id,
            rating=request.rating,
            tone=request.tone.value,
            length=request.length.value,
        )

        variations = await asyncio.gather(
            *(self._generate_variation(system_prompt, user_message, v) for v in VARIATIONS)
        )
        replies = dedupe_replies(list(variations))

        attempts = 0
        while len(replies) < TARGET_REPLIES and attempts < MAX_EXTRA_ATTEMPTS:
            style = (
                "Be more concise and solution-focused."
                if len(replies) == 1
                else "Be more detailed and explanatory."
            )
            extra = Variation(
                approach=f"Use a completely different style. {style}",
                temperature=RETRY_TEMPERATURE,
            )
            try:
                candidate = await self._generate_variation(system_prompt, user_message, extra)
            except Exception as e:
                logger.warning("reply_extra_variation_failed", error=str(e))
                break
            if not is_duplicate(candidate, replies):
                replies.append(candidate)
            attempts += 1

        logger.info("reply_generation_completed", review_id=request.review_id, count=len(replies))
        return replies


# =============================================================================
# Singleton
# =============================================================================

_generator_instance: Optional[ReplyGenerator] = None


def get_reply_generator() -> ReplyGenerator:
    """Get or create the singleton ReplyGenerator."""
    global _generator_instance
    if _generator_instance is None:
        _generator_instance = ReplyGenerator()
    return _generator_instance


def reset_reply_generator() -> None:
    """Reset the singleton (for testing)."""
    global _generator_instance
    _generator_instance = None
