"""Unit tests for the OpenAI wrapper and the reply and caption generators."""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from antistatic.core.exceptions import ConfigurationError
from antistatic.integrations.openai_chat import ChatResult, ChatService
from antistatic.services.business_context import BusinessContext
from antistatic.services.caption_generator import (
    CaptionGenerator,
    CaptionRequest,
    fallback_caption,
    load_review_highlights,
    parse_caption,
)
from antistatic.services.reply_generator import (
    ReplyGenerator,
    ReplyLength,
    ReplyRequest,
    ReplyTone,
    dedupe_replies,
    similarity,
)

from tests.conftest import LOCATION_ID


CONTEXT = BusinessContext(
    business_name="Bean There Cafe",
    primary_category="Cafe",
    city="Cape Town",
    phone="+27 21 555 0101",
)


class FakeChat:
    """Returns canned completions keyed by temperature."""

    def __init__(self, by_temperature=None, content="", finish_reason="stop"):
        self.by_temperature = by_temperature or {}
        self.content = content
        self.finish_reason = finish_reason
        self.calls = []

    async def complete(self, messages, *, temperature=0.7, max_tokens=500, json_response=False):
        self.calls.append(
            {"messages": messages, "temperature": temperature, "json_response": json_response}
        )
        content = self.by_temperature.get(temperature, self.content)
        return ChatResult(content=content, finish_reason=self.finish_reason, model="gpt-4o-mini")


# =============================================================================
# ChatService
# =============================================================================


class TestChatService:
    def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        chat = ChatService()
        assert not chat.configured
        with pytest.raises(ConfigurationError):
            chat.client

    @pytest.mark.asyncio
    async def test_complete_strips_content(self):
        chat = ChatService(api_key="sk-test", model="gpt-4o-mini")
        create = AsyncMock(
            return_value=SimpleNamespace(
                choices=[SimpleNamespace(message=SimpleNamespace(content="  Thanks!  "), finish_reason="stop")]
            )
        )
        chat._client = MagicMock()
        chat._client.chat.completions.create = create

        result = await chat.complete([{"role": "user", "content": "hi"}], json_response=True)

        assert result.content == "Thanks!"
        assert result.finish_reason == "stop"
        assert create.await_args.kwargs["response_format"] == {"type": "json_object"}
        assert create.await_args.kwargs["model"] == "gpt-4o-mini"


# =============================================================================
# Reply generator
# =============================================================================


class TestReplySimilarity:
    def test_identical_text(self):
        assert similarity("Thanks  so much!", "thanks so much!") == 1.0

    def test_dedupe_keeps_first_of_near_duplicates(self):
        replies = [
            "Thank you for visiting us, we loved having you",
            "thank you for visiting us, we loved having you",
            "Sorry the queue was long, we are adding a second barista",
        ]
        assert dedupe_replies(replies) == [replies[0], replies[2]]


class TestReplyGenerator:
    def _request(self, **overrides):
        values = {
            "review_text": "Lovely coffee but the queue was long",
            "rating": 4,
            "reviewer_name": "Sarah",
            "tone": ReplyTone.PROFESSIONAL,
            "length": ReplyLength.SHORT,
        }
        values.update(overrides)
        return ReplyRequest(**values)

    @pytest.mark.asyncio
    async def test_three_variations(self):
        chat = FakeChat(
            {
                0.8: "I really appreciate you taking the time, Sarah.",
                0.7: "We are working on shorter waits at the counter.",
                0.9: "Your feedback helps us get better every week.",
            }
        )

        replies = await ReplyGenerator(chat).generate_replies(self._request(), CONTEXT)

        assert len(replies) == 3
        assert sorted(call["temperature"] for call in chat.calls) == [0.7, 0.8, 0.9]
        system = chat.calls[0]["messages"][0]["content"]
        user = chat.calls[0]["messages"][1]["content"]
        assert "Business name: Bean There Cafe" in system
        assert "Selected tone: Professional" in user
        assert "Reviewer: Sarah" in user

    @pytest.mark.asyncio
    async def test_duplicates_trigger_extra_variation(self):
        same = "Thank you so much for the kind words, see you soon!"
        chat = FakeChat(
            {
                0.8: same,
                0.7: same,
                0.9: "We are sorry about the wait and are adding staff.",
                0.85: "Appreciate you stopping by, next flat white is on us.",
            }
        )

        replies = await ReplyGenerator(chat).generate_replies(self._request(), CONTEXT)

        assert len(replies) == 3
        assert replies.count(same) == 1
        assert chat.calls[-1]["temperature"] == 0.85

    @pytest.mark.asyncio
    async def test_extra_attempts_are_bounded(self):
        chat = FakeChat(content="Thanks for coming in!")

        replies = await ReplyGenerator(chat).generate_replies(self._request(), CONTEXT)

        assert replies == ["Thanks for coming in!"]
        assert len(chat.calls) == 6

    @pytest.mark.asyncio
    async def test_empty_completion_fails(self):
        with pytest.raises(ValueError):
            await ReplyGenerator(FakeChat(content="")).generate_replies(self._request(), CONTEXT)

    def test_rating_bounds(self):
        with pytest.raises(ValueError):
            ReplyRequest(review_text="ok", rating=6)


# =============================================================================
# Caption generator
# =============================================================================


class TestParseCaption:
    def test_limits_and_cta(self):
        request = CaptionRequest(topic="Winter menu", include_image_suggestions=True)
        content = json.dumps(
            {
                "topic": "Winter menu launch",
                "caption": "Soup season!\\nCome in.",
                "hashtags": [f"tag{i}" for i in range(15)],
                "imageSuggestions": ["a", "b", "c", "d"],
                "cta": {"type": "Visit"},
            }
        )

        caption = parse_caption(content, request)

        assert caption.caption == "Soup season!\nCome in."
        assert len(caption.hashtags) == 10
        assert caption.imageSuggestions == ["a", "b", "c"]
        assert caption.cta.type == "visit"
        assert caption.cta.text == "Learn more"

    def test_disabled_extras_are_dropped(self):
        request = CaptionRequest(topic="Brunch", include_hashtags=False)
        caption = parse_caption(
            json.dumps({"caption": "Brunch!", "hashtags": ["brunch"], "imageSuggestions": ["x"], "cta": {"type": "fax"}}),
            request,
        )
        assert caption.topic == "Brunch"
        assert caption.hashtags == []
        assert caption.imageSuggestions == []
        assert caption.cta.type == "none"
        assert caption.cta.text == ""

    def test_not_an_object(self):
        with pytest.raises(ValueError):
            parse_caption("[1, 2]", CaptionRequest(topic="x"))

    def test_fallback_caption(self):
        caption = fallback_caption("Winter Menu")
        assert caption.topic == "Winter Menu"
        assert "winter menu" in caption.caption


class TestCaptionGenerator:
    @pytest.mark.asyncio
    async def test_generate_uses_json_mode_and_highlights(self):
        chat = FakeChat(content=json.dumps({"caption": "Fresh croissants daily", "hashtags": ["bakery"]}))
        request = CaptionRequest(topic="Croissants", platform="instagram")

        caption = await CaptionGenerator(chat).generate(
            request, CONTEXT, [{"text": "Best croissant in town", "rating": 5}]
        )

        assert caption.caption == "Fresh croissants daily"
        call = chat.calls[0]
        assert call["json_response"] is True
        system = call["messages"][0]["content"]
        assert '"Best croissant in town" (5/5)' in system
        assert "Write for Instagram" in system

    @pytest.mark.asyncio
    async def test_content_filter(self):
        chat = FakeChat(content="{}", finish_reason="content_filter")
        with pytest.raises(ValueError, match="content filter"):
            await CaptionGenerator(chat).generate(CaptionRequest(topic="x"), CONTEXT)


class TestLoadReviewHighlights:
    def test_recent_positive_reviews_with_text(self, fake_supabase):
        fake_supabase.seed(
            "business_reviews",
            {"location_id": LOCATION_ID, "rating": 5, "review_text": "Old favourite", "published_at": "2024-01-01"},
            {"location_id": LOCATION_ID, "rating": 4, "review_text": "Great scones", "published_at": "2025-03-01"},
            {"location_id": LOCATION_ID, "rating": 2, "review_text": "Cold tea", "published_at": "2025-04-01"},
            {"location_id": LOCATION_ID, "rating": 5, "review_text": None, "published_at": "2025-05-01"},
            {"location_id": "other", "rating": 5, "review_text": "Elsewhere", "published_at": "2025-06-01"},
        )

        highlights = load_review_highlights(fake_supabase, LOCATION_ID)

        assert highlights == [
            {"text": "Great scones", "rating": 4},
            {"text": "Old favourite", "rating": 5},
        ]
