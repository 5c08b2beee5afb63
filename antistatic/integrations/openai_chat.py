"""OpenAI chat completions wrapper shared by the reply and caption generators."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog
from openai import APIConnectionError, AsyncOpenAI, RateLimitError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from antistatic.config.settings import get_settings
from antistatic.core.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)


@dataclass
class ChatResult:
    content: str
    finish_reason: str | None
    model: str


class ChatService:
    """Thin async wrapper over ``chat.completions.create``.

    Usage:
        chat = ChatService()
        result = await chat.complete(messages, temperature=0.7, max_tokens=500)
    """

    def __init__(self, api_key: str | None = None, model: str | None = None) -> None:
        settings = get_settings()
        if api_key is None and settings.openai_api_key:
            api_key = settings.openai_api_key.get_secret_value()
        self._api_key = api_key
        self.model = model or settings.openai_model
        self._client: AsyncOpenAI | None = None

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    @property
    def client(self) -> AsyncOpenAI:
        """Get or create the OpenAI async client."""
        if not self._api_key:
            raise ConfigurationError("OpenAI API key not configured", "openai_api_key")
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self._api_key)
        return self._client

    @retry(
        retry=retry_if_exception_type((RateLimitError, APIConnectionError)),
        wait=wait_exponential(multiplier=1, min=1, max=20),
        stop=stop_after_attempt(3),
        reraise=True,
        before_sleep=lambda retry_state: logger.warning(
            "openai_retry",
            attempt=retry_state.attempt_number,
            wait=retry_state.next_action.sleep,
        ),
    )
    async def complete(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float = 0.7,
        max_tokens: int = 500,
        json_response: bool = False,
    ) -> ChatResult:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_response:
            kwargs["response_format"] = {"type": "json_object"}

        response = await self.client.chat.completions.create(**kwargs)
        choice = response.choices[0]
        content = (choice.message.content or "").strip()

        logger.debug(
            "chat_completion",
            model=self.model,
            temperature=temperature,
            finish_reason=choice.finish_reason,
            length=len(content),
        )
        return ChatResult(content=content, finish_reason=choice.finish_reason, model=self.model)
