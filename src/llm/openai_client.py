"""OpenAI and OpenAI-compatible (DeepSeek, Groq) streaming client."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any

import openai
from openai import AsyncOpenAI

from agents.errors import UpstreamStreamError
from config.settings import get_settings
from llm.base import BaseLLMClient, StreamChunk, normalize_chat_chunk

LOGGER = logging.getLogger(__name__)

DEEPSEEK_BASE_URL = "https://api.deepseek.com"
GROQ_BASE_URL = "https://api.groq.com/openai/v1"


class OpenAIClient(BaseLLMClient):
    """Wrapper for the Chat Completions streaming API."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        settings = get_settings()
        self._model = model or settings.llm_model
        self._temperature = settings.llm_temperature

        if client is not None:
            self._client = client
            return

        api_key = api_key or settings.llm_api_key
        if not api_key:
            raise ValueError("LLM API key must be configured for OpenAI client.")
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url or settings.llm_endpoint or None,
        )

    @classmethod
    def for_deepseek(cls) -> OpenAIClient:
        settings = get_settings()
        if not settings.deepseek_api_key:
            raise ValueError("DEEPSEEK_API_KEY must be configured for the DeepSeek provider.")
        return cls(
            api_key=settings.deepseek_api_key,
            base_url=DEEPSEEK_BASE_URL,
            model=settings.deepseek_model,
        )

    @classmethod
    def for_groq(cls) -> OpenAIClient:
        settings = get_settings()
        if not settings.groq_api_key:
            raise ValueError("GROQ_API_KEY must be configured for the Groq provider.")
        return cls(
            api_key=settings.groq_api_key,
            base_url=GROQ_BASE_URL,
            model=settings.groq_model,
        )

    async def stream_chat(
        self,
        messages: Sequence[dict[str, Any]],
        *,
        tools: Sequence[dict[str, Any]] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        request: dict[str, Any] = {
            "model": self._model,
            "messages": list(messages),
            "temperature": self._temperature,
            "stream": True,
        }
        if tools:
            request["tools"] = list(tools)

        try:
            stream = await self._client.chat.completions.create(**request)
        except openai.APIError as exc:
            raise UpstreamStreamError(f"OpenAI request failed: {exc}") from exc

        try:
            async for event in stream:
                for chunk in normalize_chat_chunk(event.model_dump()):
                    yield chunk
        except openai.APIError as exc:
            raise UpstreamStreamError(f"OpenAI stream failed: {exc}") from exc
        finally:
            await stream.close()
