"""Client for self-hosted vLLM or TGI compatible inference endpoints."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any

import httpx

from agents.errors import UpstreamStreamError
from config.settings import get_settings
from llm.base import BaseLLMClient, StreamChunk, normalize_chat_chunk

LOGGER = logging.getLogger(__name__)


class VLLMClient(BaseLLMClient):
    """Server-sent-event streaming against an OpenAI-compatible inference server."""

    def __init__(self, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        settings = get_settings()
        if not settings.llm_endpoint:
            raise ValueError("Self-hosted LLM endpoint must be configured.")

        self._endpoint = settings.llm_endpoint.rstrip("/")
        self._model = settings.llm_model
        self._api_key = settings.llm_api_key
        self._temperature = settings.llm_temperature
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "text/event-stream"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def stream_chat(
        self,
        messages: Sequence[dict[str, Any]],
        *,
        tools: Sequence[dict[str, Any]] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        payload: dict[str, Any] = {
            "model": self._model,
            "messages": list(messages),
            "temperature": self._temperature,
            "stream": True,
        }
        if tools:
            payload["tools"] = list(tools)

        try:
            async with httpx.AsyncClient(timeout=90, transport=self._transport) as client:
                async with client.stream(
                    "POST",
                    f"{self._endpoint}/v1/chat/completions",
                    json=payload,
                    headers=self._headers(),
                ) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        data = line[len("data:"):].strip()
                        if data == "[DONE]":
                            break
                        try:
                            chunk = json.loads(data)
                        except json.JSONDecodeError:
                            LOGGER.warning("Skipping undecodable stream line: %s", data)
                            continue
                        for event in normalize_chat_chunk(chunk):
                            yield event
        except httpx.HTTPError as exc:
            raise UpstreamStreamError(f"Inference server stream failed: {exc}") from exc
