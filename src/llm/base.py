"""Shared abstractions for streaming language model clients."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Union

TOOL_FINISH_REASONS = frozenset({"tool_calls", "function_call"})


@dataclass(frozen=True)
class ContentDelta:
    text: str


@dataclass(frozen=True)
class ToolCallDelta:
    """One fragment of a tool call; any field may be missing on a given fragment."""

    index: int = 0
    id: str | None = None
    name: str | None = None
    arguments: str | None = None


@dataclass(frozen=True)
class StreamDone:
    finish_reason: str

    @property
    def is_tool_invocation(self) -> bool:
        return self.finish_reason in TOOL_FINISH_REASONS


StreamChunk = Union[ContentDelta, ToolCallDelta, StreamDone]


def normalize_chat_chunk(chunk: Mapping[str, Any]) -> list[StreamChunk]:
    """Translate one OpenAI-compatible `chat.completion.chunk` payload."""

    choices = chunk.get("choices") or []
    if not choices:
        return []

    choice = choices[0]
    delta = choice.get("delta") or {}
    events: list[StreamChunk] = []

    content = delta.get("content")
    if content:
        events.append(ContentDelta(content))

    for position, call in enumerate(delta.get("tool_calls") or []):
        function = call.get("function") or {}
        index = call.get("index")
        events.append(
            ToolCallDelta(
                index=position if index is None else int(index),
                id=call.get("id") or None,
                name=function.get("name") or None,
                arguments=function.get("arguments") or None,
            )
        )

    legacy_call = delta.get("function_call")
    if legacy_call:
        events.append(
            ToolCallDelta(
                index=0,
                name=legacy_call.get("name") or None,
                arguments=legacy_call.get("arguments") or None,
            )
        )

    finish_reason = choice.get("finish_reason")
    if finish_reason:
        events.append(StreamDone(finish_reason))
    return events


class BaseLLMClient(ABC):
    """Abstract base class for streaming LLM providers."""

    @abstractmethod
    def stream_chat(
        self,
        messages: Sequence[dict[str, Any]],
        *,
        tools: Sequence[dict[str, Any]] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream a chat completion as normalized chunks.

        Implementations raise UpstreamStreamError for transport or provider failures.
        """
