"""Completion passes over the turn store, including tool round-trips.

`CompletionAdapter.complete` is the single entry point the relay session uses.
It streams provider output as it arrives, reassembles tool calls, runs them,
records every turn in order, and re-enters the model with the tool results
until the model stops or the follow-up budget is spent.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import Any, Union

from agents.errors import MalformedToolArguments, ToolExecutionError, ToolNotFound, UpstreamStreamError
from agents.tool_calls import ToolCallAccumulator, ToolInvocation
from agents.turns import ConversationTurn, TurnStore
from llm.base import BaseLLMClient, ContentDelta, StreamDone, ToolCallDelta
from tools.registry import ToolDispatcher, ToolResult

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolResultEvent:
    invocation: ToolInvocation
    result: ToolResult


@dataclass(frozen=True)
class CompletionDone:
    interaction_count: int
    text: str
    interrupted: bool = False


CompletionEvent = Union[ContentDelta, ToolCallDelta, ToolResultEvent, CompletionDone]


@dataclass
class _PassState:
    cancel: asyncio.Event
    parts: list[str] = field(default_factory=list)
    interrupted: bool = False


class CompletionAdapter:
    def __init__(
        self,
        client: BaseLLMClient,
        turns: TurnStore,
        dispatcher: ToolDispatcher,
        *,
        tools: Sequence[dict[str, Any]] | None = None,
        max_followups: int = 3,
        call_sid: str = "",
    ) -> None:
        if max_followups < 1:
            raise ValueError("max_followups must be at least 1.")
        self._client = client
        self._turns = turns
        self._dispatcher = dispatcher
        self._tools = list(tools or [])
        self._max_followups = max_followups
        self._call_sid = call_sid

    async def complete(
        self,
        turn: ConversationTurn | None,
        interaction_count: int,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[CompletionEvent]:
        """Run one completion pass for `turn` (None for a bare follow-up).

        Yields content and tool-call deltas as they stream, a ToolResultEvent per
        executed tool, and finally exactly one CompletionDone. The `cancel` event
        is checked before every provider chunk is handled.
        """

        state = _PassState(cancel=cancel or asyncio.Event())
        if turn is not None:
            self._turns.append(turn)

        async for event in self._run_pass(state, interaction_count, depth=0):
            yield event

        yield CompletionDone(
            interaction_count=interaction_count,
            text="".join(state.parts),
            interrupted=state.interrupted,
        )

    async def _run_pass(
        self, state: _PassState, interaction_count: int, depth: int
    ) -> AsyncIterator[CompletionEvent]:
        offer_tools = bool(self._tools) and depth < self._max_followups
        text: list[str] = []
        accumulators: dict[int, ToolCallAccumulator] = {}
        finish: StreamDone | None = None

        LOGGER.debug(
            "[%s] completion pass %s.%s with %d turns",
            self._call_sid,
            interaction_count,
            depth,
            len(self._turns),
        )
        stream = self._client.stream_chat(
            self._turns.as_messages(),
            tools=self._tools if offer_tools else None,
        )
        try:
            async for chunk in stream:
                if state.cancel.is_set():
                    state.interrupted = True
                    break
                if isinstance(chunk, ContentDelta):
                    text.append(chunk.text)
                    state.parts.append(chunk.text)
                    yield chunk
                elif isinstance(chunk, ToolCallDelta):
                    accumulators.setdefault(chunk.index, ToolCallAccumulator()).absorb(chunk)
                    yield chunk
                elif isinstance(chunk, StreamDone):
                    finish = chunk
        except UpstreamStreamError:
            # Best-effort partial commit; tool calls are never half-recorded.
            if text:
                self._turns.append(ConversationTurn.assistant("".join(text)))
            raise
        finally:
            await stream.aclose()

        if state.cancel.is_set():
            state.interrupted = True

        wants_tools = finish is not None and finish.is_tool_invocation and bool(accumulators)
        if state.interrupted or not wants_tools:
            if accumulators and not state.interrupted:
                LOGGER.warning(
                    "[%s] Dropping tool call fragments; stream finished with %s",
                    self._call_sid,
                    finish.finish_reason if finish else "no finish reason",
                )
            if text or not state.interrupted:
                self._turns.append(ConversationTurn.assistant("".join(text)))
            return

        if not offer_tools:
            LOGGER.warning(
                "[%s] Model requested tools on pass %s without tools offered; keeping text only",
                self._call_sid,
                depth,
            )
            self._turns.append(ConversationTurn.assistant("".join(text)))
            return

        invocations: list[ToolInvocation] = []
        for index in sorted(accumulators):
            try:
                invocations.append(accumulators[index].finalize())
            except MalformedToolArguments as exc:
                LOGGER.warning("[%s] Skipping tool call: %s", self._call_sid, exc.detail)

        if not invocations:
            self._turns.append(ConversationTurn.assistant("".join(text)))
            return

        self._turns.append(
            ConversationTurn.assistant(
                "".join(text),
                tool_calls=[invocation.as_tool_call() for invocation in invocations],
            )
        )
        for invocation in invocations:
            result = await self._dispatch(invocation)
            self._turns.append(ConversationTurn.tool(result.content, tool_call_id=invocation.id))
            yield ToolResultEvent(invocation=invocation, result=result)

        if state.cancel.is_set():
            state.interrupted = True
            return

        async for event in self._run_pass(state, interaction_count, depth + 1):
            yield event

    async def _dispatch(self, invocation: ToolInvocation) -> ToolResult:
        try:
            return await self._dispatcher.run(invocation.name, invocation.arguments)
        except ToolNotFound as exc:
            LOGGER.warning("[%s] %s", self._call_sid, exc.detail)
            return ToolResult.failure(exc.detail)
        except ToolExecutionError as exc:
            LOGGER.error("[%s] %s", self._call_sid, exc.detail, exc_info=exc.__cause__)
            return ToolResult.failure(exc.detail)
