"""Ordered conversation history used as LLM context for one call."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, Literal

from agents.errors import TurnOrderError

Role = Literal["system", "user", "assistant", "tool"]


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation declared by an assistant turn."""

    id: str
    name: str
    arguments: str

    def to_message(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass(frozen=True)
class ConversationTurn:
    role: Role
    content: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: str | None = None

    @classmethod
    def system(cls, content: str) -> ConversationTurn:
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> ConversationTurn:
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: tuple[ToolCall, ...] | list[ToolCall] = ()) -> ConversationTurn:
        return cls(role="assistant", content=content, tool_calls=tuple(tool_calls))

    @classmethod
    def tool(cls, content: str, *, tool_call_id: str) -> ConversationTurn:
        return cls(role="tool", content=content, tool_call_id=tool_call_id)

    def to_message(self) -> dict[str, Any]:
        """Render in the chat-completions message shape shared by all providers."""

        message: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            message["tool_calls"] = [call.to_message() for call in self.tool_calls]
        if self.tool_call_id is not None:
            message["tool_call_id"] = self.tool_call_id
        return message


@dataclass
class TurnStore:
    """Append-only turn history.

    A `tool` turn is accepted only while the most recent assistant turn with
    tool calls still has that call id unanswered, and only tool turns have been
    appended since that assistant turn.
    """

    _turns: list[ConversationTurn] = field(default_factory=list)
    _outstanding: list[str] = field(default_factory=list)

    def append(self, turn: ConversationTurn) -> ConversationTurn:
        if turn.role == "tool":
            if turn.tool_call_id is None or turn.tool_call_id not in self._outstanding:
                raise TurnOrderError(
                    f"Tool result {turn.tool_call_id!r} has no outstanding assistant tool call."
                )
            self._outstanding.remove(turn.tool_call_id)
        else:
            if turn.tool_call_id is not None:
                raise TurnOrderError("Only tool turns may carry a tool_call_id.")
            if turn.tool_calls and turn.role != "assistant":
                raise TurnOrderError("Only assistant turns may declare tool calls.")
            # Unanswered calls are abandoned once the conversation moves on.
            self._outstanding = [call.id for call in turn.tool_calls]

        self._turns.append(turn)
        return turn

    @property
    def turns(self) -> tuple[ConversationTurn, ...]:
        return tuple(self._turns)

    @property
    def outstanding_tool_call_ids(self) -> tuple[str, ...]:
        return tuple(self._outstanding)

    def as_messages(self) -> list[dict[str, Any]]:
        return [turn.to_message() for turn in self._turns]

    def last(self) -> ConversationTurn | None:
        return self._turns[-1] if self._turns else None

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[ConversationTurn]:
        return iter(tuple(self._turns))
