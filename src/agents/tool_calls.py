"""Reassembly of tool calls that arrive split across stream deltas."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from typing import Any

from agents.errors import MalformedToolArguments
from agents.turns import ToolCall
from llm.base import ToolCallDelta


@dataclass(frozen=True)
class ToolInvocation:
    id: str
    name: str
    arguments: dict[str, Any]
    raw_arguments: str

    def as_tool_call(self) -> ToolCall:
        return ToolCall(id=self.id, name=self.name, arguments=self.raw_arguments)


@dataclass
class ToolCallAccumulator:
    """Collects the fragments of a single tool call.

    The completion adapter keeps one accumulator per provider tool-call index,
    which is how parallel tool calls in one turn are supported.
    """

    id: str | None = None
    function_name: str | None = None
    _fragments: list[str] = field(default_factory=list)

    def absorb(self, delta: ToolCallDelta) -> None:
        if delta.id and self.id is None:
            self.id = delta.id
        if delta.name and self.function_name is None:
            self.function_name = delta.name
        if delta.arguments:
            self._fragments.append(delta.arguments)

    @property
    def arguments_buffer(self) -> str:
        return "".join(self._fragments)

    def finalize(self) -> ToolInvocation:
        if not self.function_name:
            raise MalformedToolArguments("Tool call finished without a function name.")

        raw = self.arguments_buffer
        try:
            arguments = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as exc:
            raise MalformedToolArguments(
                f"Arguments for {self.function_name} are not valid JSON: {exc}"
            ) from exc
        if not isinstance(arguments, dict):
            raise MalformedToolArguments(
                f"Arguments for {self.function_name} must be a JSON object."
            )

        return ToolInvocation(
            id=self.id or f"call_{uuid.uuid4().hex[:24]}",
            name=self.function_name,
            arguments=arguments,
            raw_arguments=raw if raw.strip() else "{}",
        )
