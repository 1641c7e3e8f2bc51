"""Tool manifest validation, registry and dispatch."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from agents.errors import ToolExecutionError, ToolNotFound, ToolRegistryError
from agents.schemas import CONTROL_MESSAGE_ADAPTER, EndMessage, SendDigitsMessage
from prompts.loader import load_json_asset
from tools.builtin import BUILTIN_TOOLS

LOGGER = logging.getLogger(__name__)

ToolHandler = Callable[[dict[str, Any]], Any]


class FunctionDefinition(BaseModel):
    name: str = Field(pattern=r"^[a-zA-Z0-9_-]{1,64}$")
    description: str = ""
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


class ToolDefinition(BaseModel):
    type: Literal["function"] = "function"
    function: FunctionDefinition


class ToolManifest(BaseModel):
    tools: list[ToolDefinition] = Field(default_factory=list)


@dataclass(frozen=True)
class ToolResult:
    content: str
    control: SendDigitsMessage | EndMessage | None = None
    is_error: bool = False

    @classmethod
    def failure(cls, detail: str) -> ToolResult:
        return cls(content=json.dumps({"error": detail}), is_error=True)


def normalize_tool_output(output: Any) -> ToolResult:
    """Convert a handler's return value into tool-turn content plus optional control."""

    control = None
    if isinstance(output, dict) and output.get("toolType") == "crelay":
        try:
            control = CONTROL_MESSAGE_ADAPTER.validate_python(output.get("toolData"))
        except ValidationError as exc:
            LOGGER.warning("Ignoring invalid relay control payload %s: %s", output, exc)

    content = output if isinstance(output, str) else json.dumps(output, default=str)
    return ToolResult(content=content, control=control)


class ToolRegistry:
    """Read-only mapping of tool names to handlers for one session."""

    def __init__(
        self,
        definitions: Sequence[ToolDefinition],
        handlers: Mapping[str, ToolHandler],
    ) -> None:
        names = [definition.function.name for definition in definitions]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ToolRegistryError(f"Duplicate tool names in manifest: {', '.join(duplicates)}")

        missing = sorted(name for name in names if name not in handlers)
        if missing:
            raise ToolRegistryError(f"Manifest names unregistered tools: {', '.join(missing)}")

        self._definitions = tuple(definitions)
        self._handlers = MappingProxyType({name: handlers[name] for name in names})

    @classmethod
    def from_manifest(
        cls,
        manifest: Mapping[str, Any] | ToolManifest,
        available: Mapping[str, ToolHandler] | None = None,
    ) -> ToolRegistry:
        if not isinstance(manifest, ToolManifest):
            try:
                manifest = ToolManifest.model_validate(manifest)
            except ValidationError as exc:
                raise ToolRegistryError(f"Invalid tool manifest: {exc}") from exc
        return cls(manifest.tools, BUILTIN_TOOLS if available is None else available)

    @classmethod
    def load(cls, filename: str, available: Mapping[str, ToolHandler] | None = None) -> ToolRegistry:
        try:
            manifest = load_json_asset(filename)
        except (RuntimeError, ValueError) as exc:
            raise ToolRegistryError(f"Cannot load tool manifest {filename}: {exc}") from exc
        registry = cls.from_manifest(manifest, available)
        LOGGER.info("Loaded %d tools from %s", len(registry), filename)
        return registry

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._handlers)

    def definitions(self) -> list[dict[str, Any]]:
        """Tool definitions in the chat-completions `tools` shape."""

        return [definition.model_dump() for definition in self._definitions]

    def get(self, name: str) -> ToolHandler | None:
        return self._handlers.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)


class ToolDispatcher:
    def __init__(self, registry: ToolRegistry) -> None:
        self._registry = registry

    async def run(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        handler = self._registry.get(name)
        if handler is None:
            raise ToolNotFound(f"No tool named {name!r} is registered.")

        LOGGER.info("Running tool %s with args %s", name, arguments)
        try:
            if inspect.iscoroutinefunction(handler):
                output = await handler(arguments)
            else:
                output = await asyncio.to_thread(handler, arguments)
                if inspect.isawaitable(output):
                    output = await output
        except Exception as exc:
            raise ToolExecutionError(f"Tool {name} failed: {exc}") from exc

        return normalize_tool_output(output)
