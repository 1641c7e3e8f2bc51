"""Domain-specific exceptions for relay sessions.

These exceptions are safe to import from API layers without pulling in provider SDKs.
"""

from __future__ import annotations


class RelayError(Exception):
    status_code: int = 500
    default_detail: str = "Relay error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class MalformedInboundEvent(RelayError):
    status_code = 400
    default_detail = "Inbound relay event could not be parsed."


class MalformedToolArguments(RelayError):
    status_code = 422
    default_detail = "Tool call arguments are not a JSON object."


class ToolNotFound(RelayError):
    status_code = 404
    default_detail = "Requested tool is not registered."


class ToolExecutionError(RelayError):
    status_code = 500
    default_detail = "Tool execution failed."


class ToolRegistryError(RelayError):
    status_code = 500
    default_detail = "Tool manifest does not match the registered tools."


class UpstreamStreamError(RelayError):
    status_code = 502
    default_detail = "LLM stream failed."


class SessionSetupError(RelayError):
    status_code = 500
    default_detail = "Relay session could not be initialised."


class AssistantNotFound(RelayError):
    status_code = 404
    default_detail = "Assistant definition not found."


class TurnOrderError(RelayError):
    status_code = 500
    default_detail = "Conversation turn violates history ordering."
