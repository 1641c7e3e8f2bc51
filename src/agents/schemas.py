"""Pydantic schemas for the conversation relay wire protocol."""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from agents.errors import MalformedInboundEvent


class InboundEvent(BaseModel):
    """Base for every JSON message received from the relay."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: str


class CustomParameters(BaseModel):
    """`<Parameter>` values forwarded by the relay on setup."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    assistant: str | None = None
    context_file: str | None = Field(default=None, alias="contextFile")
    tool_manifest_file: str | None = Field(default=None, alias="toolManifestFile")
    call_reference: str | None = Field(default=None, alias="callReference")


class SetupEvent(InboundEvent):
    type: Literal["setup"] = "setup"
    call_sid: str = Field(validation_alias=AliasChoices("callSid", "callId", "call_sid"), min_length=1)
    from_number: str | None = Field(default=None, alias="from")
    to_number: str | None = Field(default=None, alias="to")
    custom_parameters: CustomParameters = Field(
        default_factory=CustomParameters, alias="customParameters"
    )


class PromptEvent(InboundEvent):
    type: Literal["prompt"] = "prompt"
    voice_prompt: str = Field(alias="voicePrompt")
    lang: str | None = None
    last: bool = True


class InterruptEvent(InboundEvent):
    type: Literal["interrupt"] = "interrupt"
    utterance_until_interrupt: str = Field(default="", alias="utteranceUntilInterrupt")
    duration_until_interrupt_ms: int | None = Field(default=None, alias="durationUntilInterruptMs")


class DtmfEvent(InboundEvent):
    type: Literal["dtmf"] = "dtmf"
    digit: str = Field(min_length=1)


class InfoEvent(InboundEvent):
    type: Literal["info"] = "info"


class ErrorEvent(InboundEvent):
    type: Literal["error"] = "error"
    description: str = ""


class UnknownEvent(InboundEvent):
    """Any message whose `type` this service does not handle."""


_EVENT_TYPES: dict[str, type[InboundEvent]] = {
    "setup": SetupEvent,
    "prompt": PromptEvent,
    "interrupt": InterruptEvent,
    "dtmf": DtmfEvent,
    "info": InfoEvent,
    "error": ErrorEvent,
}


def parse_inbound_event(raw: str | bytes | dict[str, Any]) -> InboundEvent:
    """Decode a relay message into its typed event.

    Raises MalformedInboundEvent for invalid JSON, a missing `type`, or a known
    type that lacks its required fields. Unknown types become UnknownEvent.
    """

    if isinstance(raw, dict):
        data = raw
    else:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise MalformedInboundEvent(f"Invalid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise MalformedInboundEvent("Relay message must be a JSON object.")

    event_type = data.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise MalformedInboundEvent("Relay message has no `type`.")

    model = _EVENT_TYPES.get(event_type, UnknownEvent)
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise MalformedInboundEvent(f"Invalid `{event_type}` event: {exc}") from exc


class OutboundMessage(BaseModel):
    """Base for messages sent back over the relay socket."""

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class TextToken(OutboundMessage):
    type: Literal["text"] = "text"
    token: str
    last: bool = False


class SendDigitsMessage(OutboundMessage):
    type: Literal["sendDigits"] = "sendDigits"
    digits: str = Field(min_length=1)


class EndMessage(OutboundMessage):
    type: Literal["end"] = "end"
    handoff_data: str = Field(default="", alias="handoffData")

    @field_validator("handoff_data", mode="before")
    @classmethod
    def encode_handoff_data(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        return value


ControlMessage = Annotated[Union[SendDigitsMessage, EndMessage], Field(discriminator="type")]
CONTROL_MESSAGE_ADAPTER: TypeAdapter[SendDigitsMessage | EndMessage] = TypeAdapter(ControlMessage)


class AssistantDefinition(BaseModel):
    """Persona, greeting and provider selection for one assistant."""

    assistant_name: str
    company_name: str = ""
    vertical: str = ""
    initial_message: str | None = None
    instructions: str = ""
    additional_context: str = ""
    llm_provider: str | None = None
    context_file: str | None = None
    tool_manifest_file: str | None = None
    language_code: str = "en-US"
