"""API-facing Pydantic models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class OutboundCallProperties(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    phone_number: str = Field(alias="phoneNumber", min_length=1, description="E.164 number to call.")
    call_reference: str | None = Field(default=None, alias="callReference")
    assistant: str | None = None


class OutboundCallRequest(BaseModel):
    properties: OutboundCallProperties


class OutboundCallResponse(BaseModel):
    success: bool = True
    response: str = Field(description="Twilio call SID.")


class StatusCallbackResponse(BaseModel):
    success: bool = True
