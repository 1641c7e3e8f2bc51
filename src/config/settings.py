"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)

    # LLM connectivity
    llm_provider: Literal["openai", "deepseek", "groq", "self_hosted_vllm"] = Field(
        default="openai",
        description="Default provider when the assistant definition does not name one.",
    )
    llm_endpoint: str | None = Field(
        default=None, description="Base URL for OpenAI or the self-hosted inference server."
    )
    llm_api_key: str | None = Field(default=None)
    llm_model: str = Field(default="gpt-4o-mini")
    llm_temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    deepseek_api_key: str | None = Field(default=None)
    deepseek_model: str = Field(default="deepseek-chat")
    groq_api_key: str | None = Field(default=None)
    groq_model: str = Field(default="llama-3.3-70b-versatile")
    max_tool_followups: int = Field(
        default=3,
        ge=1,
        description="Upper bound on follow-up completion passes after tool calls per prompt.",
    )

    # Assistant configuration
    assistant_source: Literal["local", "airtable"] = Field(default="local")
    assistants_file: str = Field(default="assistants.json")
    default_assistant: str | None = Field(default=None)
    default_context_file: str = Field(default="context.md")
    default_tool_manifest_file: str = Field(default="toolManifest.json")
    airtable_token: str | None = Field(default=None)
    airtable_base_id: str | None = Field(default=None)
    airtable_table_name: str | None = Field(default=None)
    airtable_view: str | None = Field(default=None)

    # Caller silence handling
    silence_threshold_seconds: float = Field(default=5.0, gt=0.0)
    silence_retry_limit: int = Field(default=3, ge=1)
    silence_reminder_message: str = Field(
        default="Are you still there? I'm happy to help whenever you're ready."
    )
    silence_goodbye_message: str = Field(
        default="I haven't heard from you, so I'll end the call now. Goodbye."
    )
    silence_end_call: bool = Field(
        default=True,
        description="If true, escalated silence ends the call with an `end` relay message.",
    )

    # Twilio
    twilio_account_sid: str | None = Field(default=None)
    twilio_auth_token: str | None = Field(default=None)
    twilio_from_number: str | None = Field(default=None, description="E.164, e.g. +1415...")
    twilio_sms_from_number: str | None = Field(
        default=None, description="Sender for SMS tools; falls back to twilio_from_number."
    )
    public_base_url: str | None = Field(
        default=None,
        description="Public base URL for Twilio webhooks (e.g. https://<ngrok>.ngrok-free.app).",
    )

    # Conversation Relay TwiML
    relay_voice: str = Field(default="en-AU-Journey-D")
    relay_language: str = Field(default="en-US")
    relay_transcription_provider: str = Field(default="Deepgram")
    relay_speech_model: str = Field(default="nova-3-general")
    relay_welcome_greeting: str | None = Field(
        default=None,
        description="Greeting spoken by Twilio itself; leave empty when assistants greet.",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
