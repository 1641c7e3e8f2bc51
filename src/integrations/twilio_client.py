from __future__ import annotations

import logging
from dataclasses import dataclass
from xml.sax.saxutils import quoteattr

from config.settings import get_settings

LOGGER = logging.getLogger(__name__)

RELAY_WS_PATH = "/api/conversation-relay"


@dataclass(frozen=True)
class TwilioConfig:
    account_sid: str
    auth_token: str
    from_number: str
    public_base_url: str
    sms_from_number: str | None = None


def get_twilio_config() -> TwilioConfig:
    settings = get_settings()
    if not settings.twilio_account_sid or not settings.twilio_auth_token:
        raise ValueError("Twilio credentials are not configured")
    if not settings.twilio_from_number:
        raise ValueError("Twilio from-number is not configured")
    if not settings.public_base_url:
        raise ValueError("PUBLIC_BASE_URL is required for Twilio callbacks")

    return TwilioConfig(
        account_sid=settings.twilio_account_sid,
        auth_token=settings.twilio_auth_token,
        from_number=settings.twilio_from_number,
        public_base_url=settings.public_base_url.rstrip("/"),
        sms_from_number=settings.twilio_sms_from_number,
    )


def build_twilio_client():
    from twilio.rest import Client

    cfg = get_twilio_config()
    return Client(cfg.account_sid, cfg.auth_token)


def send_sms(to_number: str, body: str, *, client=None, cfg: TwilioConfig | None = None) -> str:
    """Send an SMS with the configured sender; returns the message SID."""

    cfg = cfg or get_twilio_config()
    client = client or build_twilio_client()
    sender = cfg.sms_from_number or cfg.from_number
    LOGGER.info("Sending SMS to %s from %s", to_number, sender)
    message = client.messages.create(to=to_number, from_=sender, body=body)
    return str(message.sid)


def to_ws_url(http_url: str) -> str:
    if http_url.startswith("https://"):
        return "wss://" + http_url.removeprefix("https://")
    if http_url.startswith("http://"):
        return "ws://" + http_url.removeprefix("http://")
    if "://" not in http_url:
        return "wss://" + http_url
    return http_url


def twiml_conversation_relay(*, base_url: str, parameters: dict[str, str | None] | None = None) -> str:
    """TwiML connecting the call leg to this service's relay WebSocket."""

    settings = get_settings()
    attributes = {
        "url": to_ws_url(base_url.rstrip("/")) + RELAY_WS_PATH,
        "voice": settings.relay_voice,
        "language": settings.relay_language,
        "transcriptionProvider": settings.relay_transcription_provider,
        "speechModel": settings.relay_speech_model,
        "interruptible": "true",
        "dtmfDetection": "true",
        "interruptByDtmf": "true",
    }
    if settings.relay_welcome_greeting:
        attributes["welcomeGreeting"] = settings.relay_welcome_greeting

    rendered = " ".join(f"{name}={quoteattr(value)}" for name, value in attributes.items())
    params = "".join(
        f"<Parameter name={quoteattr(name)} value={quoteattr(value)} />"
        for name, value in (parameters or {}).items()
        if value
    )
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<Response>"
        "<Connect>"
        f"<ConversationRelay {rendered}>{params}</ConversationRelay>"
        "</Connect>"
        "</Response>"
    )
