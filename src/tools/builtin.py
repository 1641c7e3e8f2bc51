"""Tools the assistant can call mid-conversation.

Each handler takes the parsed JSON arguments and returns a JSON-serialisable
result. Handlers that need the relay itself (hang up, send tones) return a
`crelay` envelope; the dispatcher turns its `toolData` into a control message.
"""

from __future__ import annotations

import json
import logging
import secrets
from types import MappingProxyType
from typing import Any

from integrations.twilio_client import send_sms

LOGGER = logging.getLogger(__name__)


def live_agent_handoff(arguments: dict[str, Any]) -> dict[str, Any]:
    summary = str(arguments.get("summary") or "")
    LOGGER.info("Live agent handoff requested: %s", summary)
    return {
        "toolType": "crelay",
        "toolData": {
            "type": "end",
            "handoffData": json.dumps({"reasonCode": "live-agent-handoff", "reason": summary}),
        },
    }


def send_dtmf(arguments: dict[str, Any]) -> dict[str, Any]:
    digits = str(arguments.get("dtmfDigit") or "").strip()
    if not digits:
        raise ValueError("dtmfDigit is required.")
    LOGGER.info("Sending DTMF digits %s", digits)
    return {"toolType": "crelay", "toolData": {"type": "sendDigits", "digits": digits}}


def verify_send(arguments: dict[str, Any]) -> dict[str, Any]:
    to_number = str(arguments.get("from") or "").strip()
    if not to_number:
        raise ValueError("The caller's number (`from`) is required.")

    code = secrets.randbelow(9000) + 1000
    send_sms(to_number, f"Your verification code is: {code}")
    return {"message": f"Secret verification code is {code}"}


BUILTIN_TOOLS = MappingProxyType(
    {
        "live-agent-handoff": live_agent_handoff,
        "send-dtmf": send_dtmf,
        "verify-send": verify_send,
    }
)
