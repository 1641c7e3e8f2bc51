"""Command-line stand-in for Twilio Conversation Relay.

Connects to the relay WebSocket, sends a `setup` message and then one
`prompt` per line typed on stdin. Streamed tokens are printed as they arrive;
control messages (`end`, `sendDigits`) are printed on their own line.

Usage:
    relay-client --url ws://localhost:3000/api/conversation-relay --assistant Joules
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import uuid
from typing import Any

import websockets

from config.settings import get_settings

LOGGER = logging.getLogger(__name__)


def build_setup_message(
    call_sid: str,
    *,
    from_number: str | None = None,
    to_number: str | None = None,
    custom_parameters: dict[str, str | None] | None = None,
) -> dict[str, Any]:
    message: dict[str, Any] = {"type": "setup", "callSid": call_sid}
    if from_number:
        message["from"] = from_number
    if to_number:
        message["to"] = to_number
    params = {name: value for name, value in (custom_parameters or {}).items() if value}
    if params:
        message["customParameters"] = params
    return message


def build_prompt_message(text: str, lang: str = "en-US") -> dict[str, Any]:
    return {"type": "prompt", "voicePrompt": text, "lang": lang, "last": True}


def render_server_message(raw: str | bytes) -> str:
    """Format one server frame for the terminal."""

    try:
        message = json.loads(raw)
    except json.JSONDecodeError:
        return f"[unparsed] {raw!r}\n"
    if not isinstance(message, dict):
        return f"[unparsed] {raw!r}\n"
    if message.get("type") == "text":
        token = str(message.get("token", ""))
        return token + ("\n" if message.get("last") else "")
    return f"[{message.get('type', 'unknown')}] {json.dumps(message)}\n"


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Conversation Relay simulator")
    parser.add_argument("--url", default=f"ws://localhost:{settings.port}/api/conversation-relay")
    parser.add_argument("--call-sid", default=f"CA{uuid.uuid4().hex}")
    parser.add_argument("--from", dest="from_number", default="+15550100")
    parser.add_argument("--to", dest="to_number", default=settings.twilio_from_number)
    parser.add_argument("--assistant", default=None)
    parser.add_argument("--call-reference", default=None)
    parser.add_argument("--lang", default=settings.relay_language)
    return parser.parse_args(argv)


async def _print_replies(ws) -> None:
    async for raw in ws:
        sys.stdout.write(render_server_message(raw))
        sys.stdout.flush()


async def _send_prompts(ws, lang: str) -> None:
    while True:
        line = await asyncio.to_thread(sys.stdin.readline)
        if not line:
            return
        text = line.strip()
        if text:
            await ws.send(json.dumps(build_prompt_message(text, lang)))


async def _amain(args: argparse.Namespace) -> None:
    setup = build_setup_message(
        args.call_sid,
        from_number=args.from_number,
        to_number=args.to_number,
        custom_parameters={"assistant": args.assistant, "callReference": args.call_reference},
    )
    async with websockets.connect(args.url) as ws:
        LOGGER.info("Connected to %s as %s", args.url, args.call_sid)
        await ws.send(json.dumps(setup))
        printer = asyncio.create_task(_print_replies(ws))
        try:
            await _send_prompts(ws, args.lang)
        finally:
            printer.cancel()


def main(argv: list[str] | None = None) -> None:
    logging.basicConfig(level=get_settings().log_level)
    args = _parse_args(argv)
    try:
        asyncio.run(_amain(args))
    except KeyboardInterrupt:
        pass
    except websockets.ConnectionClosed as exc:
        LOGGER.info("Relay socket closed: %s", exc)


if __name__ == "__main__":
    main()
