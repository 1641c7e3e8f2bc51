"""Twilio Voice integration.

This module provides:
- Conversation Relay WebSocket endpoint (one relay session per call).
- TwiML webhook connecting a call to the relay.
- Outbound call endpoint and call status callbacks.
"""

from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, Request, Response, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from agents.errors import SessionSetupError
from agents.relay_session import RelaySession
from api.dependencies import (
    get_assistant_store,
    get_llm_factory,
    get_session_registry,
    get_twilio_cfg,
    get_twilio_client,
)
from api.schemas import OutboundCallRequest, OutboundCallResponse, StatusCallbackResponse
from config.settings import get_settings
from integrations.twilio_client import twiml_conversation_relay

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["twilio"])

RELAY_PARAMETERS = ("callReference", "assistant", "contextFile", "toolManifestFile")


def _twiml_response(xml: str) -> Response:
    # Twilio expects application/xml
    return Response(content=xml, media_type="application/xml")


@router.websocket("/conversation-relay")
async def conversation_relay(
    websocket: WebSocket,
    registry=Depends(get_session_registry),
    assistant_store=Depends(get_assistant_store),
    llm_factory=Depends(get_llm_factory),
) -> None:
    await websocket.accept()

    async def send(message: dict) -> None:
        await websocket.send_text(json.dumps(message))

    session = RelaySession(
        send,
        assistant_store=assistant_store,
        llm_factory=llm_factory,
        parameter_lookup=registry.parameters_for,
    )
    registered = False
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                await session.handle_message(raw)
            except SessionSetupError as exc:
                LOGGER.error("Closing relay socket: %s", exc.detail)
                await websocket.close(code=1011)
                break
            if not registered and session.call_sid:
                await registry.register(session)
                registered = True
    except WebSocketDisconnect:
        LOGGER.info("[%s] Relay socket disconnected", session.call_sid)
    finally:
        await session.close()
        if registered:
            await registry.unregister(session)


@router.post("/connectConversationRelay")
async def connect_conversation_relay(request: Request) -> Response:
    settings = get_settings()
    base_url = settings.public_base_url or str(request.base_url)
    parameters = {name: request.query_params.get(name) for name in RELAY_PARAMETERS}
    LOGGER.info("Generating Conversation Relay TwiML with parameters %s", parameters)
    return _twiml_response(twiml_conversation_relay(base_url=base_url, parameters=parameters))


@router.post("/outboundCall", response_model=OutboundCallResponse)
async def outbound_call(
    payload: OutboundCallRequest,
    registry=Depends(get_session_registry),
    assistant_store=Depends(get_assistant_store),
    twilio_client=Depends(get_twilio_client),
    cfg=Depends(get_twilio_cfg),
):
    properties = payload.properties
    if properties.assistant:
        # Raises AssistantNotFound (404) before any call is placed.
        await assistant_store.get_assistant(properties.assistant)
    if properties.call_reference:
        registry.store_parameters(properties.call_reference, properties.model_dump(by_alias=True))

    twiml = twiml_conversation_relay(
        base_url=cfg.public_base_url,
        parameters={"callReference": properties.call_reference, "assistant": properties.assistant},
    )
    try:
        call = await asyncio.to_thread(
            twilio_client.calls.create,
            to=properties.phone_number,
            from_=cfg.from_number,
            twiml=twiml,
        )
    except Exception as exc:
        LOGGER.exception("Outbound call to %s failed", properties.phone_number)
        return JSONResponse(status_code=502, content={"success": False, "error": str(exc)})

    LOGGER.info("Outbound call %s placed to %s", call.sid, properties.phone_number)
    return OutboundCallResponse(response=str(call.sid))


@router.post("/twilioStatusCallback", response_model=StatusCallbackResponse)
async def twilio_status_callback(
    request: Request,
    registry=Depends(get_session_registry),
) -> StatusCallbackResponse:
    if request.headers.get("content-type", "").startswith("application/json"):
        payload = await request.json()
    else:
        form = await request.form()
        payload = {key: str(value) for key, value in form.items()}

    call_sid = str(payload.get("CallSid") or payload.get("callSid") or "")
    LOGGER.info("Status callback for %s: %s", call_sid or "unknown call", payload)

    session = await registry.get(call_sid) if call_sid else None
    if session is not None:
        session.insert_context("system", json.dumps(payload))
    return StatusCallbackResponse()
