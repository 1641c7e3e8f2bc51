"""FastAPI routes exposing the relay service."""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from api.twilio_routes import router as twilio_router

router = APIRouter()
router.include_router(twilio_router)


@router.get("/", response_class=PlainTextResponse)
async def health() -> str:
    return "WebSocket Server Running"
