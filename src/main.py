"""Entry point for the Conversation Relay voice assistant service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from agents.errors import RelayError
from api.routes import router as api_router
from config.settings import get_settings
from tools.registry import ToolRegistry

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Fail fast on a default manifest that names unknown tools.
    registry = ToolRegistry.load(settings.default_tool_manifest_file)
    LOGGER.info("Default tool manifest offers %s", ", ".join(registry.names) or "no tools")
    yield


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Conversation Relay Assistant",
    description="Streams Twilio Conversation Relay calls through an LLM with tool calling.",
    lifespan=lifespan,
)
app.include_router(api_router, prefix="/api")


@app.exception_handler(RelayError)
async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    LOGGER.warning("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def run() -> None:
    import uvicorn

    uvicorn.run("main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())
