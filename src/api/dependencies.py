"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING

from fastapi import HTTPException

from agents.session_registry import SessionRegistry
from integrations.twilio_client import TwilioConfig, build_twilio_client, get_twilio_config
from llm.factory import build_llm_client

if TYPE_CHECKING:  # pragma: no cover
    from integrations.assistant_store import BaseAssistantStore


@lru_cache(maxsize=1)
def _registry_factory() -> SessionRegistry:
    return SessionRegistry()


@lru_cache(maxsize=1)
def _assistant_store_factory() -> BaseAssistantStore:
    # Lazy import so route modules load without Airtable settings validated.
    from integrations.assistant_store import build_assistant_store

    return build_assistant_store()


def get_session_registry() -> SessionRegistry:
    return _registry_factory()


def get_assistant_store() -> BaseAssistantStore:
    return _assistant_store_factory()


def get_llm_factory():
    return build_llm_client


def get_twilio_client():
    try:
        return build_twilio_client()
    except ValueError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


def get_twilio_cfg() -> TwilioConfig:
    try:
        return get_twilio_config()
    except ValueError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
