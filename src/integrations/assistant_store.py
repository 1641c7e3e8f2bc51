"""Assistant definitions, looked up by name with fetch-if-empty caching."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from agents.errors import AssistantNotFound
from agents.schemas import AssistantDefinition
from config.settings import get_settings
from prompts.loader import load_json_asset

LOGGER = logging.getLogger(__name__)

AIRTABLE_API_URL = "https://api.airtable.com/v0"

AIRTABLE_FIELDS = {
    "assistant_name": "Assistant Name",
    "company_name": "Company Name",
    "vertical": "Vertical",
    "initial_message": "Initial Message",
    "instructions": "Instructions",
    "additional_context": "Additional Context",
    "llm_provider": "LLM Provider",
    "context_file": "Context File",
    "tool_manifest_file": "Tool Manifest File",
    "language_code": "Language Code",
}


class BaseAssistantStore(ABC):
    """Caches every assistant on first lookup; refetches only while the cache is empty."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._assistants: list[AssistantDefinition] = []

    @abstractmethod
    async def _fetch_assistants(self) -> list[AssistantDefinition]:
        """Load all assistant definitions from the backing source."""

    async def list_assistants(self) -> list[AssistantDefinition]:
        async with self._lock:
            if not self._assistants:
                LOGGER.info("Assistant cache empty, fetching definitions")
                self._assistants = await self._fetch_assistants()
            return list(self._assistants)

    async def get_assistant(self, name: str) -> AssistantDefinition:
        for assistant in await self.list_assistants():
            if assistant.assistant_name == name:
                return assistant
        raise AssistantNotFound(f"No assistant named {name!r}.")


class LocalAssistantStore(BaseAssistantStore):
    """Assistants listed in a JSON file shipped with the prompts."""

    def __init__(self, filename: str | None = None) -> None:
        super().__init__()
        self._filename = filename or get_settings().assistants_file

    async def _fetch_assistants(self) -> list[AssistantDefinition]:
        entries = load_json_asset(self._filename)
        return [AssistantDefinition.model_validate(entry) for entry in entries]


class AirtableAssistantStore(BaseAssistantStore):
    """Assistants stored as rows of an Airtable table."""

    def __init__(self, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        super().__init__()
        settings = get_settings()
        if not (settings.airtable_token and settings.airtable_base_id and settings.airtable_table_name):
            raise ValueError("Airtable token, base id and table name must be configured.")
        self._token = settings.airtable_token
        self._url = f"{AIRTABLE_API_URL}/{settings.airtable_base_id}/{quote(settings.airtable_table_name)}"
        self._view = settings.airtable_view
        self._transport = transport

    async def _fetch_assistants(self) -> list[AssistantDefinition]:
        records: list[dict[str, Any]] = []
        headers = {"Authorization": f"Bearer {self._token}"}
        async with httpx.AsyncClient(timeout=30, transport=self._transport) as client:
            offset: str | None = None
            while True:
                params: dict[str, str] = {}
                if self._view:
                    params["view"] = self._view
                if offset:
                    params["offset"] = offset
                response = await client.get(self._url, params=params, headers=headers)
                try:
                    response.raise_for_status()
                except httpx.HTTPError as exc:
                    LOGGER.error("Airtable assistant fetch failed: %s", exc)
                    raise
                payload = response.json()
                records.extend(payload.get("records", []))
                offset = payload.get("offset")
                if not offset:
                    break

        assistants: list[AssistantDefinition] = []
        for record in records:
            fields = record.get("fields", {})
            values = {key: fields.get(column) for key, column in AIRTABLE_FIELDS.items()}
            try:
                assistants.append(
                    AssistantDefinition.model_validate(
                        {key: value for key, value in values.items() if value is not None}
                    )
                )
            except ValidationError as exc:
                LOGGER.debug("Skipping invalid assistant record %s: %s", record.get("id"), exc)
        LOGGER.info("Fetched %d assistants from Airtable", len(assistants))
        return assistants


def build_assistant_store() -> BaseAssistantStore:
    """Instantiate the configured assistant source."""

    settings = get_settings()
    if settings.assistant_source == "airtable":
        return AirtableAssistantStore()
    return LocalAssistantStore()
