"""Per-call orchestration of the conversation relay protocol."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable, Mapping
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Literal, Union

from agents.errors import MalformedInboundEvent, SessionSetupError, UpstreamStreamError
from agents.schemas import (
    AssistantDefinition,
    DtmfEvent,
    EndMessage,
    ErrorEvent,
    InboundEvent,
    InfoEvent,
    InterruptEvent,
    OutboundMessage,
    PromptEvent,
    SetupEvent,
    TextToken,
    parse_inbound_event,
)
from agents.silence import SilenceMonitor, SilenceTimeout
from agents.turns import ConversationTurn, TurnStore
from config.settings import Settings, get_settings
from integrations.assistant_store import BaseAssistantStore
from llm.base import BaseLLMClient, ContentDelta, ToolCallDelta
from llm.completion import CompletionAdapter, CompletionDone, ToolResultEvent
from llm.factory import build_llm_client
from prompts.loader import load_prompt
from tools.registry import ToolDispatcher, ToolHandler, ToolRegistry

LOGGER = logging.getLogger(__name__)

Transport = Callable[[dict[str, Any]], Awaitable[None]]
LLMFactory = Callable[[Union[str, None]], BaseLLMClient]
Listener = Callable[[Any], Any]

DEFAULT_ASSISTANT = AssistantDefinition(assistant_name="Assistant")


@dataclass(frozen=True)
class _PromptJob:
    text: str
    interaction_count: int


@dataclass(frozen=True)
class _ContextJob:
    role: Literal["system", "user", "assistant"]
    content: str


class RelaySession:
    """State machine for one relay WebSocket connection.

    Inbound events are handled in arrival order. Prompts and context inserts
    are queued and drained by a single worker task, so completion passes never
    overlap; `interrupt` bypasses the queue and signals the active pass.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        assistant_store: BaseAssistantStore,
        settings: Settings | None = None,
        llm_factory: LLMFactory = build_llm_client,
        available_tools: Mapping[str, ToolHandler] | None = None,
        parameter_lookup: Callable[[str | None], dict[str, Any]] | None = None,
        silence_monitor: SilenceMonitor | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._transport = transport
        self._assistant_store = assistant_store
        self._llm_factory = llm_factory
        self._available_tools = available_tools
        self._parameter_lookup = parameter_lookup or (lambda _reference: {})
        self._monitor = silence_monitor or SilenceMonitor(
            self._settings.silence_threshold_seconds,
            self._settings.silence_retry_limit,
            reminder_message=self._settings.silence_reminder_message,
        )

        self.call_sid: str | None = None
        self.call_reference: str | None = None
        self.turns = TurnStore()
        self.interaction_count = 0
        self._assistant: AssistantDefinition | None = None
        self._adapter: CompletionAdapter | None = None
        self._interrupted = asyncio.Event()
        self._jobs: asyncio.Queue[_PromptJob | _ContextJob] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._send_lock = asyncio.Lock()
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._pass_active = False
        self._pending_prompts = 0
        self._closed = False

    @property
    def assistant(self) -> AssistantDefinition | None:
        return self._assistant

    @property
    def interrupted(self) -> bool:
        return self._interrupted.is_set()

    @property
    def is_busy(self) -> bool:
        return self._pass_active or self._pending_prompts > 0

    @property
    def silence_monitor(self) -> SilenceMonitor:
        return self._monitor

    def subscribe(self, event_name: str, callback: Listener) -> None:
        """Register a callback for `dtmf`, `error` or `silence_escalated`."""

        self._listeners[event_name].append(callback)

    async def handle_message(self, raw: str | bytes) -> InboundEvent | None:
        try:
            event = parse_inbound_event(raw)
        except MalformedInboundEvent as exc:
            LOGGER.warning("[%s] Dropping relay message: %s", self.call_sid, exc.detail)
            return None
        await self.on_inbound_event(event)
        return event

    async def on_inbound_event(self, event: InboundEvent) -> None:
        if self._closed:
            LOGGER.debug("[%s] Session closed, ignoring %s", self.call_sid, event.type)
            return

        if isinstance(event, SetupEvent):
            await self._on_setup(event)
        elif isinstance(event, PromptEvent):
            self._on_prompt(event)
        elif isinstance(event, InterruptEvent):
            self._on_interrupt(event)
        elif isinstance(event, DtmfEvent):
            await self._on_dtmf(event)
        elif isinstance(event, InfoEvent):
            LOGGER.debug("[%s] Relay info: %s", self.call_sid, event.model_extra)
        elif isinstance(event, ErrorEvent):
            LOGGER.error("[%s] Relay reported error: %s", self.call_sid, event.description)
        else:
            LOGGER.info("[%s] Ignoring relay message of type %s", self.call_sid, event.type)

    def insert_context(self, role: Literal["system", "user", "assistant"], content: str) -> None:
        """Queue a turn for the history without triggering a completion."""

        if role not in ("system", "user", "assistant"):
            raise ValueError(f"Cannot insert context with role {role!r}.")
        LOGGER.info("[%s] Inserting %s message into context", self.call_sid, role)
        self._jobs.put_nowait(_ContextJob(role=role, content=content))

    async def wait_idle(self) -> None:
        """Wait until every queued prompt and context insert has been processed."""

        await self._jobs.join()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        LOGGER.info("[%s] Closing relay session", self.call_sid)

        self._monitor.cleanup()
        if self._worker is not None:
            self._worker.cancel()
            with suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None
        while not self._jobs.empty():
            self._jobs.get_nowait()
            self._jobs.task_done()
        self._listeners.clear()
        self._adapter = None

    async def _on_setup(self, event: SetupEvent) -> None:
        if self.call_sid is not None:
            LOGGER.warning("[%s] Ignoring repeated setup for %s", self.call_sid, event.call_sid)
            return

        params = event.custom_parameters
        settings = self._settings
        try:
            assistant = await self._resolve_assistant(params.assistant)
            context_file = params.context_file or assistant.context_file or settings.default_context_file
            manifest_file = (
                params.tool_manifest_file
                or assistant.tool_manifest_file
                or settings.default_tool_manifest_file
            )
            context_text = load_prompt(context_file)
            registry = ToolRegistry.load(manifest_file, self._available_tools)
            client = self._llm_factory(assistant.llm_provider)
        except Exception as exc:
            LOGGER.error("[%s] Session setup failed: %s", event.call_sid, exc)
            raise SessionSetupError(f"Setup for call {event.call_sid} failed: {exc}") from exc

        self.call_sid = event.call_sid
        self.call_reference = params.call_reference
        self._assistant = assistant
        self.turns.append(
            ConversationTurn.system(
                self._build_system_prompt(
                    assistant,
                    event,
                    context_text,
                    self._parameter_lookup(params.call_reference),
                )
            )
        )
        self._adapter = CompletionAdapter(
            client,
            self.turns,
            ToolDispatcher(registry),
            tools=registry.definitions(),
            max_followups=settings.max_tool_followups,
            call_sid=self.call_sid,
        )
        self._worker = asyncio.create_task(self._drain_jobs())
        self._monitor.start_monitoring(self._on_silence)
        LOGGER.info(
            "[%s] Session ready with assistant %s (%d tools)",
            self.call_sid,
            assistant.assistant_name,
            len(registry),
        )

        if assistant.initial_message:
            await self._send(TextToken(token=assistant.initial_message, last=True))
            self.turns.append(ConversationTurn.assistant(assistant.initial_message))

    async def _resolve_assistant(self, name: str | None) -> AssistantDefinition:
        name = name or self._settings.default_assistant
        if not name:
            return DEFAULT_ASSISTANT
        return await self._assistant_store.get_assistant(name)

    def _on_prompt(self, event: PromptEvent) -> None:
        if self._adapter is None:
            LOGGER.warning("Prompt received before setup; ignoring")
            return
        self._monitor.reset()
        if not event.last:
            LOGGER.debug("[%s] Ignoring partial prompt", self.call_sid)
            return
        text = event.voice_prompt.strip()
        if not text:
            LOGGER.debug("[%s] Ignoring empty prompt", self.call_sid)
            return

        self.interaction_count += 1
        if self.is_busy:
            LOGGER.info(
                "[%s] Queueing prompt %d behind the active completion",
                self.call_sid,
                self.interaction_count,
            )
        self._pending_prompts += 1
        self._jobs.put_nowait(_PromptJob(text=text, interaction_count=self.interaction_count))

    def _on_interrupt(self, event: InterruptEvent) -> None:
        if self._adapter is None:
            LOGGER.warning("Interrupt received before setup; ignoring")
            return
        LOGGER.info(
            "[%s] Caller interrupted after: %s",
            self.call_sid,
            event.utterance_until_interrupt,
        )
        self._interrupted.set()

    async def _on_dtmf(self, event: DtmfEvent) -> None:
        if self._adapter is None:
            LOGGER.warning("DTMF received before setup; ignoring")
            return
        self._monitor.reset()
        LOGGER.info("[%s] DTMF digit %s", self.call_sid, event.digit)
        await self._publish("dtmf", event)

    async def _drain_jobs(self) -> None:
        while True:
            job = await self._jobs.get()
            try:
                if isinstance(job, _PromptJob):
                    self._pending_prompts -= 1
                    await self._run_completion(job)
                else:
                    self.turns.append(ConversationTurn(role=job.role, content=job.content))
            except Exception:
                LOGGER.exception("[%s] Relay job failed", self.call_sid)
            finally:
                self._jobs.task_done()

    async def _run_completion(self, job: _PromptJob) -> None:
        """Stream one interaction; the relay always receives exactly one closing `last` marker."""

        if self._adapter is None:
            return
        self._interrupted.clear()
        self._pass_active = True
        # The caller is not silent while the assistant holds the turn.
        self._monitor.suspend()
        closed_turn = False
        try:
            async for event in self._adapter.complete(
                ConversationTurn.user(job.text), job.interaction_count, self._interrupted
            ):
                if isinstance(event, ContentDelta):
                    await self._send(TextToken(token=event.text, last=False))
                elif isinstance(event, ToolCallDelta):
                    LOGGER.debug("[%s] Tool call fragment for %s", self.call_sid, event.name or event.index)
                elif isinstance(event, ToolResultEvent):
                    if event.result.control is not None:
                        await self._send(event.result.control)
                elif isinstance(event, CompletionDone):
                    if event.interrupted:
                        LOGGER.info("[%s] Interaction %d interrupted", self.call_sid, event.interaction_count)
                    closed_turn = True
                    await self._send(TextToken(token="", last=True))
        except UpstreamStreamError as exc:
            LOGGER.error("[%s] LLM stream failed: %s", self.call_sid, exc.detail)
            await self._publish("error", exc)
        finally:
            self._pass_active = False
            if not self._closed:
                if not closed_turn:
                    await self._send(TextToken(token="", last=True))
                self._monitor.resume()

    async def _on_silence(self, timeout: SilenceTimeout) -> None:
        if self._closed:
            return
        settings = self._settings

        if self.is_busy:
            # A response started after the window expired; resume() opens a fresh one.
            LOGGER.info(
                "[%s] Skipping silence %s while a response is in progress",
                self.call_sid,
                "escalation" if timeout.escalated else "reminder",
            )
            return

        if timeout.escalated:
            LOGGER.warning("[%s] Caller silent after %d reminders", self.call_sid, timeout.attempt)
            await self._send(TextToken(token=settings.silence_goodbye_message, last=True))
            if settings.silence_end_call:
                await self._send(
                    EndMessage(
                        handoff_data={
                            "reasonCode": "silence-timeout",
                            "reason": f"No caller input after {timeout.attempt} reminders",
                        }
                    )
                )
            await self._publish("silence_escalated", timeout)
            return

        await self._send(TextToken(token=timeout.message, last=True))
        self.insert_context("assistant", timeout.message)

    async def _send(self, message: OutboundMessage) -> None:
        if self._closed:
            return
        async with self._send_lock:
            await self._transport(message.to_wire())

    async def _publish(self, event_name: str, payload: Any) -> None:
        for callback in list(self._listeners.get(event_name, ())):
            try:
                result = callback(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                LOGGER.exception("[%s] %s listener failed", self.call_sid, event_name)

    @staticmethod
    def _build_system_prompt(
        assistant: AssistantDefinition,
        event: SetupEvent,
        context_text: str,
        parameters: dict[str, Any],
    ) -> str:
        persona = f'You are a virtual assistant named "{assistant.assistant_name}"'
        if assistant.company_name:
            persona += f' for the company "{assistant.company_name}"'
        sections = [persona + "."]
        for text in (assistant.instructions, assistant.additional_context, context_text):
            if text and text.strip():
                sections.append(text.strip())

        call_details = [f"The Twilio CallSid is {event.call_sid}."]
        if event.from_number:
            call_details.append(f'The customer phone number or "from" number is {event.from_number}.')
        if event.to_number:
            call_details.append(f"The number to send SMS messages from is {event.to_number}.")
        call_details.append("Use these details whenever a tool needs them.")
        sections.append(" ".join(call_details))

        if parameters:
            sections.append("Call reference data: " + json.dumps(parameters, default=str))
        return "\n\n".join(sections)
