from __future__ import annotations

import asyncio
import json

import pytest

from agents.errors import SessionSetupError, UpstreamStreamError
from agents.relay_session import RelaySession
from agents.silence import SilenceMonitor, SilenceState
from config.settings import Settings
from fakes import FakeLLMClient, ManualClock, settle, text_reply, tool_reply
from integrations.assistant_store import LocalAssistantStore
from llm.base import ContentDelta, StreamDone

LAST = {"type": "text", "token": "", "last": True}


def _session(fake: FakeLLMClient, *, clock: ManualClock | None = None, available_tools=None, **overrides):
    settings = Settings(**{"silence_threshold_seconds": 5, "silence_retry_limit": 3, **overrides})
    monitor = SilenceMonitor(
        settings.silence_threshold_seconds,
        settings.silence_retry_limit,
        reminder_message=settings.silence_reminder_message,
        sleep=(clock or ManualClock()).sleep,
    )
    sent: list[dict] = []

    async def transport(message):
        sent.append(message)

    session = RelaySession(
        transport,
        assistant_store=LocalAssistantStore(),
        settings=settings,
        llm_factory=lambda provider: fake,
        available_tools=available_tools,
        parameter_lookup=lambda ref: {"orderId": "A-77"} if ref == "ref-1" else {},
        silence_monitor=monitor,
    )
    return session, sent


def _setup(assistant: str = "Frontdesk", **extra) -> str:
    return json.dumps(
        {
            "type": "setup",
            "callSid": "CA100",
            "from": "+15550100",
            "to": "+15550199",
            "customParameters": {"assistant": assistant, **extra},
        }
    )


def _prompt(text: str, last: bool = True) -> str:
    return json.dumps({"type": "prompt", "voicePrompt": text, "lang": "en-US", "last": last})


@pytest.mark.asyncio
async def test_greeting_is_sent_without_calling_the_model():
    fake = FakeLLMClient()
    session, sent = _session(fake)

    await session.handle_message(_setup("Joules"))

    assert sent == [{"type": "text", "token": "Hi, how can I help?", "last": True}]
    assert fake.calls == []
    assert [t.role for t in session.turns] == ["system", "assistant"]
    assert session.call_sid == "CA100"
    await session.close()


@pytest.mark.asyncio
async def test_system_prompt_carries_persona_call_details_and_reference_data():
    session, _ = _session(FakeLLMClient())

    await session.handle_message(_setup("Joules", callReference="ref-1"))

    system = session.turns.turns[0].content
    assert 'named "Joules"' in system
    assert "Owl Shoes" in system
    assert "CA100" in system
    assert "+15550100" in system
    assert '"orderId": "A-77"' in system
    await session.close()


@pytest.mark.asyncio
async def test_prompt_streams_tokens_then_last_marker():
    fake = FakeLLMClient(text_reply("We open ", "at nine."))
    session, sent = _session(fake)
    await session.handle_message(_setup())

    await session.handle_message(_prompt("When do you open?"))
    await session.wait_idle()

    assert sent == [
        {"type": "text", "token": "We open ", "last": False},
        {"type": "text", "token": "at nine.", "last": False},
        LAST,
    ]
    assert session.interaction_count == 1
    assert [t.role for t in session.turns] == ["system", "user", "assistant"]
    await session.close()


@pytest.mark.asyncio
async def test_partial_and_empty_prompts_are_ignored():
    fake = FakeLLMClient()
    session, sent = _session(fake)
    await session.handle_message(_setup())

    await session.handle_message(_prompt("When do", last=False))
    await session.handle_message(_prompt("   "))
    await session.wait_idle()

    assert sent == []
    assert fake.calls == []
    assert session.interaction_count == 0
    await session.close()


@pytest.mark.asyncio
async def test_events_before_setup_are_ignored():
    fake = FakeLLMClient()
    session, sent = _session(fake)

    await session.handle_message(_prompt("hello?"))
    await session.handle_message(json.dumps({"type": "interrupt"}))
    await session.handle_message(json.dumps({"type": "dtmf", "digit": "1"}))

    assert sent == []
    assert fake.calls == []
    assert len(session.turns) == 0
    await session.close()


@pytest.mark.asyncio
async def test_unknown_and_malformed_messages_are_dropped():
    session, sent = _session(FakeLLMClient())
    await session.handle_message(_setup())

    unknown = await session.handle_message(json.dumps({"type": "mystery", "payload": 1}))
    malformed = await session.handle_message("{not json")
    missing_field = await session.handle_message(json.dumps({"type": "prompt"}))

    assert unknown.type == "mystery"
    assert malformed is None
    assert missing_field is None
    assert sent == []
    await session.close()


@pytest.mark.asyncio
async def test_dtmf_is_published_to_subscribers():
    session, _ = _session(FakeLLMClient())
    digits = []
    session.subscribe("dtmf", lambda event: digits.append(event.digit))
    await session.handle_message(_setup())

    await session.handle_message(json.dumps({"type": "dtmf", "digit": "5"}))

    assert digits == ["5"]
    await session.close()


@pytest.mark.asyncio
async def test_second_prompt_waits_for_the_first():
    fake = FakeLLMClient(text_reply("First answer."), text_reply("Second answer."))
    session, sent = _session(fake)
    await session.handle_message(_setup())

    await session.handle_message(_prompt("one"))
    await session.handle_message(_prompt("two"))
    await session.wait_idle()

    assert session.interaction_count == 2
    second_call = fake.calls[1]["messages"]
    assert second_call[-2] == {"role": "assistant", "content": "First answer."}
    assert second_call[-1] == {"role": "user", "content": "two"}
    assert [m for m in sent if m["last"]] == [LAST, LAST]
    await session.close()


@pytest.mark.asyncio
async def test_interrupt_stops_the_active_response():
    holder = {}
    script = [
        ContentDelta("Our return "),
        lambda: holder["session"].handle_message(
            json.dumps({"type": "interrupt", "utteranceUntilInterrupt": "Our return"})
        ),
        ContentDelta("policy is"),
        StreamDone("stop"),
    ]
    fake = FakeLLMClient(script, text_reply("Sure."))
    session, sent = _session(fake)
    holder["session"] = session
    await session.handle_message(_setup())

    await session.handle_message(_prompt("returns?"))
    await session.wait_idle()

    assert sent == [{"type": "text", "token": "Our return ", "last": False}, LAST]
    assert session.turns.last().content == "Our return "

    # The next prompt starts with a cleared interrupt flag.
    await session.handle_message(_prompt("actually, hours?"))
    await session.wait_idle()
    assert session.turns.last().content == "Sure."
    assert session.interrupted is False
    await session.close()


@pytest.mark.asyncio
async def test_tool_control_messages_are_forwarded():
    fake = FakeLLMClient(
        tool_reply("live-agent-handoff", '{"summary": "wants a human"}'),
        text_reply("Connecting you now."),
    )
    session, sent = _session(fake)
    await session.handle_message(_setup())

    await session.handle_message(_prompt("person please"))
    await session.wait_idle()

    end = next(m for m in sent if m["type"] == "end")
    assert json.loads(end["handoffData"]) == {
        "reasonCode": "live-agent-handoff",
        "reason": "wants a human",
    }
    assert sent[-1] == LAST
    assert [t.role for t in session.turns][-3:] == ["assistant", "tool", "assistant"]
    await session.close()


@pytest.mark.asyncio
async def test_upstream_error_is_published_and_turn_closed():
    fake = FakeLLMClient([ContentDelta("One mo"), UpstreamStreamError("reset by peer")])
    session, sent = _session(fake)
    errors = []
    session.subscribe("error", errors.append)
    await session.handle_message(_setup())

    await session.handle_message(_prompt("hello"))
    await session.wait_idle()

    assert len(errors) == 1
    assert sent == [{"type": "text", "token": "One mo", "last": False}, LAST]
    assert session.turns.last().content == "One mo"
    await session.close()


@pytest.mark.asyncio
async def test_silence_reminders_then_goodbye_and_end():
    clock = ManualClock()
    session, sent = _session(FakeLLMClient(), clock=clock, silence_retry_limit=2)
    escalations = []
    session.subscribe("silence_escalated", escalations.append)
    await session.handle_message(_setup())
    await settle()

    clock.fire()
    await settle()
    await session.wait_idle()

    reminder = session._settings.silence_reminder_message
    assert sent == [{"type": "text", "token": reminder, "last": True}]
    assert session.turns.last().content == reminder

    clock.fire()
    await settle()

    assert sent[1] == {"type": "text", "token": session._settings.silence_goodbye_message, "last": True}
    assert sent[2]["type"] == "end"
    assert json.loads(sent[2]["handoffData"])["reasonCode"] == "silence-timeout"
    assert len(escalations) == 1
    assert session.silence_monitor.state is SilenceState.ESCALATED
    await session.close()


@pytest.mark.asyncio
async def test_caller_speech_resets_silence_warnings():
    clock = ManualClock()
    session, _ = _session(FakeLLMClient(text_reply("Hi.")), clock=clock)
    await session.handle_message(_setup())
    await settle()
    clock.fire()
    await settle()
    assert session.silence_monitor.warnings == 1

    await session.handle_message(_prompt("sorry, I'm here"))
    await session.wait_idle()

    assert session.silence_monitor.warnings == 0
    assert session.silence_monitor.state is SilenceState.ARMED
    await session.close()


@pytest.mark.asyncio
async def test_status_context_is_recorded_without_completion():
    fake = FakeLLMClient()
    session, sent = _session(fake)
    await session.handle_message(_setup())

    session.insert_context("system", json.dumps({"CallStatus": "in-progress"}))
    await session.wait_idle()

    assert session.turns.last().role == "system"
    assert "in-progress" in session.turns.last().content
    assert fake.calls == []
    assert sent == []
    with pytest.raises(ValueError):
        session.insert_context("tool", "{}")
    await session.close()


@pytest.mark.asyncio
async def test_unknown_assistant_fails_setup():
    session, _ = _session(FakeLLMClient())

    with pytest.raises(SessionSetupError):
        await session.handle_message(_setup("Nobody"))

    assert session.call_sid is None
    await session.close()


@pytest.mark.asyncio
async def test_repeated_setup_is_ignored():
    session, _ = _session(FakeLLMClient())
    await session.handle_message(_setup())

    await session.handle_message(json.dumps({"type": "setup", "callSid": "CA999"}))

    assert session.call_sid == "CA100"
    assert [t.role for t in session.turns] == ["system"]
    await session.close()


@pytest.mark.asyncio
async def test_close_is_idempotent_and_silences_the_session():
    fake = FakeLLMClient()
    session, sent = _session(fake)
    await session.handle_message(_setup())

    await session.close()
    await session.close()
    await session.handle_message(_prompt("anyone?"))

    assert session.silence_monitor.state is SilenceState.IDLE
    assert fake.calls == []
    assert sent == []


@pytest.mark.asyncio
async def test_silence_is_suspended_while_a_response_streams():
    clock = ManualClock()
    gate = asyncio.Event()
    fake = FakeLLMClient([ContentDelta("Let me check "), gate.wait, ContentDelta("that."), StreamDone("stop")])
    session, sent = _session(fake, clock=clock, silence_retry_limit=2)
    await session.handle_message(_setup())
    await settle()

    await session.handle_message(_prompt("where is my order?"))
    await settle()
    for _ in range(2):
        clock.fire()
        await settle()

    assert sent == [{"type": "text", "token": "Let me check ", "last": False}]
    assert session.silence_monitor.suspended is True
    assert clock.pending == []

    gate.set()
    await session.wait_idle()
    await settle()

    assert sent == [
        {"type": "text", "token": "Let me check ", "last": False},
        {"type": "text", "token": "that.", "last": False},
        LAST,
    ]
    monitor = session.silence_monitor
    assert monitor.state is SilenceState.ARMED
    assert monitor.warnings == 0
    assert clock.pending == [5.0]

    clock.fire()
    await settle()
    assert sent[-1] == {"type": "text", "token": session._settings.silence_reminder_message, "last": True}
    assert all(message["type"] != "end" for message in sent)
    await session.close()


@pytest.mark.asyncio
async def test_interrupt_during_tool_call_closes_turn_once():
    holder = {}

    async def handoff(arguments):
        await holder["session"].handle_message(json.dumps({"type": "interrupt"}))
        return {"status": "queued"}

    fake = FakeLLMClient(tool_reply("live-agent-handoff", '{"summary": "x"}'), text_reply("Never sent."))
    session, sent = _session(fake, available_tools={"live-agent-handoff": handoff})
    holder["session"] = session
    await session.handle_message(_setup())

    await session.handle_message(_prompt("person please"))
    await session.wait_idle()

    assert sent == [LAST]
    assert len(fake.calls) == 1
    assistant, tool = list(session.turns)[-2:]
    assert assistant.role == "assistant" and assistant.tool_calls
    assert tool.role == "tool"
    await session.close()


@pytest.mark.asyncio
async def test_unexpected_stream_failure_still_closes_the_turn():
    fake = FakeLLMClient([ContentDelta("Par"), RuntimeError("boom")], text_reply("Fine."))
    session, sent = _session(fake)
    await session.handle_message(_setup())

    await session.handle_message(_prompt("hello"))
    await session.wait_idle()

    assert sent == [{"type": "text", "token": "Par", "last": False}, LAST]

    await session.handle_message(_prompt("still there?"))
    await session.wait_idle()
    assert sent[2:] == [{"type": "text", "token": "Fine.", "last": False}, LAST]
    assert session.turns.last().content == "Fine."
    await session.close()
