from __future__ import annotations

import json

import pytest

from agents.errors import ToolExecutionError, ToolNotFound, ToolRegistryError
from agents.schemas import EndMessage, SendDigitsMessage
from fakes import manifest
from tools.registry import ToolDispatcher, ToolRegistry, normalize_tool_output


def test_default_manifest_matches_builtin_tools():
    registry = ToolRegistry.load("toolManifest.json")

    assert set(registry.names) == {"live-agent-handoff", "send-dtmf", "verify-send"}
    assert registry.definitions()[0]["type"] == "function"
    assert "live-agent-handoff" in registry


def test_manifest_naming_unknown_tool_is_rejected():
    with pytest.raises(ToolRegistryError, match="unregistered"):
        ToolRegistry.from_manifest(manifest("lookup", "missing"), {"lookup": lambda args: {}})


def test_duplicate_names_are_rejected():
    with pytest.raises(ToolRegistryError, match="Duplicate"):
        ToolRegistry.from_manifest(manifest("lookup", "lookup"), {"lookup": lambda args: {}})


def test_invalid_tool_name_is_rejected():
    with pytest.raises(ToolRegistryError):
        ToolRegistry.from_manifest(manifest("has spaces"), {"has spaces": lambda args: {}})


def test_missing_manifest_file_is_a_registry_error():
    with pytest.raises(ToolRegistryError):
        ToolRegistry.load("noSuchManifest.json")


def test_registry_only_exposes_manifest_tools():
    registry = ToolRegistry.from_manifest(
        manifest("lookup"), {"lookup": lambda args: {}, "other": lambda args: {}}
    )

    assert registry.names == ("lookup",)
    assert registry.get("other") is None
    assert len(registry) == 1


@pytest.mark.asyncio
async def test_dispatcher_runs_sync_and_async_handlers():
    async def lookup(args):
        return {"stock": args["sku"] == "A1"}

    def echo(args):
        return "plain text"

    dispatcher = ToolDispatcher(ToolRegistry.from_manifest(manifest("lookup", "echo"), {"lookup": lookup, "echo": echo}))

    first = await dispatcher.run("lookup", {"sku": "A1"})
    second = await dispatcher.run("echo", {})

    assert json.loads(first.content) == {"stock": True}
    assert second.content == "plain text"
    assert first.control is None


@pytest.mark.asyncio
async def test_dispatcher_errors():
    def broken(args):
        raise RuntimeError("backend down")

    dispatcher = ToolDispatcher(ToolRegistry.from_manifest(manifest("broken"), {"broken": broken}))

    with pytest.raises(ToolNotFound):
        await dispatcher.run("missing", {})
    with pytest.raises(ToolExecutionError, match="backend down"):
        await dispatcher.run("broken", {})


def test_relay_envelope_becomes_control_message():
    result = normalize_tool_output(
        {"toolType": "crelay", "toolData": {"type": "sendDigits", "digits": "12#"}}
    )

    assert result.control == SendDigitsMessage(digits="12#")
    assert json.loads(result.content)["toolType"] == "crelay"


def test_invalid_relay_envelope_has_no_control():
    result = normalize_tool_output({"toolType": "crelay", "toolData": {"type": "dance"}})

    assert result.control is None


@pytest.mark.asyncio
async def test_builtin_handoff_and_dtmf():
    dispatcher = ToolDispatcher(ToolRegistry.load("toolManifest.json"))

    handoff = await dispatcher.run("live-agent-handoff", {"summary": "wants a refund"})
    digits = await dispatcher.run("send-dtmf", {"dtmfDigit": "5"})

    assert isinstance(handoff.control, EndMessage)
    assert json.loads(handoff.control.handoff_data) == {
        "reasonCode": "live-agent-handoff",
        "reason": "wants a refund",
    }
    assert digits.control.to_wire() == {"type": "sendDigits", "digits": "5"}

    with pytest.raises(ToolExecutionError):
        await dispatcher.run("send-dtmf", {})


@pytest.mark.asyncio
async def test_builtin_verify_send_texts_the_caller(monkeypatch):
    import tools.builtin as builtin

    sent = []
    monkeypatch.setattr(builtin, "send_sms", lambda to, body: sent.append((to, body)) or "SM1")
    dispatcher = ToolDispatcher(ToolRegistry.load("toolManifest.json"))

    result = await dispatcher.run("verify-send", {"from": "+15550100"})

    code = json.loads(result.content)["message"].rsplit(" ", 1)[-1]
    assert sent == [("+15550100", f"Your verification code is: {code}")]
    assert len(code) == 4
