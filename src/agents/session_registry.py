from __future__ import annotations

import asyncio
from collections import OrderedDict
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover
    from agents.relay_session import RelaySession

MAX_STORED_PARAMETERS = 1024


class SessionRegistry:
    """In-memory lookup of live relay sessions and per-call request data.

    Parameters stored for an outbound call are dropped when the session that
    used them unregisters; calls that never connect are evicted oldest first
    once `max_parameters` entries are held.

    Note: This is a single-process store. For multi-worker deployments, replace
    with Redis or another shared store.
    """

    def __init__(self, max_parameters: int = MAX_STORED_PARAMETERS) -> None:
        if max_parameters < 1:
            raise ValueError("max_parameters must be at least 1.")
        self._lock = asyncio.Lock()
        self._sessions: dict[str, RelaySession] = {}
        self._parameters: OrderedDict[str, dict[str, Any]] = OrderedDict()
        self._max_parameters = max_parameters

    async def register(self, session: RelaySession) -> None:
        if not session.call_sid:
            raise ValueError("Only sessions that completed setup can be registered.")
        async with self._lock:
            self._sessions[session.call_sid] = session

    async def unregister(self, session: RelaySession) -> None:
        async with self._lock:
            if session.call_sid and self._sessions.get(session.call_sid) is session:
                del self._sessions[session.call_sid]
            if session.call_reference:
                self._parameters.pop(session.call_reference, None)

    async def get(self, call_sid: str) -> RelaySession | None:
        async with self._lock:
            return self._sessions.get(call_sid)

    def store_parameters(self, call_reference: str, data: dict[str, Any]) -> None:
        self._parameters[call_reference] = dict(data)
        self._parameters.move_to_end(call_reference)
        while len(self._parameters) > self._max_parameters:
            self._parameters.popitem(last=False)

    def parameters_for(self, call_reference: str | None) -> dict[str, Any]:
        if not call_reference:
            return {}
        return dict(self._parameters.get(call_reference, {}))

    def __len__(self) -> int:
        return len(self._sessions)
