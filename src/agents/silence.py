"""Caller inactivity detection for one relay session."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

LOGGER = logging.getLogger(__name__)


class SilenceState(str, Enum):
    IDLE = "idle"
    ARMED = "armed"
    WARNED = "warned"
    ESCALATED = "escalated"


@dataclass(frozen=True)
class SilenceTimeout:
    message: str
    attempt: int
    escalated: bool


TimeoutCallback = Callable[[SilenceTimeout], Any]


class SilenceMonitor:
    """Timer that reports repeated caller silence through a single callback.

    Idle -> Armed on `start_monitoring`; each expiry bumps the warning counter,
    reports a SilenceTimeout and re-arms; the expiry that reaches `retry_limit`
    is reported with `escalated=True` and the monitor stops. `reset` restarts
    the window and clears warnings unless already escalated.

    While suspended (the assistant holds the turn) no timer runs and nothing is
    counted; `resume` starts a fresh window, also after an escalation that was
    overtaken by caller activity.
    """

    def __init__(
        self,
        threshold_seconds: float,
        retry_limit: int,
        *,
        reminder_message: str,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if threshold_seconds <= 0:
            raise ValueError("threshold_seconds must be positive.")
        if retry_limit < 1:
            raise ValueError("retry_limit must be at least 1.")
        self._threshold = threshold_seconds
        self._retry_limit = retry_limit
        self._reminder = reminder_message
        self._sleep = sleep
        self._state = SilenceState.IDLE
        self._warnings = 0
        self._on_timeout: TimeoutCallback | None = None
        self._timer: asyncio.Task | None = None
        self._callbacks: set[asyncio.Task] = set()
        self._suspended = False

    @property
    def state(self) -> SilenceState:
        return self._state

    @property
    def warnings(self) -> int:
        return self._warnings

    @property
    def suspended(self) -> bool:
        return self._suspended

    def start_monitoring(self, on_timeout: TimeoutCallback) -> None:
        self._on_timeout = on_timeout
        self._warnings = 0
        self._state = SilenceState.ARMED
        self._arm()

    def reset(self) -> bool:
        """Restart the window after qualifying caller activity."""

        if self._state in (SilenceState.IDLE, SilenceState.ESCALATED):
            return False
        self._warnings = 0
        self._state = SilenceState.ARMED
        self._arm()
        return True

    def suspend(self) -> None:
        """Stop the window while the assistant is responding."""

        if self._state is SilenceState.IDLE:
            return
        self._suspended = True
        self._cancel_timer()

    def resume(self) -> None:
        if not self._suspended:
            return
        self._suspended = False
        self._warnings = 0
        self._state = SilenceState.ARMED
        self._arm()

    def cleanup(self) -> None:
        self._cancel_timer()
        for task in list(self._callbacks):
            task.cancel()
        self._callbacks.clear()
        self._on_timeout = None
        self._suspended = False
        if self._state is not SilenceState.ESCALATED:
            self._state = SilenceState.IDLE

    def _arm(self) -> None:
        self._cancel_timer()
        if self._suspended:
            return
        self._timer = asyncio.create_task(self._wait())

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _wait(self) -> None:
        await self._sleep(self._threshold)
        self._timer = None
        self._expire()

    def _expire(self) -> None:
        self._warnings += 1
        escalated = self._warnings >= self._retry_limit
        self._state = SilenceState.ESCALATED if escalated else SilenceState.WARNED
        LOGGER.info("Caller silent; warning %d of %d", self._warnings, self._retry_limit)

        timeout = SilenceTimeout(message=self._reminder, attempt=self._warnings, escalated=escalated)
        if self._on_timeout is not None:
            task = asyncio.create_task(self._notify(self._on_timeout, timeout))
            self._callbacks.add(task)
            task.add_done_callback(self._callbacks.discard)

        if not escalated:
            self._arm()

    @staticmethod
    async def _notify(callback: TimeoutCallback, timeout: SilenceTimeout) -> None:
        try:
            result = callback(timeout)
            if inspect.isawaitable(result):
                await result
        except Exception:
            LOGGER.exception("Silence timeout callback failed")
