"""Turn coordination between the caller and the voice transport.

The voice transport accepts only one in-flight response per session; a
second ``response.create`` while one is outstanding is rejected and aborts
the newer request. The coordinator is the single place that decides
whether a new response may be requested.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from loguru import logger

from voxrelay.core.events import TurnState

# Sends one response.create carrying the given instructions
RequestSender = Callable[[str], Awaitable[None]]

# Rejection of a duplicate response.create; the earlier response is still live
ACTIVE_RESPONSE_ERROR = "conversation_already_has_active_response"


@dataclass
class TurnCoordinator:
    """Two-state machine: IDLE <-> AI_SPEAKING.

    - IDLE: :meth:`request_response` sends a request and moves to AI_SPEAKING.
    - AI_SPEAKING: :meth:`request_response` is dropped (not queued).
    - A completed response or an error from the voice transport returns
      the coordinator to IDLE. The one exception is the rejection of a
      duplicate request (``conversation_already_has_active_response``),
      which leaves the live response in charge.

    When ``watchdog_timeout_s`` is set and no audio arrives for a request
    within that interval, the request is re-issued once with empty
    instructions to recover from a silently dropped response.

    Args:
        send_request: Coroutine that sends one response.create upstream.
        watchdog_timeout_s: Seconds to wait for the first audio delta
            (None disables the watchdog).
    """

    send_request: RequestSender
    watchdog_timeout_s: float | None = 1.5
    label: str = ""

    state: TurnState = TurnState.IDLE
    requests_sent: int = 0

    _delta_seen: bool = False
    _retried: bool = False
    _watchdog_task: asyncio.Task | None = field(default=None, repr=False)

    async def request_response(self, instructions: str = "") -> bool:
        """Ask the voice transport to speak. Returns False if dropped."""
        if self.state == TurnState.AI_SPEAKING:
            logger.debug(f"[{self.label}] Response already in flight, request dropped")
            return False

        self.state = TurnState.AI_SPEAKING
        self._delta_seen = False
        self._retried = False
        self.requests_sent += 1
        await self.send_request(instructions)
        self._start_watchdog()
        return True

    def on_response_started(self) -> None:
        """The transport began a response on its own (server VAD)."""
        if self.state == TurnState.IDLE:
            self.state = TurnState.AI_SPEAKING
            self._delta_seen = False
            self._retried = True  # nothing of ours to re-issue

    def on_audio_delta(self) -> None:
        self._delta_seen = True
        self._cancel_watchdog()

    def on_response_done(self) -> None:
        self._to_idle("response done")

    def on_error(self, code: str = "") -> None:
        """Return to IDLE, unless the error only rejected a duplicate request."""
        if code == ACTIVE_RESPONSE_ERROR and self.state == TurnState.AI_SPEAKING:
            logger.debug(f"[{self.label}] Duplicate response request rejected, still speaking")
            return
        self._to_idle(f"error {code}".rstrip())

    def stop(self) -> None:
        """Cancel any pending watchdog. Called on session teardown."""
        self._cancel_watchdog()

    @property
    def outstanding(self) -> int:
        """Number of unacknowledged response requests (0 or 1)."""
        return 1 if self.state == TurnState.AI_SPEAKING else 0

    @property
    def is_idle(self) -> bool:
        return self.state == TurnState.IDLE

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _to_idle(self, reason: str) -> None:
        self._cancel_watchdog()
        if self.state != TurnState.IDLE:
            logger.debug(f"[{self.label}] Turn -> IDLE ({reason})")
        self.state = TurnState.IDLE

    def _start_watchdog(self) -> None:
        self._cancel_watchdog()
        if self.watchdog_timeout_s is None or self._retried:
            return
        self._watchdog_task = asyncio.create_task(self._watchdog())

    def _cancel_watchdog(self) -> None:
        task = self._watchdog_task
        self._watchdog_task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _watchdog(self) -> None:
        try:
            await asyncio.sleep(self.watchdog_timeout_s)
        except asyncio.CancelledError:
            return

        if self.state != TurnState.AI_SPEAKING or self._delta_seen or self._retried:
            return

        self._retried = True
        logger.warning(
            f"[{self.label}] No audio {self.watchdog_timeout_s}s after response "
            f"request, re-issuing once"
        )
        self.requests_sent += 1
        try:
            await self.send_request("")
        except Exception as e:
            logger.warning(f"[{self.label}] Watchdog re-issue failed: {e}")
