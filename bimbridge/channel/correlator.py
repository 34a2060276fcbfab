"""Correlator: awaitable request/response over a push-only channel.

The channel only carries independent messages, and any number of unrelated
commands may flow over it.  The correlator allows exactly one outstanding
request per channel and resolves it with the first result-tagged message
that arrives while it is pending::

    IDLE -> PENDING -> RESOLVED | TIMED_OUT | REJECTED -> IDLE

A reply that arrives after the timeout finds no waiter and is dropped.
Timing out does not stop the peer from computing its answer.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Any

from bimbridge.channel.base import Channel
from bimbridge.errors import (
    MalformedInputError,
    NoPeerConnectedError,
    RequestPendingError,
    RequestTimeoutError,
)
from bimbridge.models.messages import RESULT_COMMANDS, Envelope

logger = logging.getLogger(__name__)


class RequestState(str, enum.Enum):
    IDLE = "idle"
    PENDING = "pending"
    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"
    REJECTED = "rejected"


class Correlator:
    """Single-flight, timeout-bounded requests over *channel*.

    Parameters
    ----------
    channel:
        Outbound side of the duplex channel.
    result_commands:
        Command tags that answer a pending request.
    """

    def __init__(
        self,
        channel: Channel,
        result_commands: frozenset[str] = RESULT_COMMANDS,
    ) -> None:
        self._channel = channel
        self._result_commands = result_commands
        self._state = RequestState.IDLE
        self._future: asyncio.Future[Any] | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._command: str | None = None

    @property
    def state(self) -> RequestState:
        return self._state

    @property
    def pending_command(self) -> str | None:
        """Command of the request currently in flight, if any."""
        return self._command if self._state is RequestState.PENDING else None

    async def request(
        self,
        command: str,
        payload: dict[str, Any] | None = None,
        timeout: float = 10.0,
    ) -> Any:
        """Send *command* and wait up to *timeout* seconds for its result payload.

        Raises
        ------
        RequestPendingError
            Another request is still pending; nothing is sent.
        NoPeerConnectedError
            No peer is connected; nothing is sent.
        RequestTimeoutError
            No result arrived in time.
        """
        if self._state is RequestState.PENDING:
            raise RequestPendingError(
                f"Cannot send '{command}': '{self._command}' is still awaiting a reply"
            )
        if not self._channel.is_connected():
            raise NoPeerConnectedError("No viewer is connected")

        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()
        self._future = future
        self._command = command
        self._state = RequestState.PENDING

        try:
            await self._channel.send(command, payload)
            if not future.done():
                self._timer = loop.call_later(timeout, self._expire, future, timeout)
            logger.debug("Awaiting reply to %s (timeout %.1fs)", command, timeout)
            return await future
        except BaseException:
            # send failure or caller cancellation
            if self._future is future and self._state is RequestState.PENDING:
                self._state = RequestState.REJECTED
            raise
        finally:
            if self._future is future:
                self._reset()

    def handle_text(self, raw: str | bytes) -> bool:
        """Feed one inbound text frame.

        Returns *True* if the frame resolved the pending request.  Malformed
        frames are logged and dropped without touching the pending request.
        """
        try:
            envelope = Envelope.parse(raw)
        except MalformedInputError as exc:
            logger.warning("Dropping malformed message: %s", exc)
            return False
        return self.handle_envelope(envelope)

    def handle_envelope(self, envelope: Envelope) -> bool:
        if envelope.command not in self._result_commands:
            return False
        future = self._future
        if self._state is not RequestState.PENDING or future is None or future.done():
            logger.debug("Ignoring stale %s with no pending request", envelope.command)
            return False

        self._cancel_timer()
        self._state = RequestState.RESOLVED
        future.set_result(envelope.payload)
        logger.debug("Resolved %s with %s", self._command, envelope.command)
        return True

    def cancel(self) -> bool:
        """Abandon the pending request; its caller sees :class:`asyncio.CancelledError`."""
        future = self._future
        if self._state is not RequestState.PENDING or future is None or future.done():
            return False
        self._cancel_timer()
        self._state = RequestState.REJECTED
        future.cancel()
        return True

    # -- internals ------------------------------------------------------------

    def _expire(self, future: asyncio.Future[Any], timeout: float) -> None:
        if self._future is not future or future.done():
            return
        self._timer = None
        self._state = RequestState.TIMED_OUT
        logger.warning("No reply to %s within %.1fs", self._command, timeout)
        future.set_exception(
            RequestTimeoutError(f"Timed out after {timeout:.1f}s waiting for the viewer")
        )

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _reset(self) -> None:
        self._cancel_timer()
        self._future = None
        self._command = None
        self._state = RequestState.IDLE
