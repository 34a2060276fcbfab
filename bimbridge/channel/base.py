"""Abstract duplex channel interface."""

from __future__ import annotations

import abc
from typing import Any

from bimbridge.models.messages import Envelope


class Channel(abc.ABC):
    """One side of a push-only, message-based duplex channel.

    Sends are fire-and-forget: nothing on this interface waits for the peer
    to act on a message.  Inbound traffic is delivered to whatever handler
    the concrete channel was wired to.
    """

    @abc.abstractmethod
    def is_connected(self) -> bool:
        """Return *True* if at least one peer can receive messages."""

    @abc.abstractmethod
    async def send_text(self, text: str) -> None:
        """Send one text frame."""

    @abc.abstractmethod
    async def send_bytes(self, data: bytes) -> None:
        """Send one binary frame."""

    async def send(self, command: str, payload: dict[str, Any] | None = None) -> None:
        """Wrap *payload* in an envelope and send it as a text frame."""
        await self.send_text(Envelope(command=command, payload=payload or {}).to_json())
