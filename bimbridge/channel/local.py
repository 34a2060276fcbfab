"""In-process duplex link, for embedding a viewer in the controller process.

Each endpoint delivers frames into its peer's inbox; a pump task per
endpoint hands them to the endpoint's handler one at a time, in arrival
order, exactly like a socket reader would.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from bimbridge.channel.base import Channel
from bimbridge.errors import NoPeerConnectedError

logger = logging.getLogger(__name__)

Frame = str | bytes
FrameHandler = Callable[[Frame], Awaitable[Any] | Any]


class LocalEndpoint(Channel):
    """One side of a :class:`LocalLink`."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.handler: FrameHandler | None = None
        self.peer: LocalEndpoint | None = None
        self._inbox: asyncio.Queue[Frame] | None = None
        self._pump: asyncio.Task[None] | None = None

    def is_connected(self) -> bool:
        return self._inbox is not None and self.peer is not None and self.peer._inbox is not None

    async def send_text(self, text: str) -> None:
        self._deliver(text)

    async def send_bytes(self, data: bytes) -> None:
        self._deliver(bytes(data))

    def _deliver(self, frame: Frame) -> None:
        if not self.is_connected():
            raise NoPeerConnectedError(f"{self.name}: peer is not connected")
        assert self.peer is not None and self.peer._inbox is not None
        self.peer._inbox.put_nowait(frame)

    def _start(self) -> None:
        self._inbox = asyncio.Queue()
        self._pump = asyncio.create_task(self._run(), name=f"local-{self.name}")

    async def _stop(self) -> None:
        pump = self._pump
        self._inbox = None
        self._pump = None
        if pump is not None:
            pump.cancel()
            await asyncio.gather(pump, return_exceptions=True)

    async def _run(self) -> None:
        inbox = self._inbox
        assert inbox is not None
        while True:
            frame = await inbox.get()
            try:
                if self.handler is None:
                    logger.debug("%s: no handler, dropping frame", self.name)
                    continue
                result = self.handler(frame)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("%s: frame handler failed", self.name)
            finally:
                inbox.task_done()

    async def join(self) -> None:
        """Wait until every frame delivered so far has been handled."""
        if self._inbox is not None:
            await self._inbox.join()


class LocalLink:
    """A connected pair of endpoints: ``controller`` and ``viewer``.

    Use as an async context manager; the pumps run only inside it::

        async with LocalLink() as link:
            link.viewer.handler = dispatcher.handle_frame
            link.controller.handler = correlator.handle_text
    """

    def __init__(self) -> None:
        self.controller = LocalEndpoint("controller")
        self.viewer = LocalEndpoint("viewer")
        self.controller.peer = self.viewer
        self.viewer.peer = self.controller

    async def __aenter__(self) -> LocalLink:
        self.controller._start()
        self.viewer._start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.controller._stop()
        await self.viewer._stop()

    async def drain(self) -> None:
        """Wait until both sides are idle, including replies to replies."""
        for _ in range(3):
            await self.viewer.join()
            await self.controller.join()
