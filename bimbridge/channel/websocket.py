"""Websocket hub the viewer connects to.

The controller is the server side: viewers open a websocket to it, outbound
frames are broadcast to every connected viewer, and inbound text frames are
handed to ``on_text`` (normally :meth:`Correlator.handle_text`).
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from bimbridge.channel.base import Channel
from bimbridge.errors import NoPeerConnectedError

logger = logging.getLogger(__name__)

TextHandler = Callable[[str], Awaitable[Any] | Any]


class ViewerHub(Channel):
    """Tracks connected viewer sockets and broadcasts to all of them."""

    def __init__(self, on_text: TextHandler | None = None) -> None:
        self.on_text = on_text
        self._clients: set[WebSocket] = set()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def is_connected(self) -> bool:
        return bool(self._clients)

    async def send_text(self, text: str) -> None:
        await self._broadcast(text)

    async def send_bytes(self, data: bytes) -> None:
        await self._broadcast(bytes(data))

    async def _broadcast(self, frame: str | bytes) -> None:
        if not self._clients:
            raise NoPeerConnectedError("No viewer is connected")
        for client in list(self._clients):
            try:
                if isinstance(frame, bytes):
                    await client.send_bytes(frame)
                else:
                    await client.send_text(frame)
            except (WebSocketDisconnect, RuntimeError) as exc:
                logger.warning("Dropping viewer after failed send: %s", exc)
                self._clients.discard(client)

    async def serve(self, websocket: WebSocket) -> None:
        """Accept *websocket* and pump its inbound frames until it closes."""
        await websocket.accept()
        self._clients.add(websocket)
        logger.info("Viewer connected (%d total)", len(self._clients))
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                text = message.get("text")
                if text is None:
                    logger.debug("Ignoring binary frame from viewer")
                    continue
                await self._dispatch(text)
        except WebSocketDisconnect:
            pass
        finally:
            self._clients.discard(websocket)
            logger.info("Viewer disconnected (%d remaining)", len(self._clients))

    async def _dispatch(self, text: str) -> None:
        if self.on_text is None:
            logger.debug("No inbound handler, dropping frame")
            return
        result = self.on_text(text)
        if inspect.isawaitable(result):
            await result


def create_app(hub: ViewerHub, path: str = "/") -> FastAPI:
    """FastAPI application exposing *hub* at websocket *path*."""
    app = FastAPI(title="bimbridge viewer hub")

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "viewers": hub.client_count}

    @app.websocket(path)
    async def viewer_socket(websocket: WebSocket) -> None:
        await hub.serve(websocket)

    return app
