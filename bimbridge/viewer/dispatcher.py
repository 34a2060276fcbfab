"""Routes inbound channel frames to a :class:`ViewerSession`."""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import PurePath
from typing import Any

from bimbridge.channel.base import Channel
from bimbridge.config import DEFAULT_BATCH_SIZE, DEFAULT_SAMPLE_SIZE
from bimbridge.errors import BridgeError, MalformedInputError
from bimbridge.measurement.catalog import ALL_KINDS
from bimbridge.models import messages as msg
from bimbridge.models.messages import Envelope
from bimbridge.viewer.session import ViewerSession

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], dict[str, Any]]


class ViewerDispatcher:
    """Decode envelopes, call the matching session handler, send replies.

    Only the bulk-read commands in :data:`REPLY_COMMANDS` are answered; every
    other command is fire-and-forget and its result is only logged.  A
    ``loadIfc`` command arms a one-shot load that consumes the next binary
    frame; binary frames that arrive without one load as the default model.
    """

    def __init__(self, session: ViewerSession, channel: Channel) -> None:
        self.session = session
        self.channel = channel
        self._pending_load: dict[str, Any] | None = None
        self._handlers: dict[str, Handler] = {
            msg.HIGHLIGHT: self._on_highlight,
            msg.LOAD_IFC: self._on_load_ifc,
            msg.CREATE_QUERY: self._on_create_query,
            msg.EXECUTE_QUERY: self._on_execute_query,
            msg.LIST_QUERIES: lambda payload: session.list_queries(),
            msg.DELETE_QUERY: lambda payload: session.delete_query(payload.get("queryName")),
            msg.EXPORT_QUERIES: lambda payload: session.export_queries(),
            msg.IMPORT_QUERIES: lambda payload: session.import_queries(payload.get("data")),
            msg.GET_SELECTED_ELEMENTS: lambda payload: session.get_selected_elements(),
            msg.GET_ELEMENTS_INFO: self._on_elements_info,
            msg.GET_ELEMENTS_MEASUREMENTS: self._on_elements_measurements,
            msg.DISCOVER_MEASUREMENT_PROPERTIES: self._on_discover,
        }

    @property
    def pending_load(self) -> dict[str, Any] | None:
        return self._pending_load

    # -- inbound --------------------------------------------------------------

    async def handle_frame(self, frame: str | bytes) -> None:
        """Entry point for a raw channel frame: bytes are model data, text is an envelope."""
        if isinstance(frame, (bytes, bytearray)):
            await self.handle_binary(bytes(frame))
        else:
            await self.handle_text(frame)

    async def handle_text(self, raw: str) -> None:
        try:
            envelope = Envelope.parse(raw)
        except MalformedInputError as exc:
            logger.warning("Dropping malformed message: %s", exc)
            return
        await self.handle_envelope(envelope)

    async def handle_envelope(self, envelope: Envelope) -> dict[str, Any] | None:
        handler = self._handlers.get(envelope.command)
        if handler is None:
            logger.warning("Unknown command '%s'", envelope.command)
            return None

        reply_command = msg.REPLY_COMMANDS.get(envelope.command)
        try:
            result = handler(envelope.payload)
        except BridgeError as exc:
            logger.warning("Command '%s' failed: %s", envelope.command, exc)
            result = {"success": False, "message": str(exc)}
        except Exception as exc:
            logger.exception("Command '%s' raised", envelope.command)
            result = {"success": False, "message": f"Error: {exc}"}

        if reply_command is None:
            logger.debug("%s -> %s", envelope.command, result.get("message", result.get("success")))
            return result

        await self.channel.send(reply_command, result)
        return result

    async def handle_binary(self, data: bytes) -> None:
        pending, self._pending_load = self._pending_load, None
        if pending is None:
            model_id = self.session.default_model_id
        else:
            model_id = pending.get("modelId") or PurePath(pending.get("fileName") or "").stem
        try:
            self.session.load_model(model_id, data)
        except BridgeError as exc:
            logger.error("Could not load model '%s': %s", model_id, exc)
            return
        logger.info("Model '%s' loaded (%d bytes)", model_id or self.session.default_model_id, len(data))

    # -- payload adapters -----------------------------------------------------

    def _on_highlight(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self.session.highlight(payload.get("modelIdMap"))

    def _on_load_ifc(self, payload: dict[str, Any]) -> dict[str, Any]:
        self._pending_load = {
            "modelId": payload.get("modelId"),
            "fileName": payload.get("fileName"),
            "fileSize": payload.get("fileSize"),
        }
        logger.info(
            "Waiting for IFC data: %s (%s MB)", payload.get("fileName"), payload.get("fileSize")
        )
        return {"success": True, "message": "Ready for IFC data"}

    def _on_create_query(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self.session.create_query(payload.get("queryName"), payload.get("queryParams"))

    def _on_execute_query(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self.session.execute_query(
            payload.get("queryName"), payload.get("highlightResults", True)
        )

    def _on_elements_info(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self.session.get_elements_info(
            payload.get("modelIdMap"), payload.get("formatPsets", True)
        )

    def _on_elements_measurements(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self.session.get_elements_measurements(
            payload.get("modelIdMap"),
            payload.get("measurementTypes") or [ALL_KINDS],
            payload.get("includeCustom", True),
            payload.get("batchSize") or DEFAULT_BATCH_SIZE,
        )

    def _on_discover(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self.session.discover_measurement_properties(
            payload.get("modelId"),
            payload.get("categories"),
            payload.get("sampleSize") or DEFAULT_SAMPLE_SIZE,
        )
