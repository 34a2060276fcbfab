"""Tests for the correlator and the in-process duplex link."""

from __future__ import annotations

import asyncio
import json

import pytest

from bimbridge.channel.base import Channel
from bimbridge.channel.correlator import Correlator, RequestState
from bimbridge.channel.local import LocalLink
from bimbridge.errors import NoPeerConnectedError, RequestPendingError, RequestTimeoutError


class RecordingChannel(Channel):
    """Channel that records outbound frames instead of sending them."""

    def __init__(self, connected: bool = True, fail: bool = False) -> None:
        self.connected = connected
        self.fail = fail
        self.sent: list[str | bytes] = []

    def is_connected(self) -> bool:
        return self.connected

    async def send_text(self, text: str) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.sent.append(text)

    async def send_bytes(self, data: bytes) -> None:
        self.sent.append(data)


def _frame(command: str, **payload) -> str:
    return json.dumps({"command": command, "payload": payload})


async def _until_sent(channel: RecordingChannel, count: int = 1) -> None:
    while len(channel.sent) < count:
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Correlator
# ---------------------------------------------------------------------------


class TestCorrelator:
    def test_result_resolves_pending_request(self):
        async def scenario():
            channel = RecordingChannel()
            correlator = Correlator(channel)
            task = asyncio.create_task(correlator.request("getSelectedElements", {}, timeout=1))
            await _until_sent(channel)
            assert correlator.state is RequestState.PENDING
            assert correlator.pending_command == "getSelectedElements"
            assert correlator.handle_text(_frame("selectedElementsResult", success=True, totalElements=2))
            return await task, correlator

        payload, correlator = asyncio.run(scenario())
        assert payload == {"success": True, "totalElements": 2}
        assert correlator.state is RequestState.IDLE

    def test_request_envelope_sent(self):
        async def scenario():
            channel = RecordingChannel()
            correlator = Correlator(channel)
            task = asyncio.create_task(
                correlator.request("getElementsInfo", {"modelIdMap": {"mcp": [1]}}, timeout=1)
            )
            await _until_sent(channel)
            correlator.handle_text(_frame("elementsInfoResult", success=True))
            await task
            return channel.sent

        sent = asyncio.run(scenario())
        assert json.loads(sent[0]) == {
            "command": "getElementsInfo",
            "payload": {"modelIdMap": {"mcp": [1]}},
        }

    def test_unrelated_commands_do_not_resolve(self):
        async def scenario():
            channel = RecordingChannel()
            correlator = Correlator(channel)
            task = asyncio.create_task(correlator.request("getSelectedElements", timeout=1))
            await _until_sent(channel)
            assert correlator.handle_text(_frame("highlight", modelIdMap={})) is False
            assert correlator.handle_text("{not json") is False
            assert correlator.handle_text("[1, 2]") is False
            assert not task.done()
            correlator.handle_text(_frame("selectedElementsResult", success=True))
            return await task

        assert asyncio.run(scenario()) == {"success": True}

    def test_second_request_rejected_while_pending(self):
        async def scenario():
            channel = RecordingChannel()
            correlator = Correlator(channel)
            first = asyncio.create_task(correlator.request("getSelectedElements", timeout=1))
            await _until_sent(channel)
            with pytest.raises(RequestPendingError):
                await correlator.request("getElementsInfo", {}, timeout=1)
            assert len(channel.sent) == 1
            correlator.handle_text(_frame("selectedElementsResult", success=True))
            await first

        asyncio.run(scenario())

    def test_timeout_then_late_reply_dropped(self):
        async def scenario():
            channel = RecordingChannel()
            correlator = Correlator(channel)
            with pytest.raises(RequestTimeoutError):
                await correlator.request("discoverMeasurementProperties", {}, timeout=0.05)
            assert correlator.state is RequestState.IDLE
            return correlator.handle_text(_frame("discoveryResult", success=True))

        assert asyncio.run(scenario()) is False

    def test_request_after_timeout_resolves_normally(self):
        async def scenario():
            channel = RecordingChannel()
            correlator = Correlator(channel)
            with pytest.raises(RequestTimeoutError):
                await correlator.request("getSelectedElements", timeout=0.01)
            task = asyncio.create_task(correlator.request("getSelectedElements", timeout=1))
            await _until_sent(channel, 2)
            correlator.handle_text(_frame("selectedElementsResult", success=True, totalElements=5))
            return await task

        assert asyncio.run(scenario())["totalElements"] == 5

    def test_no_peer(self):
        async def scenario():
            channel = RecordingChannel(connected=False)
            correlator = Correlator(channel)
            with pytest.raises(NoPeerConnectedError):
                await correlator.request("getSelectedElements", timeout=1)
            return channel, correlator

        channel, correlator = asyncio.run(scenario())
        assert channel.sent == []
        assert correlator.state is RequestState.IDLE

    def test_send_failure_resets(self):
        async def scenario():
            correlator = Correlator(RecordingChannel(fail=True))
            with pytest.raises(ConnectionError):
                await correlator.request("getSelectedElements", timeout=1)
            return correlator

        assert asyncio.run(scenario()).state is RequestState.IDLE

    def test_cancel(self):
        async def scenario():
            channel = RecordingChannel()
            correlator = Correlator(channel)
            task = asyncio.create_task(correlator.request("getSelectedElements", timeout=1))
            await _until_sent(channel)
            assert correlator.cancel() is True
            with pytest.raises(asyncio.CancelledError):
                await task
            return correlator

        correlator = asyncio.run(scenario())
        assert correlator.state is RequestState.IDLE
        assert correlator.cancel() is False

    def test_cancelling_caller_returns_to_idle(self):
        async def scenario():
            channel = RecordingChannel()
            correlator = Correlator(channel)
            task = asyncio.create_task(correlator.request("getElementsInfo", {}, timeout=1))
            await _until_sent(channel)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            stale = correlator.handle_text(_frame("elementsInfoResult", success=True))
            return correlator, stale

        correlator, stale = asyncio.run(scenario())
        assert correlator.state is RequestState.IDLE
        assert stale is False

    def test_stale_result_without_request(self):
        correlator = Correlator(RecordingChannel())
        assert correlator.handle_text(_frame("elementsInfoResult", success=True)) is False


# ---------------------------------------------------------------------------
# LocalLink
# ---------------------------------------------------------------------------


class TestLocalLink:
    def test_frames_delivered_in_order(self):
        async def scenario():
            received: list[str | bytes] = []
            async with LocalLink() as link:
                link.viewer.handler = received.append
                await link.controller.send("highlight", {"modelIdMap": {"mcp": [1]}})
                await link.controller.send_bytes(b"ISO-10303-21;")
                await link.controller.send_text("second")
                await link.drain()
            return received

        received = asyncio.run(scenario())
        assert json.loads(received[0])["command"] == "highlight"
        assert received[1:] == [b"ISO-10303-21;", "second"]

    def test_async_handler_and_reply(self):
        async def scenario():
            replies: list[str] = []
            async with LocalLink() as link:

                async def echo(frame):
                    await link.viewer.send_text(f"echo:{frame}")

                link.viewer.handler = echo
                link.controller.handler = replies.append
                await link.controller.send_text("ping")
                await link.drain()
            return replies

        assert asyncio.run(scenario()) == ["echo:ping"]

    def test_handler_error_does_not_stop_pump(self):
        async def scenario():
            seen: list[str] = []

            def handler(frame):
                if frame == "boom":
                    raise ValueError("bad frame")
                seen.append(frame)

            async with LocalLink() as link:
                link.viewer.handler = handler
                await link.controller.send_text("boom")
                await link.controller.send_text("ok")
                await link.drain()
            return seen

        assert asyncio.run(scenario()) == ["ok"]

    def test_disconnected_outside_context(self):
        async def scenario():
            link = LocalLink()
            assert not link.controller.is_connected()
            with pytest.raises(NoPeerConnectedError):
                await link.controller.send_text("x")
            async with link:
                assert link.controller.is_connected()
                assert link.viewer.is_connected()
            assert not link.viewer.is_connected()

        asyncio.run(scenario())
