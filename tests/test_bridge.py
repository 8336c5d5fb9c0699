"""
Tests for BridgeClient frame handling, request/response matching and event dispatch.

A fake websocket stands in for the Node.js bridge.
"""

import asyncio
import json

import pytest

from wagate.client.base import EVENT_DISCONNECTED, EVENT_MESSAGE, EVENT_QR, EVENT_READY
from wagate.client.bridge import BridgeClient
from wagate.errors import TransportError


class FakeWebSocket:
    def __init__(self, incoming: list[str] | None = None):
        self.sent: list[dict] = []
        self.incoming = list(incoming or [])
        self.closed = False

    async def send(self, raw: str) -> None:
        self.sent.append(json.loads(raw))

    async def close(self) -> None:
        self.closed = True

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for raw in self.incoming:
            yield raw


def make_client(ws: FakeWebSocket | None = None, request_timeout: float = 1.0) -> BridgeClient:
    client = BridgeClient("user-7", "/data/sessions", "ws://bridge.test", request_timeout=request_timeout)
    client._ws = ws or FakeWebSocket()
    return client


async def respond(client: BridgeClient, ws: FakeWebSocket, ok: bool = True, **payload) -> None:
    # wait until the request frame has been written
    while not ws.sent:
        await asyncio.sleep(0)
    request_id = ws.sent[-1]["requestId"]
    client._handle_bridge_message(json.dumps({"type": "response", "requestId": request_id, "ok": ok, **payload}))


@pytest.mark.asyncio
async def test_send_message_resolves_from_response():
    ws = FakeWebSocket()
    client = make_client(ws)

    task = asyncio.create_task(client.send_message("15550002@c.us", "hello"))
    await respond(client, ws, result={"id": {"id": "ABC"}, "timestamp": 1700000000})
    sent = await task

    assert sent.id == "ABC"
    assert sent.timestamp == 1700000000
    assert ws.sent[0]["type"] == "send"
    assert ws.sent[0]["to"] == "15550002@c.us"
    assert ws.sent[0]["text"] == "hello"


@pytest.mark.asyncio
async def test_error_response_raises_transport_error():
    ws = FakeWebSocket()
    client = make_client(ws)

    task = asyncio.create_task(client.send_message("15550002@c.us", "hello"))
    await respond(client, ws, ok=False, error="chat not found")

    with pytest.raises(TransportError, match="chat not found"):
        await task


@pytest.mark.asyncio
async def test_request_without_connection_fails():
    client = BridgeClient("user-7", "/data/sessions", "ws://bridge.test")

    with pytest.raises(TransportError):
        await client.logout()


@pytest.mark.asyncio
async def test_request_times_out():
    client = make_client(request_timeout=0.01)

    with pytest.raises(TransportError, match="timed out"):
        await client.logout()
    assert client._pending == {}


@pytest.mark.asyncio
async def test_event_frames_are_dispatched_in_order():
    client = make_client()
    seen: list[tuple] = []

    async def on_qr(code):
        seen.append((EVENT_QR, code))

    async def on_ready():
        seen.append((EVENT_READY, client.info.user))

    async def on_message(message):
        seen.append((EVENT_MESSAGE, message.id, message.from_, message.has_media))

    client.on(EVENT_QR, on_qr)
    client.on(EVENT_READY, on_ready)
    client.on(EVENT_MESSAGE, on_message)
    dispatcher = asyncio.create_task(client._dispatch_events())

    client._handle_bridge_message(json.dumps({"type": "qr", "qr": "ABC123"}))
    client._handle_bridge_message(json.dumps({"type": "ready", "info": {"wid": {"user": "15550001"}, "platform": "android"}}))
    client._handle_bridge_message(json.dumps({
        "type": "message",
        "message": {"id": {"id": "m1"}, "from": "15550002@c.us", "to": "15550001@c.us", "hasMedia": True},
    }))
    client._handle_bridge_message("not json")
    while len(seen) < 3:
        await asyncio.sleep(0)

    assert seen == [
        (EVENT_QR, "ABC123"),
        (EVENT_READY, "15550001"),
        (EVENT_MESSAGE, "m1", "15550002@c.us", True),
    ]
    assert client.info.platform == "android"
    dispatcher.cancel()
    await asyncio.gather(dispatcher, return_exceptions=True)


@pytest.mark.asyncio
async def test_lost_connection_reports_disconnect():
    ws = FakeWebSocket([json.dumps({"type": "qr", "qr": "ABC123"})])
    client = make_client(ws)

    await client._listen()

    assert client._events.get_nowait() == (EVENT_QR, ("ABC123",))
    assert client._events.get_nowait() == (EVENT_DISCONNECTED, ("BRIDGE_CLOSED",))


@pytest.mark.asyncio
async def test_closed_connection_after_destroy_is_silent():
    ws = FakeWebSocket()
    client = make_client(ws)

    task = asyncio.create_task(client.destroy())
    await respond(client, ws, result=None)
    await task

    assert ws.closed
    assert ws.sent[-1]["type"] == "destroy"

    client._ws = FakeWebSocket()
    await client._listen()
    assert client._events.empty()


@pytest.mark.asyncio
async def test_kill_fails_pending_requests():
    client = make_client()

    task = asyncio.create_task(client.logout())
    await asyncio.sleep(0)
    await client.kill()

    with pytest.raises(TransportError):
        await task
