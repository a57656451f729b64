"""WebSocketConnection tests — the bounded outbound queue and its writer.

Learn: send() never touches the socket; it only enqueues. So these tests
drive a real WebSocketConnection over a recording stand-in for the
socket and check what the queue accepts, what it refuses, and what the
writer task eventually puts on the wire.
"""

import asyncio
from typing import Any, Optional

import pytest
from starlette.websockets import WebSocketState

from chatline.chat.session import SessionContext
from chatline.realtime.connection import (
    TransportFailure,
    WebSocketConnection,
    new_connection_id,
)
from chatline.realtime.dispatcher import Dispatcher
from chatline.realtime.registry import ConnectionRegistry
from conftest import ALICE, BOB


class RecordingSocket:
    """Just enough of a WebSocket for WebSocketConnection."""

    def __init__(self):
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[dict[str, Any]] = []
        self.closed_with: Optional[int] = None

    async def send_json(self, data: dict[str, Any]) -> None:
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        self.closed_with = code
        self.application_state = WebSocketState.DISCONNECTED


def _connection(user_id: str = ALICE, queue_size: int = 2) -> WebSocketConnection:
    context = SessionContext(connection_id=new_connection_id(), user_id=user_id)
    context.activate()
    return WebSocketConnection(RecordingSocket(), context, queue_size=queue_size)


@pytest.mark.asyncio
async def test_send_raises_once_queue_is_full():
    conn = _connection(queue_size=2)

    await conn.send("E", {"n": 1})
    await conn.send("E", {"n": 2})
    with pytest.raises(TransportFailure):
        await conn.send("E", {"n": 3})

    # Nothing reaches the socket until the writer runs
    assert conn.websocket.sent == []


@pytest.mark.asyncio
async def test_send_on_closed_session_raises():
    conn = _connection()
    conn.context.close()

    with pytest.raises(TransportFailure):
        await conn.send("E", {})


@pytest.mark.asyncio
async def test_writer_drains_queue_in_order():
    conn = _connection(queue_size=8)
    for n in range(3):
        await conn.send("E", {"n": n})

    writer = asyncio.create_task(conn.run_writer())
    try:
        for _ in range(10):
            if len(conn.websocket.sent) == 3:
                break
            await asyncio.sleep(0)
    finally:
        writer.cancel()
        await asyncio.gather(writer, return_exceptions=True)

    assert conn.websocket.sent == [
        {"event": "E", "data": {"n": 0}},
        {"event": "E", "data": {"n": 1}},
        {"event": "E", "data": {"n": 2}},
    ]


@pytest.mark.asyncio
async def test_full_queue_only_drops_for_that_client():
    registry = ConnectionRegistry()
    stalled = _connection(ALICE, queue_size=1)
    phone = _connection(ALICE, queue_size=4)
    bob = _connection(BOB, queue_size=4)
    for conn in (stalled, phone, bob):
        registry.register(conn.user_id, conn)
    dispatcher = Dispatcher(registry)

    assert await dispatcher.deliver_to_users([ALICE, BOB], "E", {"n": 1}) == 3
    assert await dispatcher.deliver_to_users([ALICE, BOB], "E", {"n": 2}) == 2

    assert stalled._outbox.qsize() == 1
    assert phone._outbox.qsize() == 2
    assert bob._outbox.qsize() == 2


@pytest.mark.asyncio
async def test_close_skips_disconnected_socket():
    conn = _connection()
    conn.websocket.client_state = WebSocketState.DISCONNECTED

    await conn.close(code=4001)

    assert conn.websocket.closed_with is None
