"""Connections — one per open client socket.

Learn: A Connection is the dispatcher's handle on a client: something
with an id, an owning session, and a way to push an event. Delivery must
never let one slow client hold up everyone else, so WebSocketConnection
doesn't write to the socket inside send(). It puts the frame on a bounded
per-connection queue and returns; a dedicated writer task drains the
queue onto the socket.

Consequences:
- send() never blocks on the network
- frames reach a client in the order they were queued (one FIFO, one writer)
- a client that stops reading fills its own queue, and further events to
  it are dropped with TransportFailure — other clients are unaffected
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from typing import Any, Optional

import structlog
from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect, WebSocketState

from chatline.chat.session import SessionContext

logger = structlog.get_logger()


class TransportFailure(Exception):
    """Raised when an event can't be handed to a recipient connection."""


def new_connection_id() -> str:
    return uuid.uuid4().hex


class Connection(ABC):
    """A client endpoint events can be pushed to."""

    def __init__(self, context: SessionContext):
        self.context = context

    @property
    def connection_id(self) -> str:
        return self.context.connection_id

    @property
    def user_id(self) -> Optional[str]:
        return self.context.user_id

    @abstractmethod
    async def send(self, event: str, data: dict[str, Any]) -> None:
        """Hand an event to the transport. Raises TransportFailure."""

    @abstractmethod
    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        """Close the underlying transport (best-effort)."""


class WebSocketConnection(Connection):
    """Connection backed by a FastAPI WebSocket with a queued writer."""

    def __init__(
        self,
        websocket: WebSocket,
        context: SessionContext,
        queue_size: int = 256,
    ):
        super().__init__(context)
        self.websocket = websocket
        self._outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=queue_size)

    async def send(self, event: str, data: dict[str, Any]) -> None:
        if self.context.is_closed:
            raise TransportFailure(f"Connection {self.connection_id} is closed")
        try:
            self._outbox.put_nowait({"event": event, "data": data})
        except asyncio.QueueFull:
            raise TransportFailure(
                f"Outbound queue full for connection {self.connection_id}"
            )

    async def run_writer(self) -> None:
        """Drain the outbound queue onto the socket until cancelled.

        Learn: A send error (peer vanished) ends the writer. The endpoint
        treats the writer finishing like a disconnect and tears down.
        """
        while True:
            frame = await self._outbox.get()
            await self.websocket.send_json(frame)

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        if WebSocketState.DISCONNECTED in (
            self.websocket.client_state,
            self.websocket.application_state,
        ):
            return
        try:
            await self.websocket.close(code=code, reason=reason)
        except (RuntimeError, OSError, WebSocketDisconnect):
            # Already closed by the peer — nothing left to do
            logger.debug("ws.close_after_disconnect", connection_id=self.connection_id)
