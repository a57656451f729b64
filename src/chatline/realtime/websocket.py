"""WebSocket endpoint — one long-lived connection per client device.

Learn: Each client connects to /ws?access_token=JWT. The handler:
1. Authenticates and registers via ChatProtocol.on_connect
   (closes with 4001 before accepting if that fails)
2. Runs two concurrent tasks:
   - writer — drains the connection's outbound queue onto the socket
   - reader — reads client frames and routes them, one at a time, in order
3. When either side finishes (client left, socket broke), cancels the
   other and runs ChatProtocol.on_disconnect — always, whatever happened

Frames from one connection are handled sequentially, so a client's
operations take effect in the order it sent them. Different connections
run fully concurrently.
"""

import asyncio
from typing import Optional

import structlog
from fastapi import APIRouter, WebSocket

from chatline.chat.runtime import ChatRuntime
from chatline.chat.session import SessionContext
from chatline.realtime.connection import WebSocketConnection, new_connection_id

logger = structlog.get_logger()
router = APIRouter()

CLOSE_UNAUTHENTICATED = 4001


@router.websocket("/ws")
async def chat_websocket(websocket: WebSocket):
    """WebSocket endpoint for direct messaging."""
    runtime: ChatRuntime = websocket.app.state.chat

    context = SessionContext(connection_id=new_connection_id())
    connection = WebSocketConnection(
        websocket, context, queue_size=runtime.outbound_queue_size
    )

    # ── Authentication + registration ───────────────────────
    token = runtime.resolver.extract_token(websocket)
    outcome = await runtime.protocol.on_connect(connection, token)
    if not outcome.ok:
        logger.info("ws.rejected", reason=outcome.message)
        await websocket.close(code=CLOSE_UNAUTHENTICATED, reason=outcome.message)
        return

    structlog.contextvars.bind_contextvars(
        connection_id=context.connection_id, user_id=context.user_id
    )
    reason: Optional[str] = None
    tasks: list[asyncio.Task] = []
    try:
        # ── Connection accepted ─────────────────────────────
        await websocket.accept()

        async def client_listener() -> str:
            """Read frames until the client disconnects."""
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    return f"client closed ({message.get('code', 1000)})"

                raw = message.get("text")
                if raw is None and message.get("bytes") is not None:
                    raw = message["bytes"].decode("utf-8", errors="replace")
                if raw is None:
                    continue

                await runtime.router.handle(context, raw)
                if context.is_closed:
                    return "session closed"

        writer_task = asyncio.create_task(connection.run_writer())
        reader_task = asyncio.create_task(client_listener())
        tasks = [writer_task, reader_task]

        # Wait for either to finish (usually client disconnect)
        done, pending = await asyncio.wait(
            tasks,
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        for task in done:
            error = task.exception()
            if error is not None:
                reason = f"transport error: {error!r}"
                logger.info("ws.transport_error", error=repr(error))
            elif task is reader_task:
                reason = task.result()
            else:
                reason = "writer stopped"
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await runtime.protocol.on_disconnect(connection, reason)
        await connection.close()
        structlog.contextvars.unbind_contextvars("connection_id", "user_id")
