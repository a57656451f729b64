"""Chat runtime — the long-lived objects, wired once.

Learn: The registry must be ONE instance for the life of the process:
every connection registers into it and every fan-out reads from it.
ChatRuntime builds the registry, dispatcher, protocol, isolation layer
and router together at startup (FastAPI lifespan) and tears them down
at shutdown. Nothing in here is a module-level global; routes reach it
through app.state.
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from fastapi import HTTPException, Request

from chatline.auth.identity import IdentityResolver
from chatline.chat.isolation import ErrorIsolation
from chatline.chat.protocol import ChatProtocol
from chatline.chat.router import FrameRouter
from chatline.config import settings
from chatline.realtime.dispatcher import Dispatcher
from chatline.realtime.registry import ConnectionRegistry
from chatline.store.base import MessageStore

logger = structlog.get_logger()


@dataclass
class ChatRuntime:
    store: MessageStore
    registry: ConnectionRegistry
    dispatcher: Dispatcher
    resolver: IdentityResolver
    protocol: ChatProtocol
    isolation: ErrorIsolation
    router: FrameRouter
    outbound_queue_size: int = 256

    @classmethod
    def build(
        cls,
        store: MessageStore,
        resolver: Optional[IdentityResolver] = None,
        max_message_length: Optional[int] = None,
        outbound_queue_size: Optional[int] = None,
    ) -> "ChatRuntime":
        registry = ConnectionRegistry()
        dispatcher = Dispatcher(registry)
        resolver = resolver or IdentityResolver()
        protocol = ChatProtocol(
            store=store,
            registry=registry,
            dispatcher=dispatcher,
            resolver=resolver,
            max_message_length=max_message_length,
        )
        isolation = ErrorIsolation(dispatcher)
        return cls(
            store=store,
            registry=registry,
            dispatcher=dispatcher,
            resolver=resolver,
            protocol=protocol,
            isolation=isolation,
            router=FrameRouter(protocol, isolation),
            outbound_queue_size=outbound_queue_size or settings.outbound_queue_size,
        )

    async def shutdown(self) -> None:
        """Close every registered connection (server going away)."""
        connections = self.registry.clear()
        for connection in connections:
            connection.context.close()
            try:
                await connection.close(code=1001, reason="Server shutting down")
            except Exception:
                logger.exception("chat.shutdown_close_failed", connection_id=connection.connection_id)
        logger.info("chat.runtime_stopped", closed=len(connections))


def get_runtime(request: Request) -> ChatRuntime:
    """FastAPI dependency: the runtime built by the app lifespan."""
    runtime = getattr(request.app.state, "chat", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Chat runtime not started")
    return runtime
