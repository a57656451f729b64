"""Dispatcher — fan events out to live connections.

Learn: The dispatcher answers one question: "this event is for user X —
which sockets does that mean right now?" It asks the registry for a
snapshot of X's connections and hands the event to each of them.

Delivery rules:
- every one of a user's connections gets the event (multi-device)
- each connection gets a given event at most once, even when a call
  targets several users whose sets overlap
- a connection that closed after the snapshot was taken is skipped
- a recipient that can't take the event (TransportFailure, or anything
  unexpected) is logged and skipped; it never fails delivery to the
  others and is never reported back to the sender

Every method returns how many connections the event was handed to.
"""

import asyncio
from typing import Any, Iterable

import structlog

from chatline.chat.outcome import ErrorKind
from chatline.realtime.connection import Connection, TransportFailure
from chatline.realtime.registry import ConnectionRegistry

logger = structlog.get_logger()


class Dispatcher:
    """Resolves users to connections and delivers events to them."""

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    async def deliver_to_connection(
        self, connection_id: str, event: str, payload: dict[str, Any]
    ) -> int:
        """Deliver to exactly one connection (caller-only events)."""
        connection = self.registry.get(connection_id)
        if connection is None:
            return 0
        return await self._deliver([connection], event, payload)

    async def deliver_to_user(
        self, user_id: str, event: str, payload: dict[str, Any]
    ) -> int:
        """Deliver to every connection the user has open."""
        return await self._deliver(
            self.registry.connections_for(user_id), event, payload
        )

    async def deliver_to_users(
        self, user_ids: Iterable[str], event: str, payload: dict[str, Any]
    ) -> int:
        """Deliver to the union of several users' connections, once each."""
        targets: dict[str, Connection] = {}
        for user_id in dict.fromkeys(user_ids):
            for connection in self.registry.connections_for(user_id):
                targets.setdefault(connection.connection_id, connection)
        return await self._deliver(list(targets.values()), event, payload)

    async def deliver_to_all_except(
        self, user_id: str, event: str, payload: dict[str, Any]
    ) -> int:
        """Deliver to every online user other than user_id (presence)."""
        others = [u for u in self.registry.online_users() if u != user_id]
        return await self.deliver_to_users(others, event, payload)

    # ─── Internals ───────────────────────────────────────

    async def _deliver(
        self, connections: list[Connection], event: str, payload: dict[str, Any]
    ) -> int:
        if not connections:
            return 0
        results = await asyncio.gather(
            *(self._send_one(conn, event, payload) for conn in connections)
        )
        return sum(results)

    async def _send_one(
        self, connection: Connection, event: str, payload: dict[str, Any]
    ) -> bool:
        if connection.context.is_closed:
            return False
        try:
            await connection.send(event, payload)
            return True
        except TransportFailure as e:
            logger.warning(
                "dispatch.transport_failure",
                code=ErrorKind.TRANSPORT_FAILURE.value,
                event_name=event,
                connection_id=connection.connection_id,
                user_id=connection.user_id,
                error=str(e),
            )
        except Exception:
            logger.exception(
                "dispatch.send_failed",
                event_name=event,
                connection_id=connection.connection_id,
                user_id=connection.user_id,
            )
        return False
