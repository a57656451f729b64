"""Connection registry — who is connected, on how many devices.

Learn: The registry is the only mutable state shared between connections.
It maps each online user to the set of their open connections:

  user_id → {connection_id: Connection, ...}

Presence falls out of it for free: a user is online iff they have an
entry. Empty sets are pruned immediately, so "has an entry" and "has at
least one connection" are always the same thing. register/unregister
report the two interesting edges (0→1 = came online, 1→0 = went offline)
so the caller knows when to announce presence.

Concurrency: one threading.Lock guards every read and write. It is held
only for dict operations — never across an await — so it is safe from
the event loop and from worker threads alike. Reads return snapshots
(fresh lists/frozensets), never the live dicts.
"""

import threading
from typing import Optional

from chatline.realtime.connection import Connection


class ConnectionRegistry:
    """Thread-safe user → connections map, scoped to the app lifespan."""

    def __init__(self):
        self._lock = threading.Lock()
        self._by_user: dict[str, dict[str, Connection]] = {}
        self._owner: dict[str, str] = {}  # connection_id → user_id

    # ─── Mutations ───────────────────────────────────────

    def register(self, user_id: str, connection: Connection) -> bool:
        """Add a connection for a user. Returns True if the user just came online."""
        connection_id = connection.connection_id
        with self._lock:
            owner = self._owner.get(connection_id)
            if owner is not None and owner != user_id:
                raise ValueError(
                    f"Connection {connection_id} is already registered to another user"
                )

            connections = self._by_user.get(user_id)
            newly_online = connections is None
            if connections is None:
                connections = self._by_user[user_id] = {}
            connections[connection_id] = connection
            self._owner[connection_id] = user_id
            return newly_online

    def unregister(self, user_id: str, connection_id: str) -> bool:
        """Remove a connection. Returns True if the user just went offline.

        Unregistering an unknown connection is a no-op (duplicate
        disconnect events are normal).
        """
        with self._lock:
            connections = self._by_user.get(user_id)
            if not connections or connection_id not in connections:
                return False

            del connections[connection_id]
            self._owner.pop(connection_id, None)
            if connections:
                return False

            del self._by_user[user_id]
            return True

    def clear(self) -> list[Connection]:
        """Drop every connection (shutdown). Returns what was registered."""
        with self._lock:
            dropped = [
                conn for conns in self._by_user.values() for conn in conns.values()
            ]
            self._by_user.clear()
            self._owner.clear()
            return dropped

    # ─── Snapshots ───────────────────────────────────────

    def connections_for(self, user_id: str) -> list[Connection]:
        """Snapshot of a user's open connections (empty if offline)."""
        with self._lock:
            connections = self._by_user.get(user_id)
            return list(connections.values()) if connections else []

    def connection_ids_for(self, user_id: str) -> frozenset[str]:
        with self._lock:
            return frozenset(self._by_user.get(user_id, ()))

    def get(self, connection_id: str) -> Optional[Connection]:
        with self._lock:
            user_id = self._owner.get(connection_id)
            if user_id is None:
                return None
            return self._by_user[user_id].get(connection_id)

    def online_users(self) -> list[str]:
        with self._lock:
            return list(self._by_user)

    def is_online(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._by_user

    def connection_count(self) -> int:
        with self._lock:
            return len(self._owner)
