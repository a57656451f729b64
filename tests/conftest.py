"""Test fixtures — in-memory SQLite per test, recording fake connections.

Learn: Testing pattern for the chat core:

1. Each test gets its own engine on sqlite+aiosqlite:///:memory: with a
   StaticPool, so the whole test shares one private database that
   vanishes when the engine is disposed. No Postgres, no Redis.
2. `runtime` is a real ChatRuntime (registry, dispatcher, protocol,
   isolation, router) over that database.
3. `connect` opens a FakeConnection through ChatProtocol.on_connect —
   exactly the path the WebSocket endpoint takes — and the connection
   records every event pushed to it, so tests assert on what each
   "device" would have seen.

Environment variables are set before anything imports chatline.config,
because settings is a module-level singleton.
"""

import os

os.environ["CHATLINE_ENVIRONMENT"] = "test"
os.environ["CHATLINE_DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CHATLINE_JWT_SECRET"] = "test-secret-key-long-enough-for-hs256-signing"
os.environ["CHATLINE_LOG_LEVEL"] = "WARNING"

from typing import Any, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from chatline.auth.jwt import create_access_token
from chatline.chat.runtime import ChatRuntime
from chatline.chat.session import SessionContext
from chatline.db.engine import build_engine, build_session_factory, create_schema
from chatline.realtime.connection import Connection, TransportFailure, new_connection_id
from chatline.store.sql import SqlMessageStore

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

ALICE = "00000000-0000-0000-0000-00000000a11c"
BOB = "00000000-0000-0000-0000-000000000b0b"
CAROL = "00000000-0000-0000-0000-0000000ca201"


class FakeConnection(Connection):
    """Connection that records events instead of writing to a socket.

    Set `fail = True` to make every send raise TransportFailure, like a
    client whose outbound queue is full.
    """

    def __init__(self, context: Optional[SessionContext] = None):
        super().__init__(context or SessionContext(connection_id=new_connection_id()))
        self.events: list[tuple[str, dict[str, Any]]] = []
        self.fail = False
        self.closed_with: Optional[int] = None

    async def send(self, event: str, data: dict[str, Any]) -> None:
        if self.fail:
            raise TransportFailure(f"{self.connection_id} unreachable")
        self.events.append((event, data))

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        self.closed_with = code

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def of(self, event: str) -> list[dict[str, Any]]:
        return [data for name, data in self.events if name == event]

    def clear(self) -> None:
        self.events.clear()


@pytest.fixture()
def fake_connection():
    """Factory for unregistered FakeConnections."""
    return FakeConnection


@pytest_asyncio.fixture()
async def engine():
    """Fresh in-memory database with the schema created."""
    engine = build_engine(TEST_DB_URL, echo=False)
    await create_schema(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture()
async def store(session_factory):
    return SqlMessageStore(session_factory)


@pytest_asyncio.fixture()
async def runtime(store):
    runtime = ChatRuntime.build(store, max_message_length=100, outbound_queue_size=16)
    try:
        yield runtime
    finally:
        await runtime.shutdown()


@pytest_asyncio.fixture()
async def connect(runtime):
    """Open an authenticated FakeConnection for a user via on_connect."""

    async def _connect(user_id: str) -> FakeConnection:
        conn = FakeConnection()
        outcome = await runtime.protocol.on_connect(conn, create_access_token(user_id))
        assert outcome.ok, outcome.message
        return conn

    return _connect


def _app_with_runtime(engine, runtime):
    from chatline.main import create_app

    app = create_app(database_url=TEST_DB_URL, use_redis=False)
    # ASGITransport doesn't run the lifespan — wire state by hand
    app.state.engine = engine
    app.state.chat = runtime
    return app


@pytest_asyncio.fixture()
async def client(engine, runtime):
    """HTTP client authenticated as ALICE.

    Learn: We override get_current_user to return ALICE's identity so
    protected routes work without minting tokens in every test.
    """
    from chatline.auth.dependencies import CurrentIdentity, get_current_user

    app = _app_with_runtime(engine, runtime)
    app.dependency_overrides[get_current_user] = lambda: CurrentIdentity(user_id=ALICE)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def unauthenticated_client(engine, runtime):
    """HTTP client WITHOUT the auth override — real token validation."""
    app = _app_with_runtime(engine, runtime)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
