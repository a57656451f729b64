"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown: database engine, message
store, the chat runtime (registry + dispatcher + protocol), and the
optional Redis pool. Middleware, CORS, and routers are registered here.

Long-lived objects hang off app.state (engine, chat) instead of module
globals, so each app instance, including the ones tests create, owns its
own registry and its own database.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatline import __version__
from chatline.api import api_router
from chatline.cache import close_redis, init_redis
from chatline.chat.runtime import ChatRuntime
from chatline.config import settings
from chatline.db.engine import build_engine, build_session_factory, create_schema
from chatline.logs import configure_logging
from chatline.middleware.rate_limit import RateLimitMiddleware
from chatline.middleware.request_id import RequestIdMiddleware
from chatline.middleware.security import SecurityHeadersMiddleware
from chatline.realtime.websocket import router as ws_router
from chatline.store.sql import SqlMessageStore

logger = structlog.get_logger()


def build_lifespan(database_url: Optional[str] = None, use_redis: bool = True):
    """Lifespan factory; tests pass their own database URL and skip Redis."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown lifecycle.

        Learn: Anything before `yield` runs at startup, after `yield`
        runs at shutdown.
        """
        configure_logging()
        logger.info(
            "chatline.starting",
            version=__version__,
            environment=settings.environment,
            port=settings.port,
        )

        engine = build_engine(database_url)
        if settings.auto_create_schema:
            await create_schema(engine)

        store = SqlMessageStore(build_session_factory(engine))
        runtime = ChatRuntime.build(
            store,
            max_message_length=settings.max_message_length,
            outbound_queue_size=settings.outbound_queue_size,
        )
        app.state.engine = engine
        app.state.chat = runtime

        if use_redis:
            try:
                await init_redis()
                logger.info("chatline.redis_connected", url=settings.redis_url)
            except Exception as e:
                # Redis is optional — only rate limiting depends on it
                logger.warning("chatline.redis_unavailable", error=str(e))

        yield

        # Shutdown
        logger.info("chatline.shutdown")
        await runtime.shutdown()
        await close_redis()
        await engine.dispose()

    return lifespan


def create_app(database_url: Optional[str] = None, use_redis: bool = True) -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="Chatline",
        description="Real-time one-to-one messaging over WebSockets",
        version=__version__,
        lifespan=build_lifespan(database_url, use_redis),
    )

    # ── Middleware stack ──────────────────────────────────────
    # Starlette runs middleware in reverse order of registration.
    # Request flow: CORS → RateLimit → Security → RequestId → handler
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RateLimitMiddleware, rpm=settings.rate_limit_rpm)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # REST API
    app.include_router(api_router)

    # WebSocket (real-time chat)
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: chatline.main:app)
app = create_app()
