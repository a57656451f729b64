"""structlog setup.

Learn: Application code only ever calls structlog.get_logger() and logs
dotted event names with key/value context ("chat.message_sent",
message_id=..). This module decides how those entries are rendered:
human-readable console output in development, one JSON object per line
when CHATLINE_LOG_JSON is set.

Context bound via structlog.contextvars (request_id from the middleware,
connection_id/user_id from the WebSocket endpoint) is merged into every
entry logged while that context is active.
"""

import logging

import structlog

from chatline.config import settings


def configure_logging(level: str | None = None, json: bool | None = None) -> None:
    """Configure structlog processors and the stdlib root logger."""
    level_name = (level or settings.log_level).upper()
    log_level = logging.getLevelName(level_name)
    if not isinstance(log_level, int):
        log_level = logging.INFO

    use_json = settings.log_json if json is None else json

    # Third-party libraries (uvicorn, sqlalchemy) still log via stdlib
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if use_json:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        # ConsoleRenderer formats exceptions itself
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        cache_logger_on_first_use=True,
    )
