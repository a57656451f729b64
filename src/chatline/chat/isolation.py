"""Error isolation — one bad operation never takes the connection down.

Learn: Every client operation runs through ErrorIsolation.run(). It
guarantees three things:

1. An unexpected exception inside a handler is caught here, logged with
   its traceback, and turned into an `internal` failure. The reader loop
   keeps going; other connections never notice.
2. A failure Outcome becomes exactly one OperationError event, sent to
   the calling connection only.
3. Best-effort operations (typing, read receipts) fail silently — the
   failure is logged and nothing is sent back.

Cancellation (asyncio.CancelledError) is not an Exception subclass and is
deliberately not caught: shutting down must still shut down.
"""

from typing import Any, Awaitable, Callable, Optional

import structlog

from chatline.chat.outcome import ErrorKind, Outcome
from chatline.chat.session import SessionContext
from chatline.events.types import OPERATION_ERROR
from chatline.realtime.dispatcher import Dispatcher

logger = structlog.get_logger()

BEST_EFFORT_OPERATIONS = frozenset({"MarkAsRead", "Typing"})


class ErrorIsolation:
    """Runs handlers and maps their outcomes to client-facing errors."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        best_effort: frozenset[str] = BEST_EFFORT_OPERATIONS,
    ):
        self.dispatcher = dispatcher
        self.best_effort = best_effort

    async def run(
        self,
        operation: str,
        context: SessionContext,
        handler: Callable[..., Awaitable[Outcome]],
        *args: Any,
        invocation_id: Optional[str] = None,
        **kwargs: Any,
    ) -> Outcome:
        """Run one operation handler in isolation."""
        try:
            outcome = await handler(context, *args, **kwargs)
        except Exception:
            logger.exception(
                "chat.operation_crashed",
                operation=operation,
                connection_id=context.connection_id,
                user_id=context.user_id,
            )
            outcome = Outcome.failure(
                ErrorKind.INTERNAL, f"{operation} failed due to an internal error"
            )

        if outcome.ok:
            return outcome

        if operation in self.best_effort:
            logger.debug(
                "chat.best_effort_failed",
                operation=operation,
                code=outcome.error.value,
                error=outcome.message,
            )
            return outcome

        await self.report(context, operation, outcome, invocation_id)
        return outcome

    async def report(
        self,
        context: SessionContext,
        operation: str,
        outcome: Outcome,
        invocation_id: Optional[str] = None,
    ) -> int:
        """Send an OperationError for a failed outcome to the caller only."""
        logger.info(
            "chat.operation_failed",
            operation=operation,
            code=outcome.error.value,
            error=outcome.message,
            connection_id=context.connection_id,
        )
        if context.is_closed:
            return 0
        try:
            return await self.dispatcher.deliver_to_connection(
                context.connection_id,
                OPERATION_ERROR,
                {
                    "operation": operation,
                    "code": outcome.error.value,
                    "message": outcome.message,
                    "invocation_id": invocation_id,
                },
            )
        except Exception:
            logger.exception("chat.error_report_failed", operation=operation)
            return 0
