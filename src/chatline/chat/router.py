"""Frame router — from a raw client frame to a protocol call.

Learn: The router owns the method table. For each inbound text frame it:
1. parses the envelope (ClientFrame)      → OperationError "invalid" if malformed
2. looks up the method                    → OperationError "invalid" if unknown
3. validates the args model               → Invalid outcome (inside isolation)
4. calls the handler through ErrorIsolation

A frame the router can't make sense of is answered with an error event;
it never raises, so the connection's reader loop never dies on bad input.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, ValidationError

from chatline.chat.isolation import ErrorIsolation
from chatline.chat.outcome import ErrorKind, Outcome
from chatline.chat.protocol import ChatProtocol
from chatline.chat.session import SessionContext
from chatline.schemas.chat import (
    ClientFrame,
    DeleteMessageArgs,
    EditMessageArgs,
    MarkAsReadArgs,
    NoArgs,
    SendMessageArgs,
    TypingArgs,
)


@dataclass(frozen=True)
class Route:
    args: type[BaseModel]
    call: Callable[[SessionContext, Any, Optional[str]], Awaitable[Outcome]]


def describe_validation_error(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        location = ".".join(str(part) for part in err["loc"]) or "frame"
        parts.append(f"{location}: {err['msg']}")
    return "; ".join(parts)


class FrameRouter:
    """Dispatches client frames to ChatProtocol operations."""

    def __init__(self, protocol: ChatProtocol, isolation: ErrorIsolation):
        self.protocol = protocol
        self.isolation = isolation
        p = protocol
        self.routes: dict[str, Route] = {
            "SendMessage": Route(
                SendMessageArgs,
                lambda ctx, a, inv: p.send_message(ctx, a.receiver_id, a.content, invocation_id=inv),
            ),
            "EditMessage": Route(
                EditMessageArgs,
                lambda ctx, a, inv: p.edit_message(ctx, a.message_id, a.new_content),
            ),
            "DeleteMessage": Route(
                DeleteMessageArgs,
                lambda ctx, a, inv: p.delete_message(ctx, a.message_id),
            ),
            "MarkAsRead": Route(
                MarkAsReadArgs,
                lambda ctx, a, inv: p.mark_as_read(ctx, a.counterpart_id),
            ),
            "Typing": Route(
                TypingArgs,
                lambda ctx, a, inv: p.typing(ctx, a.receiver_id),
            ),
            "Ping": Route(NoArgs, lambda ctx, a, inv: p.ping(ctx)),
        }

    async def handle(self, context: SessionContext, raw: str) -> Outcome:
        """Process one raw text frame for a connection."""
        try:
            frame = ClientFrame.model_validate_json(raw)
        except ValidationError as e:
            outcome = Outcome.failure(
                ErrorKind.INVALID, f"Malformed frame: {describe_validation_error(e)}"
            )
            await self.isolation.report(context, "Unknown", outcome)
            return outcome

        route = self.routes.get(frame.method)
        if route is None:
            outcome = Outcome.failure(ErrorKind.INVALID, f"Unknown method '{frame.method}'")
            await self.isolation.report(context, frame.method, outcome, frame.invocation_id)
            return outcome

        return await self.isolation.run(
            frame.method,
            context,
            self._invoke,
            route,
            frame,
            invocation_id=frame.invocation_id,
        )

    async def _invoke(self, context: SessionContext, route: Route, frame: ClientFrame) -> Outcome:
        try:
            args = route.args.model_validate(frame.args)
        except ValidationError as e:
            return Outcome.failure(ErrorKind.INVALID, describe_validation_error(e))
        return await route.call(context, args, frame.invocation_id)
