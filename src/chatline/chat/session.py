"""Per-connection session state.

Learn: Every connection carries one SessionContext — who is on the other
end and what state the connection is in. It is resolved once at connect
and passed explicitly into every protocol handler, instead of handlers
digging identity out of ambient request state.

The state machine is tiny:

  connecting → active → closed

closed is terminal: once the transport drops, no further operation is
processed for that connection.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class SessionState(str, Enum):
    CONNECTING = "connecting"
    ACTIVE = "active"
    CLOSED = "closed"


VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.CONNECTING: {SessionState.ACTIVE, SessionState.CLOSED},
    SessionState.ACTIVE: {SessionState.CLOSED},
    SessionState.CLOSED: set(),  # terminal state
}


class InvalidSessionTransition(Exception):
    """Raised when a session state transition is not allowed."""
    pass


@dataclass
class SessionContext:
    """Identity and lifecycle of one connection."""

    connection_id: str
    user_id: Optional[str] = None
    expires_at: Optional[datetime] = None  # token expiry, if the token had one
    state: SessionState = SessionState.CONNECTING
    connected_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    @property
    def is_closed(self) -> bool:
        return self.state is SessionState.CLOSED

    def activate(self) -> None:
        self._transition(SessionState.ACTIVE)

    def close(self) -> None:
        """Mark the session closed. Closing twice is a no-op."""
        if self.state is not SessionState.CLOSED:
            self._transition(SessionState.CLOSED)

    def _transition(self, new_state: SessionState) -> None:
        if new_state not in VALID_TRANSITIONS[self.state]:
            raise InvalidSessionTransition(
                f"Cannot transition session {self.connection_id} "
                f"from '{self.state.value}' to '{new_state.value}'"
            )
        self.state = new_state
