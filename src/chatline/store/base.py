"""Message store contract.

Learn: The chat protocol never touches the database directly. It talks
to a MessageStore — a narrow repository interface with one method per
thing the protocol needs. Each call is atomic for the message it touches;
concurrent edit/delete on the same message are serialized here, not in
the protocol.

Errors:
- MessageNotFoundError — the id doesn't exist (or, for mutations, the
  message is already tombstoned)
- StoreError — anything else that went wrong while persisting
"""

import uuid
from abc import ABC, abstractmethod
from typing import Optional

from chatline.db.models import Event, Message


class StoreError(Exception):
    """Raised when the store fails to persist or load."""


class MessageNotFoundError(StoreError):
    """Raised when a message id does not resolve to a live message."""

    def __init__(self, message_id: int):
        super().__init__(f"Message {message_id} not found")
        self.message_id = message_id


class MessageStore(ABC):
    """Persistence contract consumed by the chat protocol."""

    @abstractmethod
    async def create(
        self, sender_id: uuid.UUID, receiver_id: uuid.UUID, content: str
    ) -> Message:
        """Persist a new message with a server-assigned id and sent_at."""

    @abstractmethod
    async def find_by_id(self, message_id: int) -> Message:
        """Load a message, deleted or not. Raises MessageNotFoundError."""

    @abstractmethod
    async def update_content(self, message_id: int, content: str) -> Message:
        """Replace content and stamp edited_at. Raises MessageNotFoundError
        if the message is missing or already deleted."""

    @abstractmethod
    async def tombstone(self, message_id: int) -> uuid.UUID:
        """Clear content and stamp deleted_at; return the receiver id.
        Raises MessageNotFoundError if missing or already deleted."""

    @abstractmethod
    async def mark_read(self, from_user_id: uuid.UUID, to_user_id: uuid.UUID) -> int:
        """Mark every unread message from → to as read. Returns the count."""

    @abstractmethod
    async def list_conversation(
        self,
        user_a: uuid.UUID,
        user_b: uuid.UUID,
        limit: int = 50,
        before_id: Optional[int] = None,
    ) -> list[Message]:
        """Messages between two users, newest first."""

    @abstractmethod
    async def count_unread(
        self, to_user_id: uuid.UUID, from_user_id: Optional[uuid.UUID] = None
    ) -> int:
        """Unread messages addressed to a user (optionally from one sender)."""

    @abstractmethod
    async def list_events(
        self, stream_id: str, after_id: int = 0, limit: int = 100
    ) -> list[Event]:
        """Audit events on one stream, oldest first, after the given event id."""
