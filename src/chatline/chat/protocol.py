"""Chat session protocol — what each client operation does.

Learn: ChatProtocol is a stateless façade over three collaborators:
- MessageStore — persistence (the only place state changes durably)
- ConnectionRegistry — who is online, on which connections
- Dispatcher — turns "tell user X" into frames on X's sockets

Every operation takes the caller's SessionContext explicitly and returns
an Outcome instead of raising. The pattern is always the same:

  1. re-validate the caller's identity (cheap, no token decode)
  2. validate input                       → Invalid
  3. load / check ownership via the store → NotFound / Forbidden
  4. persist                              → DeliveryFailed on store error
  5. fan out events

Fan-out rules (note the asymmetry on send, kept on purpose):
- SendMessage   → ReceivedMessage to all receiver connections,
                  MessageAcknowledged to the calling connection only
- EditMessage   → MessageEdited to all receiver + caller connections
- DeleteMessage → MessageDeleted to all receiver + caller connections
- MarkAsRead    → MessagesRead to all counterpart connections
- Typing        → UserTyping to all receiver connections

Because nothing here holds state between calls, any number of operations
from any number of connections can run through one instance concurrently.
"""

import uuid
from typing import Any, Optional

import structlog

from chatline.auth.identity import (
    IdentityResolver,
    Unauthenticated,
    canonical_user_id,
)
from chatline.chat.outcome import ErrorKind, Outcome
from chatline.chat.session import SessionContext
from chatline.config import settings
from chatline.events.types import (
    CONNECTED,
    MESSAGE_ACKNOWLEDGED,
    MESSAGE_DELETED_EVENT,
    MESSAGE_EDITED_EVENT,
    MESSAGES_READ_EVENT,
    PONG,
    RECEIVED_MESSAGE,
    USER_OFFLINE,
    USER_ONLINE,
    USER_TYPING,
)
from chatline.realtime.connection import Connection
from chatline.realtime.dispatcher import Dispatcher
from chatline.realtime.registry import ConnectionRegistry
from chatline.schemas.chat import message_payload
from chatline.store.base import MessageNotFoundError, MessageStore, StoreError

logger = structlog.get_logger()

# Message.id is a 32-bit INTEGER column
MAX_MESSAGE_ID = 2**31 - 1


def parse_message_id(value: Any) -> Optional[int]:
    """Return a message id the column can hold, or None if malformed."""
    if isinstance(value, bool):
        return None
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if isinstance(value, int) and 0 < value <= MAX_MESSAGE_ID:
        return value
    return None


class ChatProtocol:
    """Operation handlers for direct messaging."""

    def __init__(
        self,
        store: MessageStore,
        registry: ConnectionRegistry,
        dispatcher: Dispatcher,
        resolver: Optional[IdentityResolver] = None,
        max_message_length: Optional[int] = None,
    ):
        self.store = store
        self.registry = registry
        self.dispatcher = dispatcher
        self.resolver = resolver or IdentityResolver()
        self.max_message_length = max_message_length or settings.max_message_length

    # ─── Connection lifecycle ────────────────────────────

    async def on_connect(self, connection: Connection, token: Optional[str]) -> Outcome:
        """Authenticate, register, greet, and announce presence.

        Learn: Only the 0→1 edge is announced. A user opening a second
        tab is already online as far as everyone else is concerned.
        """
        context = connection.context
        try:
            identity = self.resolver.resolve_token(token)
        except Unauthenticated as e:
            context.close()
            return Outcome.failure(ErrorKind.UNAUTHENTICATED, str(e))

        context.user_id = identity.user_id
        context.expires_at = identity.expires_at

        newly_online = self.registry.register(identity.user_id, connection)
        context.activate()

        logger.info(
            "chat.connected",
            user_id=identity.user_id,
            connection_id=context.connection_id,
            newly_online=newly_online,
        )

        online = [u for u in self.registry.online_users() if u != identity.user_id]
        await self.dispatcher.deliver_to_connection(
            context.connection_id,
            CONNECTED,
            {
                "connection_id": context.connection_id,
                "user_id": identity.user_id,
                "online_users": online,
            },
        )

        announced = 0
        if newly_online:
            announced = await self._announce_presence(identity.user_id, USER_ONLINE)

        return Outcome.success(
            {"user_id": identity.user_id, "newly_online": newly_online},
            UserOnline=announced,
        )

    async def on_disconnect(self, connection: Connection, reason: Optional[str] = None) -> Outcome:
        """Close the session, deregister, announce offline on the 1→0 edge.

        Never raises (except cancellation): deregistration happens before
        any await, so it completes even if the announcement fails.
        """
        context = connection.context
        context.close()
        user_id = context.user_id
        if user_id is None:
            # Never got past authentication — nothing was registered
            return Outcome.success(None)

        newly_offline = self.registry.unregister(user_id, context.connection_id)

        logger.info(
            "chat.disconnected",
            user_id=user_id,
            connection_id=context.connection_id,
            reason=reason,
            newly_offline=newly_offline,
        )

        announced = 0
        if newly_offline:
            announced = await self._announce_presence(user_id, USER_OFFLINE)

        return Outcome.success({"newly_offline": newly_offline}, UserOffline=announced)

    async def _announce_presence(self, user_id: str, event: str) -> int:
        try:
            return await self.dispatcher.deliver_to_all_except(
                user_id, event, {"user_id": user_id}
            )
        except Exception:
            logger.exception("chat.presence_announce_failed", user_id=user_id, event_name=event)
            return 0

    # ─── Messages ────────────────────────────────────────

    async def send_message(
        self,
        context: SessionContext,
        receiver_id: Any,
        content: Any,
        invocation_id: Optional[str] = None,
    ) -> Outcome:
        try:
            user_id = self.resolver.revalidate(context)
        except Unauthenticated as e:
            return Outcome.failure(ErrorKind.UNAUTHENTICATED, str(e))

        try:
            receiver = canonical_user_id(receiver_id)
        except ValueError:
            return Outcome.failure(ErrorKind.INVALID, "receiver_id must be a valid user id")
        if receiver == user_id:
            return Outcome.failure(ErrorKind.INVALID, "Cannot send a message to yourself")

        problem = self._check_content(content)
        if problem:
            return Outcome.failure(ErrorKind.INVALID, problem)

        try:
            msg = await self.store.create(uuid.UUID(user_id), uuid.UUID(receiver), content)
        except StoreError as e:
            logger.error("chat.send_failed", user_id=user_id, receiver_id=receiver, error=str(e))
            return Outcome.failure(ErrorKind.DELIVERY_FAILED, "Message could not be saved")

        payload = message_payload(msg)
        received = await self.dispatcher.deliver_to_user(receiver, RECEIVED_MESSAGE, payload)
        acknowledged = await self.dispatcher.deliver_to_connection(
            context.connection_id,
            MESSAGE_ACKNOWLEDGED,
            {**payload, "invocation_id": invocation_id},
        )

        logger.info(
            "chat.message_sent",
            message_id=msg.id,
            sender_id=user_id,
            receiver_id=receiver,
            receiver_connections=received,
        )
        return Outcome.success(
            payload,
            ReceivedMessage=received,
            MessageAcknowledged=acknowledged,
        )

    async def edit_message(
        self, context: SessionContext, message_id: Any, new_content: Any
    ) -> Outcome:
        try:
            user_id = self.resolver.revalidate(context)
        except Unauthenticated as e:
            return Outcome.failure(ErrorKind.UNAUTHENTICATED, str(e))

        mid = parse_message_id(message_id)
        if mid is None:
            return Outcome.failure(ErrorKind.INVALID, "message_id must be a positive integer")

        denied = await self._check_ownership(mid, user_id, "edit")
        if denied:
            return denied

        problem = self._check_content(new_content)
        if problem:
            return Outcome.failure(ErrorKind.INVALID, problem)

        try:
            msg = await self.store.update_content(mid, new_content)
        except MessageNotFoundError:
            # Deleted between the ownership check and the update
            return Outcome.failure(ErrorKind.NOT_FOUND, f"Message {mid} not found")
        except StoreError as e:
            logger.error("chat.edit_failed", message_id=mid, error=str(e))
            return Outcome.failure(ErrorKind.DELIVERY_FAILED, "Edit could not be saved")

        payload = {
            "message_id": msg.id,
            "content": msg.content,
            "edited_at": msg.edited_at.isoformat() if msg.edited_at else None,
        }
        reached = await self.dispatcher.deliver_to_users(
            [str(msg.receiver_id), user_id], MESSAGE_EDITED_EVENT, payload
        )

        logger.info("chat.message_edited", message_id=mid, user_id=user_id, connections=reached)
        return Outcome.success(payload, MessageEdited=reached)

    async def delete_message(self, context: SessionContext, message_id: Any) -> Outcome:
        try:
            user_id = self.resolver.revalidate(context)
        except Unauthenticated as e:
            return Outcome.failure(ErrorKind.UNAUTHENTICATED, str(e))

        mid = parse_message_id(message_id)
        if mid is None:
            return Outcome.failure(ErrorKind.INVALID, "message_id must be a positive integer")

        denied = await self._check_ownership(mid, user_id, "delete")
        if denied:
            return denied

        try:
            receiver_id = await self.store.tombstone(mid)
        except MessageNotFoundError:
            return Outcome.failure(ErrorKind.NOT_FOUND, f"Message {mid} not found")
        except StoreError as e:
            logger.error("chat.delete_failed", message_id=mid, error=str(e))
            return Outcome.failure(ErrorKind.DELIVERY_FAILED, "Delete could not be saved")

        payload = {"message_id": mid}
        reached = await self.dispatcher.deliver_to_users(
            [str(receiver_id), user_id], MESSAGE_DELETED_EVENT, payload
        )

        logger.info("chat.message_deleted", message_id=mid, user_id=user_id, connections=reached)
        return Outcome.success(payload, MessageDeleted=reached)

    # ─── Receipts + typing (best-effort) ─────────────────

    async def mark_as_read(self, context: SessionContext, counterpart_id: Any) -> Outcome:
        """Mark everything the counterpart sent the caller as read.

        Idempotent: a second call finds nothing unread, marks 0 rows, and
        still tells the counterpart (their UI may have missed the first).
        """
        try:
            user_id = self.resolver.revalidate(context)
        except Unauthenticated as e:
            return Outcome.failure(ErrorKind.UNAUTHENTICATED, str(e))

        try:
            counterpart = canonical_user_id(counterpart_id)
        except ValueError:
            return Outcome.failure(ErrorKind.INVALID, "counterpart_id must be a valid user id")
        if counterpart == user_id:
            return Outcome.failure(ErrorKind.INVALID, "Cannot mark your own messages as read")

        try:
            count = await self.store.mark_read(uuid.UUID(counterpart), uuid.UUID(user_id))
        except StoreError as e:
            logger.warning("chat.mark_read_failed", user_id=user_id, counterpart_id=counterpart, error=str(e))
            return Outcome.failure(ErrorKind.DELIVERY_FAILED, "Read receipt could not be saved")

        reached = await self.dispatcher.deliver_to_user(
            counterpart, MESSAGES_READ_EVENT, {"user_id": user_id}
        )
        return Outcome.success({"count": count}, MessagesRead=reached)

    async def typing(self, context: SessionContext, receiver_id: Any) -> Outcome:
        try:
            user_id = self.resolver.revalidate(context)
        except Unauthenticated as e:
            return Outcome.failure(ErrorKind.UNAUTHENTICATED, str(e))

        try:
            receiver = canonical_user_id(receiver_id)
        except ValueError:
            return Outcome.failure(ErrorKind.INVALID, "receiver_id must be a valid user id")
        if receiver == user_id:
            return Outcome.failure(ErrorKind.INVALID, "Cannot send typing to yourself")

        reached = await self.dispatcher.deliver_to_user(
            receiver, USER_TYPING, {"user_id": user_id}
        )
        return Outcome.success(None, UserTyping=reached)

    async def ping(self, context: SessionContext) -> Outcome:
        try:
            self.resolver.revalidate(context)
        except Unauthenticated as e:
            return Outcome.failure(ErrorKind.UNAUTHENTICATED, str(e))
        reached = await self.dispatcher.deliver_to_connection(context.connection_id, PONG, {})
        return Outcome.success(None, Pong=reached)

    # ─── Helpers ─────────────────────────────────────────

    def _check_content(self, content: Any) -> Optional[str]:
        """Return a problem description, or None if the content is acceptable."""
        if not isinstance(content, str) or not content.strip():
            return "Message content must not be empty"
        if len(content) > self.max_message_length:
            return f"Message content exceeds {self.max_message_length} characters"
        return None

    async def _check_ownership(self, message_id: int, user_id: str, action: str) -> Optional[Outcome]:
        """Load a live message and confirm the caller sent it.

        Returns a failure Outcome, or None when the caller may proceed.
        """
        try:
            msg = await self.store.find_by_id(message_id)
        except MessageNotFoundError:
            return Outcome.failure(ErrorKind.NOT_FOUND, f"Message {message_id} not found")
        except StoreError as e:
            logger.error("chat.lookup_failed", message_id=message_id, error=str(e))
            return Outcome.failure(ErrorKind.DELIVERY_FAILED, "Message could not be loaded")

        if msg.is_deleted:
            return Outcome.failure(ErrorKind.NOT_FOUND, f"Message {message_id} not found")
        if str(msg.sender_id) != user_id:
            return Outcome.failure(ErrorKind.FORBIDDEN, f"You can only {action} your own messages")
        return None
