"""SQLAlchemy-backed message store.

Learn: One short transaction per call. The protocol layer is stateless
and reentrant, so the store can't share a session between calls — it
opens a session from the factory, does its work, commits, and returns
detached ORM objects (expire_on_commit=False keeps their attributes
readable after the session closes).

Per-message atomicity: mutations load the row with SELECT ... FOR UPDATE
(a no-op on SQLite, which serializes writers anyway), so an edit racing a
delete sees either the original row or the tombstone — never half of each.

Every mutation appends an audit event in the same transaction.
"""

import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import structlog
from sqlalchemy import and_, case, func, literal, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatline.db.models import Event, Message, UTCDateTime, utcnow
from chatline.events.store import EventStore
from chatline.events.types import (
    MESSAGE_DELETED,
    MESSAGE_EDITED,
    MESSAGE_SENT,
    MESSAGES_READ,
)
from chatline.store.base import MessageNotFoundError, MessageStore, StoreError

logger = structlog.get_logger()


def conversation_stream(user_a: uuid.UUID, user_b: uuid.UUID) -> str:
    """Stable stream id for a pair of users, independent of direction."""
    first, second = sorted((str(user_a), str(user_b)))
    return f"conversation:{first}:{second}"


class SqlMessageStore(MessageStore):
    """MessageStore over an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Open a session; translate driver/ORM failures into StoreError."""
        try:
            async with self.session_factory() as db:
                yield db
        except StoreError:
            raise
        except (SQLAlchemyError, OSError) as e:
            logger.error("store.operation_failed", operation=operation, error=str(e))
            raise StoreError(f"{operation} failed: {e}") from e

    # ─── Writes ──────────────────────────────────────────

    async def create(
        self, sender_id: uuid.UUID, receiver_id: uuid.UUID, content: str
    ) -> Message:
        async with self._session("create") as db:
            msg = Message(
                sender_id=sender_id,
                receiver_id=receiver_id,
                content=content,
                sent_at=utcnow(),
            )
            db.add(msg)
            await db.flush()  # get the auto-generated id

            await EventStore(db).append(
                stream_id=f"message:{msg.id}",
                event_type=MESSAGE_SENT,
                data={
                    "sender_id": str(sender_id),
                    "receiver_id": str(receiver_id),
                    "length": len(content),
                },
            )
            await db.commit()
            return msg

    async def update_content(self, message_id: int, content: str) -> Message:
        async with self._session("update_content") as db:
            msg = await db.get(Message, message_id, with_for_update=True)
            if msg is None or msg.is_deleted:
                raise MessageNotFoundError(message_id)

            previous_length = len(msg.content)
            msg.content = content
            # edited_at >= sent_at even if the clock stepped backwards
            msg.edited_at = max(utcnow(), msg.sent_at)

            await EventStore(db).append(
                stream_id=f"message:{msg.id}",
                event_type=MESSAGE_EDITED,
                data={"previous_length": previous_length, "length": len(content)},
            )
            await db.commit()
            return msg

    async def tombstone(self, message_id: int) -> uuid.UUID:
        async with self._session("tombstone") as db:
            msg = await db.get(Message, message_id, with_for_update=True)
            if msg is None or msg.is_deleted:
                raise MessageNotFoundError(message_id)

            msg.content = ""
            msg.deleted_at = max(utcnow(), msg.sent_at)

            await EventStore(db).append(
                stream_id=f"message:{msg.id}",
                event_type=MESSAGE_DELETED,
                data={"sender_id": str(msg.sender_id)},
            )
            await db.commit()
            return msg.receiver_id

    async def mark_read(self, from_user_id: uuid.UUID, to_user_id: uuid.UUID) -> int:
        async with self._session("mark_read") as db:
            now = literal(utcnow(), UTCDateTime)
            result = await db.execute(
                update(Message)
                .where(
                    Message.sender_id == from_user_id,
                    Message.receiver_id == to_user_id,
                    Message.read_at.is_(None),
                )
                # read_at >= sent_at even if the clock stepped backwards
                .values(read_at=case((Message.sent_at > now, Message.sent_at), else_=now))
                .execution_options(synchronize_session=False)
            )
            count = result.rowcount or 0

            if count:
                await EventStore(db).append(
                    stream_id=conversation_stream(from_user_id, to_user_id),
                    event_type=MESSAGES_READ,
                    data={
                        "from_user_id": str(from_user_id),
                        "to_user_id": str(to_user_id),
                        "count": count,
                    },
                )
            await db.commit()
            return count

    # ─── Reads ───────────────────────────────────────────

    async def find_by_id(self, message_id: int) -> Message:
        async with self._session("find_by_id") as db:
            msg = await db.get(Message, message_id)
            if msg is None:
                raise MessageNotFoundError(message_id)
            return msg

    async def list_conversation(
        self,
        user_a: uuid.UUID,
        user_b: uuid.UUID,
        limit: int = 50,
        before_id: Optional[int] = None,
    ) -> list[Message]:
        async with self._session("list_conversation") as db:
            query = (
                select(Message)
                .where(
                    or_(
                        and_(Message.sender_id == user_a, Message.receiver_id == user_b),
                        and_(Message.sender_id == user_b, Message.receiver_id == user_a),
                    )
                )
                .order_by(Message.id.desc())
                .limit(limit)
            )
            if before_id is not None:
                query = query.where(Message.id < before_id)
            result = await db.execute(query)
            return list(result.scalars().all())

    async def count_unread(
        self, to_user_id: uuid.UUID, from_user_id: Optional[uuid.UUID] = None
    ) -> int:
        async with self._session("count_unread") as db:
            query = (
                select(func.count())
                .select_from(Message)
                .where(
                    Message.receiver_id == to_user_id,
                    Message.read_at.is_(None),
                    Message.deleted_at.is_(None),
                )
            )
            if from_user_id is not None:
                query = query.where(Message.sender_id == from_user_id)
            result = await db.execute(query)
            return int(result.scalar_one())

    async def list_events(
        self, stream_id: str, after_id: int = 0, limit: int = 100
    ) -> list[Event]:
        async with self._session("list_events") as db:
            return await EventStore(db).read_stream(stream_id, after_id=after_id, limit=limit)
