"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Alembic auto-generates migrations by comparing
these models to the actual DB.

Key concepts:
- Integer message ids (autoincrement) — unique AND order-comparable, so
  two sends landing in the same millisecond still have a total order
- Generic Uuid / JSON column types so the same models run on PostgreSQL
  (production) and SQLite (tests); JSON becomes JSONB on PostgreSQL
- UTCDateTime keeps every timestamp timezone-aware UTC on the way out,
  even on engines that store naive datetimes
- Users are NOT modelled here: registration and credentials belong to an
  external identity service. Messages only carry the user UUIDs.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetime on every backend.

    Learn: PostgreSQL's timestamptz round-trips tzinfo; SQLite stores the
    naive wall-clock value. Normalizing to UTC on the way in and tagging
    UTC on the way out means comparisons like `edited_at >= sent_at`
    never mix naive and aware values.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# ══════════════════════════════════════════════════════════════
# Direct messages
# ══════════════════════════════════════════════════════════════


class Message(Base):
    """A direct message between two users.

    Learn: A message is never hard-deleted. Its lifecycle is a small
    state machine driven by timestamps:

      sent ──edit──▶ edited (content replaced, edited_at set)
        │                │
        └──delete──▶ deleted (content cleared, deleted_at set) — terminal

      unread ──mark_read──▶ read (read_at set)

    Only the sender edits/deletes; only the receiver marks read.
    """

    __tablename__ = "messages"
    __table_args__ = (
        Index("idx_messages_conversation", "sender_id", "receiver_id", "id"),
        Index("idx_messages_unread", "receiver_id", "read_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sender_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    receiver_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)

    # Server clock, UTC. Set by the store, not the database, so ordering
    # within one process is guaranteed non-decreasing.
    sent_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    edited_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    read_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_read(self) -> bool:
        return self.read_at is not None


# ══════════════════════════════════════════════════════════════
# Audit trail
# ══════════════════════════════════════════════════════════════


class Event(Base):
    """Immutable event log — audit trail of every message mutation.

    Learn: Events are append-only (never updated/deleted). Together with
    tombstoning this keeps a conversation's history continuous: you can
    always see that message 42 was edited twice and then deleted.

    stream_id examples: "message:42", "conversation:<uuid>:<uuid>"
    type examples: "message.sent", "message.edited", "messages.read"
    """

    __tablename__ = "events"
    __table_args__ = (
        Index("idx_events_stream", "stream_id", "id"),
        Index("idx_events_type", "type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    stream_id: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(100), nullable=False)
    data: Mapped[dict] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"), nullable=False
    )
    meta: Mapped[dict] = mapped_column(
        "metadata", JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict
    )  # actor_id, connection_id
    # Note: Python attr is "meta" because "metadata" is reserved by SQLAlchemy.
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
