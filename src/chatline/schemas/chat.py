"""Pydantic schemas for the chat wire protocol and REST responses.

Learn: Frames in both directions are small JSON envelopes.
- ClientFrame: {"method": "SendMessage", "args": {...}, "invocation_id": "..."}
- ServerFrame: {"event": "ReceivedMessage", "data": {...}}

Per-operation *Args models only check shape (types, presence). Meaning —
is this a valid user id, is the content blank, may this caller edit this
message — is the protocol's job, so it applies no matter which transport
delivered the call.
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


# ─── Envelopes ───────────────────────────────────────────

class ClientFrame(BaseModel):
    method: str = Field(..., min_length=1, max_length=64)
    args: dict[str, Any] = Field(default_factory=dict)
    invocation_id: Optional[str] = Field(None, max_length=128)


class ServerFrame(BaseModel):
    event: str
    data: dict[str, Any] = Field(default_factory=dict)


# ─── Operation arguments ─────────────────────────────────

class SendMessageArgs(BaseModel):
    receiver_id: str
    content: str


class EditMessageArgs(BaseModel):
    message_id: int
    new_content: str


class DeleteMessageArgs(BaseModel):
    message_id: int


class MarkAsReadArgs(BaseModel):
    counterpart_id: str


class TypingArgs(BaseModel):
    receiver_id: str


class NoArgs(BaseModel):
    pass


# ─── Messages ────────────────────────────────────────────

class MessageRead(BaseModel):
    id: int
    sender_id: uuid.UUID
    receiver_id: uuid.UUID
    content: str
    sent_at: datetime
    edited_at: Optional[datetime]
    deleted_at: Optional[datetime]
    read_at: Optional[datetime]

    model_config = {"from_attributes": True}


def message_payload(message) -> dict[str, Any]:
    """JSON-ready dict for a Message row (UUIDs and datetimes as strings)."""
    return MessageRead.model_validate(message).model_dump(mode="json")


# ─── Presence / counts ───────────────────────────────────

class PresenceRead(BaseModel):
    user_id: uuid.UUID
    online: bool
    connections: int


class OnlineUsersRead(BaseModel):
    users: list[uuid.UUID]
    connections: int


class UnreadCountRead(BaseModel):
    user_id: uuid.UUID
    from_user_id: Optional[uuid.UUID]
    unread: int


# ─── Audit trail ─────────────────────────────────────────

class EventRead(BaseModel):
    id: int
    stream_id: str
    type: str
    data: dict[str, Any]
    created_at: datetime

    model_config = {"from_attributes": True}
