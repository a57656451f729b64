"""Conversation API routes — history, unread counts and audit trail over HTTP.

Learn: The real-time channel only carries what happens while a client is
connected. A client that was offline catches up here: page backwards
through a conversation with ?before_id=, and ask how many messages are
still unread. The caller is always one side of the conversation, so there
is no way to read someone else's messages. The same holds for a
message's audit trail (sent, edited, deleted), which only its sender
and receiver can see.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query

from chatline.auth.dependencies import CurrentIdentity, get_current_user
from chatline.chat.protocol import MAX_MESSAGE_ID
from chatline.chat.runtime import ChatRuntime, get_runtime
from chatline.config import settings
from chatline.schemas.chat import EventRead, MessageRead, UnreadCountRead
from chatline.store.base import MessageNotFoundError, StoreError

router = APIRouter()


@router.get("/conversations/unread", response_model=UnreadCountRead)
async def unread_count(
    from_user_id: Optional[uuid.UUID] = Query(None),
    identity: CurrentIdentity = Depends(get_current_user),
    runtime: ChatRuntime = Depends(get_runtime),
):
    """Unread messages addressed to the caller, optionally from one sender."""
    me = uuid.UUID(identity.user_id)
    try:
        count = await runtime.store.count_unread(me, from_user_id)
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return UnreadCountRead(user_id=me, from_user_id=from_user_id, unread=count)


@router.get("/conversations/{user_id}/messages", response_model=list[MessageRead])
async def list_messages(
    user_id: uuid.UUID,
    limit: Optional[int] = Query(None, ge=1, le=200),
    before_id: Optional[int] = Query(None, ge=1, le=MAX_MESSAGE_ID),
    identity: CurrentIdentity = Depends(get_current_user),
    runtime: ChatRuntime = Depends(get_runtime),
):
    """The caller's conversation with user_id, newest first.

    Deleted messages are included as tombstones (empty content,
    deleted_at set) so clients can render "message deleted".
    """
    me = uuid.UUID(identity.user_id)
    try:
        return await runtime.store.list_conversation(
            me,
            user_id,
            limit=limit or settings.history_page_size,
            before_id=before_id,
        )
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/messages/{message_id}/events", response_model=list[EventRead])
async def message_events(
    message_id: int = Path(..., ge=1, le=MAX_MESSAGE_ID),
    after_id: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    identity: CurrentIdentity = Depends(get_current_user),
    runtime: ChatRuntime = Depends(get_runtime),
):
    """Audit trail of one message: sent, edited, deleted, oldest first.

    Only the two participants may read it. Page forward with ?after_id=.
    """
    me = uuid.UUID(identity.user_id)
    try:
        msg = await runtime.store.find_by_id(message_id)
    except MessageNotFoundError:
        raise HTTPException(status_code=404, detail="Message not found")
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))

    if me not in (msg.sender_id, msg.receiver_id):
        raise HTTPException(status_code=403, detail="Not a participant in this conversation")

    try:
        return await runtime.store.list_events(
            f"message:{message_id}", after_id=after_id, limit=limit
        )
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
