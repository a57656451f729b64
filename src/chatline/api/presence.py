"""Presence API routes — who is connected to this server right now.

Learn: Presence is read straight from the in-process ConnectionRegistry:
a user is online while at least one of their connections is registered.
"""

import uuid

from fastapi import APIRouter, Depends

from chatline.chat.runtime import ChatRuntime, get_runtime
from chatline.schemas.chat import OnlineUsersRead, PresenceRead

router = APIRouter()


@router.get("/presence", response_model=OnlineUsersRead)
async def online_users(runtime: ChatRuntime = Depends(get_runtime)):
    """All users with at least one live connection."""
    return OnlineUsersRead(
        users=sorted(runtime.registry.online_users()),
        connections=runtime.registry.connection_count(),
    )


@router.get("/presence/{user_id}", response_model=PresenceRead)
async def user_presence(user_id: uuid.UUID, runtime: ChatRuntime = Depends(get_runtime)):
    """Online status and connection count for one user."""
    key = str(user_id)
    connections = len(runtime.registry.connection_ids_for(key))
    return PresenceRead(user_id=user_id, online=connections > 0, connections=connections)
