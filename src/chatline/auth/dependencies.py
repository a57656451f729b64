"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers to extract
and validate the current user identity from the request. They reuse
the IdentityResolver, so REST and WebSocket accept exactly the same
credentials (Bearer header, query token, or auth cookie).
"""

from typing import Optional

from fastapi import Depends, HTTPException, Request

from chatline.auth.identity import IdentityResolver, Unauthenticated


class CurrentIdentity:
    """Represents the authenticated user making the request."""

    def __init__(self, user_id: str):
        self.user_id = user_id

    def __repr__(self) -> str:
        return f"CurrentIdentity(user_id={self.user_id!r})"


_resolver = IdentityResolver()


async def get_current_user_optional(request: Request) -> Optional[CurrentIdentity]:
    """Extract current identity (optional — returns None if no credentials).

    Learn: This is the "soft" auth dependency. Credentials that are present
    but invalid still fail with 401 — only their absence yields None.
    """
    token = _resolver.extract_token(request)
    if not token:
        return None
    try:
        identity = _resolver.resolve_token(token)
    except Unauthenticated as e:
        raise HTTPException(
            status_code=401,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )
    return CurrentIdentity(user_id=identity.user_id)


async def get_current_user(
    identity: Optional[CurrentIdentity] = Depends(get_current_user_optional),
) -> CurrentIdentity:
    """Extract current identity (required — 401 if no auth)."""
    if not identity:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity
