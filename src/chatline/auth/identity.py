"""Identity resolution for WebSocket connections.

Learn: Browsers can't set an Authorization header on a WebSocket
handshake, so the token is looked up in three places, in order:
1. ?access_token= (or ?token=) query parameter
2. Authorization: Bearer header (native clients, tests)
3. The auth cookie set by the login service

resolve() runs once at connect. revalidate() runs before every operation:
it does not decode the token again, it only checks that the session still
carries an identity, is active, and that the token's exp has not passed.
That keeps the per-operation check synchronous and cheap.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from starlette.requests import HTTPConnection

from chatline.auth.jwt import TokenError, verify_token
from chatline.chat.session import SessionContext
from chatline.config import settings


class Unauthenticated(Exception):
    """Raised when no usable identity can be resolved."""


def canonical_user_id(value) -> str:
    """Normalize a user identifier to its canonical UUID string.

    Raises ValueError if the value is not a UUID.
    """
    if isinstance(value, uuid.UUID):
        return str(value)
    if not isinstance(value, str):
        raise ValueError(f"User id must be a UUID string, got {type(value).__name__}")
    return str(uuid.UUID(value.strip()))


@dataclass(frozen=True)
class ResolvedIdentity:
    user_id: str
    expires_at: Optional[datetime] = None


class IdentityResolver:
    """Turns connection credentials into a stable user id."""

    def __init__(self, cookie_name: Optional[str] = None):
        self.cookie_name = cookie_name or settings.auth_cookie_name

    def extract_token(self, conn: HTTPConnection) -> Optional[str]:
        """Find the bearer token on a connection, if any."""
        token = conn.query_params.get("access_token") or conn.query_params.get("token")
        if token:
            return token

        authorization = conn.headers.get("authorization", "")
        if authorization.startswith("Bearer "):
            return authorization[7:].strip() or None

        return conn.cookies.get(self.cookie_name) or None

    def resolve_token(self, token: Optional[str]) -> ResolvedIdentity:
        """Decode a token into an identity. Raises Unauthenticated."""
        if not token:
            raise Unauthenticated("Authentication required")

        try:
            payload = verify_token(token)
        except TokenError as e:
            raise Unauthenticated(str(e))

        if payload.get("type", "access") != "access":
            raise Unauthenticated("Access token required")

        try:
            user_id = canonical_user_id(payload.get("sub"))
        except ValueError:
            raise Unauthenticated("Token subject is not a valid user id")

        exp = payload.get("exp")
        expires_at = (
            datetime.fromtimestamp(exp, tz=timezone.utc)
            if isinstance(exp, (int, float))
            else None
        )
        return ResolvedIdentity(user_id=user_id, expires_at=expires_at)

    def resolve(self, conn: HTTPConnection) -> ResolvedIdentity:
        """Resolve the identity behind a connection handshake."""
        return self.resolve_token(self.extract_token(conn))

    def revalidate(self, context: SessionContext, now: Optional[datetime] = None) -> str:
        """Check a session still carries a usable identity; return the user id."""
        if not context.user_id:
            raise Unauthenticated("Connection has no identity")
        if not context.is_active:
            raise Unauthenticated(f"Connection is {context.state.value}")
        if context.expires_at is not None:
            now = now or datetime.now(timezone.utc)
            if now >= context.expires_at:
                raise Unauthenticated("Token has expired")
        return context.user_id
