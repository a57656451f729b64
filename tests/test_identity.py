"""Identity resolution tests — token lookup, decoding, per-operation checks."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from starlette.requests import Request

from chatline.auth.identity import IdentityResolver, Unauthenticated, canonical_user_id
from chatline.auth.jwt import create_access_token
from chatline.chat.session import SessionContext
from chatline.config import settings
from conftest import ALICE


def _request(query: str = "", headers: dict[str, str] | None = None) -> Request:
    raw_headers = [
        (k.lower().encode(), v.encode()) for k, v in (headers or {}).items()
    ]
    return Request({
        "type": "http",
        "method": "GET",
        "path": "/",
        "query_string": query.encode(),
        "headers": raw_headers,
    })


def _active(user_id: str = ALICE, expires_at=None) -> SessionContext:
    ctx = SessionContext(connection_id="c1", user_id=user_id, expires_at=expires_at)
    ctx.activate()
    return ctx


# ─── canonical_user_id ───────────────────────────────────


def test_canonical_user_id_normalizes_case():
    assert canonical_user_id(ALICE.upper()) == ALICE


@pytest.mark.parametrize("value", ["", "not-a-uuid", 42, None])
def test_canonical_user_id_rejects_garbage(value):
    with pytest.raises(ValueError):
        canonical_user_id(value)


# ─── Token extraction ────────────────────────────────────


def test_extract_token_prefers_query_parameter():
    resolver = IdentityResolver()
    req = _request("access_token=from-query", {"Authorization": "Bearer from-header"})
    assert resolver.extract_token(req) == "from-query"


def test_extract_token_accepts_short_query_name():
    assert IdentityResolver().extract_token(_request("token=t1")) == "t1"


def test_extract_token_from_bearer_header():
    req = _request(headers={"Authorization": "Bearer abc.def"})
    assert IdentityResolver().extract_token(req) == "abc.def"


def test_extract_token_from_cookie():
    req = _request(headers={"Cookie": f"{settings.auth_cookie_name}=cookie-token"})
    assert IdentityResolver().extract_token(req) == "cookie-token"


def test_extract_token_none_when_absent():
    assert IdentityResolver().extract_token(_request()) is None


# ─── Token resolution ────────────────────────────────────


def test_resolve_valid_token():
    identity = IdentityResolver().resolve_token(create_access_token(ALICE))
    assert identity.user_id == ALICE
    assert identity.expires_at > datetime.now(timezone.utc)


def test_resolve_missing_token():
    with pytest.raises(Unauthenticated, match="required"):
        IdentityResolver().resolve_token(None)


def test_resolve_garbage_token():
    with pytest.raises(Unauthenticated, match="Invalid token"):
        IdentityResolver().resolve_token("not.a.jwt")


def test_resolve_expired_token():
    token = create_access_token(ALICE, expires_minutes=-5)
    with pytest.raises(Unauthenticated, match="expired"):
        IdentityResolver().resolve_token(token)


def test_resolve_rejects_non_access_token():
    token = jwt.encode(
        {"sub": ALICE, "type": "refresh", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )
    with pytest.raises(Unauthenticated, match="Access token"):
        IdentityResolver().resolve_token(token)


def test_resolve_rejects_non_uuid_subject():
    token = create_access_token("alice")
    with pytest.raises(Unauthenticated, match="subject"):
        IdentityResolver().resolve_token(token)


def test_resolve_reads_from_connection():
    req = _request(headers={"Authorization": f"Bearer {create_access_token(ALICE)}"})
    assert IdentityResolver().resolve(req).user_id == ALICE


# ─── Per-operation revalidation ──────────────────────────


def test_revalidate_active_session():
    assert IdentityResolver().revalidate(_active()) == ALICE


def test_revalidate_rejects_session_without_identity():
    ctx = SessionContext(connection_id="c1")
    ctx.activate()
    with pytest.raises(Unauthenticated):
        IdentityResolver().revalidate(ctx)


def test_revalidate_rejects_closed_session():
    ctx = _active()
    ctx.close()
    with pytest.raises(Unauthenticated, match="closed"):
        IdentityResolver().revalidate(ctx)


def test_revalidate_rejects_expired_session():
    expires = datetime.now(timezone.utc) + timedelta(minutes=1)
    ctx = _active(expires_at=expires)
    later = expires + timedelta(seconds=1)
    with pytest.raises(Unauthenticated, match="expired"):
        IdentityResolver().revalidate(ctx, now=later)
