"""Chatline CLI — run the server, manage the schema, mint tokens, inspect state.

Usage:
    chatline serve --reload                      # Run the API + WebSocket server
    chatline init-db                             # Create tables (dev; prod uses alembic)
    chatline token 3f2b...-...                   # Mint an access token for a user
    chatline token --new                         # Mint a token for a fresh user id
    chatline presence                            # Who is online right now
    chatline history 3f2b...-... --limit 20      # Your conversation with a user
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
import uuid
from typing import Optional

import click
import httpx

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.environ.get("CHATLINE_API_URL", DEFAULT_API_URL).rstrip("/")


def _client(token: str) -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the Chatline server."""
    return httpx.AsyncClient(
        base_url=_api_url(),
        timeout=30.0,
        headers={"Authorization": f"Bearer {token}"},
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Offloads to a thread when a loop is already running (e.g. CliRunner
    invoked from an async test).
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _token_from_ctx(token: Optional[str]) -> str:
    """Resolve the access token from flag or CHATLINE_TOKEN env var."""
    tok = token or os.environ.get("CHATLINE_TOKEN")
    if not tok:
        click.secho(
            "Error: --token required (or set CHATLINE_TOKEN env var)",
            fg="red",
            err=True,
        )
        sys.exit(1)
    return tok


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(str(row.get(k) or "-")[:w].ljust(w) for _, k, w in columns)
        click.echo(line)


def _fail_on_http_error(r: httpx.Response) -> None:
    if r.is_success:
        return
    try:
        detail = r.json().get("detail", r.text)
    except ValueError:
        detail = r.text
    click.secho(f"Error {r.status_code}: {detail}", fg="red", err=True)
    sys.exit(1)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="chatline")
def main():
    """Chatline — real-time one-to-one messaging server."""


# ---------------------------------------------------------------------------
# chatline serve
# ---------------------------------------------------------------------------


@main.command()
@click.option("--host", default=None, help="Bind address (default: CHATLINE_HOST)")
@click.option("--port", "-p", type=int, default=None, help="Port (default: CHATLINE_PORT)")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the API and WebSocket server with uvicorn."""
    import uvicorn

    from chatline.config import settings

    uvicorn.run(
        "chatline.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


# ---------------------------------------------------------------------------
# chatline init-db
# ---------------------------------------------------------------------------


@main.command("init-db")
@click.option("--database-url", help="Override CHATLINE_DATABASE_URL")
def init_db(database_url: Optional[str]):
    """Create the messages and events tables if they don't exist."""
    _run(_init_db_impl(database_url))


async def _init_db_impl(database_url: Optional[str]):
    from chatline.db.engine import build_engine, create_schema

    engine = build_engine(database_url)
    try:
        await create_schema(engine)
    finally:
        await engine.dispose()
    click.secho("Schema ready.", fg="green")


# ---------------------------------------------------------------------------
# chatline token
# ---------------------------------------------------------------------------


@main.command()
@click.argument("user_id", required=False)
@click.option("--new", "new_user", is_flag=True, help="Generate a fresh user id")
@click.option("--minutes", "-m", type=int, default=None, help="Lifetime in minutes")
@click.option("--json", "as_json", is_flag=True, help="Print {user_id, token} as JSON")
def token(user_id: Optional[str], new_user: bool, minutes: Optional[int], as_json: bool):
    """Mint an access token signed with CHATLINE_JWT_SECRET."""
    from chatline.auth.identity import canonical_user_id
    from chatline.auth.jwt import create_access_token

    if new_user:
        user_id = str(uuid.uuid4())
    if not user_id:
        click.secho("Error: pass a USER_ID or --new", fg="red", err=True)
        sys.exit(1)
    try:
        user_id = canonical_user_id(user_id)
    except ValueError as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(1)

    access_token = create_access_token(user_id, expires_minutes=minutes)
    if as_json:
        click.echo(_pretty_json({"user_id": user_id, "token": access_token}))
    else:
        click.echo(access_token)


# ---------------------------------------------------------------------------
# chatline presence
# ---------------------------------------------------------------------------


@main.command()
@click.argument("user_id", required=False)
@click.option("--token", "-t", help="Access token (or set CHATLINE_TOKEN)")
def presence(user_id: Optional[str], token: Optional[str]):
    """Show online users, or one user's connection count."""
    _run(_presence_impl(user_id, token))


async def _presence_impl(user_id: Optional[str], token: Optional[str]):
    tok = _token_from_ctx(token)

    async with _client(tok) as c:
        if user_id:
            r = await c.get(f"/api/v1/presence/{user_id}")
            _fail_on_http_error(r)
            info = r.json()
            state = click.style(
                "online" if info["online"] else "offline",
                fg="green" if info["online"] else "white",
            )
            click.echo(f"{info['user_id']}  {state}  ({info['connections']} connections)")
            return

        r = await c.get("/api/v1/presence")
        _fail_on_http_error(r)
        info = r.json()

        if not info["users"]:
            click.echo("Nobody is online.")
            return

        click.secho(
            f"Online ({len(info['users'])} users, {info['connections']} connections):",
            bold=True,
        )
        for uid in info["users"]:
            click.echo(f"  {uid}")


# ---------------------------------------------------------------------------
# chatline history
# ---------------------------------------------------------------------------


@main.command()
@click.argument("user_id")
@click.option("--token", "-t", help="Access token (or set CHATLINE_TOKEN)")
@click.option("--limit", "-l", default=20, help="Max messages")
@click.option("--before-id", type=int, default=None, help="Page older than this id")
@click.option("--json", "as_json", is_flag=True, help="Raw JSON output")
def history(user_id: str, token: Optional[str], limit: int, before_id: Optional[int], as_json: bool):
    """Show your conversation with USER_ID, newest first."""
    _run(_history_impl(user_id, token, limit, before_id, as_json))


async def _history_impl(
    user_id: str, token: Optional[str], limit: int, before_id: Optional[int], as_json: bool
):
    tok = _token_from_ctx(token)

    async with _client(tok) as c:
        params: dict = {"limit": limit}
        if before_id is not None:
            params["before_id"] = before_id

        r = await c.get(f"/api/v1/conversations/{user_id}/messages", params=params)
        _fail_on_http_error(r)
        messages = r.json()

    if as_json:
        click.echo(_pretty_json(messages))
        return

    if not messages:
        click.echo("No messages.")
        return

    rows = []
    for m in messages:
        if m.get("deleted_at"):
            text = "(deleted)"
        elif m.get("edited_at"):
            text = f"{m['content']} (edited)"
        else:
            text = m["content"]
        rows.append({
            "id": m["id"],
            "from": m["sender_id"][:8],
            "sent": m["sent_at"][:19],
            "read": "yes" if m.get("read_at") else "no",
            "text": text,
        })

    click.secho(f"Messages ({len(rows)}):", bold=True)
    click.echo()
    _print_table(rows, [
        ("ID", "id", 6),
        ("From", "from", 8),
        ("Sent", "sent", 19),
        ("Read", "read", 4),
        ("Message", "text", 60),
    ])
