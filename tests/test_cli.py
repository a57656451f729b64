"""CLI tests — token minting, and HTTP commands against a mocked server."""

import json

import httpx
import pytest
from click.testing import CliRunner

from chatline.auth.jwt import verify_token
from chatline.cli import main as cli
from conftest import ALICE, BOB


@pytest.fixture()
def runner():
    return CliRunner()


@pytest.fixture()
def mock_api(monkeypatch):
    """Route the CLI's HTTP client to an in-process handler."""
    calls: list[httpx.Request] = []
    responses: dict[str, tuple[int, object]] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        status, body = responses.get(request.url.path, (404, {"detail": "Not Found"}))
        return httpx.Response(status, json=body)

    def fake_client(token: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=httpx.MockTransport(handler),
            base_url="http://test",
            headers={"Authorization": f"Bearer {token}"},
        )

    monkeypatch.setattr(cli, "_client", fake_client)
    return calls, responses


def test_token_for_user(runner):
    result = runner.invoke(cli.main, ["token", ALICE])
    assert result.exit_code == 0
    assert verify_token(result.output.strip())["sub"] == ALICE


def test_token_for_new_user_as_json(runner):
    result = runner.invoke(cli.main, ["token", "--new", "--json"])
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert verify_token(data["token"])["sub"] == data["user_id"]


def test_token_rejects_bad_user_id(runner):
    result = runner.invoke(cli.main, ["token", "alice"])
    assert result.exit_code == 1


def test_token_requires_user(runner):
    result = runner.invoke(cli.main, ["token"])
    assert result.exit_code == 1


def test_presence_requires_token(runner, monkeypatch):
    monkeypatch.delenv("CHATLINE_TOKEN", raising=False)
    result = runner.invoke(cli.main, ["presence"])
    assert result.exit_code == 1
    assert "--token required" in result.output


def test_presence_lists_users(runner, mock_api):
    calls, responses = mock_api
    responses["/api/v1/presence"] = (200, {"users": [ALICE, BOB], "connections": 3})

    result = runner.invoke(cli.main, ["presence", "--token", "tok"])

    assert result.exit_code == 0
    assert ALICE in result.output
    assert "3 connections" in result.output
    assert calls[0].headers["Authorization"] == "Bearer tok"


def test_history_table(runner, mock_api):
    _, responses = mock_api
    responses[f"/api/v1/conversations/{BOB}/messages"] = (200, [
        {
            "id": 2, "sender_id": BOB, "receiver_id": ALICE, "content": "",
            "sent_at": "2026-01-01T10:01:00Z", "edited_at": None,
            "deleted_at": "2026-01-01T10:02:00Z", "read_at": None,
        },
        {
            "id": 1, "sender_id": ALICE, "receiver_id": BOB, "content": "hello bob",
            "sent_at": "2026-01-01T10:00:00Z", "edited_at": None,
            "deleted_at": None, "read_at": "2026-01-01T10:00:30Z",
        },
    ])

    result = runner.invoke(cli.main, ["history", BOB, "--token", "tok"])

    assert result.exit_code == 0
    assert "hello bob" in result.output
    assert "(deleted)" in result.output


def test_history_http_error(runner, mock_api):
    result = runner.invoke(cli.main, ["history", BOB, "--token", "tok"])
    assert result.exit_code == 1
    assert "Error 404" in result.output
