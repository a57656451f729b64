"""Frame router + error isolation tests.

Learn: These go through FrameRouter.handle() with raw JSON strings, the
exact input the WebSocket reader loop passes in. Failures must come back
as one OperationError to the caller (or nothing, for best-effort
operations) and must never raise out of handle().
"""

import json

import pytest

from chatline.chat.outcome import ErrorKind
from chatline.events.types import (
    MESSAGE_ACKNOWLEDGED,
    MESSAGE_DELETED_EVENT,
    MESSAGES_READ_EVENT,
    OPERATION_ERROR,
    PONG,
    RECEIVED_MESSAGE,
)
from chatline.store.base import StoreError
from conftest import ALICE, BOB


def frame(method: str, invocation_id: str | None = None, **args) -> str:
    return json.dumps({"method": method, "args": args, "invocation_id": invocation_id})


@pytest.mark.asyncio
async def test_send_message_frame(runtime, connect):
    alice = await connect(ALICE)
    bob = await connect(BOB)

    outcome = await runtime.router.handle(
        alice.context, frame("SendMessage", "c-7", receiver_id=BOB, content="yo")
    )

    assert outcome.ok
    assert bob.of(RECEIVED_MESSAGE)[0]["content"] == "yo"
    assert alice.of(MESSAGE_ACKNOWLEDGED)[0]["invocation_id"] == "c-7"


@pytest.mark.asyncio
async def test_malformed_json_reports_invalid(runtime, connect):
    alice = await connect(ALICE)

    outcome = await runtime.router.handle(alice.context, "{not json")

    assert outcome.error is ErrorKind.INVALID
    (error,) = alice.of(OPERATION_ERROR)
    assert error["operation"] == "Unknown"
    assert error["code"] == "invalid"


@pytest.mark.asyncio
async def test_unknown_method_reports_invalid(runtime, connect):
    alice = await connect(ALICE)

    await runtime.router.handle(alice.context, frame("LaunchRocket", "c-1"))

    (error,) = alice.of(OPERATION_ERROR)
    assert error["operation"] == "LaunchRocket"
    assert error["code"] == "invalid"
    assert error["invocation_id"] == "c-1"


@pytest.mark.asyncio
async def test_missing_args_reports_invalid(runtime, connect):
    alice = await connect(ALICE)

    await runtime.router.handle(alice.context, frame("SendMessage", "c-2", receiver_id=BOB))

    (error,) = alice.of(OPERATION_ERROR)
    assert error["operation"] == "SendMessage"
    assert error["code"] == "invalid"
    assert "content" in error["message"]
    assert error["invocation_id"] == "c-2"


@pytest.mark.asyncio
async def test_forbidden_edit_reported_to_caller_only(runtime, connect):
    alice = await connect(ALICE)
    bob = await connect(BOB)
    sent = await runtime.protocol.send_message(bob.context, ALICE, "mine")
    bob.clear()

    await runtime.router.handle(
        alice.context, frame("EditMessage", message_id=sent.value["id"], new_content="x")
    )

    assert alice.of(OPERATION_ERROR)[0]["code"] == "forbidden"
    assert bob.events == []


@pytest.mark.asyncio
async def test_best_effort_failures_are_silent(runtime, connect):
    alice = await connect(ALICE)

    typing = await runtime.router.handle(alice.context, frame("Typing", receiver_id="nope"))
    read = await runtime.router.handle(alice.context, frame("MarkAsRead", counterpart_id="nope"))

    assert typing.error is ErrorKind.INVALID
    assert read.error is ErrorKind.INVALID
    assert alice.of(OPERATION_ERROR) == []


@pytest.mark.asyncio
async def test_read_receipt_store_failure_is_silent(runtime, connect, monkeypatch):
    alice = await connect(ALICE)
    bob = await connect(BOB)
    await runtime.protocol.send_message(alice.context, BOB, "seen?")
    alice.clear()

    async def db_down(*args):
        raise StoreError("mark_read failed: connection refused")

    monkeypatch.setattr(runtime.store, "mark_read", db_down)

    outcome = await runtime.router.handle(
        bob.context, frame("MarkAsRead", "c-3", counterpart_id=ALICE)
    )

    assert outcome.error is ErrorKind.DELIVERY_FAILED
    assert bob.of(OPERATION_ERROR) == []
    assert alice.of(MESSAGES_READ_EVENT) == []


@pytest.mark.asyncio
async def test_out_of_range_message_id_is_invalid(runtime, connect):
    alice = await connect(ALICE)
    bob = await connect(BOB)
    await runtime.protocol.send_message(alice.context, BOB, "keep")

    outcome = await runtime.router.handle(
        alice.context, frame("DeleteMessage", "c-4", message_id=2**63)
    )

    assert outcome.error is ErrorKind.INVALID
    (error,) = alice.of(OPERATION_ERROR)
    assert error["code"] == "invalid"
    assert error["invocation_id"] == "c-4"
    assert bob.of(MESSAGE_DELETED_EVENT) == []


@pytest.mark.asyncio
async def test_handler_crash_is_isolated(runtime, connect, monkeypatch):
    alice = await connect(ALICE)

    async def explode(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(runtime.protocol, "send_message", explode)

    outcome = await runtime.router.handle(
        alice.context, frame("SendMessage", "c-9", receiver_id=BOB, content="hi")
    )

    assert outcome.error is ErrorKind.INTERNAL
    (error,) = alice.of(OPERATION_ERROR)
    assert error["code"] == "internal"
    assert error["invocation_id"] == "c-9"

    # The connection keeps working
    await runtime.router.handle(alice.context, frame("Ping"))
    assert alice.of(PONG) == [{}]


@pytest.mark.asyncio
async def test_errors_not_sent_to_closed_session(runtime, connect):
    alice = await connect(ALICE)
    await runtime.protocol.on_disconnect(alice)
    alice.clear()

    outcome = await runtime.router.handle(alice.context, frame("Ping"))

    assert outcome.error is ErrorKind.UNAUTHENTICATED
    assert alice.events == []
