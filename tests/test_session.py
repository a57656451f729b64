"""Session state machine tests."""

import pytest

from chatline.chat.session import InvalidSessionTransition, SessionContext, SessionState


def test_connecting_to_active_to_closed():
    ctx = SessionContext(connection_id="c1")
    assert ctx.state is SessionState.CONNECTING

    ctx.activate()
    assert ctx.is_active

    ctx.close()
    assert ctx.is_closed


def test_close_is_idempotent():
    ctx = SessionContext(connection_id="c1")
    ctx.close()
    ctx.close()
    assert ctx.state is SessionState.CLOSED


def test_closed_is_terminal():
    ctx = SessionContext(connection_id="c1")
    ctx.close()
    with pytest.raises(InvalidSessionTransition):
        ctx.activate()
