import asyncio
from time import time

import pytest

from routegate.core.cancellation import CancelToken
from routegate.core.context import RelaySession
from routegate.core.errors import ClientDisconnected


def test_child_token_follows_parent():
    parent = CancelToken()
    child = parent.child()
    assert child.cancelled is False
    parent.cancel("client_disconnected")
    assert child.cancelled is True
    assert child.reason == "client_disconnected"


def test_cancelling_child_leaves_parent_untouched():
    parent = CancelToken()
    child = parent.child()
    child.cancel("completed")
    assert parent.cancelled is False


def test_child_of_cancelled_parent_starts_cancelled():
    parent = CancelToken()
    parent.cancel("gone")
    assert parent.child().cancelled is True


def test_cancel_is_idempotent_and_keeps_first_reason():
    token = CancelToken()
    token.cancel("first")
    token.cancel("second")
    assert token.reason == "first"


@pytest.mark.asyncio
async def test_guard_returns_result_when_not_cancelled():
    async def work() -> str:
        await asyncio.sleep(0)
        return "done"

    assert await CancelToken().guard(work()) == "done"


@pytest.mark.asyncio
async def test_guard_cancels_pending_work_when_token_fires():
    token = CancelToken()
    state = {"cancelled": False}

    async def slow_work() -> None:
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            state["cancelled"] = True
            raise

    async def fire() -> None:
        await asyncio.sleep(0.01)
        token.cancel("client_disconnected")

    asyncio.ensure_future(fire())
    with pytest.raises(ClientDisconnected):
        await token.guard(slow_work())
    assert state["cancelled"] is True


@pytest.mark.asyncio
async def test_guard_propagates_work_exception():
    async def broken() -> None:
        raise ValueError("boom")

    with pytest.raises(ValueError):
        await CancelToken().guard(broken())


def test_relay_session_tracks_single_connection():
    session = RelaySession(request_id="rg-1", token=CancelToken())
    session.mark_opened()
    with pytest.raises(RuntimeError):
        session.mark_opened()
    session.mark_released()
    session.mark_released()
    assert session.opened_connections == 1
    assert session.released_connections == 1


def test_relay_session_first_terminal_state_wins():
    session = RelaySession(request_id="rg-1", token=CancelToken())
    assert session.finish("completed") is True
    assert session.finish("aborted") is False
    assert session.state == "completed"
    assert session.token.cancelled is True


def test_relay_session_elapsed_ms_counts_from_start():
    session = RelaySession(request_id="rg-1", token=CancelToken(), started_at=time() - 1.5)
    assert session.elapsed_ms >= 1500
