from __future__ import annotations

import asyncio

import pytest

from chat_sync.application.dto.events import ErrorRaised, StateChanged, ViewChanged
from chat_sync.application.exceptions import (
    ConflictError,
    ForbiddenError,
    NetworkError,
    NotFoundError,
    ValidationError,
)
from chat_sync.domain.value_objects.enums import DeliveryStatus, SessionState
from chat_sync.domain.value_objects.ids import direct_conversation_id
from chat_sync.services.conversation_session import ConversationSession
from tests.conftest import (
    ALICE,
    BOB,
    CAROL,
    DIRECT_ID,
    FakeGroupReader,
    make_group,
    make_message,
    settle,
)


def _history(count: int, *, start: int = 1000, sender: str = BOB) -> list:
    return [make_message(id=f"h{ts}", created_at=ts, sender_id=sender) for ts in range(start, start + count)]


@pytest.fixture
def session(store, blobs, clock) -> ConversationSession:
    return ConversationSession(store, blobs, clock=clock, page_size=20, live_window=20)


@pytest.mark.asyncio
async def test_open_loads_first_page_and_becomes_open(session, store):
    store.seed(*_history(3))

    async with session:
        await session.open(ALICE, BOB)

        assert session.state is SessionState.OPEN
        assert session.conversation_id == DIRECT_ID
        assert [m.id for m in session.current_view()] == ["h1002", "h1001", "h1000"]
        assert session.exhausted
        assert not session.is_loading

    assert session.state is SessionState.CLOSED


@pytest.mark.asyncio
async def test_both_participants_share_the_conversation(store, blobs, clock):
    first = ConversationSession(store, blobs, clock=clock)
    second = ConversationSession(store, blobs, clock=clock)
    await first.open(ALICE, BOB)
    await second.open(BOB, ALICE)
    assert first.conversation_id == second.conversation_id == direct_conversation_id(BOB, ALICE)
    await first.close()
    await second.close()


@pytest.mark.asyncio
async def test_twenty_five_messages_paginate_as_twenty_then_five(session, store):
    store.seed(*_history(25))
    await session.open(ALICE, BOB)
    await settle(lambda: len(session.current_view()) == 20)

    assert store.fetch_calls[0] == (DIRECT_ID, 20, None)
    assert session.next_cursor == 1005
    assert not session.exhausted

    assert await session.load_more() is True
    assert store.fetch_calls[1] == (DIRECT_ID, 20, 1005)
    assert len(session.current_view()) == 25
    assert session.current_view()[-1].created_at == 1000
    assert session.exhausted
    assert session.next_cursor is None

    assert await session.load_more() is False
    assert len(store.fetch_calls) == 2
    await session.close()


@pytest.mark.asyncio
async def test_load_more_keeps_messages_sharing_the_cursor_timestamp(store, blobs, clock):
    store.seed(
        make_message(id="c", created_at=2000),
        make_message(id="b", created_at=1000),
        make_message(id="a", created_at=1000),
    )
    session = ConversationSession(store, blobs, clock=clock, page_size=2, live_window=2)
    await session.open(ALICE, BOB)
    await settle(lambda: len(session.current_view()) == 2)
    assert [m.id for m in session.current_view()] == ["c", "b"]
    assert not session.exhausted

    assert await session.load_more() is True

    assert store.fetch_calls[1] == (DIRECT_ID, 2, 1000)
    assert [m.id for m in session.current_view()] == ["c", "b", "a"]
    assert session.exhausted
    await session.close()


@pytest.mark.asyncio
async def test_load_more_is_a_no_op_while_a_fetch_is_outstanding(session, store):
    store.seed(*_history(45))
    await session.open(ALICE, BOB)

    store.fetch_gate = asyncio.Event()
    pending = asyncio.create_task(session.load_more())
    await settle(lambda: session.is_loading)

    assert await session.load_more() is False
    store.fetch_gate.set()
    assert await pending is True
    assert len(store.fetch_calls) == 2
    await session.close()


@pytest.mark.asyncio
async def test_load_more_requires_open_session(session):
    with pytest.raises(ConflictError):
        await session.load_more()


@pytest.mark.asyncio
async def test_blank_peer_is_rejected(session):
    with pytest.raises(ValidationError):
        await session.open(ALICE, " ")
    assert session.state is SessionState.CLOSED


@pytest.mark.asyncio
async def test_live_update_brings_in_new_message(session, store):
    store.seed(*_history(2))
    await session.open(ALICE, BOB)

    await store.commit_message(make_message(id=None, created_at=5000, body="new"))
    await settle(lambda: len(session.current_view()) == 3)

    assert session.current_view()[0].body == "new"
    await session.close()


@pytest.mark.asyncio
async def test_send_shows_message_only_after_snapshot(session, store):
    await session.open(ALICE, BOB)

    message = await session.send("hello bob")
    await settle(lambda: any(m.id == message.id for m in session.current_view()))

    assert session.delivery_status(message) is DeliveryStatus.SENT
    assert not session.is_sending
    await session.close()


@pytest.mark.asyncio
async def test_visible_session_marks_incoming_messages_read(session, store):
    store.seed(*_history(3))
    await session.open(ALICE, BOB)
    await settle()
    assert store.mark_read_calls == []
    assert session.unread_ids() == {"h1000", "h1001", "h1002"}

    await session.set_visible(True)
    assert len(store.mark_read_calls) == 1
    assert set(store.mark_read_calls[0][0]) == {"h1000", "h1001", "h1002"}
    await settle(lambda: session.unread_ids() == set())

    await store.commit_message(make_message(id=None, created_at=6000))
    await settle(lambda: len(store.mark_read_calls) == 2)
    assert store.mark_read_calls[1] == (("m0001",), ALICE)
    await session.close()


@pytest.mark.asyncio
async def test_hidden_session_accumulates_unread(session, store):
    await session.open(ALICE, BOB)
    await store.commit_message(make_message(id=None, created_at=6000))
    await settle(lambda: len(session.current_view()) == 1)

    assert session.unread_ids() == {"m0001"}
    assert store.mark_read_calls == []
    await session.close()


@pytest.mark.asyncio
async def test_close_is_idempotent_and_ends_listeners(session, store):
    listener = session.listen()
    await session.open(ALICE, BOB)
    await session.close()
    await session.close()

    events = [e async for e in listener]
    states = [e.state for e in events if isinstance(e, StateChanged)]
    assert states == [SessionState.OPENING, SessionState.OPEN, SessionState.CLOSED]
    assert any(isinstance(e, ViewChanged) for e in events)
    assert store.subscriptions[0].closed
    assert session.current_view() == ()


@pytest.mark.asyncio
async def test_cancelled_close_releases_subscription_when_repeated(session, store):
    await session.open(ALICE, BOB)
    subscription = store.subscriptions[0]
    subscription.close_gate = asyncio.Event()

    closing = asyncio.create_task(session.close())
    await settle()
    closing.cancel()
    with pytest.raises(asyncio.CancelledError):
        await closing
    assert not subscription.closed

    subscription.close_gate.set()
    await session.close()

    assert subscription.closed
    assert session.state is SessionState.CLOSED
    assert session.current_view() == ()


@pytest.mark.asyncio
async def test_operations_after_close_conflict(session):
    await session.open(ALICE, BOB)
    await session.close()

    with pytest.raises(ConflictError):
        await session.send("late")
    with pytest.raises(ConflictError):
        await session.edit("m1", "late")
    with pytest.raises(ConflictError):
        await session.delete("m1")


@pytest.mark.asyncio
async def test_page_arriving_after_close_is_dropped(session, store):
    store.seed(*_history(3))
    store.auto_snapshot = False
    store.fetch_gate = asyncio.Event()

    opening = asyncio.create_task(session.open(ALICE, BOB))
    await settle(lambda: session.is_loading)
    await session.close()
    store.fetch_gate.set()
    await opening

    assert session.state is SessionState.CLOSED
    assert session.current_view() == ()


@pytest.mark.asyncio
async def test_reopen_switches_conversation(session, store):
    store.seed(*_history(2))
    carol_id = direct_conversation_id(ALICE, CAROL)
    store.seed(make_message(id="c1", created_at=1, sender_id=CAROL, conversation_id=carol_id))

    await session.open(ALICE, BOB)
    await session.open(ALICE, CAROL)

    assert session.conversation_id == carol_id
    assert store.subscriptions[0].closed
    assert [m.id for m in session.current_view()] == ["c1"]
    await session.close()


@pytest.mark.asyncio
async def test_group_session_requires_membership(store, blobs, clock):
    groups = FakeGroupReader({"g1": make_group(members=[ALICE, BOB])})
    session = ConversationSession(store, blobs, groups=groups, clock=clock)
    store.seed(
        make_message(id="g-1", created_at=1, conversation_id="g1", is_group=True, group_id="g1", readers=[]),
    )

    with pytest.raises(ForbiddenError):
        await session.open_group(CAROL, "g1")
    with pytest.raises(NotFoundError):
        await session.open_group(ALICE, "missing")

    await session.open_group(ALICE, "g1")
    assert session.conversation_id == "g1"
    assert [m.id for m in session.current_view()] == ["g-1"]

    sent = await session.send("hi all")
    assert sent.is_group and sent.readers == ()
    await session.close()


@pytest.mark.asyncio
async def test_failed_initial_page_is_reported_and_refresh_recovers(session, store):
    store.seed(*_history(2))
    store.fail_next["fetch_page"] = NetworkError("offline")

    with pytest.raises(NetworkError):
        await session.open(ALICE, BOB)
    assert isinstance(session.last_error, NetworkError)
    assert not session.is_loading

    assert await session.refresh() is True
    assert session.last_error is None
    assert session.state is SessionState.OPEN
    await session.close()


@pytest.mark.asyncio
async def test_live_failure_is_recorded_not_raised(session, store):
    listener = session.listen()
    await session.open(ALICE, BOB)

    store.subscriptions[0].fail(NetworkError("dropped"))
    await settle(lambda: session.last_error is not None)
    await session.close()

    errors = [e async for e in listener if isinstance(e, ErrorRaised)]
    assert [e.operation for e in errors] == ["live"]


@pytest.mark.asyncio
async def test_read_receipt_failure_does_not_break_session(session, store):
    store.seed(*_history(1))
    await session.open(ALICE, BOB)
    store.fail_next["batch_mark_read"] = NetworkError("offline")

    await session.set_visible(True)

    assert isinstance(session.last_error, NetworkError)
    assert session.state is SessionState.OPEN
    await session.close()


@pytest.mark.asyncio
async def test_send_failure_is_raised_and_recorded(session, store):
    await session.open(ALICE, BOB)
    store.fail_next["commit_message"] = NetworkError("offline")

    with pytest.raises(NetworkError):
        await session.send("hi")
    assert isinstance(session.last_error, NetworkError)
    await session.close()


@pytest.mark.asyncio
async def test_deleted_message_stays_gone_when_snapshot_also_adds_one(store, blobs, clock):
    store.seed(*_history(4, sender=ALICE))
    session = ConversationSession(store, blobs, clock=clock, page_size=3, live_window=3)
    await session.open(ALICE, BOB)
    await settle(lambda: len(session.current_view()) == 3)
    assert [m.id for m in session.current_view()] == ["h1003", "h1002", "h1001"]

    # The delete and a newer message reach the subscription as one snapshot.
    store.auto_snapshot = False
    await session.delete("h1001")
    assert [m.id for m in session.current_view()] == ["h1003", "h1002"]

    await store.commit_message(make_message(id=None, created_at=5000, body="new"))
    subscription = store.subscriptions[0]
    subscription.push(store.query(DIRECT_ID, subscription.message_filter, 3))
    await settle(lambda: len(session.current_view()) == 3)

    assert [m.id for m in session.current_view()] == ["m0001", "h1003", "h1002"]
    await session.close()
