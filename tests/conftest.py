"""Shared test fixtures."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Sequence

import pytest

from chat_sync.application.dto.identity import Credentials, Identity
from chat_sync.application.dto.message import MessageFilter
from chat_sync.application.exceptions import (
    AppError,
    ConflictError,
    NetworkError,
    NotFoundError,
    UnauthorizedError,
)
from chat_sync.domain.entities.group import Group
from chat_sync.domain.entities.message import Message
from chat_sync.domain.entities.user import UserProfile
from chat_sync.domain.value_objects.ids import direct_conversation_id

ALICE = "alice@example.com"
BOB = "bob@example.com"
CAROL = "carol@example.com"
DIRECT_ID = direct_conversation_id(ALICE, BOB)


def make_message(
    *,
    id: str | None,
    created_at: int,
    sender_id: str = BOB,
    recipient_id: str | None = ALICE,
    conversation_id: str = DIRECT_ID,
    body: str = "hello",
    readers: Sequence[str] | None = None,
    is_group: bool = False,
    group_id: str | None = None,
) -> Message:
    return Message(
        id=id,
        conversation_id=conversation_id,
        sender_id=sender_id,
        recipient_id=None if is_group else recipient_id,
        body=body,
        created_at=created_at,
        readers=tuple(readers) if readers is not None else (sender_id,),
        is_group=is_group,
        group_id=group_id,
    )


def make_group(
    *,
    group_id: str = "g1",
    name: str = "Team",
    created_by: str = ALICE,
    members: Sequence[str] = (ALICE, BOB),
) -> Group:
    return Group(
        id=group_id,
        name=name,
        created_by=created_by,
        created_at=1_000,
        members=frozenset(members) | {created_by},
    )


async def settle(predicate: Callable[[], bool] | None = None, rounds: int = 50) -> None:
    """Yield to the loop until ``predicate`` holds (or just drain pending callbacks)."""
    for _ in range(rounds):
        await asyncio.sleep(0)
        if predicate is not None and predicate():
            return
    if predicate is not None:
        assert predicate(), "condition not reached"


class FixedClock:
    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self._now = start

    def now_ms(self) -> int:
        self._now += 1
        return self._now


# -- conversation store ----------------------------------------------------

_STOP = object()


def _older(message: Message, before: int | None, before_id: str | None) -> bool:
    if before is None:
        return True
    if before_id is None:
        return message.created_at < before
    return message.sort_key < (before, before_id)


class FakeSubscription:
    def __init__(self, conversation_id: str, message_filter: MessageFilter) -> None:
        self.conversation_id = conversation_id
        self.message_filter = message_filter
        self.closed = False
        self.close_gate: asyncio.Event | None = None
        self._queue: asyncio.Queue[Any] = asyncio.Queue()

    def push(self, snapshot: list[Message]) -> None:
        self._queue.put_nowait(list(snapshot))

    def fail(self, exc: AppError) -> None:
        self._queue.put_nowait(exc)

    def __aiter__(self) -> FakeSubscription:
        return self

    async def __anext__(self) -> list[Message]:
        if self.closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _STOP:
            raise StopAsyncIteration
        if isinstance(item, AppError):
            raise item
        return item

    async def close(self) -> None:
        if self.close_gate is not None:
            await self.close_gate.wait()
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(_STOP)


class FakeConversationStore:
    """In-memory durable store.

    Like the Redis-backed adapter, every write pushes a fresh live window to
    the open subscriptions of the affected conversation (unless
    ``auto_snapshot`` is off, in which case tests push snapshots by hand).
    """

    def __init__(self, *, auto_snapshot: bool = True) -> None:
        self.auto_snapshot = auto_snapshot
        self.messages: dict[str, Message] = {}
        self.subscriptions: list[FakeSubscription] = []
        self.fetch_calls: list[tuple[str, int, int | None]] = []
        self.commit_calls: list[Message] = []
        self.update_calls: list[tuple[str, dict[str, Any]]] = []
        self.delete_calls: list[str] = []
        self.mark_read_calls: list[tuple[tuple[str, ...], str]] = []
        self.fail_next: dict[str, Exception] = {}
        self.commit_gate: asyncio.Event | None = None
        self.fetch_gate: asyncio.Event | None = None
        self._seq = 0

    def seed(self, *messages: Message) -> None:
        for message in messages:
            assert message.id is not None
            self.messages[message.id] = message

    def _maybe_fail(self, operation: str) -> None:
        exc = self.fail_next.pop(operation, None)
        if exc is not None:
            raise exc

    def query(
        self,
        conversation_id: str,
        message_filter: MessageFilter,
        limit: int,
        before: int | None = None,
        before_id: str | None = None,
    ) -> list[Message]:
        rows = [
            m
            for m in self.messages.values()
            if m.conversation_id == conversation_id
            and m.is_group == message_filter.is_group
            and (message_filter.group_id is None or m.group_id == message_filter.group_id)
            and _older(m, before, before_id)
        ]
        rows.sort(key=lambda m: m.sort_key, reverse=True)
        return rows[:limit]

    def notify(self, conversation_id: str) -> None:
        if not self.auto_snapshot:
            return
        for sub in self.subscriptions:
            if sub.conversation_id == conversation_id and not sub.closed:
                sub.push(self.query(conversation_id, sub.message_filter, sub.message_filter.limit))

    async def fetch_page(
        self,
        conversation_id: str,
        page_size: int,
        before: int | None = None,
        *,
        message_filter: MessageFilter,
        before_id: str | None = None,
    ) -> list[Message]:
        self.fetch_calls.append((conversation_id, page_size, before))
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        self._maybe_fail("fetch_page")
        return self.query(conversation_id, message_filter, page_size, before, before_id)

    async def subscribe(
        self, conversation_id: str, message_filter: MessageFilter
    ) -> FakeSubscription:
        self._maybe_fail("subscribe")
        sub = FakeSubscription(conversation_id, message_filter)
        self.subscriptions.append(sub)
        if self.auto_snapshot:
            sub.push(self.query(conversation_id, message_filter, message_filter.limit))
        return sub

    async def commit_message(self, message: Message) -> Message:
        self.commit_calls.append(message)
        if self.commit_gate is not None:
            await self.commit_gate.wait()
        self._maybe_fail("commit_message")
        self._seq += 1
        committed = replace(message, id=f"m{self._seq:04d}")
        self.messages[committed.id] = committed  # type: ignore[index]
        self.notify(committed.conversation_id)
        return committed

    async def update_message(self, message_id: str, fields: dict[str, Any]) -> None:
        self.update_calls.append((message_id, dict(fields)))
        self._maybe_fail("update_message")
        if message_id not in self.messages:
            raise NotFoundError(f"Message {message_id} not found")
        updated = replace(self.messages[message_id], **fields)
        self.messages[message_id] = updated
        self.notify(updated.conversation_id)

    async def delete_message(self, message_id: str) -> None:
        self.delete_calls.append(message_id)
        self._maybe_fail("delete_message")
        if message_id not in self.messages:
            raise NotFoundError(f"Message {message_id} not found")
        removed = self.messages.pop(message_id)
        self.notify(removed.conversation_id)

    async def batch_mark_read(self, message_ids: Sequence[str], reader_id: str) -> None:
        self.mark_read_calls.append((tuple(message_ids), reader_id))
        self._maybe_fail("batch_mark_read")
        touched: set[str] = set()
        for message_id in message_ids:
            message = self.messages.get(message_id)
            if message is not None:
                self.messages[message_id] = message.with_reader(reader_id)
                touched.add(message.conversation_id)
        for conversation_id in sorted(touched):
            self.notify(conversation_id)


class FakeBlobStore:
    def __init__(self) -> None:
        self.uploads: list[tuple[str, bytes]] = []
        self.fail_paths: set[str] = set()
        self.in_flight = 0
        self.max_in_flight = 0

    async def upload(self, data: bytes, path: str) -> str:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if any(marker in path for marker in self.fail_paths):
                raise NetworkError(f"upload of {path} failed")
            self.uploads.append((path, data))
            return f"https://blobs.test/{path}"
        finally:
            self.in_flight -= 1


# -- unit of work ------------------------------------------------------------


@dataclass
class FakeGroupReader:
    _groups: dict[str, Group] = field(default_factory=dict)

    async def get_by_id(self, group_id: str) -> Group | None:
        return self._groups.get(group_id)

    async def list_for_member(self, user_id: str) -> list[Group]:
        groups = [g for g in self._groups.values() if g.is_member(user_id)]
        return sorted(groups, key=lambda g: g.created_at, reverse=True)


@dataclass
class FakeGroupWriter:
    _reader: FakeGroupReader

    async def create(self, group: Group) -> Group:
        self._reader._groups[group.id] = group
        return group

    async def rename(self, group_id: str, name: str) -> None:
        group = self._reader._groups.get(group_id)
        if group is None:
            raise NotFoundError("Group not found")
        self._reader._groups[group_id] = replace(group, name=name)

    async def add_member(self, group_id: str, user_id: str) -> None:
        group = self._reader._groups[group_id]
        self._reader._groups[group_id] = replace(group, members=group.members | {user_id})

    async def remove_member(self, group_id: str, user_id: str) -> None:
        group = self._reader._groups[group_id]
        self._reader._groups[group_id] = replace(group, members=group.members - {user_id})


@dataclass
class FakeUserReader:
    _users: dict[str, UserProfile] = field(default_factory=dict)

    async def get_by_email(self, email: str) -> UserProfile | None:
        return self._users.get(email)

    async def list_all(self) -> list[UserProfile]:
        return sorted(self._users.values(), key=lambda u: u.email)


@dataclass
class FakeUserWriter:
    _reader: FakeUserReader

    async def create(self, profile: UserProfile) -> UserProfile:
        return self._reader._users.setdefault(profile.email, profile)

    async def update_details(
        self, email: str, *, username: str, photo_url: str | None = None
    ) -> None:
        profile = self._reader._users.get(email)
        if profile is None:
            raise NotFoundError("User not found")
        self._reader._users[email] = replace(
            profile,
            username=username,
            photo_url=photo_url if photo_url is not None else profile.photo_url,
        )


@dataclass
class FakePushTokenWriter:
    _tokens: dict[str, str] = field(default_factory=dict)

    async def upsert(self, email: str, token: str) -> None:
        self._tokens[email] = token


@dataclass
class FakeUoW:
    """In-memory UoW for unit tests."""
    groups: FakeGroupReader = field(default_factory=FakeGroupReader)
    groups_w: FakeGroupWriter | None = None
    users: FakeUserReader = field(default_factory=FakeUserReader)
    users_w: FakeUserWriter | None = None
    push_tokens_w: FakePushTokenWriter = field(default_factory=FakePushTokenWriter)
    _committed: bool = False

    def __post_init__(self) -> None:
        if self.groups_w is None:
            self.groups_w = FakeGroupWriter(self.groups)
        if self.users_w is None:
            self.users_w = FakeUserWriter(self.users)

    async def flush(self) -> None:
        pass

    async def commit(self) -> None:
        self._committed = True

    async def rollback(self) -> None:
        pass


# -- accounts ----------------------------------------------------------------


class FakeAuthProvider:
    def __init__(self) -> None:
        self.passwords: dict[str, str] = {}
        self._current: Identity | None = None

    async def sign_up(self, email: str, password: str) -> Identity:
        if email in self.passwords:
            raise ConflictError("An account with this email already exists")
        self.passwords[email] = password
        self._current = Identity(email=email)
        return self._current

    async def sign_in(self, email: str, password: str) -> Identity:
        if self.passwords.get(email) != password:
            raise UnauthorizedError("Invalid email or password")
        self._current = Identity(email=email)
        return self._current

    async def sign_out(self) -> None:
        self._current = None

    def current_identity(self) -> Identity | None:
        return self._current


class FakePreferences:
    def __init__(self, credentials: Credentials | None = None) -> None:
        self.credentials = credentials

    async def get_credentials(self) -> Credentials | None:
        return self.credentials

    async def set_credentials(self, credentials: Credentials) -> None:
        self.credentials = credentials

    async def clear_credentials(self) -> None:
        self.credentials = None


class FakePushRegistry:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.tokens: dict[str, str] = {}

    async def register_token(self, identity: Identity, token: str) -> None:
        if self.fail:
            raise NetworkError("push backend unavailable")
        self.tokens[identity.email] = token


# -- fixtures ----------------------------------------------------------------


@pytest.fixture
def store() -> FakeConversationStore:
    return FakeConversationStore()


@pytest.fixture
def blobs() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def uow() -> FakeUoW:
    return FakeUoW()
