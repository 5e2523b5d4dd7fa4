from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from chat_sync.application.dto.identity import Credentials, Identity
from chat_sync.application.dto.message import MessageFilter
from chat_sync.application.exceptions import NotFoundError, UnauthorizedError, ValidationError
from chat_sync.domain.entities.user import UserProfile
from chat_sync.infrastructure.auth.hs256_verifier import HS256TokenService
from chat_sync.infrastructure.auth.sql_provider import check_password, hash_password
from chat_sync.infrastructure.blob.local import LocalBlobStore
from chat_sync.infrastructure.bus.serializer import deserialize_event, serialize_event
from chat_sync.infrastructure.db.repositories.message import MessageReaderRepo
from chat_sync.infrastructure.db.repositories.user import UserWriterRepo
from chat_sync.infrastructure.preferences.json_file import JsonFilePreferences

SECRET = "adapter-test-secret-that-is-long-enough-for-hs256"


def test_password_hash_round_trip():
    stored = hash_password("secret1")
    assert check_password("secret1", stored)
    assert not check_password("secret2", stored)
    assert not check_password("secret1", "not-a-hash")
    assert not check_password("secret1", "zz$zz")


def test_password_hashes_are_salted():
    assert hash_password("secret1") != hash_password("secret1")


@pytest.mark.asyncio
async def test_expired_token_is_rejected():
    tokens = HS256TokenService(SECRET, ttl_seconds=-10)
    with pytest.raises(UnauthorizedError):
        await tokens.verify(tokens.issue(Identity(email="a@example.com")))


@pytest.mark.asyncio
async def test_token_signed_with_other_secret_is_rejected():
    other = HS256TokenService(SECRET + "-other")
    with pytest.raises(UnauthorizedError):
        await HS256TokenService(SECRET).verify(other.issue(Identity(email="a@example.com")))


@pytest.mark.asyncio
async def test_local_blob_store_writes_under_root(tmp_path):
    blobs = LocalBlobStore(tmp_path, "https://cdn.test/")

    url = await blobs.upload(b"data", "chat_images/a_1_x.png")

    assert url == "https://cdn.test/chat_images/a_1_x.png"
    assert (tmp_path / "chat_images" / "a_1_x.png").read_bytes() == b"data"


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ["../escape.png", "/etc/passwd", ""])
async def test_local_blob_store_rejects_paths_outside_root(tmp_path, path):
    with pytest.raises(ValidationError):
        await LocalBlobStore(tmp_path, "https://cdn.test").upload(b"x", path)


@pytest.mark.asyncio
async def test_json_preferences(tmp_path):
    prefs = JsonFilePreferences(tmp_path / "nested" / "creds.json")
    assert await prefs.get_credentials() is None

    await prefs.set_credentials(Credentials(email="a@example.com", token="t"))
    assert await prefs.get_credentials() == Credentials(email="a@example.com", token="t")

    await prefs.clear_credentials()
    assert await prefs.get_credentials() is None
    await prefs.clear_credentials()


@pytest.mark.asyncio
async def test_corrupt_preferences_read_as_empty(tmp_path):
    path = tmp_path / "creds.json"
    path.write_text("{not json")
    assert await JsonFilePreferences(path).get_credentials() is None


def test_event_envelope_encodes_sets_and_tuples():
    raw = serialize_event("message.read", {"ids": ("m1", "m2"), "readers": {"b", "a"}})
    event, data = deserialize_event(raw)
    assert event == "message.read"
    assert data == {"ids": ["m1", "m2"], "readers": ["a", "b"]}


def _session_returning(rows: list) -> AsyncMock:
    session = AsyncMock()
    result = MagicMock()
    result.scalars.return_value.all.return_value = rows
    session.execute.return_value = result
    return session


@pytest.mark.asyncio
async def test_user_create_reports_row_that_cannot_be_read_back():
    session = _session_returning([])
    session.get.return_value = None

    with pytest.raises(NotFoundError):
        await UserWriterRepo(session).create(
            UserProfile(email="a@example.com", username="a", created_at=1),
        )


@pytest.mark.asyncio
async def test_message_page_below_full_key_compares_timestamp_and_id():
    session = _session_returning([])

    page = await MessageReaderRepo(session).list_page(
        "a@example.com_b@example.com",
        MessageFilter.direct(20),
        limit=20,
        before=1000,
        before_id="b",
    )

    assert page == []
    stmt = session.execute.await_args.args[0]
    compiled = stmt.compile(dialect=postgresql.dialect())
    assert "COLLATE" in str(compiled)
    assert {1000, "b"} <= set(compiled.params.values())
