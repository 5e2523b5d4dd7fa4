"""One WebSocket per open conversation, driving a ConversationSession.

Commands are answered with ``ack`` or ``error`` carrying the request's
``request_id``. Session events are forwarded as ``view`` and ``state``;
failures of background work (live updates, read receipts) arrive as
``error`` without a ``request_id``.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PayloadError

from chat_sync.api.deps import (
    get_blob_store,
    get_clock,
    get_conversation_store,
    get_group_reader,
    get_token_service,
)
from chat_sync.api.v1.schemas.common import Base64File
from chat_sync.api.v1.schemas.message import MessageResponse
from chat_sync.application.dto.events import ErrorRaised, StateChanged, ViewChanged
from chat_sync.application.dto.identity import Identity
from chat_sync.application.exceptions import (
    AppError,
    ConflictError,
    ForbiddenError,
    NetworkError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from chat_sync.application.ports.blob_store import BlobStore
from chat_sync.application.ports.clock import Clock
from chat_sync.application.ports.conversation_store import ConversationStore
from chat_sync.application.repositories.group import GroupReader
from chat_sync.config import settings
from chat_sync.domain.value_objects.enums import MissingMessagePolicy
from chat_sync.infrastructure.auth.hs256_verifier import HS256TokenService
from chat_sync.infrastructure.ws.protocol import WsInbound, WsOutbound
from chat_sync.services.conversation_session import ConversationSession, SessionListener

logger = logging.getLogger(__name__)
router = APIRouter(tags=["websocket"])

BACKGROUND_OPERATIONS = frozenset({"live", "read"})

_ERROR_CODES: tuple[tuple[type[AppError], str], ...] = (
    (ConflictError, "conflict"),
    (ForbiddenError, "forbidden"),
    (NotFoundError, "not_found"),
    (ValidationError, "invalid"),
    (NetworkError, "unavailable"),
    (UnauthorizedError, "unauthorized"),
)


def error_code(exc: AppError) -> str:
    for cls, code in _ERROR_CODES:
        if isinstance(exc, cls):
            return code
    return "error"


class _Connection:
    """One socket and the session it drives."""

    def __init__(
        self, websocket: WebSocket, identity: Identity, session: ConversationSession,
    ) -> None:
        self.websocket = websocket
        self.identity = identity
        self.session = session
        self._send_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task[None]] = set()

    async def send(
        self, type_: str, data: dict[str, Any] | None = None, request_id: str | None = None,
    ) -> None:
        raw = WsOutbound(type=type_, data=data or {}, request_id=request_id).model_dump_json()
        async with self._send_lock:
            await self.websocket.send_text(raw)

    def spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def cancel_tasks(self) -> None:
        for task in self._tasks:
            task.cancel()

    async def shutdown(self) -> None:
        tasks = list(self._tasks)
        self.cancel_tasks()
        await asyncio.gather(*tasks, return_exceptions=True)

    def render(self, message: Any) -> dict[str, Any]:
        return MessageResponse.for_viewer(message, self.identity.email).model_dump(mode="json")


async def _authenticate(token: str, tokens: HS256TokenService) -> Identity | None:
    try:
        return await tokens.verify(token)
    except UnauthorizedError:
        logger.debug("WS auth failed", exc_info=True)
        return None


@router.websocket("/ws/conversation")
async def ws_conversation(
    websocket: WebSocket,
    token: str = Query(...),
    tokens: HS256TokenService = Depends(get_token_service),
    store: ConversationStore = Depends(get_conversation_store),
    blobs: BlobStore = Depends(get_blob_store),
    groups: GroupReader = Depends(get_group_reader),
    clock: Clock = Depends(get_clock),
) -> None:
    identity = await _authenticate(token, tokens)
    if identity is None:
        await websocket.close(code=4001, reason="Authentication failed")
        return

    await websocket.accept()
    session = ConversationSession(
        store,
        blobs,
        groups=groups,
        clock=clock,
        page_size=settings.PAGE_SIZE,
        live_window=settings.LIVE_WINDOW_SIZE,
        upload_concurrency=settings.UPLOAD_CONCURRENCY,
        missing_policy=MissingMessagePolicy(settings.DELETE_NOT_FOUND_POLICY),
    )
    conn = _Connection(websocket, identity, session)
    forward_task = asyncio.create_task(
        _forward_events(conn, session.listen()), name=f"ws-events-{identity.email}",
    )
    heartbeat_task = asyncio.create_task(
        _heartbeat(conn), name=f"ws-heartbeat-{identity.email}",
    )
    try:
        await _read_loop(conn)
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("WS error for %s", identity.email)
    finally:
        heartbeat_task.cancel()
        conn.cancel_tasks()
        try:
            await session.close()
        finally:
            forward_task.cancel()
            await conn.shutdown()
            await asyncio.gather(heartbeat_task, forward_task, return_exceptions=True)


async def _heartbeat(conn: _Connection) -> None:
    interval = settings.WS_HEARTBEAT_SECONDS
    try:
        while True:
            await asyncio.sleep(interval)
            await conn.send("pong")
    except asyncio.CancelledError:
        pass
    except Exception:
        logger.debug("Heartbeat stopped", exc_info=True)


async def _forward_events(conn: _Connection, listener: SessionListener) -> None:
    async for event in listener:
        if isinstance(event, ViewChanged):
            await conn.send(
                "view",
                {
                    "conversation_id": event.conversation_id,
                    "messages": [conn.render(m) for m in event.messages],
                    "unread_ids": sorted(event.unread_ids),
                    "exhausted": event.exhausted,
                },
            )
        elif isinstance(event, StateChanged):
            await conn.send(
                "state", {"conversation_id": event.conversation_id, "state": event.state.value},
            )
        elif isinstance(event, ErrorRaised) and event.operation in BACKGROUND_OPERATIONS:
            await conn.send(
                "error",
                {
                    "code": error_code(event.error),
                    "operation": event.operation,
                    "detail": event.error.detail,
                },
            )


async def _read_loop(conn: _Connection) -> None:
    while True:
        raw = await conn.websocket.receive_text()
        try:
            msg = WsInbound.model_validate_json(raw)
        except PayloadError:
            await conn.send("error", {"code": "invalid_payload"})
            continue

        if msg.type == "ping":
            await conn.send("pong", request_id=msg.request_id)
        elif msg.type not in _HANDLERS:
            await conn.send(
                "error", {"code": "unknown_type", "type": msg.type}, msg.request_id,
            )
        elif msg.type == "send":
            # Uploads can be slow; keep reading so visibility and edits still flow.
            conn.spawn(_run(conn, msg))
        else:
            await _run(conn, msg)


async def _run(conn: _Connection, msg: WsInbound) -> None:
    handler = _HANDLERS[msg.type]
    try:
        result = await handler(conn, msg.data)
    except AppError as exc:
        await conn.send(
            "error",
            {"code": error_code(exc), "operation": msg.type, "detail": exc.detail},
            msg.request_id,
        )
        return
    except PayloadError as exc:
        await conn.send(
            "error",
            {"code": "invalid", "operation": msg.type, "detail": str(exc)},
            msg.request_id,
        )
        return
    except Exception:
        logger.exception("WS %s failed for %s", msg.type, conn.identity.email)
        await conn.send(
            "error",
            {"code": "internal", "operation": msg.type, "detail": "Internal error"},
            msg.request_id,
        )
        return
    await conn.send("ack", {"op": msg.type, **result}, msg.request_id)


def _require_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"'{key}' is required")
    return value


async def _open(conn: _Connection, data: dict[str, Any]) -> dict[str, Any]:
    await conn.session.open(conn.identity.email, _require_str(data, "peer"))
    return {"conversation_id": conn.session.conversation_id}


async def _open_group(conn: _Connection, data: dict[str, Any]) -> dict[str, Any]:
    await conn.session.open_group(conn.identity.email, _require_str(data, "group_id"))
    return {"conversation_id": conn.session.conversation_id}


async def _load_more(conn: _Connection, data: dict[str, Any]) -> dict[str, Any]:
    return {"requested": await conn.session.load_more()}


async def _refresh(conn: _Connection, data: dict[str, Any]) -> dict[str, Any]:
    return {"requested": await conn.session.refresh()}


async def _send(conn: _Connection, data: dict[str, Any]) -> dict[str, Any]:
    text = data.get("text", "")
    if not isinstance(text, str):
        raise ValidationError("'text' must be a string")
    attachments = None
    if "attachments" in data:
        attachments = [
            Base64File.model_validate(a).to_attachment() for a in data["attachments"] or []
        ]
    message = await conn.session.send(text, attachments)
    return {"message": conn.render(message)}


async def _edit(conn: _Connection, data: dict[str, Any]) -> dict[str, Any]:
    message_id = _require_str(data, "message_id")
    await conn.session.edit(message_id, str(data.get("text", "")))
    return {"message_id": message_id}


async def _delete(conn: _Connection, data: dict[str, Any]) -> dict[str, Any]:
    message_id = _require_str(data, "message_id")
    await conn.session.delete(message_id)
    return {"message_id": message_id}


async def _visibility(conn: _Connection, data: dict[str, Any]) -> dict[str, Any]:
    visible = data.get("visible")
    if not isinstance(visible, bool):
        raise ValidationError("'visible' must be a boolean")
    await conn.session.set_visible(visible)
    return {"visible": visible}


def _pending(conn: _Connection) -> dict[str, Any]:
    return {"pending": [a.filename for a in conn.session.pending_attachments]}


async def _attach(conn: _Connection, data: dict[str, Any]) -> dict[str, Any]:
    conn.session.add_attachment(Base64File.model_validate(data).to_attachment())
    return _pending(conn)


async def _detach(conn: _Connection, data: dict[str, Any]) -> dict[str, Any]:
    conn.session.remove_attachment(_require_str(data, "filename"))
    return _pending(conn)


_HANDLERS: dict[str, Callable[[_Connection, dict[str, Any]], Awaitable[dict[str, Any]]]] = {
    "open": _open,
    "open_group": _open_group,
    "load_more": _load_more,
    "refresh": _refresh,
    "send": _send,
    "edit": _edit,
    "delete": _delete,
    "visibility": _visibility,
    "attach": _attach,
    "detach": _detach,
}
