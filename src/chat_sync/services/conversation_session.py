"""Conversation session: binds a viewer and a peer (or group) to one conversation.

State machine: ``Closed -> Opening -> Open -> Closed``. The session owns the
live subscription, the message store, the read-receipt tracker and the send
coordinator for the conversation, and publishes ``SessionEvent``s to every
listener returned by :meth:`ConversationSession.listen`.

All mutation happens on the event loop; store merges are synchronous, so a
merge never interleaves with another. Background completions (page fetches,
live snapshots) carry the generation they were started in and are dropped
once the session is closed or reopened.
"""
from __future__ import annotations

import asyncio
import logging
from types import TracebackType
from typing import Self, Sequence

from chat_sync.application.dto.events import (
    ErrorRaised,
    SessionEvent,
    StateChanged,
    ViewChanged,
)
from chat_sync.application.dto.message import MessageFilter, PendingAttachment
from chat_sync.application.exceptions import AppError, ConflictError, ValidationError
from chat_sync.application.policies.permissions import assert_group_member
from chat_sync.application.ports.blob_store import BlobStore
from chat_sync.application.ports.clock import Clock, SystemClock
from chat_sync.application.ports.conversation_store import (
    ConversationStore,
    LiveSubscription,
)
from chat_sync.application.repositories.group import GroupReader
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import (
    DeliveryStatus,
    MissingMessagePolicy,
    SessionState,
)
from chat_sync.domain.value_objects.ids import (
    direct_conversation_id,
    group_conversation_id,
)
from chat_sync.services.message_store import MessageStore
from chat_sync.services.read_receipts import ReadReceiptTracker, delivery_status
from chat_sync.services.send_coordinator import ConversationTarget, SendCoordinator

logger = logging.getLogger(__name__)

_END = object()


class SessionListener:
    """Async iterator over session events, fed through an ``asyncio.Queue``."""

    def __init__(self, session: ConversationSession) -> None:
        self._session = session
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False

    def __aiter__(self) -> Self:
        return self

    async def __anext__(self) -> SessionEvent:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        event = await self._queue.get()
        if event is _END:
            raise StopAsyncIteration
        return event  # type: ignore[return-value]

    def push(self, event: SessionEvent) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._session._listeners.discard(self)
        self._queue.put_nowait(_END)


def _require_id(value: str | None, name: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{name} is required")
    return value.strip()


class ConversationSession:
    def __init__(
        self,
        store: ConversationStore,
        blobs: BlobStore,
        *,
        groups: GroupReader | None = None,
        clock: Clock | None = None,
        page_size: int = 20,
        live_window: int | None = None,
        upload_concurrency: int = 1,
        missing_policy: MissingMessagePolicy = MissingMessagePolicy.IGNORE,
    ) -> None:
        self._store = store
        self._blobs = blobs
        self._groups = groups
        self._clock = clock or SystemClock()
        self._page_size = page_size
        self._live_window = live_window or page_size
        self._upload_concurrency = upload_concurrency
        self._missing_policy = missing_policy

        self._state = SessionState.CLOSED
        self._generation = 0
        self._viewer_id: str | None = None
        self._target: ConversationTarget | None = None
        self._filter: MessageFilter | None = None
        self._messages: MessageStore | None = None
        self._receipts: ReadReceiptTracker | None = None
        self._sender: SendCoordinator | None = None
        self._subscription: LiveSubscription | None = None
        self._pump_task: asyncio.Task[None] | None = None
        self._page_task: asyncio.Task[list[Message]] | None = None
        self._visible = False
        self._is_loading = False
        self._listeners: set[SessionListener] = set()
        self.last_error: AppError | None = None

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # -- observable state -------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def conversation_id(self) -> str | None:
        return self._target.conversation_id if self._target else None

    @property
    def viewer_id(self) -> str | None:
        return self._viewer_id

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def is_sending(self) -> bool:
        return self._sender is not None and self._sender.is_sending

    @property
    def is_visible(self) -> bool:
        return self._visible

    @property
    def exhausted(self) -> bool:
        return self._messages.exhausted if self._messages else True

    @property
    def next_cursor(self) -> int | None:
        return self._messages.next_cursor if self._messages else None

    def current_view(self) -> tuple[Message, ...]:
        return self._messages.current_view() if self._messages else ()

    def unread_ids(self) -> set[str]:
        if self._receipts is None:
            return set()
        return self._receipts.compute_unread(self.current_view())

    def delivery_status(self, message: Message) -> DeliveryStatus:
        if self._viewer_id is None:
            raise ConflictError("Conversation is not open")
        return delivery_status(message, self._viewer_id)

    def listen(self) -> SessionListener:
        listener = SessionListener(self)
        self._listeners.add(listener)
        return listener

    # -- lifecycle --------------------------------------------------------

    async def open(self, viewer: str, peer: str) -> None:
        """Open the 1:1 conversation between ``viewer`` and ``peer``."""
        viewer = _require_id(viewer, "viewer")
        peer = _require_id(peer, "peer")
        target = ConversationTarget(
            conversation_id=direct_conversation_id(viewer, peer),
            sender_id=viewer,
            recipient_id=peer,
        )
        await self._start(viewer, target, MessageFilter.direct(self._live_window))

    async def open_group(self, viewer: str, group_id: str) -> None:
        """Open a group conversation; the viewer must be a member."""
        viewer = _require_id(viewer, "viewer")
        if not group_id or not group_id.strip():
            raise ValidationError("group_id is required")
        if self._groups is None:
            raise RuntimeError("open_group needs a GroupReader")
        group = await self._groups.get_by_id(group_id)
        assert_group_member(group, viewer)
        target = ConversationTarget(
            conversation_id=group_conversation_id(group_id),
            sender_id=viewer,
            group_id=group_id,
        )
        await self._start(viewer, target, MessageFilter.group(group_id, self._live_window))

    async def close(self) -> None:
        """Release the subscription and discard session state. Safe to repeat."""
        await self._teardown()
        self._visible = False
        for listener in list(self._listeners):
            listener.close()

    async def _start(
        self,
        viewer: str,
        target: ConversationTarget,
        message_filter: MessageFilter,
    ) -> None:
        await self._teardown()
        self._generation += 1
        generation = self._generation

        self._viewer_id = viewer
        self._target = target
        self._filter = message_filter
        self._messages = MessageStore(
            target.conversation_id,
            page_size=self._page_size,
            live_window=self._live_window,
        )
        self._receipts = ReadReceiptTracker(self._store, viewer, visible=self._visible)
        self._sender = SendCoordinator(
            target,
            self._store,
            self._blobs,
            self._clock,
            upload_concurrency=self._upload_concurrency,
            missing_policy=self._missing_policy,
        )
        self.last_error = None
        self._set_state(SessionState.OPENING)
        logger.info("Opening conversation %s for %s", target.conversation_id, viewer)

        try:
            subscription = await self._store.subscribe(target.conversation_id, message_filter)
        except AppError as exc:
            self._record_error("subscribe", exc)
            await self._teardown()
            raise

        if generation != self._generation:
            await subscription.close()
            return

        self._subscription = subscription
        self._pump_task = asyncio.create_task(
            self._pump(subscription, generation),
            name=f"live-{target.conversation_id}",
        )
        await self._request_page(initial=True)

    async def _teardown(self) -> None:
        was_active = self._state is not SessionState.CLOSED
        self._generation += 1
        current = asyncio.current_task()

        page_task, self._page_task = self._page_task, None
        if page_task is not None:
            page_task.cancel()
        if self._pump_task is not None and self._pump_task is not current:
            self._pump_task.cancel()

        # References are dropped only once released, so a close interrupted
        # by cancellation can be repeated.
        subscription = self._subscription
        if subscription is not None:
            try:
                await asyncio.shield(subscription.close())
            except AppError as exc:
                logger.warning("Closing live subscription failed: %s", exc.detail)
            self._subscription = None

        pump_task = self._pump_task
        if pump_task is not None and pump_task is not current:
            await asyncio.gather(pump_task, return_exceptions=True)
        self._pump_task = None

        conversation_id = self.conversation_id
        self._messages = None
        self._receipts = None
        self._sender = None
        self._target = None
        self._filter = None
        self._viewer_id = None
        self._is_loading = False
        if was_active:
            logger.info("Closed conversation %s", conversation_id)
            self._set_state(SessionState.CLOSED)

    # -- pagination -------------------------------------------------------

    async def load_more(self) -> bool:
        """Request the next page of history.

        Returns ``False`` without a request when history is exhausted or a
        fetch is already outstanding.
        """
        if self._state is not SessionState.OPEN or self._messages is None:
            raise ConflictError("Conversation is not open")
        if self._messages.exhausted or self._page_task is not None:
            return False
        return await self._request_page(initial=False)

    async def refresh(self) -> bool:
        """Re-request the newest page, e.g. after a transient failure."""
        if self._state is SessionState.CLOSED or self._messages is None:
            raise ConflictError("Conversation is not open")
        if self._page_task is not None:
            return False
        return await self._request_page(initial=True)

    async def _request_page(self, *, initial: bool) -> bool:
        assert self._messages is not None and self._target is not None
        messages = self._messages
        generation = self._generation
        key = None if initial else messages.next_page_key
        before, before_id = key if key is not None else (None, None)

        self._is_loading = True
        self.last_error = None
        task = asyncio.create_task(
            self._store.fetch_page(
                self._target.conversation_id,
                self._page_size,
                before,
                message_filter=self._filter or MessageFilter.direct(self._live_window),
                before_id=before_id,
            ),
            name=f"page-{self._target.conversation_id}",
        )
        self._page_task = task
        try:
            page = await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            logger.debug("Page fetch cancelled by close")
            return False
        except AppError as exc:
            if generation == self._generation:
                self._record_error("load", exc)
            raise
        finally:
            if generation == self._generation:
                self._is_loading = False
                self._page_task = None

        if generation != self._generation:
            return False
        try:
            messages.apply_page(page, is_initial_page=initial)
        except ValidationError as exc:
            self._record_error("load", exc)
            raise
        self._mark_open()
        await self._after_view_change()
        return True

    # -- live updates -----------------------------------------------------

    async def _pump(self, subscription: LiveSubscription, generation: int) -> None:
        try:
            async for snapshot in subscription:
                if generation != self._generation or self._messages is None:
                    return
                try:
                    self._messages.apply_live_update(snapshot)
                except ValidationError as exc:
                    self._record_error("live", exc)
                    continue
                self._mark_open()
                await self._after_view_change()
        except AppError as exc:
            if generation == self._generation:
                self._record_error("live", exc)

    async def _after_view_change(self) -> None:
        if self._messages is None or self._receipts is None or self._target is None:
            return
        view = self._messages.current_view()
        self._emit(
            ViewChanged(
                conversation_id=self._target.conversation_id,
                messages=view,
                unread_ids=frozenset(self._receipts.compute_unread(view)),
                exhausted=self._messages.exhausted,
            )
        )
        try:
            await self._receipts.on_view_changed(view)
        except AppError as exc:
            self._record_error("read", exc)

    # -- visibility -------------------------------------------------------

    async def set_visible(self, visible: bool) -> None:
        self._visible = visible
        if self._receipts is None or self._messages is None:
            return
        try:
            await self._receipts.set_visible(visible, self._messages.current_view())
        except AppError as exc:
            self._record_error("read", exc)

    # -- outgoing ---------------------------------------------------------

    def _require_sender(self) -> SendCoordinator:
        if self._sender is None or self._state is SessionState.CLOSED:
            raise ConflictError("Conversation is not open")
        return self._sender

    @property
    def pending_attachments(self) -> tuple[PendingAttachment, ...]:
        return self._sender.pending_attachments if self._sender else ()

    def add_attachment(self, attachment: PendingAttachment) -> None:
        self._require_sender().add_attachment(attachment)

    def remove_attachment(self, filename: str) -> None:
        self._require_sender().remove_attachment(filename)

    def clear_attachments(self) -> None:
        self._require_sender().clear_attachments()

    async def send(
        self,
        text: str,
        attachments: Sequence[PendingAttachment] | None = None,
    ) -> Message:
        sender = self._require_sender()
        if sender.is_sending:
            raise ConflictError("A message is already being sent")
        self.last_error = None
        try:
            return await sender.send(text, attachments)
        except AppError as exc:
            self._record_error("send", exc)
            raise

    async def edit(self, message_id: str, new_text: str) -> None:
        sender = self._require_sender()
        self.last_error = None
        try:
            await sender.edit(message_id, new_text)
        except AppError as exc:
            self._record_error("edit", exc)
            raise

    async def delete(self, message_id: str) -> None:
        sender = self._require_sender()
        self.last_error = None
        try:
            await sender.delete(message_id)
        except AppError as exc:
            self._record_error("delete", exc)
            raise
        if self._messages is not None and self._messages.discard(message_id):
            await self._after_view_change()

    # -- events -----------------------------------------------------------

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        self._state = state
        self._emit(StateChanged(conversation_id=self.conversation_id, state=state))

    def _mark_open(self) -> None:
        if self._state is SessionState.OPENING:
            self._set_state(SessionState.OPEN)

    def _record_error(self, operation: str, exc: AppError) -> None:
        self.last_error = exc
        logger.warning(
            "%s failed for %s: %s", operation, self.conversation_id, exc.detail or exc,
        )
        self._emit(
            ErrorRaised(conversation_id=self.conversation_id, operation=operation, error=exc)
        )

    def _emit(self, event: SessionEvent) -> None:
        for listener in list(self._listeners):
            listener.push(event)
