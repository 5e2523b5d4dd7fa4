"""Ordered, deduplicated message view for a single conversation.

Two sources feed the view:

* pages of history, fetched newest-first below the oldest held
  ``(created_at, id)`` key;
* live snapshots: the subscription redelivers its whole window (the newest
  ``live_window`` messages) on every change, never a diff.

A snapshot is authoritative for every key at or above its oldest entry;
older keys come from history. A snapshot shorter than the window covers the
whole conversation. A message leaving a full window below its new oldest
entry is kept as history: the snapshot cannot tell it apart from a delete
coalesced with a newer message, so deletes known locally are recorded with
:meth:`MessageStore.discard` and never come back. Both apply operations
are idempotent and the result does not depend on the order in which pages
and snapshots arrive.
"""
from __future__ import annotations

import logging
from typing import Sequence

from chat_sync.application.exceptions import ValidationError
from chat_sync.domain.entities.message import Message

logger = logging.getLogger(__name__)


def _sort_key(message: Message) -> tuple[int, str]:
    return message.sort_key


class MessageStore:
    def __init__(
        self,
        conversation_id: str,
        *,
        page_size: int = 20,
        live_window: int | None = None,
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self.conversation_id = conversation_id
        self.page_size = page_size
        self.live_window = live_window or page_size
        self._history: dict[str, Message] = {}
        self._live: dict[str, Message] | None = None
        self._history_exhausted = False
        self._view: tuple[Message, ...] | None = None
        self._deleted: set[str] = set()

    # -- inputs -----------------------------------------------------------

    def apply_page(self, messages: Sequence[Message], is_initial_page: bool) -> None:
        """Merge a page of history fetched in descending timestamp order.

        The initial page replaces the historical portion; the live window is
        kept because it may already hold newer data. A page shorter than
        ``page_size`` means there is nothing older left to fetch.
        """
        page = self._validated(messages)
        if is_initial_page:
            self._history = page
            self._history_exhausted = len(messages) < self.page_size
        else:
            self._history.update(page)
            if len(messages) < self.page_size:
                self._history_exhausted = True
        self._prune_history()
        self._view = None
        logger.debug(
            "Applied %s page of %d to %s (exhausted=%s)",
            "initial" if is_initial_page else "next",
            len(page),
            self.conversation_id,
            self.exhausted,
        )

    def apply_live_update(self, snapshot: Sequence[Message]) -> None:
        """Replace the live window with the subscription's full result set."""
        live = self._validated(snapshot)
        boundary = self._boundary(live)
        if self._live is not None and boundary is not None:
            for message_id, message in self._live.items():
                # Pushed out of the window by newer messages, not deleted.
                if (
                    message_id not in live
                    and message_id not in self._deleted
                    and message.sort_key < boundary
                ):
                    self._history[message_id] = message
        self._live = live
        self._prune_history()
        self._view = None
        logger.debug(
            "Applied live snapshot of %d to %s", len(live), self.conversation_id,
        )

    def reset(self) -> None:
        self._history = {}
        self._live = None
        self._history_exhausted = False
        self._view = None
        self._deleted = set()

    def discard(self, message_id: str) -> bool:
        """Drop a message known to be deleted. Returns whether the view changed."""
        present = self.get(message_id) is not None
        self._deleted.add(message_id)
        self._history.pop(message_id, None)
        self._view = None
        return present

    # -- outputs ----------------------------------------------------------

    def current_view(self) -> tuple[Message, ...]:
        """Newest first, unique ids, ties on timestamp broken by id."""
        if self._view is None:
            merged = dict(self._history)
            if self._live is not None:
                merged.update(self._live)
            for message_id in self._deleted:
                merged.pop(message_id, None)
            self._view = tuple(sorted(merged.values(), key=_sort_key, reverse=True))
        return self._view

    def get(self, message_id: str) -> Message | None:
        if message_id in self._deleted:
            return None
        if self._live is not None and message_id in self._live:
            return self._live[message_id]
        return self._history.get(message_id)

    @property
    def exhausted(self) -> bool:
        live_complete = self._live is not None and len(self._live) < self.live_window
        return self._history_exhausted or live_complete

    @property
    def next_cursor(self) -> int | None:
        """Timestamp to fetch the next page before; ``None`` once history is exhausted."""
        if self.exhausted:
            return None
        view = self.current_view()
        if not view:
            return None
        return view[-1].created_at

    @property
    def next_page_key(self) -> tuple[int, str] | None:
        """Full ``(created_at, id)`` key of the oldest held message.

        The next page is everything strictly below it, so messages sharing
        the cursor timestamp are neither skipped nor fetched twice.
        """
        if self.next_cursor is None:
            return None
        return self.current_view()[-1].sort_key

    def __len__(self) -> int:
        return len(self.current_view())

    # -- internals --------------------------------------------------------

    def _validated(self, messages: Sequence[Message]) -> dict[str, Message]:
        result: dict[str, Message] = {}
        for message in messages:
            if message.id is None:
                raise ValidationError("Cannot merge an uncommitted message")
            if message.conversation_id != self.conversation_id:
                raise ValidationError(
                    f"Message {message.id} belongs to {message.conversation_id}, "
                    f"not {self.conversation_id}"
                )
            result[message.id] = message
        return result

    def _boundary(self, live: dict[str, Message]) -> tuple[int, str] | None:
        """Oldest key covered by a full window; ``None`` if it covers everything."""
        if len(live) < self.live_window:
            return None
        return min(m.sort_key for m in live.values())

    def _prune_history(self) -> None:
        # History may only hold keys strictly below the live window; anything
        # inside the window that the snapshot lacks has been deleted.
        if self._live is None:
            return
        boundary = self._boundary(self._live)
        if boundary is None:
            self._history = {}
            return
        self._history = {
            message_id: message
            for message_id, message in self._history.items()
            if message.sort_key < boundary and message_id not in self._live
        }
