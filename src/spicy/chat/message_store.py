"""Ordered transcript storage with change listeners.

The store mirrors how the chat panel keeps message bookkeeping independent
from any widget: mutations happen here and observers are notified through
plain callbacks, one notification per mutation.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Iterator, List, Optional

from .message_model import ChatMessage

LOGGER = logging.getLogger(__name__)

StoreListener = Callable[[List[ChatMessage]], None]


class MessageStore:
    """Mutable list of :class:`ChatMessage` rows for one transcript.

    Updates replace rows rather than mutating them, so earlier snapshots keep
    the values they were taken with.
    """

    def __init__(self, messages: Iterable[ChatMessage] | None = None) -> None:
        self._messages: List[ChatMessage] = list(messages or [])
        self._listeners: List[StoreListener] = []

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: StoreListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StoreListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def messages(self) -> List[ChatMessage]:
        return list(self._messages)

    def snapshot(self) -> List[ChatMessage]:
        return list(self._messages)

    def get(self, message_id: str) -> Optional[ChatMessage]:
        for message in self._messages:
            if message.id == message_id:
                return message
        return None

    def streaming_messages(self) -> List[ChatMessage]:
        return [message for message in self._messages if message.is_streaming]

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[ChatMessage]:
        return iter(list(self._messages))

    def __bool__(self) -> bool:
        return bool(self._messages)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def append(self, message: ChatMessage) -> ChatMessage:
        self._messages.append(message)
        self._notify()
        return message

    def update(self, message_id: str, **fields: Any) -> Optional[ChatMessage]:
        """Replace the row matching ``message_id``; absent ids are a no-op."""

        for index, message in enumerate(self._messages):
            if message.id != message_id:
                continue
            updated = message.evolve(**fields)
            self._messages[index] = updated
            self._notify()
            return updated
        return None

    def replace(self, messages: Iterable[ChatMessage]) -> None:
        self._messages = list(messages)
        self._notify()

    def clear(self) -> None:
        self._messages = []
        self._notify()

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = list(self._messages)
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:  # pragma: no cover - listener bugs must not break streaming
                LOGGER.exception("Message store listener %r failed", listener)


__all__ = ["MessageStore", "StoreListener"]
