"""Streaming assembler turning partial-response events into one chat turn."""

from __future__ import annotations

import logging
from typing import AsyncIterable, Callable, Mapping, Optional

from .events import (
    StreamDone,
    StreamError,
    StreamEvent,
    StreamEventError,
    TextDelta,
    ThinkingDelta,
    parse_stream_event,
)
from .message_model import ChatMessage
from .message_store import MessageStore

LOGGER = logging.getLogger(__name__)

ERROR_PREFIX = "Error: "
UNKNOWN_ERROR = "Unknown error"

StoreResolver = Callable[[], Optional[MessageStore]]


def format_error(detail: object | None) -> str:
    """Render the visible content of a failed assistant turn."""

    text = str(detail) if detail is not None else ""
    return f"{ERROR_PREFIX}{text or UNKNOWN_ERROR}"


class StreamAssembler:
    """Applies the events of one request to its placeholder message.

    The store is resolved per event rather than captured once, so the caller
    decides which transcript currently owns the request. A resolver returning
    ``None`` drops the event, as does an event of an unknown type. Once a
    terminal event (or :meth:`fail`) has been applied, later events are
    ignored.
    """

    def __init__(self, resolve_store: StoreResolver, placeholder_id: str) -> None:
        self._resolve_store = resolve_store
        self._placeholder_id = placeholder_id
        self._finished = False
        self._applied = 0

    @property
    def placeholder_id(self) -> str:
        return self._placeholder_id

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def applied_events(self) -> int:
        return self._applied

    def apply(self, event: StreamEvent | Mapping[str, object]) -> bool:
        """Apply a single event; returns ``True`` when it mutated the placeholder."""

        if self._finished:
            LOGGER.debug("Ignoring late event for finished turn %s", self._placeholder_id)
            return False

        try:
            parsed = parse_stream_event(event)
        except StreamEventError as exc:
            LOGGER.debug("Skipping stream event for %s: %s", self._placeholder_id, exc)
            return False
        if parsed.is_terminal:
            self._finished = True

        store = self._resolve_store()
        current = store.get(self._placeholder_id) if store is not None else None
        if store is None or current is None:
            LOGGER.debug(
                "No transcript owns placeholder %s; dropping %s event",
                self._placeholder_id,
                parsed.type,
            )
            return False

        updates = self._updates_for(current, parsed)
        store.update(self._placeholder_id, **updates)
        self._applied += 1
        return True

    def fail(self, error: BaseException | str | None) -> bool:
        """Terminate the turn after a transport-level failure."""

        if self._finished:
            return False
        return self.apply(StreamError(message=str(error) if error is not None else None))

    async def consume(self, events: AsyncIterable[StreamEvent | Mapping[str, object]]) -> None:
        """Drain ``events`` in delivery order until the turn terminates.

        A stream that ends without a terminal event is closed as a plain
        ``done`` so the placeholder never stays in the streaming state.
        """

        async for event in events:
            self.apply(event)
            if self._finished:
                break
        if not self._finished:
            LOGGER.debug("Stream for %s ended without a terminal event", self._placeholder_id)
            self.apply(StreamDone())

    @staticmethod
    def _updates_for(current: ChatMessage, event: StreamEvent) -> dict[str, object]:
        if isinstance(event, ThinkingDelta):
            return {"thinking": (current.thinking or "") + event.content}
        if isinstance(event, TextDelta):
            return {"content": current.content + event.content}
        if isinstance(event, StreamDone):
            return {
                "content": event.explanation or current.content,
                "changes": event.changes,
                "is_streaming": False,
            }
        if isinstance(event, StreamError):
            return {"content": format_error(event.message), "is_streaming": False}
        raise TypeError(f"Unsupported stream event: {event!r}")  # pragma: no cover


__all__ = ["ERROR_PREFIX", "StreamAssembler", "StoreResolver", "format_error"]
