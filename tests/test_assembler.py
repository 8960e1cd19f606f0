"""Tests for the streaming assembler."""

from __future__ import annotations

from typing import AsyncIterator, Iterable, Optional

import pytest

from spicy.chat.assembler import StreamAssembler, format_error
from spicy.chat.events import StreamDone, StreamError, StreamEvent, TextDelta, ThinkingDelta
from spicy.chat.message_model import ChatMessage, FileChange
from spicy.chat.message_store import MessageStore


def _store() -> MessageStore:
    return MessageStore([ChatMessage.user("u-1", "hi"), ChatMessage.placeholder("a-1")])


async def _events(items: Iterable[StreamEvent]) -> AsyncIterator[StreamEvent]:
    for item in items:
        yield item


def test_interleaved_deltas_concatenate_per_channel() -> None:
    store = _store()
    assembler = StreamAssembler(lambda: store, "a-1")

    for event in [
        ThinkingDelta("think "),
        TextDelta("Hel"),
        ThinkingDelta("more"),
        TextDelta("lo"),
        StreamDone(),
    ]:
        assembler.apply(event)

    reply = store.get("a-1")
    assert reply is not None
    assert reply.thinking == "think more"
    assert reply.content == "Hello"
    assert reply.is_streaming is False
    assert assembler.finished is True


def test_empty_explanation_keeps_streamed_text() -> None:
    store = _store()
    assembler = StreamAssembler(lambda: store, "a-1")

    assembler.apply(TextDelta("kept"))
    assembler.apply(StreamDone(explanation=""))

    reply = store.get("a-1")
    assert reply is not None and reply.content == "kept"


def test_done_attaches_changes() -> None:
    store = _store()
    change = FileChange(filename="a.asc", description="d")
    assembler = StreamAssembler(lambda: store, "a-1")

    assembler.apply(StreamDone(explanation="Applied", changes=[change]))

    reply = store.get("a-1")
    assert reply is not None
    assert reply.content == "Applied"
    assert reply.changes == [change]


def test_events_after_terminal_are_ignored() -> None:
    store = _store()
    assembler = StreamAssembler(lambda: store, "a-1")

    assembler.apply(StreamError("boom"))
    assert assembler.apply(TextDelta("late")) is False
    assert assembler.fail("again") is False

    reply = store.get("a-1")
    assert reply is not None and reply.content == "Error: boom"
    assert assembler.applied_events == 1


def test_missing_store_drops_events() -> None:
    target: Optional[MessageStore] = None
    assembler = StreamAssembler(lambda: target, "a-1")

    assert assembler.apply(TextDelta("x")) is False


def test_unknown_event_types_are_skipped() -> None:
    store = _store()
    assembler = StreamAssembler(lambda: store, "a-1")

    assert assembler.apply({"type": "usage", "tokens": 12}) is False
    assembler.apply({"type": "text", "content": "still here"})
    assembler.apply({"type": "done"})

    reply = store.get("a-1")
    assert reply is not None
    assert reply.content == "still here"
    assert reply.is_streaming is False
    assert assembler.applied_events == 2


def test_missing_placeholder_drops_events() -> None:
    store = MessageStore([ChatMessage.user("u-1", "hi")])
    assembler = StreamAssembler(lambda: store, "a-1")

    assert assembler.apply(TextDelta("x")) is False
    assert [message.content for message in store] == ["hi"]


@pytest.mark.asyncio
async def test_consume_stops_at_terminal_event() -> None:
    store = _store()
    assembler = StreamAssembler(lambda: store, "a-1")

    await assembler.consume(_events([TextDelta("a"), StreamDone(), TextDelta("b")]))

    reply = store.get("a-1")
    assert reply is not None and reply.content == "a"


@pytest.mark.asyncio
async def test_consume_closes_unterminated_stream() -> None:
    store = _store()
    assembler = StreamAssembler(lambda: store, "a-1")

    await assembler.consume(_events([TextDelta("partial")]))

    reply = store.get("a-1")
    assert reply is not None
    assert reply.content == "partial"
    assert reply.is_streaming is False


def test_format_error() -> None:
    assert format_error("x") == "Error: x"
    assert format_error(None) == "Error: Unknown error"
    assert format_error("") == "Error: Unknown error"
