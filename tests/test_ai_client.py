"""Tests for the OpenAI-compatible AI client."""

from __future__ import annotations

from dataclasses import dataclass
from types import SimpleNamespace
from typing import Any, Iterable, List, cast

import httpx
import pytest
from openai import APIConnectionError, AsyncOpenAI

from spicy.ai.client import AIClient, AIStreamEvent, ClientSettings, StreamInterruptedError


@dataclass
class _FakeEvent:
    """Simple structure emulating ChatCompletionStreamEvent attributes."""

    type: str
    delta: str | None = None
    content: str | None = None
    chunk: Any | None = None


def _chunk(**delta_fields: Any) -> _FakeEvent:
    delta = SimpleNamespace(model_extra={}, **delta_fields)
    return _FakeEvent(type="chunk", chunk=SimpleNamespace(choices=[SimpleNamespace(delta=delta)]))


def _connection_error() -> APIConnectionError:
    return APIConnectionError(request=httpx.Request("POST", "http://local/chat/completions"))


class _FakeStream:
    def __init__(self, items: Iterable[Any]):
        self._iterator = iter(list(items))

    def __aiter__(self) -> "_FakeStream":
        return self

    async def __anext__(self) -> Any:
        try:
            item = next(self._iterator)
        except StopIteration as exc:
            raise StopAsyncIteration from exc
        if isinstance(item, BaseException):
            raise item
        return item


class _FakeStreamContext:
    def __init__(self, items: Iterable[Any]):
        self._items = list(items)

    async def __aenter__(self) -> _FakeStream:
        return _FakeStream(self._items)

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class _FakeCompletions:
    def __init__(self, *attempts: Iterable[Any]):
        self._attempts = [list(items) for items in attempts]
        self.calls: List[dict[str, Any]] = []

    def stream(self, **kwargs: Any) -> _FakeStreamContext:
        self.calls.append(kwargs)
        return _FakeStreamContext(self._attempts.pop(0))


def _make_client(completions: _FakeCompletions, **overrides: Any) -> AIClient:
    settings = ClientSettings(
        base_url="http://local",
        api_key="test",
        model="stub-model",
        retry_min_seconds=0.0,
        retry_max_seconds=0.0,
        **overrides,
    )
    fake = SimpleNamespace(chat=SimpleNamespace(completions=completions), close=lambda: None)
    return AIClient(settings, client=cast(AsyncOpenAI, fake))


async def _collect(client: AIClient, **kwargs: Any) -> List[AIStreamEvent]:
    messages = [{"role": "user", "content": "hi"}]
    return [event async for event in client.stream_chat(messages, **kwargs)]


@pytest.mark.asyncio
async def test_stream_chat_normalizes_content_and_reasoning() -> None:
    completions = _FakeCompletions(
        [
            _chunk(reasoning_content="Think"),
            _chunk(content="ignored"),
            _FakeEvent(type="content.delta", delta="Hel"),
            _FakeEvent(type="content.delta", delta="lo"),
            _FakeEvent(type="content.done", content="Hello"),
            _FakeEvent(type="chunk", chunk=None),
        ]
    )
    client = _make_client(completions)

    events = await _collect(client, temperature=0.1, max_tokens=100)

    assert events == [
        AIStreamEvent(type="reasoning.delta", content="Think"),
        AIStreamEvent(type="content.delta", content="Hel"),
        AIStreamEvent(type="content.delta", content="lo"),
        AIStreamEvent(type="content.done", content="Hello"),
    ]
    call = completions.calls[0]
    assert call["model"] == "stub-model"
    assert call["temperature"] == 0.1
    assert call["max_tokens"] == 100


@pytest.mark.asyncio
async def test_reasoning_read_from_model_extra() -> None:
    delta = SimpleNamespace(model_extra={"reasoning": "extra thoughts"})
    event = _FakeEvent(type="chunk", chunk=SimpleNamespace(choices=[SimpleNamespace(delta=delta)]))
    client = _make_client(_FakeCompletions([event]))

    assert await _collect(client) == [AIStreamEvent(type="reasoning.delta", content="extra thoughts")]


@pytest.mark.asyncio
async def test_connection_errors_retry_before_first_delta() -> None:
    completions = _FakeCompletions(
        [_connection_error()],
        [_FakeEvent(type="content.delta", delta="ok")],
    )
    client = _make_client(completions, max_retries=3)

    events = await _collect(client)

    assert [event.content for event in events] == ["ok"]
    assert len(completions.calls) == 2


@pytest.mark.asyncio
async def test_failure_after_delivery_is_not_retried() -> None:
    completions = _FakeCompletions(
        [_FakeEvent(type="content.delta", delta="partial"), _connection_error()],
        [_FakeEvent(type="content.delta", delta="replayed")],
    )
    client = _make_client(completions, max_retries=3)
    received: List[str] = []

    with pytest.raises(StreamInterruptedError):
        async for event in client.stream_chat([{"role": "user", "content": "hi"}]):
            received.append(event.content or "")

    assert received == ["partial"]
    assert len(completions.calls) == 1


@pytest.mark.asyncio
async def test_retries_exhausted_reraise() -> None:
    completions = _FakeCompletions([_connection_error()], [_connection_error()])
    client = _make_client(completions, max_retries=2)

    with pytest.raises(APIConnectionError):
        await _collect(client)
    assert len(completions.calls) == 2


@pytest.mark.asyncio
async def test_empty_message_list_is_rejected() -> None:
    client = _make_client(_FakeCompletions())

    with pytest.raises(ValueError):
        async for _ in client.stream_chat([]):
            pass


@pytest.mark.asyncio
async def test_aclose_tolerates_sync_close() -> None:
    client = _make_client(_FakeCompletions())

    await client.aclose()
