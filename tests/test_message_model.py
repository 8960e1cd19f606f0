"""Tests for chat message and session models."""

from __future__ import annotations

import pytest

from spicy.chat.message_model import (
    ChatMessage,
    FileChange,
    FileChatState,
    SessionMeta,
    coerce_changes,
    history_payload,
    to_chat_messages,
    to_stored_messages,
)


def test_placeholder_is_empty_streaming_assistant_turn() -> None:
    placeholder = ChatMessage.placeholder("a-1")

    assert placeholder.role == "assistant"
    assert placeholder.content == ""
    assert placeholder.thinking == ""
    assert placeholder.is_streaming is True


def test_stored_messages_omit_transient_and_empty_fields() -> None:
    messages = [
        ChatMessage.user("u-1", "hello"),
        ChatMessage(id="a-1", role="assistant", content="hi", thinking="", changes=[], is_streaming=True),
        ChatMessage(
            id="a-2",
            role="assistant",
            content="done",
            thinking="plan",
            changes=[FileChange(filename="amp.asc", description="R1 -> 2k")],
            is_loading=True,
        ),
    ]

    stored = to_stored_messages(messages)

    assert stored == [
        {"id": "u-1", "role": "user", "content": "hello"},
        {"id": "a-1", "role": "assistant", "content": "hi"},
        {
            "id": "a-2",
            "role": "assistant",
            "content": "done",
            "thinking": "plan",
            "changes": [{"filename": "amp.asc", "description": "R1 -> 2k"}],
        },
    ]


def test_chat_messages_rehydrate_as_terminal_turns() -> None:
    stored = [
        {"id": "a-1", "role": "assistant", "content": "hi", "thinking": "", "changes": []},
        {
            "id": "a-2",
            "role": "assistant",
            "content": "ok",
            "changes": [{"component": "C1", "filename": "f.asc", "description": "added"}],
        },
    ]

    first, second = to_chat_messages(stored)

    assert first.thinking is None
    assert first.changes is None
    assert first.is_streaming is False
    assert second.changes == [FileChange(filename="f.asc", description="added", component="C1")]


def test_stored_round_trip_preserves_optional_fields() -> None:
    original = [
        ChatMessage.user("u-1", "question"),
        ChatMessage(
            id="a-1",
            role="assistant",
            content="answer",
            thinking="why",
            changes=[FileChange(filename="f.asc", description="d", component="R2")],
        ),
    ]

    assert to_chat_messages(to_stored_messages(original)) == original


def test_unknown_role_is_rejected() -> None:
    with pytest.raises(ValueError):
        to_chat_messages([{"id": "x", "role": "system", "content": "nope"}])


def test_coerce_changes_drops_incomplete_rows() -> None:
    changes = coerce_changes(
        [
            {"filename": "a.asc", "description": "ok", "component": 7},
            {"filename": "b.asc"},
            "garbage",
        ]
    )

    assert changes == [FileChange(filename="a.asc", description="ok")]
    assert coerce_changes(None) is None
    assert coerce_changes("not a list") is None


def test_history_payload_keeps_role_and_content_only() -> None:
    messages = [
        ChatMessage.user("u", "hi"),
        ChatMessage(id="a", role="assistant", content="yo", thinking="t"),
    ]

    assert history_payload(messages) == [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "yo"},
    ]


def test_session_meta_from_dict_fills_defaults() -> None:
    meta = SessionMeta.from_dict({"id": "s1"})

    assert meta.title == ""
    assert meta.message_count == 0
    assert SessionMeta.from_dict(meta.to_dict()) == meta


def test_file_chat_state_copy_is_independent() -> None:
    state = FileChatState(messages=[ChatMessage.user("u", "hi")])

    duplicate = state.copy()
    duplicate.messages.append(ChatMessage.user("u2", "again"))

    assert len(state.messages) == 1
    assert FileChatState.empty() == FileChatState()
