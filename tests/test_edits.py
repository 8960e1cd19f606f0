"""Tests for edit response parsing and line edit application."""

from __future__ import annotations

import json
from pathlib import Path

from spicy.ai.edits import (
    DEFAULT_EXPLANATION,
    LineEdit,
    apply_edits_to_file,
    apply_line_edits,
    parse_edit_response,
)
from spicy.chat.message_model import FileChange


def test_parse_whole_reply() -> None:
    reply = json.dumps(
        {
            "edits": [{"start": 6, "end": 6, "replacement": "SYMATTR Value 24k"}],
            "explanation": "Changed R1 to 24k",
            "changes": [{"component": "R1", "filename": "amp.asc", "description": "10k -> 24k"}],
        }
    )

    response = parse_edit_response(reply)

    assert response is not None
    assert response.edits == [LineEdit(6, 6, "SYMATTR Value 24k")]
    assert response.explanation == "Changed R1 to 24k"
    assert response.changes == [FileChange(filename="amp.asc", description="10k -> 24k", component="R1")]


def test_parse_payload_after_preamble_and_defaults() -> None:
    reply = 'Sure, here it is:\n{"edits": [{"start": 1, "end": 1, "replacement": ""}, {"start": "x"}]}'

    response = parse_edit_response(reply)

    assert response is not None
    assert response.edits == [LineEdit(1, 1, "")]
    assert response.explanation == DEFAULT_EXPLANATION
    assert response.changes == []


def test_parse_fenced_payload() -> None:
    reply = '```json\n{"edits": [], "explanation": "Nothing to do"}\n```'

    response = parse_edit_response(reply)

    assert response is not None and response.explanation == "Nothing to do"


def test_prose_and_foreign_json_are_not_edits() -> None:
    assert parse_edit_response("The circuit is a low-pass filter.") is None
    assert parse_edit_response('{"answer": 42}') is None


def test_apply_replaces_inserts_and_deletes_bottom_up(schematic: str) -> None:
    edits = [
        LineEdit(6, 6, "SYMATTR Value 24k"),
        LineEdit(3, 3, "WIRE 80 96 200 96\nWIRE 280 96 400 96"),
        LineEdit(2, 2, ""),
    ]

    result = apply_line_edits(schematic, edits)

    assert result.splitlines() == [
        "Version 4",
        "WIRE 80 96 200 96",
        "WIRE 280 96 400 96",
        "SYMBOL res 184 144 R0",
        "SYMATTR InstName R1",
        "SYMATTR Value 24k",
    ]
    assert result.endswith("\n")


def test_invalid_ranges_are_skipped(schematic: str) -> None:
    edits = [LineEdit(0, 1, "x"), LineEdit(3, 2, "x"), LineEdit(6, 99, "x")]

    assert apply_line_edits(schematic, edits) == schematic


def test_no_trailing_newline_is_kept() -> None:
    assert apply_line_edits("a\nb", [LineEdit(2, 2, "c")]) == "a\nc"


def test_apply_to_file_keeps_line_endings(tmp_path: Path) -> None:
    target = tmp_path / "amp.asc"
    target.write_bytes(b"Version 4\r\nSYMATTR Value 10k\r\n")

    apply_edits_to_file(target, [LineEdit(2, 2, "SYMATTR Value 1k")])

    assert target.read_bytes() == b"Version 4\r\nSYMATTR Value 1k\r\n"
