"""Parsing and application of line-range edit responses."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from ..chat.message_model import FileChange, coerce_changes
from ..utils.file_io import read_text_with_encoding, write_text

LOGGER = logging.getLogger(__name__)

DEFAULT_EXPLANATION = "Changes applied."
_EDITS_MARKER = '{"edits"'


@dataclass(slots=True, frozen=True)
class LineEdit:
    """Replace lines ``start`` through ``end`` (1-based, inclusive)."""

    start: int
    end: int
    replacement: str = ""

    @classmethod
    def from_value(cls, value: Any) -> "LineEdit | None":
        if not isinstance(value, Mapping):
            return None
        start = value.get("start")
        end = value.get("end")
        replacement = value.get("replacement")
        if not _is_index(start) or not _is_index(end) or not isinstance(replacement, str):
            return None
        return cls(start=int(start), end=int(end), replacement=replacement)


@dataclass(slots=True)
class EditResponse:
    """Structured reply produced when the assistant decides to modify a document."""

    edits: List[LineEdit] = field(default_factory=list)
    explanation: str = DEFAULT_EXPLANATION
    changes: List[FileChange] = field(default_factory=list)


def parse_edit_response(text: str) -> Optional[EditResponse]:
    """Return the edit payload embedded in ``text`` or ``None`` for prose replies.

    The whole reply is tried first; failing that, decoding starts at the first
    ``{"edits"`` marker so a stray preamble does not hide the payload.
    """

    payload = _decode_object(_strip_code_fence(text))
    if not _has_edits(payload):
        marker = text.find(_EDITS_MARKER)
        if marker < 0:
            return None
        payload = _decode_object(text[marker:])
        if not _has_edits(payload):
            return None

    edits = [edit for edit in (LineEdit.from_value(entry) for entry in payload["edits"]) if edit]
    explanation = payload.get("explanation")
    return EditResponse(
        edits=edits,
        explanation=explanation if isinstance(explanation, str) else DEFAULT_EXPLANATION,
        changes=coerce_changes(payload.get("changes")) or [],
    )


def apply_line_edits(text: str, edits: Sequence[LineEdit], *, newline: str = "\n") -> str:
    """Apply ``edits`` bottom-up so earlier line numbers remain valid.

    Ranges outside the document or with ``start > end`` are skipped. An empty
    replacement deletes the range.
    """

    lines = text.splitlines()
    for edit in sorted(edits, key=lambda item: item.start, reverse=True):
        if edit.start < 1 or edit.end < 1 or edit.start > edit.end or edit.end > len(lines):
            LOGGER.debug("Skipping out-of-range edit %s-%s", edit.start, edit.end)
            continue
        lines[edit.start - 1 : edit.end] = edit.replacement.splitlines()

    result = newline.join(lines)
    if text.endswith(("\n", "\r")) and not result.endswith(newline):
        result += newline
    return result


def apply_edits_to_file(path: Path | str, edits: Iterable[LineEdit]) -> str:
    """Rewrite ``path`` with ``edits`` applied, keeping its encoding and line endings."""

    target = Path(path)
    original, encoding = read_text_with_encoding(target, normalize_newlines=False)
    newline = "\r\n" if "\r\n" in original else "\n"
    updated = apply_line_edits(original, list(edits), newline=newline)
    write_text(target, updated, encoding=encoding)
    LOGGER.debug("Applied edits to %s", target)
    return updated


def _decode_object(text: str) -> Any:
    candidate = text.strip()
    if not candidate.startswith("{"):
        return None
    try:
        value, _ = json.JSONDecoder().raw_decode(candidate)
    except json.JSONDecodeError:
        return None
    return value


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    if not stripped.startswith("```"):
        return stripped
    body = stripped.split("\n", 1)[1] if "\n" in stripped else ""
    if body.rstrip().endswith("```"):
        body = body.rstrip()[:-3]
    return body


def _has_edits(payload: Any) -> bool:
    return isinstance(payload, Mapping) and isinstance(payload.get("edits"), list)


def _is_index(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


__all__ = [
    "DEFAULT_EXPLANATION",
    "EditResponse",
    "LineEdit",
    "apply_edits_to_file",
    "apply_line_edits",
    "parse_edit_response",
]
