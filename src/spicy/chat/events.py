"""Typed stream events delivered for one in-flight chat request.

The wire format is a flat mapping tagged by ``type``::

    {"type": "thinking", "content": "..."}
    {"type": "text", "content": "..."}
    {"type": "done", "explanation": "...", "changes": [...]}
    {"type": "error", "message": "..."}

:func:`parse_stream_event` turns such mappings into the dataclass variants
below so consumers can dispatch on type instead of probing optional keys.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, List, Mapping, Optional, Union

from .message_model import FileChange, coerce_changes


class StreamEventError(ValueError):
    """Raised when a wire payload cannot be mapped onto a stream event."""


@dataclass(slots=True, frozen=True)
class ThinkingDelta:
    content: str = ""

    type: ClassVar[str] = "thinking"
    is_terminal: ClassVar[bool] = False


@dataclass(slots=True, frozen=True)
class TextDelta:
    content: str = ""

    type: ClassVar[str] = "text"
    is_terminal: ClassVar[bool] = False


@dataclass(slots=True, frozen=True)
class StreamDone:
    """Terminal success; ``explanation`` overrides streamed text when non-empty."""

    explanation: Optional[str] = None
    changes: Optional[List[FileChange]] = None

    type: ClassVar[str] = "done"
    is_terminal: ClassVar[bool] = True


@dataclass(slots=True, frozen=True)
class StreamError:
    message: Optional[str] = None

    type: ClassVar[str] = "error"
    is_terminal: ClassVar[bool] = True


StreamEvent = Union[ThinkingDelta, TextDelta, StreamDone, StreamError]


def parse_stream_event(payload: Mapping[str, Any] | StreamEvent) -> StreamEvent:
    """Convert a wire mapping into a typed stream event."""

    if isinstance(payload, (ThinkingDelta, TextDelta, StreamDone, StreamError)):
        return payload
    if not isinstance(payload, Mapping):
        raise StreamEventError(f"Stream event must be a mapping, got {type(payload).__name__}")

    event_type = payload.get("type")
    if event_type == "thinking":
        return ThinkingDelta(content=_text(payload.get("content")))
    if event_type == "text":
        return TextDelta(content=_text(payload.get("content")))
    if event_type == "done":
        explanation = payload.get("explanation")
        return StreamDone(
            explanation=explanation if isinstance(explanation, str) else None,
            changes=coerce_changes(payload.get("changes")),
        )
    if event_type == "error":
        message = payload.get("message")
        return StreamError(message=str(message) if message is not None else None)
    raise StreamEventError(f"Unknown stream event type: {event_type!r}")


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


__all__ = [
    "StreamDone",
    "StreamError",
    "StreamEvent",
    "StreamEventError",
    "TextDelta",
    "ThinkingDelta",
    "parse_stream_event",
]
