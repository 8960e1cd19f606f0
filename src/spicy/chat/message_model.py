"""Chat message and session data models."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Sequence

ChatRole = Literal["user", "assistant"]
_ROLES: tuple[str, ...] = ("user", "assistant")

StoredMessage = Dict[str, Any]


@dataclass(slots=True)
class FileChange:
    """Side-effect edit the assistant reports having made to a document."""

    filename: str
    description: str
    component: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        if self.component is not None:
            payload["component"] = self.component
        payload["filename"] = self.filename
        payload["description"] = self.description
        return payload

    @classmethod
    def from_value(cls, value: Any) -> "FileChange | None":
        """Coerce a wire mapping into a change, or ``None`` when incomplete."""

        if isinstance(value, FileChange):
            return value
        if not isinstance(value, Mapping):
            return None
        filename = value.get("filename")
        description = value.get("description")
        if not isinstance(filename, str) or not isinstance(description, str):
            return None
        component = value.get("component")
        return cls(
            filename=filename,
            description=description,
            component=component if isinstance(component, str) else None,
        )


def coerce_changes(value: Any) -> List[FileChange] | None:
    """Normalize an optional list of change payloads, dropping malformed rows."""

    if value is None:
        return None
    if not isinstance(value, Iterable) or isinstance(value, (str, bytes, Mapping)):
        return None
    changes: List[FileChange] = []
    for entry in value:
        change = FileChange.from_value(entry)
        if change is not None:
            changes.append(change)
    return changes


@dataclass(slots=True)
class ChatMessage:
    """One conversation turn in a document's transcript.

    ``is_streaming`` is true while the turn still receives deltas and
    ``is_loading`` is a presentational hint; neither is ever persisted.
    """

    id: str
    role: ChatRole
    content: str = ""
    thinking: Optional[str] = None
    changes: Optional[List[FileChange]] = None
    is_streaming: bool = False
    is_loading: bool = False

    @classmethod
    def user(cls, message_id: str, content: str) -> "ChatMessage":
        return cls(id=message_id, role="user", content=content)

    @classmethod
    def placeholder(cls, message_id: str) -> "ChatMessage":
        """Return an empty assistant turn awaiting stream events."""

        return cls(id=message_id, role="assistant", content="", thinking="", is_streaming=True)

    def evolve(self, **changes: Any) -> "ChatMessage":
        return replace(self, **changes)


@dataclass(slots=True)
class SessionMeta:
    """Index row describing one stored conversation of a document."""

    id: str
    title: str
    created_at: str
    updated_at: str
    message_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "message_count": self.message_count,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "SessionMeta":
        return cls(
            id=str(payload["id"]),
            title=str(payload.get("title") or ""),
            created_at=str(payload.get("created_at") or ""),
            updated_at=str(payload.get("updated_at") or ""),
            message_count=int(payload.get("message_count") or 0),
        )


@dataclass(slots=True)
class SessionData:
    """Full transcript of a stored session."""

    id: str
    title: str
    messages: List[StoredMessage] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "messages": [dict(message) for message in self.messages],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "SessionData":
        messages = payload.get("messages") or []
        return cls(
            id=str(payload["id"]),
            title=str(payload.get("title") or ""),
            messages=[dict(message) for message in messages],
        )


@dataclass(slots=True)
class FileChatState:
    """Snapshot of one document's chat state, used as the cache unit."""

    sessions: List[SessionMeta] = field(default_factory=list)
    active_session_id: Optional[str] = None
    messages: List[ChatMessage] = field(default_factory=list)

    @classmethod
    def empty(cls) -> "FileChatState":
        return cls()

    def copy(self) -> "FileChatState":
        return FileChatState(
            sessions=list(self.sessions),
            active_session_id=self.active_session_id,
            messages=list(self.messages),
        )


def to_stored_messages(messages: Sequence[ChatMessage]) -> List[StoredMessage]:
    """Strip transient fields and omit empty optional ones."""

    stored: List[StoredMessage] = []
    for message in messages:
        entry: StoredMessage = {
            "id": message.id,
            "role": message.role,
            "content": message.content,
        }
        if message.thinking:
            entry["thinking"] = message.thinking
        if message.changes:
            entry["changes"] = [change.to_dict() for change in message.changes]
        stored.append(entry)
    return stored


def to_chat_messages(stored: Iterable[Mapping[str, Any]]) -> List[ChatMessage]:
    """Rehydrate stored messages as terminal chat turns."""

    messages: List[ChatMessage] = []
    for entry in stored:
        role = entry.get("role")
        if role not in _ROLES:
            raise ValueError(f"Unsupported chat role: {role!r}")
        thinking = entry.get("thinking")
        messages.append(
            ChatMessage(
                id=str(entry["id"]),
                role=role,  # type: ignore[arg-type]
                content=str(entry.get("content") or ""),
                thinking=thinking if isinstance(thinking, str) and thinking else None,
                changes=coerce_changes(entry.get("changes")) or None,
            )
        )
    return messages


def history_payload(messages: Sequence[ChatMessage]) -> List[Dict[str, str]]:
    """Reduce a transcript to the ``{role, content}`` pairs sent upstream."""

    return [{"role": message.role, "content": message.content} for message in messages]


__all__ = [
    "ChatRole",
    "ChatMessage",
    "FileChange",
    "FileChatState",
    "SessionData",
    "SessionMeta",
    "StoredMessage",
    "coerce_changes",
    "history_payload",
    "to_chat_messages",
    "to_stored_messages",
]
