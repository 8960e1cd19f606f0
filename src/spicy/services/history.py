"""Per-document chat session persistence.

Sessions for a document live under ``<working dir>/.spicy/chats/<document>/``:
``sessions.json`` holds the index and every transcript is stored as
``<session id>.json``. Optional message fields (``thinking``, ``changes``) are
written only when present so that save/load round-trips preserve which keys
exist.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Mapping, Protocol, runtime_checkable

import jsonschema

from ..chat.message_model import SessionData, SessionMeta
from ..utils.file_io import write_text

__all__ = [
    "HistoryError",
    "SessionGateway",
    "FileSessionGateway",
    "MemorySessionGateway",
    "SESSION_SCHEMA",
    "sanitize_document_name",
]

LOGGER = logging.getLogger(__name__)
_DATA_DIRNAME = ".spicy"
_CHATS_DIRNAME = "chats"
_INDEX_FILENAME = "sessions.json"
_UNSAFE_CHARS = frozenset('/\\:*?"<>| ')

SESSION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["id", "title", "messages"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "title": {"type": "string"},
        "messages": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "role", "content"],
                "properties": {
                    "id": {"type": "string"},
                    "role": {"enum": ["user", "assistant"]},
                    "content": {"type": "string"},
                    "thinking": {"type": "string"},
                    "changes": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "required": ["filename", "description"],
                            "properties": {
                                "component": {"type": ["string", "null"]},
                                "filename": {"type": "string"},
                                "description": {"type": "string"},
                            },
                        },
                    },
                },
            },
        },
    },
}


class HistoryError(RuntimeError):
    """Raised when a session cannot be read, written, or validated."""


@runtime_checkable
class SessionGateway(Protocol):
    """Boundary calls the chat controller issues against durable storage."""

    async def save_session(self, document: str, session: SessionData) -> None:
        ...

    async def list_sessions(self, document: str) -> List[SessionMeta]:
        """Return the document's sessions, most recently updated first."""
        ...

    async def load_session(self, document: str, session_id: str) -> SessionData:
        ...

    async def delete_session(self, document: str, session_id: str) -> None:
        ...


def sanitize_document_name(name: str) -> str:
    """Map a document identity onto a single safe directory name."""

    return "".join("_" if char in _UNSAFE_CHARS else char for char in name)


def validate_session_payload(payload: Any) -> SessionData:
    try:
        jsonschema.validate(instance=payload, schema=SESSION_SCHEMA)
    except jsonschema.ValidationError as exc:
        raise HistoryError(f"Invalid session payload: {exc.message}") from exc
    return SessionData.from_dict(payload)


def _timestamp_now() -> str:
    return str(int(time.time() * 1000))


def _sorted_newest_first(sessions: List[SessionMeta]) -> List[SessionMeta]:
    return sorted(sessions, key=lambda meta: _sort_key(meta.updated_at), reverse=True)


def _sort_key(value: str) -> tuple[int, str]:
    # Millisecond stamps of different lengths must not compare lexically.
    try:
        return (int(value), value)
    except (TypeError, ValueError):
        return (-1, value)


def _upsert_meta(sessions: List[SessionMeta], session: SessionData, now: str) -> List[SessionMeta]:
    for existing in sessions:
        if existing.id == session.id:
            existing.title = session.title
            existing.updated_at = now
            existing.message_count = len(session.messages)
            return sessions
    sessions.insert(
        0,
        SessionMeta(
            id=session.id,
            title=session.title,
            created_at=now,
            updated_at=now,
            message_count=len(session.messages),
        ),
    )
    return sessions


class FileSessionGateway:
    """JSON-file backed :class:`SessionGateway` rooted at a working directory."""

    def __init__(self, working_directory: Path | str) -> None:
        self._root = Path(working_directory).expanduser()

    @property
    def root(self) -> Path:
        return self._root

    def chats_dir(self, document: str) -> Path:
        return self._root / _DATA_DIRNAME / _CHATS_DIRNAME / sanitize_document_name(document)

    # ------------------------------------------------------------------
    # Async gateway surface
    # ------------------------------------------------------------------

    async def save_session(self, document: str, session: SessionData) -> None:
        await asyncio.to_thread(self.save_session_sync, document, session)

    async def list_sessions(self, document: str) -> List[SessionMeta]:
        return await asyncio.to_thread(self.list_sessions_sync, document)

    async def load_session(self, document: str, session_id: str) -> SessionData:
        return await asyncio.to_thread(self.load_session_sync, document, session_id)

    async def delete_session(self, document: str, session_id: str) -> None:
        await asyncio.to_thread(self.delete_session_sync, document, session_id)

    # ------------------------------------------------------------------
    # Blocking implementations
    # ------------------------------------------------------------------

    def save_session_sync(self, document: str, session: SessionData) -> None:
        payload = session.to_dict()
        validate_session_payload(payload)
        chat_dir = self.chats_dir(document)
        try:
            write_text(self._session_path(chat_dir, session.id), json.dumps(payload, indent=2))
            index = _upsert_meta(self._read_index(chat_dir), session, _timestamp_now())
            self._write_index(chat_dir, index)
        except OSError as exc:
            raise HistoryError(f"Failed to write session {session.id}: {exc}") from exc
        LOGGER.debug(
            "Saved session %s for %s (%d message(s))",
            session.id,
            document,
            len(session.messages),
        )

    def list_sessions_sync(self, document: str) -> List[SessionMeta]:
        return _sorted_newest_first(self._read_index(self.chats_dir(document)))

    def load_session_sync(self, document: str, session_id: str) -> SessionData:
        path = self._session_path(self.chats_dir(document), session_id)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise HistoryError(f"Failed to read session: {exc}") from exc
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise HistoryError(f"Failed to parse session: {exc}") from exc
        return validate_session_payload(payload)

    def delete_session_sync(self, document: str, session_id: str) -> None:
        chat_dir = self.chats_dir(document)
        path = self._session_path(chat_dir, session_id)
        try:
            path.unlink(missing_ok=True)
            index = [meta for meta in self._read_index(chat_dir) if meta.id != session_id]
            self._write_index(chat_dir, index)
        except OSError as exc:
            raise HistoryError(f"Failed to delete session {session_id}: {exc}") from exc

    # ------------------------------------------------------------------
    # Index helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _session_path(chat_dir: Path, session_id: str) -> Path:
        if not session_id or Path(session_id).name != session_id:
            raise HistoryError(f"Invalid session id: {session_id!r}")
        return chat_dir / f"{session_id}.json"

    def _read_index(self, chat_dir: Path) -> List[SessionMeta]:
        index_path = chat_dir / _INDEX_FILENAME
        if not index_path.exists():
            return []
        try:
            data = json.loads(index_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.warning("Session index %s is unreadable: %s", index_path, exc)
            return []
        entries = data.get("sessions") if isinstance(data, Mapping) else None
        if not isinstance(entries, list):
            return []
        sessions: List[SessionMeta] = []
        for entry in entries:
            if not isinstance(entry, Mapping) or "id" not in entry:
                continue
            try:
                sessions.append(SessionMeta.from_dict(entry))
            except (TypeError, ValueError):
                LOGGER.debug("Skipping malformed index entry in %s: %r", index_path, entry)
        return sessions

    def _write_index(self, chat_dir: Path, sessions: List[SessionMeta]) -> None:
        body = json.dumps({"sessions": [meta.to_dict() for meta in sessions]}, indent=2)
        write_text(chat_dir / _INDEX_FILENAME, body)


class MemorySessionGateway:
    """In-process :class:`SessionGateway` with the file gateway's semantics."""

    def __init__(self) -> None:
        self._sessions: Dict[str, Dict[str, SessionData]] = {}
        self._index: Dict[str, List[SessionMeta]] = {}
        self._clock = 0

    async def save_session(self, document: str, session: SessionData) -> None:
        validate_session_payload(session.to_dict())
        stored = SessionData.from_dict(session.to_dict())
        self._sessions.setdefault(document, {})[session.id] = stored
        self._index[document] = _upsert_meta(self._index.get(document, []), stored, self._tick())

    async def list_sessions(self, document: str) -> List[SessionMeta]:
        return [
            SessionMeta.from_dict(meta.to_dict())
            for meta in _sorted_newest_first(self._index.get(document, []))
        ]

    async def load_session(self, document: str, session_id: str) -> SessionData:
        try:
            stored = self._sessions[document][session_id]
        except KeyError as exc:
            raise HistoryError(f"Unknown session {session_id!r} for {document!r}") from exc
        return SessionData.from_dict(stored.to_dict())

    async def delete_session(self, document: str, session_id: str) -> None:
        self._sessions.get(document, {}).pop(session_id, None)
        self._index[document] = [
            meta for meta in self._index.get(document, []) if meta.id != session_id
        ]

    def _tick(self) -> str:
        # Monotonic stamps keep ordering stable within the same millisecond.
        self._clock = max(self._clock + 1, int(time.time() * 1000))
        return str(self._clock)
