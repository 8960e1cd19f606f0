"""Shared test helpers and stub classes.

Import from here instead of duplicating fakes in individual test files::

    from tests.helpers import RecordingGateway, ScriptedBackend, Script
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence

from spicy.chat.events import StreamDone, StreamEvent
from spicy.chat.message_model import SessionData, SessionMeta
from spicy.services.history import HistoryError, MemorySessionGateway


@dataclass
class Script:
    """Events one backend call delivers, with optional pause and failure points."""

    events: List[StreamEvent | Mapping[str, Any]] = field(default_factory=lambda: [StreamDone()])
    pause_before: Optional[int] = None
    error: Optional[BaseException] = None
    raise_on_call: Optional[BaseException] = None
    paused: asyncio.Event = field(default_factory=asyncio.Event)
    resume: asyncio.Event = field(default_factory=asyncio.Event)


@dataclass
class BackendCall:
    message: str
    document: str | None
    history: List[Dict[str, str]]


class ScriptedBackend:
    """Chat backend stub replaying queued scripts in call order."""

    def __init__(self, *scripts: Script) -> None:
        self._scripts = list(scripts)
        self.calls: List[BackendCall] = []

    def queue(self, script: Script) -> Script:
        self._scripts.append(script)
        return script

    def stream_chat(
        self,
        message: str,
        document: str | None,
        history: Sequence[Mapping[str, str]],
    ) -> AsyncIterator[StreamEvent | Mapping[str, Any]]:
        self.calls.append(BackendCall(message, document, [dict(entry) for entry in history]))
        script = self._scripts.pop(0) if self._scripts else Script()
        if script.raise_on_call is not None:
            raise script.raise_on_call
        return self._run(script)

    async def _run(self, script: Script) -> AsyncIterator[StreamEvent | Mapping[str, Any]]:
        for index, event in enumerate(script.events):
            if script.pause_before == index:
                script.paused.set()
                await script.resume.wait()
            yield event
        if script.error is not None:
            raise script.error


class RecordingGateway(MemorySessionGateway):
    """In-memory gateway that records calls and can fail or stall on demand."""

    def __init__(self) -> None:
        super().__init__()
        self.saves: List[tuple[str, SessionData]] = []
        self.list_calls: List[str] = []
        self.load_calls: List[tuple[str, str]] = []
        self.fail_save = False
        self.fail_list = False
        self.fail_load = False
        self.list_gates: Dict[str, asyncio.Event] = {}

    async def save_session(self, document: str, session: SessionData) -> None:
        if self.fail_save:
            raise HistoryError("disk full")
        await super().save_session(document, session)
        self.saves.append((document, session))

    async def list_sessions(self, document: str) -> List[SessionMeta]:
        self.list_calls.append(document)
        gate = self.list_gates.get(document)
        if gate is not None:
            await gate.wait()
        if self.fail_list:
            raise HistoryError("index unavailable")
        return await super().list_sessions(document)

    async def load_session(self, document: str, session_id: str) -> SessionData:
        self.load_calls.append((document, session_id))
        if self.fail_load:
            raise HistoryError("session unreadable")
        return await super().load_session(document, session_id)


def counting_ids() -> Any:
    """Deterministic id factory producing ``<prefix>-<n>``."""

    counter = {"value": 0}

    def _factory(prefix: str) -> str:
        counter["value"] += 1
        return f"{prefix}-{counter['value']}"

    return _factory
