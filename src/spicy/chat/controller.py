"""Session lifecycle controller for per-document streaming chat.

The controller owns every piece of mutable chat state: the active document,
its live :class:`MessageStore`, the session index, the active session id, the
per-document :class:`SessionCache`, and the set of in-flight requests. All
methods are expected to run on one event loop; concurrency only comes from
awaiting the backend and the session gateway.

Stream events are routed by the document a request was issued against. They
mutate the live store only while that document is active. Events arriving
after the user switched away are dropped: the cache keeps exactly the state
the document had when it was left, and a late response never appears in
another document's transcript.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
import uuid
from dataclasses import dataclass
from typing import (
    Any,
    AsyncIterable,
    Awaitable,
    Callable,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Union,
)

from ..services.history import SessionGateway
from ..utils.logging import chat_context
from ..utils.telemetry import TelemetryClient
from .assembler import StreamAssembler
from .events import StreamEvent
from .message_model import (
    ChatMessage,
    FileChatState,
    SessionData,
    SessionMeta,
    history_payload,
    to_chat_messages,
    to_stored_messages,
)
from .message_store import MessageStore
from .session_cache import SessionCache

LOGGER = logging.getLogger(__name__)

DEFAULT_TITLE = "New chat"
DEFAULT_TITLE_MAX_CHARS = 50

EventSource = AsyncIterable[Union[StreamEvent, Mapping[str, Any]]]
IdFactory = Callable[[str], str]


class ChatBackend(Protocol):
    """Streaming chat transport consumed by the controller.

    ``stream_chat`` may return the event stream directly or a coroutine that
    resolves to it; raising (or rejecting) before any event counts as a
    transport failure.
    """

    def stream_chat(
        self,
        message: str,
        document: str | None,
        history: Sequence[Mapping[str, str]],
    ) -> Union[EventSource, Awaitable[EventSource]]:
        ...


@dataclass(slots=True)
class PendingRequest:
    """Bookkeeping for one dispatched streaming request."""

    request_id: str
    document: str | None
    user_message_id: str
    placeholder_id: str


def default_id_factory(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


def derive_title(messages: Sequence[ChatMessage], max_chars: int = DEFAULT_TITLE_MAX_CHARS) -> str:
    """Title a transcript after its first user turn."""

    for message in messages:
        if message.role == "user":
            return message.content[:max_chars]
    return DEFAULT_TITLE


class ChatSessionController:
    """State machine governing which transcript is visible and when it persists."""

    def __init__(
        self,
        backend: ChatBackend,
        gateway: SessionGateway,
        *,
        cache: SessionCache | None = None,
        title_max_chars: int = DEFAULT_TITLE_MAX_CHARS,
        id_factory: IdFactory | None = None,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._backend = backend
        self._gateway = gateway
        self._cache = cache if cache is not None else SessionCache()
        self._title_max_chars = max(1, int(title_max_chars))
        self._new_id = id_factory or default_id_factory
        self._telemetry = telemetry or TelemetryClient(enabled=False)

        self._store = MessageStore()
        self._sessions: List[SessionMeta] = []
        self._active_session_id: Optional[str] = None
        self._active_document: Optional[str] = None
        self._pending: dict[str, PendingRequest] = {}
        self._selection_token = 0
        self._loading_token: Optional[int] = None

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def store(self) -> MessageStore:
        return self._store

    @property
    def cache(self) -> SessionCache:
        return self._cache

    @property
    def messages(self) -> List[ChatMessage]:
        return self._store.snapshot()

    @property
    def sessions(self) -> List[SessionMeta]:
        return list(self._sessions)

    @property
    def active_session_id(self) -> Optional[str]:
        return self._active_session_id

    @property
    def active_document(self) -> Optional[str]:
        return self._active_document

    @property
    def pending_requests(self) -> List[PendingRequest]:
        return list(self._pending.values())

    @property
    def is_loading(self) -> bool:
        """True while a request issued against the active document is in flight."""

        return any(
            request.document == self._active_document for request in self._pending.values()
        )

    @property
    def is_selecting(self) -> bool:
        """True while the active document's sessions are being fetched."""

        return self._loading_token is not None

    def state(self) -> FileChatState:
        return FileChatState(
            sessions=list(self._sessions),
            active_session_id=self._active_session_id,
            messages=self._store.snapshot(),
        )

    # ------------------------------------------------------------------
    # Document selection
    # ------------------------------------------------------------------

    async def select_document(self, document: str | None) -> None:
        """Make ``document`` the visible transcript owner.

        The state of the document being left is cached first. Cached documents
        are restored without touching the gateway; unseen documents load their
        most recent session, or start empty. Load failures degrade to an empty
        state rather than raising.
        """

        previous = self._active_document
        if document == previous and self._selection_token:
            return
        if previous is not None and previous != document and self._loading_token is None:
            self._cache.set(previous, self.state())

        self._selection_token += 1
        token = self._selection_token
        self._active_document = document
        self._loading_token = None

        if document is None:
            self._apply_state(FileChatState.empty())
            return

        cached = self._cache.get(document)
        if cached is not None:
            LOGGER.debug("Restored chat state for %s from cache", document)
            self._apply_state(cached)
            return

        self._loading_token = token
        self._apply_state(FileChatState.empty())
        loaded = await self._load_latest(document)
        if token != self._selection_token:
            LOGGER.debug("Discarding stale session load for %s", document)
            return
        self._loading_token = None
        self._apply_state(loaded)

    async def _load_latest(self, document: str) -> FileChatState:
        with chat_context(document=document):
            try:
                sessions = await self._gateway.list_sessions(document)
                if not sessions:
                    return FileChatState.empty()
                latest = sessions[0]
                data = await self._gateway.load_session(document, latest.id)
                return FileChatState(
                    sessions=list(sessions),
                    active_session_id=latest.id,
                    messages=to_chat_messages(data.messages),
                )
            except Exception as exc:
                LOGGER.warning("Failed to load chat sessions for %s: %s", document, exc)
                self._telemetry.track_event("chat.load_failed", document=document, error=exc)
                return FileChatState.empty()

    def _apply_state(self, state: FileChatState) -> None:
        self._sessions = list(state.sessions)
        self._active_session_id = state.active_session_id
        self._store.replace(state.messages)

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    async def send_message(self, content: str) -> str:
        """Submit ``content`` and stream the assistant reply.

        Returns the id of the assistant turn once the request has finished.
        Transport failures become a terminal ``Error: ...`` turn.
        """

        document = self._active_document
        user_message = ChatMessage.user(self._new_id("user"), content)
        placeholder_id = self._new_id("assistant")
        history = history_payload([*self._store.snapshot(), user_message])

        self._store.append(user_message)
        self._store.append(ChatMessage.placeholder(placeholder_id))

        request = PendingRequest(
            request_id=self._new_id("request"),
            document=document,
            user_message_id=user_message.id,
            placeholder_id=placeholder_id,
        )
        self._pending[request.request_id] = request
        assembler = StreamAssembler(lambda: self._store_for(document), placeholder_id)
        with chat_context(document=document, request_id=request.request_id):
            LOGGER.debug(
                "Dispatching chat request %s for %s with %d history message(s)",
                request.request_id,
                document,
                len(history),
            )

            try:
                stream = self._backend.stream_chat(content, document, history)
                if inspect.isawaitable(stream):
                    stream = await stream
                await assembler.consume(stream)
            except asyncio.CancelledError:
                assembler.fail("Request cancelled")
                self._pending.pop(request.request_id, None)
                raise
            except Exception as exc:
                LOGGER.warning("Chat request %s failed: %s", request.request_id, exc)
                self._telemetry.track_event(
                    "chat.stream_failed", document=document, request_id=request.request_id, error=exc
                )
                assembler.fail(exc)
            finally:
                self._pending.pop(request.request_id, None)

            await self._on_request_finished(request)
        return placeholder_id

    def _store_for(self, document: str | None) -> Optional[MessageStore]:
        if document != self._active_document:
            return None
        return self._store

    async def _on_request_finished(self, request: PendingRequest) -> None:
        if request.document is None:
            return
        if request.document != self._active_document:
            LOGGER.info(
                "Not persisting request %s: %s is no longer the active document",
                request.request_id,
                request.document,
            )
            return
        if not self._store:
            return
        await self._persist(request.document)

    async def _persist(self, document: str) -> bool:
        messages = self._store.snapshot()
        session_id = self._active_session_id
        if session_id is None:
            session_id = self._new_id("session")
            self._active_session_id = session_id

        session = SessionData(
            id=session_id,
            title=derive_title(messages, self._title_max_chars),
            messages=to_stored_messages(messages),
        )
        try:
            await self._gateway.save_session(document, session)
            sessions = await self._gateway.list_sessions(document)
        except Exception as exc:
            LOGGER.warning("Failed to persist session %s for %s: %s", session_id, document, exc)
            self._telemetry.track_event(
                "chat.persist_failed", document=document, session_id=session_id, error=exc
            )
            return False

        self._apply_sessions(document, sessions)
        return True

    def _apply_sessions(self, document: str, sessions: List[SessionMeta]) -> None:
        if document != self._active_document:
            LOGGER.debug("Skipping session index refresh for inactive document %s", document)
            return
        self._sessions = list(sessions)

    # ------------------------------------------------------------------
    # Session management
    # ------------------------------------------------------------------

    async def switch_session(self, session_id: str) -> bool:
        """Replace the transcript with a stored session of the active document."""

        document = self._active_document
        if document is None or session_id == self._active_session_id:
            return False
        token = self._selection_token
        try:
            data = await self._gateway.load_session(document, session_id)
            messages = to_chat_messages(data.messages)
        except Exception as exc:
            LOGGER.warning("Failed to load session %s for %s: %s", session_id, document, exc)
            self._telemetry.track_event(
                "chat.load_failed", document=document, session_id=session_id, error=exc
            )
            return False
        if token != self._selection_token:
            LOGGER.debug("Discarding session %s loaded after a document switch", session_id)
            return False
        self._active_session_id = session_id
        self._store.replace(messages)
        return True

    def new_session(self) -> None:
        """Start an unsaved conversation; the next exchange mints a session id."""

        self._active_session_id = None
        self._store.clear()

    async def delete_session(self, session_id: str) -> bool:
        """Delete a stored session of the active document and refresh the index."""

        document = self._active_document
        if document is None:
            return False
        try:
            await self._gateway.delete_session(document, session_id)
            sessions = await self._gateway.list_sessions(document)
        except Exception as exc:
            LOGGER.warning("Failed to delete session %s for %s: %s", session_id, document, exc)
            self._telemetry.track_event(
                "chat.delete_failed", document=document, session_id=session_id, error=exc
            )
            return False
        self._apply_sessions(document, sessions)
        if document == self._active_document and session_id == self._active_session_id:
            self.new_session()
        return True


__all__ = [
    "ChatBackend",
    "ChatSessionController",
    "DEFAULT_TITLE",
    "PendingRequest",
    "default_id_factory",
    "derive_title",
]
