"""OpenAI-compatible chat backend that streams typed events for one document."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import AsyncIterator, Callable, Dict, List, Mapping, Optional, Sequence

from openai import APIError, APIStatusError

from ..chat.events import StreamDone, StreamError, StreamEvent, TextDelta, ThinkingDelta
from ..services.settings import Settings
from ..utils.file_io import read_text
from .client import AIClient, ClientSettings, StreamInterruptedError
from .edits import apply_edits_to_file, parse_edit_response
from .prompts import format_document_context, system_prompt

LOGGER = logging.getLogger(__name__)

MISSING_API_KEY = "API key not set. Configure it with --set api_key=... or SPICY_API_KEY."
MISSING_WORKING_DIRECTORY = "No working directory set"

DocumentListener = Callable[[Path], None]


class OpenAIChatBackend:
    """Streams assistant replies and applies edit responses to the document on disk.

    The active document is sent as numbered lines ahead of the user's message.
    When the reply is an edit payload the line edits are written back to the
    file before the terminal ``done`` event is emitted.
    """

    def __init__(
        self,
        client: AIClient | None,
        working_directory: Path | str | None,
        *,
        temperature: float | None = 0.2,
        max_tokens: int | None = 16_000,
        on_document_changed: DocumentListener | None = None,
    ) -> None:
        self._client = client
        self._working_directory = Path(working_directory).expanduser() if working_directory else None
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._on_document_changed = on_document_changed

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        on_document_changed: DocumentListener | None = None,
    ) -> "OpenAIChatBackend":
        client: AIClient | None = None
        if settings.api_key:
            client = AIClient(
                ClientSettings(
                    base_url=settings.base_url,
                    api_key=settings.api_key,
                    model=settings.model,
                    request_timeout=settings.request_timeout,
                    max_retries=settings.max_retries,
                    retry_min_seconds=settings.retry_min_seconds,
                    retry_max_seconds=settings.retry_max_seconds,
                    debug_logging=settings.debug_logging,
                )
            )
        return cls(
            client,
            settings.working_directory,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            on_document_changed=on_document_changed,
        )

    @property
    def working_directory(self) -> Optional[Path]:
        return self._working_directory

    async def stream_chat(
        self,
        message: str,
        document: str | None,
        history: Sequence[Mapping[str, str]],
    ) -> AsyncIterator[StreamEvent]:
        if self._client is None:
            yield StreamError(MISSING_API_KEY)
            return
        if self._working_directory is None:
            yield StreamError(MISSING_WORKING_DIRECTORY)
            return

        user_content = message
        if document:
            try:
                text = await asyncio.to_thread(read_text, self._working_directory / document)
            except OSError as exc:
                yield StreamError(f"Failed to read file {document}: {exc}")
                return
            user_content = format_document_context(document, text) + message

        messages = self._build_messages(message, user_content, history)
        chunks: List[str] = []
        suppressed = False
        try:
            async for event in self._client.stream_chat(
                messages, temperature=self._temperature, max_tokens=self._max_tokens
            ):
                if not event.content:
                    continue
                if event.type == "reasoning.delta":
                    yield ThinkingDelta(event.content)
                elif event.type == "content.delta":
                    if not "".join(chunks).strip() and event.content.lstrip().startswith("{"):
                        suppressed = True
                    chunks.append(event.content)
                    if not suppressed:
                        yield TextDelta(event.content)
        except APIStatusError as exc:
            LOGGER.warning("Chat completion rejected (%s): %s", exc.status_code, exc.message)
            yield StreamError(f"API error ({exc.status_code}): {exc.message}")
            return
        except (APIError, StreamInterruptedError) as exc:
            LOGGER.warning("Chat completion failed: %s", exc)
            yield StreamError(f"API error: {exc}")
            return

        reply = "".join(chunks)
        edit = parse_edit_response(reply)
        if edit is None:
            # Suppressed JSON that turned out not to be an edit was never shown.
            yield StreamDone(explanation=reply if suppressed else None)
            return

        if document:
            target = self._working_directory / document
            try:
                await asyncio.to_thread(apply_edits_to_file, target, edit.edits)
            except OSError as exc:
                yield StreamError(f"Failed to write file: {exc}")
                return
            LOGGER.info("Applied %d edit(s) to %s", len(edit.edits), document)
            self._notify_document_changed(target)
        yield StreamDone(explanation=edit.explanation, changes=edit.changes)

    def _build_messages(
        self,
        message: str,
        user_content: str,
        history: Sequence[Mapping[str, str]],
    ) -> List[Dict[str, str]]:
        turns: List[Dict[str, str]] = []
        for entry in history:
            role = entry.get("role")
            content = entry.get("content")
            if isinstance(role, str) and isinstance(content, str):
                turns.append({"role": role, "content": content})
        # The outgoing user turn is already the tail of ``history``; swap in the
        # variant carrying the document listing.
        if turns and turns[-1]["role"] == "user" and turns[-1]["content"] == message:
            turns.pop()
        turns.append({"role": "user", "content": user_content})
        return [{"role": "system", "content": system_prompt()}, *turns]

    def _notify_document_changed(self, path: Path) -> None:
        if self._on_document_changed is None:
            return
        try:
            self._on_document_changed(path)
        except Exception:  # pragma: no cover - listener failures are logged only
            LOGGER.exception("Document change listener failed for %s", path)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()


__all__ = [
    "MISSING_API_KEY",
    "MISSING_WORKING_DIRECTORY",
    "OpenAIChatBackend",
]
