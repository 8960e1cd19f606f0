"""Logging setup for Spicy.

Every record carries the chat document and request it was emitted for, so the
interleaved output of overlapping requests can be told apart in the log file.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Iterator, Optional

__all__ = ["ChatContextFilter", "chat_context", "setup_logging"]

_DEFAULT_LOG_DIR = Path.home() / ".spicy" / "logs"
_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(document)s %(request_id)s | %(message)s"
_QUIET_LOGGERS = ("asyncio", "httpx", "httpcore", "openai")
_UNSET = "-"

_document: ContextVar[Optional[str]] = ContextVar("spicy_log_document", default=None)
_request_id: ContextVar[Optional[str]] = ContextVar("spicy_log_request_id", default=None)


class ChatContextFilter(logging.Filter):
    """Stamps ``document`` and ``request_id`` onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.document = _document.get() or _UNSET
        record.request_id = _request_id.get() or _UNSET
        return True


@contextmanager
def chat_context(*, document: str | None = None, request_id: str | None = None) -> Iterator[None]:
    """Tag records logged inside the block with ``document`` and ``request_id``.

    The values live in context variables, so each asyncio task sees its own.
    """

    document_token = _document.set(document)
    request_token = _request_id.set(request_id)
    try:
        yield
    finally:
        _request_id.reset(request_token)
        _document.reset(document_token)


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Send root logging to ``<log_dir>/spicy.log`` and, optionally, stderr.

    ``log_dir`` defaults to ``SPICY_LOG_DIR`` or ``~/.spicy/logs``. Repeated
    calls are no-ops unless ``force`` is set.
    """

    log_path = Path(log_dir or os.environ.get("SPICY_LOG_DIR") or _DEFAULT_LOG_DIR).expanduser() / "spicy.log"
    root = logging.getLogger()
    if not force and any(
        getattr(handler, "baseFilename", None) == os.path.abspath(log_path) for handler in root.handlers
    ):
        return log_path

    log_path.parent.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(fmt=_LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    context_filter = ChatContextFilter()

    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    ]
    if console:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(context_filter)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)

    quiet_level = max(level, logging.WARNING)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)
    return log_path
