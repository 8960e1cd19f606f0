"""Failure telemetry for the chat core.

The controller never raises for load, stream, persist or delete failures; it
degrades and reports them here instead. Reports are counted per event name for
the lifetime of the client and, when a target file is configured, appended to
it as JSON lines.
"""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

__all__ = ["ChatFailure", "TelemetryClient", "describe_error"]


def describe_error(error: BaseException | str | None) -> str:
    """Render an exception as ``Type: message`` for a report."""

    if error is None:
        return ""
    if isinstance(error, BaseException):
        return f"{type(error).__name__}: {error}"
    return str(error)


@dataclass(slots=True, frozen=True)
class ChatFailure:
    """A degraded chat operation, keyed by document."""

    name: str
    document: Optional[str] = None
    error: str = ""
    context: Dict[str, str] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_json(self) -> str:
        payload: Dict[str, Any] = {
            "name": self.name,
            "timestamp": self.timestamp.isoformat(),
            "document": self.document,
            "error": self.error,
        }
        if self.context:
            payload["context"] = self.context
        return json.dumps(payload, ensure_ascii=False)


@dataclass(slots=True)
class TelemetryClient:
    """Collects :class:`ChatFailure` reports while ``enabled``.

    ``path`` is the JSONL file written by :meth:`flush`; without one, reports
    stay in memory until the client is discarded.
    """

    enabled: bool = False
    path: Path | None = None
    max_buffer: int = 32

    _buffer: list[ChatFailure] = field(default_factory=list, init=False, repr=False)
    _counts: Counter = field(default_factory=Counter, init=False, repr=False)

    def track_event(
        self,
        name: str,
        *,
        document: str | None = None,
        error: BaseException | str | None = None,
        **context: Any,
    ) -> None:
        if not self.enabled:
            return
        self._counts[name] += 1
        report = ChatFailure(
            name=name,
            document=document,
            error=describe_error(error),
            context={key: str(value) for key, value in context.items() if value is not None},
        )
        self._buffer.append(report)
        if self.path is not None and len(self._buffer) >= self.max_buffer:
            self.flush()

    def count(self, name: str) -> int:
        """Number of ``name`` reports since the client was created, flushed or not."""

        return self._counts[name]

    def pending_events(self) -> list[ChatFailure]:
        return list(self._buffer)

    def flush(self) -> Path | None:
        """Append buffered reports to ``path`` and clear the buffer."""

        if not self.enabled or not self._buffer or self.path is None:
            return None
        target = Path(self.path).expanduser()
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("a", encoding="utf-8") as handle:
            for report in self._buffer:
                handle.write(report.to_json())
                handle.write("\n")
        self._buffer.clear()
        return target
