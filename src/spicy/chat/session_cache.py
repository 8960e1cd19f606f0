"""Per-document cache of chat state for instant document switching."""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Iterator

from .message_model import FileChatState

__all__ = ["SessionCache", "SessionCacheStats"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class SessionCacheStats:
    """Counters for cache operations.

    Attributes:
        hits: Lookups that found an entry.
        misses: Lookups for documents never stored.
        writes: Number of ``set`` calls.
        evictions: Entries dropped because the capacity was reached.
    """

    hits: int = 0
    misses: int = 0
    writes: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total


class SessionCache:
    """Maps document identity to the last observed :class:`FileChatState`.

    Entries live for the process lifetime unless ``capacity`` is set, in which
    case the least recently used document is evicted once the limit is hit.
    Stored states are shared, not copied: the controller relies on writing
    late stream mutations into the entry of a document that is not active.
    """

    def __init__(self, capacity: int | None = None) -> None:
        if capacity is not None and capacity <= 0:
            raise ValueError("capacity must be positive or None")
        self._capacity = capacity
        self._entries: OrderedDict[str, FileChatState] = OrderedDict()
        self._stats = SessionCacheStats()

    @property
    def capacity(self) -> int | None:
        return self._capacity

    @property
    def stats(self) -> SessionCacheStats:
        return self._stats

    def get(self, document: str) -> FileChatState | None:
        state = self._entries.get(document)
        if state is None:
            self._stats.misses += 1
            return None
        self._stats.hits += 1
        self._entries.move_to_end(document)
        return state

    def peek(self, document: str) -> FileChatState | None:
        """Return an entry without touching statistics or recency."""

        return self._entries.get(document)

    def set(self, document: str, state: FileChatState) -> None:
        self._entries[document] = state
        self._entries.move_to_end(document)
        self._stats.writes += 1
        if self._capacity is None:
            return
        while len(self._entries) > self._capacity:
            evicted, _ = self._entries.popitem(last=False)
            self._stats.evictions += 1
            LOGGER.debug("Evicted chat state for %s from session cache", evicted)

    def invalidate(self, document: str) -> bool:
        return self._entries.pop(document, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def documents(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, document: object) -> bool:
        return document in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))
