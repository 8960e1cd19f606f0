"""Service layer helpers (session history, settings)."""

from .history import FileSessionGateway, HistoryError, MemorySessionGateway, SessionGateway

__all__ = [
    "FileSessionGateway",
    "HistoryError",
    "MemorySessionGateway",
    "SessionGateway",
]
