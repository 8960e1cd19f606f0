"""AI client, chat backend, and edit helpers."""

from .backend import OpenAIChatBackend
from .client import AIClient, AIStreamEvent, ClientSettings

__all__ = ["AIClient", "AIStreamEvent", "ClientSettings", "OpenAIChatBackend"]
