"""Session persistence: in-memory and SQL stores."""

from .base import AgentSession, SessionStore, derive_title
from .memory import InMemorySessionStore
from .sql import SQLSessionStore

__all__ = [
    "AgentSession",
    "InMemorySessionStore",
    "SQLSessionStore",
    "SessionStore",
    "derive_title",
]
