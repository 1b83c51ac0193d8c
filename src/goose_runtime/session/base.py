"""
Session storage interface.

A session is a persisted conversation. The agent loop appends every
message as soon as it is produced and rewrites the whole history after a
compaction.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..llm.base import Message, utcnow

TITLE_MAX_LENGTH = 50


def derive_title(messages: list[Message]) -> str | None:
    """Title from the first user message, truncated to 50 characters."""
    for message in messages:
        if message.role == "user" and message.content.strip():
            text = message.content.strip().replace("\n", " ")
            if len(text) > TITLE_MAX_LENGTH:
                return text[:TITLE_MAX_LENGTH] + "..."
            return text
    return None


@dataclass
class AgentSession:
    """A stored conversation."""

    id: str
    model: str = ""
    system_prompt: str | None = None
    title: str | None = None
    messages: list[Message] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def display_title(self) -> str:
        return self.title or derive_title(self.messages) or "New conversation"

    def to_dict(self, include_messages: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "model": self.model,
            "system_prompt": self.system_prompt,
            "title": self.display_title,
            "message_count": len(self.messages),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
        if include_messages:
            data["messages"] = [m.to_dict() for m in self.messages]
        return data


class SessionStore(ABC):
    """Persistence for agent sessions.

    Methods raise :class:`~goose_runtime.errors.SessionNotFoundError` for
    unknown ids and :class:`~goose_runtime.errors.PersistenceError` for
    storage failures.
    """

    @abstractmethod
    async def create(
        self,
        model: str = "",
        system_prompt: str | None = None,
        title: str | None = None,
    ) -> AgentSession:
        pass

    @abstractmethod
    async def get(self, session_id: str) -> AgentSession:
        pass

    @abstractmethod
    async def append_message(self, session_id: str, message: Message) -> None:
        pass

    @abstractmethod
    async def clear(self, session_id: str) -> None:
        """Remove every message from a session, keeping the session itself."""
        pass

    @abstractmethod
    async def delete(self, session_id: str) -> None:
        pass

    @abstractmethod
    async def list_sessions(self) -> list[AgentSession]:
        """All sessions, most recently updated first."""
        pass

    async def replace_messages(self, session_id: str, messages: list[Message]) -> None:
        """Rewrite a session's history."""
        await self.clear(session_id)
        for message in messages:
            await self.append_message(session_id, message)

    async def close(self) -> None:
        pass
