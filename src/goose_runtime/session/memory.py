"""
In-process session store.
"""

import asyncio
import copy
import uuid

from ..errors import SessionNotFoundError
from ..llm.base import Message, utcnow
from .base import AgentSession, SessionStore, derive_title


class InMemorySessionStore(SessionStore):
    """Keeps sessions in a dict. Returned sessions are copies."""

    def __init__(self):
        self._sessions: dict[str, AgentSession] = {}
        self._recency: dict[str, int] = {}
        self._clock = 0
        self._lock = asyncio.Lock()

    def _touch(self, session: AgentSession) -> None:
        self._clock += 1
        self._recency[session.id] = self._clock
        session.updated_at = utcnow()

    def _require(self, session_id: str) -> AgentSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def create(
        self,
        model: str = "",
        system_prompt: str | None = None,
        title: str | None = None,
    ) -> AgentSession:
        session = AgentSession(
            id=str(uuid.uuid4()),
            model=model,
            system_prompt=system_prompt,
            title=title,
        )
        async with self._lock:
            self._sessions[session.id] = session
            self._touch(session)
            return copy.deepcopy(session)

    async def get(self, session_id: str) -> AgentSession:
        async with self._lock:
            return copy.deepcopy(self._require(session_id))

    async def append_message(self, session_id: str, message: Message) -> None:
        async with self._lock:
            session = self._require(session_id)
            session.messages.append(copy.deepcopy(message))
            if session.title is None:
                session.title = derive_title(session.messages)
            self._touch(session)

    async def clear(self, session_id: str) -> None:
        async with self._lock:
            session = self._require(session_id)
            session.messages.clear()
            self._touch(session)

    async def delete(self, session_id: str) -> None:
        async with self._lock:
            self._require(session_id)
            del self._sessions[session_id]
            self._recency.pop(session_id, None)

    async def list_sessions(self) -> list[AgentSession]:
        async with self._lock:
            ordered = sorted(
                self._sessions.values(),
                key=lambda s: self._recency.get(s.id, 0),
                reverse=True,
            )
            return copy.deepcopy(ordered)
