"""
SQL session store backed by SQLAlchemy async sessions.
"""

from datetime import datetime, timezone

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from ..errors import PersistenceError, SessionNotFoundError
from ..llm.base import Message, ToolCall
from .base import AgentSession, SessionStore, derive_title
from .models import MessageRecord, SessionRecord, _utcnow, init_database

logger = structlog.get_logger()


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _to_message(record: MessageRecord) -> Message:
    return Message(
        role=record.role,  # type: ignore[arg-type]
        content=record.content,
        tool_calls=[ToolCall.from_dict(tc) for tc in record.tool_calls] if record.tool_calls else None,
        tool_call_id=record.tool_call_id,
        name=record.name,
        timestamp=_aware(record.created_at),
        metadata=dict(record.extra_data or {}),
    )


def _to_session(record: SessionRecord) -> AgentSession:
    return AgentSession(
        id=record.id,
        model=record.model or "",
        system_prompt=record.system_prompt,
        title=record.title,
        messages=[_to_message(m) for m in record.messages],
        created_at=_aware(record.created_at),
        updated_at=_aware(record.updated_at),
    )


def _to_record(session_id: str, position: int, message: Message) -> MessageRecord:
    return MessageRecord(
        session_id=session_id,
        position=position,
        role=message.role,
        content=message.content,
        tool_calls=[tc.to_dict() for tc in message.tool_calls] if message.tool_calls else None,
        tool_call_id=message.tool_call_id,
        name=message.name,
        extra_data=dict(message.metadata),
        created_at=message.timestamp,
    )


class SQLSessionStore(SessionStore):
    """Sessions and messages in a relational database."""

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    @classmethod
    async def from_url(cls, database_url: str) -> "SQLSessionStore":
        return cls(await init_database(database_url))

    async def _load(self, db: AsyncSession, session_id: str, with_messages: bool = False) -> SessionRecord:
        query = select(SessionRecord).where(SessionRecord.id == session_id)
        if with_messages:
            query = query.options(selectinload(SessionRecord.messages))
        record = (await db.execute(query)).scalar_one_or_none()
        if record is None:
            raise SessionNotFoundError(session_id)
        return record

    async def create(
        self,
        model: str = "",
        system_prompt: str | None = None,
        title: str | None = None,
    ) -> AgentSession:
        try:
            async with self.session_maker() as db:
                record = SessionRecord(model=model, system_prompt=system_prompt, title=title)
                db.add(record)
                await db.commit()
                logger.info("Created new session", session_id=record.id)
                return AgentSession(
                    id=record.id,
                    model=record.model,
                    system_prompt=record.system_prompt,
                    title=record.title,
                    created_at=_aware(record.created_at),
                    updated_at=_aware(record.updated_at),
                )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to create session: {e}") from e

    async def get(self, session_id: str) -> AgentSession:
        try:
            async with self.session_maker() as db:
                return _to_session(await self._load(db, session_id, with_messages=True))
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load session {session_id}: {e}") from e

    async def append_message(self, session_id: str, message: Message) -> None:
        try:
            async with self.session_maker() as db:
                record = await self._load(db, session_id)
                position = (
                    await db.execute(
                        select(func.count()).select_from(MessageRecord).where(
                            MessageRecord.session_id == session_id
                        )
                    )
                ).scalar_one()

                db.add(_to_record(session_id, position, message))
                if record.title is None and message.role == "user":
                    record.title = derive_title([message])
                record.updated_at = _utcnow()
                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save message for session {session_id}: {e}") from e

    async def replace_messages(self, session_id: str, messages: list[Message]) -> None:
        """Rewrite the history in a single transaction."""
        try:
            async with self.session_maker() as db:
                record = await self._load(db, session_id)
                await db.execute(delete(MessageRecord).where(MessageRecord.session_id == session_id))
                db.add_all(_to_record(session_id, i, m) for i, m in enumerate(messages))
                record.updated_at = _utcnow()
                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to rewrite session {session_id}: {e}") from e

    async def clear(self, session_id: str) -> None:
        await self.replace_messages(session_id, [])

    async def delete(self, session_id: str) -> None:
        try:
            async with self.session_maker() as db:
                await self._load(db, session_id)
                await db.execute(delete(MessageRecord).where(MessageRecord.session_id == session_id))
                await db.execute(delete(SessionRecord).where(SessionRecord.id == session_id))
                await db.commit()
                logger.info("Deleted session", session_id=session_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to delete session {session_id}: {e}") from e

    async def list_sessions(self) -> list[AgentSession]:
        try:
            async with self.session_maker() as db:
                result = await db.execute(
                    select(SessionRecord)
                    .options(selectinload(SessionRecord.messages))
                    .order_by(SessionRecord.updated_at.desc())
                )
                return [_to_session(r) for r in result.scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list sessions: {e}") from e

    async def close(self) -> None:
        engine = self.session_maker.kw.get("bind")
        if engine is not None:
            await engine.dispose()
