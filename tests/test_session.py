"""
Tests for session storage.
"""

import asyncio

import pytest
import pytest_asyncio

from goose_runtime.errors import SessionNotFoundError
from goose_runtime.llm.base import Message, ToolCall
from goose_runtime.session import AgentSession, InMemorySessionStore, SQLSessionStore, derive_title


@pytest_asyncio.fixture(params=["memory", "sql"])
async def session_store(request, tmp_path):
    if request.param == "memory":
        store = InMemorySessionStore()
    else:
        store = await SQLSessionStore.from_url(f"sqlite+aiosqlite:///{tmp_path / 'sessions.db'}")
    yield store
    await store.close()


def test_derive_title():
    """Titles come from the first non-empty user message."""
    messages = [
        Message(role="system", content="rules"),
        Message(role="user", content="   "),
        Message(role="user", content="Plan my\ntrip to Rome"),
    ]

    assert derive_title(messages) == "Plan my trip to Rome"
    assert derive_title([Message(role="user", content="a" * 60)]) == "a" * 50 + "..."
    assert derive_title([]) is None


@pytest.mark.asyncio
async def test_create_and_get(session_store):
    """A new session is empty and retrievable."""
    session = await session_store.create(model="m1", system_prompt="be brief")

    loaded = await session_store.get(session.id)

    assert loaded.id == session.id
    assert loaded.model == "m1"
    assert loaded.system_prompt == "be brief"
    assert loaded.messages == []
    assert loaded.display_title == "New conversation"


@pytest.mark.asyncio
async def test_append_preserves_order_and_fields(session_store):
    """Messages come back in order with tool calls and metadata."""
    session = await session_store.create()
    call = ToolCall(id="c1", name="echo", arguments={"text": "hi"})

    await session_store.append_message(session.id, Message(role="user", content="Say hi"))
    await session_store.append_message(session.id, Message(role="assistant", content="", tool_calls=[call]))
    await session_store.append_message(
        session.id,
        Message(role="tool", content="echo: hi", tool_call_id="c1", name="echo", metadata={"is_error": False}),
    )

    loaded = await session_store.get(session.id)

    assert [m.role for m in loaded.messages] == ["user", "assistant", "tool"]
    assert loaded.messages[1].tool_calls[0].arguments == {"text": "hi"}
    assert loaded.messages[2].tool_call_id == "c1"
    assert loaded.messages[2].metadata == {"is_error": False}
    assert loaded.title == "Say hi"


@pytest.mark.asyncio
async def test_replace_messages(session_store):
    """Replacing the history drops the old messages."""
    session = await session_store.create()
    for i in range(4):
        await session_store.append_message(session.id, Message(role="user", content=f"m{i}"))

    await session_store.replace_messages(
        session.id,
        [Message(role="assistant", content="summary", metadata={"compaction_summary": True})],
    )
    await session_store.append_message(session.id, Message(role="user", content="next"))

    loaded = await session_store.get(session.id)
    assert [m.content for m in loaded.messages] == ["summary", "next"]
    assert loaded.messages[0].metadata["compaction_summary"] is True


@pytest.mark.asyncio
async def test_clear_keeps_session(session_store):
    """Clearing removes messages only."""
    session = await session_store.create(title="kept")
    await session_store.append_message(session.id, Message(role="user", content="hello"))

    await session_store.clear(session.id)

    loaded = await session_store.get(session.id)
    assert loaded.messages == []
    assert loaded.title == "kept"


@pytest.mark.asyncio
async def test_list_sessions_most_recent_first(session_store):
    """Listing is ordered by last update."""
    first = await session_store.create()
    await asyncio.sleep(0.01)
    second = await session_store.create()
    await asyncio.sleep(0.01)
    await session_store.append_message(first.id, Message(role="user", content="bump"))

    sessions = await session_store.list_sessions()

    assert [s.id for s in sessions] == [first.id, second.id]


@pytest.mark.asyncio
async def test_delete(session_store):
    """Deleted sessions are gone."""
    session = await session_store.create()
    await session_store.append_message(session.id, Message(role="user", content="bye"))

    await session_store.delete(session.id)

    with pytest.raises(SessionNotFoundError):
        await session_store.get(session.id)
    assert await session_store.list_sessions() == []


@pytest.mark.asyncio
async def test_unknown_session_raises(session_store):
    """Operations on unknown ids raise SessionNotFoundError."""
    with pytest.raises(SessionNotFoundError):
        await session_store.get("missing")
    with pytest.raises(SessionNotFoundError):
        await session_store.append_message("missing", Message(role="user", content="x"))
    with pytest.raises(SessionNotFoundError):
        await session_store.delete("missing")


@pytest.mark.asyncio
async def test_memory_store_returns_copies():
    """Mutating a returned session does not change the store."""
    store = InMemorySessionStore()
    session = await store.create()
    session.messages.append(Message(role="user", content="sneaky"))

    assert (await store.get(session.id)).messages == []


def test_session_to_dict():
    """Serialization can leave out messages."""
    session = AgentSession(id="s1", messages=[Message(role="user", content="Hello there")])

    summary = session.to_dict(include_messages=False)

    assert summary["title"] == "Hello there"
    assert summary["message_count"] == 1
    assert "messages" not in summary
    assert session.to_dict()["messages"][0]["content"] == "Hello there"
