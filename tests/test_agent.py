"""
Tests for the agent loop.
"""

import pytest

from conftest import ScriptedLLM, text_turn, tool_turn
from goose_runtime.agent import (
    AgentContext,
    AgentLoop,
    DoneEvent,
    ErrorEvent,
    HistoryReplacedEvent,
    MessageEvent,
    SystemNotificationEvent,
    ThinkingEvent,
    ToolCallEvent,
    ToolResultEvent,
)
from goose_runtime.agent.loop import build_system_prompt
from goose_runtime.config import AgentConfig, GooseMode
from goose_runtime.errors import PersistenceError, ProviderError
from goose_runtime.extensions import (
    Extension,
    ExtensionManager,
    ExtensionPhase,
    ExtensionResult,
    ToolUsageMonitorExtension,
)
from goose_runtime.hooks import HookPoint
from goose_runtime.llm.base import Message, ToolDefinition
from goose_runtime.session import InMemorySessionStore


async def run_turn(loop, context, store, session_id, text):
    session = await store.get(session_id)
    return [event async for event in loop.run(context, session, text)]


def visible(events):
    """Drop thinking events and streamed fragments."""
    return [
        e for e in events
        if not isinstance(e, ThinkingEvent) and not (isinstance(e, MessageEvent) and e.partial)
    ]


def make_context(**overrides) -> AgentContext:
    overrides.setdefault("enable_extensions", False)
    return AgentContext("session-1", config=AgentConfig(**overrides))


@pytest.mark.asyncio
async def test_chat_mode_single_answer(store, dispatcher):
    """Chat mode stops after the first answer without tools."""
    provider = ScriptedLLM([text_turn("Hello there!")] * 3)
    loop = AgentLoop(provider, store, dispatcher)
    session = await store.create(model="scripted-model")
    context = make_context(max_iterations=3, goose_mode=GooseMode.CHAT)

    events = visible(await run_turn(loop, context, store, session.id, "Hi"))

    assert [type(e) for e in events] == [MessageEvent, MessageEvent, DoneEvent]
    assert events[0].message.role == "user"
    assert events[1].message.role == "assistant"
    assert events[1].message.content == "Hello there!"
    assert context.current_iteration == 1
    assert len(provider.requests) == 1


@pytest.mark.asyncio
async def test_streamed_fragments_are_partial_messages(store, dispatcher):
    """Each non-empty text fragment is forwarded as a partial message."""
    provider = ScriptedLLM([text_turn("abcdef")])
    loop = AgentLoop(provider, store, dispatcher)
    session = await store.create()

    events = await run_turn(loop, make_context(goose_mode=GooseMode.CHAT), store, session.id, "Hi")

    partials = [e.message.content for e in events if isinstance(e, MessageEvent) and e.partial]
    assert partials == ["abc", "def"]
    assert any(isinstance(e, ThinkingEvent) for e in events)


@pytest.mark.asyncio
async def test_agent_mode_stops_after_consecutive_answers_without_tools(store, dispatcher):
    """Agent mode keeps going through tool calls and stops on the no-tool streak."""
    provider = ScriptedLLM([
        tool_turn("echo", {"text": "one"}, "call_1"),
        text_turn("Checked one."),
        tool_turn("echo", {"text": "two"}, "call_2"),
        text_turn("Checked two."),
        text_turn("All done."),
        text_turn("Should never be requested."),
    ])
    loop = AgentLoop(provider, store, dispatcher)
    session = await store.create()
    context = make_context(goose_mode=GooseMode.AGENT, max_turns_without_tools=2)

    events = visible(await run_turn(loop, context, store, session.id, "Echo twice"))

    assert len(provider.requests) == 5
    results = [e for e in events if isinstance(e, ToolResultEvent)]
    assert [r.output for r in results] == [["echo: one"], ["echo: two"]]

    assert isinstance(events[-1], DoneEvent)
    ask = events[-2]
    assert isinstance(ask, MessageEvent)
    assert ask.message.content == "I've gone 2 turns without using any tools. Should I continue?"
    assert not any(isinstance(e, ErrorEvent) for e in events)


@pytest.mark.asyncio
async def test_compaction_before_first_model_call(store, dispatcher):
    """An over-budget conversation is replaced before the model is called."""
    session = await store.create()
    for i in range(15):
        role = "user" if i % 2 == 0 else "assistant"
        await store.append_message(session.id, Message(role=role, content=f"message number {i}"))

    provider = ScriptedLLM([text_turn("Noted.")])
    loop = AgentLoop(provider, store, dispatcher, context_limit=10)
    context = make_context(goose_mode=GooseMode.CHAT, compact_threshold=0.1)

    events = await run_turn(loop, context, store, session.id, "What did we talk about?")

    replaced = [i for i, e in enumerate(events) if isinstance(e, HistoryReplacedEvent)]
    first_thinking = next(i for i, e in enumerate(events) if isinstance(e, ThinkingEvent))
    assert len(replaced) == 1
    assert replaced[0] < first_thinking

    history = events[replaced[0]].messages
    assert len(history) <= 11
    assert len(provider.requests[0].messages) == len(history)
    assert history[-1].content == "What did we talk about?"

    notices = [e for e in events if isinstance(e, SystemNotificationEvent)]
    assert len(notices) == 2

    stored = await store.get(session.id)
    assert len(stored.messages) == len(history) + 1


@pytest.mark.asyncio
async def test_iteration_limit(store, dispatcher):
    """A model that always calls tools is stopped by max_iterations."""
    provider = ScriptedLLM([tool_turn("echo", {"text": str(i)}, f"call_{i}") for i in range(10)])
    loop = AgentLoop(provider, store, dispatcher)
    session = await store.create()
    context = make_context(max_iterations=3)

    events = await run_turn(loop, context, store, session.id, "Loop forever")

    errors = [e for e in events if isinstance(e, ErrorEvent)]
    assert len(errors) == 1
    assert errors[0].message == "Maximum iterations reached"
    assert events[-1] is errors[0]
    assert not any(isinstance(e, DoneEvent) for e in events)
    assert len(provider.requests) == 3


@pytest.mark.asyncio
async def test_provider_error_ends_turn(store, dispatcher):
    """A provider failure becomes a terminal Error event."""
    provider = ScriptedLLM([ProviderError("rate limited", status_code=429)])
    loop = AgentLoop(provider, store, dispatcher)
    session = await store.create()

    events = await run_turn(loop, make_context(), store, session.id, "Hi")

    assert isinstance(events[-1], ErrorEvent)
    assert events[-1].message == "Provider error: rate limited"
    assert not any(isinstance(e, DoneEvent) for e in events)


class FailingAppendStore(InMemorySessionStore):
    async def append_message(self, session_id, message):
        raise PersistenceError("disk full")


@pytest.mark.asyncio
async def test_persistence_failure_is_reported_but_not_fatal(dispatcher):
    """Failed saves surface as Error events while the turn completes."""
    store = FailingAppendStore()
    provider = ScriptedLLM([text_turn("Still here.")])
    loop = AgentLoop(provider, store, dispatcher)
    session = await store.create()

    events = visible(await run_turn(loop, make_context(goose_mode=GooseMode.CHAT), store, session.id, "Hi"))

    errors = [e for e in events if isinstance(e, ErrorEvent)]
    assert len(errors) == 2
    assert all(e.message == "Failed to save message: disk full" for e in errors)
    assert isinstance(events[-1], DoneEvent)


@pytest.mark.asyncio
async def test_unknown_tool_is_reported_to_model(store, dispatcher):
    """An unresolvable tool name comes back as tool output, not a crash."""
    provider = ScriptedLLM([tool_turn("does_not_exist"), text_turn("Sorry.")])
    loop = AgentLoop(provider, store, dispatcher)
    session = await store.create()

    events = await run_turn(loop, make_context(goose_mode=GooseMode.CHAT), store, session.id, "Hi")

    result = next(e for e in events if isinstance(e, ToolResultEvent))
    assert result.is_error
    assert result.output == ["Error: Unknown tool: does_not_exist"]

    tool_message = provider.requests[1].messages[-1]
    assert tool_message.role == "tool"
    assert tool_message.content == "Error: Unknown tool: does_not_exist"
    assert isinstance(events[-1], DoneEvent)


@pytest.mark.asyncio
async def test_failing_builtin_tool_is_tool_output(store, dispatcher):
    """A built-in tool that raises is described to the model."""
    provider = ScriptedLLM([tool_turn("broken"), text_turn("It broke.")])
    loop = AgentLoop(provider, store, dispatcher)
    session = await store.create()

    events = await run_turn(loop, make_context(goose_mode=GooseMode.CHAT), store, session.id, "Hi")

    result = next(e for e in events if isinstance(e, ToolResultEvent))
    assert result.is_error
    assert result.output[0] == "Tool 'broken' failed: boom"
    assert isinstance(events[-1], DoneEvent)


@pytest.mark.asyncio
async def test_fenced_tool_call_in_text(store, dispatcher):
    """Models without native tool calls can use fenced tool_call blocks."""
    block = 'Let me check.\n```tool_call\n{"name": "echo", "arguments": {"text": "hi"}}\n```'
    provider = ScriptedLLM([text_turn(block), text_turn("Echoed.")])
    loop = AgentLoop(provider, store, dispatcher)
    session = await store.create()

    events = await run_turn(loop, make_context(goose_mode=GooseMode.CHAT), store, session.id, "Echo hi")

    call = next(e for e in events if isinstance(e, ToolCallEvent))
    assert call.tool_call.name == "echo"
    assert call.tool_call.arguments == {"text": "hi"}
    result = next(e for e in events if isinstance(e, ToolResultEvent))
    assert result.output == ["echo: hi"]


@pytest.mark.asyncio
async def test_tool_call_message_is_persisted(store, dispatcher):
    """The assistant tool-call message and the tool result are saved."""
    provider = ScriptedLLM([tool_turn("echo", {"text": "x"}), text_turn("Done.")])
    loop = AgentLoop(provider, store, dispatcher)
    session = await store.create()

    await run_turn(loop, make_context(goose_mode=GooseMode.CHAT), store, session.id, "Hi")

    stored = (await store.get(session.id)).messages
    assert [m.role for m in stored] == ["user", "assistant", "tool", "assistant"]
    assert stored[1].tool_calls[0].name == "echo"
    assert stored[2].tool_call_id == "call_1"
    assert stored[2].content == "echo: x"


@pytest.mark.asyncio
async def test_auto_mode_stops_on_final_finish_reason(store, dispatcher):
    """Auto mode ends the turn when the model reports a final answer."""
    provider = ScriptedLLM([text_turn("Finished.", finish_reason="end_turn"), text_turn("Extra")])
    loop = AgentLoop(provider, store, dispatcher)
    session = await store.create()

    events = visible(await run_turn(loop, make_context(goose_mode=GooseMode.AUTO), store, session.id, "Hi"))

    assert len(provider.requests) == 1
    assert isinstance(events[-1], DoneEvent)


@pytest.mark.asyncio
async def test_system_prompt_lists_tools(store, dispatcher):
    """The request system prompt enumerates the available tools."""
    provider = ScriptedLLM([text_turn("Ok.")])
    loop = AgentLoop(provider, store, dispatcher, system_prompt="Base prompt")
    session = await store.create()

    await run_turn(loop, make_context(goose_mode=GooseMode.CHAT), store, session.id, "Hi")

    prompt = provider.requests[0].system_prompt
    assert prompt.startswith("Base prompt")
    assert "## Available Tools" in prompt
    assert "**echo**" in prompt
    assert {t.name for t in provider.requests[0].tools} == {"echo", "broken"}


def test_build_system_prompt_without_tools():
    """Without tools the base prompt is used as-is."""
    assert build_system_prompt("Base", []) == "Base"

    prompt = build_system_prompt("Base", [ToolDefinition(name="t", description="does t", parameters={})])
    assert prompt.endswith("- **t**: does t")


@pytest.mark.asyncio
async def test_hooks_rewrite_user_message_and_errors(store, dispatcher):
    """Pre-process hooks rewrite the user message; error hooks rewrite errors."""
    provider = ScriptedLLM([ProviderError("down")])
    loop = AgentLoop(provider, store, dispatcher)
    session = await store.create()
    context = make_context()

    def shout(message):
        message.content = message.content.upper()
        return message

    await context.hooks.register(HookPoint.PRE_PROCESS, shout)
    await context.hooks.register(HookPoint.ERROR, lambda text: f"[handled] {text}")

    events = await run_turn(loop, context, store, session.id, "hello")

    assert events[0].message.content == "HELLO"
    assert events[-1].message == "[handled] Provider error: down"


@pytest.mark.asyncio
async def test_tool_execution_hook_rewrites_call(store, dispatcher):
    """Tool-execution hooks may change the arguments before dispatch."""
    provider = ScriptedLLM([tool_turn("echo", {"text": "original"}), text_turn("Ok.")])
    loop = AgentLoop(provider, store, dispatcher)
    session = await store.create()
    context = make_context(goose_mode=GooseMode.CHAT)

    async def rewrite(tool_call):
        tool_call.arguments = {"text": "rewritten"}
        return tool_call

    await context.hooks.register(HookPoint.TOOL_EXECUTION, rewrite)

    events = await run_turn(loop, context, store, session.id, "Hi")

    result = next(e for e in events if isinstance(e, ToolResultEvent))
    assert result.output == ["echo: rewritten"]


class RedactExtension(Extension):
    name = "redact"

    def __init__(self):
        self.seen_phases = []

    def phases(self):
        return {ExtensionPhase.PRE_PROCESSING, ExtensionPhase.VALIDATION}

    async def execute(self, phase, context, input):
        self.seen_phases.append(phase)
        if phase == ExtensionPhase.PRE_PROCESSING:
            return ExtensionResult.ok({**input, "content": input["content"].replace("secret", "[redacted]")})
        return ExtensionResult.ok()


@pytest.mark.asyncio
async def test_extensions_run_when_enabled(store, dispatcher):
    """Pre-processing extensions can rewrite the user message."""
    manager = ExtensionManager()
    extension = RedactExtension()
    await manager.register(extension)

    provider = ScriptedLLM([text_turn("Ok.")])
    loop = AgentLoop(provider, store, dispatcher, extensions=manager)
    session = await store.create()
    context = make_context(goose_mode=GooseMode.CHAT, enable_extensions=True)

    events = await run_turn(loop, context, store, session.id, "my secret plan")

    assert events[0].message.content == "my [redacted] plan"
    assert extension.seen_phases == [ExtensionPhase.PRE_PROCESSING, ExtensionPhase.VALIDATION]


@pytest.mark.asyncio
async def test_extensions_skipped_when_disabled(store, dispatcher):
    """enable_extensions=False bypasses the extension manager."""
    manager = ExtensionManager()
    extension = RedactExtension()
    await manager.register(extension)

    loop = AgentLoop(ScriptedLLM([text_turn("Ok.")]), store, dispatcher, extensions=manager)
    session = await store.create()

    events = await run_turn(loop, make_context(goose_mode=GooseMode.CHAT), store, session.id, "my secret")

    assert events[0].message.content == "my secret"
    assert extension.seen_phases == []


@pytest.mark.asyncio
async def test_tool_usage_limit_blocks_call(store, dispatcher):
    """A failed TOOL_CALL extension stops the tool and tells the model why."""
    manager = ExtensionManager()
    monitor = ToolUsageMonitorExtension(max_tool_calls_per_session=1)
    await manager.register(monitor)

    provider = ScriptedLLM([
        tool_turn("echo", {"text": "one"}, "call_1"),
        tool_turn("echo", {"text": "two"}, "call_2"),
        text_turn("Out of budget."),
    ])
    loop = AgentLoop(provider, store, dispatcher, extensions=manager)
    session = await store.create()
    context = make_context(goose_mode=GooseMode.CHAT, enable_extensions=True)

    events = await run_turn(loop, context, store, session.id, "Go")

    results = [e for e in events if isinstance(e, ToolResultEvent)]
    assert results[0].output == ["echo: one"]
    assert not results[0].is_error
    assert results[1].is_error
    assert results[1].output == ["Tool usage limit exceeded. Current: 1, Limit: 1"]
    assert monitor.usage(context.session_id) == {"echo": 1}

    tool_message = provider.requests[2].messages[-1]
    assert tool_message.role == "tool"
    assert tool_message.tool_call_id == "call_2"
    assert tool_message.content == "Tool usage limit exceeded. Current: 1, Limit: 1"


@pytest.mark.asyncio
async def test_confirmation_parks_mutating_tools(store, dispatcher):
    """With confirmation required, only read-only tools run directly."""
    provider = ScriptedLLM([
        tool_turn("broken", {}, "call_1"),
        tool_turn("echo", {"text": "ok"}, "call_2"),
        text_turn("Waiting for approval."),
    ])
    loop = AgentLoop(provider, store, dispatcher)
    session = await store.create()
    context = make_context(
        goose_mode=GooseMode.CHAT,
        require_confirmation=True,
        readonly_tools=["echo"],
    )

    events = await run_turn(loop, context, store, session.id, "Go")

    results = [e for e in events if isinstance(e, ToolResultEvent)]
    assert results[0].output[0].startswith("Approval required before running 'broken'")
    assert not results[0].is_error
    assert results[1].output == ["echo: ok"]

    pending = dispatcher.approvals.list_pending(session.id)
    assert [p.tool_name for p in pending] == ["broken"]
