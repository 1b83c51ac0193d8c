"""
Agent loop - runs one conversational turn as an async stream of events.

For each user message the loop:
1. Runs pre-processing hooks and extensions, appends and persists the message
2. Compacts the working conversation if it is over budget
3. Alternates model calls and tool execution until a stop condition holds:
   the iteration limit, the no-tool streak limit, or the goose mode's own
   stopping rule
4. Emits ``Done``

Consumers may stop iterating at any point. Work that was already started
is not rolled back.
"""

from typing import AsyncIterator

import structlog

from ..config import GooseMode
from ..extensions import ExtensionContext, ExtensionManager, ExtensionPhase
from ..hooks import HookPoint
from ..llm.base import BaseLLM, CompletionRequest, Message, ToolCall, ToolDefinition
from ..session import AgentSession, SessionStore
from ..tools.base import ToolResult
from ..tools.dispatcher import ToolDispatcher
from .compaction import (
    DEFAULT_KEEP_RECENT,
    TokenEstimator,
    compact_with_result,
    estimate_tokens,
    should_compact,
)
from .context import AgentContext
from .events import (
    AgentEvent,
    DoneEvent,
    ErrorEvent,
    HistoryReplacedEvent,
    MessageEvent,
    SystemNotificationEvent,
    ThinkingEvent,
    ToolCallEvent,
    ToolResultEvent,
)
from .tool_parser import ToolCallParser

logger = structlog.get_logger()

DEFAULT_SYSTEM_PROMPT = """You are Goose, an AI agent that helps users get work done.

Guidelines:
1. Be helpful, accurate, and concise
2. Use tools when you need to inspect or change the workspace
3. Explain what you are about to do before running commands or writing files
4. If you're unsure, say so"""

MAX_ITERATIONS_MESSAGE = "Maximum iterations reached"

# finish reasons that mean the model considers its answer complete
_FINAL_FINISH_REASONS = {"stop", "end_turn"}


def build_system_prompt(base_prompt: str, tools: list[ToolDefinition]) -> str:
    """Base prompt plus an enumeration of the available tools."""
    if not tools:
        return base_prompt

    lines = [f"- **{tool.name}**: {tool.description}" for tool in tools]
    return (
        f"{base_prompt}\n\n## Available Tools\n"
        "You have access to these tools:\n" + "\n".join(lines)
    )


class AgentLoop:
    """Drives model calls, tool execution and persistence for a session."""

    def __init__(
        self,
        provider: BaseLLM,
        session_store: SessionStore,
        dispatcher: ToolDispatcher | None = None,
        extensions: ExtensionManager | None = None,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        context_limit: int = 128_000,
        keep_last_n: int = DEFAULT_KEEP_RECENT,
        token_estimator: TokenEstimator = estimate_tokens,
        tool_call_parser: ToolCallParser | None = None,
    ):
        self.provider = provider
        self.session_store = session_store
        self.dispatcher = dispatcher or ToolDispatcher()
        self.extensions = extensions
        self.system_prompt = system_prompt
        self.context_limit = context_limit
        self.keep_last_n = keep_last_n
        self.token_estimator = token_estimator
        self.tool_call_parser = tool_call_parser or ToolCallParser()

    async def run(
        self,
        context: AgentContext,
        session: AgentSession,
        user_message: str,
    ) -> AsyncIterator[AgentEvent]:
        """Process one user message, yielding events as they happen."""
        config = context.config
        conversation = list(session.messages)
        ext_context = self._extension_context(context, session)

        log = logger.bind(session_id=session.id, goose_mode=config.goose_mode.value)
        log.info("Agent turn started", history=len(conversation))

        # 1. user message
        user = await context.hooks.run(HookPoint.PRE_PROCESS, Message(role="user", content=user_message))
        user = await self._run_message_phase(
            ExtensionPhase.PRE_PROCESSING, ext_context, user, conversation, config.extension_timeout
        )
        conversation.append(user)
        yield MessageEvent(user)
        error = await self._persist(context, session.id, user)
        if error:
            yield error

        # 2. compaction
        if config.enable_auto_compact and should_compact(
            conversation, self.context_limit, config.compact_threshold, self.token_estimator
        ):
            async for event in self._compact(context, session.id, conversation):
                yield event
                if isinstance(event, HistoryReplacedEvent):
                    conversation = list(event.messages)

        # 3. iterations
        no_tool_streak = 0
        while True:
            if context.current_iteration >= config.max_iterations:
                log.warning("Iteration limit reached", iterations=context.current_iteration)
                yield await self._error(context, MAX_ITERATIONS_MESSAGE)
                return

            iteration = context.next_iteration()
            tools = await self.dispatcher.list_tools()
            request = CompletionRequest(
                messages=list(conversation),
                system_prompt=build_system_prompt(session.system_prompt or self.system_prompt, tools),
                tools=tools or None,
                stream=True,
            )
            yield ThinkingEvent(f"Iteration {iteration}: waiting for the model")
            await self._validate(ext_context, request, config.extension_timeout)

            text = ""
            structured: list[ToolCall] = []
            finish_reason = None
            try:
                async for fragment in self.provider.stream(request):
                    if fragment.text:
                        text += fragment.text
                        yield MessageEvent(Message(role="assistant", content=fragment.text), partial=True)
                    structured.extend(fragment.tool_calls)
                    finish_reason = fragment.finish_reason or finish_reason
            except Exception as e:
                log.error("Provider error", error=str(e), iteration=iteration)
                yield await self._error(context, f"Provider error: {e}")
                return

            tool_calls = self.tool_call_parser.parse(text, structured)

            if tool_calls:
                no_tool_streak = 0
                context.set_tools_called(True)

                assistant = Message(role="assistant", content=text, tool_calls=tool_calls)
                conversation.append(assistant)
                error = await self._persist(context, session.id, assistant)
                if error:
                    yield error

                for tool_call in tool_calls:
                    tool_call, blocked = await self._prepare_tool_call(context, ext_context, tool_call)
                    yield ToolCallEvent(tool_call)

                    if blocked:
                        log.warning("Tool call blocked by extension", tool=tool_call.name, reason=blocked)
                        result = ToolResult(success=True, output=[blocked], is_error=True)
                    else:
                        result = await self.dispatcher.execute(tool_call, config, session_id=session.id)
                    output = result.output if result.success else [f"Error: {result.error}"]
                    yield ToolResultEvent(
                        tool_call_id=tool_call.id,
                        tool_name=tool_call.name,
                        output=output,
                        is_error=result.is_error or not result.success,
                    )

                    tool_message = Message(
                        role="tool",
                        content="\n".join(output),
                        tool_call_id=tool_call.id,
                        name=tool_call.name,
                    )
                    conversation.append(tool_message)
                    error = await self._persist(context, session.id, tool_message)
                    if error:
                        yield error
                continue

            no_tool_streak += 1
            context.set_tools_called(False)

            assistant = await context.hooks.run(HookPoint.POST_PROCESS, Message(role="assistant", content=text))
            assistant = await self._run_message_phase(
                ExtensionPhase.POST_PROCESSING, ext_context, assistant, conversation, config.extension_timeout
            )
            conversation.append(assistant)
            error = await self._persist(context, session.id, assistant)
            if error:
                yield error
            yield MessageEvent(assistant)

            if no_tool_streak >= config.max_turns_without_tools and context.turn_count > 0:
                prompt = Message(
                    role="assistant",
                    content=(
                        f"I've gone {no_tool_streak} turns without using any tools. "
                        "Should I continue?"
                    ),
                )
                conversation.append(prompt)
                error = await self._persist(context, session.id, prompt)
                if error:
                    yield error
                yield MessageEvent(prompt)
                break

            if config.goose_mode == GooseMode.CHAT:
                break

            if config.goose_mode == GooseMode.AUTO and finish_reason in _FINAL_FINISH_REASONS:
                break

        log.info("Agent turn finished", iterations=context.current_iteration)
        yield DoneEvent()

    async def _compact(
        self,
        context: AgentContext,
        session_id: str,
        conversation: list[Message],
    ) -> AsyncIterator[AgentEvent]:
        tokens = self.token_estimator(conversation)
        yield SystemNotificationEvent(
            f"Compacting conversation: ~{tokens} tokens exceeds "
            f"{context.config.compact_threshold:.0%} of the {self.context_limit} token context"
        )

        compacted, result = compact_with_result(conversation, self.keep_last_n, self.token_estimator)
        if not result.changed:
            yield SystemNotificationEvent("Conversation is already compact; nothing to summarize")
            return

        yield HistoryReplacedEvent(compacted)

        try:
            await self.session_store.replace_messages(session_id, compacted)
        except Exception as e:
            logger.error("Failed to persist compacted history", session_id=session_id, error=str(e))
            yield await self._error(context, f"Failed to save compacted conversation: {e}")

        yield SystemNotificationEvent(
            f"Conversation compacted: {result.original_message_count} -> "
            f"{result.compacted_message_count} messages"
        )

    async def _persist(self, context: AgentContext, session_id: str, message: Message) -> ErrorEvent | None:
        try:
            await self.session_store.append_message(session_id, message)
        except Exception as e:
            logger.error("Failed to persist message", session_id=session_id, role=message.role, error=str(e))
            return await self._error(context, f"Failed to save message: {e}")
        return None

    async def _error(self, context: AgentContext, message: str) -> ErrorEvent:
        message = await context.hooks.run(HookPoint.ERROR, message)
        return ErrorEvent(str(message))

    async def _prepare_tool_call(
        self,
        context: AgentContext,
        ext_context: ExtensionContext | None,
        tool_call: ToolCall,
    ) -> tuple[ToolCall, str | None]:
        """Let tool-execution hooks and TOOL_CALL extensions rewrite a call.

        The second item is the error of the first TOOL_CALL extension that
        failed. A failed extension blocks the call from running.
        """
        tool_call = await context.hooks.run(HookPoint.TOOL_EXECUTION, tool_call)

        if ext_context is None:
            return tool_call, None

        data, results = await self.extensions.execute_phase(
            ExtensionPhase.TOOL_CALL, ext_context, tool_call.to_dict(), context.config.extension_timeout
        )
        self._log_failures(ExtensionPhase.TOOL_CALL, results)

        blocked = next((r.error or "Tool call rejected" for r in results if not r.success), None)
        if isinstance(data, dict) and isinstance(data.get("name"), str):
            return ToolCall.from_dict({"id": tool_call.id, **data}), blocked
        return tool_call, blocked

    async def _run_message_phase(
        self,
        phase: ExtensionPhase,
        ext_context: ExtensionContext | None,
        message: Message,
        conversation: list[Message],
        timeout: float,
    ) -> Message:
        if ext_context is None:
            return message

        data, results = await self.extensions.execute_phase(
            phase,
            ext_context,
            {
                "role": message.role,
                "content": message.content,
                "messages": [{"role": m.role, "content": m.content} for m in conversation],
            },
            timeout,
        )
        self._log_failures(phase, results)

        if isinstance(data, dict) and isinstance(data.get("content"), str):
            message.content = data["content"]
        return message

    async def _validate(
        self,
        ext_context: ExtensionContext | None,
        request: CompletionRequest,
        timeout: float,
    ) -> None:
        if ext_context is None:
            return
        _, results = await self.extensions.execute_phase(
            ExtensionPhase.VALIDATION, ext_context, request.to_dict(), timeout
        )
        self._log_failures(ExtensionPhase.VALIDATION, results)

    def _extension_context(self, context: AgentContext, session: AgentSession) -> ExtensionContext | None:
        if self.extensions is None or not context.config.enable_extensions:
            return None
        return ExtensionContext(
            agent_id="goose",
            session_id=context.session_id,
            conversation_id=session.id,
            metadata={"goose_mode": context.config.goose_mode.value},
        )

    @staticmethod
    def _log_failures(phase: ExtensionPhase, results: list) -> None:
        for result in results:
            if not result.success:
                logger.warning("Extension reported failure", phase=phase.value, error=result.error)
