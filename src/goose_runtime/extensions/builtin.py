"""
Built-in extensions registered by default.

- ConversationSummarizerExtension: previews long conversations before a turn
- ToolUsageMonitorExtension: counts tool calls per session against a limit
- SafetyFilterExtension: flags sensitive words and oversized requests

Phase inputs these extensions understand:

- PRE_PROCESSING / POST_PROCESSING: ``{"role", "content", "messages"}``
- VALIDATION: a serialized completion request (``{"messages": [...], ...}``)
- TOOL_CALL: a serialized tool call (``{"id", "name", "arguments"}``)
"""

from collections import defaultdict
from typing import Any

import structlog

from .base import Extension, ExtensionContext, ExtensionPhase, ExtensionResult

logger = structlog.get_logger()


class ConversationSummarizerExtension(Extension):
    name = "conversation_summarizer"
    description = "Summarizes long conversations to maintain context"

    def __init__(self, max_summary_length: int = 500, summarization_threshold: int = 20):
        self.max_summary_length = max_summary_length
        self.summarization_threshold = summarization_threshold

    def phases(self) -> set[ExtensionPhase]:
        return {ExtensionPhase.PRE_PROCESSING}

    async def should_execute(
        self,
        phase: ExtensionPhase,
        context: ExtensionContext,
        input: dict[str, Any],
    ) -> bool:
        return isinstance(input, dict) and isinstance(input.get("messages"), list)

    async def execute(
        self,
        phase: ExtensionPhase,
        context: ExtensionContext,
        input: dict[str, Any],
    ) -> ExtensionResult:
        messages = input["messages"]
        if len(messages) <= self.summarization_threshold:
            return ExtensionResult.ok()

        result = ExtensionResult.ok(
            summary=self.summarize(messages),
            original_message_count=len(messages),
        )
        result.next_actions.append("continue_conversation")
        return result

    def summarize(self, messages: list[dict[str, Any]]) -> str:
        """Preview of the first five of the last ten messages."""
        lines = []
        for message in messages[-10:][:5]:
            content = str(message.get("content", ""))
            if len(content) > 100:
                content = content[:97] + "..."
            lines.append(f"{str(message.get('role', 'unknown')).capitalize()}: {content}")

        summary = "\n".join(lines)
        if len(summary) > self.max_summary_length:
            summary = summary[:self.max_summary_length] + "..."
        return summary

    def config_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "max_summary_length": {"type": "integer", "minimum": 1},
                "summarization_threshold": {"type": "integer", "minimum": 1},
            },
        }

    async def update_config(self, config: dict[str, Any]) -> None:
        self.max_summary_length = int(config.get("max_summary_length", self.max_summary_length))
        self.summarization_threshold = int(
            config.get("summarization_threshold", self.summarization_threshold)
        )


class ToolUsageMonitorExtension(Extension):
    name = "tool_usage_monitor"
    description = "Monitors tool usage per session against a limit"

    def __init__(self, max_tool_calls_per_session: int = 100):
        self.max_tool_calls_per_session = max_tool_calls_per_session
        self._usage: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))

    def phases(self) -> set[ExtensionPhase]:
        return {ExtensionPhase.TOOL_CALL, ExtensionPhase.POST_PROCESSING, ExtensionPhase.CLEANUP}

    def usage(self, session_id: str | None) -> dict[str, int]:
        return dict(self._usage.get(session_id or "", {}))

    async def execute(
        self,
        phase: ExtensionPhase,
        context: ExtensionContext,
        input: dict[str, Any],
    ) -> ExtensionResult:
        if phase == ExtensionPhase.CLEANUP:
            dropped = self._usage.pop(context.session_id or "", None)
            return ExtensionResult.ok(dropped_calls=sum(dropped.values()) if dropped else 0)

        session_usage = self._usage[context.session_id or ""]

        if phase == ExtensionPhase.TOOL_CALL:
            current = sum(session_usage.values())
            if current >= self.max_tool_calls_per_session:
                result = ExtensionResult.failure(
                    f"Tool usage limit exceeded. Current: {current}, "
                    f"Limit: {self.max_tool_calls_per_session}"
                )
                result.next_actions.append("increase_limit")
                return result

            session_usage[str(input.get("name", "unknown"))] += 1
            return ExtensionResult.ok()

        return ExtensionResult.ok(
            tool_usage_stats=dict(session_usage),
            session_limit=self.max_tool_calls_per_session,
        )

    async def cleanup(self) -> None:
        self._usage.clear()


class SafetyFilterExtension(Extension):
    name = "safety_filter"
    description = "Flags sensitive content and oversized messages"

    def __init__(
        self,
        blocked_patterns: list[str] | None = None,
        max_message_length: int = 10000,
    ):
        self.blocked_patterns = blocked_patterns or ["password", "secret", "api_key", "token"]
        self.max_message_length = max_message_length

    def phases(self) -> set[ExtensionPhase]:
        return {ExtensionPhase.VALIDATION, ExtensionPhase.POST_PROCESSING}

    def add_blocked_pattern(self, pattern: str) -> None:
        self.blocked_patterns.append(pattern)

    def check(self, text: str) -> str | None:
        """Return why ``text`` is flagged, or None."""
        lowered = text.lower()
        for pattern in self.blocked_patterns:
            if pattern.lower() in lowered:
                return f"Content contains blocked pattern: {pattern}"
        if len(text) > self.max_message_length:
            return f"Message too long: {len(text)} > {self.max_message_length}"
        return None

    async def execute(
        self,
        phase: ExtensionPhase,
        context: ExtensionContext,
        input: dict[str, Any],
    ) -> ExtensionResult:
        if phase == ExtensionPhase.VALIDATION:
            messages = input.get("messages") or []
            latest = next((m for m in reversed(messages) if m.get("role") == "user"), None)
            reason = self.check(str(latest.get("content", ""))) if latest else None
            if reason:
                result = ExtensionResult.failure(reason)
                result.next_actions.append("remove_sensitive_content")
                return result
            return ExtensionResult.ok()

        reason = self.check(str(input.get("content", "")))
        return ExtensionResult.ok(safety_check="flagged" if reason else "passed", reason=reason)

    def config_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "blocked_patterns": {"type": "array", "items": {"type": "string"}},
                "max_message_length": {"type": "integer", "minimum": 1},
            },
        }

    async def update_config(self, config: dict[str, Any]) -> None:
        if "blocked_patterns" in config:
            self.blocked_patterns = [str(p) for p in config["blocked_patterns"]]
        if "max_message_length" in config:
            self.max_message_length = int(config["max_message_length"])


def default_extensions() -> list[Extension]:
    return [
        ConversationSummarizerExtension(max_summary_length=500, summarization_threshold=20),
        ToolUsageMonitorExtension(max_tool_calls_per_session=100),
        SafetyFilterExtension(),
    ]
