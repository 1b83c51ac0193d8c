"""
Events yielded by the agent loop and the plan executor.

Every event serializes to a JSON-compatible dict tagged with ``type`` so
the API can stream them as NDJSON.
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar

from ..llm.base import Message, ToolCall


@dataclass
class AgentEvent:
    """Base class for agent events."""

    type: ClassVar[str] = "event"

    def payload(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, **self.payload()}


@dataclass
class MessageEvent(AgentEvent):
    """A conversation message. ``partial`` marks a streamed text fragment."""

    type: ClassVar[str] = "message"

    message: Message
    partial: bool = False

    def payload(self) -> dict[str, Any]:
        return {"message": self.message.to_dict(), "partial": self.partial}


@dataclass
class ToolCallEvent(AgentEvent):
    type: ClassVar[str] = "tool_call"

    tool_call: ToolCall

    def payload(self) -> dict[str, Any]:
        return {"tool_call": self.tool_call.to_dict()}


@dataclass
class ToolResultEvent(AgentEvent):
    type: ClassVar[str] = "tool_result"

    tool_call_id: str
    tool_name: str
    output: list[str] = field(default_factory=list)
    is_error: bool = False

    def payload(self) -> dict[str, Any]:
        return {
            "tool_call_id": self.tool_call_id,
            "tool_name": self.tool_name,
            "output": self.output,
            "is_error": self.is_error,
        }


@dataclass
class ThinkingEvent(AgentEvent):
    type: ClassVar[str] = "thinking"

    content: str

    def payload(self) -> dict[str, Any]:
        return {"content": self.content}


@dataclass
class ErrorEvent(AgentEvent):
    type: ClassVar[str] = "error"

    message: str

    def payload(self) -> dict[str, Any]:
        return {"message": self.message}


@dataclass
class SystemNotificationEvent(AgentEvent):
    type: ClassVar[str] = "system_notification"

    message: str

    def payload(self) -> dict[str, Any]:
        return {"message": self.message}


@dataclass
class HistoryReplacedEvent(AgentEvent):
    """The working conversation was replaced (after compaction)."""

    type: ClassVar[str] = "history_replaced"

    messages: list[Message]

    def payload(self) -> dict[str, Any]:
        return {"messages": [m.to_dict() for m in self.messages]}


@dataclass
class DoneEvent(AgentEvent):
    type: ClassVar[str] = "done"
