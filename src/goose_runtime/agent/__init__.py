"""
Agent module - the brain of the system.

Includes:
- AgentLoop: one conversational turn as an async event stream
- AgentContext / ContextRegistry: per-session runtime state
- Planning: execution plans, the planner and the plan executor
- Compaction: keeps conversations inside the context budget
"""

from .compaction import compact_conversation, estimate_tokens, should_compact
from .context import AgentContext, ContextRegistry
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
from .loop import AgentLoop
from .plan_executor import PlanExecutor
from .planner import Planner
from .planning import (
    ExecutionPlan,
    ExecutionStep,
    PlanningState,
    ReasoningStep,
    ReasoningType,
    StepStatus,
)
from .tool_parser import ToolCallParser

__all__ = [
    "AgentContext",
    "AgentEvent",
    "AgentLoop",
    "ContextRegistry",
    "DoneEvent",
    "ErrorEvent",
    "ExecutionPlan",
    "ExecutionStep",
    "HistoryReplacedEvent",
    "MessageEvent",
    "PlanExecutor",
    "Planner",
    "PlanningState",
    "ReasoningStep",
    "ReasoningType",
    "StepStatus",
    "SystemNotificationEvent",
    "ThinkingEvent",
    "ToolCallEvent",
    "ToolCallParser",
    "ToolResultEvent",
    "compact_conversation",
    "estimate_tokens",
    "should_compact",
]
