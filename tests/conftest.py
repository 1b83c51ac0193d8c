"""
Shared fixtures: a scripted provider and small tool registries.
"""

from typing import Any

import pytest

from goose_runtime.agent import AgentContext
from goose_runtime.config import AgentConfig
from goose_runtime.llm.base import (
    BaseLLM,
    CompletionFragment,
    CompletionRequest,
    CompletionResponse,
    ToolCall,
)
from goose_runtime.session import InMemorySessionStore
from goose_runtime.tools import Tool, ToolDispatcher, ToolParameter, ToolRegistry, ToolResult


class ScriptedLLM(BaseLLM):
    """Provider that replays canned turns.

    Each streamed turn is a list of fragments, or an exception to raise.
    Once the script runs out every turn is a plain "Done." answer.
    """

    def __init__(self, turns: list[Any] | None = None, responses: list[str] | None = None):
        super().__init__(api_key="test", model="scripted-model")
        self.turns = list(turns or [])
        self.responses = list(responses or [])
        self.requests: list[CompletionRequest] = []

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        self.requests.append(request)
        content = self.responses.pop(0) if self.responses else ""
        return CompletionResponse(content=content, model=self.model, stop_reason="end_turn")

    async def stream(self, request: CompletionRequest):
        self.requests.append(request)
        turn = self.turns.pop(0) if self.turns else text_turn("Done.")
        if isinstance(turn, Exception):
            raise turn
        for fragment in turn:
            yield fragment

    @property
    def provider_name(self) -> str:
        return "scripted"


def text_turn(text: str, finish_reason: str = "stop") -> list[CompletionFragment]:
    """A text answer streamed in two fragments."""
    middle = len(text) // 2
    return [
        CompletionFragment(text=text[:middle]),
        CompletionFragment(text=text[middle:], finish_reason=finish_reason),
    ]


def tool_turn(name: str, arguments: dict[str, Any] | None = None, call_id: str = "call_1") -> list[CompletionFragment]:
    """A turn with a single structured tool call."""
    return [
        CompletionFragment(
            tool_calls=[ToolCall(id=call_id, name=name, arguments=arguments or {})],
            finish_reason="tool_use",
        )
    ]


def make_echo_registry() -> ToolRegistry:
    async def echo(text: str = "") -> ToolResult:
        return ToolResult.ok(f"echo: {text}")

    async def broken() -> ToolResult:
        raise RuntimeError("boom")

    registry = ToolRegistry()
    registry.register(
        Tool(
            name="echo",
            description="Echo text back",
            parameters=[ToolParameter(name="text", param_type="string", description="Text to echo")],
            handler=echo,
            readonly=True,
        )
    )
    registry.register(Tool(name="broken", description="Always raises", parameters=[], handler=broken))
    return registry


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def dispatcher():
    return ToolDispatcher(make_echo_registry())


@pytest.fixture
def context():
    return AgentContext("session-1", config=AgentConfig(enable_extensions=False))
