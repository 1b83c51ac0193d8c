"""
Extension interface.

Extensions are pluggable units that run at fixed points of the agent loop.
Each one declares the phases it participates in and receives the current
phase input (a JSON-compatible dict). Returning a successful result with
``data`` replaces the input handed to the next extension in the chain.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..llm.base import utcnow


class ExtensionPhase(str, Enum):
    PRE_PROCESSING = "pre_processing"
    TOOL_CALL = "tool_call"
    POST_PROCESSING = "post_processing"
    VALIDATION = "validation"
    CLEANUP = "cleanup"


@dataclass
class ExtensionContext:
    """Who and where an extension is running for."""

    agent_id: str
    session_id: str | None = None
    conversation_id: str | None = None
    user_id: str | None = None
    timestamp: datetime = field(default_factory=utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)
    capabilities: list[str] = field(default_factory=list)


@dataclass
class ExtensionResult:
    """Outcome of one extension invocation."""

    success: bool
    data: Any = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    next_actions: list[str] = field(default_factory=list)

    @classmethod
    def ok(cls, data: Any = None, **metadata: Any) -> "ExtensionResult":
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def failure(cls, error: str, **metadata: Any) -> "ExtensionResult":
        return cls(success=False, error=error, metadata=metadata)


@dataclass
class ExtensionInfo:
    name: str
    version: str
    description: str
    phases: list[ExtensionPhase]
    config_schema: dict[str, Any] | None = None


class Extension(ABC):
    """Base class for agent extensions."""

    name: str = "extension"
    version: str = "1.0.0"
    description: str = ""

    def phases(self) -> set[ExtensionPhase]:
        return {ExtensionPhase.PRE_PROCESSING, ExtensionPhase.POST_PROCESSING}

    async def initialize(self, context: ExtensionContext) -> None:
        """Prepare the extension before its first use."""
        pass

    @abstractmethod
    async def execute(
        self,
        phase: ExtensionPhase,
        context: ExtensionContext,
        input: dict[str, Any],
    ) -> ExtensionResult:
        """Handle one phase invocation."""
        pass

    async def should_execute(
        self,
        phase: ExtensionPhase,
        context: ExtensionContext,
        input: dict[str, Any],
    ) -> bool:
        return True

    async def cleanup(self) -> None:
        """Release resources. Called once when the extension is unregistered."""
        pass

    def config_schema(self) -> dict[str, Any] | None:
        return None

    async def update_config(self, config: dict[str, Any]) -> None:
        pass

    def info(self) -> ExtensionInfo:
        return ExtensionInfo(
            name=self.name,
            version=self.version,
            description=self.description,
            phases=sorted(self.phases(), key=lambda p: list(ExtensionPhase).index(p)),
            config_schema=self.config_schema(),
        )
