"""
Agent context - per-session runtime state shared across the loop.

Holds the iteration and turn counters, the "tools called" flag, the
optional cancellation token, and the planning, memory and hook registries.
:class:`ContextRegistry` tracks the contexts that are currently active.
"""

import asyncio
import threading
from typing import Callable

import structlog

from ..concurrency import AtomicCounter, CancellationToken
from ..config import AgentConfig
from ..hooks import HookRegistry
from ..memory import MemoryStore
from .planning import PlanningState

logger = structlog.get_logger()


class AgentContext:
    """State for one agent run."""

    def __init__(
        self,
        session_id: str,
        config: AgentConfig | None = None,
        hooks: HookRegistry | None = None,
        planning_state: PlanningState | None = None,
        memory_store: MemoryStore | None = None,
        cancellation_token: CancellationToken | None = None,
    ):
        self._session_id = session_id
        self._config = config or AgentConfig()
        self._iterations = AtomicCounter()
        self._turns = AtomicCounter()
        self._tools_called = False
        self._tools_lock = threading.Lock()
        self._token_lock = threading.Lock()
        self._cancellation_token = cancellation_token

        self.hooks = hooks or HookRegistry()
        self.planning_state = planning_state or PlanningState()
        self.memory_store = memory_store or MemoryStore(hooks=self.hooks)

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def config(self) -> AgentConfig:
        return self._config

    @property
    def current_iteration(self) -> int:
        return self._iterations.value

    @property
    def turn_count(self) -> int:
        return self._turns.value

    def next_iteration(self) -> int:
        """Advance the iteration and turn counters. Returns the new iteration number."""
        self._turns.increment()
        return self._iterations.increment()

    @property
    def tools_called(self) -> bool:
        with self._tools_lock:
            return self._tools_called

    def set_tools_called(self, value: bool) -> None:
        with self._tools_lock:
            self._tools_called = value

    @property
    def cancellation_token(self) -> CancellationToken | None:
        return self._cancellation_token

    def cancel(self) -> None:
        """Mark this context cancelled, creating a token if none was supplied."""
        with self._token_lock:
            if self._cancellation_token is None:
                self._cancellation_token = CancellationToken()
            self._cancellation_token.cancel()
        logger.info("Agent context cancelled", session_id=self._session_id)

    @property
    def is_cancelled(self) -> bool:
        token = self._cancellation_token
        return token is not None and token.is_cancelled


ContextFactory = Callable[[str], AgentContext]


class ContextRegistry:
    """Active agent contexts keyed by session id."""

    def __init__(self):
        self._contexts: dict[str, AgentContext] = {}
        self._lock = asyncio.Lock()

    async def get_or_create(
        self,
        session_id: str,
        factory: ContextFactory | None = None,
    ) -> AgentContext:
        async with self._lock:
            context = self._contexts.get(session_id)
            if context is None:
                context = factory(session_id) if factory else AgentContext(session_id)
                self._contexts[session_id] = context
                logger.debug("Agent context activated", session_id=session_id)
            return context

    async def add(self, context: AgentContext) -> bool:
        """Register a context. Returns False if the session already has one."""
        async with self._lock:
            if context.session_id in self._contexts:
                return False
            self._contexts[context.session_id] = context
            return True

    async def get(self, session_id: str) -> AgentContext | None:
        async with self._lock:
            return self._contexts.get(session_id)

    async def remove(self, session_id: str) -> AgentContext | None:
        async with self._lock:
            return self._contexts.pop(session_id, None)

    async def cancel(self, session_id: str) -> bool:
        """Cancel and deactivate a session's context. Returns False if none is active."""
        context = await self.remove(session_id)
        if context is None:
            return False
        context.cancel()
        return True

    async def active_ids(self) -> list[str]:
        async with self._lock:
            return list(self._contexts)

    def __len__(self) -> int:
        return len(self._contexts)
