"""
Runtime assembly - builds the shared objects one process needs.

The API server and the CLI chat both create a :class:`Runtime` and drive
sessions through it.
"""

from dataclasses import dataclass, field
from pathlib import Path

import structlog

from .agent import AgentContext, AgentLoop, ContextRegistry, PlanExecutor, Planner
from .config import AgentConfig, Settings, get_settings
from .extensions import Extension, ExtensionContext, ExtensionManager, ExtensionPhase, default_extensions
from .hooks import HookRegistry
from .llm import BaseLLM, create_llm
from .memory import MemoryStore
from .session import SessionStore, SQLSessionStore
from .tools import HttpToolExecutor, ToolDispatcher, create_builtin_registry

logger = structlog.get_logger()


@dataclass
class Runtime:
    """Everything needed to run agent turns."""

    settings: Settings
    provider: BaseLLM
    store: SessionStore
    dispatcher: ToolDispatcher
    extensions: ExtensionManager
    hooks: HookRegistry
    memory: MemoryStore
    loop: AgentLoop
    planner: Planner
    plan_executor: PlanExecutor
    contexts: ContextRegistry = field(default_factory=ContextRegistry)

    def new_context(self, session_id: str, config: AgentConfig | None = None) -> AgentContext:
        """A fresh context sharing the runtime's hooks and memory."""
        return AgentContext(
            session_id,
            config=config or self.settings.get_agent_config(),
            hooks=self.hooks,
            memory_store=self.memory,
        )

    async def end_session(self, session_id: str) -> None:
        """Run the CLEANUP phase so extensions drop per-session state."""
        await self.extensions.execute_phase(
            ExtensionPhase.CLEANUP,
            ExtensionContext(agent_id="goose", session_id=session_id),
            {"session_id": session_id},
        )
        logger.debug("Session ended", session_id=session_id)

    async def close(self) -> None:
        await self.extensions.shutdown()
        await self.store.close()
        logger.info("Runtime closed")


async def create_runtime(
    settings: Settings | None = None,
    provider: BaseLLM | None = None,
    store: SessionStore | None = None,
    dispatcher: ToolDispatcher | None = None,
    extensions: list[Extension] | None = None,
) -> Runtime:
    """Build a runtime from settings, with any component overridable.

    ``extensions`` defaults to the built-in set; pass an empty list to run
    without any.
    """
    settings = settings or get_settings()
    hooks = HookRegistry()
    memory = MemoryStore(hooks=hooks)

    if provider is None:
        provider = create_llm(settings=settings)

    if store is None:
        store = await SQLSessionStore.from_url(settings.database_url)

    if dispatcher is None:
        workspace = Path(settings.workspace_dir).expanduser()
        workspace.mkdir(parents=True, exist_ok=True)
        dispatcher = ToolDispatcher(
            create_builtin_registry(
                workspace,
                shell_timeout_seconds=settings.shell_timeout_seconds,
                memory_store=memory,
            ),
            external=HttpToolExecutor(settings.external_tools_url) if settings.external_tools_url else None,
        )

    manager = ExtensionManager(extension_timeout=settings.extension_timeout)
    for extension in default_extensions() if extensions is None else extensions:
        await manager.register(extension)

    loop = AgentLoop(
        provider=provider,
        session_store=store,
        dispatcher=dispatcher,
        extensions=manager,
        context_limit=settings.context_limit,
    )

    logger.info(
        "Runtime ready",
        provider=provider.provider_name,
        tools=len(await dispatcher.list_tools()),
        extensions=len(await manager.list_extensions()),
    )

    return Runtime(
        settings=settings,
        provider=provider,
        store=store,
        dispatcher=dispatcher,
        extensions=manager,
        hooks=hooks,
        memory=memory,
        loop=loop,
        planner=Planner(provider),
        plan_executor=PlanExecutor(dispatcher),
    )
