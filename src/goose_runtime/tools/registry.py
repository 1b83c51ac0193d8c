"""
Tool registry for built-in tools.
"""

from pathlib import Path
from typing import Any

import structlog

from ..llm.base import ToolDefinition
from ..memory import MemoryStore
from .base import Tool, ToolResult

logger = structlog.get_logger()


class ToolRegistry:
    """Registry of built-in tools, matched by exact name."""

    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool
        logger.info("Tool registered", tool_name=tool.name)

    def unregister(self, name: str) -> None:
        if name in self._tools:
            del self._tools[name]
            logger.info("Tool unregistered", tool_name=name)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def list_tools(self) -> list[str]:
        """List all registered tool names."""
        return list(self._tools.keys())

    def readonly_tools(self) -> list[str]:
        return [name for name, tool in self._tools.items() if tool.readonly]

    def get_definitions(self) -> list[ToolDefinition]:
        """Get all tool definitions for the LLM."""
        return [tool.to_definition() for tool in self._tools.values()]

    async def execute(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        """Execute a tool by name. Handler exceptions become failed results."""
        tool = self.get(name)
        if tool is None:
            return ToolResult.failure(f"Tool '{name}' not found")

        try:
            logger.info("Executing tool", tool_name=name, arguments=arguments)
            result = await tool.execute(**arguments)
            logger.info("Tool executed", tool_name=name, success=result.success)
            return result
        except Exception as e:
            logger.error("Tool execution error", tool_name=name, error=str(e))
            return ToolResult.failure(str(e))


def create_builtin_registry(
    workspace_dir: str | Path,
    shell_timeout_seconds: int = 30,
    enable_shell: bool = True,
    memory_store: MemoryStore | None = None,
) -> ToolRegistry:
    """Registry with the file tools, the shell tool unless disabled, and
    memory tools when a store is given."""
    from .file_tool import FileManager, create_file_tools
    from .memory_tool import create_memory_tools
    from .shell_tool import ShellConfig, ShellExecutor, create_shell_tools

    registry = ToolRegistry()

    for tool in create_file_tools(FileManager(workspace_dir)):
        registry.register(tool)

    if enable_shell:
        executor = ShellExecutor(
            ShellConfig(workspace_dir=str(workspace_dir), timeout_seconds=shell_timeout_seconds)
        )
        for tool in create_shell_tools(executor):
            registry.register(tool)

    if memory_store is not None:
        for tool in create_memory_tools(memory_store):
            registry.register(tool)

    return registry
