"""
Tool dispatch - Resolves a model's tool call to something that can run it.

Resolution order:
1. Built-in tools registered in a :class:`ToolRegistry` (exact name match)
2. An external tool executor (e.g. an extension host)
3. Otherwise the call fails with "Unknown tool"

A built-in tool that fails is handed to the external executor in case it
also provides that tool. If nothing else runs it, the failure is returned
as a resolved result describing the problem so the model can react.
"""

from typing import Any, Protocol, runtime_checkable

import structlog

from ..config import AgentConfig
from ..errors import ToolResolutionError
from ..llm.base import ToolCall, ToolDefinition
from .approval import ApprovalManager
from .base import ToolResult
from .registry import ToolRegistry

logger = structlog.get_logger()


@runtime_checkable
class ExternalToolExecutor(Protocol):
    """Tools provided from outside the process.

    ``execute`` raises :class:`ToolResolutionError` for names it does not
    provide and any other exception when the tool itself fails.
    """

    async def list_tools(self) -> list[ToolDefinition]: ...

    async def execute(self, name: str, arguments: dict[str, Any]) -> list[str]: ...


class ToolDispatcher:
    """Routes tool calls to built-in or external tools."""

    def __init__(
        self,
        registry: ToolRegistry | None = None,
        external: ExternalToolExecutor | None = None,
        approvals: ApprovalManager | None = None,
    ):
        self.registry = registry or ToolRegistry()
        self.external = external
        self.approvals = approvals or ApprovalManager()

    async def list_tools(self) -> list[ToolDefinition]:
        """Built-in definitions followed by external ones not shadowed by a built-in."""
        definitions = self.registry.get_definitions()
        if self.external is None:
            return definitions

        try:
            external = await self.external.list_tools()
        except Exception as e:
            logger.warning("Failed to list external tools", error=str(e))
            return definitions

        builtin_names = {d.name for d in definitions}
        return definitions + [d for d in external if d.name not in builtin_names]

    async def execute(
        self,
        tool_call: ToolCall,
        config: AgentConfig | None = None,
        session_id: str | None = None,
    ) -> ToolResult:
        """Run a tool call, applying the confirmation policy from ``config``."""
        if self.approvals.needs_approval(tool_call.name, config):
            approval = self.approvals.request(tool_call, session_id=session_id)
            return ToolResult(
                success=True,
                output=approval.describe(),
                data={"approval_id": approval.id, "pending_approval": True},
            )

        return await self._run(tool_call)

    async def execute_approved(self, approval_id: str) -> ToolResult:
        """Execute a call that was parked for approval and has since been approved."""
        approval = self.approvals.take_approved(approval_id)
        if approval is None:
            return ToolResult.failure(f"No approved call with id {approval_id}")
        return await self._run(approval.tool_call)

    async def _run(self, tool_call: ToolCall) -> ToolResult:
        name, arguments = tool_call.name, tool_call.arguments
        builtin_failure: ToolResult | None = None

        if name in self.registry:
            result = await self.registry.execute(name, arguments)
            if result.success:
                return result
            builtin_failure = result

        if self.external is not None:
            try:
                output = await self.external.execute(name, arguments)
                return ToolResult.ok(*output)
            except ToolResolutionError:
                pass
            except Exception as e:
                logger.error("External tool failed", tool_name=name, error=str(e))
                return ToolResult(
                    success=True,
                    output=[f"Tool '{name}' failed: {e}"],
                    is_error=True,
                )

        if builtin_failure is not None:
            return ToolResult(
                success=True,
                output=[f"Tool '{name}' failed: {builtin_failure.error}", *builtin_failure.output],
                error=builtin_failure.error,
                is_error=True,
            )

        logger.warning("Unknown tool requested", tool_name=name)
        return ToolResult.failure(str(ToolResolutionError(name)))
