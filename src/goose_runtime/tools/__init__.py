"""
Tools module for agent capabilities.
"""

from .approval import ApprovalManager, PendingApproval
from .base import Tool, ToolParameter, ToolResult
from .dispatcher import ExternalToolExecutor, ToolDispatcher
from .http_executor import HttpToolExecutor
from .registry import ToolRegistry, create_builtin_registry

__all__ = [
    "ApprovalManager",
    "ExternalToolExecutor",
    "HttpToolExecutor",
    "PendingApproval",
    "Tool",
    "ToolDispatcher",
    "ToolParameter",
    "ToolRegistry",
    "ToolResult",
    "create_builtin_registry",
]
