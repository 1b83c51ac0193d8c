"""
Extensions - pluggable units run at fixed phases of the agent loop.
"""

from .base import (
    Extension,
    ExtensionContext,
    ExtensionInfo,
    ExtensionPhase,
    ExtensionResult,
)
from .builtin import (
    ConversationSummarizerExtension,
    SafetyFilterExtension,
    ToolUsageMonitorExtension,
    default_extensions,
)
from .manager import ExtensionManager

__all__ = [
    "ConversationSummarizerExtension",
    "Extension",
    "ExtensionContext",
    "ExtensionInfo",
    "ExtensionManager",
    "ExtensionPhase",
    "ExtensionResult",
    "SafetyFilterExtension",
    "ToolUsageMonitorExtension",
    "default_extensions",
]
