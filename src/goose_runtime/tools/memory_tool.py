"""
Memory tools - let the model remember and recall information.
"""

import logging

from ..memory import MemoryEntry, MemoryStore, MemoryType
from .base import Tool, ToolParameter, ToolResult

logger = logging.getLogger(__name__)


def create_memory_tools(store: MemoryStore) -> list[Tool]:
    """Create remember/recall tools bound to ``store``."""

    async def remember(content: str, memory_type: str = "factual", importance: float = 0.5) -> ToolResult:
        try:
            kind = MemoryType(memory_type.lower())
        except ValueError:
            kind = MemoryType.FACTUAL

        try:
            stored = await store.add(MemoryEntry(content=content, memory_type=kind, importance=importance))
        except ValueError as e:
            return ToolResult.failure(str(e))

        if stored is None:
            return ToolResult.failure("Semantic memories must look like 'concept: definition'")

        logger.info(f"Remembered {kind.value} memory {stored.id}")
        return ToolResult.ok(f"Saved to memory ({kind.value}): {content}", data={"id": stored.id})

    async def recall(query: str) -> ToolResult:
        matches = await store.search(query)
        if matches:
            return ToolResult.ok(*(f"- {m.content}" for m in matches))

        concept = await store.get_concept(query)
        if concept is not None:
            return ToolResult.ok(f"{concept.concept}: {concept.definition}")

        return ToolResult.ok("No memories found.")

    return [
        Tool(
            name="remember",
            description=(
                "Save important information to memory. Use this when the user "
                "shares something worth remembering later in the session."
            ),
            parameters=[
                ToolParameter(
                    name="content",
                    param_type="string",
                    description="The information to remember. Semantic memories use 'concept: definition'.",
                ),
                ToolParameter(
                    name="memory_type",
                    param_type="string",
                    description="Kind of memory (default: factual)",
                    required=False,
                    enum=[t.value for t in MemoryType],
                ),
                ToolParameter(
                    name="importance",
                    param_type="number",
                    description="Importance from 0 to 1 (default: 0.5)",
                    required=False,
                ),
            ],
            handler=remember,
        ),
        Tool(
            name="recall",
            description="Search memory for previously saved information.",
            parameters=[
                ToolParameter(
                    name="query",
                    param_type="string",
                    description="What to search for",
                ),
            ],
            handler=recall,
            readonly=True,
        ),
    ]
