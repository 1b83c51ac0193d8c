"""Agent memory: short-term, long-term, episodic and semantic tiers."""

from .store import (
    EpisodicMemory,
    MemoryEntry,
    MemoryStore,
    MemoryType,
    SemanticMemory,
)

__all__ = [
    "EpisodicMemory",
    "MemoryEntry",
    "MemoryStore",
    "MemoryType",
    "SemanticMemory",
]
