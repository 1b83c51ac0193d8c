"""
Memory Store - Tiered agent memory.

Entries are routed by type:
- Factual / Procedural entries go to short-term memory
- Episodic entries are kept as timestamped events
- Semantic entries ("concept: definition") form a concept map

When short-term memory overflows, the oldest entry is promoted to
long-term memory if it is important enough, otherwise it is forgotten.
Searches cover short-term and long-term memory only.
"""

import copy
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from ..concurrency import RWLock
from ..hooks import HookPoint, HookRegistry
from ..llm.base import utcnow

logger = logging.getLogger(__name__)

MAX_SEARCH_RESULTS = 10


class MemoryType(str, Enum):
    """Kinds of memory entries."""

    FACTUAL = "factual"
    PROCEDURAL = "procedural"
    EPISODIC = "episodic"
    SEMANTIC = "semantic"


@dataclass
class MemoryEntry:
    """A single remembered item."""

    content: str
    memory_type: MemoryType = MemoryType.FACTUAL
    importance: float = 0.5
    tags: list[str] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    last_accessed: datetime = field(default_factory=utcnow)
    access_count: int = 0

    def clone(self) -> "MemoryEntry":
        return copy.deepcopy(self)


@dataclass
class EpisodicMemory:
    """Something that happened, with when it happened."""

    description: str
    importance: float
    tags: list[str] = field(default_factory=list)
    occurred_at: datetime = field(default_factory=utcnow)
    source_entry_id: str | None = None


@dataclass
class SemanticMemory:
    """A concept and what it means."""

    concept: str
    definition: str
    importance: float = 0.5
    updated_at: datetime = field(default_factory=utcnow)


def parse_concept(content: str) -> tuple[str, str] | None:
    """Split ``"concept: definition"`` content.

    Returns:
        (concept, definition), or None when there is no colon or no concept.
    """
    if ":" not in content:
        return None
    concept, definition = content.split(":", 1)
    concept = concept.strip()
    if not concept:
        return None
    return concept, definition.strip()


class MemoryStore:
    """Tiered memory with hook-driven preprocessing."""

    def __init__(
        self,
        hooks: HookRegistry | None = None,
        short_term_capacity: int = 100,
        promotion_threshold: float = 0.5,
    ):
        """Initialize the memory store.

        Args:
            hooks: Registry whose MEMORY hooks see every entry before it is stored
            short_term_capacity: Maximum short-term entries before consolidation
            promotion_threshold: Minimum importance for promotion to long-term memory
        """
        self.hooks = hooks or HookRegistry()
        self.short_term_capacity = short_term_capacity
        self.promotion_threshold = promotion_threshold

        self._short_term: list[MemoryEntry] = []
        self._long_term: list[MemoryEntry] = []
        self._episodic: list[EpisodicMemory] = []
        self._semantic: dict[str, SemanticMemory] = {}
        self._order: dict[str, int] = {}
        self._sequence = 0
        self._lock = RWLock()

    async def add(self, entry: MemoryEntry) -> MemoryEntry | None:
        """Store an entry.

        MEMORY hooks run on a clone of ``entry``; the caller's object is never
        modified. Returns the stored entry, or None when a semantic entry
        could not be parsed and was dropped.

        Raises:
            ValueError: If the entry's importance is outside [0, 1] after hooks
        """
        processed = await self.hooks.run(HookPoint.MEMORY, entry.clone())

        if not 0.0 <= processed.importance <= 1.0:
            raise ValueError(f"importance must be between 0 and 1, got {processed.importance}")

        async with self._lock.write():
            if processed.memory_type in (MemoryType.FACTUAL, MemoryType.PROCEDURAL):
                self._sequence += 1
                self._order[processed.id] = self._sequence
                self._short_term.append(processed)
                self._consolidate()
                return processed

            if processed.memory_type == MemoryType.EPISODIC:
                self._episodic.append(
                    EpisodicMemory(
                        description=processed.content,
                        importance=processed.importance,
                        tags=list(processed.tags),
                        occurred_at=processed.created_at,
                        source_entry_id=processed.id,
                    )
                )
                return processed

            parsed = parse_concept(processed.content)
            if parsed is None:
                logger.debug(f"Dropping semantic entry without 'concept: definition' form: {processed.id}")
                return None

            concept, definition = parsed
            self._semantic[concept] = SemanticMemory(
                concept=concept,
                definition=definition,
                importance=processed.importance,
            )
            return processed

    def _consolidate(self) -> None:
        """Move overflow from short-term to long-term memory. Caller holds the write lock."""
        while len(self._short_term) > self.short_term_capacity:
            oldest = self._short_term.pop(0)
            if oldest.importance >= self.promotion_threshold:
                self._long_term.append(oldest)
                logger.debug(f"Promoted memory {oldest.id} to long-term")
            else:
                self._order.pop(oldest.id, None)
                logger.debug(f"Forgot low-importance memory {oldest.id}")

    async def search(self, query: str, memory_type: MemoryType | None = None) -> list[MemoryEntry]:
        """Find entries whose content or tags contain ``query`` (case-insensitive).

        Args:
            query: Substring to look for
            memory_type: Optional type filter

        Returns:
            Up to 10 matching entries, most important first. Entries of equal
            importance keep their insertion order.
        """
        needle = query.lower()

        async with self._lock.read():
            matches = [
                entry
                for entry in self._short_term + self._long_term
                if (needle in entry.content.lower() or any(needle in tag.lower() for tag in entry.tags))
                and (memory_type is None or entry.memory_type == memory_type)
            ]
            matches.sort(key=lambda e: self._order.get(e.id, 0))
            matches.sort(key=lambda e: e.importance, reverse=True)
            return [entry.clone() for entry in matches[:MAX_SEARCH_RESULTS]]

    async def recall(self, entry_id: str) -> MemoryEntry | None:
        """Fetch one short- or long-term entry by id and record the access."""
        async with self._lock.write():
            for entry in self._short_term + self._long_term:
                if entry.id == entry_id:
                    entry.access_count += 1
                    entry.last_accessed = utcnow()
                    return entry.clone()
        return None

    async def get_concept(self, concept: str) -> SemanticMemory | None:
        async with self._lock.read():
            found = self._semantic.get(concept.strip())
            return copy.deepcopy(found) if found else None

    async def episodes(self, limit: int | None = None) -> list[EpisodicMemory]:
        """Episodic memories, most recent last."""
        async with self._lock.read():
            items = self._episodic[-limit:] if limit else self._episodic
            return copy.deepcopy(items)

    async def stats(self) -> dict[str, int]:
        async with self._lock.read():
            return {
                "short_term": len(self._short_term),
                "long_term": len(self._long_term),
                "episodic": len(self._episodic),
                "semantic": len(self._semantic),
            }

    async def clear(self) -> None:
        async with self._lock.write():
            self._short_term.clear()
            self._long_term.clear()
            self._episodic.clear()
            self._semantic.clear()
            self._order.clear()
