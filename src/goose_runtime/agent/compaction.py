"""
Conversation Compaction - Keeps the working conversation inside the context budget.

When the estimated token count crosses ``context_limit * compact_threshold``
the conversation is compacted:

- System messages are always kept
- The last N non-system messages are kept verbatim
- Everything older is folded into a single summary message placed just
  before the most recent retained message

Compaction is pure and deterministic, and compacting an already compacted
conversation returns it unchanged.
"""

import math
from dataclasses import dataclass
from typing import Callable

import structlog

from ..llm.base import Message

logger = structlog.get_logger()

# Approximate characters per token
CHARS_PER_TOKEN = 4

DEFAULT_KEEP_RECENT = 10

SUMMARY_FLAG = "compaction_summary"
SUMMARIZED_COUNT = "summarized_count"

TokenEstimator = Callable[[list[Message]], int]


@dataclass
class CompactionResult:
    """Outcome of one compaction."""

    original_message_count: int
    compacted_message_count: int
    summarized_count: int
    tokens_saved_estimate: int

    @property
    def changed(self) -> bool:
        return self.summarized_count > 0


def estimate_tokens(messages: list[Message]) -> int:
    """Estimate token count: total content length divided by four, rounded up."""
    total_chars = sum(len(m.content) for m in messages)
    return math.ceil(total_chars / CHARS_PER_TOKEN)


def should_compact(
    messages: list[Message],
    context_limit: int,
    threshold: float,
    estimator: TokenEstimator = estimate_tokens,
) -> bool:
    """True when the estimated size exceeds ``context_limit * threshold``."""
    return estimator(messages) > context_limit * threshold


def is_summary(message: Message) -> bool:
    return bool(message.metadata.get(SUMMARY_FLAG))


def _extract_key_facts(messages: list[Message]) -> list[str]:
    """Pull out things the user explicitly told us so they survive the summary."""
    facts = []

    for msg in messages:
        if msg.role != "user":
            continue
        content_lower = msg.content.lower()
        if any(phrase in content_lower for phrase in [
            "my name is", "i work", "i live", "i prefer",
            "remember that", "don't forget", "important:",
        ]):
            facts.append(msg.content[:200])

    return facts[:5]


def _summary_text(dropped: list[Message], summarized_count: int) -> str:
    parts = [f"[{summarized_count} earlier messages were summarized to save context]"]

    user_count = sum(1 for m in dropped if m.role == "user")
    assistant_count = sum(1 for m in dropped if m.role == "assistant")
    tool_count = sum(1 for m in dropped if m.role == "tool")
    parts.append(
        f"Removed in this pass: {user_count} user messages, "
        f"{assistant_count} assistant responses, {tool_count} tool results."
    )

    key_facts = _extract_key_facts(dropped)
    if key_facts:
        parts.append("Key information:")
        parts.extend(f"  - {fact}" for fact in key_facts)

    return "\n".join(parts)


def compact_conversation(
    messages: list[Message],
    keep_last_n: int = DEFAULT_KEEP_RECENT,
) -> list[Message]:
    """Return a compacted copy of ``messages``.

    Args:
        messages: Working conversation
        keep_last_n: Non-system messages to keep verbatim

    Returns:
        At most ``system messages + keep_last_n + 1`` messages. The input list
        is never modified.
    """
    candidates = [m for m in messages if m.role != "system" and not is_summary(m)]
    if len(candidates) <= keep_last_n:
        return list(messages)

    kept = candidates[len(candidates) - keep_last_n:] if keep_last_n > 0 else []
    # A tool result is meaningless without the assistant call that produced it
    while kept and kept[0].role == "tool":
        kept = kept[1:]

    kept_ids = {id(m) for m in kept}
    dropped = [m for m in candidates if id(m) not in kept_ids]
    previous_summaries = [m for m in messages if is_summary(m)]
    summarized_count = len(dropped) + sum(
        int(m.metadata.get(SUMMARIZED_COUNT, 0)) for m in previous_summaries
    )

    retained = [m for m in messages if m.role == "system" or id(m) in kept_ids]

    summary = Message(
        role="assistant",
        content=_summary_text(dropped, summarized_count),
        timestamp=dropped[-1].timestamp,
        metadata={SUMMARY_FLAG: True, SUMMARIZED_COUNT: summarized_count},
    )

    insert_at = max(len(retained) - 1, 0)
    retained.insert(insert_at, summary)
    return retained


def compact_with_result(
    messages: list[Message],
    keep_last_n: int = DEFAULT_KEEP_RECENT,
    estimator: TokenEstimator = estimate_tokens,
) -> tuple[list[Message], CompactionResult]:
    """Compact and report what changed."""
    compacted = compact_conversation(messages, keep_last_n)
    changed = compacted != list(messages)

    summarized = 0
    if changed:
        summary = next(m for m in compacted if is_summary(m))
        summarized = int(summary.metadata[SUMMARIZED_COUNT])

    result = CompactionResult(
        original_message_count=len(messages),
        compacted_message_count=len(compacted),
        summarized_count=summarized,
        tokens_saved_estimate=max(0, estimator(messages) - estimator(compacted)),
    )

    if changed:
        logger.info(
            "Compaction complete",
            original=result.original_message_count,
            compacted=result.compacted_message_count,
            summarized=result.summarized_count,
            tokens_saved=result.tokens_saved_estimate,
        )

    return compacted, result
