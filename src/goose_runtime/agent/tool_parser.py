"""
Tool call extraction from model output.

Structured tool calls reported by the provider always win. Models without
native tool calling can instead emit fenced blocks::

    ```tool_call
    {"name": "read_file", "arguments": {"path": "notes.md"}}
    ```
"""

import json
import re
import uuid

import structlog

from ..llm.base import ToolCall

logger = structlog.get_logger()

TOOL_BLOCK_RE = re.compile(r"```tool_call\s*\n(.*?)```", re.DOTALL)


class ToolCallParser:
    """Default parser: structured calls, then fenced JSON blocks."""

    def parse(self, text: str, structured: list[ToolCall]) -> list[ToolCall]:
        if structured:
            return list(structured)

        calls = []
        for match in TOOL_BLOCK_RE.finditer(text):
            try:
                data = json.loads(match.group(1))
            except json.JSONDecodeError:
                logger.warning("Ignoring malformed tool_call block", block=match.group(1)[:200])
                continue

            if not isinstance(data, dict) or not isinstance(data.get("name"), str):
                continue

            arguments = data.get("arguments")
            calls.append(
                ToolCall(
                    id=str(data.get("id") or f"call_{uuid.uuid4().hex[:12]}"),
                    name=data["name"],
                    arguments=arguments if isinstance(arguments, dict) else {},
                )
            )

        return calls
