"""
Anthropic Claude LLM provider.
"""

from typing import Any, AsyncIterator

import anthropic
import structlog

from ..errors import ProviderError
from .base import (
    BaseLLM,
    CompletionFragment,
    CompletionRequest,
    CompletionResponse,
    Message,
    ToolCall,
    ToolDefinition,
)

logger = structlog.get_logger()


class AnthropicLLM(BaseLLM):
    """Anthropic Claude LLM provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ):
        super().__init__(api_key, model, base_url, max_tokens, temperature)
        self.client = anthropic.AsyncAnthropic(
            api_key=api_key,
            base_url=base_url,
        )

    @property
    def provider_name(self) -> str:
        return "anthropic"

    def _convert_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        """Convert Messages to Anthropic format."""
        converted = []

        for msg in messages:
            if msg.role == "system":
                continue

            if msg.role == "tool":
                converted.append({
                    "role": "user",
                    "content": [
                        {
                            "type": "tool_result",
                            "tool_use_id": msg.tool_call_id,
                            "content": msg.content,
                        }
                    ],
                })
            elif msg.role == "assistant" and msg.tool_calls:
                content: list[dict[str, Any]] = []
                if msg.content:
                    content.append({"type": "text", "text": msg.content})
                for tc in msg.tool_calls:
                    content.append({
                        "type": "tool_use",
                        "id": tc.id,
                        "name": tc.name,
                        "input": tc.arguments,
                    })
                converted.append({"role": "assistant", "content": content})
            else:
                converted.append({
                    "role": msg.role,
                    "content": msg.content,
                })

        return converted

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to Anthropic format."""
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.parameters,
            }
            for tool in tools
        ]

    def _extract_system_prompt(self, messages: list[Message]) -> str | None:
        """Join system messages into a single system prompt."""
        parts = [msg.content for msg in messages if msg.role == "system"]
        return "\n\n".join(parts) if parts else None

    def _build_kwargs(self, request: CompletionRequest) -> dict[str, Any]:
        system = request.system_prompt or self._extract_system_prompt(request.messages)

        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self._max_tokens(request),
            "temperature": self._temperature(request),
            "messages": self._convert_messages(request.messages),
        }

        if system:
            kwargs["system"] = system

        if request.tools:
            kwargs["tools"] = self._convert_tools(request.tools)

        return kwargs

    @staticmethod
    def _tool_calls_from_blocks(blocks: list[Any]) -> list[ToolCall]:
        return [
            ToolCall(
                id=block.id,
                name=block.name,
                arguments=dict(block.input) if isinstance(block.input, dict) else {},
            )
            for block in blocks
            if block.type == "tool_use"
        ]

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Generate a response from Claude."""
        kwargs = self._build_kwargs(request)

        try:
            response = await self.client.messages.create(**kwargs)
        except anthropic.APIError as e:
            logger.error("Anthropic API error", error=str(e))
            raise ProviderError(str(e), getattr(e, "status_code", None)) from e

        content = "".join(block.text for block in response.content if block.type == "text")

        return CompletionResponse(
            content=content,
            tool_calls=self._tool_calls_from_blocks(response.content),
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            model=response.model,
            stop_reason=response.stop_reason,
            raw_response=response,
        )

    async def stream(self, request: CompletionRequest) -> AsyncIterator[CompletionFragment]:
        """Stream a response from Claude."""
        kwargs = self._build_kwargs(request)

        try:
            async with self.client.messages.stream(**kwargs) as stream:
                async for text in stream.text_stream:
                    yield CompletionFragment(text=text)

                final = await stream.get_final_message()

        except anthropic.APIError as e:
            logger.error("Anthropic streaming error", error=str(e))
            raise ProviderError(str(e), getattr(e, "status_code", None)) from e

        yield CompletionFragment(
            tool_calls=self._tool_calls_from_blocks(final.content),
            finish_reason=final.stop_reason,
        )
