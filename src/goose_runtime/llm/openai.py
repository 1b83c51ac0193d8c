"""
OpenAI GPT LLM provider (also works with OpenRouter and compatible APIs).
"""

import json
from typing import Any, AsyncIterator

import openai
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


def _parse_arguments(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Malformed tool arguments from OpenAI", raw=raw[:200])
        return {}
    return parsed if isinstance(parsed, dict) else {}


class OpenAILLM(BaseLLM):
    """OpenAI GPT LLM provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ):
        super().__init__(api_key, model, base_url, max_tokens, temperature)
        self.client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
        )

    @property
    def provider_name(self) -> str:
        return "openai"

    def _convert_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        """Convert Messages to OpenAI format."""
        converted = []

        for msg in messages:
            if msg.role == "tool":
                converted.append({
                    "role": "tool",
                    "tool_call_id": msg.tool_call_id,
                    "content": msg.content,
                })
            elif msg.role == "assistant" and msg.tool_calls:
                tool_calls = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {
                            "name": tc.name,
                            "arguments": json.dumps(tc.arguments),
                        },
                    }
                    for tc in msg.tool_calls
                ]
                converted.append({
                    "role": "assistant",
                    "content": msg.content or None,
                    "tool_calls": tool_calls,
                })
            else:
                converted.append({
                    "role": msg.role,
                    "content": msg.content,
                })

        return converted

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to OpenAI format."""
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in tools
        ]

    def _build_kwargs(self, request: CompletionRequest, stream: bool) -> dict[str, Any]:
        converted_messages = self._convert_messages(request.messages)

        if request.system_prompt:
            converted_messages.insert(0, {"role": "system", "content": request.system_prompt})

        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self._max_tokens(request),
            "temperature": self._temperature(request),
            "messages": converted_messages,
        }
        if stream:
            kwargs["stream"] = True

        if request.tools:
            kwargs["tools"] = self._convert_tools(request.tools)

        return kwargs

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Generate a response from GPT."""
        kwargs = self._build_kwargs(request, stream=False)

        try:
            response = await self.client.chat.completions.create(**kwargs)
        except openai.APIError as e:
            logger.error("OpenAI API error", error=str(e))
            raise ProviderError(str(e), getattr(e, "status_code", None)) from e

        choice = response.choices[0]
        message = choice.message

        tool_calls = [
            ToolCall(
                id=tc.id,
                name=tc.function.name,
                arguments=_parse_arguments(tc.function.arguments),
            )
            for tc in message.tool_calls or []
        ]

        return CompletionResponse(
            content=message.content or "",
            tool_calls=tool_calls,
            input_tokens=response.usage.prompt_tokens if response.usage else 0,
            output_tokens=response.usage.completion_tokens if response.usage else 0,
            model=response.model,
            stop_reason=choice.finish_reason,
            raw_response=response,
        )

    async def stream(self, request: CompletionRequest) -> AsyncIterator[CompletionFragment]:
        """Stream a response from GPT.

        Tool call deltas arrive in pieces keyed by index; they are assembled
        and emitted in one final fragment.
        """
        kwargs = self._build_kwargs(request, stream=True)
        pending: dict[int, dict[str, str]] = {}
        finish_reason = None

        try:
            stream = await self.client.chat.completions.create(**kwargs)

            async for chunk in stream:  # type: ignore
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta
                if choice.finish_reason:
                    finish_reason = choice.finish_reason

                for tc in delta.tool_calls or []:
                    slot = pending.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                    if tc.id:
                        slot["id"] = tc.id
                    if tc.function and tc.function.name:
                        slot["name"] += tc.function.name
                    if tc.function and tc.function.arguments:
                        slot["arguments"] += tc.function.arguments

                if delta.content:
                    yield CompletionFragment(text=delta.content)

        except openai.APIError as e:
            logger.error("OpenAI streaming error", error=str(e))
            raise ProviderError(str(e), getattr(e, "status_code", None)) from e

        tool_calls = [
            ToolCall(id=slot["id"], name=slot["name"], arguments=_parse_arguments(slot["arguments"]))
            for _, slot in sorted(pending.items())
        ]
        if tool_calls or finish_reason:
            yield CompletionFragment(tool_calls=tool_calls, finish_reason=finish_reason)
