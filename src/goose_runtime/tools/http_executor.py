"""
External tools served over HTTP.

The server exposes:
- ``GET  {base_url}/tools`` -> ``{"tools": [{"name", "description", "parameters"}]}``
- ``POST {base_url}/tools/{name}`` with ``{"arguments": {...}}`` -> ``{"output": [...]}``

A 404 from the execute endpoint means the server does not provide the tool.
"""

from typing import Any

import httpx
import structlog

from ..errors import ToolError, ToolResolutionError
from ..llm.base import ToolDefinition

logger = structlog.get_logger()


class HttpToolExecutor:
    """:class:`ExternalToolExecutor` backed by an HTTP tool server."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport)

    async def list_tools(self) -> list[ToolDefinition]:
        async with self._client() as client:
            response = await client.get("/tools")
            response.raise_for_status()
            data = response.json()

        return [
            ToolDefinition(
                name=tool["name"],
                description=tool.get("description", ""),
                parameters=tool.get("parameters") or {"type": "object", "properties": {}},
            )
            for tool in data.get("tools", [])
        ]

    async def execute(self, name: str, arguments: dict[str, Any]) -> list[str]:
        """Run a tool on the server.

        Raises:
            ToolResolutionError: If the server does not know the tool
            ToolError: If the server reports a failure
        """
        async with self._client() as client:
            response = await client.post(f"/tools/{name}", json={"arguments": arguments})

        if response.status_code == 404:
            raise ToolResolutionError(name)

        if response.is_error:
            logger.warning("External tool server error", tool_name=name, status=response.status_code)
            raise ToolError(f"HTTP {response.status_code}: {response.text[:200]}")

        output = response.json().get("output", [])
        if isinstance(output, str):
            return [output]
        return [str(line) for line in output]
