"""
Base classes for tools.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine

from ..llm.base import ToolDefinition


@dataclass
class ToolResult:
    """Result from a tool execution.

    ``success`` is False only when the call could not be resolved or
    executed at all. A resolved call whose tool reported a problem is
    ``success=True, is_error=True`` with the problem described in ``output``.
    """

    success: bool
    output: list[str] = field(default_factory=list)
    data: Any = None
    error: str | None = None
    is_error: bool = False

    @property
    def text(self) -> str:
        if not self.success:
            return f"Error: {self.error}"
        return "\n".join(self.output)

    @classmethod
    def ok(cls, *lines: str, data: Any = None) -> "ToolResult":
        return cls(success=True, output=list(lines), data=data)

    @classmethod
    def failure(cls, error: str, *lines: str) -> "ToolResult":
        return cls(success=False, output=list(lines), error=error)


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    param_type: str  # string, integer, boolean, array, object
    description: str
    required: bool = True
    default: Any = None
    enum: list[str] | None = None


@dataclass
class Tool:
    """A named async handler plus the parameter schema the model sees."""

    name: str
    description: str
    parameters: list[ToolParameter]
    handler: Callable[..., Coroutine[Any, Any, ToolResult]]
    readonly: bool = False

    def get_parameters_schema(self) -> dict[str, Any]:
        """Convert parameters to JSON Schema format."""
        properties = {}
        required = []

        for param in self.parameters:
            prop = {
                "type": param.param_type,
                "description": param.description,
            }
            if param.enum:
                prop["enum"] = param.enum
            if param.default is not None:
                prop["default"] = param.default

            properties[param.name] = prop

            if param.required:
                required.append(param.name)

        return {
            "type": "object",
            "properties": properties,
            "required": required,
        }

    def to_definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.get_parameters_schema(),
        )

    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool handler."""
        return await self.handler(**kwargs)
