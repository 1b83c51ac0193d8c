"""
Exception hierarchy for goose-runtime.

The orchestration layer converts these into events instead of letting them
escape a turn; they exist so collaborators (providers, stores, tools) can
signal failures precisely.
"""


class GooseRuntimeError(Exception):
    """Base exception for goose-runtime."""

    pass


class ConfigurationError(GooseRuntimeError):
    """Invalid or incomplete configuration."""

    pass


class ProviderError(GooseRuntimeError):
    """Model provider failure (transport, auth, rate limit, bad response)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ToolError(GooseRuntimeError):
    """Tool-related errors."""

    pass


class ToolResolutionError(ToolError):
    """No built-in or external tool matched the requested name."""

    def __init__(self, tool_name: str):
        super().__init__(f"Unknown tool: {tool_name}")
        self.tool_name = tool_name


class HookError(GooseRuntimeError):
    """A lifecycle hook failed. Always treated as non-fatal."""

    def __init__(self, hook_name: str, message: str):
        super().__init__(f"Hook '{hook_name}' failed: {message}")
        self.hook_name = hook_name


class PersistenceError(GooseRuntimeError):
    """Session storage failure."""

    pass


class SessionNotFoundError(PersistenceError):
    """Session not found."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class PlanError(GooseRuntimeError):
    """Plan construction or execution errors."""

    pass


class DependencyUnmetError(PlanError):
    """A plan step depends on steps that have not completed."""

    def __init__(self, step_id: str, missing: list[str]):
        super().__init__(
            f"Step '{step_id}' has unmet dependencies: {', '.join(missing)}"
        )
        self.step_id = step_id
        self.missing = missing


class ExtensionError(GooseRuntimeError):
    """Extension registration or execution errors."""

    pass


class LimitExceeded(GooseRuntimeError):
    """An iteration or turn limit was reached."""

    pass
