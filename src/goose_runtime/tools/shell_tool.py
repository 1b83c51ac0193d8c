"""
Shell Command Tool - Allowlisted command execution inside the workspace.

Commands run with a timeout, a blocked-pattern filter and output limits.
A non-zero exit is reported as a failed ToolResult carrying the captured
output so the dispatcher can describe it to the model.
"""

import asyncio
import logging
import os
import re
import shlex
from dataclasses import dataclass, field
from pathlib import Path

from .base import Tool, ToolParameter, ToolResult

logger = logging.getLogger(__name__)


@dataclass
class ShellConfig:
    """Configuration for shell command execution."""

    workspace_dir: str
    enabled: bool = True
    timeout_seconds: int = 30
    max_output_lines: int = 100
    max_output_chars: int = 10000

    allowed_commands: set[str] = field(default_factory=lambda: {
        "ls", "pwd", "whoami", "date", "uptime", "df", "du",
        "cat", "head", "tail", "wc", "grep", "find", "which",
        "echo", "env", "uname", "hostname", "ps",
        "git", "python", "pip", "npm",
        "mkdir", "touch", "cp", "mv", "rm",
        "tar", "gzip", "gunzip", "zip", "unzip",
        "jq", "sed", "awk", "sort", "uniq", "cut", "diff",
    })

    blocked_patterns: list[str] = field(default_factory=lambda: [
        r"rm\s+-rf\s+/",
        r"rm\s+-rf\s+~",
        r">\s*/dev/",
        r"mkfs",
        r"dd\s+if=",
        r"chmod\s+777",
        r"curl.*\|\s*sh",
        r"wget.*\|\s*sh",
        r"eval\s+",
        r"`.*`",
        r"\$\(.*\)",
    ])


@dataclass
class CommandOutput:
    """Captured result of one command."""

    return_code: int
    stdout: str = ""
    stderr: str = ""
    blocked: bool = False


class ShellExecutor:
    """Runs shell commands with safety controls."""

    def __init__(self, config: ShellConfig):
        self.config = config
        self.workspace = Path(config.workspace_dir).expanduser().resolve()
        self.workspace.mkdir(parents=True, exist_ok=True)

    def check_command(self, command: str) -> str | None:
        """Return the reason a command is refused, or None if it may run."""
        if not self.config.enabled:
            return "Shell execution is disabled"

        for pattern in self.config.blocked_patterns:
            if re.search(pattern, command, re.IGNORECASE):
                return "Command contains blocked pattern"

        try:
            parts = shlex.split(command)
        except ValueError as e:
            return f"Invalid command syntax: {e}"

        if not parts:
            return "Empty command"

        base_command = Path(parts[0]).name
        if base_command not in self.config.allowed_commands:
            return f"Command '{base_command}' is not in the allowlist"

        return None

    def _resolve_cwd(self, working_dir: str | None) -> Path:
        if not working_dir:
            return self.workspace
        cwd = Path(working_dir)
        if not cwd.is_absolute():
            cwd = self.workspace / cwd
        cwd = cwd.resolve()
        if not cwd.is_relative_to(self.workspace):
            logger.warning(f"Working directory outside workspace, using workspace: {working_dir}")
            return self.workspace
        return cwd

    async def execute(self, command: str, working_dir: str | None = None) -> CommandOutput:
        reason = self.check_command(command)
        if reason:
            return CommandOutput(return_code=-1, stderr=f"Command blocked: {reason}", blocked=True)

        cwd = self._resolve_cwd(working_dir)

        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd),
                env=os.environ.copy(),
            )
        except OSError as e:
            logger.error(f"Error starting command: {e}")
            return CommandOutput(return_code=-1, stderr=str(e))

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=self.config.timeout_seconds,
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return CommandOutput(
                return_code=-1,
                stderr=f"Command timed out after {self.config.timeout_seconds} seconds",
            )

        return CommandOutput(
            return_code=process.returncode if process.returncode is not None else -1,
            stdout=self._truncate_output(stdout.decode("utf-8", errors="replace")),
            stderr=self._truncate_output(stderr.decode("utf-8", errors="replace")),
        )

    def _truncate_output(self, output: str) -> str:
        """Truncate output to configured limits."""
        lines = output.split("\n")

        if len(lines) > self.config.max_output_lines:
            shown = lines[:self.config.max_output_lines]
            output = "\n".join(shown) + f"\n\n... (truncated, {len(shown)} of {len(lines)} lines shown)"

        if len(output) > self.config.max_output_chars:
            output = output[:self.config.max_output_chars] + "\n\n... (truncated)"

        return output


def create_shell_tools(executor: ShellExecutor) -> list[Tool]:
    """Create shell tools bound to ``executor``."""

    async def run_command(command: str, working_dir: str = "") -> ToolResult:
        result = await executor.execute(command, working_dir or None)

        lines = []
        if result.stdout:
            lines.append(result.stdout.rstrip("\n"))
        if result.stderr:
            lines.append(f"stderr: {result.stderr.rstrip()}")

        if result.blocked:
            return ToolResult.failure(result.stderr)

        if result.return_code != 0:
            return ToolResult.failure(f"Command exited with code {result.return_code}", *lines)

        return ToolResult.ok(*(lines or ["Command completed successfully (no output)"]))

    return [
        Tool(
            name="run_command",
            description="Execute a shell command in the workspace. Only allowlisted commands are permitted.",
            parameters=[
                ToolParameter(
                    name="command",
                    param_type="string",
                    description="The shell command to execute",
                ),
                ToolParameter(
                    name="working_dir",
                    param_type="string",
                    description="Working directory relative to the workspace (default: workspace root)",
                    required=False,
                ),
            ],
            handler=run_command,
        ),
    ]
