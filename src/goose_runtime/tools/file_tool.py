"""
File Operations Tool - Read, write and list files inside the workspace.

Paths are resolved relative to the workspace and may not escape it.
"""

import logging
from pathlib import Path

from .base import Tool, ToolParameter, ToolResult

logger = logging.getLogger(__name__)

MAX_LISTED_FILES = 50


class FileManager:
    """File operations confined to one workspace directory."""

    blocked_names = {".ssh", ".gnupg", ".aws", ".gcloud", "credentials"}

    def __init__(self, workspace_dir: str | Path):
        self.workspace_dir = Path(workspace_dir).expanduser().resolve()
        self.workspace_dir.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        """Resolve ``path`` against the workspace, refusing anything outside it."""
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self.workspace_dir / candidate
        resolved = candidate.resolve()

        if not resolved.is_relative_to(self.workspace_dir):
            logger.warning(f"Path outside workspace: {path}")
            raise PermissionError(f"Access denied: {path}")

        if any(part.lower() in self.blocked_names for part in resolved.parts):
            logger.warning(f"Blocked path: {path}")
            raise PermissionError(f"Access denied: {path}")

        return resolved

    def read_file(self, path: str, max_lines: int | None = None) -> list[str]:
        file_path = self._resolve(path)

        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {path}")
        if not file_path.is_file():
            raise IsADirectoryError(f"Path is a directory: {path}")

        lines = file_path.read_text().split("\n")
        if max_lines and len(lines) > max_lines:
            remaining = len(lines) - max_lines
            lines = lines[:max_lines] + [f"... (truncated, {remaining} more lines)"]
        return lines

    def write_file(self, path: str, content: str, append: bool = False) -> str:
        file_path = self._resolve(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        with open(file_path, "a" if append else "w") as f:
            f.write(content)

        action = "Appended" if append else "Wrote"
        return f"{action} {len(content)} characters to {file_path.relative_to(self.workspace_dir)}"

    def list_files(self, path: str = ".", pattern: str = "*", recursive: bool = False) -> list[str]:
        dir_path = self._resolve(path)

        if not dir_path.exists():
            raise FileNotFoundError(f"Directory not found: {path}")
        if not dir_path.is_dir():
            raise NotADirectoryError(f"Path is not a directory: {path}")

        matches = dir_path.rglob(pattern) if recursive else dir_path.glob(pattern)
        return sorted(str(p.relative_to(dir_path)) for p in matches if p.is_file())


def create_file_tools(manager: FileManager) -> list[Tool]:
    """Create file tools bound to ``manager``."""

    async def read_file(path: str, max_lines: int = 200) -> ToolResult:
        try:
            return ToolResult.ok(*manager.read_file(path, max_lines))
        except OSError as e:
            return ToolResult.failure(str(e))

    async def write_file(path: str, content: str, append: bool = False) -> ToolResult:
        try:
            return ToolResult.ok(manager.write_file(path, content, append))
        except OSError as e:
            return ToolResult.failure(str(e))

    async def list_files(path: str = ".", pattern: str = "*", recursive: bool = False) -> ToolResult:
        try:
            files = manager.list_files(path, pattern, recursive)
        except OSError as e:
            return ToolResult.failure(str(e))

        if not files:
            return ToolResult.ok("No files found.")

        lines = files[:MAX_LISTED_FILES]
        if len(files) > MAX_LISTED_FILES:
            lines.append(f"... and {len(files) - MAX_LISTED_FILES} more files")
        return ToolResult.ok(*lines, data={"count": len(files)})

    return [
        Tool(
            name="read_file",
            description="Read the contents of a file in the workspace.",
            parameters=[
                ToolParameter(
                    name="path",
                    param_type="string",
                    description="Path to the file, relative to the workspace",
                ),
                ToolParameter(
                    name="max_lines",
                    param_type="integer",
                    description="Maximum lines to read (default: 200)",
                    required=False,
                ),
            ],
            handler=read_file,
            readonly=True,
        ),
        Tool(
            name="write_file",
            description="Write content to a file in the workspace.",
            parameters=[
                ToolParameter(
                    name="path",
                    param_type="string",
                    description="Path to the file, relative to the workspace",
                ),
                ToolParameter(
                    name="content",
                    param_type="string",
                    description="Content to write",
                ),
                ToolParameter(
                    name="append",
                    param_type="boolean",
                    description="Append instead of overwriting (default: false)",
                    required=False,
                ),
            ],
            handler=write_file,
        ),
        Tool(
            name="list_files",
            description="List files in a workspace directory.",
            parameters=[
                ToolParameter(
                    name="path",
                    param_type="string",
                    description="Directory path (default: workspace root)",
                    required=False,
                ),
                ToolParameter(
                    name="pattern",
                    param_type="string",
                    description="Glob pattern to filter files (default: *)",
                    required=False,
                ),
                ToolParameter(
                    name="recursive",
                    param_type="boolean",
                    description="Search recursively (default: false)",
                    required=False,
                ),
            ],
            handler=list_files,
            readonly=True,
        ),
    ]
