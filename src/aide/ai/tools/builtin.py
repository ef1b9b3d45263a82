"""Built-in workspace tools offered to models in agent mode.

Every tool returns a JSON-serialisable mapping. Problems the model can act on
(missing file, text not found, blocked command) come back as
``{"error": ...}`` payloads instead of exceptions.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, ClassVar, Dict, List, Mapping

from ...context.workspace import LocalWorkspace, is_excluded
from .registry import ToolRegistry
from .types import ToolCategory, ToolSpec

LOGGER = logging.getLogger(__name__)

PREVIEW_LINES = 100
MAX_OUTPUT_CHARS = 20_000
DEFAULT_COMMAND_TIMEOUT = 60.0

BLOCKED_COMMAND_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"rm\s+-rf\s+[/~]", re.IGNORECASE),
    re.compile(r">\s*/dev/", re.IGNORECASE),
    re.compile(r"mkfs", re.IGNORECASE),
    re.compile(r"dd\s+if=", re.IGNORECASE),
    re.compile(r":\(\)\s*\{\s*:\|:&\s*\};:"),
)


def is_blocked_command(command: str) -> bool:
    return any(pattern.search(command) for pattern in BLOCKED_COMMAND_PATTERNS)


def _truncate(text: str, limit: int = MAX_OUTPUT_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + f"\n... [truncated {len(text) - limit} characters]"


# -----------------------------------------------------------------------------
# Base
# -----------------------------------------------------------------------------


@dataclass
class WorkspaceTool:
    """Shared plumbing for tools bound to a :class:`LocalWorkspace`."""

    workspace: LocalWorkspace
    spec: ClassVar[ToolSpec]
    failure_label: ClassVar[str] = "Tool failed"

    @property
    def name(self) -> str:
        return self.spec.name

    async def execute(self, arguments: Mapping[str, Any]) -> Dict[str, Any]:
        try:
            return await self.run(arguments)
        except (OSError, UnicodeDecodeError, ValueError) as exc:
            LOGGER.debug("%s failed: %s", self.name, exc)
            return {"error": f"{self.failure_label}: {exc}"}

    async def run(self, arguments: Mapping[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError


# -----------------------------------------------------------------------------
# File tools
# -----------------------------------------------------------------------------


@dataclass
class ReadFileTool(WorkspaceTool):
    spec: ClassVar[ToolSpec] = ToolSpec(
        name="read_file",
        description="Read the contents of a file. Returns the file content with line numbers.",
        parameters={
            "path": {"type": "string", "description": "The path to the file (relative to workspace root or absolute)"},
        },
        required=("path",),
        category=ToolCategory.READ,
    )
    failure_label: ClassVar[str] = "Failed to read file"

    async def run(self, arguments: Mapping[str, Any]) -> Dict[str, Any]:
        path = self.workspace.resolve(arguments["path"])
        text = await self.workspace.read_text(path)
        lines = text.split("\n")
        preview = "\n".join(f"{number}: {line}" for number, line in enumerate(lines[:PREVIEW_LINES], start=1))
        return {"path": str(path), "content": text, "line_count": len(lines), "preview": preview}


@dataclass
class WriteFileTool(WorkspaceTool):
    spec: ClassVar[ToolSpec] = ToolSpec(
        name="write_file",
        description="Create or overwrite a file with the specified content.",
        parameters={
            "path": {"type": "string", "description": "The path to the file (relative or absolute)"},
            "content": {"type": "string", "description": "The complete content to write to the file"},
        },
        required=("path", "content"),
        category=ToolCategory.WRITE,
    )
    failure_label: ClassVar[str] = "Failed to write file"

    async def run(self, arguments: Mapping[str, Any]) -> Dict[str, Any]:
        path = self.workspace.resolve(arguments["path"])
        content = str(arguments["content"])
        existed = path.exists()
        await asyncio.to_thread(_write_text, path, content)
        LOGGER.info("Wrote file: %s", path)
        return {
            "success": True,
            "path": str(path),
            "action": "updated" if existed else "created",
            "line_count": len(content.split("\n")),
        }


@dataclass
class EditFileTool(WorkspaceTool):
    spec: ClassVar[ToolSpec] = ToolSpec(
        name="edit_file",
        description=(
            "Make a precise edit to a file by replacing specific content. Use this for small, targeted changes."
        ),
        parameters={
            "path": {"type": "string", "description": "The path to the file"},
            "old_content": {"type": "string", "description": "The exact content to find and replace"},
            "new_content": {"type": "string", "description": "The new content to replace it with"},
        },
        required=("path", "old_content", "new_content"),
        category=ToolCategory.WRITE,
    )
    failure_label: ClassVar[str] = "Failed to edit file"

    async def run(self, arguments: Mapping[str, Any]) -> Dict[str, Any]:
        path = self.workspace.resolve(arguments["path"])
        old_content = str(arguments["old_content"])
        new_content = str(arguments["new_content"])
        current = await self.workspace.read_text(path)
        if not old_content or old_content not in current:
            return {
                "error": "Could not find the specified content to replace.",
                "hint": "Make sure old_content matches exactly including whitespace and indentation.",
            }
        await asyncio.to_thread(_write_text, path, current.replace(old_content, new_content, 1))
        LOGGER.info("Edited file: %s", path)
        return {"success": True, "path": str(path)}


def _write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


# -----------------------------------------------------------------------------
# Navigation tools
# -----------------------------------------------------------------------------


@dataclass
class SearchCodebaseTool(WorkspaceTool):
    spec: ClassVar[ToolSpec] = ToolSpec(
        name="search_codebase",
        description=(
            "Search the codebase for files or content. Use type=filename to find files by name, "
            "or type=content to search within files."
        ),
        parameters={
            "query": {"type": "string", "description": "The search query or pattern"},
            "type": {"type": "string", "description": "Type of search", "enum": ["content", "filename"]},
            "file_pattern": {"type": "string", "description": 'Optional glob to filter files (e.g. "*.py")'},
            "max_results": {"type": "integer", "minimum": 1, "description": "Maximum number of results (default 20)"},
        },
        required=("query",),
        category=ToolCategory.SEARCH,
    )
    failure_label: ClassVar[str] = "Search failed"
    exclude: tuple[str, ...] = ()

    async def run(self, arguments: Mapping[str, Any]) -> Dict[str, Any]:
        query = str(arguments["query"])
        search_type = arguments.get("type") or "content"
        max_results = int(arguments.get("max_results") or 20)
        if not self.workspace.roots:
            return {"error": "No workspace folder open"}

        if search_type == "filename":
            include = query if any(char in query for char in "*?[") else f"*{query}*"
            files = await self.workspace.find_files(include, exclude=self.exclude, max_results=max_results)
            return {"type": "filename", "query": query, "results": [str(path) for path in files], "count": len(files)}

        matches = await self.workspace.search_text(
            query,
            include=arguments.get("file_pattern"),
            exclude=self.exclude,
            max_results=max_results,
        )
        per_file: Dict[str, List[Dict[str, Any]]] = {}
        for match in matches:
            per_file.setdefault(str(match.path), []).append({"line": match.line, "preview": match.preview})
        results = [{"file": path, "matches": len(hits), "lines": hits} for path, hits in per_file.items()]
        return {"type": "content", "query": query, "results": results, "count": len(results)}


@dataclass
class ListDirectoryTool(WorkspaceTool):
    spec: ClassVar[ToolSpec] = ToolSpec(
        name="list_directory",
        description="List files and folders in a directory. Useful for understanding project structure.",
        parameters={
            "path": {"type": "string", "description": "The directory path (defaults to workspace root)"},
            "recursive": {"type": "boolean", "description": "Include subdirectories (default false)"},
            "max_depth": {"type": "integer", "minimum": 0, "description": "Maximum depth when recursive (default 3)"},
        },
        category=ToolCategory.READ,
    )
    failure_label: ClassVar[str] = "Failed to list directory"
    exclude: tuple[str, ...] = ()

    async def run(self, arguments: Mapping[str, Any]) -> Dict[str, Any]:
        raw_path = arguments.get("path")
        if raw_path:
            directory = self.workspace.resolve(raw_path)
        elif self.workspace.roots:
            directory = self.workspace.roots[0]
        else:
            return {"error": "No path specified and no workspace folder open"}
        if not directory.is_dir():
            return {"error": f"Not a directory: {directory}"}
        recursive = bool(arguments.get("recursive", False))
        max_depth = arguments.get("max_depth")
        depth = 3 if max_depth is None else int(max_depth)
        entries = await asyncio.to_thread(self._list, directory, directory, recursive, depth, 0)
        return {"path": str(directory), "entries": entries, "total_items": len(entries)}

    def _list(self, base: Path, directory: Path, recursive: bool, max_depth: int, depth: int) -> List[Dict[str, str]]:
        entries: List[Dict[str, str]] = []
        try:
            children = sorted(directory.iterdir(), key=lambda child: (not child.is_dir(), child.name.lower()))
        except OSError as exc:
            LOGGER.debug("Unable to list %s: %s", directory, exc)
            return entries
        for child in children:
            relative = child.relative_to(base).as_posix()
            is_dir = child.is_dir()
            if is_excluded(f"{relative}/" if is_dir else relative, self.exclude):
                continue
            entries.append({"name": child.name, "type": "directory" if is_dir else "file", "path": str(child)})
            if recursive and is_dir and depth < max_depth:
                entries.extend(self._list(base, child, recursive, max_depth, depth + 1))
        return entries


# -----------------------------------------------------------------------------
# Terminal
# -----------------------------------------------------------------------------


@dataclass
class RunTerminalCommandTool(WorkspaceTool):
    """Runs a shell command in a subprocess and captures its output.

    Commands matching :data:`BLOCKED_COMMAND_PATTERNS` are refused. A command
    still running after ``timeout`` seconds, or when the call is cancelled,
    is killed.
    """

    spec: ClassVar[ToolSpec] = ToolSpec(
        name="run_terminal_command",
        description="Execute a shell command. Use for running build scripts, tests, git commands, etc.",
        parameters={
            "command": {"type": "string", "description": "The command to execute"},
            "cwd": {"type": "string", "description": "Working directory for the command (optional)"},
        },
        required=("command",),
        category=ToolCategory.SYSTEM,
    )
    failure_label: ClassVar[str] = "Command failed"
    timeout: float = DEFAULT_COMMAND_TIMEOUT

    async def run(self, arguments: Mapping[str, Any]) -> Dict[str, Any]:
        command = str(arguments["command"]).strip()
        if not command:
            return {"error": "Command is required"}
        if is_blocked_command(command):
            LOGGER.warning("Blocked terminal command: %s", command)
            return {"error": "Command blocked for safety. This could cause system damage.", "blocked": True}

        if arguments.get("cwd"):
            cwd = self.workspace.resolve(arguments["cwd"])
        elif self.workspace.roots:
            cwd = self.workspace.roots[0]
        else:
            cwd = Path(os.getcwd())

        process = await asyncio.create_subprocess_shell(
            command,
            cwd=str(cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            LOGGER.warning("Command timed out after %ss: %s", self.timeout, command)
            return {"error": f"Command timed out after {self.timeout}s", "command": command}
        finally:
            if process.returncode is None:
                process.kill()
                await process.wait()

        LOGGER.info("Executed command (exit %s): %s", process.returncode, command)
        return {
            "success": process.returncode == 0,
            "command": command,
            "exit_code": process.returncode,
            "stdout": _truncate(stdout.decode("utf-8", errors="replace")),
            "stderr": _truncate(stderr.decode("utf-8", errors="replace")),
        }


# -----------------------------------------------------------------------------
# Registration
# -----------------------------------------------------------------------------


def builtin_tools(
    workspace: LocalWorkspace,
    *,
    exclude: tuple[str, ...] = (),
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
) -> List[WorkspaceTool]:
    return [
        ReadFileTool(workspace),
        WriteFileTool(workspace),
        EditFileTool(workspace),
        SearchCodebaseTool(workspace, exclude=exclude),
        ListDirectoryTool(workspace, exclude=exclude),
        RunTerminalCommandTool(workspace, timeout=command_timeout),
    ]


def register_builtin_tools(
    registry: ToolRegistry,
    workspace: LocalWorkspace,
    *,
    exclude: tuple[str, ...] = (),
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
) -> List[Callable[[], None]]:
    """Register the built-in tools, skipping names that are already taken.

    Returns:
        Unregister callables for the tools that were added.
    """

    unregister: List[Callable[[], None]] = []
    for tool in builtin_tools(workspace, exclude=exclude, command_timeout=command_timeout):
        if tool.name in registry.list_names(include_disabled=True):
            LOGGER.debug("Tool %s already registered; keeping existing handler", tool.name)
            continue
        unregister.append(registry.register_tool(tool))
    return unregister


__all__ = [
    "BLOCKED_COMMAND_PATTERNS",
    "EditFileTool",
    "ListDirectoryTool",
    "ReadFileTool",
    "RunTerminalCommandTool",
    "SearchCodebaseTool",
    "WorkspaceTool",
    "WriteFileTool",
    "builtin_tools",
    "is_blocked_command",
    "register_builtin_tools",
]
