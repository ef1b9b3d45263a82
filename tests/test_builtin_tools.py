"""Tests for the built-in workspace tools."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

from aide.ai.tools import ToolRegistry, ToolSpec
from aide.ai.tools.builtin import (
    EditFileTool,
    ListDirectoryTool,
    ReadFileTool,
    RunTerminalCommandTool,
    SearchCodebaseTool,
    WriteFileTool,
    is_blocked_command,
    register_builtin_tools,
)
from aide.context.workspace import LocalWorkspace

EXCLUDE = ("**/node_modules/**",)


class TestFileTools:
    @pytest.mark.asyncio
    async def test_read_file_returns_numbered_preview(self, workspace: LocalWorkspace, workspace_dir: Path) -> None:
        result = await ReadFileTool(workspace).execute({"path": "src/utils.py"})

        assert result["path"] == str((workspace_dir / "src" / "utils.py").resolve())
        assert result["content"].startswith("def slugify")
        assert result["line_count"] == 3
        assert result["preview"].splitlines()[0] == "1: def slugify(value):"

    @pytest.mark.asyncio
    async def test_read_missing_file_returns_error_payload(self, workspace: LocalWorkspace) -> None:
        result = await ReadFileTool(workspace).execute({"path": "missing.txt"})

        assert result["error"].startswith("Failed to read file:")

    @pytest.mark.asyncio
    async def test_paths_outside_workspace_are_refused(self, workspace: LocalWorkspace) -> None:
        result = await ReadFileTool(workspace).execute({"path": "../../etc/passwd"})

        assert "outside the workspace" in result["error"]

    @pytest.mark.asyncio
    async def test_write_file_creates_then_updates(self, workspace: LocalWorkspace, workspace_dir: Path) -> None:
        tool = WriteFileTool(workspace)

        created = await tool.execute({"path": "docs/new.md", "content": "one\ntwo"})
        updated = await tool.execute({"path": "docs/new.md", "content": "three"})

        assert created["action"] == "created"
        assert created["line_count"] == 2
        assert updated["action"] == "updated"
        assert (workspace_dir / "docs" / "new.md").read_text(encoding="utf-8") == "three"

    @pytest.mark.asyncio
    async def test_edit_file_replaces_first_occurrence(self, workspace: LocalWorkspace, workspace_dir: Path) -> None:
        target = workspace_dir / "notes.txt"
        target.write_text("alpha beta alpha", encoding="utf-8")

        result = await EditFileTool(workspace).execute(
            {"path": "notes.txt", "old_content": "alpha", "new_content": "gamma"}
        )

        assert result["success"] is True
        assert target.read_text(encoding="utf-8") == "gamma beta alpha"

    @pytest.mark.asyncio
    async def test_edit_file_reports_missing_text(self, workspace: LocalWorkspace) -> None:
        result = await EditFileTool(workspace).execute(
            {"path": "README.md", "old_content": "not there", "new_content": "x"}
        )

        assert "Could not find" in result["error"]
        assert "hint" in result


class TestNavigationTools:
    @pytest.mark.asyncio
    async def test_search_by_content_groups_hits_per_file(self, workspace: LocalWorkspace) -> None:
        result = await SearchCodebaseTool(workspace, exclude=EXCLUDE).execute({"query": "AuthService"})

        files = {Path(entry["file"]).name: entry for entry in result["results"]}
        assert result["type"] == "content"
        assert set(files) == {"auth.ts", "test.ts"}
        assert files["test.ts"]["matches"] == 2

    @pytest.mark.asyncio
    async def test_search_by_filename(self, workspace: LocalWorkspace) -> None:
        result = await SearchCodebaseTool(workspace, exclude=EXCLUDE).execute({"query": "utils", "type": "filename"})

        assert [Path(path).name for path in result["results"]] == ["utils.py"]

    @pytest.mark.asyncio
    async def test_list_directory_skips_excluded_folders(self, workspace: LocalWorkspace) -> None:
        result = await ListDirectoryTool(workspace, exclude=EXCLUDE).execute({"recursive": True})

        names = [entry["name"] for entry in result["entries"]]
        assert "node_modules" not in names
        assert names[:1] == ["src"]
        assert {"auth.ts", "utils.py", "README.md"} <= set(names)

    @pytest.mark.asyncio
    async def test_list_directory_rejects_files(self, workspace: LocalWorkspace) -> None:
        result = await ListDirectoryTool(workspace).execute({"path": "README.md"})

        assert result["error"].startswith("Not a directory")


class TestTerminalTool:
    @pytest.mark.parametrize(
        "command",
        ["rm -rf /", "rm -rf ~/projects", "echo x > /dev/sda", "mkfs.ext4 /dev/sdb1", "dd if=/dev/zero of=disk"],
    )
    def test_dangerous_commands_are_blocked(self, command: str) -> None:
        assert is_blocked_command(command)

    def test_ordinary_commands_are_allowed(self) -> None:
        assert not is_blocked_command("git status")
        assert not is_blocked_command("rm -rf build")

    @pytest.mark.asyncio
    async def test_blocked_command_is_not_run(self, workspace: LocalWorkspace) -> None:
        result = await RunTerminalCommandTool(workspace).execute({"command": "rm -rf /"})

        assert result["blocked"] is True

    @pytest.mark.asyncio
    async def test_runs_command_in_workspace_root(self, workspace: LocalWorkspace, workspace_dir: Path) -> None:
        command = f'"{sys.executable}" -c "import os; print(os.getcwd())"'

        result = await RunTerminalCommandTool(workspace).execute({"command": command})

        assert result["success"] is True
        assert result["exit_code"] == 0
        assert Path(result["stdout"].strip()).resolve() == workspace_dir.resolve()

    @pytest.mark.asyncio
    async def test_slow_command_times_out(self, workspace: LocalWorkspace) -> None:
        command = f'"{sys.executable}" -c "import time; time.sleep(5)"'

        result = await RunTerminalCommandTool(workspace, timeout=0.2).execute({"command": command})

        assert "timed out" in result["error"]


class TestRegistration:
    def test_registers_every_builtin_once(self, workspace: LocalWorkspace) -> None:
        registry = ToolRegistry()

        first = register_builtin_tools(registry, workspace)
        second = register_builtin_tools(registry, workspace)

        assert len(first) == 6
        assert second == []
        assert set(registry.list_names()) == {
            "read_file",
            "write_file",
            "edit_file",
            "search_codebase",
            "list_directory",
            "run_terminal_command",
        }

    def test_existing_disabled_tool_is_kept(self, workspace: LocalWorkspace) -> None:
        registry = ToolRegistry()
        registry.register(ToolSpec(name="read_file", description="custom"), lambda args: "custom", enabled=False)

        register_builtin_tools(registry, workspace)

        assert "read_file" not in registry
        assert registry.list_names(include_disabled=True).count("read_file") == 1

    @pytest.mark.asyncio
    async def test_registry_validates_builtin_arguments(self, workspace: LocalWorkspace) -> None:
        registry = ToolRegistry()
        register_builtin_tools(registry, workspace)

        result = await registry.execute("read_file", {})

        assert result.is_error
        assert result.value["error"] == "invalid_arguments"

    @pytest.mark.asyncio
    async def test_registry_timeout_kills_running_command(
        self, workspace: LocalWorkspace, workspace_dir: Path
    ) -> None:
        marker = workspace_dir / "finished.txt"
        script = f"import pathlib, time; time.sleep(1.5); pathlib.Path(r'{marker}').touch()"
        registry = ToolRegistry(default_timeout=0.3)
        register_builtin_tools(registry, workspace, command_timeout=0.3)

        result = await registry.execute("run_terminal_command", {"command": f'"{sys.executable}" -c "{script}"'})
        await asyncio.sleep(2.0)

        assert result.is_error
        assert result.value["error"] == "timeout"
        assert not marker.exists()
