"""Tests for ai/tools/registry.py."""

from __future__ import annotations

import asyncio
from typing import Any, Mapping

import pytest

from aide.ai.errors import DuplicateRegistrationError, ToolNotFoundError
from aide.ai.tools import SimpleTool, ToolCategory, ToolRegistry, ToolResult, ToolSpec
from aide.events import EventBus, ToolsChanged


# -----------------------------------------------------------------------------
# Test Fixtures and Helpers
# -----------------------------------------------------------------------------


def make_spec(name: str = "test_tool", *, required: tuple[str, ...] = ()) -> ToolSpec:
    """Helper to create a ToolSpec with a single string argument."""
    return ToolSpec(
        name=name,
        description=f"Tool {name}",
        parameters={"arg": {"type": "string"}},
        required=required,
        category=ToolCategory.UTILITY,
    )


class MockTool:
    """Tool protocol implementation recording its calls."""

    def __init__(self, name: str = "mock_tool") -> None:
        self._spec = make_spec(name)
        self.calls: list[dict[str, Any]] = []

    @property
    def name(self) -> str:
        return self._spec.name

    @property
    def spec(self) -> ToolSpec:
        return self._spec

    async def execute(self, arguments: Mapping[str, Any]) -> Any:
        self.calls.append(dict(arguments))
        return {"echo": dict(arguments)}


# -----------------------------------------------------------------------------
# Tests: ToolSpec
# -----------------------------------------------------------------------------


class TestToolSpec:
    def test_json_schema_includes_required(self) -> None:
        spec = make_spec(required=("arg",))

        assert spec.json_schema() == {
            "type": "object",
            "properties": {"arg": {"type": "string"}},
            "required": ["arg"],
        }

    def test_to_definition_carries_schema(self) -> None:
        definition = make_spec(required=("arg",)).to_definition()

        assert definition.name == "test_tool"
        assert definition.json_schema()["required"] == ["arg"]

    def test_failure_result_shape(self) -> None:
        result = ToolResult.failure("x", "timeout", "too slow")

        assert result.is_error
        assert result.value == {"error": "timeout", "message": "too slow"}


# -----------------------------------------------------------------------------
# Tests: Registration
# -----------------------------------------------------------------------------


class TestRegistration:
    def test_register_and_lookup(self) -> None:
        registry = ToolRegistry()
        registry.register(make_spec("greet"), lambda args: "hi")

        assert "greet" in registry
        assert registry.has("greet")
        assert isinstance(registry.get("greet"), SimpleTool)
        assert registry.list_names() == ["greet"]

    def test_duplicate_name_is_rejected(self) -> None:
        registry = ToolRegistry()
        registry.register_tool(MockTool("dup"))

        with pytest.raises(DuplicateRegistrationError):
            registry.register(make_spec("dup"), lambda args: None)

        assert len(registry) == 1

    def test_unregister_callable_removes_tool(self) -> None:
        registry = ToolRegistry()
        unregister = registry.register_tool(MockTool("temp"))

        unregister()

        assert "temp" not in registry
        assert registry.unregister("temp") is False

    def test_get_required_raises_for_unknown(self) -> None:
        with pytest.raises(ToolNotFoundError):
            ToolRegistry().get_required("missing")

    def test_disabled_tools_are_hidden_but_listed_on_request(self) -> None:
        registry = ToolRegistry()
        registry.register_tool(MockTool("a"))
        registry.register_tool(MockTool("b"), enabled=False)

        assert registry.list_names() == ["a"]
        assert registry.list_names(include_disabled=True) == ["a", "b"]
        assert [definition.name for definition in registry.definitions()] == ["a"]

        registry.enable("b")
        assert "b" in registry
        registry.disable("a")
        assert registry.get("a") is None

    def test_changes_are_published(self) -> None:
        bus = EventBus()
        seen: list[ToolsChanged] = []
        bus.subscribe(ToolsChanged, seen.append)
        registry = ToolRegistry(event_bus=bus)

        unregister = registry.register_tool(MockTool())
        registry.disable("mock_tool")
        registry.disable("mock_tool")
        unregister()

        assert len(seen) == 3


# -----------------------------------------------------------------------------
# Tests: Execution
# -----------------------------------------------------------------------------


class TestExecution:
    @pytest.mark.asyncio
    async def test_execute_sync_and_async_handlers(self) -> None:
        registry = ToolRegistry()

        async def _async_handler(args: Mapping[str, Any]) -> str:
            return f"async {args['arg']}"

        registry.register(make_spec("sync"), lambda args: f"sync {args['arg']}")
        registry.register(make_spec("async"), _async_handler)

        sync_result = await registry.execute("sync", {"arg": "a"})
        async_result = await registry.execute("async", {"arg": "b"})

        assert (sync_result.value, sync_result.is_error) == ("sync a", False)
        assert async_result.value == "async b"
        assert async_result.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_unknown_tool_returns_error_result(self) -> None:
        result = await ToolRegistry().execute("nope", {})

        assert result.is_error
        assert result.value["error"] == "tool_not_found"

    @pytest.mark.asyncio
    async def test_handler_exception_becomes_error_result(self) -> None:
        registry = ToolRegistry()

        def _explode(args: Mapping[str, Any]) -> None:
            raise RuntimeError("disk on fire")

        registry.register(make_spec("boom"), _explode)

        result = await registry.execute("boom", {})

        assert result.is_error
        assert result.value == {"error": "execution_failed", "message": "disk on fire"}

    @pytest.mark.asyncio
    async def test_invalid_arguments_are_rejected_before_handler(self) -> None:
        registry = ToolRegistry()
        tool = MockTool("strict")
        registry.register(make_spec("strict", required=("arg",)), tool.execute)

        missing = await registry.execute("strict", {})
        wrong_type = await registry.execute("strict", {"arg": 5})

        assert missing.value["error"] == "invalid_arguments"
        assert "'arg' is a required property" in missing.value["message"]
        assert wrong_type.value["error"] == "invalid_arguments"
        assert wrong_type.value["message"].startswith("arg:")
        assert tool.calls == []

    @pytest.mark.asyncio
    async def test_timeout_returns_error_result(self) -> None:
        registry = ToolRegistry(default_timeout=0.01)

        async def _slow(args: Mapping[str, Any]) -> str:
            await asyncio.sleep(1)
            return "late"

        registry.register(make_spec("slow"), _slow)

        result = await registry.execute("slow", {})

        assert result.is_error
        assert result.value["error"] == "timeout"

    @pytest.mark.asyncio
    async def test_disabled_tool_cannot_execute(self) -> None:
        registry = ToolRegistry()
        tool = MockTool("off")
        registry.register_tool(tool, enabled=False)

        result = await registry.execute("off", {"arg": "x"})

        assert result.is_error
        assert tool.calls == []
