"""Tool system types.

This module defines the specification, handler, and result types shared by
the tool registry, the built-in tools, and the chat orchestrator.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine, Mapping, Protocol, runtime_checkable

from ..ai_types import ToolDefinition

__all__ = [
    "AsyncToolHandler",
    "SimpleTool",
    "Tool",
    "ToolCategory",
    "ToolHandler",
    "ToolResult",
    "ToolSpec",
]


# -----------------------------------------------------------------------------
# Tool Categories
# -----------------------------------------------------------------------------


class ToolCategory:
    """Standard tool categories for organization."""

    READ = "read"
    WRITE = "write"
    SEARCH = "search"
    SYSTEM = "system"
    UTILITY = "utility"


# -----------------------------------------------------------------------------
# Tool Specification
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolSpec:
    """Specification for a tool's interface.

    Attributes:
        name: Unique identifier for the tool.
        description: Human-readable description of what the tool does.
        parameters: JSON Schema ``properties`` for the tool's arguments.
        required: Names of required arguments.
        category: Tool category for organization.
    """

    name: str
    description: str
    parameters: Mapping[str, Any] = field(default_factory=dict)
    required: tuple[str, ...] = ()
    category: str = ToolCategory.UTILITY

    def json_schema(self) -> dict[str, Any]:
        """Return the full JSON Schema object describing the arguments."""
        schema: dict[str, Any] = {"type": "object", "properties": dict(self.parameters)}
        if self.required:
            schema["required"] = list(self.required)
        return schema

    def to_definition(self) -> ToolDefinition:
        """Convert to the provider-neutral tool definition sent to adapters."""
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.json_schema(),
            required=self.required,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.json_schema(),
            "category": self.category,
        }


# -----------------------------------------------------------------------------
# Tool Handler Types
# -----------------------------------------------------------------------------

ToolHandler = Callable[[Mapping[str, Any]], Any]

AsyncToolHandler = Callable[[Mapping[str, Any]], Coroutine[Any, Any, Any]]


# -----------------------------------------------------------------------------
# Tool Result
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class ToolResult:
    """Uniform outcome of :meth:`ToolRegistry.execute`.

    Attributes:
        name: The tool that was requested.
        value: Raw handler return value, or an ``{"error": ..., "message": ...}``
            mapping when the call failed.
        is_error: True when the tool was unknown, arguments were invalid,
            the handler raised, or the handler timed out.
        duration_ms: Execution time in milliseconds.
    """

    name: str
    value: Any
    is_error: bool = False
    duration_ms: float = 0.0

    @classmethod
    def failure(cls, name: str, code: str, message: str, *, duration_ms: float = 0.0) -> "ToolResult":
        return cls(name=name, value={"error": code, "message": message}, is_error=True, duration_ms=duration_ms)


# -----------------------------------------------------------------------------
# Tool Protocol
# -----------------------------------------------------------------------------


@runtime_checkable
class Tool(Protocol):
    """Protocol for tool implementations."""

    @property
    def name(self) -> str:
        ...

    @property
    def spec(self) -> ToolSpec:
        ...

    async def execute(self, arguments: Mapping[str, Any]) -> Any:
        """Execute the tool with the given arguments.

        Raises:
            Exception: If tool execution fails; the registry converts it to
                an error-flagged :class:`ToolResult`.
        """
        ...


# -----------------------------------------------------------------------------
# Simple Tool Implementation
# -----------------------------------------------------------------------------


@dataclass
class SimpleTool:
    """Tool implementation wrapping a sync or async callable.

    Example:
        tool = SimpleTool(
            spec=ToolSpec(name="greet", description="Greet someone"),
            handler=lambda args: f"Hello, {args.get('name', 'World')}!",
        )
    """

    spec: ToolSpec
    handler: ToolHandler | AsyncToolHandler
    _is_async: bool = field(init=False, default=False)

    def __post_init__(self) -> None:
        self._is_async = asyncio.iscoroutinefunction(self.handler)

    @property
    def name(self) -> str:
        return self.spec.name

    async def execute(self, arguments: Mapping[str, Any]) -> Any:
        if self._is_async:
            return await self.handler(arguments)  # type: ignore[misc]
        result = self.handler(arguments)
        if asyncio.iscoroutine(result):
            return await result
        return result
