"""Tool registry.

Holds named tool specifications with their handlers and executes them by
name. Execution never raises: unknown tools, schema violations, handler
exceptions, and timeouts all become error-flagged :class:`ToolResult` values.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from ...events import EventBus, ToolsChanged
from ..ai_types import ToolDefinition
from ..errors import DuplicateRegistrationError, ToolNotFoundError
from .types import AsyncToolHandler, SimpleTool, Tool, ToolHandler, ToolResult, ToolSpec

__all__ = ["ToolRegistration", "ToolRegistry"]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Tool Registration
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class ToolRegistration:
    """Record of a registered tool.

    Attributes:
        name: Tool name.
        tool: The tool implementation.
        spec: Tool specification.
        validator: Compiled JSON Schema validator for the arguments.
        enabled: Whether the tool is offered to models and executable.
        metadata: Additional registration metadata.
    """

    name: str
    tool: Tool
    spec: ToolSpec
    validator: Draft202012Validator | None = None
    enabled: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)


# -----------------------------------------------------------------------------
# Tool Registry
# -----------------------------------------------------------------------------


class ToolRegistry:
    """Registry for managing and executing tools.

    Example:
        registry = ToolRegistry()
        registry.register(
            ToolSpec(name="greet", description="Greet", parameters={"name": {"type": "string"}}),
            lambda args: f"Hello, {args['name']}!",
        )
        result = await registry.execute("greet", {"name": "World"})
    """

    def __init__(self, *, event_bus: EventBus | None = None, default_timeout: float | None = None) -> None:
        self._tools: dict[str, ToolRegistration] = {}
        self._bus = event_bus
        self._default_timeout = default_timeout

    def register(
        self,
        spec: ToolSpec,
        handler: ToolHandler | AsyncToolHandler,
        *,
        enabled: bool = True,
        metadata: Mapping[str, Any] | None = None,
    ) -> Callable[[], None]:
        """Register a handler under ``spec.name``.

        Args:
            spec: Tool specification.
            handler: Function to handle tool calls (sync or async).
            enabled: Whether the tool is enabled.
            metadata: Additional metadata.

        Returns:
            A callable that unregisters the tool.

        Raises:
            DuplicateRegistrationError: If the name is already registered.
        """
        return self.register_tool(SimpleTool(spec=spec, handler=handler), enabled=enabled, metadata=metadata)

    def register_tool(
        self,
        tool: Tool,
        *,
        enabled: bool = True,
        metadata: Mapping[str, Any] | None = None,
    ) -> Callable[[], None]:
        """Register a :class:`Tool` implementation; see :meth:`register`."""
        name = tool.name
        if name in self._tools:
            raise DuplicateRegistrationError(f"Tool '{name}' is already registered")
        self._tools[name] = ToolRegistration(
            name=name,
            tool=tool,
            spec=tool.spec,
            validator=_compile_validator(tool.spec),
            enabled=enabled,
            metadata=dict(metadata) if metadata else {},
        )
        LOGGER.info("Registered tool: %s", name)
        self._notify()
        return lambda: self.unregister(name)

    def unregister(self, name: str) -> bool:
        if name in self._tools:
            del self._tools[name]
            LOGGER.debug("Unregistered tool: %s", name)
            self._notify()
            return True
        return False

    def get(self, name: str) -> Tool | None:
        registration = self._tools.get(name)
        if registration is None or not registration.enabled:
            return None
        return registration.tool

    def get_required(self, name: str) -> Tool:
        """Get a tool by name.

        Raises:
            ToolNotFoundError: If the tool is missing or disabled.
        """
        tool = self.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return tool

    def has(self, name: str) -> bool:
        registration = self._tools.get(name)
        return registration is not None and registration.enabled

    def list_tools(self, *, include_disabled: bool = False) -> list[ToolSpec]:
        return [
            registration.spec
            for registration in self._tools.values()
            if registration.enabled or include_disabled
        ]

    def list_names(self, *, include_disabled: bool = False) -> list[str]:
        return [spec.name for spec in self.list_tools(include_disabled=include_disabled)]

    def definitions(self) -> list[ToolDefinition]:
        """Return enabled tools as provider-neutral definitions."""
        return [spec.to_definition() for spec in self.list_tools()]

    def enable(self, name: str) -> bool:
        return self._set_enabled(name, True)

    def disable(self, name: str) -> bool:
        return self._set_enabled(name, False)

    def clear(self) -> None:
        self._tools.clear()
        self._notify()

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.has(name)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        name: str,
        arguments: Mapping[str, Any] | None = None,
        *,
        call_id: str = "",
        timeout: float | None = None,
    ) -> ToolResult:
        """Execute a tool by name.

        Args:
            name: Name of the tool to execute.
            arguments: Arguments to pass to the tool.
            call_id: Optional call ID for tracing.
            timeout: Optional timeout override in seconds.

        Returns:
            The tool's result; ``is_error`` is set instead of raising.
        """
        args = dict(arguments or {})
        LOGGER.debug("Executing tool %s (call_id=%s)", name, call_id)

        registration = self._tools.get(name)
        if registration is None or not registration.enabled:
            LOGGER.warning("Tool '%s' not found or disabled", name)
            return ToolResult.failure(name, "tool_not_found", f"Tool '{name}' not found")

        if registration.validator is not None:
            problems = sorted(
                registration.validator.iter_errors(args),
                key=lambda error: [str(part) for part in error.path],
            )
            if problems:
                message = "; ".join(_describe_validation_error(error) for error in problems)
                LOGGER.warning("Tool %s rejected arguments: %s", name, message)
                return ToolResult.failure(name, "invalid_arguments", message)

        effective_timeout = timeout if timeout is not None else self._default_timeout
        start_time = time.perf_counter()
        try:
            if effective_timeout is not None and effective_timeout > 0:
                value = await asyncio.wait_for(registration.tool.execute(args), timeout=effective_timeout)
            else:
                value = await registration.tool.execute(args)
        except asyncio.TimeoutError:
            duration_ms = (time.perf_counter() - start_time) * 1000
            LOGGER.warning("Tool %s timed out after %.1fms (timeout=%.1fs)", name, duration_ms, effective_timeout)
            return ToolResult.failure(
                name, "timeout", f"Tool '{name}' timed out after {effective_timeout}s", duration_ms=duration_ms
            )
        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            LOGGER.warning("Tool %s failed after %.1fms: %s", name, duration_ms, exc)
            return ToolResult.failure(name, "execution_failed", str(exc) or type(exc).__name__, duration_ms=duration_ms)

        duration_ms = (time.perf_counter() - start_time) * 1000
        LOGGER.debug("Tool %s completed in %.1fms", name, duration_ms)
        return ToolResult(name=name, value=value, duration_ms=duration_ms)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _set_enabled(self, name: str, enabled: bool) -> bool:
        registration = self._tools.get(name)
        if registration is None:
            return False
        if registration.enabled != enabled:
            registration.enabled = enabled
            self._notify()
        return True

    def _notify(self) -> None:
        if self._bus is not None:
            self._bus.publish(ToolsChanged())


def _compile_validator(spec: ToolSpec) -> Draft202012Validator | None:
    schema = spec.json_schema()
    try:
        Draft202012Validator.check_schema(schema)
    except SchemaError as exc:
        LOGGER.warning("Tool %s has an invalid parameter schema; skipping validation: %s", spec.name, exc.message)
        return None
    return Draft202012Validator(schema)


def _describe_validation_error(error: Any) -> str:
    location = "/".join(str(part) for part in error.path)
    return f"{location}: {error.message}" if location else error.message
