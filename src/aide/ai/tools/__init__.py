"""Registry of agent tools."""

from .registry import ToolRegistration, ToolRegistry
from .types import SimpleTool, Tool, ToolCategory, ToolResult, ToolSpec

__all__ = [
    "SimpleTool",
    "Tool",
    "ToolCategory",
    "ToolRegistration",
    "ToolRegistry",
    "ToolResult",
    "ToolSpec",
]
