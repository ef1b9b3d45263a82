"""Chat orchestration: agents, provider routing, and tool dispatch."""

from .chat_orchestrator import ChatOrchestrator

__all__ = ["ChatOrchestrator"]
