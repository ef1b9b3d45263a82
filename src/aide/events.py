"""Typed in-process event bus for change notifications.

Services publish small dataclass events here after every successful state
mutation so that front ends (CLI, editor integrations) can refresh without
polling.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar
from weakref import WeakMethod, ref

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[E], None]


@dataclass(slots=True)
class Event:
    """Base class for all events.

    Example::

        @dataclass(slots=True)
        class AgentRenamed(Event):
            agent_id: str
            name: str
    """


# High-frequency event types that should not log each publish
_QUIET_EVENT_TYPES: set[type] = set()


# =============================================================================
# Agent Events
# =============================================================================


@dataclass(slots=True)
class AgentsChanged(Event):
    """Emitted when an agent is created, updated, deleted, or gains messages."""


@dataclass(slots=True)
class ActiveAgentChanged(Event):
    """Emitted when the active agent changes.

    Attributes:
        agent_id: The newly active agent, or None when no agent remains.
    """

    agent_id: str | None


@dataclass(slots=True)
class ToolExecuted(Event):
    """Emitted after the orchestrator dispatches a model-issued tool call.

    Attributes:
        agent_id: The agent whose turn issued the call.
        tool_name: The name of the tool that was executed.
        call_id: The provider-assigned identifier of the call.
        success: False when the result is error-flagged.
        duration_ms: Execution time in milliseconds.
    """

    agent_id: str
    tool_name: str
    call_id: str
    success: bool
    duration_ms: float


# =============================================================================
# Provider, Tool & Index Events
# =============================================================================


@dataclass(slots=True)
class ModelsChanged(Event):
    """Emitted when a provider's model catalogue or the default model changes."""

    provider_id: str | None = None


@dataclass(slots=True)
class ToolsChanged(Event):
    """Emitted when a tool is registered or unregistered."""


@dataclass(slots=True)
class IndexChanged(Event):
    """Progress snapshot of the workspace index."""

    indexed: int
    total: int
    is_indexing: bool


_QUIET_EVENT_TYPES.add(IndexChanged)


class EventBus(Generic[E]):
    """A typed publish-subscribe event bus.

    Handlers are stored as weak references where possible (bound methods) so
    subscribers do not need to unsubscribe before being garbage collected.
    Handler exceptions are logged and never reach the publisher.

    Not thread-safe; publish from the event loop thread only.
    """

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: defaultdict[type[Event], list[_HandlerRef]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Register a handler to receive events of exactly ``event_type``."""
        self._handlers[event_type].append(_HandlerRef.create(handler))
        logger.debug("Subscribed handler %s to event type %s", _handler_name(handler), event_type.__name__)

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Remove the first registration of ``handler``; unknown handlers are ignored."""
        handlers = self._handlers.get(event_type)
        if handlers is None:
            return
        for i, handler_ref in enumerate(handlers):
            if handler_ref.matches(handler):
                handlers.pop(i)
                logger.debug(
                    "Unsubscribed handler %s from event type %s", _handler_name(handler), event_type.__name__
                )
                return

    def publish(self, event: E) -> None:
        """Invoke every handler for ``type(event)`` synchronously, in subscription order."""
        event_type = type(event)
        handlers = self._handlers.get(event_type)
        is_quiet = event_type in _QUIET_EVENT_TYPES

        if not handlers:
            if not is_quiet:
                logger.debug("No handlers for event type %s", event_type.__name__)
            return

        if not is_quiet:
            logger.debug("Publishing %s to %d handler(s)", event_type.__name__, len(handlers))

        dead_refs: list[_HandlerRef] = []
        for handler_ref in list(handlers):
            handler = handler_ref.resolve()
            if handler is None:
                dead_refs.append(handler_ref)
                continue
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Handler %s raised exception for event %s", _handler_name(handler), event_type.__name__
                )

        for handler_ref in dead_refs:
            if handler_ref in handlers:
                handlers.remove(handler_ref)

    def clear(self) -> None:
        self._handlers.clear()
        logger.debug("Cleared all event handlers")

    def handler_count(self, event_type: type[E] | None = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(handlers) for handlers in self._handlers.values())


class _HandlerRef:
    """Weak reference for bound methods, strong reference for everything else."""

    __slots__ = ("_ref", "_is_weak")

    def __init__(self, handler_ref: WeakMethod | ref | Handler, is_weak: bool) -> None:
        self._ref = handler_ref
        self._is_weak = is_weak

    @classmethod
    def create(cls, handler: Handler) -> _HandlerRef:
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), is_weak=True)
            except TypeError:
                pass
        return cls(handler, is_weak=False)

    def resolve(self) -> Handler | None:
        if not self._is_weak:
            return self._ref  # type: ignore[return-value]
        return self._ref()  # type: ignore[operator]

    def matches(self, handler: Handler) -> bool:
        resolved = self.resolve()
        return resolved is not None and resolved == handler


def _handler_name(handler: Handler) -> str:
    if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
        return f"{type(handler.__self__).__name__}.{handler.__func__.__name__}"
    if hasattr(handler, "__name__"):
        return handler.__name__
    return repr(handler)


__all__ = [
    "ActiveAgentChanged",
    "AgentsChanged",
    "Event",
    "EventBus",
    "Handler",
    "IndexChanged",
    "ModelsChanged",
    "ToolExecuted",
    "ToolsChanged",
]
