"""Error taxonomy for the provider, tool, and orchestration layers."""

from __future__ import annotations

from typing import Optional


class AideError(Exception):
    """Base class for every error raised by the package."""


class ConfigurationError(AideError):
    """Raised before any network call when a provider is misconfigured."""


class NotFoundError(AideError, LookupError):
    """Raised when a named agent, provider, or tool does not exist."""


class AgentNotFoundError(NotFoundError):
    def __init__(self, agent_id: str) -> None:
        super().__init__(f"Agent not found: {agent_id}")
        self.agent_id = agent_id


class ProviderNotFoundError(NotFoundError):
    def __init__(self, model_id: str) -> None:
        super().__init__(f"No provider for model: {model_id}")
        self.model_id = model_id


class ToolNotFoundError(NotFoundError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Tool '{name}' is not registered")
        self.name = name


class DuplicateRegistrationError(AideError, ValueError):
    """Raised when registering a name that is already taken."""


class TransportError(AideError):
    """Non-2xx HTTP status or connection failure while talking to a provider."""

    def __init__(self, provider: str, status_code: Optional[int], body: str) -> None:
        status = status_code if status_code is not None else "connection error"
        super().__init__(f"{provider} API error: {status} - {body}")
        self.provider = provider
        self.status_code = status_code
        self.body = body


class StreamParseError(AideError):
    """A single stream line or tool-call payload could not be decoded."""


__all__ = [
    "AgentNotFoundError",
    "AideError",
    "ConfigurationError",
    "DuplicateRegistrationError",
    "NotFoundError",
    "ProviderNotFoundError",
    "StreamParseError",
    "ToolNotFoundError",
    "TransportError",
]
