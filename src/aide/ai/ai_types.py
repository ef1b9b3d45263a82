"""Shared typing contracts for the provider adapter layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Protocol, Sequence

from ..chat.message_model import Message, MessageContent, TokenUsage, new_id


class TokenCounterProtocol(Protocol):
    """Protocol describing tokenizer implementations."""

    model_name: str | None

    def count(self, text: str) -> int:
        """Return the token count for *text*."""
        ...

    def estimate(self, text: str) -> int:
        """Return a deterministic fallback estimate when precise counts fail."""
        ...


class FinishReason(str, Enum):
    """Uniform reasons for a completion ending."""

    STOP = "stop"
    TOOL_CALLS = "tool_calls"
    LENGTH = "length"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class ModelCapabilities:
    vision: bool = False
    tools: bool = True
    streaming: bool = True


@dataclass(slots=True, frozen=True)
class ModelInfo:
    """Description of one model exposed by a provider.

    ``id`` always follows the ``"<provider_id>/<model_name>"`` convention.
    """

    id: str
    name: str
    provider: str
    context_length: int
    capabilities: ModelCapabilities = field(default_factory=ModelCapabilities)

    @property
    def model_name(self) -> str:
        return split_model_id(self.id)[1]

    @property
    def supports_tools(self) -> bool:
        return self.capabilities.tools


@dataclass(slots=True, frozen=True)
class ToolDefinition:
    """Provider-neutral description of a callable tool."""

    name: str
    description: str
    parameters: Mapping[str, Any] = field(default_factory=dict)
    required: tuple[str, ...] = ()

    def json_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": "object", "properties": {}}
        schema.update(dict(self.parameters))
        if self.required and "required" not in schema:
            schema["required"] = list(self.required)
        return schema


@dataclass(slots=True)
class CompletionRequest:
    messages: Sequence[Message]
    model: str
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    tools: Sequence[ToolDefinition] = ()
    stream: bool = False


@dataclass(slots=True)
class CompletionResponse:
    content: list[MessageContent]
    finish_reason: FinishReason
    id: str = field(default_factory=new_id)
    usage: Optional[TokenUsage] = None


@dataclass(slots=True)
class StreamChunk:
    """Incremental piece of a streamed completion.

    ``delta`` is a partial content item: a ``TextContent`` slice or a fully
    reassembled ``ToolCallContent``. The terminating chunk(s) carry
    ``finish_reason`` and may have no delta at all.
    """

    id: str
    delta: Optional[MessageContent] = None
    finish_reason: Optional[FinishReason] = None
    usage: Optional[TokenUsage] = None


def split_model_id(model_id: str) -> tuple[str, str]:
    """Split ``"<provider>/<model>"`` into its two parts.

    Model names may themselves contain ``/`` or ``:`` (``ollama/llama3:8b``); only the
    first separator belongs to the provider prefix.
    """

    positions = [index for index in (model_id.find("/"), model_id.find(":")) if index >= 0]
    if not positions:
        return "", model_id
    cut = min(positions)
    return model_id[:cut], model_id[cut + 1 :]


__all__ = [
    "CompletionRequest",
    "CompletionResponse",
    "FinishReason",
    "ModelCapabilities",
    "ModelInfo",
    "StreamChunk",
    "TokenCounterProtocol",
    "ToolDefinition",
    "split_model_id",
]
