"""Anthropic messages API adapter."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ...chat.message_model import (
    ImageContent,
    Message,
    MessageContent,
    MessageRole,
    TextContent,
    TokenUsage,
    ToolCallContent,
    new_id,
)
from ..ai_types import (
    CompletionRequest,
    CompletionResponse,
    FinishReason,
    ModelCapabilities,
    ModelInfo,
    StreamChunk,
    ToolDefinition,
)
from ..errors import StreamParseError, TransportError
from .base import ProviderAdapter, StreamParser
from .streaming import ToolCallAccumulator, parse_sse_data

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.anthropic.com"
API_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 4096

_STOP_REASONS = {
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "tool_use": FinishReason.TOOL_CALLS,
    "max_tokens": FinishReason.LENGTH,
}

ANTHROPIC_MODELS: tuple[ModelInfo, ...] = tuple(
    ModelInfo(
        id=f"anthropic/{name}",
        name=display,
        provider="anthropic",
        context_length=200_000,
        capabilities=ModelCapabilities(vision=True, tools=True, streaming=True),
    )
    for name, display in (
        ("claude-opus-4-5-20250514", "Claude Opus 4.5"),
        ("claude-sonnet-4-20250514", "Claude Sonnet 4"),
        ("claude-3-5-sonnet-20241022", "Claude 3.5 Sonnet"),
        ("claude-3-5-haiku-20241022", "Claude 3.5 Haiku"),
        ("claude-3-opus-20240229", "Claude 3 Opus"),
        ("claude-3-sonnet-20240229", "Claude 3 Sonnet"),
        ("claude-3-haiku-20240307", "Claude 3 Haiku"),
    )
)


def map_stop_reason(reason: Optional[str]) -> FinishReason:
    return _STOP_REASONS.get(reason or "", FinishReason.STOP)


def convert_messages(messages: Sequence[Message]) -> Tuple[Optional[str], List[Dict[str, Any]]]:
    """Split out the system prompt and translate the remaining messages.

    Tool results travel as ``user`` messages holding ``tool_result`` blocks;
    assistant tool calls become ``tool_use`` blocks.
    """

    system: Optional[str] = None
    converted: List[Dict[str, Any]] = []
    for message in messages:
        text = message.text_content
        if message.role is MessageRole.SYSTEM:
            system = f"{system}\n\n{text}" if system else text
            continue

        if message.role is MessageRole.TOOL:
            blocks = [
                {
                    "type": "tool_result",
                    "tool_use_id": result.call_id,
                    "content": json.dumps(result.result, default=str),
                    "is_error": result.is_error,
                }
                for result in message.tool_results
            ]
            if blocks:
                converted.append({"role": "user", "content": blocks})
            continue

        images = [item for item in message.content if isinstance(item, ImageContent)]
        tool_calls = message.tool_calls
        if not tool_calls and not images:
            role = "user" if message.role is MessageRole.USER else "assistant"
            converted.append({"role": role, "content": text})
            continue

        blocks: List[Dict[str, Any]] = []
        for image in images:
            blocks.append(
                {
                    "type": "image",
                    "source": {"type": "base64", "media_type": image.mime_type, "data": image.to_base64()},
                }
            )
        if text:
            blocks.append({"type": "text", "text": text})
        for call in tool_calls:
            blocks.append({"type": "tool_use", "id": call.call_id, "name": call.name, "input": dict(call.arguments)})
        role = "user" if message.role is MessageRole.USER else "assistant"
        converted.append({"role": role, "content": blocks})
    return system, converted


def convert_tools(tools: Sequence[ToolDefinition]) -> List[Dict[str, Any]]:
    return [
        {"name": tool.name, "description": tool.description, "input_schema": tool.json_schema()}
        for tool in tools
    ]


class AnthropicStreamParser(StreamParser):
    """Translate ``message_start`` .. ``message_delta`` stream events."""

    def __init__(self, provider: str) -> None:
        self._provider = provider
        self._tool_calls = ToolCallAccumulator(provider)
        self._message_id = new_id()
        self._input_tokens = 0

    def feed(self, line: str) -> List[StreamChunk]:
        event = parse_sse_data(line)
        if event is None:
            return []
        kind = event.get("type")

        if kind == "message_start":
            message = event.get("message") or {}
            if message.get("id"):
                self._message_id = str(message["id"])
            usage = message.get("usage") or {}
            self._input_tokens = int(usage.get("input_tokens") or 0)
            return []

        if kind == "content_block_start":
            block = event.get("content_block") or {}
            if block.get("type") == "tool_use":
                self._tool_calls.start(
                    self._index(event), call_id=block.get("id"), name=block.get("name")
                )
            elif block.get("type") == "text" and block.get("text"):
                return [StreamChunk(id=self._message_id, delta=TextContent(text=str(block["text"])))]
            return []

        if kind == "content_block_delta":
            delta = event.get("delta") or {}
            delta_type = delta.get("type")
            if delta_type == "text_delta" and delta.get("text"):
                return [StreamChunk(id=self._message_id, delta=TextContent(text=str(delta["text"])))]
            if delta_type == "input_json_delta":
                self._tool_calls.add_fragment(self._index(event), arguments=delta.get("partial_json"))
            return []

        if kind == "content_block_stop":
            call = self._tool_calls.finish(self._index(event))
            return [StreamChunk(id=self._message_id, delta=call)] if call is not None else []

        if kind == "message_delta":
            delta = event.get("delta") or {}
            stop_reason = delta.get("stop_reason")
            if not stop_reason:
                return []
            chunks = [StreamChunk(id=self._message_id, delta=call) for call in self._tool_calls.finish_all()]
            usage = event.get("usage") or {}
            chunks.append(
                StreamChunk(
                    id=self._message_id,
                    finish_reason=map_stop_reason(stop_reason),
                    usage=TokenUsage(
                        input_tokens=self._input_tokens,
                        output_tokens=int(usage.get("output_tokens") or 0),
                    ),
                )
            )
            return chunks

        if kind == "error":
            error = event.get("error") or {}
            raise TransportError(self._provider, None, str(error.get("message") or error))

        return []

    @staticmethod
    def _index(event: Mapping[str, Any]) -> int:
        index = event.get("index")
        if index is None:
            raise StreamParseError(f"Stream event {event.get('type')!r} is missing its block index")
        return int(index)


class AnthropicAdapter(ProviderAdapter):
    """Adapter for ``POST /v1/messages`` with ``x-api-key`` auth."""

    id = "anthropic"
    name = "Anthropic"
    chat_path = "/v1/messages"

    async def _fetch_models(self) -> Sequence[ModelInfo]:
        if not self.is_configured:
            return []
        return ANTHROPIC_MODELS

    def auth_headers(self) -> Dict[str, str]:
        return {"x-api-key": self.settings.api_key or "", "anthropic-version": API_VERSION}

    def build_payload(self, request: CompletionRequest, *, stream: bool) -> Dict[str, Any]:
        system, messages = convert_messages(request.messages)
        payload: Dict[str, Any] = {
            "model": self.model_name(request.model),
            "messages": messages,
            "max_tokens": request.max_tokens or DEFAULT_MAX_TOKENS,
            "stream": stream,
        }
        if system:
            payload["system"] = system
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if self._tools_enabled(request):
            payload["tools"] = convert_tools(request.tools)
        return payload

    def parse_response(self, data: Mapping[str, Any]) -> CompletionResponse:
        content: List[MessageContent] = []
        for block in data.get("content") or ():
            kind = block.get("type")
            if kind == "text" and block.get("text"):
                content.append(TextContent(text=str(block["text"])))
            elif kind == "tool_use":
                arguments = block.get("input")
                if not isinstance(arguments, Mapping):
                    LOGGER.error("%s tool call '%s' dropped: input is not an object", self.name, block.get("name"))
                    continue
                content.append(
                    ToolCallContent(
                        call_id=str(block.get("id") or f"toolu_{new_id()}"),
                        name=str(block.get("name") or ""),
                        arguments=dict(arguments),
                    )
                )
        usage = data.get("usage") or {}
        return CompletionResponse(
            id=str(data.get("id") or new_id()),
            content=content,
            finish_reason=map_stop_reason(data.get("stop_reason")),
            usage=TokenUsage(
                input_tokens=int(usage.get("input_tokens") or 0),
                output_tokens=int(usage.get("output_tokens") or 0),
            ),
        )

    def create_stream_parser(self) -> StreamParser:
        return AnthropicStreamParser(self.id)


__all__ = [
    "ANTHROPIC_MODELS",
    "API_VERSION",
    "AnthropicAdapter",
    "AnthropicStreamParser",
    "DEFAULT_BASE_URL",
    "convert_messages",
    "convert_tools",
    "map_stop_reason",
]
