"""OpenAI chat-completions adapter (also the base for OpenAI-compatible servers)."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

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
from ..errors import StreamParseError
from .base import ProviderAdapter, StreamParser
from .streaming import ToolCallAccumulator, parse_sse_data, parse_tool_arguments

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"

_FINISH_REASONS = {
    "stop": FinishReason.STOP,
    "tool_calls": FinishReason.TOOL_CALLS,
    "length": FinishReason.LENGTH,
}


def _model(name: str, display: str, context: int, *, vision: bool) -> ModelInfo:
    return ModelInfo(
        id=f"openai/{name}",
        name=display,
        provider="openai",
        context_length=context,
        capabilities=ModelCapabilities(vision=vision, tools=True, streaming=True),
    )


OPENAI_MODELS: tuple[ModelInfo, ...] = (
    _model("gpt-4o", "GPT-4o", 128_000, vision=True),
    _model("gpt-4o-mini", "GPT-4o Mini", 128_000, vision=True),
    _model("gpt-4-turbo", "GPT-4 Turbo", 128_000, vision=True),
    _model("gpt-4", "GPT-4", 8_192, vision=False),
    _model("gpt-3.5-turbo", "GPT-3.5 Turbo", 16_385, vision=False),
    _model("o1", "o1", 200_000, vision=True),
    _model("o1-mini", "o1 Mini", 128_000, vision=False),
)


def map_finish_reason(reason: Optional[str]) -> FinishReason:
    return _FINISH_REASONS.get(reason or "", FinishReason.STOP)


def convert_messages(messages: Sequence[Message]) -> List[Dict[str, Any]]:
    """Translate uniform messages into chat-completions ``messages`` entries.

    Text parts are joined into one string, images become ``image_url`` parts with a data
    URL, and a tool result turns the whole message into a ``tool`` message
    whose content is the JSON-encoded result.
    """

    converted: List[Dict[str, Any]] = []
    for message in messages:
        text = message.text_content
        images = [item for item in message.content if isinstance(item, ImageContent)]
        entry: Dict[str, Any] = {"role": message.role.value, "content": text}
        if images and message.role is MessageRole.USER:
            parts: List[Dict[str, Any]] = []
            if text:
                parts.append({"type": "text", "text": text})
            for image in images:
                parts.append(
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:{image.mime_type};base64,{image.to_base64()}"},
                    }
                )
            entry["content"] = parts

        tool_calls = message.tool_calls
        if tool_calls:
            entry["tool_calls"] = [
                {
                    "id": call.call_id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                }
                for call in tool_calls
            ]
            if not text:
                entry["content"] = None

        results = message.tool_results
        if results:
            result = results[0]
            entry = {
                "role": "tool",
                "tool_call_id": result.call_id,
                "content": json.dumps(result.result, default=str),
            }
        converted.append(entry)
    return converted


def convert_tools(tools: Sequence[ToolDefinition]) -> List[Dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.json_schema(),
            },
        }
        for tool in tools
    ]


def parse_usage(payload: Any) -> Optional[TokenUsage]:
    if not isinstance(payload, Mapping):
        return None
    return TokenUsage(
        input_tokens=int(payload.get("prompt_tokens") or 0),
        output_tokens=int(payload.get("completion_tokens") or 0),
    )


class OpenAIStreamParser(StreamParser):
    """Translate ``data:`` events of a chat-completions stream."""

    def __init__(self, provider: str) -> None:
        self._provider = provider
        self._tool_calls = ToolCallAccumulator(provider)
        self._message_id = new_id()

    def feed(self, line: str) -> List[StreamChunk]:
        event = parse_sse_data(line)
        if event is None:
            return []
        if event.get("id"):
            self._message_id = str(event["id"])

        chunks: List[StreamChunk] = []
        choices = event.get("choices") or []
        usage = parse_usage(event.get("usage"))
        if not choices:
            if usage is not None:
                chunks.append(StreamChunk(id=self._message_id, usage=usage))
            return chunks

        choice = choices[0]
        if not isinstance(choice, Mapping):
            raise StreamParseError(f"Unexpected choice payload: {choice!r}")
        delta = choice.get("delta") or {}
        raw_reason = choice.get("finish_reason")
        finish_reason = map_finish_reason(raw_reason) if raw_reason else None

        content = delta.get("content")
        if content:
            chunks.append(StreamChunk(id=self._message_id, delta=TextContent(text=str(content))))

        for fragment in delta.get("tool_calls") or ():
            function = fragment.get("function") or {}
            self._tool_calls.add_fragment(
                int(fragment.get("index") or 0),
                call_id=fragment.get("id"),
                name=function.get("name"),
                arguments=function.get("arguments"),
            )

        if finish_reason is FinishReason.TOOL_CALLS:
            for call in self._tool_calls.finish_all():
                chunks.append(StreamChunk(id=self._message_id, delta=call))
        elif finish_reason is not None and self._tool_calls:
            LOGGER.warning(
                "%s stream finished with %r while %d tool call(s) were pending; discarding them",
                self._provider,
                raw_reason,
                len(self._tool_calls),
            )
            self._tool_calls.discard()

        if finish_reason is not None:
            chunks.append(StreamChunk(id=self._message_id, finish_reason=finish_reason, usage=usage))
        return chunks

    def close(self) -> List[StreamChunk]:
        if self._tool_calls:
            LOGGER.warning(
                "%s stream ended without a finish reason; discarding %d pending tool call(s)",
                self._provider,
                len(self._tool_calls),
            )
            self._tool_calls.discard()
        return []


class OpenAIAdapter(ProviderAdapter):
    """Adapter for ``POST /chat/completions`` with bearer-token auth."""

    id = "openai"
    name = "OpenAI"
    chat_path = "/chat/completions"

    async def _fetch_models(self) -> Sequence[ModelInfo]:
        if not self.is_configured:
            return []
        return OPENAI_MODELS

    def auth_headers(self) -> Dict[str, str]:
        api_key = self.settings.api_key
        return {"Authorization": f"Bearer {api_key}"} if api_key else {}

    def build_payload(self, request: CompletionRequest, *, stream: bool) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model_name(request.model),
            "messages": convert_messages(request.messages),
            "stream": stream,
        }
        if request.max_tokens is not None:
            payload["max_tokens"] = request.max_tokens
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if self._tools_enabled(request):
            payload["tools"] = convert_tools(request.tools)
        return payload

    def parse_response(self, data: Mapping[str, Any]) -> CompletionResponse:
        choices = data.get("choices") or []
        if not choices:
            raise StreamParseError(f"{self.name} response contained no choices")
        choice = choices[0]
        message = choice.get("message") or {}
        content: List[MessageContent] = []
        if message.get("content"):
            content.append(TextContent(text=str(message["content"])))
        for call in message.get("tool_calls") or ():
            function = call.get("function") or {}
            try:
                arguments = parse_tool_arguments(function.get("arguments"))
            except StreamParseError as exc:
                LOGGER.error("%s tool call '%s' dropped: %s", self.name, function.get("name"), exc)
                continue
            content.append(
                ToolCallContent(
                    call_id=str(call.get("id") or f"call_{new_id()}"),
                    name=str(function.get("name") or ""),
                    arguments=arguments,
                )
            )
        return CompletionResponse(
            id=str(data.get("id") or new_id()),
            content=content,
            finish_reason=map_finish_reason(choice.get("finish_reason")),
            usage=parse_usage(data.get("usage")),
        )

    def create_stream_parser(self) -> StreamParser:
        return OpenAIStreamParser(self.id)


__all__ = [
    "DEFAULT_BASE_URL",
    "OPENAI_MODELS",
    "OpenAIAdapter",
    "OpenAIStreamParser",
    "convert_messages",
    "convert_tools",
    "map_finish_reason",
]
