"""Ollama local-model adapter."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ...chat.message_model import ImageContent, Message, MessageContent, MessageRole, TextContent, TokenUsage, new_id
from ..ai_types import CompletionRequest, CompletionResponse, FinishReason, ModelCapabilities, ModelInfo, StreamChunk
from ..errors import AideError
from .base import ProviderAdapter, StreamParser
from .streaming import parse_json_line

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:11434"
DEFAULT_CONTEXT_LENGTH = 4096

# First matching family wins.
_CONTEXT_LENGTHS: tuple[tuple[tuple[str, ...], int], ...] = (
    (("llama3", "llama-3"), 8192),
    (("llama2", "llama-2"), 4096),
    (("codellama",), 16384),
    (("mistral", "mixtral"), 32768),
    (("phi",), 4096),
    (("gemma",), 8192),
    (("qwen", "deepseek"), 32768),
)
_VISION_MARKERS = ("llava", "bakllava", "vision", "moondream")


def estimate_context_length(model_name: str) -> int:
    name = model_name.lower()
    for markers, length in _CONTEXT_LENGTHS:
        if any(marker in name for marker in markers):
            return length
    return DEFAULT_CONTEXT_LENGTH


def supports_vision(model_name: str) -> bool:
    name = model_name.lower()
    return any(marker in name for marker in _VISION_MARKERS)


def map_done_reason(reason: Optional[str]) -> FinishReason:
    if reason == "length":
        return FinishReason.LENGTH
    return FinishReason.STOP


def convert_messages(messages: Sequence[Message]) -> List[Dict[str, Any]]:
    """Translate uniform messages into ``/api/chat`` messages.

    Ollama has no ``tool`` role. Tool results are down-converted to ``user``
    messages carrying the JSON-encoded result as text, which is lossy: the
    model sees the output but not a structured link to its call.
    """

    converted: List[Dict[str, Any]] = []
    for message in messages:
        if message.role is MessageRole.TOOL:
            lines = [
                f"Tool result for {result.call_id}{' (error)' if result.is_error else ''}: "
                f"{json.dumps(result.result, default=str)}"
                for result in message.tool_results
            ]
            converted.append({"role": "user", "content": "\n".join(lines) or message.text_content})
            continue

        entry: Dict[str, Any] = {"role": message.role.value, "content": message.text_content}
        images = [item.to_base64() for item in message.content if isinstance(item, ImageContent)]
        if images:
            entry["images"] = images
        converted.append(entry)
    return converted


class OllamaStreamParser(StreamParser):
    """Translate newline-delimited JSON objects from ``/api/chat``."""

    def __init__(self) -> None:
        self._message_id = new_id()

    def feed(self, line: str) -> List[StreamChunk]:
        event = parse_json_line(line.strip())
        if event.get("error"):
            raise AideError(f"Ollama stream error: {event['error']}")
        chunks: List[StreamChunk] = []
        message = event.get("message") or {}
        if message.get("content"):
            chunks.append(StreamChunk(id=self._message_id, delta=TextContent(text=str(message["content"]))))
        if event.get("done"):
            chunks.append(
                StreamChunk(
                    id=self._message_id,
                    finish_reason=map_done_reason(event.get("done_reason")),
                    usage=_parse_usage(event),
                )
            )
        return chunks


def _parse_usage(data: Mapping[str, Any]) -> TokenUsage:
    return TokenUsage(
        input_tokens=int(data.get("prompt_eval_count") or 0),
        output_tokens=int(data.get("eval_count") or 0),
    )


class OllamaAdapter(ProviderAdapter):
    """Adapter for a local Ollama server; needs no API key and never sends tools."""

    id = "ollama"
    name = "Ollama"
    chat_path = "/api/chat"
    requires_api_key = False

    async def _fetch_models(self) -> Sequence[ModelInfo]:
        try:
            data = await self._http.get_json("/api/tags")
        except AideError as exc:
            LOGGER.warning("Failed to fetch Ollama models from %s: %s", self.settings.base_url, exc)
            return []
        models: List[ModelInfo] = []
        for item in (data or {}).get("models") or ():
            name = str(item.get("name") or item.get("model") or "")
            if not name:
                continue
            models.append(
                ModelInfo(
                    id=f"ollama/{name}",
                    name=name,
                    provider=self.id,
                    context_length=estimate_context_length(name),
                    capabilities=ModelCapabilities(vision=supports_vision(name), tools=False, streaming=True),
                )
            )
        return models

    def supports_tools(self, model_name: str) -> bool:
        return False

    def build_payload(self, request: CompletionRequest, *, stream: bool) -> Dict[str, Any]:
        options: Dict[str, Any] = {}
        if request.temperature is not None:
            options["temperature"] = request.temperature
        if request.max_tokens:
            options["num_predict"] = request.max_tokens
        return {
            "model": self.model_name(request.model),
            "messages": convert_messages(request.messages),
            "stream": stream,
            "options": options,
        }

    def parse_response(self, data: Mapping[str, Any]) -> CompletionResponse:
        message = data.get("message") or {}
        content: List[MessageContent] = []
        if message.get("content"):
            content.append(TextContent(text=str(message["content"])))
        return CompletionResponse(
            id=new_id(),
            content=content,
            finish_reason=map_done_reason(data.get("done_reason")),
            usage=_parse_usage(data),
        )

    def create_stream_parser(self) -> StreamParser:
        return OllamaStreamParser()


__all__ = [
    "DEFAULT_BASE_URL",
    "OllamaAdapter",
    "OllamaStreamParser",
    "convert_messages",
    "estimate_context_length",
    "map_done_reason",
    "supports_vision",
]
