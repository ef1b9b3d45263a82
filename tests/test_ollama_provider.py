"""Tests for the Ollama adapter and the shared model-list cache."""

from __future__ import annotations

import httpx
import pytest

from aide.ai.ai_types import CompletionRequest, FinishReason, ToolDefinition
from aide.ai.client import ClientSettings
from aide.ai.errors import AideError
from aide.ai.providers.ollama_provider import (
    OllamaAdapter,
    convert_messages,
    estimate_context_length,
    supports_vision,
)
from aide.chat.message_model import Message, MessageRole, TextContent, ToolResultContent

from tests.helpers import RecordingHandler, client_settings, mock_http, ndjson_body

TAGS = {"models": [{"name": "llama3:8b"}, {"name": "llava:13b"}]}


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _adapter(handler: RecordingHandler, **kwargs) -> OllamaAdapter:
    return OllamaAdapter(client_settings(base_url="http://ollama.test", api_key=None), http_client=mock_http(handler), **kwargs)


def _request(*, stream: bool = False) -> CompletionRequest:
    return CompletionRequest(
        messages=[Message.text(MessageRole.USER, "hi")],
        model="ollama/llama3:8b",
        temperature=0.5,
        max_tokens=64,
        tools=(ToolDefinition(name="read_file", description="Read"),),
        stream=stream,
    )


def test_tool_results_are_down_converted_to_user_text() -> None:
    converted = convert_messages(
        [Message(role=MessageRole.TOOL, content=[ToolResultContent(call_id="c1", result={"ok": True}, is_error=True)])]
    )

    assert converted == [{"role": "user", "content": 'Tool result for c1 (error): {"ok": true}'}]


def test_model_family_heuristics() -> None:
    assert estimate_context_length("llama3:8b") == 8192
    assert estimate_context_length("mixtral:8x7b") == 32768
    assert estimate_context_length("unknown-model") == 4096
    assert supports_vision("llava:13b")
    assert not supports_vision("llama3:8b")


@pytest.mark.asyncio
async def test_complete_never_sends_tools_and_needs_no_key() -> None:
    handler = RecordingHandler(
        httpx.Response(
            200,
            json={"message": {"role": "assistant", "content": "hello"}, "done": True, "prompt_eval_count": 4, "eval_count": 2},
        )
    )

    response = await _adapter(handler).complete(_request())

    body = handler.last_json
    assert handler.requests[0].url.path == "/api/chat"
    assert "tools" not in body
    assert body["model"] == "llama3:8b"
    assert body["options"] == {"temperature": 0.5, "num_predict": 64}
    assert "Authorization" not in handler.requests[0].headers
    assert response.content == [TextContent(text="hello")]
    assert response.finish_reason is FinishReason.STOP
    assert response.usage is not None and response.usage.total == 6


@pytest.mark.asyncio
async def test_stream_parses_newline_delimited_json() -> None:
    body = ndjson_body(
        [
            {"message": {"content": "Hel"}, "done": False},
            {"message": {"content": "lo"}, "done": False},
            {"message": {"content": ""}, "done": True, "done_reason": "length", "eval_count": 2},
        ]
    )
    handler = RecordingHandler(httpx.Response(200, content=body))

    chunks = [chunk async for chunk in _adapter(handler).complete_stream(_request(stream=True))]

    assert [chunk.delta.text for chunk in chunks if isinstance(chunk.delta, TextContent)] == ["Hel", "lo"]
    assert chunks[-1].finish_reason is FinishReason.LENGTH
    assert handler.last_json["stream"] is True


@pytest.mark.asyncio
async def test_stream_error_object_aborts_stream() -> None:
    body = ndjson_body([{"message": {"content": "a"}, "done": False}, {"error": "model not found"}])
    handler = RecordingHandler(httpx.Response(200, content=body))

    with pytest.raises(AideError, match="model not found"):
        async for _chunk in _adapter(handler).complete_stream(_request(stream=True)):
            pass


@pytest.mark.asyncio
async def test_list_models_is_cached_for_ttl() -> None:
    handler = RecordingHandler(httpx.Response(200, json=TAGS))
    clock = _Clock()
    adapter = _adapter(handler, clock=clock)

    first = await adapter.list_models()
    clock.now += 10
    second = await adapter.list_models()
    clock.now += 25
    third = await adapter.list_models()

    assert [model.id for model in first] == ["ollama/llama3:8b", "ollama/llava:13b"]
    assert first[1].capabilities.vision is True
    assert all(not model.supports_tools for model in first)
    assert second == first
    assert third == first
    assert len(handler.requests) == 2


@pytest.mark.asyncio
async def test_configure_invalidates_cache_and_notifies() -> None:
    handler = RecordingHandler(httpx.Response(200, json=TAGS))
    changed: list[str] = []
    adapter = _adapter(handler, on_models_changed=changed.append)

    await adapter.list_models()
    adapter.configure(ClientSettings(base_url="http://other.test", max_retries=1))
    await adapter.list_models()

    assert changed == ["ollama"]
    assert [request.url.host for request in handler.requests] == ["ollama.test", "other.test"]


@pytest.mark.asyncio
async def test_unreachable_server_yields_empty_uncached_list() -> None:
    handler = RecordingHandler(httpx.Response(503, text="down"), httpx.Response(200, json=TAGS))
    adapter = _adapter(handler)

    assert await adapter.list_models() == []
    assert len(await adapter.list_models()) == 2
