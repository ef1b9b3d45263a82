"""Tests for the OpenAI chat-completions adapter."""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator

import httpx
import pytest

from aide.ai.ai_types import CompletionRequest, FinishReason, StreamChunk, ToolDefinition
from aide.ai.errors import ConfigurationError, TransportError
from aide.ai.providers.openai_provider import OpenAIAdapter, convert_messages
from aide.chat.message_model import (
    Message,
    MessageRole,
    TextContent,
    ToolCallContent,
    ToolResultContent,
)
from aide.core.cancellation import CancellationTokenSource

from tests.helpers import RecordingHandler, client_settings, mock_http, sse_body

READ_FILE_TOOL = ToolDefinition(
    name="read_file",
    description="Read a file",
    parameters={"properties": {"path": {"type": "string"}}},
    required=("path",),
)


def _request(*, stream: bool = False, tools: tuple[ToolDefinition, ...] = ()) -> CompletionRequest:
    return CompletionRequest(
        messages=[
            Message.text(MessageRole.SYSTEM, "be brief"),
            Message.text(MessageRole.USER, "hello"),
        ],
        model="openai/gpt-4o",
        temperature=0.2,
        tools=tools,
        stream=stream,
    )


def _adapter(handler: RecordingHandler, *, api_key: str | None = "sk-test") -> OpenAIAdapter:
    return OpenAIAdapter(client_settings(api_key=api_key), http_client=mock_http(handler))


async def _collect(stream: AsyncIterator[StreamChunk]) -> list[StreamChunk]:
    return [chunk async for chunk in stream]


def test_convert_messages_maps_tool_calls_and_results() -> None:
    assistant = Message(
        role=MessageRole.ASSISTANT,
        content=[ToolCallContent(call_id="call_1", name="read_file", arguments={"path": "a.ts"})],
    )
    tool = Message(role=MessageRole.TOOL, content=[ToolResultContent(call_id="call_1", result={"content": "x"})])

    converted = convert_messages([assistant, tool])

    assert converted[0]["role"] == "assistant"
    assert converted[0]["content"] is None
    assert converted[0]["tool_calls"][0]["function"] == {"name": "read_file", "arguments": '{"path": "a.ts"}'}
    assert converted[1] == {"role": "tool", "tool_call_id": "call_1", "content": '{"content": "x"}'}


def test_convert_messages_separates_text_parts() -> None:
    user = Message(
        role=MessageRole.USER,
        content=[TextContent(text="summarise"), TextContent(text="--- notes.txt ---\nremember the milk")],
    )

    converted = convert_messages([user])

    assert converted == [{"role": "user", "content": "summarise\n\n--- notes.txt ---\nremember the milk"}]


@pytest.mark.asyncio
async def test_complete_posts_payload_and_parses_response() -> None:
    handler = RecordingHandler(
        httpx.Response(
            200,
            json={
                "id": "chatcmpl-1",
                "choices": [
                    {
                        "message": {
                            "content": "Reading it now",
                            "tool_calls": [
                                {
                                    "id": "call_9",
                                    "type": "function",
                                    "function": {"name": "read_file", "arguments": '{"path": "a.ts"}'},
                                }
                            ],
                        },
                        "finish_reason": "tool_calls",
                    }
                ],
                "usage": {"prompt_tokens": 12, "completion_tokens": 5},
            },
        )
    )
    adapter = _adapter(handler)

    response = await adapter.complete(_request(tools=(READ_FILE_TOOL,)))

    request = handler.requests[0]
    assert request.url.path == "/chat/completions"
    assert request.headers["Authorization"] == "Bearer sk-test"
    body = handler.last_json
    assert body["model"] == "gpt-4o"
    assert body["stream"] is False
    assert body["messages"][0] == {"role": "system", "content": "be brief"}
    assert body["tools"][0]["function"]["name"] == "read_file"
    assert body["tools"][0]["function"]["parameters"]["required"] == ["path"]

    assert response.id == "chatcmpl-1"
    assert response.finish_reason is FinishReason.TOOL_CALLS
    assert response.content[0] == TextContent(text="Reading it now")
    assert response.content[1] == ToolCallContent(call_id="call_9", name="read_file", arguments={"path": "a.ts"})
    assert response.usage is not None
    assert (response.usage.input_tokens, response.usage.output_tokens) == (12, 5)


@pytest.mark.asyncio
async def test_complete_drops_tool_call_with_malformed_arguments(caplog: pytest.LogCaptureFixture) -> None:
    handler = RecordingHandler(
        httpx.Response(
            200,
            json={
                "choices": [
                    {
                        "message": {
                            "content": None,
                            "tool_calls": [
                                {"id": "bad", "function": {"name": "read_file", "arguments": '{"path": '}},
                                {"id": "good", "function": {"name": "list_directory", "arguments": "{}"}},
                            ],
                        },
                        "finish_reason": "tool_calls",
                    }
                ]
            },
        )
    )

    with caplog.at_level(logging.ERROR):
        response = await _adapter(handler).complete(_request())

    assert [item.call_id for item in response.content] == ["good"]
    assert "read_file" in caplog.text


@pytest.mark.asyncio
async def test_stream_yields_text_deltas_in_wire_order() -> None:
    body = sse_body(
        [
            {"id": "chatcmpl-2", "choices": [{"delta": {"role": "assistant", "content": "Hel"}}]},
            {"id": "chatcmpl-2", "choices": [{"delta": {"content": "lo"}}]},
            {"id": "chatcmpl-2", "choices": [{"delta": {}, "finish_reason": "stop"}]},
        ]
    )
    handler = RecordingHandler(httpx.Response(200, content=body))

    chunks = await _collect(_adapter(handler).complete_stream(_request(stream=True)))

    assert [chunk.delta.text for chunk in chunks if isinstance(chunk.delta, TextContent)] == ["Hel", "lo"]
    assert chunks[-1].finish_reason is FinishReason.STOP
    assert {chunk.id for chunk in chunks} == {"chatcmpl-2"}
    assert handler.last_json["stream"] is True


@pytest.mark.asyncio
async def test_stream_reassembles_fragmented_tool_call() -> None:
    body = sse_body(
        [
            {"choices": [{"delta": {"tool_calls": [{"index": 0, "id": "call_1", "function": {"name": "read_file"}}]}}]},
            {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"arguments": '{"path":'}}]}}]},
            {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"arguments": '"a.ts"}'}}]}}]},
            {"choices": [{"delta": {}, "finish_reason": "tool_calls"}]},
        ]
    )
    handler = RecordingHandler(httpx.Response(200, content=body))

    chunks = await _collect(_adapter(handler).complete_stream(_request(stream=True, tools=(READ_FILE_TOOL,))))

    calls = [chunk.delta for chunk in chunks if isinstance(chunk.delta, ToolCallContent)]
    assert len(calls) == 1
    assert calls[0].name == "read_file"
    assert calls[0].arguments == {"path": "a.ts"}
    assert chunks[-1].finish_reason is FinishReason.TOOL_CALLS


@pytest.mark.asyncio
async def test_stream_handles_lines_split_across_reads() -> None:
    body = sse_body(
        [
            {"choices": [{"delta": {"content": "split"}}]},
            {"choices": [{"delta": {}, "finish_reason": "length"}]},
        ]
    )

    async def _pieces() -> AsyncIterator[bytes]:
        for start in range(0, len(body), 7):
            yield body[start : start + 7]

    handler = RecordingHandler(httpx.Response(200, content=_pieces()))

    chunks = await _collect(_adapter(handler).complete_stream(_request(stream=True)))

    assert [chunk.delta.text for chunk in chunks if isinstance(chunk.delta, TextContent)] == ["split"]
    assert chunks[-1].finish_reason is FinishReason.LENGTH


@pytest.mark.asyncio
async def test_stream_skips_malformed_line(caplog: pytest.LogCaptureFixture) -> None:
    body = sse_body(
        [
            {"choices": [{"delta": {"content": "a"}}]},
            "{this is not json",
            {"choices": [{"delta": {"content": "b"}, "finish_reason": "stop"}]},
        ]
    )
    handler = RecordingHandler(httpx.Response(200, content=body))

    with caplog.at_level(logging.WARNING):
        chunks = await _collect(_adapter(handler).complete_stream(_request(stream=True)))

    assert [chunk.delta.text for chunk in chunks if isinstance(chunk.delta, TextContent)] == ["a", "b"]
    assert "skipping stream line" in caplog.text


@pytest.mark.asyncio
async def test_stream_stops_reading_when_cancelled() -> None:
    body = sse_body(
        [
            {"choices": [{"delta": {"content": "first"}}]},
            {"choices": [{"delta": {"content": "second"}}]},
            {"choices": [{"delta": {}, "finish_reason": "stop"}]},
        ]
    )
    handler = RecordingHandler(httpx.Response(200, content=body))
    source = CancellationTokenSource()

    received: list[StreamChunk] = []
    async for chunk in _adapter(handler).complete_stream(_request(stream=True), source.token):
        received.append(chunk)
        source.cancel()

    assert len(received) == 1
    assert isinstance(received[0].delta, TextContent)
    assert received[0].delta.text == "first"


@pytest.mark.asyncio
async def test_cancelled_token_skips_network_call() -> None:
    handler = RecordingHandler(httpx.Response(500))
    source = CancellationTokenSource()
    source.cancel()
    adapter = _adapter(handler)

    response = await adapter.complete(_request(), source.token)
    chunks = await _collect(adapter.complete_stream(_request(stream=True), source.token))

    assert response.content == []
    assert response.finish_reason is FinishReason.STOP
    assert chunks == []
    assert handler.requests == []


@pytest.mark.asyncio
async def test_missing_api_key_fails_before_network() -> None:
    handler = RecordingHandler(httpx.Response(200, json={}))
    adapter = _adapter(handler, api_key=None)

    with pytest.raises(ConfigurationError):
        await adapter.complete(_request())

    assert handler.requests == []
    assert await adapter.list_models() == []


@pytest.mark.asyncio
async def test_http_error_raises_transport_error_with_status_and_body() -> None:
    handler = RecordingHandler(httpx.Response(401, text="invalid api key"))

    with pytest.raises(TransportError) as excinfo:
        await _adapter(handler).complete(_request())

    assert excinfo.value.status_code == 401
    assert "401" in str(excinfo.value)
    assert "invalid api key" in str(excinfo.value)


@pytest.mark.asyncio
async def test_stream_http_error_raises_transport_error() -> None:
    handler = RecordingHandler(httpx.Response(429, text="slow down"))

    with pytest.raises(TransportError) as excinfo:
        await _collect(_adapter(handler).complete_stream(_request(stream=True)))

    assert excinfo.value.status_code == 429


@pytest.mark.asyncio
async def test_models_are_namespaced_by_provider() -> None:
    adapter = _adapter(RecordingHandler(httpx.Response(200, json={})))

    models = await adapter.list_models()

    assert models
    assert all(model.id.startswith("openai/") for model in models)
    assert adapter.matches("openai/gpt-4o")
    assert not adapter.matches("anthropic/claude-3-haiku-20240307")
    assert adapter.model_name("openai/gpt-4o") == "gpt-4o"


def test_payload_omits_tools_when_none_requested() -> None:
    adapter = _adapter(RecordingHandler(httpx.Response(200, json={})))

    payload = adapter.build_payload(_request(), stream=False)

    assert "tools" not in payload
    assert json.loads(json.dumps(payload))["temperature"] == 0.2
