"""Shared test helpers and stub classes.

Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import json
from typing import Any, AsyncIterator, Callable, Iterable, List, Sequence

import httpx

from aide.ai.ai_types import CompletionRequest, CompletionResponse, FinishReason, ModelInfo, StreamChunk
from aide.ai.client import ClientSettings
from aide.ai.tokens import estimate_tokens
from aide.chat.message_model import MessageContent, TextContent
from aide.core.cancellation import NONE, CancellationToken


def client_settings(base_url: str = "http://provider.test", api_key: str | None = "test-key") -> ClientSettings:
    """Connection settings with retries disabled so failures surface immediately."""
    return ClientSettings(base_url=base_url, api_key=api_key, max_retries=1, retry_min_seconds=0, retry_max_seconds=0)


def mock_http(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def sse_body(events: Iterable[Any], *, done: bool = True) -> bytes:
    """Encode *events* as ``data:`` lines; strings are written verbatim."""
    lines = []
    for event in events:
        payload = event if isinstance(event, str) else json.dumps(event)
        lines.append(f"data: {payload}\n\n")
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


def ndjson_body(events: Iterable[Any]) -> bytes:
    return "".join(json.dumps(event) + "\n" for event in events).encode("utf-8")


class RecordingHandler:
    """MockTransport handler returning canned responses and remembering requests."""

    def __init__(self, *responses: httpx.Response) -> None:
        self._responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if len(self._responses) > 1:
            return self._responses.pop(0)
        return self._responses[0]

    @property
    def last_json(self) -> dict[str, Any]:
        return json.loads(self.requests[-1].content)


class ScriptedAdapter:
    """Provider adapter stub replaying queued responses and stream scripts.

    Each stream script is a list of :class:`StreamChunk` objects. An exception
    instance queued as a response, or placed inside a script, is raised at
    that point.
    """

    def __init__(self, provider_id: str = "fake", models: Sequence[str] = ("model-a",)) -> None:
        self.id = provider_id
        self.name = provider_id.title()
        self.models = [
            ModelInfo(id=f"{provider_id}/{name}", name=name, provider=provider_id, context_length=8192)
            for name in models
        ]
        self.responses: List[Any] = []
        self.streams: List[List[Any]] = []
        self.requests: List[CompletionRequest] = []
        self.closed = False
        self.list_error: Exception | None = None

    def matches(self, model_id: str) -> bool:
        return model_id.startswith(f"{self.id}/") or model_id.startswith(f"{self.id}:")

    async def list_models(self, *, force_refresh: bool = False) -> List[ModelInfo]:
        if self.list_error is not None:
            raise self.list_error
        return list(self.models)

    def queue_text(self, text: str, finish_reason: FinishReason = FinishReason.STOP) -> None:
        self.responses.append(CompletionResponse(content=[TextContent(text=text)], finish_reason=finish_reason))

    def queue_response(self, content: Sequence[MessageContent], finish_reason: FinishReason) -> None:
        self.responses.append(CompletionResponse(content=list(content), finish_reason=finish_reason))

    async def complete(self, request: CompletionRequest, token: CancellationToken = NONE) -> CompletionResponse:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def complete_stream(
        self, request: CompletionRequest, token: CancellationToken = NONE
    ) -> AsyncIterator[StreamChunk]:
        self.requests.append(request)
        for item in self.streams.pop(0):
            if isinstance(item, Exception):
                raise item
            yield item

    def estimate_tokens(self, text: str, model_id: str | None = None) -> int:
        return estimate_tokens(text)

    async def aclose(self) -> None:
        self.closed = True


class KeywordEmbeddingProvider:
    """Deterministic embeddings: one dimension per vocabulary word."""

    def __init__(self, vocabulary: Sequence[str], *, name: str = "keywords") -> None:
        self._vocabulary = [word.lower() for word in vocabulary]
        self.name = name
        self.max_batch_size = 8
        self.document_calls = 0
        self.fail = False

    def _vector(self, text: str) -> list[float]:
        lowered = text.lower()
        return [float(lowered.count(word)) for word in self._vocabulary]

    async def embed_documents(self, texts: Sequence[str]) -> list[list[float]]:
        if self.fail:
            raise RuntimeError("embedding backend unavailable")
        self.document_calls += len(texts)
        return [self._vector(text) for text in texts]

    async def embed_query(self, text: str) -> list[float]:
        if self.fail:
            raise RuntimeError("embedding backend unavailable")
        return self._vector(text)
