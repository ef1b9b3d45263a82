"""Embedding providers and vector similarity helpers."""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Awaitable, Callable, Protocol, Sequence

from openai import AsyncOpenAI

from ...services.settings import EmbeddingSettings
from ..errors import ConfigurationError

LOGGER = logging.getLogger(__name__)
Vector = tuple[float, ...]


class EmbeddingProvider(Protocol):
    """Protocol implemented by embedding backends.

    ``name`` doubles as the registration key inside the orchestrator.
    """

    name: str
    max_batch_size: int

    async def embed_documents(self, texts: Sequence[str]) -> Sequence[Sequence[float]]:
        """Return embeddings for file contents."""

    async def embed_query(self, text: str) -> Sequence[float]:
        """Return embedding vector for a query string."""


def cosine_similarity(lhs: Sequence[float], rhs: Sequence[float]) -> float:
    """Cosine of the angle between two vectors.

    Empty vectors, vectors of different length, and zero-magnitude vectors
    all score exactly ``0.0``.
    """

    if not lhs or not rhs:
        return 0.0
    if len(lhs) != len(rhs):
        return 0.0
    dot = sum(a * b for a, b in zip(lhs, rhs))
    left = math.sqrt(sum(a * a for a in lhs))
    right = math.sqrt(sum(b * b for b in rhs))
    if left == 0 or right == 0:
        return 0.0
    return dot / (left * right)


class LocalEmbeddingProvider:
    """Embedding provider backed by synchronous or async callables."""

    def __init__(
        self,
        *,
        embed_batch: Callable[[Sequence[str]], Sequence[Sequence[float]] | Awaitable[Sequence[Sequence[float]]]],
        embed_query: Callable[[str], Sequence[float] | Awaitable[Sequence[float]]] | None = None,
        name: str = "local",
        max_batch_size: int = 32,
    ) -> None:
        self._embed_batch = embed_batch
        self._embed_query = embed_query
        self.name = name
        self.max_batch_size = max(1, int(max_batch_size))

    async def embed_documents(self, texts: Sequence[str]) -> Sequence[Sequence[float]]:
        return _normalize_vector_batch(await _maybe_await(self._embed_batch(texts)))

    async def embed_query(self, text: str) -> Sequence[float]:
        if self._embed_query is not None:
            return _normalize_vector(await _maybe_await(self._embed_query(text)))
        vectors = await self.embed_documents([text])
        return vectors[0]


class OpenAIEmbeddingProvider:
    """Embedding provider that wraps :class:`openai.AsyncOpenAI`.

    Also serves OpenAI-compatible endpoints (``base_url``) such as local
    embedding servers.
    """

    def __init__(
        self,
        *,
        client: AsyncOpenAI,
        model: str,
        name: str | None = None,
        max_batch_size: int = 16,
    ) -> None:
        self._client = client
        self._model = model
        self.name = name or f"openai:{model}"
        self.max_batch_size = max(1, int(max_batch_size))

    async def embed_documents(self, texts: Sequence[str]) -> Sequence[Sequence[float]]:
        vectors: list[list[float]] = []
        inputs = list(texts)
        for start in range(0, len(inputs), self.max_batch_size):
            batch = inputs[start : start + self.max_batch_size]
            response = await self._client.embeddings.create(model=self._model, input=batch)
            data = sorted(response.data, key=lambda item: getattr(item, "index", 0))
            vectors.extend(list(getattr(item, "embedding", [])) for item in data)
        return vectors

    async def embed_query(self, text: str) -> Sequence[float]:
        vectors = await self.embed_documents([text])
        return vectors[0]

    async def aclose(self) -> None:
        await self._client.close()


def build_embedding_provider(settings: EmbeddingSettings, *, timeout: float = 90.0) -> EmbeddingProvider | None:
    """Create the configured embedding provider, or ``None`` when disabled.

    Raises:
        ConfigurationError: If the mode is unknown or required credentials
            are missing.
    """

    mode = (settings.mode or "disabled").strip().lower()
    if mode == "disabled":
        return None
    if mode not in {"openai", "custom"}:
        raise ConfigurationError(f"Unknown embedding mode: {settings.mode}")
    if mode == "openai" and not settings.api_key:
        raise ConfigurationError("OpenAI embeddings require an API key")
    if mode == "custom" and not settings.base_url:
        raise ConfigurationError("Custom embeddings require a base_url")
    client = AsyncOpenAI(
        api_key=settings.api_key or "not-needed",
        base_url=settings.base_url or None,
        timeout=timeout,
    )
    LOGGER.info("Embedding provider configured: %s (%s)", settings.model, mode)
    return OpenAIEmbeddingProvider(client=client, model=settings.model, name=f"{mode}:{settings.model}")


async def _maybe_await(value: Any) -> Any:
    if asyncio.iscoroutine(value) or isinstance(value, Awaitable):  # type: ignore[arg-type]
        return await value  # type: ignore[return-value]
    return value


def _normalize_vector_batch(value: Any) -> list[list[float]]:
    if not isinstance(value, Sequence):
        raise TypeError("Embedding batch must be a sequence")
    return [_normalize_vector(vector) for vector in value]


def _normalize_vector(value: Any) -> list[float]:
    if isinstance(value, Sequence):
        return [float(component) for component in value]
    raise TypeError("Embedding vector must be a sequence")


__all__ = [
    "EmbeddingProvider",
    "LocalEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "Vector",
    "build_embedding_provider",
    "cosine_similarity",
]
