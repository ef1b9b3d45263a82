"""Provider adapter contract shared by every backend."""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from contextlib import aclosing
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional, Sequence

import httpx

from ...core.cancellation import NONE, CancellationToken
from ..ai_types import CompletionRequest, CompletionResponse, FinishReason, ModelInfo, StreamChunk, split_model_id
from ..client import ClientSettings, ProviderHttpClient
from ..errors import ConfigurationError, StreamParseError
from ..tokens import estimate_tokens
from .streaming import iter_lines

LOGGER = logging.getLogger(__name__)

DEFAULT_MODEL_CACHE_TTL = 30.0


class StreamParser(ABC):
    """Stateful translator from provider stream lines to uniform chunks.

    One parser instance lives for exactly one streamed response.
    """

    @abstractmethod
    def feed(self, line: str) -> List[StreamChunk]:
        """Translate one complete, non-blank line.

        Raises:
            StreamParseError: when the line cannot be decoded; the caller
                skips it and keeps reading.
        """

    def close(self) -> List[StreamChunk]:
        """Called once the transport ends without cancellation."""

        return []


class ProviderAdapter(ABC):
    """Translate uniform completion requests to and from one provider's wire format."""

    id: str = ""
    name: str = ""
    chat_path: str = ""
    requires_api_key: bool = True

    def __init__(
        self,
        settings: ClientSettings,
        *,
        http_client: httpx.AsyncClient | None = None,
        model_cache_ttl: float = DEFAULT_MODEL_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
        on_models_changed: Callable[[str], None] | None = None,
    ) -> None:
        self._http = ProviderHttpClient(self.name or self.id, settings, client=http_client)
        self._model_cache_ttl = max(0.0, float(model_cache_ttl))
        self._clock = clock
        self._on_models_changed = on_models_changed
        self._models_cache: Optional[List[ModelInfo]] = None
        self._models_cached_at = 0.0
        self._models_lock = asyncio.Lock()

    @property
    def settings(self) -> ClientSettings:
        return self._http.settings

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.api_key) or not self.requires_api_key

    # ------------------------------------------------------------------
    # Configuration & model catalogue
    # ------------------------------------------------------------------
    def configure(self, settings: ClientSettings) -> None:
        """Apply new connection settings and drop the cached model list immediately."""

        self._http.update_settings(settings)
        self.invalidate_models()
        LOGGER.info("Provider %s reconfigured (base_url=%s)", self.id, settings.base_url)
        if self._on_models_changed is not None:
            self._on_models_changed(self.id)

    def invalidate_models(self) -> None:
        self._models_cache = None
        self._models_cached_at = 0.0

    async def list_models(self, *, force_refresh: bool = False) -> List[ModelInfo]:
        """Return the provider's models, cached for ``model_cache_ttl`` seconds.

        Empty catalogues are not cached so an unreachable server is retried on
        the next call.
        """

        if not force_refresh and self._cache_is_fresh():
            return list(self._models_cache or ())

        async with self._models_lock:
            if not force_refresh and self._cache_is_fresh():
                return list(self._models_cache or ())
            models = await self._fetch_models()
            if models:
                self._models_cache = list(models)
                self._models_cached_at = self._clock()
            return list(models)

    def _cache_is_fresh(self) -> bool:
        if self._models_cache is None:
            return False
        return (self._clock() - self._models_cached_at) < self._model_cache_ttl

    @abstractmethod
    async def _fetch_models(self) -> Sequence[ModelInfo]:
        """Retrieve the uncached model catalogue."""

    def supports_tools(self, model_name: str) -> bool:
        """Return whether *model_name* accepts tool definitions."""

        return True

    def matches(self, model_id: str) -> bool:
        return model_id.startswith(f"{self.id}/") or model_id.startswith(f"{self.id}:")

    def model_name(self, model_id: str) -> str:
        if self.matches(model_id):
            return split_model_id(model_id)[1]
        return model_id

    # ------------------------------------------------------------------
    # Completions
    # ------------------------------------------------------------------
    async def complete(self, request: CompletionRequest, token: CancellationToken = NONE) -> CompletionResponse:
        """Run a blocking completion.

        A token that is already cancelled short-circuits to an empty ``stop``
        response without touching the network.
        """

        if token.is_cancelled:
            LOGGER.debug("%s completion cancelled before dispatch", self.id)
            return CompletionResponse(content=[], finish_reason=FinishReason.STOP)
        self._ensure_configured()
        payload = self.build_payload(request, stream=False)
        data = await self._http.post_json(self.chat_path, payload, headers=self.auth_headers())
        if not isinstance(data, Mapping):
            raise StreamParseError(f"{self.name} returned a non-object response body")
        return self.parse_response(data)

    async def complete_stream(
        self, request: CompletionRequest, token: CancellationToken = NONE
    ) -> AsyncIterator[StreamChunk]:
        """Stream a completion as uniform chunks in wire order."""

        if token.is_cancelled:
            LOGGER.debug("%s stream cancelled before dispatch", self.id)
            return
        self._ensure_configured()
        payload = self.build_payload(request, stream=True)
        parser = self.create_stream_parser()
        byte_stream = self._http.stream_bytes(self.chat_path, payload, headers=self.auth_headers(), token=token)
        async with aclosing(byte_stream):
            async for line in iter_lines(byte_stream):
                if token.is_cancelled:
                    return
                try:
                    chunks = parser.feed(line)
                except StreamParseError as exc:
                    LOGGER.warning("%s: skipping stream line: %s", self.id, exc)
                    continue
                for chunk in chunks:
                    yield chunk
        if token.is_cancelled:
            return
        for chunk in parser.close():
            yield chunk

    def estimate_tokens(self, text: str, model_id: str | None = None) -> int:
        return estimate_tokens(text)

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Provider-specific hooks
    # ------------------------------------------------------------------
    @abstractmethod
    def build_payload(self, request: CompletionRequest, *, stream: bool) -> Dict[str, Any]:
        """Translate *request* into the provider's JSON body."""

    @abstractmethod
    def parse_response(self, data: Mapping[str, Any]) -> CompletionResponse:
        """Translate a non-streaming response body."""

    @abstractmethod
    def create_stream_parser(self) -> StreamParser:
        """Return a fresh parser for one streamed response."""

    def auth_headers(self) -> Dict[str, str]:
        return {}

    def _ensure_configured(self) -> None:
        if not self.is_configured:
            raise ConfigurationError(f"{self.name} API key not configured")

    def _tools_enabled(self, request: CompletionRequest) -> bool:
        return bool(request.tools) and self.supports_tools(self.model_name(request.model))


__all__ = ["DEFAULT_MODEL_CACHE_TTL", "ProviderAdapter", "StreamParser"]
