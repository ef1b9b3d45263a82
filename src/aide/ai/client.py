"""Async HTTP transport shared by every provider adapter."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Mapping

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from ..core.cancellation import NONE, CancellationToken
from .errors import TransportError

LOGGER = logging.getLogger(__name__)
_RETRYABLE_STATUS = frozenset({408, 409, 429, 500, 502, 503, 504})
_MAX_ERROR_BODY = 2_000


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to talk to one provider endpoint."""

    base_url: str
    api_key: str | None = None
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: Mapping[str, str] | None = None
    debug_logging: bool = False


def _is_retryable(exc: BaseException) -> bool:
    if not isinstance(exc, TransportError):
        return False
    return exc.status_code is None or exc.status_code in _RETRYABLE_STATUS


class ProviderHttpClient:
    """Thin JSON-over-HTTP client with retry semantics.

    Retries cover connection failures, timeouts, and retryable status codes
    while a request is being opened. Once a stream starts yielding bytes it is
    never retried, so callers never observe duplicated deltas.
    """

    def __init__(
        self,
        provider: str,
        settings: ClientSettings,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._provider = provider
        self._settings = settings
        self._client = client or httpx.AsyncClient(timeout=settings.request_timeout)
        self._owns_client = client is None

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    @property
    def provider(self) -> str:
        return self._provider

    def update_settings(self, settings: ClientSettings) -> None:
        self._settings = settings

    def url(self, path: str) -> str:
        return f"{self._settings.base_url.rstrip('/')}/{path.lstrip('/')}"

    async def get_json(self, path: str, *, headers: Mapping[str, str] | None = None) -> Any:
        async for attempt in self._retrying():
            with attempt:
                response = await self._send("GET", path, headers=headers)
                return self._decode_json(response)
        raise AssertionError("unreachable")  # pragma: no cover - tenacity reraises

    async def post_json(
        self,
        path: str,
        payload: Mapping[str, Any],
        *,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        if self._settings.debug_logging:
            self._log_payload(path, payload)
        async for attempt in self._retrying():
            with attempt:
                response = await self._send("POST", path, json_payload=payload, headers=headers)
                return self._decode_json(response)
        raise AssertionError("unreachable")  # pragma: no cover - tenacity reraises

    async def stream_bytes(
        self,
        path: str,
        payload: Mapping[str, Any],
        *,
        headers: Mapping[str, str] | None = None,
        token: CancellationToken = NONE,
    ) -> AsyncIterator[bytes]:
        """Yield raw response bytes, checking *token* once per read."""

        if self._settings.debug_logging:
            self._log_payload(path, payload)
        response = await self._open_stream(path, payload, headers=headers)
        try:
            async for data in response.aiter_bytes():
                if token.is_cancelled:
                    LOGGER.debug("%s stream cancelled; stopping reads", self._provider)
                    return
                if data:
                    yield data
        except httpx.HTTPError as exc:
            raise TransportError(self._provider, None, str(exc)) from exc
        finally:
            await response.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client when this instance created it."""

        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    async def _open_stream(
        self,
        path: str,
        payload: Mapping[str, Any],
        *,
        headers: Mapping[str, str] | None,
    ) -> httpx.Response:
        async for attempt in self._retrying():
            with attempt:
                request = self._client.build_request(
                    "POST", self.url(path), json=dict(payload), headers=self._headers(headers)
                )
                try:
                    response = await self._client.send(request, stream=True)
                except httpx.HTTPError as exc:
                    raise TransportError(self._provider, None, str(exc)) from exc
                if response.is_error:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    await response.aclose()
                    raise TransportError(self._provider, response.status_code, body[:_MAX_ERROR_BODY])
                return response
        raise AssertionError("unreachable")  # pragma: no cover - tenacity reraises

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json_payload: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(
                method,
                self.url(path),
                json=dict(json_payload) if json_payload is not None else None,
                headers=self._headers(headers),
            )
        except httpx.HTTPError as exc:
            raise TransportError(self._provider, None, str(exc)) from exc
        if response.is_error:
            raise TransportError(self._provider, response.status_code, response.text[:_MAX_ERROR_BODY])
        return response

    def _decode_json(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(self._provider, response.status_code, "invalid JSON response body") from exc

    def _headers(self, extra: Mapping[str, str] | None) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._settings.default_headers:
            headers.update(self._settings.default_headers)
        if extra:
            headers.update(extra)
        return headers

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception(_is_retryable),
        )

    def _log_payload(self, path: str, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("%s request to %s (unserializable): %s", self._provider, path, payload)
        else:
            LOGGER.debug("%s request to %s:\n%s", self._provider, path, serialized)


__all__ = ["ClientSettings", "ProviderHttpClient"]
