"""Configuration-driven construction of the closed set of provider adapters."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Sequence

import httpx

from ...services.settings import ProviderSettings, Settings
from ..client import ClientSettings
from .anthropic_provider import AnthropicAdapter
from .anthropic_provider import DEFAULT_BASE_URL as ANTHROPIC_BASE_URL
from .base import ProviderAdapter
from .custom_provider import CustomHTTPAdapter
from .ollama_provider import DEFAULT_BASE_URL as OLLAMA_BASE_URL
from .ollama_provider import OllamaAdapter
from .openai_provider import DEFAULT_BASE_URL as OPENAI_BASE_URL
from .openai_provider import OpenAIAdapter

LOGGER = logging.getLogger(__name__)

_BUILTIN_ADAPTERS: tuple[tuple[str, type[ProviderAdapter], str], ...] = (
    ("openai", OpenAIAdapter, OPENAI_BASE_URL),
    ("anthropic", AnthropicAdapter, ANTHROPIC_BASE_URL),
    ("ollama", OllamaAdapter, OLLAMA_BASE_URL),
)


def client_settings_for(settings: Settings, provider: ProviderSettings, default_base_url: str) -> ClientSettings:
    return ClientSettings(
        base_url=provider.base_url or default_base_url,
        api_key=provider.api_key or None,
        request_timeout=settings.request_timeout,
        max_retries=settings.max_retries,
        retry_min_seconds=settings.retry_min_seconds,
        retry_max_seconds=settings.retry_max_seconds,
        default_headers=dict(provider.extra_headers) or None,
        debug_logging=settings.debug_logging,
    )


def build_providers(
    settings: Settings,
    *,
    http_client: httpx.AsyncClient | None = None,
    on_models_changed: Callable[[str], None] | None = None,
    **adapter_kwargs: Any,
) -> List[ProviderAdapter]:
    """Instantiate every enabled adapter described by *settings*.

    Args:
        settings: Effective application settings.
        http_client: Optional shared ``httpx.AsyncClient`` (tests pass one
            backed by ``httpx.MockTransport``).
        on_models_changed: Callback fired with the provider id whenever an
            adapter is reconfigured.

    Returns:
        Adapters in a stable order: OpenAI, Anthropic, Ollama, then custom
        endpoints in configuration order.
    """

    common: Dict[str, Any] = {
        "http_client": http_client,
        "model_cache_ttl": settings.model_cache_ttl,
        "on_models_changed": on_models_changed,
        **adapter_kwargs,
    }
    adapters: List[ProviderAdapter] = []
    for attr, adapter_cls, default_url in _BUILTIN_ADAPTERS:
        provider_settings: ProviderSettings = getattr(settings, attr)
        if not provider_settings.enabled:
            LOGGER.debug("Provider %s disabled by configuration", attr)
            continue
        adapters.append(adapter_cls(client_settings_for(settings, provider_settings, default_url), **common))

    seen = {adapter.id for adapter in adapters}
    for custom in settings.custom:
        if not custom.enabled:
            continue
        if not custom.id or custom.id in seen:
            LOGGER.warning("Skipping custom provider with missing or duplicate id %r", custom.id)
            continue
        if not custom.base_url:
            LOGGER.warning("Skipping custom provider %s without a base_url", custom.id)
            continue
        adapters.append(
            CustomHTTPAdapter(
                client_settings_for(settings, custom, custom.base_url),
                provider_id=custom.id,
                display_name=custom.name or None,
                models=custom.models,
                supports_tools=custom.supports_tools,
                context_length=custom.context_length,
                **common,
            )
        )
        seen.add(custom.id)

    LOGGER.info("Configured providers: %s", ", ".join(adapter.id for adapter in adapters) or "<none>")
    return adapters


def reconfigure_providers(adapters: Sequence[ProviderAdapter], settings: Settings) -> None:
    """Push new connection settings into existing adapters, invalidating their model caches."""

    defaults = {attr: url for attr, _, url in _BUILTIN_ADAPTERS}
    custom_by_id = {custom.id: custom for custom in settings.custom}
    for adapter in adapters:
        if adapter.id in defaults:
            provider_settings = getattr(settings, adapter.id)
            adapter.configure(client_settings_for(settings, provider_settings, defaults[adapter.id]))
        elif adapter.id in custom_by_id:
            custom = custom_by_id[adapter.id]
            adapter.configure(client_settings_for(settings, custom, custom.base_url))


__all__ = ["build_providers", "client_settings_for", "reconfigure_providers"]
