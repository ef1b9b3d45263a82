"""Generic adapter for any server speaking the OpenAI chat-completions format."""

from __future__ import annotations

from typing import Any, Sequence

from ..ai_types import ModelCapabilities, ModelInfo
from ..client import ClientSettings
from .openai_provider import OpenAIAdapter


class CustomHTTPAdapter(OpenAIAdapter):
    """OpenAI-compatible adapter whose identity and catalogue come from configuration.

    The API key is optional; local gateways (vLLM, LM Studio, LiteLLM) often
    run without one.
    """

    requires_api_key = False

    def __init__(
        self,
        settings: ClientSettings,
        *,
        provider_id: str,
        display_name: str | None = None,
        models: Sequence[str] = (),
        supports_tools: bool = True,
        context_length: int = 8192,
        **kwargs: Any,
    ) -> None:
        if not provider_id or "/" in provider_id or ":" in provider_id:
            raise ValueError(f"Invalid custom provider id: {provider_id!r}")
        self.id = provider_id
        self.name = display_name or provider_id
        self._model_names = tuple(models)
        self._supports_tools = supports_tools
        self._context_length = context_length
        super().__init__(settings, **kwargs)

    async def _fetch_models(self) -> Sequence[ModelInfo]:
        return [
            ModelInfo(
                id=f"{self.id}/{name}",
                name=name,
                provider=self.id,
                context_length=self._context_length,
                capabilities=ModelCapabilities(vision=False, tools=self._supports_tools, streaming=True),
            )
            for name in self._model_names
        ]

    def supports_tools(self, model_name: str) -> bool:
        return self._supports_tools


__all__ = ["CustomHTTPAdapter"]
