"""Provider adapters translating the uniform chat model to backend wire formats."""

from .anthropic_provider import AnthropicAdapter
from .base import ProviderAdapter, StreamParser
from .custom_provider import CustomHTTPAdapter
from .factory import build_providers, reconfigure_providers
from .ollama_provider import OllamaAdapter
from .openai_provider import OpenAIAdapter
from .streaming import LineDecoder, ToolCallAccumulator

__all__ = [
    "AnthropicAdapter",
    "CustomHTTPAdapter",
    "LineDecoder",
    "OllamaAdapter",
    "OpenAIAdapter",
    "ProviderAdapter",
    "StreamParser",
    "ToolCallAccumulator",
    "build_providers",
    "reconfigure_providers",
]
