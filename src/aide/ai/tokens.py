"""Approximate token counting.

Providers do not expose a tokenizer over HTTP, so prompt sizes are estimated
from character length. Exact counts reported in a completed response's usage
block always take precedence over these estimates.
"""

from __future__ import annotations

import logging
import math
from typing import Dict

from .ai_types import TokenCounterProtocol

LOGGER = logging.getLogger(__name__)
_DEFAULT_CHARS_PER_TOKEN = 4


def estimate_tokens(text: str, chars_per_token: int = _DEFAULT_CHARS_PER_TOKEN) -> int:
    """Return ``ceil(len(text) / chars_per_token)``."""

    if not text:
        return 0
    return math.ceil(len(text) / max(1, int(chars_per_token)))


class ApproxCharCounter(TokenCounterProtocol):
    """Deterministic counter that estimates tokens via character length."""

    def __init__(self, *, model_name: str | None = None, chars_per_token: int = _DEFAULT_CHARS_PER_TOKEN) -> None:
        self.model_name = model_name
        self._chars_per_token = max(1, int(chars_per_token))

    def count(self, text: str) -> int:
        return self.estimate(text)

    def estimate(self, text: str) -> int:
        return estimate_tokens(text, self._chars_per_token)


class TokenCounterRegistry:
    """Registry maintaining tokenizer implementations per model."""

    def __init__(self, *, fallback: TokenCounterProtocol | None = None) -> None:
        self._fallback = fallback or ApproxCharCounter()
        self._counters: Dict[str, TokenCounterProtocol] = {}

    def register(self, model_name: str, counter: TokenCounterProtocol) -> None:
        key = self._normalize_key(model_name)
        if not key:
            raise ValueError("model_name is required for token counter registration")
        self._counters[key] = counter

    def unregister(self, model_name: str) -> None:
        self._counters.pop(self._normalize_key(model_name), None)

    def has(self, model_name: str | None) -> bool:
        key = self._normalize_key(model_name)
        return bool(key and key in self._counters)

    def get(self, model_name: str | None = None) -> TokenCounterProtocol:
        key = self._normalize_key(model_name)
        if key and key in self._counters:
            return self._counters[key]
        return self._fallback

    def count(self, model_name: str | None, text: str) -> int:
        counter = self.get(model_name)
        try:
            return counter.count(text)
        except Exception:  # pragma: no cover - defensive guard
            LOGGER.debug("Token counter failed; falling back to estimate", exc_info=True)
            return counter.estimate(text)

    @staticmethod
    def _normalize_key(model_name: str | None) -> str:
        return (model_name or "").strip().lower()


__all__ = ["ApproxCharCounter", "TokenCounterRegistry", "estimate_tokens"]
