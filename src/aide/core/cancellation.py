"""Cooperative cancellation primitives shared by adapters, tools, and the indexer."""

from __future__ import annotations

import logging
from typing import Callable

__all__ = ["CancellationToken", "CancellationTokenSource", "NONE"]

LOGGER = logging.getLogger(__name__)


class CancellationToken:
    """Mutable flag checked at every suspension point.

    Cancellation never interrupts an awaited operation; callers observe the
    flag before issuing network requests, between stream reads, and between
    file reads.
    """

    __slots__ = ("_cancelled", "_callbacks", "_frozen")

    def __init__(self, *, frozen: bool = False) -> None:
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []
        self._frozen = frozen

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._frozen or self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                LOGGER.exception("Cancellation callback %r failed", callback)

    def on_cancel(self, callback: Callable[[], None]) -> None:
        """Invoke *callback* once the token is cancelled (immediately if already cancelled)."""

        if self._cancelled:
            callback()
            return
        if not self._frozen:
            self._callbacks.append(callback)

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self._cancelled})"


class CancellationTokenSource:
    """Owner side of a token; hands out the token and triggers cancellation."""

    def __init__(self) -> None:
        self._token = CancellationToken()

    @property
    def token(self) -> CancellationToken:
        return self._token

    def cancel(self) -> None:
        self._token.cancel()


NONE = CancellationToken(frozen=True)
