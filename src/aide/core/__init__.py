"""Core primitives used throughout the package."""

from .cancellation import NONE, CancellationToken, CancellationTokenSource

__all__ = ["CancellationToken", "CancellationTokenSource", "NONE"]
