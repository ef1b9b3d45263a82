"""Aide: multi-provider chat agents with workspace tools and codebase context."""

__version__ = "0.1.0"
