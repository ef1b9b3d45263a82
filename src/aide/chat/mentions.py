"""``@type:query`` mention parsing for chat input."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import List

_MENTION_PATTERN = re.compile(r"@(\w+)(?::(\S+))?")


class ContextType(str, Enum):
    FILE = "file"
    FOLDER = "folder"
    SELECTION = "selection"
    SYMBOL = "symbol"
    CODEBASE = "codebase"
    WEB = "web"
    TERMINAL = "terminal"
    GIT = "git"
    PROBLEMS = "problems"
    DOCS = "docs"

    @classmethod
    def parse(cls, value: str) -> "ContextType | None":
        try:
            return cls(value.lower())
        except ValueError:
            return None


@dataclass(slots=True, frozen=True)
class ContextMention:
    """A recognised mention; ``start``/``end`` are character offsets into the text."""

    type: ContextType
    query: str
    start: int
    end: int


def parse_mentions(text: str) -> List[ContextMention]:
    """Extract mentions such as ``@file:app.py`` or ``@codebase``.

    Mentions whose type is not a :class:`ContextType` (``@someone``) are ignored.
    """

    mentions: List[ContextMention] = []
    for match in _MENTION_PATTERN.finditer(text or ""):
        context_type = ContextType.parse(match.group(1))
        if context_type is None:
            continue
        mentions.append(
            ContextMention(
                type=context_type,
                query=match.group(2) or "",
                start=match.start(),
                end=match.end(),
            )
        )
    return mentions


def strip_mentions(text: str, mentions: List[ContextMention]) -> str:
    """Remove *mentions* from *text*, collapsing the whitespace they leave behind."""

    pieces: List[str] = []
    cursor = 0
    for mention in sorted(mentions, key=lambda item: item.start):
        pieces.append(text[cursor : mention.start])
        cursor = mention.end
    pieces.append(text[cursor:])
    return re.sub(r"[ \t]{2,}", " ", "".join(pieces)).strip()


__all__ = ["ContextMention", "ContextType", "parse_mentions", "strip_mentions"]
