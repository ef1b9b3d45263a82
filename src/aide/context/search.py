"""Semantic, lexical, and symbol search over the workspace."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Literal, Sequence

from ..ai.memory.embeddings import cosine_similarity
from ..core.cancellation import NONE, CancellationToken
from .indexer import ContextIndexer, EmbeddingSource
from .workspace import WorkspaceSearch

LOGGER = logging.getLogger(__name__)

MatchType = Literal["semantic", "lexical"]

SYMBOL_KEYWORDS = ("class", "function", "def", "const", "let", "var", "interface", "type", "enum")


@dataclass(slots=True)
class SearchResult:
    path: Path
    content: str
    score: float
    match_type: MatchType
    line: int | None = None
    column: int | None = None

    def to_dict(self) -> dict:
        payload: dict = {
            "path": str(self.path),
            "content": self.content,
            "score": self.score,
            "match_type": self.match_type,
        }
        if self.line is not None:
            payload["line"] = self.line
        return payload


def symbol_pattern(query: str) -> str:
    """Regex matching a declaration keyword followed by *query*."""

    keywords = "|".join(SYMBOL_KEYWORDS)
    return rf"\b({keywords})\s+{re.escape(query)}"


class SearchEngine:
    """Ranks indexed files by embedding similarity, falling back to text search.

    Symbol search is a keyword-pattern approximation over lexical search,
    not a real symbol index.
    """

    def __init__(
        self,
        workspace: WorkspaceSearch,
        indexer: ContextIndexer,
        *,
        embeddings: EmbeddingSource | None = None,
        exclude: Sequence[str] = (),
    ) -> None:
        self._workspace = workspace
        self._indexer = indexer
        self._embeddings = embeddings or (lambda: None)
        self._exclude = tuple(exclude)

    async def semantic_search(
        self, query: str, limit: int = 10, token: CancellationToken = NONE
    ) -> List[SearchResult]:
        provider = self._embeddings()
        if provider is None:
            return await self.lexical_search(query, limit, token)
        try:
            query_vector = await provider.embed_query(query)
        except Exception as exc:
            LOGGER.error("Semantic search failed via %s, using lexical search: %s", provider.name, exc)
            return await self.lexical_search(query, limit, token)

        results: List[SearchResult] = []
        for entry in self._indexer.entries():
            if token.is_cancelled:
                break
            if entry.embedding is None:
                continue
            score = cosine_similarity(query_vector, entry.embedding)
            results.append(SearchResult(path=entry.path, content=entry.content, score=score, match_type="semantic"))
        results.sort(key=lambda result: result.score, reverse=True)
        return results[: max(0, limit)]

    async def lexical_search(
        self,
        query: str,
        limit: int = 10,
        token: CancellationToken = NONE,
        *,
        is_regex: bool = False,
    ) -> List[SearchResult]:
        if not self._workspace.roots or not query:
            return []
        try:
            matches = await self._workspace.search_text(
                query,
                is_regex=is_regex,
                exclude=self._exclude,
                max_results=limit,
                token=token,
            )
        except (OSError, re.error) as exc:
            LOGGER.error("Lexical search for %r failed: %s", query, exc)
            return []
        return [
            SearchResult(
                path=match.path,
                content=match.preview,
                score=1.0,
                match_type="lexical",
                line=match.line,
                column=match.column,
            )
            for match in matches[:limit]
        ]

    async def symbol_search(
        self, query: str, limit: int = 10, token: CancellationToken = NONE
    ) -> List[SearchResult]:
        if not query:
            return []
        return await self.lexical_search(symbol_pattern(query), limit, token, is_regex=True)


__all__ = ["MatchType", "SYMBOL_KEYWORDS", "SearchEngine", "SearchResult", "symbol_pattern"]
