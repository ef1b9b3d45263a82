"""Mention resolution, completion lookup, and prompt context assembly."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from ..ai.errors import DuplicateRegistrationError
from ..ai.tokens import estimate_tokens
from ..chat.mentions import ContextMention, ContextType, parse_mentions
from ..chat.message_model import Attachment, AttachmentKind, LineRange
from ..core.cancellation import NONE, CancellationToken
from .search import SearchEngine
from .workspace import WorkspaceSearch

LOGGER = logging.getLogger(__name__)

_CHARS_PER_TOKEN = 4
_PREVIEW_CHARS = 200
_SYMBOL_CONTEXT_LINES = 40

_ATTACHMENT_KINDS: Dict[ContextType, AttachmentKind] = {
    ContextType.FILE: "file",
    ContextType.FOLDER: "folder",
    ContextType.SELECTION: "selection",
    ContextType.TERMINAL: "terminal",
    ContextType.WEB: "web",
    ContextType.CODEBASE: "codebase",
    ContextType.SYMBOL: "symbol",
}


@dataclass(slots=True)
class ContextResult:
    """A completion candidate offered by a :class:`ContextProvider`."""

    type: ContextType
    name: str
    content: str = ""
    preview: str = ""
    path: Optional[Path] = None
    score: Optional[float] = None
    line: Optional[int] = None


class ContextProvider(Protocol):
    type: ContextType
    name: str
    description: str

    async def provide_completions(self, query: str, token: CancellationToken) -> List[ContextResult]:
        ...

    async def resolve_context(self, result: ContextResult, token: CancellationToken) -> str:
        ...


def format_attachment(attachment: Attachment, content: str | None = None) -> str:
    body = attachment.content if content is None else content
    if attachment.source is not None:
        header = f"--- {attachment.name} ({attachment.source.as_posix()}) ---"
    else:
        header = f"--- {attachment.name} ---"
    return f"{header}\n{body}"


def build_context(attachments: Sequence[Attachment], max_tokens: int) -> str:
    """Concatenate formatted attachments within a token budget.

    The attachment that would overflow the budget is truncated to the
    remaining allowance (four characters per token) and ends the context.
    """

    parts: List[str] = []
    used = 0
    for attachment in attachments:
        if not attachment.content:
            continue
        cost = estimate_tokens(attachment.content)
        if used + cost > max_tokens:
            remaining = max_tokens - used
            if remaining > 0:
                parts.append(format_attachment(attachment, attachment.content[: remaining * _CHARS_PER_TOKEN]))
            break
        parts.append(format_attachment(attachment))
        used += cost
    return "\n\n".join(parts)


class ContextService:
    """Registry of context providers keyed by :class:`ContextType`."""

    def __init__(
        self,
        workspace: WorkspaceSearch,
        search: SearchEngine,
        *,
        register_builtins: bool = True,
    ) -> None:
        self._workspace = workspace
        self._search = search
        self._providers: Dict[ContextType, ContextProvider] = {}
        if register_builtins:
            for provider in (
                FileContextProvider(workspace),
                FolderContextProvider(workspace),
                CodebaseContextProvider(search),
                SymbolContextProvider(workspace, search),
            ):
                self.register_context_provider(provider)

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    def register_context_provider(self, provider: ContextProvider) -> Callable[[], None]:
        if provider.type in self._providers:
            raise DuplicateRegistrationError(f"Context provider for type '{provider.type.value}' already registered")
        self._providers[provider.type] = provider
        LOGGER.debug("Registered context provider: %s", provider.type.value)

        def _unregister() -> None:
            if self._providers.get(provider.type) is provider:
                del self._providers[provider.type]

        return _unregister

    def get_context_providers(self) -> List[ContextProvider]:
        return list(self._providers.values())

    def get_context_provider(self, context_type: ContextType) -> ContextProvider | None:
        return self._providers.get(context_type)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def parse_mentions(self, text: str) -> List[ContextMention]:
        return parse_mentions(text)

    async def get_completions(
        self, context_type: ContextType, query: str, token: CancellationToken = NONE
    ) -> List[ContextResult]:
        provider = self._providers.get(context_type)
        if provider is None:
            return []
        return await provider.provide_completions(query, token)

    async def resolve_attachments(
        self, mentions: Sequence[ContextMention], token: CancellationToken = NONE
    ) -> List[Attachment]:
        """Resolve each mention to an attachment using its provider's best completion.

        Mentions without a provider or without completions are skipped; a
        provider failure is logged and skips only that mention.
        """

        attachments: List[Attachment] = []
        for mention in mentions:
            if token.is_cancelled:
                break
            provider = self._providers.get(mention.type)
            if provider is None:
                continue
            try:
                results = await provider.provide_completions(mention.query, token)
                if not results:
                    continue
                best = results[0]
                content = await provider.resolve_context(best, token)
            except Exception as exc:
                LOGGER.error("Failed to resolve mention @%s:%s: %s", mention.type.value, mention.query, exc)
                continue
            attachments.append(
                Attachment(
                    kind=_ATTACHMENT_KINDS.get(mention.type, "file"),
                    name=best.name,
                    content=content,
                    preview=best.preview or content[:_PREVIEW_CHARS],
                    source=best.path,
                    range=LineRange(best.line, best.line) if best.line else None,
                )
            )
        return attachments

    async def resolve_text(self, text: str, token: CancellationToken = NONE) -> List[Attachment]:
        return await self.resolve_attachments(parse_mentions(text), token)

    def build_context(self, attachments: Sequence[Attachment], max_tokens: int) -> str:
        return build_context(attachments, max_tokens)


# -----------------------------------------------------------------------------
# Built-in providers
# -----------------------------------------------------------------------------


class FileContextProvider:
    type = ContextType.FILE
    name = "File"
    description = "Reference a file from the workspace"

    def __init__(self, workspace: WorkspaceSearch, *, max_results: int = 20) -> None:
        self._workspace = workspace
        self._max_results = max_results

    async def provide_completions(self, query: str, token: CancellationToken) -> List[ContextResult]:
        include = f"*{query}*" if query else "*"
        files = await self._workspace.find_files(include, max_results=self._max_results, token=token)
        return [ContextResult(type=self.type, name=path.name, preview=path.as_posix(), path=path) for path in files]

    async def resolve_context(self, result: ContextResult, token: CancellationToken) -> str:
        if result.path is None:
            return ""
        try:
            return await self._workspace.read_text(result.path)
        except (OSError, UnicodeDecodeError) as exc:
            LOGGER.warning("Unable to read %s: %s", result.path, exc)
            return ""


class FolderContextProvider:
    """Offers workspace roots; resolves to a listing of the folder's files."""

    type = ContextType.FOLDER
    name = "Folder"
    description = "Reference a folder from the workspace"

    def __init__(self, workspace: WorkspaceSearch, *, max_files: int = 50) -> None:
        self._workspace = workspace
        self._max_files = max_files

    async def provide_completions(self, query: str, token: CancellationToken) -> List[ContextResult]:
        needle = query.lower()
        results: List[ContextResult] = []
        for root in self._workspace.roots:
            if needle and needle not in root.name.lower():
                candidate = root / query
                if candidate.is_dir():
                    results.append(
                        ContextResult(type=self.type, name=candidate.name, preview=candidate.as_posix(), path=candidate)
                    )
                continue
            results.append(ContextResult(type=self.type, name=root.name, preview=root.as_posix(), path=root))
        return results

    async def resolve_context(self, result: ContextResult, token: CancellationToken) -> str:
        if result.path is None:
            return ""
        folder = result.path.resolve()
        files = await self._workspace.find_files(token=token)
        listing = [path.as_posix() for path in files if folder == path.parent or folder in path.parents]
        return "\n".join(listing[: self._max_files])


class CodebaseContextProvider:
    type = ContextType.CODEBASE
    name = "Codebase"
    description = "Search the entire codebase semantically"

    def __init__(self, search: SearchEngine, *, limit: int = 5) -> None:
        self._search = search
        self._limit = limit

    async def provide_completions(self, query: str, token: CancellationToken) -> List[ContextResult]:
        results = await self._search.semantic_search(query, self._limit, token)
        return [
            ContextResult(
                type=self.type,
                name=result.path.name,
                content=result.content,
                preview=result.content[:_PREVIEW_CHARS],
                path=result.path,
                score=result.score,
                line=result.line,
            )
            for result in results
        ]

    async def resolve_context(self, result: ContextResult, token: CancellationToken) -> str:
        return result.content


class SymbolContextProvider:
    """Finds declarations by keyword pattern and attaches the surrounding lines."""

    type = ContextType.SYMBOL
    name = "Symbol"
    description = "Reference a class, function, or other declaration"

    def __init__(self, workspace: WorkspaceSearch, search: SearchEngine, *, limit: int = 10) -> None:
        self._workspace = workspace
        self._search = search
        self._limit = limit

    async def provide_completions(self, query: str, token: CancellationToken) -> List[ContextResult]:
        results = await self._search.symbol_search(query, self._limit, token)
        return [
            ContextResult(
                type=self.type,
                name=f"{query} ({result.path.name}:{result.line})",
                content=result.content,
                preview=result.content,
                path=result.path,
                line=result.line,
            )
            for result in results
        ]

    async def resolve_context(self, result: ContextResult, token: CancellationToken) -> str:
        if result.path is None or not result.line:
            return result.content
        try:
            text = await self._workspace.read_text(result.path)
        except (OSError, UnicodeDecodeError) as exc:
            LOGGER.warning("Unable to read %s: %s", result.path, exc)
            return result.content
        lines = text.splitlines()
        start = max(0, result.line - 1)
        return "\n".join(lines[start : start + _SYMBOL_CONTEXT_LINES])


__all__ = [
    "CodebaseContextProvider",
    "ContextProvider",
    "ContextResult",
    "ContextService",
    "FileContextProvider",
    "FolderContextProvider",
    "SymbolContextProvider",
    "build_context",
    "format_attachment",
]
