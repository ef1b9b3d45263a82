"""Workspace collaborators used by the indexer, search engine, and built-in tools.

The indexing and search layers only depend on the :class:`WorkspaceSearch`
protocol; :class:`LocalWorkspace` implements it over local folders.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Protocol, Sequence

from ..core.cancellation import NONE, CancellationToken

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_RESULTS = 10_000


class FileChangeKind(str, Enum):
    ADDED = "added"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass(slots=True, frozen=True)
class FileChange:
    """Notification delivered by an external file watcher."""

    path: Path
    kind: FileChangeKind


@dataclass(slots=True, frozen=True)
class FileStat:
    size: int
    mtime: float


@dataclass(slots=True, frozen=True)
class TextMatch:
    """A single lexical hit; ``line`` is 1-based."""

    path: Path
    line: int
    preview: str
    column: int = 0


class WorkspaceSearch(Protocol):
    """File enumeration, text search, and file access over workspace folders."""

    @property
    def roots(self) -> Sequence[Path]:
        ...

    async def find_files(
        self,
        include: str = "**/*",
        *,
        exclude: Sequence[str] = (),
        max_results: int = DEFAULT_MAX_RESULTS,
        token: CancellationToken = NONE,
    ) -> List[Path]:
        ...

    async def search_text(
        self,
        pattern: str,
        *,
        is_regex: bool = False,
        include: str | None = None,
        exclude: Sequence[str] = (),
        max_results: int = 100,
        token: CancellationToken = NONE,
    ) -> List[TextMatch]:
        ...

    async def stat(self, path: Path) -> FileStat:
        ...

    async def read_text(self, path: Path) -> str:
        ...


def matches_glob(relative_path: str, pattern: str) -> bool:
    """Match a POSIX relative path against a ``**``-style glob.

    A leading ``**/`` also matches paths at the root (``**/dist/**`` excludes
    ``dist/app.js``).
    """

    if fnmatch.fnmatchcase(relative_path, pattern):
        return True
    if pattern.startswith("**/"):
        return fnmatch.fnmatchcase(f"/{relative_path}", pattern) or fnmatch.fnmatchcase(
            relative_path, pattern[3:]
        )
    return False


def is_excluded(relative_path: str, patterns: Iterable[str]) -> bool:
    return any(matches_glob(relative_path, pattern) for pattern in patterns)


class LocalWorkspace:
    """:class:`WorkspaceSearch` over one or more local folders.

    Directory walking and file reads run in worker threads via
    ``asyncio.to_thread`` so the event loop is never blocked.
    """

    def __init__(self, roots: Sequence[Path | str], *, default_exclude: Sequence[str] = ()) -> None:
        self._roots = [Path(root).expanduser().resolve() for root in roots]
        self._default_exclude = tuple(default_exclude)

    @property
    def roots(self) -> Sequence[Path]:
        return list(self._roots)

    def relative(self, path: Path) -> str:
        resolved = Path(path).resolve()
        for root in self._roots:
            try:
                return resolved.relative_to(root).as_posix()
            except ValueError:
                continue
        return resolved.as_posix()

    def resolve(self, path: str | Path) -> Path:
        """Resolve *path* against the first root, refusing to escape the workspace."""

        candidate = Path(path).expanduser()
        if not candidate.is_absolute():
            if not self._roots:
                raise ValueError("Workspace has no root folders")
            candidate = self._roots[0] / candidate
        resolved = candidate.resolve()
        if self._roots and not any(resolved == root or root in resolved.parents for root in self._roots):
            raise ValueError(f"Path is outside the workspace: {path}")
        return resolved

    async def find_files(
        self,
        include: str = "**/*",
        *,
        exclude: Sequence[str] = (),
        max_results: int = DEFAULT_MAX_RESULTS,
        token: CancellationToken = NONE,
    ) -> List[Path]:
        patterns = tuple(exclude) or self._default_exclude
        return await asyncio.to_thread(self._walk, include, patterns, max_results, token)

    async def search_text(
        self,
        pattern: str,
        *,
        is_regex: bool = False,
        include: str | None = None,
        exclude: Sequence[str] = (),
        max_results: int = 100,
        token: CancellationToken = NONE,
    ) -> List[TextMatch]:
        flags = re.IGNORECASE
        regex = re.compile(pattern if is_regex else re.escape(pattern), flags)
        files = await self.find_files(include or "**/*", exclude=exclude, token=token)
        matches: List[TextMatch] = []
        for path in files:
            if token.is_cancelled or len(matches) >= max_results:
                break
            try:
                text = await self.read_text(path)
            except (OSError, UnicodeDecodeError) as exc:
                LOGGER.debug("Skipping unreadable file %s during search: %s", path, exc)
                continue
            for line_number, line in enumerate(text.splitlines(), start=1):
                found = regex.search(line)
                if found is None:
                    continue
                matches.append(TextMatch(path=path, line=line_number, preview=line.strip()[:200], column=found.start()))
                if len(matches) >= max_results:
                    break
        return matches

    async def stat(self, path: Path) -> FileStat:
        result = await asyncio.to_thread(os.stat, path)
        return FileStat(size=result.st_size, mtime=result.st_mtime)

    async def read_text(self, path: Path) -> str:
        return await asyncio.to_thread(Path(path).read_text, encoding="utf-8")

    def _walk(
        self,
        include: str,
        exclude: Sequence[str],
        max_results: int,
        token: CancellationToken,
    ) -> List[Path]:
        found: List[Path] = []
        for root in self._roots:
            for dirpath, dirnames, filenames in os.walk(root):
                if token.is_cancelled:
                    return found
                current = Path(dirpath)
                dirnames[:] = [
                    name
                    for name in sorted(dirnames)
                    if not is_excluded(f"{(current / name).relative_to(root).as_posix()}/", exclude)
                ]
                for name in sorted(filenames):
                    path = current / name
                    relative = path.relative_to(root).as_posix()
                    if is_excluded(relative, exclude) or not _matches_include(relative, include):
                        continue
                    found.append(path)
                    if len(found) >= max_results:
                        return found
        return found


def _matches_include(relative: str, include: Optional[str]) -> bool:
    if not include or include in {"*", "**", "**/*"}:
        return True
    if "/" not in include:
        return fnmatch.fnmatchcase(relative.rsplit("/", 1)[-1], include)
    return matches_glob(relative, include)


__all__ = [
    "DEFAULT_MAX_RESULTS",
    "FileChange",
    "FileChangeKind",
    "FileStat",
    "LocalWorkspace",
    "TextMatch",
    "WorkspaceSearch",
    "is_excluded",
    "matches_glob",
]
