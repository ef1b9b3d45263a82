"""Incremental content index over the workspace."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterator, Optional

from ..ai.memory.embeddings import EmbeddingProvider, Vector
from ..core.cancellation import NONE, CancellationToken
from ..events import EventBus, IndexChanged
from ..services.settings import IndexingSettings
from .workspace import FileChange, FileChangeKind, WorkspaceSearch, is_excluded

LOGGER = logging.getLogger(__name__)

#: Characters of file text sent to the embedding provider.
EMBEDDING_INPUT_CHARS = 24_000
_PROGRESS_INTERVAL = 100

EmbeddingSource = Callable[[], Optional[EmbeddingProvider]]


@dataclass(slots=True)
class IndexedFile:
    """One index entry; replaced wholesale whenever the file is re-indexed."""

    path: Path
    content: str
    embedding: Vector | None
    mtime: float


@dataclass(slots=True, frozen=True)
class IndexStatus:
    indexed: int
    total: int
    is_indexing: bool


def canonical_key(path: Path | str) -> str:
    return Path(path).expanduser().resolve().as_posix()


class ContextIndexer:
    """Maintains ``IndexedFile`` entries keyed by canonical path.

    Args:
        workspace: File enumeration and access collaborator.
        settings: Exclude globs, the per-file size ceiling, and the file cap.
        embeddings: Returns the active embedding provider, if any. Looked up
            on every file so providers registered later are picked up.
        event_bus: Receives :class:`IndexChanged` progress snapshots.
    """

    def __init__(
        self,
        workspace: WorkspaceSearch,
        *,
        settings: IndexingSettings | None = None,
        embeddings: EmbeddingSource | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._workspace = workspace
        self._settings = settings or IndexingSettings()
        self._embeddings = embeddings or (lambda: None)
        self._bus = event_bus
        self._index: Dict[str, IndexedFile] = {}
        self._is_indexing = False
        self._pass_count = 0
        self._total_files = 0

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def status(self) -> IndexStatus:
        return IndexStatus(indexed=len(self._index), total=self._total_files, is_indexing=self._is_indexing)

    def get(self, path: Path | str) -> IndexedFile | None:
        return self._index.get(canonical_key(path))

    def entries(self) -> Iterator[IndexedFile]:
        return iter(list(self._index.values()))

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, path: object) -> bool:
        return isinstance(path, (str, Path)) and canonical_key(path) in self._index

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    async def index_workspace(self, token: CancellationToken = NONE) -> IndexStatus:
        """Index every non-excluded workspace file.

        A second call while a pass is running logs a warning and returns the
        current status without starting another pass.
        """

        if self._is_indexing:
            LOGGER.warning("Workspace indexing already in progress")
            return self.status()

        self._is_indexing = True
        self._pass_count = 0
        self._total_files = 0
        self._notify()
        try:
            files = await self._workspace.find_files(
                exclude=self._settings.exclude_patterns,
                max_results=self._settings.max_files,
                token=token,
            )
            self._total_files = len(files)
            for path in files:
                if token.is_cancelled:
                    LOGGER.info("Workspace indexing cancelled after %s files", self._pass_count)
                    break
                await self.index_file(path, token)
            LOGGER.info("Indexed %s of %s files", self._pass_count, self._total_files)
        finally:
            self._is_indexing = False
            self._notify()
        return self.status()

    async def index_file(self, path: Path | str, token: CancellationToken = NONE) -> bool:
        """Read, optionally embed, and upsert one file.

        Returns:
            ``True`` when the entry was stored. Oversized, unreadable, or
            binary files are skipped and return ``False``.
        """

        if token.is_cancelled:
            return False
        location = Path(path)
        try:
            stat = await self._workspace.stat(location)
            if stat.size > self._settings.max_file_bytes:
                LOGGER.debug("Skipping %s (%s bytes exceeds limit)", location, stat.size)
                return False
            text = await self._workspace.read_text(location)
        except (OSError, UnicodeDecodeError) as exc:
            LOGGER.debug("Skipping unreadable file %s: %s", location, exc)
            return False

        embedding = await self._embed(location, text)
        key = canonical_key(location)
        self._index[key] = IndexedFile(path=Path(key), content=text, embedding=embedding, mtime=stat.mtime)
        if not self._is_indexing:
            self._notify()
        else:
            self._pass_count += 1
            if self._pass_count % _PROGRESS_INTERVAL == 0:
                self._notify()
        return True

    def remove_from_index(self, path: Path | str) -> bool:
        removed = self._index.pop(canonical_key(path), None) is not None
        if removed:
            self._notify()
        return removed

    async def handle_file_change(self, change: FileChange) -> None:
        """Apply a watcher notification without a full re-scan."""

        if change.kind is FileChangeKind.DELETED:
            self.remove_from_index(change.path)
            return
        relative = self._relative(change.path)
        if relative is not None and is_excluded(relative, self._settings.exclude_patterns):
            return
        await self.index_file(change.path)

    def clear(self) -> None:
        self._index.clear()
        self._total_files = 0
        self._notify()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _embed(self, path: Path, text: str) -> Vector | None:
        provider = self._embeddings()
        if provider is None or not text.strip():
            return None
        try:
            vectors = await provider.embed_documents([text[:EMBEDDING_INPUT_CHARS]])
        except Exception as exc:
            LOGGER.warning("Embedding failed for %s via %s: %s", path, provider.name, exc)
            return None
        if not vectors:
            return None
        return tuple(float(component) for component in vectors[0])

    def _relative(self, path: Path) -> str | None:
        resolved = Path(path).resolve()
        for root in self._workspace.roots:
            try:
                return resolved.relative_to(root).as_posix()
            except ValueError:
                continue
        return None

    def _notify(self) -> None:
        if self._bus is not None:
            status = self.status()
            self._bus.publish(IndexChanged(status.indexed, status.total, status.is_indexing))


__all__ = ["EMBEDDING_INPUT_CHARS", "ContextIndexer", "IndexStatus", "IndexedFile", "canonical_key"]
