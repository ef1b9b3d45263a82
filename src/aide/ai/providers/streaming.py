"""Incremental stream decoding and tool-call reassembly."""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Iterator, List, Optional

from ...chat.message_model import ToolCallContent, new_id
from ..errors import StreamParseError

LOGGER = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data:"
SSE_DONE_SENTINEL = "[DONE]"


class LineDecoder:
    """Byte decoder plus line buffer.

    Bytes are decoded incrementally so multi-byte characters split across
    reads are preserved; complete lines are returned, and a trailing partial
    line is retained until the next :meth:`feed` or :meth:`flush`.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""

    def feed(self, data: bytes) -> List[str]:
        self._buffer += self._decoder.decode(data)
        if "\n" not in self._buffer:
            return []
        *lines, self._buffer = self._buffer.split("\n")
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> List[str]:
        self._buffer += self._decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""
        remainder = remainder.rstrip("\r")
        return [remainder] if remainder else []

    @property
    def pending(self) -> str:
        return self._buffer


async def iter_lines(chunks: AsyncIterator[bytes]) -> AsyncIterator[str]:
    """Yield complete, non-blank lines from an async byte stream."""

    decoder = LineDecoder()
    async for data in chunks:
        for line in decoder.feed(data):
            if line.strip():
                yield line
    for line in decoder.flush():
        if line.strip():
            yield line


def parse_sse_data(line: str) -> Optional[Dict[str, Any]]:
    """Decode the JSON payload of an SSE ``data:`` line.

    Returns ``None`` for non-data lines (``event:``, comments) and for the
    ``[DONE]`` sentinel.

    Raises:
        StreamParseError: when the payload is not a JSON object.
    """

    stripped = line.strip()
    if not stripped.startswith(SSE_DATA_PREFIX):
        return None
    data = stripped[len(SSE_DATA_PREFIX):].strip()
    if not data or data == SSE_DONE_SENTINEL:
        return None
    return parse_json_line(data)


def parse_json_line(data: str) -> Dict[str, Any]:
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as exc:
        raise StreamParseError(f"Malformed stream chunk: {data[:200]!r}") from exc
    if not isinstance(payload, dict):
        raise StreamParseError(f"Unexpected stream chunk type: {type(payload).__name__}")
    return payload


def parse_tool_arguments(raw: str | None) -> Dict[str, Any]:
    """Decode a tool call's JSON-encoded arguments string.

    An empty string is treated as ``{}``.

    Raises:
        StreamParseError: when *raw* is not a JSON object.
    """

    if not raw or not raw.strip():
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise StreamParseError(f"Tool call arguments are not valid JSON: {raw[:200]!r}") from exc
    if not isinstance(value, dict):
        raise StreamParseError(f"Tool call arguments must be a JSON object, got {type(value).__name__}")
    return value


@dataclass(slots=True)
class PendingToolCall:
    index: int
    id: str = ""
    name: str = ""
    arguments: List[str] = field(default_factory=list)

    @property
    def raw_arguments(self) -> str:
        return "".join(self.arguments)


class ToolCallAccumulator:
    """Collect streamed tool-call fragments keyed by call index.

    Fragments may carry a new call's id and name or another slice of its
    arguments string; slices are concatenated in arrival order. Nothing is
    emitted until the provider signals completion through :meth:`finish` or
    :meth:`finish_all`.
    """

    def __init__(self, provider: str) -> None:
        self._provider = provider
        self._pending: Dict[int, PendingToolCall] = {}

    def __bool__(self) -> bool:
        return bool(self._pending)

    def __len__(self) -> int:
        return len(self._pending)

    def start(self, index: int, *, call_id: str | None = None, name: str | None = None) -> None:
        self.add_fragment(index, call_id=call_id, name=name)

    def add_fragment(
        self,
        index: int,
        *,
        call_id: str | None = None,
        name: str | None = None,
        arguments: str | None = None,
    ) -> None:
        pending = self._pending.get(index)
        if pending is None:
            pending = PendingToolCall(index=index)
            self._pending[index] = pending
        if call_id:
            pending.id = call_id
        if name:
            pending.name = name
        if arguments:
            pending.arguments.append(arguments)

    def finish(self, index: int) -> Optional[ToolCallContent]:
        """Emit the call stored under *index*, or ``None`` if it is unknown or malformed."""

        pending = self._pending.pop(index, None)
        if pending is None:
            return None
        return self._build(pending)

    def finish_all(self) -> Iterator[ToolCallContent]:
        """Emit every pending call in index order and clear the map."""

        pending_calls = sorted(self._pending.values(), key=lambda item: item.index)
        self._pending.clear()
        for pending in pending_calls:
            call = self._build(pending)
            if call is not None:
                yield call

    def discard(self) -> None:
        self._pending.clear()

    def _build(self, pending: PendingToolCall) -> Optional[ToolCallContent]:
        if not pending.name:
            LOGGER.warning(
                "%s tool call at index %s finished without a name; dropping it", self._provider, pending.index
            )
            return None
        try:
            arguments = parse_tool_arguments(pending.raw_arguments)
        except StreamParseError as exc:
            LOGGER.error(
                "%s tool call '%s' (index %s) dropped: %s", self._provider, pending.name, pending.index, exc
            )
            return None
        return ToolCallContent(call_id=pending.id or f"call_{new_id()}", name=pending.name, arguments=arguments)


__all__ = [
    "LineDecoder",
    "PendingToolCall",
    "SSE_DONE_SENTINEL",
    "ToolCallAccumulator",
    "iter_lines",
    "parse_json_line",
    "parse_sse_data",
    "parse_tool_arguments",
]
