"""Chat agent, message, and attachment data models."""

from __future__ import annotations

import base64
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar, Dict, Literal, Mapping, Optional, Union


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class AgentMode(str, Enum):
    """Conversation modes; each selects a different system prompt."""

    AGENT = "agent"
    PLAN = "plan"
    DEBUG = "debug"
    ASK = "ask"


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


# Separates text parts when a message is flattened to a single string.
TEXT_PART_SEPARATOR = "\n\n"

AttachmentKind = Literal["file", "folder", "selection", "terminal", "image", "web", "codebase", "symbol"]


@dataclass(slots=True)
class TextContent:
    text: str
    type: ClassVar[str] = "text"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "text": self.text}


@dataclass(slots=True)
class ImageContent:
    data: bytes
    mime_type: str = "image/png"
    type: ClassVar[str] = "image"

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "data": self.to_base64(), "mime_type": self.mime_type}


@dataclass(slots=True)
class ToolCallContent:
    call_id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    type: ClassVar[str] = "tool_call"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "call_id": self.call_id,
            "name": self.name,
            "arguments": dict(self.arguments),
        }


@dataclass(slots=True)
class ToolResultContent:
    call_id: str
    result: Any
    is_error: bool = False
    type: ClassVar[str] = "tool_result"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "call_id": self.call_id,
            "result": self.result,
            "is_error": self.is_error,
        }


MessageContent = Union[TextContent, ImageContent, ToolCallContent, ToolResultContent]


def content_from_dict(payload: Mapping[str, Any]) -> MessageContent:
    kind = payload.get("type")
    if kind == TextContent.type:
        return TextContent(text=str(payload.get("text") or ""))
    if kind == ImageContent.type:
        raw = payload.get("data") or ""
        return ImageContent(data=base64.b64decode(raw), mime_type=str(payload.get("mime_type") or "image/png"))
    if kind == ToolCallContent.type:
        return ToolCallContent(
            call_id=str(payload.get("call_id") or ""),
            name=str(payload.get("name") or ""),
            arguments=dict(payload.get("arguments") or {}),
        )
    if kind == ToolResultContent.type:
        return ToolResultContent(
            call_id=str(payload.get("call_id") or ""),
            result=payload.get("result"),
            is_error=bool(payload.get("is_error", False)),
        )
    raise ValueError(f"Unknown message content type: {kind!r}")


@dataclass(slots=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(slots=True)
class Message:
    """A single conversation entry.

    The role is fixed at creation. Only the content list of the most recent
    assistant message is updated in place, while a stream is being folded.
    """

    role: MessageRole
    content: list[MessageContent] = field(default_factory=list)
    id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=_utcnow)
    model: Optional[str] = None
    usage: Optional[TokenUsage] = None

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "role" and hasattr(self, "role"):
            raise AttributeError("Message role cannot change after creation")
        object.__setattr__(self, name, value)

    @classmethod
    def text(cls, role: MessageRole, text: str, **kwargs: Any) -> "Message":
        return cls(role=role, content=[TextContent(text=text)], **kwargs)

    @property
    def text_content(self) -> str:
        return TEXT_PART_SEPARATOR.join(item.text for item in self.content if isinstance(item, TextContent))

    @property
    def tool_calls(self) -> list[ToolCallContent]:
        return [item for item in self.content if isinstance(item, ToolCallContent)]

    @property
    def tool_results(self) -> list[ToolResultContent]:
        return [item for item in self.content if isinstance(item, ToolResultContent)]

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "role": self.role.value,
            "content": [item.to_dict() for item in self.content],
            "timestamp": self.timestamp.isoformat(),
        }
        if self.model:
            payload["model"] = self.model
        if self.usage is not None:
            payload["usage"] = {"input": self.usage.input_tokens, "output": self.usage.output_tokens}
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Message":
        usage_payload = payload.get("usage")
        usage = None
        if isinstance(usage_payload, Mapping):
            usage = TokenUsage(
                input_tokens=int(usage_payload.get("input", 0)),
                output_tokens=int(usage_payload.get("output", 0)),
            )
        return cls(
            role=MessageRole(payload["role"]),
            content=[content_from_dict(item) for item in payload.get("content") or ()],
            id=str(payload.get("id") or new_id()),
            timestamp=_parse_datetime(payload.get("timestamp")),
            model=payload.get("model"),
            usage=usage,
        )


@dataclass(slots=True)
class LineRange:
    start_line: int
    end_line: int
    start_column: Optional[int] = None
    end_column: Optional[int] = None


@dataclass(slots=True)
class Attachment:
    """Context resolved from a mention or picked explicitly by the user."""

    kind: AttachmentKind
    name: str
    content: str = ""
    preview: str = ""
    source: Optional[Path] = None
    range: Optional[LineRange] = None
    id: str = field(default_factory=new_id)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "kind": self.kind,
            "name": self.name,
            "content": self.content,
            "preview": self.preview,
        }
        if self.source is not None:
            payload["source"] = str(self.source)
        if self.range is not None:
            payload["range"] = {
                "start_line": self.range.start_line,
                "end_line": self.range.end_line,
                "start_column": self.range.start_column,
                "end_column": self.range.end_column,
            }
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Attachment":
        range_payload = payload.get("range")
        line_range = LineRange(**range_payload) if isinstance(range_payload, Mapping) else None
        source = payload.get("source")
        return cls(
            kind=payload.get("kind", "file"),
            name=str(payload.get("name") or ""),
            content=str(payload.get("content") or ""),
            preview=str(payload.get("preview") or ""),
            source=Path(source) if source else None,
            range=line_range,
            id=str(payload.get("id") or new_id()),
        )


@dataclass(slots=True)
class Agent:
    """A named conversation owned by the chat orchestrator."""

    name: str
    mode: AgentMode = AgentMode.AGENT
    model: str = ""
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=_utcnow)
    last_active_at: datetime = field(default_factory=_utcnow)
    messages: list[Message] = field(default_factory=list)
    attachments: list[Attachment] = field(default_factory=list)

    def touch(self) -> None:
        self.last_active_at = _utcnow()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "mode": self.mode.value,
            "model": self.model,
            "created_at": self.created_at.isoformat(),
            "last_active_at": self.last_active_at.isoformat(),
            "messages": [message.to_dict() for message in self.messages],
            "attachments": [attachment.to_dict() for attachment in self.attachments],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Agent":
        return cls(
            id=str(payload["id"]),
            name=str(payload.get("name") or ""),
            mode=AgentMode(payload.get("mode") or AgentMode.AGENT.value),
            model=str(payload.get("model") or ""),
            created_at=_parse_datetime(payload.get("created_at")),
            last_active_at=_parse_datetime(payload.get("last_active_at")),
            messages=[Message.from_dict(item) for item in payload.get("messages") or ()],
            attachments=[Attachment.from_dict(item) for item in payload.get("attachments") or ()],
        )


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    return _utcnow()


__all__ = [
    "TEXT_PART_SEPARATOR",
    "Agent",
    "AgentMode",
    "Attachment",
    "AttachmentKind",
    "ImageContent",
    "LineRange",
    "Message",
    "MessageContent",
    "MessageRole",
    "TextContent",
    "TokenUsage",
    "ToolCallContent",
    "ToolResultContent",
    "content_from_dict",
    "new_id",
]
