"""Data models for sessions, messages and message parts."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Union

from chat_orchestrator.core.types import Role, TextState, ToolState


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class TextPart:
    text: str
    state: TextState = TextState.DONE

    def to_dict(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text, "state": self.state.value}


@dataclass(frozen=True, slots=True)
class ToolInvocationPart:
    tool_name: str
    call_id: str
    input: dict[str, Any] = field(default_factory=dict)
    output: Any = None
    state: ToolState = ToolState.PENDING
    error_text: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": "tool-invocation",
            "toolName": self.tool_name,
            "toolCallId": self.call_id,
            "input": self.input,
            "state": self.state.value,
        }
        if self.output is not None:
            data["output"] = self.output
        if self.error_text is not None:
            data["errorText"] = self.error_text
        return data


@dataclass(frozen=True, slots=True)
class FilePart:
    media_type: str
    url: str  # remote URL or data: URI
    filename: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data = {"type": "file", "mediaType": self.media_type, "url": self.url}
        if self.filename:
            data["filename"] = self.filename
        return data


Part = Union[TextPart, ToolInvocationPart, FilePart]


def part_from_dict(data: dict[str, Any]) -> Part | None:
    """Rebuild a stored part. Unknown shapes return None."""
    match data.get("type"):
        case "text":
            return TextPart(
                text=data.get("text", ""),
                state=TextState(data.get("state", TextState.DONE)),
            )
        case "tool-invocation":
            return ToolInvocationPart(
                tool_name=data["toolName"],
                call_id=data["toolCallId"],
                input=data.get("input") or {},
                output=data.get("output"),
                state=ToolState(data.get("state", ToolState.PENDING)),
                error_text=data.get("errorText"),
            )
        case "file":
            return FilePart(
                media_type=data["mediaType"],
                url=data["url"],
                filename=data.get("filename"),
            )
        case _:
            return None


@dataclass(frozen=True, slots=True)
class Message:
    id: str
    role: Role
    parts: tuple[Part, ...] = ()
    created_at: Optional[datetime] = None

    @property
    def text(self) -> str:
        """Concatenated text of all text parts."""
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "parts": [p.to_dict() for p in self.parts],
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True, slots=True)
class Session:
    id: str
    owner_id: str
    messages: tuple[Message, ...] = ()
    version: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def message_ids(self) -> frozenset[str]:
        return frozenset(m.id for m in self.messages)

    @property
    def last_message(self) -> Message | None:
        return self.messages[-1] if self.messages else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "version": self.version,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "messages": [m.to_dict() for m in self.messages],
        }
