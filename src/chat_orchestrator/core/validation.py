"""Normalization and validation of inbound chat turns."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from chat_orchestrator.core.ids import is_uuid7
from chat_orchestrator.core.types import Role, TextState, ToolState
from chat_orchestrator.errors import (
    InvalidMessageError,
    InvalidSessionIdError,
    LastMessageNotUserError,
    MissingFieldsError,
    NoMessagesError,
)
from chat_orchestrator.storage.models import FilePart, Message, Part, TextPart, ToolInvocationPart

# AI SDK tool part states mapped onto ours
_TOOL_STATES = {
    "input-streaming": ToolState.PENDING,
    "input-available": ToolState.PENDING,
    "output-available": ToolState.DONE,
    "output-error": ToolState.ERROR,
    "pending": ToolState.PENDING,
    "done": ToolState.DONE,
    "error": ToolState.ERROR,
}


@dataclass(frozen=True, slots=True)
class Turn:
    """A validated inbound chat turn."""

    session_id: str
    trigger: str
    messages: tuple[Message, ...]

    @property
    def last_message(self) -> Message:
        return self.messages[-1]


def validate_turn(raw: Any) -> Turn:
    """Validate a raw ``{id, trigger, messages}`` payload and normalize it.

    Pure function: raises a ``ValidationError`` subclass on bad input.
    """
    if not isinstance(raw, dict):
        raise MissingFieldsError("Request body must be an object with id and trigger")

    session_id = raw.get("id")
    trigger = raw.get("trigger")
    if not session_id or not trigger:
        raise MissingFieldsError("id and trigger are required")

    if not is_uuid7(session_id):
        raise InvalidSessionIdError("id must be a UUID version 7")

    raw_messages = raw.get("messages") or []
    if not isinstance(raw_messages, list):
        raise InvalidMessageError("messages must be a list")

    messages = tuple(_normalize_message(m, i) for i, m in enumerate(raw_messages))
    if not messages:
        raise NoMessagesError("No messages provided")

    seen: set[str] = set()
    for index, message in enumerate(messages):
        if message.id in seen:
            raise InvalidMessageError(f"Message {index} repeats id {message.id!r}")
        seen.add(message.id)

    if messages[-1].role is not Role.USER:
        raise LastMessageNotUserError("Last message must be from the user")

    return Turn(session_id=session_id, trigger=str(trigger), messages=messages)


def _normalize_message(raw: Any, index: int) -> Message:
    if not isinstance(raw, dict):
        raise InvalidMessageError(f"Message {index} must be an object")

    message_id = raw.get("id")
    if not message_id or not isinstance(message_id, str):
        raise InvalidMessageError(f"Message {index} is missing an id")

    try:
        role = Role(raw.get("role"))
    except ValueError:
        raise InvalidMessageError(
            f"Message {index} has an unknown role; expected user, assistant or system"
        ) from None

    raw_parts = raw.get("parts")
    if isinstance(raw_parts, list):
        parts = tuple(p for p in (normalize_part(rp) for rp in raw_parts) if p is not None)
    elif isinstance(raw.get("content"), str) and raw["content"]:
        # Legacy shape: plain content string instead of parts
        parts = (TextPart(text=raw["content"]),)
    else:
        parts = ()

    return Message(id=message_id, role=role, parts=parts)


def normalize_part(raw: Any) -> Part | None:
    """Map one client part onto the canonical union; unknown shapes give None."""
    if not isinstance(raw, dict):
        return None

    part_type = raw.get("type")
    if not isinstance(part_type, str):
        return None

    if part_type == "text":
        text = raw.get("text")
        if not isinstance(text, str):
            return None
        state = TextState.STREAMING if raw.get("state") == "streaming" else TextState.DONE
        return TextPart(text=text, state=state)

    if part_type == "file":
        media_type = raw.get("mediaType")
        url = raw.get("url")
        if not media_type or not url:
            return None
        return FilePart(media_type=media_type, url=url, filename=raw.get("filename"))

    if part_type == "tool-invocation" or part_type.startswith("tool-"):
        tool_name = raw.get("toolName") or part_type.removeprefix("tool-")
        call_id = raw.get("toolCallId")
        if not tool_name or tool_name == "invocation" or not call_id:
            return None
        tool_input = raw.get("input")
        return ToolInvocationPart(
            tool_name=tool_name,
            call_id=call_id,
            input=tool_input if isinstance(tool_input, dict) else {},
            output=raw.get("output"),
            state=_TOOL_STATES.get(raw.get("state", ""), ToolState.PENDING),
            error_text=raw.get("errorText"),
        )

    return None
