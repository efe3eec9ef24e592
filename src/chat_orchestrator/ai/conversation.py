"""Convert persisted session messages to Anthropic API message format."""

from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Sequence
from typing import Any
from urllib.parse import unquote_to_bytes

from chat_orchestrator.core.types import Role, ToolState
from chat_orchestrator.storage.models import FilePart, Message, TextPart, ToolInvocationPart

_TEXT_PREFIXES = ("text/",)
_TEXT_TYPES = frozenset({
    "application/json", "application/xml", "application/javascript",
    "application/x-yaml", "application/sql", "application/x-sh",
    "application/xhtml+xml", "application/csv",
})


def _is_text_media_type(media_type: str) -> bool:
    """Return True if the media type represents a human-readable text format."""
    return media_type.startswith(_TEXT_PREFIXES) or media_type in _TEXT_TYPES


def _decode_data_uri(url: str) -> bytes | None:
    """Payload of a ``data:`` URI, or None if *url* is not a usable one."""
    if not url.startswith("data:") or "," not in url:
        return None
    header, payload = url[5:].split(",", 1)
    try:
        if header.endswith(";base64"):
            return base64.b64decode(payload, validate=True)
        return unquote_to_bytes(payload)
    except (binascii.Error, ValueError):
        return None


def _file_block(part: FilePart) -> dict[str, Any]:
    name = part.filename or "attachment"
    data = _decode_data_uri(part.url)

    if part.media_type.startswith("image/"):
        if data is not None:
            return {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": part.media_type,
                    "data": base64.b64encode(data).decode(),
                },
            }
        if part.url.startswith(("http://", "https://")):
            return {"type": "image", "source": {"type": "url", "url": part.url}}

    if data is not None and _is_text_media_type(part.media_type):
        return {"type": "text", "text": f"[File: {name}]\n{data.decode('utf-8', errors='replace')}"}

    if data is not None:
        size_kb = len(data) / 1024
        return {
            "type": "text",
            "text": f"[File: {name} ({part.media_type}, {size_kb:.1f} KB) - binary file, content not shown]",
        }
    return {"type": "text", "text": f"[File: {name} ({part.media_type}) at {part.url}]"}


def _tool_result_content(part: ToolInvocationPart) -> tuple[str, bool]:
    match part.state:
        case ToolState.DONE:
            output = part.output
            return (output if isinstance(output, str) else json.dumps(output, default=str)), False
        case ToolState.ERROR:
            return part.error_text or "Tool call failed", True
        case _:
            return "Tool call did not complete", True


def _message_turns(message: Message) -> list[dict[str, Any]]:
    """API turns for one stored message (an assistant reply with tool calls expands to three)."""
    if message.role == Role.USER:
        blocks: list[dict[str, Any]] = []
        for part in message.parts:
            if isinstance(part, TextPart) and part.text:
                blocks.append({"type": "text", "text": part.text})
            elif isinstance(part, FilePart):
                blocks.append(_file_block(part))
        return [{"role": "user", "content": blocks}] if blocks else []

    if message.role != Role.ASSISTANT:
        return []

    tool_parts = [p for p in message.parts if isinstance(p, ToolInvocationPart)]
    text = message.text
    turns: list[dict[str, Any]] = []

    if tool_parts:
        turns.append({
            "role": "assistant",
            "content": [
                {"type": "tool_use", "id": p.call_id, "name": p.tool_name, "input": p.input}
                for p in tool_parts
            ],
        })
        results = []
        for p in tool_parts:
            content, is_error = _tool_result_content(p)
            block: dict[str, Any] = {"type": "tool_result", "tool_use_id": p.call_id, "content": content}
            if is_error:
                block["is_error"] = True
            results.append(block)
        turns.append({"role": "user", "content": results})

    if text:
        turns.append({"role": "assistant", "content": [{"type": "text", "text": text}]})
    return turns


def build_messages(history: Sequence[Message]) -> list[dict[str, Any]]:
    """Convert a session's messages into Anthropic API messages format.

    System messages are not sent (the persona prompt is the system prompt).
    Anything after the last user message, such as an interrupted reply that
    is being regenerated, is left out. Messages without usable content are
    skipped, consecutive turns of the same role are merged, and the result
    always starts with a user turn.
    """
    messages: list[dict[str, Any]] = []

    last_user = max((i for i, m in enumerate(history) if m.role == Role.USER), default=-1)
    for record in history[: last_user + 1]:
        for turn in _message_turns(record):
            if not messages and turn["role"] != "user":
                continue
            if messages and messages[-1]["role"] == turn["role"]:
                messages[-1]["content"].extend(turn["content"])
            else:
                messages.append(turn)

    return messages
