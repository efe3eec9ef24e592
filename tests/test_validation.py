"""Tests for inbound turn validation and normalization."""

from __future__ import annotations

import uuid

import pytest

from chat_orchestrator.core.ids import new_id
from chat_orchestrator.core.types import Role, TextState, ToolState
from chat_orchestrator.core.validation import normalize_part, validate_turn
from chat_orchestrator.errors import (
    InvalidMessageError,
    InvalidSessionIdError,
    LastMessageNotUserError,
    MissingFieldsError,
    NoMessagesError,
    ValidationError,
)
from chat_orchestrator.storage.models import FilePart, TextPart, ToolInvocationPart
from tests.helpers import assistant_message, make_turn, user_message


class TestRequiredFields:
    """Tests for id / trigger presence and id format."""

    def test_empty_body_is_missing_fields(self):
        """Should reject {} before looking at anything else."""
        with pytest.raises(MissingFieldsError) as exc_info:
            validate_turn({})

        assert exc_info.value.to_dict()["code"] == "missing_fields"
        assert exc_info.value.kind == "validation_error"

    def test_missing_trigger(self):
        """Should reject a body without trigger."""
        with pytest.raises(MissingFieldsError):
            validate_turn({"id": new_id(), "messages": [user_message("hi")]})

    def test_non_object_body(self):
        """Should reject a body that is not a mapping."""
        with pytest.raises(MissingFieldsError):
            validate_turn(["not", "an", "object"])

    def test_rejects_non_v7_session_id(self):
        """Should reject session ids that are not UUID version 7."""
        with pytest.raises(InvalidSessionIdError):
            validate_turn(make_turn(str(uuid.uuid4()), user_message("hi")))

    def test_rejects_garbage_session_id(self):
        """Should reject ids that are not UUIDs at all."""
        with pytest.raises(InvalidSessionIdError):
            validate_turn(make_turn("chat-1", user_message("hi")))


class TestMessages:
    """Tests for message list rules."""

    def test_empty_messages(self):
        """Should reject an empty message list."""
        with pytest.raises(NoMessagesError):
            validate_turn(make_turn(new_id()))

    def test_assistant_last(self):
        """Should reject a turn whose last message is from the assistant."""
        turn = make_turn(new_id(), user_message("hi"), assistant_message("hello"))

        with pytest.raises(LastMessageNotUserError):
            validate_turn(turn)

    def test_message_without_id(self):
        """Should reject a message lacking an id."""
        raw = make_turn(new_id(), {"role": "user", "parts": [{"type": "text", "text": "hi"}]})

        with pytest.raises(InvalidMessageError):
            validate_turn(raw)

    def test_repeated_message_id(self):
        """Two messages sharing an id are a malformed request, not a conflict."""
        raw = make_turn(new_id(), user_message("a", "m1"), user_message("b", "m1"))

        with pytest.raises(InvalidMessageError) as exc_info:
            validate_turn(raw)

        assert exc_info.value.code == "invalid_message"

    def test_unknown_role(self):
        """Should reject roles outside user/assistant/system."""
        raw = make_turn(new_id(), {"id": "m1", "role": "tool", "parts": []})

        with pytest.raises(InvalidMessageError):
            validate_turn(raw)

    def test_all_errors_are_validation_errors(self):
        """Every validation failure shares the ValidationError base."""
        for raw in ({}, make_turn(new_id()), make_turn("x", user_message("hi"))):
            with pytest.raises(ValidationError):
                validate_turn(raw)

    def test_valid_turn_is_normalized(self):
        """Should keep order and produce canonical parts."""
        session_id = new_id()
        first = user_message("What river?", "m1")
        second = assistant_message("The Thames.", "m2")
        third = user_message("And then?", "m3")

        turn = validate_turn(make_turn(session_id, first, second, third))

        assert turn.session_id == session_id
        assert turn.trigger == "submit-message"
        assert [m.id for m in turn.messages] == ["m1", "m2", "m3"]
        assert turn.last_message.role is Role.USER
        assert turn.last_message.parts == (TextPart("And then?"),)

    def test_legacy_content_string(self):
        """A message with only a content string becomes one text part."""
        raw = make_turn(new_id(), {"id": "m1", "role": "user", "content": "hello"})

        turn = validate_turn(raw)

        assert turn.messages[0].parts == (TextPart("hello"),)

    def test_unrecognized_parts_dropped(self):
        """Reasoning and step markers are dropped; nothing left means no parts."""
        raw = make_turn(
            new_id(),
            {"id": "a1", "role": "assistant", "parts": [{"type": "step-start"}, {"type": "reasoning", "text": "hmm"}]},
            user_message("hi"),
        )

        turn = validate_turn(raw)

        assert turn.messages[0].parts == ()


class TestNormalizePart:
    """Tests for the single-part normalizer."""

    def test_streaming_text(self):
        assert normalize_part({"type": "text", "text": "par", "state": "streaming"}) == TextPart(
            "par", TextState.STREAMING
        )

    def test_file_part(self):
        part = normalize_part(
            {"type": "file", "mediaType": "image/png", "url": "data:image/png;base64,AAAA", "filename": "a.png"}
        )

        assert part == FilePart(media_type="image/png", url="data:image/png;base64,AAAA", filename="a.png")

    def test_file_part_without_url(self):
        assert normalize_part({"type": "file", "mediaType": "image/png"}) is None

    def test_sdk_style_tool_part(self):
        """tool-<name> parts carry the tool name in the type."""
        part = normalize_part(
            {
                "type": "tool-readFile",
                "toolCallId": "call-1",
                "state": "output-available",
                "input": {"path": "notes.md"},
                "output": {"success": True},
            }
        )

        assert isinstance(part, ToolInvocationPart)
        assert part.tool_name == "readFile"
        assert part.state is ToolState.DONE
        assert part.output == {"success": True}

    def test_tool_error_state(self):
        part = normalize_part(
            {"type": "tool-invocation", "toolName": "exists", "toolCallId": "c", "state": "output-error", "errorText": "boom"}
        )

        assert part.state is ToolState.ERROR
        assert part.error_text == "boom"

    def test_tool_part_without_call_id(self):
        assert normalize_part({"type": "tool-readFile", "state": "input-available"}) is None
