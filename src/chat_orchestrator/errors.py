"""Structured error taxonomy surfaced to the transport layer.

Every error carries a stable machine-readable ``kind`` (and, for validation
failures, a ``code``) plus a human-readable message. Messages never contain
stack traces or storage details.
"""

from __future__ import annotations

from typing import Any


class ChatError(Exception):
    """Base class for all errors surfaced by the orchestrator."""

    kind = "internal_error"
    code = "internal_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind, "code": self.code, "message": self.message}


class ValidationError(ChatError):
    """Malformed or incomplete inbound turn."""

    kind = "validation_error"
    code = "invalid_request"


class MissingFieldsError(ValidationError):
    code = "missing_fields"


class InvalidSessionIdError(ValidationError):
    code = "invalid_session_id"


class InvalidMessageError(ValidationError):
    code = "invalid_message"


class NoMessagesError(ValidationError):
    code = "no_messages"


class LastMessageNotUserError(ValidationError):
    code = "last_message_not_user"


class UnauthenticatedError(ChatError):
    kind = "unauthenticated"
    code = "unauthenticated"


class ForbiddenError(ChatError):
    kind = "forbidden"
    code = "forbidden"


class NotFoundError(ChatError):
    kind = "not_found"
    code = "not_found"


class VersionConflictError(ChatError):
    """A concurrent append won the race. Callers may retry."""

    kind = "version_conflict"
    code = "version_conflict"


class UpstreamGenerationError(ChatError):
    """The generation capability failed or timed out."""

    kind = "upstream_generation_error"
    code = "upstream_generation_error"


class InternalError(ChatError):
    kind = "internal_error"
    code = "internal_error"
