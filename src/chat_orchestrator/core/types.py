"""Shared types and enumerations."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class TextState(StrEnum):
    STREAMING = "streaming"
    DONE = "done"


class ToolState(StrEnum):
    PENDING = "pending"
    DONE = "done"
    ERROR = "error"


class TurnState(StrEnum):
    """Stages a single chat turn passes through."""

    VALIDATING = "validating"
    RESOLVING = "resolving"
    CACHE_CHECK = "cache_check"
    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"
    GENERATING = "generating"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


ELEVATED_ROLES = frozenset({"admin", "moderator"})


@dataclass(frozen=True, slots=True)
class Identity:
    """Caller identity supplied by the authentication layer."""

    user_id: str | None = None
    roles: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)

    @classmethod
    def anonymous(cls) -> Identity:
        return cls()
