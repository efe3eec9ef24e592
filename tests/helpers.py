"""Shared test helpers: fake generation client, cache backends and turn builders."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

from chat_orchestrator.ai.client import GenerationClient
from chat_orchestrator.ai.stream import StepFinished, TextDelta, ToolCall
from chat_orchestrator.core.ids import new_id
from chat_orchestrator.core.types import Identity
from chat_orchestrator.storage.cache import CacheBackend

REFERENCE_TEXT = (
    "The Nellie, a cruising yawl, swung to her anchor without a flutter of the sails. "
    "The sea-reach of the Thames stretched before us like the beginning of an interminable "
    "waterway. " * 20
    + "Mr. Kurtz was the chief of the Inner Station, a first-class agent who sent in as much "
    "ivory as all the others put together. "
    + "He cried in a whisper at some image, at some vision: 'The horror! The horror!' " * 3
)

OWNER = Identity(user_id="alice", roles=frozenset({"user"}))
OTHER_USER = Identity(user_id="bob", roles=frozenset({"user"}))
ADMIN = Identity(user_id="root", roles=frozenset({"admin"}))
MODERATOR = Identity(user_id="mod", roles=frozenset({"moderator"}))
ANONYMOUS = Identity.anonymous()


class Pause:
    """Script element: block the step until *event* is set."""

    def __init__(self, event: asyncio.Event):
        self.event = event


class Hang:
    """Script element: never produce another event."""


class ScriptedClient(GenerationClient):
    """Generation client that replays scripted steps.

    Each step is a list of TextDelta / ToolCall / Pause / Hang / Exception
    elements; an exception element is raised when reached. Every request's
    messages are recorded in ``requests``.
    """

    def __init__(self, *steps: list[Any]):
        self._steps = list(steps)
        self.requests: list[list[dict[str, Any]]] = []
        self.tools_offered: list[list[dict[str, Any]] | None] = []
        self.closed = False

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def stream_step(
        self,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        *,
        model: str = "",
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> AsyncIterator[Any]:
        self.requests.append([dict(m) for m in messages])
        self.tools_offered.append(tools)
        if not self._steps:
            raise AssertionError("ScriptedClient ran out of steps")
        step = self._steps.pop(0)

        for element in step:
            if isinstance(element, BaseException):
                raise element
            if isinstance(element, Pause):
                await element.event.wait()
                continue
            if isinstance(element, Hang):
                await asyncio.Event().wait()
            yield element
        yield StepFinished(stop_reason="tool_use" if any(isinstance(e, ToolCall) for e in step) else "end_turn")

    async def close(self) -> None:
        self.closed = True


def text_step(*chunks: str) -> list[Any]:
    return [TextDelta(c) for c in chunks]


def tool_step(*calls: tuple[str, str, dict[str, Any]], text: str = "") -> list[Any]:
    step: list[Any] = [TextDelta(text)] if text else []
    step.extend(ToolCall(call_id=cid, tool_name=name, input=args) for cid, name, args in calls)
    return step


class FailingCacheBackend(CacheBackend):
    """Backend whose every operation raises, like an unreachable Redis."""

    def __init__(self) -> None:
        self.get_calls = 0
        self.set_calls = 0

    async def get(self, key: str) -> str | None:
        self.get_calls += 1
        raise ConnectionError("cache unreachable")

    async def set(self, key: str, value: str, ttl: int) -> None:
        self.set_calls += 1
        raise ConnectionError("cache unreachable")


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def user_message(text: str, message_id: str | None = None) -> dict[str, Any]:
    return {
        "id": message_id or new_id(),
        "role": "user",
        "parts": [{"type": "text", "text": text}],
    }


def assistant_message(text: str, message_id: str | None = None) -> dict[str, Any]:
    return {
        "id": message_id or new_id(),
        "role": "assistant",
        "parts": [{"type": "text", "text": text}],
    }


def make_turn(session_id: str, *messages: dict[str, Any], trigger: str = "submit-message") -> dict[str, Any]:
    return {"id": session_id, "trigger": trigger, "messages": list(messages)}
