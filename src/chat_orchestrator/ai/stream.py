"""Stream chunks and the consumer side of a reply channel."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional, Union


@dataclass(frozen=True, slots=True)
class TextDelta:
    text: str


@dataclass(frozen=True, slots=True)
class ToolCall:
    call_id: str
    tool_name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ToolResult:
    call_id: str
    tool_name: str
    output: Any = None
    is_error: bool = False


@dataclass(frozen=True, slots=True)
class StepFinished:
    """End of one upstream model step (never forwarded to the caller)."""

    stop_reason: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True, slots=True)
class Done:
    message_id: Optional[str]
    finish_reason: str


@dataclass(frozen=True, slots=True)
class StreamError:
    kind: str
    message: str


Chunk = Union[TextDelta, ToolCall, ToolResult, Done, StreamError]

# Marks the end of the channel
CLOSED = object()


class TurnStream:
    """Async iterator over the chunks of one assistant reply.

    Generated replies are fed by a producer task through a bounded queue;
    cached and replayed replies are complete up front. ``aclose()`` is the
    disconnect signal: it cancels the producer and waits for it to persist
    whatever it has and release its resources.
    """

    def __init__(
        self,
        session_id: str,
        queue: asyncio.Queue,
        producer: Optional[asyncio.Task] = None,
        *,
        cached: bool = False,
        replayed: bool = False,
        first: Optional[Chunk] = None,
    ):
        self.session_id = session_id
        self.cached = cached
        self.replayed = replayed
        self._queue = queue
        self._producer = producer
        self._pending = first
        self._finished = False

    @classmethod
    def completed(
        cls,
        session_id: str,
        text: str,
        message_id: Optional[str],
        *,
        cached: bool = False,
        replayed: bool = False,
    ) -> TurnStream:
        """A stream whose whole body is already known."""
        queue: asyncio.Queue = asyncio.Queue()
        queue.put_nowait(TextDelta(text))
        queue.put_nowait(Done(message_id=message_id, finish_reason="cached" if cached else "replayed"))
        queue.put_nowait(CLOSED)
        return cls(session_id, queue, cached=cached, replayed=replayed)

    @property
    def streaming(self) -> bool:
        return self._producer is not None

    def __aiter__(self) -> TurnStream:
        return self

    async def __anext__(self) -> Chunk:
        if self._pending is not None:
            chunk, self._pending = self._pending, None
            return chunk
        if self._finished:
            raise StopAsyncIteration

        item = await self._next_item()
        if item is CLOSED:
            self._finished = True
            raise StopAsyncIteration
        return item

    async def _next_item(self) -> Any:
        if self._producer is None or not self._queue.empty():
            return await self._queue.get()

        # The producer may die without closing the channel (e.g. cancelled
        # during shutdown); do not wait on an abandoned queue forever.
        getter = asyncio.ensure_future(self._queue.get())
        await asyncio.wait({getter, self._producer}, return_when=asyncio.FIRST_COMPLETED)
        if getter.done():
            return getter.result()
        getter.cancel()
        return self._queue.get_nowait() if not self._queue.empty() else CLOSED

    async def read_text(self) -> str:
        """Drain the stream and return the concatenated text."""
        parts: list[str] = []
        async for chunk in self:
            if isinstance(chunk, TextDelta):
                parts.append(chunk.text)
        return "".join(parts)

    async def wait_closed(self) -> None:
        """Wait until the producer (if any) has finished persisting."""
        if self._producer is not None:
            await asyncio.gather(self._producer, return_exceptions=True)

    async def aclose(self) -> None:
        """Stop consuming. An unfinished producer is cancelled."""
        self._finished = True
        self._pending = None
        if self._producer is not None and not self._producer.done():
            self._producer.cancel()
        await self.wait_closed()
