"""Streaming tool-use loop that produces one assistant reply per turn."""

from __future__ import annotations

import asyncio
import json
from contextlib import aclosing
from typing import Any

from chat_orchestrator.ai.client import GenerationClient
from chat_orchestrator.ai.conversation import build_messages
from chat_orchestrator.ai.stream import (
    CLOSED,
    Done,
    StepFinished,
    StreamError,
    TextDelta,
    ToolCall,
    ToolResult,
    TurnStream,
)
from chat_orchestrator.ai.tools.base import ToolExecutionError
from chat_orchestrator.ai.tools.registry import ToolRegistry
from chat_orchestrator.config import AIConfig
from chat_orchestrator.core.ids import new_id
from chat_orchestrator.core.session import SessionResolver
from chat_orchestrator.core.types import Role, TextState, ToolState
from chat_orchestrator.errors import InternalError, UpstreamGenerationError
from chat_orchestrator.log import get_logger
from chat_orchestrator.storage.cache import ResponseCache
from chat_orchestrator.storage.models import Message, Session, TextPart, ToolInvocationPart

logger = get_logger(__name__)

STEP_LIMIT_NOTICE = "[Tool step limit reached before a final answer was produced]"


class _Reply:
    """Assistant reply accumulated while streaming."""

    def __init__(self) -> None:
        self.message_id = new_id()
        self.text: list[str] = []
        self.tools: dict[str, ToolInvocationPart] = {}
        self.persisted = False

    @property
    def has_output(self) -> bool:
        return bool(self.text or self.tools)

    @property
    def full_text(self) -> str:
        return "".join(self.text)

    def start_tool(self, call: ToolCall) -> None:
        self.tools[call.call_id] = ToolInvocationPart(
            tool_name=call.tool_name, call_id=call.call_id, input=call.input
        )

    def finish_tool(self, result: ToolResult) -> None:
        part = self.tools[result.call_id]
        if result.is_error:
            self.tools[result.call_id] = ToolInvocationPart(
                tool_name=part.tool_name,
                call_id=part.call_id,
                input=part.input,
                state=ToolState.ERROR,
                error_text=str(result.output),
            )
        else:
            self.tools[result.call_id] = ToolInvocationPart(
                tool_name=part.tool_name,
                call_id=part.call_id,
                input=part.input,
                output=result.output,
                state=ToolState.DONE,
            )

    def to_message(self, complete: bool) -> Message:
        parts: list[Any] = []
        for part in self.tools.values():
            if part.state == ToolState.PENDING:
                part = ToolInvocationPart(
                    tool_name=part.tool_name,
                    call_id=part.call_id,
                    input=part.input,
                    state=ToolState.ERROR,
                    error_text="Tool call did not complete",
                )
            parts.append(part)
        if complete or self.text:
            parts.append(
                TextPart(self.full_text, TextState.DONE if complete else TextState.STREAMING)
            )
        return Message(id=self.message_id, role=Role.ASSISTANT, parts=tuple(parts))


class GenerationOrchestrator:
    """Drives generation for a resolved session and persists the reply.

    Each call to ``start`` spawns a producer task that runs a bounded
    tool-use loop and feeds chunks through a bounded queue to the returned
    TurnStream. The producer, not the consumer, persists the reply, so a
    disconnect still leaves the partial reply in the session.
    """

    def __init__(
        self,
        client: GenerationClient,
        tools: ToolRegistry,
        resolver: SessionResolver,
        cache: ResponseCache,
        config: AIConfig,
    ):
        self._client = client
        self._tools = tools
        self._resolver = resolver
        self._cache = cache
        self._config = config

    async def start(self, session: Session, question: str) -> TurnStream:
        """Begin generating the reply to *question*, the turn's last user message.

        The answer is cached under *question* on normal completion.

        Raises UpstreamGenerationError if generation fails before producing
        any output; the caller's message stays persisted either way.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._config.stream_buffer)
        producer = asyncio.create_task(
            self._produce(session, question, queue), name=f"generate:{session.id}"
        )
        stream = TurnStream(session.id, queue, producer)

        try:
            first = await anext(stream, None)
        except asyncio.CancelledError:
            await stream.aclose()
            raise

        if first is None or isinstance(first, StreamError):
            await stream.wait_closed()
            if first is not None and first.kind == UpstreamGenerationError.kind:
                raise UpstreamGenerationError(first.message)
            raise InternalError("The reply could not be generated")

        return TurnStream(session.id, queue, producer, first=first)

    async def _produce(self, session: Session, question: str, queue: asyncio.Queue) -> None:
        reply = _Reply()
        messages = build_messages(session.messages)
        tool_defs = self._tools.api_definitions()
        steps = 0
        finish_reason = "stop"

        logger.info("generation_started", message_count=len(messages), tools=len(tool_defs))
        try:
            while True:
                if steps >= self._config.max_steps:
                    finish_reason = "step_limit"
                    logger.warning("generation_step_limit", steps=steps)
                    break
                steps += 1

                step_text, calls = await self._run_step(messages, tool_defs, reply, queue)
                if not calls:
                    break

                # Execute tool calls concurrently
                results = await asyncio.gather(*(self._execute_tool(c) for c in calls))
                for result in results:
                    reply.finish_tool(result)
                    await queue.put(result)

                messages.extend(_tool_round_messages(step_text, calls, results))

            if finish_reason == "step_limit" and not reply.text:
                reply.text.append(STEP_LIMIT_NOTICE)
                await queue.put(TextDelta(STEP_LIMIT_NOTICE))

            await self._persist(session, reply, complete=True)
            if finish_reason == "stop":
                await self._cache.set(session.id, question, reply.full_text)

            logger.info(
                "generation_completed",
                steps=steps,
                tool_calls=len(reply.tools),
                finish_reason=finish_reason,
            )
            await queue.put(Done(message_id=reply.message_id, finish_reason=finish_reason))

        except asyncio.CancelledError:
            logger.info("generation_cancelled", steps=steps, has_output=reply.has_output)
            await self._persist_partial(session, reply)
            raise
        except UpstreamGenerationError as e:
            logger.error("generation_failed", steps=steps, error=e.message)
            await self._persist_partial(session, reply)
            await queue.put(StreamError(kind=e.kind, message=e.message))
        except Exception:
            logger.exception("generation_internal_error", steps=steps)
            await self._persist_partial(session, reply)
            await queue.put(
                StreamError(kind=InternalError.kind, message="The reply could not be generated")
            )
        finally:
            try:
                queue.put_nowait(CLOSED)
            except asyncio.QueueFull:
                # The stream notices the finished producer on its own
                pass

    async def _run_step(
        self,
        messages: list[dict[str, Any]],
        tool_defs: list[dict[str, Any]],
        reply: _Reply,
        queue: asyncio.Queue,
    ) -> tuple[str, list[ToolCall]]:
        """Stream one model step onto the queue; return its text and tool calls."""
        loop = asyncio.get_running_loop()
        budget = self._config.generation_timeout
        text: list[str] = []
        calls: list[ToolCall] = []

        events = self._client.stream_step(
            self._config.system_prompt,
            messages,
            tool_defs or None,
            model=self._config.model,
            max_tokens=self._config.max_tokens,
            temperature=self._config.temperature,
        )
        async with aclosing(events):
            while True:
                # Only time spent waiting on upstream counts against the step deadline
                started = loop.time()
                try:
                    event = await asyncio.wait_for(anext(events), timeout=max(budget, 0))
                except StopAsyncIteration:
                    break
                except TimeoutError as e:
                    raise UpstreamGenerationError(
                        f"The generation service did not respond within "
                        f"{self._config.generation_timeout:g} seconds"
                    ) from e
                budget -= loop.time() - started

                match event:
                    case TextDelta(text=delta):
                        if not delta:
                            continue
                        text.append(delta)
                        reply.text.append(delta)
                        await queue.put(event)
                    case ToolCall():
                        calls.append(event)
                        reply.start_tool(event)
                        await queue.put(event)
                    case StepFinished():
                        logger.debug(
                            "generation_step",
                            stop_reason=event.stop_reason,
                            input_tokens=event.input_tokens,
                            output_tokens=event.output_tokens,
                            tool_calls=len(calls),
                        )

        return "".join(text), calls

    async def _execute_tool(self, call: ToolCall) -> ToolResult:
        timeout = self._config.tool_timeout
        try:
            output = await asyncio.wait_for(
                self._tools.execute(call.tool_name, call.input), timeout=timeout
            )
        except ToolExecutionError as e:
            logger.warning("tool_call_failed", tool=call.tool_name, error=str(e))
            return ToolResult(call.call_id, call.tool_name, str(e), is_error=True)
        except TimeoutError:
            logger.warning("tool_call_timeout", tool=call.tool_name, timeout=timeout)
            return ToolResult(
                call.call_id,
                call.tool_name,
                f"Tool {call.tool_name} timed out after {timeout:g} seconds",
                is_error=True,
            )
        except Exception as e:
            logger.error("tool_execution_error", tool=call.tool_name, error=str(e))
            return ToolResult(
                call.call_id, call.tool_name, f"Error executing {call.tool_name}: {e}", is_error=True
            )

        logger.debug("tool_call_done", tool=call.tool_name)
        return ToolResult(call.call_id, call.tool_name, output)

    async def _persist(self, session: Session, reply: _Reply, complete: bool) -> None:
        await self._resolver.append_reply(session.id, [reply.to_message(complete)])
        reply.persisted = True

    async def _persist_partial(self, session: Session, reply: _Reply) -> None:
        """Best-effort save of an interrupted reply."""
        if reply.persisted or not reply.has_output:
            return
        try:
            await self._persist(session, reply, complete=False)
        except Exception:
            logger.exception("partial_reply_not_persisted", message_id=reply.message_id)
        else:
            logger.info("partial_reply_persisted", message_id=reply.message_id)


def _tool_round_messages(
    step_text: str, calls: list[ToolCall], results: list[ToolResult]
) -> list[dict[str, Any]]:
    """The assistant tool_use turn and the user tool_result turn of one round."""
    assistant_content: list[dict[str, Any]] = []
    if step_text:
        assistant_content.append({"type": "text", "text": step_text})
    for call in calls:
        assistant_content.append(
            {"type": "tool_use", "id": call.call_id, "name": call.tool_name, "input": call.input}
        )

    result_content: list[dict[str, Any]] = []
    for result in results:
        block: dict[str, Any] = {
            "type": "tool_result",
            "tool_use_id": result.call_id,
            "content": _result_text(result.output),
        }
        if result.is_error:
            block["is_error"] = True
        result_content.append(block)

    return [
        {"role": "assistant", "content": assistant_content},
        {"role": "user", "content": result_content},
    ]


def _result_text(output: Any) -> str:
    if isinstance(output, str):
        return output
    return json.dumps(output, default=str)
