"""Generation client abstraction with a streaming Anthropic API backend."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any, Union

import anthropic

from chat_orchestrator.ai.stream import StepFinished, TextDelta, ToolCall
from chat_orchestrator.config import AnthropicConfig
from chat_orchestrator.errors import UpstreamGenerationError
from chat_orchestrator.log import get_logger

logger = get_logger(__name__)

StepEvent = Union[TextDelta, ToolCall, StepFinished]


class GenerationClient(ABC):
    """Abstract base class for generation backends."""

    @abstractmethod
    def stream_step(
        self,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        *,
        model: str = "",
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> AsyncIterator[StepEvent]:
        """Run one model step.

        Yields text deltas as they arrive, then the tool calls the model
        requested, then exactly one StepFinished. Upstream failures raise
        UpstreamGenerationError.
        """
        ...

    async def close(self) -> None:
        return None


class AnthropicClient(GenerationClient):
    """Anthropic API backend using the official SDK's streaming helper."""

    def __init__(self, config: AnthropicConfig):
        self._client = anthropic.AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            max_retries=config.max_retries,
            timeout=config.timeout,
        )

    async def stream_step(
        self,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        *,
        model: str = "",
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> AsyncIterator[StepEvent]:
        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "system": system,
            "messages": messages,
            "temperature": temperature,
        }
        if tools:
            kwargs["tools"] = tools

        logger.debug("api_request", model=model, message_count=len(messages))
        try:
            async with self._client.messages.stream(**kwargs) as stream:
                async for event in stream:
                    if event.type == "text":
                        yield TextDelta(event.text)
                response = await stream.get_final_message()
        except anthropic.APIError as e:
            logger.error("api_error", model=model, error=str(e))
            raise UpstreamGenerationError("The generation service failed to respond") from e

        logger.debug(
            "api_response",
            model=model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason,
        )
        for block in response.content:
            if block.type == "tool_use":
                yield ToolCall(call_id=block.id, tool_name=block.name, input=dict(block.input or {}))
        yield StepFinished(
            stop_reason=response.stop_reason,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )

    async def close(self) -> None:
        await self._client.close()
