"""Logging wrapper for generation clients."""

from __future__ import annotations

import asyncio
import time
from contextlib import aclosing
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from agentrelay.observability import LLMLogger
    from agentrelay.providers.base import GenerationClient, Message


class LoggingGenerationClient:
    """Wrapper that logs all generation calls to the LLMLogger.

    Stage name and run ID are taken from the structlog context variables the
    orchestrator binds around each stage call.
    """

    def __init__(self, client: GenerationClient, logger: LLMLogger) -> None:
        """Initialize logging wrapper.

        Args:
            client: Underlying generation client to wrap.
            logger: LLMLogger instance for recording calls.
        """
        self._client = client
        self._logger = logger

    def _record(
        self,
        messages: Sequence[Message],
        content: str,
        duration: float,
        max_output_tokens: int,
        streaming: bool,
        error: str | None = None,
    ) -> None:
        context = structlog.contextvars.get_contextvars()
        entry = self._logger.create_entry(
            stage=str(context.get("stage", "")),
            run_id=str(context.get("run_id", "")),
            messages=[{**m} for m in messages],
            content=content,
            duration_seconds=duration,
            max_output_tokens=max_output_tokens,
            streaming=streaming,
            error=error,
        )
        self._logger.log(entry)

    async def complete(self, messages: Sequence[Message], max_output_tokens: int) -> str:
        """Generate completion and log the call."""
        start_time = time.perf_counter()
        try:
            content = await self._client.complete(messages, max_output_tokens)
        except BaseException as e:
            self._record(
                messages,
                "",
                time.perf_counter() - start_time,
                max_output_tokens,
                False,
                _describe_failure(e),
            )
            raise

        self._record(messages, content, time.perf_counter() - start_time, max_output_tokens, False)
        return content

    async def complete_streaming(
        self, messages: Sequence[Message], max_output_tokens: int
    ) -> AsyncIterator[str]:
        """Stream completion fragments and log the assembled call."""
        start_time = time.perf_counter()
        fragments: list[str] = []
        stream = self._client.complete_streaming(messages, max_output_tokens)
        try:
            async with aclosing(stream) as inner:  # type: ignore[type-var]
                async for fragment in inner:
                    fragments.append(fragment)
                    yield fragment
        except BaseException as e:
            # Also covers GeneratorExit when the consumer closes the stream early
            self._record(
                messages,
                "".join(fragments),
                time.perf_counter() - start_time,
                max_output_tokens,
                True,
                _describe_failure(e),
            )
            raise

        self._record(
            messages, "".join(fragments), time.perf_counter() - start_time, max_output_tokens, True
        )

    async def close(self) -> None:
        """Close underlying client."""
        await self._client.close()

    async def __aenter__(self) -> LoggingGenerationClient:
        """Enter async context."""
        return self

    async def __aexit__(self, *_: object) -> None:
        """Exit async context."""
        await self.close()


def _describe_failure(error: BaseException) -> str:
    """Error text for the call log; aborted calls carry no message of their own."""
    if isinstance(error, asyncio.CancelledError):
        return "cancelled"
    if isinstance(error, GeneratorExit):
        return "aborted"
    return str(error) or type(error).__name__
