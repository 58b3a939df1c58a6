"""Offline generation client for demos and tests."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from agentrelay.providers.base import Message

PREVIEW_CHARS = 50


class MockGenerationClient:
    """Echoes a truncated preview of the last message after a short delay.

    Useful for exercising the pipeline and progress relay without network
    access. Delays are awaited with ``asyncio.sleep`` so cancellation aborts
    a call immediately.
    """

    def __init__(self, delay_seconds: float = 1.0, fragment_delay_seconds: float = 0.2) -> None:
        self.delay_seconds = delay_seconds
        self.fragment_delay_seconds = fragment_delay_seconds
        self.calls: list[list[Message]] = []

    def _render(self, messages: Sequence[Message]) -> str:
        last = messages[-1]["content"] if messages else ""
        return f"[Mock Output] Processed: {last[:PREVIEW_CHARS]}..."

    async def complete(self, messages: Sequence[Message], max_output_tokens: int) -> str:  # noqa: ARG002
        self.calls.append(list(messages))
        await asyncio.sleep(self.delay_seconds)
        return self._render(messages)

    async def complete_streaming(
        self,
        messages: Sequence[Message],
        max_output_tokens: int,  # noqa: ARG002
    ) -> AsyncIterator[str]:
        self.calls.append(list(messages))
        words = self._render(messages).split(" ")
        for i, word in enumerate(words):
            await asyncio.sleep(self.fragment_delay_seconds)
            yield word if i == len(words) - 1 else f"{word} "

    async def close(self) -> None:
        """No resources to release."""
