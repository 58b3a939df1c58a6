"""Tests for the offline mock generation client."""

from __future__ import annotations

import asyncio

import pytest

from agentrelay.providers import MockGenerationClient
from agentrelay.providers.base import Message


@pytest.mark.asyncio
async def test_complete_echoes_preview() -> None:
    client = MockGenerationClient(delay_seconds=0)
    messages: list[Message] = [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "x" * 80},
    ]

    result = await client.complete(messages, 100)

    assert result == f"[Mock Output] Processed: {'x' * 50}..."
    assert client.calls == [messages]


@pytest.mark.asyncio
async def test_streaming_concatenates_to_complete_output() -> None:
    client = MockGenerationClient(delay_seconds=0, fragment_delay_seconds=0)
    messages: list[Message] = [{"role": "user", "content": "Summarize the quarterly report"}]

    fragments = [f async for f in client.complete_streaming(messages, 100)]

    assert len(fragments) > 1
    assert "".join(fragments) == await client.complete(messages, 100)


@pytest.mark.asyncio
async def test_complete_is_cancellable() -> None:
    client = MockGenerationClient(delay_seconds=60)

    task = asyncio.create_task(client.complete([{"role": "user", "content": "Hi"}], 10))
    await asyncio.sleep(0)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
