"""Tests for the console progress relay."""

from __future__ import annotations

import asyncio
from io import StringIO

import pytest
from rich.console import Console

from agentrelay.pipeline import PipelineOrchestrator
from agentrelay.progress import ConsoleProgressRelay
from tests.fixtures.scripted_client import ScriptedClient, make_pipeline


def _relay() -> tuple[ConsoleProgressRelay, StringIO]:
    buffer = StringIO()
    return ConsoleProgressRelay(Console(file=buffer, width=200)), buffer


@pytest.mark.asyncio
async def test_relay_reports_successful_run() -> None:
    relay, buffer = _relay()
    orchestrator = PipelineOrchestrator(make_pipeline("A", "B"), ScriptedClient())

    with orchestrator.subscribe(relay):
        await orchestrator.run("x")

    lines = buffer.getvalue().splitlines()
    assert lines[0] == "→ [1/2] A running..."
    assert lines[1].startswith("✓ A completed")
    assert "50%" in lines[1]
    assert lines[2] == "→ [2/2] B running..."
    assert "100%" in lines[3]
    assert lines[-1] == "Pipeline completed."
    assert len(lines) == 5


@pytest.mark.asyncio
async def test_relay_reports_failure() -> None:
    relay, buffer = _relay()
    orchestrator = PipelineOrchestrator(make_pipeline("A", "B", "C"), ScriptedClient(fail_on="B"))

    with orchestrator.subscribe(relay):
        await orchestrator.run("x")

    output = buffer.getvalue()
    assert "✗ B failed: quota exceeded" in output
    assert "C running" not in output
    assert output.splitlines()[-1] == "Pipeline failed."


@pytest.mark.asyncio
async def test_relay_reports_cancellation() -> None:
    relay, buffer = _relay()
    orchestrator = PipelineOrchestrator(make_pipeline("A", "B"), ScriptedClient())
    cancel_event = asyncio.Event()
    cancel_event.set()

    with orchestrator.subscribe(relay):
        result = await orchestrator.run("x", cancel_event)

    assert result.success is False
    output = buffer.getvalue()
    assert "■ A cancelled" in output
    assert output.splitlines()[-1] == "Pipeline stopped."


@pytest.mark.asyncio
async def test_relay_is_reusable_across_runs() -> None:
    relay, buffer = _relay()
    orchestrator = PipelineOrchestrator(make_pipeline("A"), ScriptedClient())

    with orchestrator.subscribe(relay):
        await orchestrator.run("first")
        await orchestrator.run("second")

    lines = buffer.getvalue().splitlines()
    assert lines.count("→ [1/1] A running...") == 2
    assert lines.count("Pipeline completed.") == 2
