"""Tests for pipeline orchestrator."""

from __future__ import annotations

import asyncio

import pytest

from agentrelay.models.results import PipelineState, StepStatus
from agentrelay.pipeline import (
    OrchestrationConfig,
    PipelineBusyError,
    PipelineOptions,
    PipelineOrchestrator,
    SequentialPipeline,
    build_stage_messages,
    estimate_tokens,
)
from agentrelay.pipeline.orchestrator import FIRST_STAGE_PREFIX
from tests.fixtures.scripted_client import ScriptedClient, make_pipeline


def _collect_states(orchestrator: PipelineOrchestrator) -> list[PipelineState]:
    states: list[PipelineState] = []
    orchestrator.subscribe(states.append)
    return states


async def _drain(orchestrator: PipelineOrchestrator, text: str, **kwargs: object) -> list:
    return [step async for step in orchestrator.stream(text, **kwargs)]


# --- Success path ---


@pytest.mark.asyncio
async def test_three_stage_run_appends_per_stage() -> None:
    """Each stage receives the previous output and the run returns the last one."""
    orchestrator = PipelineOrchestrator(make_pipeline("A", "B", "C"), ScriptedClient())

    result = await orchestrator.run("X")

    assert result.success is True
    assert result.error is None
    assert result.final_output == "X!!!"
    assert [s.stage for s in result.steps] == ["A", "B", "C"]
    assert [s.output for s in result.steps] == ["X!", "X!!", "X!!!"]
    assert all(s.status is StepStatus.COMPLETED for s in result.steps)


@pytest.mark.asyncio
@pytest.mark.parametrize("count", [1, 2, 5])
async def test_stream_emits_one_completed_step_per_stage(count: int) -> None:
    """A run emits exactly N completed steps in stage order."""
    names = [f"stage{i}" for i in range(count)]
    orchestrator = PipelineOrchestrator(make_pipeline(*names), ScriptedClient())

    steps = await _drain(orchestrator, "input")

    assert [s.stage for s in steps] == names
    assert all(s.status is StepStatus.COMPLETED for s in steps)


@pytest.mark.asyncio
async def test_final_state_after_success() -> None:
    """Final snapshot is idle, complete and points at the last stage."""
    orchestrator = PipelineOrchestrator(make_pipeline("A", "B", "C"), ScriptedClient())

    await orchestrator.run("X")
    state = orchestrator.current_state()

    assert state.is_running is False
    assert state.is_completed is True
    assert state.has_failed is False
    assert state.current_step_index == 2
    assert state.current_step is None
    assert state.progress_percentage == 100


@pytest.mark.asyncio
async def test_empty_pipeline_succeeds_with_no_steps() -> None:
    orchestrator = PipelineOrchestrator(SequentialPipeline(), ScriptedClient())

    result = await orchestrator.run("X")

    assert result.success is True
    assert result.steps == ()
    assert result.final_output == ""
    assert orchestrator.current_state().progress_percentage == 0


# --- Failure path ---


@pytest.mark.asyncio
async def test_failure_stops_run_and_reports_error() -> None:
    """A failing stage ends the run; earlier stages stay completed."""
    client = ScriptedClient(fail_on="B", error="quota exceeded")
    orchestrator = PipelineOrchestrator(make_pipeline("A", "B", "C"), client)

    result = await orchestrator.run("X")

    assert result.success is False
    assert result.error == "quota exceeded"
    assert result.final_output == ""
    assert len(result.steps) == 2
    assert result.steps[0].status is StepStatus.COMPLETED
    assert result.steps[0].output == "X!"
    assert result.steps[1].status is StepStatus.FAILED
    assert result.steps[1].error == "quota exceeded"
    assert result.steps[1].output is None
    # Stage C never ran
    assert len(client.calls) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("failing_index", [0, 1, 2])
async def test_failure_at_stage_k_emits_k_plus_one_steps(failing_index: int) -> None:
    names = ["A", "B", "C"]
    client = ScriptedClient(fail_on=names[failing_index])
    orchestrator = PipelineOrchestrator(make_pipeline(*names), client)

    steps = await _drain(orchestrator, "X")

    assert len(steps) == failing_index + 1
    assert all(s.status is StepStatus.COMPLETED for s in steps[:-1])
    assert steps[-1].status is StepStatus.FAILED


@pytest.mark.asyncio
async def test_failure_state_is_terminal() -> None:
    orchestrator = PipelineOrchestrator(make_pipeline("A", "B"), ScriptedClient(fail_on="A"))

    await orchestrator.run("X")
    state = orchestrator.current_state()

    assert state.is_running is False
    assert state.has_failed is True
    assert state.current_step_index == 0
    assert state.is_completed is False


@pytest.mark.asyncio
async def test_orchestrator_is_reusable_after_failure() -> None:
    client = ScriptedClient(fail_on="A")
    orchestrator = PipelineOrchestrator(make_pipeline("A", "B"), client)
    assert (await orchestrator.run("X")).success is False

    client.fail_on = None
    result = await orchestrator.run("Y")

    assert result.success is True
    assert result.final_output == "Y!!"


# --- Cancellation ---


@pytest.mark.asyncio
async def test_cancel_event_set_before_start() -> None:
    """A pre-set signal yields a single cancelled step at index 0."""
    client = ScriptedClient()
    orchestrator = PipelineOrchestrator(make_pipeline("A", "B", "C"), client)
    cancel_event = asyncio.Event()
    cancel_event.set()

    steps = await _drain(orchestrator, "X", cancel_event=cancel_event)

    assert len(steps) == 1
    assert steps[0].stage == "A"
    assert steps[0].status is StepStatus.CANCELLED
    assert steps[0].duration_seconds == 0.0
    assert client.calls == []
    state = orchestrator.current_state()
    assert state.is_running is False
    assert state.current_step_index == 0


@pytest.mark.asyncio
async def test_cancel_during_stage_stops_run() -> None:
    """cancel() aborts the in-flight call and ends the run."""
    client = ScriptedClient(block_on="B")
    orchestrator = PipelineOrchestrator(make_pipeline("A", "B", "C"), client)

    task = asyncio.create_task(orchestrator.run("X"))
    await asyncio.wait_for(client.started.wait(), timeout=5)
    orchestrator.cancel()
    result = await asyncio.wait_for(task, timeout=5)

    assert [s.status for s in result.steps] == [StepStatus.COMPLETED, StepStatus.CANCELLED]
    assert result.steps[1].stage == "B"
    assert result.steps[1].output is None
    assert result.success is False
    assert result.final_output == ""
    assert client.cancelled_stages == ["B"]
    assert orchestrator.current_state().is_running is False


@pytest.mark.asyncio
async def test_caller_cancel_event_during_stage() -> None:
    client = ScriptedClient(block_on="B")
    orchestrator = PipelineOrchestrator(make_pipeline("A", "B", "C"), client)
    cancel_event = asyncio.Event()

    task = asyncio.create_task(_drain(orchestrator, "X", cancel_event=cancel_event))
    await asyncio.wait_for(client.started.wait(), timeout=5)
    cancel_event.set()
    steps = await asyncio.wait_for(task, timeout=5)

    assert [(s.stage, s.status) for s in steps] == [
        ("A", StepStatus.COMPLETED),
        ("B", StepStatus.CANCELLED),
    ]
    state = orchestrator.current_state()
    assert state.is_running is False
    assert [s.status for s in state.completed_steps] == [
        StepStatus.COMPLETED,
        StepStatus.CANCELLED,
    ]


@pytest.mark.asyncio
async def test_cancel_when_idle_is_noop() -> None:
    orchestrator = PipelineOrchestrator(make_pipeline("A"), ScriptedClient())

    orchestrator.cancel()
    result = await orchestrator.run("X")

    assert result.success is True


@pytest.mark.asyncio
async def test_task_cancellation_publishes_terminal_state() -> None:
    """Cancelling the consuming task records a cancelled step and re-raises."""
    client = ScriptedClient(block_on="A")
    orchestrator = PipelineOrchestrator(make_pipeline("A", "B"), client)

    task = asyncio.create_task(orchestrator.run("X"))
    await asyncio.wait_for(client.started.wait(), timeout=5)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    state = orchestrator.current_state()
    assert state.is_running is False
    assert state.completed_steps[-1].status is StepStatus.CANCELLED
    assert client.cancelled_stages == ["A"]


@pytest.mark.asyncio
async def test_second_run_while_active_raises() -> None:
    client = ScriptedClient(block_on="A")
    orchestrator = PipelineOrchestrator(make_pipeline("A"), client)

    task = asyncio.create_task(orchestrator.run("X"))
    await asyncio.wait_for(client.started.wait(), timeout=5)
    assert orchestrator.is_running is True

    with pytest.raises(PipelineBusyError):
        await orchestrator.run("Y")

    orchestrator.cancel()
    result = await asyncio.wait_for(task, timeout=5)
    assert result.steps[-1].status is StepStatus.CANCELLED


@pytest.mark.asyncio
async def test_abandoned_stream_leaves_idle_state() -> None:
    """Stopping iteration early does not leave a running snapshot behind."""
    orchestrator = PipelineOrchestrator(make_pipeline("A", "B", "C"), ScriptedClient())

    stream = orchestrator.stream("X")
    first = await stream.__anext__()
    await stream.aclose()

    assert first.stage == "A"
    assert orchestrator.current_state().is_running is False
    # A new run can start
    assert (await orchestrator.run("X")).success is True


@pytest.mark.asyncio
async def test_run_after_break_releases_dropped_stream() -> None:
    """A stream left at a yield by ``break`` does not block the next run."""
    states: list[PipelineState] = []
    orchestrator = PipelineOrchestrator(make_pipeline("A", "B", "C"), ScriptedClient())

    async for step in orchestrator.stream("X"):
        assert step.stage == "A"
        break

    orchestrator.subscribe(states.append)
    result = await orchestrator.run("Y")

    assert result.success is True
    assert result.final_output == "Y!!!"
    # The dropped run is marked idle before the new one starts
    assert states[0].is_running is False
    assert [s.stage for s in states[0].completed_steps] == ["A"]
    assert states[1].is_running is True
    assert states[1].completed_steps == ()
    await asyncio.sleep(0)
    assert orchestrator.current_state().is_completed is True


@pytest.mark.asyncio
async def test_held_stream_between_steps_still_blocks() -> None:
    """A consumer still holding its stream keeps the run active."""
    orchestrator = PipelineOrchestrator(make_pipeline("A", "B"), ScriptedClient())

    stream = orchestrator.stream("X")
    await stream.__anext__()

    with pytest.raises(PipelineBusyError):
        await orchestrator.run("Y")

    remaining = [step async for step in stream]
    assert [s.stage for s in remaining] == ["B"]
    assert orchestrator.current_state().is_completed is True


# --- State snapshots and observers ---


def test_initial_state() -> None:
    orchestrator = PipelineOrchestrator(make_pipeline("A", "B"), ScriptedClient())

    state = orchestrator.current_state()

    assert state.is_running is False
    assert state.current_step_index == -1
    assert state.completed_steps == ()
    assert state.total_steps == 2


@pytest.mark.asyncio
async def test_published_snapshots_are_consistent() -> None:
    orchestrator = PipelineOrchestrator(make_pipeline("A", "B", "C"), ScriptedClient())
    states = _collect_states(orchestrator)

    await orchestrator.run("X")

    assert states
    for state in states:
        count = len(state.completed_steps)
        assert count <= state.total_steps
        assert state.progress_percentage == count * 100 // state.total_steps


@pytest.mark.asyncio
async def test_snapshot_sequence_orders_completion_before_next_start() -> None:
    orchestrator = PipelineOrchestrator(make_pipeline("A", "B"), ScriptedClient())
    states = _collect_states(orchestrator)

    await orchestrator.run("X")

    summary = [
        (
            s.is_running,
            s.current_step_index,
            len(s.completed_steps),
            s.current_step.stage if s.current_step else None,
        )
        for s in states
    ]
    assert summary == [
        (True, 0, 0, "A"),
        (True, 0, 1, None),
        (True, 1, 1, "B"),
        (True, 1, 2, None),
        (False, 1, 2, None),
    ]
    assert states[0].current_step is not None
    assert states[0].current_step.status is StepStatus.RUNNING


@pytest.mark.asyncio
async def test_snapshots_are_replaced_not_mutated() -> None:
    orchestrator = PipelineOrchestrator(make_pipeline("A", "B"), ScriptedClient())
    states = _collect_states(orchestrator)

    await orchestrator.run("X")

    assert len(states[1].completed_steps) == 1
    assert len(states[-1].completed_steps) == 2
    assert states[1] is not states[-1]


@pytest.mark.asyncio
async def test_failing_observer_does_not_abort_run() -> None:
    orchestrator = PipelineOrchestrator(make_pipeline("A", "B"), ScriptedClient())

    def broken(_state: PipelineState) -> None:
        raise RuntimeError("observer exploded")

    orchestrator.subscribe(broken)
    states = _collect_states(orchestrator)

    result = await orchestrator.run("X")

    assert result.success is True
    assert len(states) == 5


@pytest.mark.asyncio
async def test_closed_subscription_stops_notifications() -> None:
    orchestrator = PipelineOrchestrator(make_pipeline("A"), ScriptedClient())
    states: list[PipelineState] = []

    with orchestrator.subscribe(states.append) as subscription:
        await orchestrator.run("X")
    seen = len(states)
    await orchestrator.run("Y")

    assert seen == 3
    assert len(states) == seen
    assert subscription.active is False
    subscription.close()


# --- Messages and accounting ---


@pytest.mark.asyncio
async def test_stage_messages_carry_full_context() -> None:
    client = ScriptedClient()
    orchestrator = PipelineOrchestrator(make_pipeline("A", "B"), client)

    await orchestrator.run("original text")

    first, second = client.calls
    assert first[0] == {"role": "system", "content": "A"}
    assert first[1] == {"role": "user", "content": f"{FIRST_STAGE_PREFIX}original text"}
    assert second[0] == {"role": "system", "content": "B"}
    assert "original text" in second[1]["content"]
    assert "original text!" in second[1]["content"]


def test_build_stage_messages_later_stage() -> None:
    stage = make_pipeline("Writer").stage_at(0)

    messages = build_stage_messages(stage, "the request", "the analysis")

    assert messages[1]["content"] == (
        "Original Request:\nthe request\n\n"
        "Previous Stage Output:\nthe analysis\n\n"
        "Please process this according to your role."
    )


@pytest.mark.asyncio
async def test_token_estimate_uses_stage_input_and_output() -> None:
    orchestrator = PipelineOrchestrator(make_pipeline("A", "B"), ScriptedClient(suffix="abc"))

    result = await orchestrator.run("x" * 10)

    # Stage A: input 10 chars, output 13 chars; stage B: input 13, output 16
    assert [s.tokens_used for s in result.steps] == [23 // 4, 29 // 4]
    assert result.total_tokens_used == 23 // 4 + 29 // 4


def test_estimate_tokens() -> None:
    assert estimate_tokens("") == 0
    assert estimate_tokens("abc") == 0
    assert estimate_tokens("abcdefgh") == 2


@pytest.mark.asyncio
async def test_max_output_tokens_passed_to_client() -> None:
    client = ScriptedClient()
    orchestrator = PipelineOrchestrator(make_pipeline("A", "B"), client, max_output_tokens=123)

    await orchestrator.run("X")

    assert client.max_tokens_seen == [123, 123]


# --- Streaming client mode ---


@pytest.mark.asyncio
async def test_streaming_mode_concatenates_fragments() -> None:
    orchestrator = PipelineOrchestrator(
        make_pipeline("A", "B", "C"), ScriptedClient(), enable_streaming=True
    )

    result = await orchestrator.run("X")

    assert result.success is True
    assert result.final_output == "X!!!"


@pytest.mark.asyncio
async def test_streaming_output_bound_fails_stage() -> None:
    orchestrator = PipelineOrchestrator(
        make_pipeline("A"),
        ScriptedClient(suffix="y" * 20),
        enable_streaming=True,
        max_output_chars=10,
    )

    result = await orchestrator.run("X")

    assert result.success is False
    assert result.steps[0].status is StepStatus.FAILED
    assert "exceeded 10 characters" in (result.error or "")


# --- Construction and lifecycle ---


@pytest.mark.asyncio
async def test_from_config_applies_options() -> None:
    config = OrchestrationConfig(
        pipeline=PipelineOptions(max_output_tokens=77, enable_streaming=False)
    )
    client = ScriptedClient()
    orchestrator = PipelineOrchestrator.from_config(config, client)

    assert [s.name for s in orchestrator.pipeline] == ["Analyst", "Writer", "Editor"]
    await orchestrator.run("X")
    assert client.max_tokens_seen == [77, 77, 77]


@pytest.mark.asyncio
async def test_close_releases_client() -> None:
    client = ScriptedClient()
    orchestrator = PipelineOrchestrator(make_pipeline("A"), client)

    await orchestrator.close()

    assert client.closed is True
