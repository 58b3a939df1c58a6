"""Pipeline orchestrator for sequential stage execution."""

from __future__ import annotations

import asyncio
import threading
import time
import uuid
import weakref
from contextlib import aclosing
from dataclasses import replace
from typing import TYPE_CHECKING

import structlog

from agentrelay.models.results import PipelineResult, PipelineState, StepResult, StepStatus
from agentrelay.observability.logging import get_logger
from agentrelay.pipeline.cancellation import CancellationSource, RunCancelledError
from agentrelay.pipeline.errors import PipelineBusyError, StageOutputTooLargeError

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable

    from agentrelay.models.stage import StageDefinition
    from agentrelay.pipeline.config import OrchestrationConfig
    from agentrelay.pipeline.definition import SequentialPipeline
    from agentrelay.providers.base import GenerationClient, Message

    StateObserver = Callable[[PipelineState], None]

log = get_logger(__name__)

DEFAULT_MAX_OUTPUT_TOKENS = 2000
DEFAULT_MAX_OUTPUT_CHARS = 200_000

FIRST_STAGE_PREFIX = "Please analyze the following:\n\n"
ORIGINAL_REQUEST_HEADER = "Original Request:\n"
PREVIOUS_OUTPUT_HEADER = "Previous Stage Output:\n"
PROCESS_DIRECTIVE = "Please process this according to your role."


def build_stage_messages(
    stage: StageDefinition,
    original_input: str,
    previous_output: str | None,
) -> list[Message]:
    """Build the system and user messages for one stage.

    The first stage (``previous_output is None``) sees only the original
    input. Later stages see the original input and the preceding stage's
    output, so context is never lost between hops.
    """
    if previous_output is None:
        user_content = f"{FIRST_STAGE_PREFIX}{original_input}"
    else:
        user_content = (
            f"{ORIGINAL_REQUEST_HEADER}{original_input}\n\n"
            f"{PREVIOUS_OUTPUT_HEADER}{previous_output}\n\n"
            f"{PROCESS_DIRECTIVE}"
        )
    return [
        {"role": "system", "content": stage.instructions},
        {"role": "user", "content": user_content},
    ]


def estimate_tokens(text: str) -> int:
    """Rough token estimate: about four characters per token."""
    return len(text) // 4


class StateSubscription:
    """Handle for a registered state observer.

    Closing the subscription (directly or by leaving the ``with`` block)
    removes the observer. Closing twice is harmless.
    """

    def __init__(self, orchestrator: PipelineOrchestrator, callback: StateObserver) -> None:
        self._orchestrator = orchestrator
        self._callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def close(self) -> None:
        if self._active:
            self._orchestrator._remove_observer(self._callback)
            self._active = False

    def __enter__(self) -> StateSubscription:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


class PipelineOrchestrator:
    """Drive a payload through a sequential pipeline of generation stages.

    Each stage sends its instructions plus the running context to the
    generation client; the output becomes the next stage's input. Progress
    is published as immutable ``PipelineState`` snapshots, both through
    ``current_state()`` and to registered observers.

    Only one run may be active per instance. Starting a second run while one
    is in flight raises ``PipelineBusyError``.

    Attributes:
        pipeline: The stage sequence. Treated as read-only.
    """

    def __init__(
        self,
        pipeline: SequentialPipeline,
        client: GenerationClient,
        *,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        enable_streaming: bool = False,
        max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            pipeline: Stages to execute, in order.
            client: Generation client used for every stage.
            max_output_tokens: Per-stage output bound passed to the client.
            enable_streaming: Use the client's fragment stream instead of
                single-shot completion.
            max_output_chars: Bound on accumulated streamed output per stage.
        """
        self.pipeline = pipeline
        self._stages = pipeline.stages
        self._client = client
        self._max_output_tokens = max_output_tokens
        self._enable_streaming = enable_streaming
        self._max_output_chars = max_output_chars

        self._state_lock = threading.Lock()
        self._state = PipelineState.initial(len(self._stages))
        self._observers: list[StateObserver] = []
        self._observers_lock = threading.Lock()
        self._cancellation: CancellationSource | None = None
        self._open_stream: weakref.ref[AsyncGenerator[StepResult, None]] | None = None

    @classmethod
    def from_config(
        cls, config: OrchestrationConfig, client: GenerationClient
    ) -> PipelineOrchestrator:
        """Build an orchestrator from loaded configuration."""
        options = config.pipeline
        return cls(
            config.build_pipeline(),
            client,
            max_output_tokens=options.max_output_tokens,
            enable_streaming=options.enable_streaming,
            max_output_chars=options.max_output_chars,
        )

    # -- State -----------------------------------------------------------------

    def current_state(self) -> PipelineState:
        """Latest published snapshot. Safe to call from any thread."""
        with self._state_lock:
            return self._state

    @property
    def is_running(self) -> bool:
        return self.current_state().is_running

    def subscribe(self, callback: StateObserver) -> StateSubscription:
        """Register ``callback`` to receive every published snapshot.

        Callbacks run synchronously inside the transition that produced the
        snapshot. Exceptions they raise are logged and never reach the run.
        """
        with self._observers_lock:
            self._observers.append(callback)
        return StateSubscription(self, callback)

    def _remove_observer(self, callback: StateObserver) -> None:
        with self._observers_lock:
            if callback in self._observers:
                self._observers.remove(callback)

    def _publish(self, state: PipelineState) -> None:
        with self._state_lock:
            self._state = state
        with self._observers_lock:
            observers = list(self._observers)
        for observer in observers:
            try:
                observer(state)
            except Exception:
                log.warning("state_observer_failed", observer=repr(observer), exc_info=True)

    # -- Control ---------------------------------------------------------------

    def cancel(self) -> None:
        """Request cancellation of the active run. No-op when idle.

        Does not wait for the run to stop; the stop shows up as a Cancelled
        step and a terminal snapshot.
        """
        cancellation = self._cancellation
        if cancellation is None:
            log.debug("cancel_ignored", reason="no active run")
            return
        log.info("cancel_requested")
        cancellation.cancel()

    # -- Execution -------------------------------------------------------------

    async def _generate(self, stage: StageDefinition, messages: list[Message]) -> str:
        if not self._enable_streaming:
            return await self._client.complete(messages, self._max_output_tokens)

        parts: list[str] = []
        size = 0
        stream = self._client.complete_streaming(messages, self._max_output_tokens)
        async with aclosing(stream) as fragments:  # type: ignore[type-var]
            async for fragment in fragments:
                size += len(fragment)
                if size > self._max_output_chars:
                    raise StageOutputTooLargeError(stage.name, self._max_output_chars)
                parts.append(fragment)
        return "".join(parts)

    def stream(
        self,
        input_text: str,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncGenerator[StepResult, None]:
        """Run the pipeline, yielding one terminal step result per stage.

        The sequence ends after the last stage, or right after the first
        Failed or Cancelled step. Stage failures never raise out of the
        iterator; they are reported in the yielded step.

        Consumers that may stop early should wrap the stream in
        ``contextlib.aclosing`` so the run is released as soon as they stop.
        A stream dropped without closing is released by the next run on this
        instance.

        Args:
            input_text: Raw input for the first stage.
            cancel_event: Optional caller-owned cancellation signal.

        Raises:
            PipelineBusyError: If another run is active on this instance.
        """
        handle: list[weakref.ref[AsyncGenerator[StepResult, None]]] = []
        steps = self._run_stages(input_text, cancel_event, handle)
        handle.append(weakref.ref(steps))
        return steps

    async def _run_stages(
        self,
        input_text: str,
        cancel_event: asyncio.Event | None,
        handle: list[weakref.ref[AsyncGenerator[StepResult, None]]],
    ) -> AsyncGenerator[StepResult, None]:
        if self._cancellation is not None:
            open_stream = self._open_stream
            if open_stream is None or open_stream() is not None:
                raise PipelineBusyError
            # The previous consumer dropped its stream at a yield without closing it
            log.warning("abandoned_stream_released")
            self._release_run()

        cancellation = CancellationSource(*(e for e in (cancel_event,) if e is not None))
        self._cancellation = cancellation
        self._open_stream = handle[0]
        run_id = uuid.uuid4().hex[:12]
        total = len(self._stages)
        completed: list[StepResult] = []
        current_input = input_text
        run_start = time.perf_counter()

        log.info("pipeline_start", run_id=run_id, stages=total)

        try:
            for i, stage in enumerate(self._stages):
                self._publish(
                    PipelineState(
                        is_running=True,
                        current_step_index=i,
                        completed_steps=tuple(completed),
                        current_step=StepResult.running(stage.name),
                        total_steps=total,
                    )
                )
                log.info("stage_start", run_id=run_id, stage=stage.name, step=i + 1, total=total)

                step_start = time.perf_counter()
                try:
                    if cancellation.cancelled:
                        raise RunCancelledError
                    messages = build_stage_messages(
                        stage, input_text, current_input if i > 0 else None
                    )
                    with structlog.contextvars.bound_contextvars(run_id=run_id, stage=stage.name):
                        output = await cancellation.run(self._generate(stage, messages))
                except RunCancelledError:
                    step = StepResult.cancelled(stage.name)
                    log.warning("stage_cancelled", run_id=run_id, stage=stage.name)
                except asyncio.CancelledError:
                    # The consuming task itself was cancelled
                    completed.append(StepResult.cancelled(stage.name))
                    self._publish(self._terminal_state(i, completed))
                    log.warning("stage_cancelled", run_id=run_id, stage=stage.name, source="task")
                    raise
                except Exception as e:
                    duration = time.perf_counter() - step_start
                    step = StepResult.failed(stage.name, str(e), duration)
                    log.error(
                        "stage_failed",
                        run_id=run_id,
                        stage=stage.name,
                        error=str(e),
                        duration=f"{duration:.2f}s",
                        exc_info=True,
                    )
                else:
                    duration = time.perf_counter() - step_start
                    step = StepResult.completed(
                        stage.name, output, duration, estimate_tokens(current_input + output)
                    )
                    current_input = output
                    completed.append(step)
                    self._publish(
                        PipelineState(
                            is_running=True,
                            current_step_index=i,
                            completed_steps=tuple(completed),
                            current_step=None,
                            total_steps=total,
                        )
                    )
                    log.info(
                        "stage_complete",
                        run_id=run_id,
                        stage=stage.name,
                        tokens=step.tokens_used,
                        duration=f"{duration:.2f}s",
                    )
                    yield step
                    continue

                completed.append(step)
                self._publish(self._terminal_state(i, completed))
                yield step
                return

            self._publish(self._terminal_state(total - 1, completed))
            log.info(
                "pipeline_complete",
                run_id=run_id,
                duration=f"{time.perf_counter() - run_start:.2f}s",
            )
        finally:
            # A later run may already have released this one
            if self._cancellation is cancellation:
                self._release_run()

    def _release_run(self) -> None:
        state = self.current_state()
        if state.is_running:
            # Consumer stopped iterating early; don't leave a running snapshot behind
            self._publish(replace(state, is_running=False, current_step=None))
        self._cancellation = None
        self._open_stream = None

    def _terminal_state(self, index: int, completed: list[StepResult]) -> PipelineState:
        return PipelineState(
            is_running=False,
            current_step_index=index,
            completed_steps=tuple(completed),
            current_step=None,
            total_steps=len(self._stages),
        )

    async def run(
        self,
        input_text: str,
        cancel_event: asyncio.Event | None = None,
    ) -> PipelineResult:
        """Run the pipeline to completion and return the aggregate result.

        Never raises for stage failures or cancellation; those are reported
        through ``PipelineResult.success`` and ``PipelineResult.error``.

        Raises:
            PipelineBusyError: If another run is active on this instance.
        """
        start_time = time.perf_counter()
        steps: list[StepResult] = []

        async with aclosing(self.stream(input_text, cancel_event)) as results:
            async for step in results:
                steps.append(step)
                if step.status is StepStatus.FAILED:
                    return PipelineResult.failed(
                        step.error or "Unknown error",
                        tuple(steps),
                        time.perf_counter() - start_time,
                    )
                if step.status is StepStatus.CANCELLED:
                    return PipelineResult.failed(
                        f"Pipeline cancelled during stage '{step.stage}'",
                        tuple(steps),
                        time.perf_counter() - start_time,
                    )

        final_output = (steps[-1].output or "") if steps else ""
        return PipelineResult.successful(
            final_output, tuple(steps), time.perf_counter() - start_time
        )

    async def close(self) -> None:
        """Close the orchestrator and release the generation client."""
        await self._client.close()
