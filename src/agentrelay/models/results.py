"""Step, state and result value types.

All three types are frozen. A transition never updates an existing value; the
orchestrator builds a new one and publishes it, so readers on other threads
always see a consistent snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class StepStatus(Enum):
    """Execution status of a single stage."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Whether the status ends the stage (completed, failed or cancelled)."""
        return self in (StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.CANCELLED)


@dataclass(frozen=True)
class StepResult:
    """Outcome of one stage.

    Attributes:
        stage: Name of the stage that produced this result.
        status: Execution status.
        output: Generated text. Only set when completed.
        duration_seconds: Wall time spent in the stage.
        tokens_used: Coarse token estimate (characters / 4), not billed usage.
        error: Error message. Only set when failed.
    """

    stage: str
    status: StepStatus
    output: str | None = None
    duration_seconds: float = 0.0
    tokens_used: int = 0
    error: str | None = None

    @classmethod
    def pending(cls, stage: str) -> StepResult:
        return cls(stage=stage, status=StepStatus.PENDING)

    @classmethod
    def running(cls, stage: str) -> StepResult:
        return cls(stage=stage, status=StepStatus.RUNNING)

    @classmethod
    def completed(
        cls, stage: str, output: str, duration_seconds: float, tokens_used: int = 0
    ) -> StepResult:
        return cls(
            stage=stage,
            status=StepStatus.COMPLETED,
            output=output,
            duration_seconds=duration_seconds,
            tokens_used=tokens_used,
        )

    @classmethod
    def failed(cls, stage: str, error: str, duration_seconds: float) -> StepResult:
        return cls(
            stage=stage,
            status=StepStatus.FAILED,
            duration_seconds=duration_seconds,
            error=error,
        )

    @classmethod
    def cancelled(cls, stage: str) -> StepResult:
        return cls(stage=stage, status=StepStatus.CANCELLED)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "stage": self.stage,
            "status": self.status.value,
            "output": self.output,
            "duration_seconds": self.duration_seconds,
            "tokens_used": self.tokens_used,
            "error": self.error,
        }


@dataclass(frozen=True)
class PipelineState:
    """Point-in-time view of pipeline progress.

    Attributes:
        is_running: Whether a run is in progress.
        current_step_index: Zero-based index of the active stage, -1 before start.
        completed_steps: Terminal step results so far, in stage order.
        current_step: The in-flight step, if any.
        total_steps: Number of stages in the pipeline.
    """

    is_running: bool
    current_step_index: int
    completed_steps: tuple[StepResult, ...] = field(default_factory=tuple)
    current_step: StepResult | None = None
    total_steps: int = 0

    @classmethod
    def initial(cls, total_steps: int) -> PipelineState:
        """Idle state before any run."""
        return cls(is_running=False, current_step_index=-1, total_steps=total_steps)

    @property
    def is_completed(self) -> bool:
        """Whether every stage has a terminal result and the run has stopped."""
        return not self.is_running and len(self.completed_steps) == self.total_steps

    @property
    def has_failed(self) -> bool:
        return any(s.status is StepStatus.FAILED for s in self.completed_steps)

    @property
    def progress_percentage(self) -> int:
        """Completed share of the pipeline as a whole percentage (0-100)."""
        if self.total_steps <= 0:
            return 0
        return len(self.completed_steps) * 100 // self.total_steps

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict, including derived fields."""
        return {
            "is_running": self.is_running,
            "current_step_index": self.current_step_index,
            "completed_steps": [s.to_dict() for s in self.completed_steps],
            "current_step": self.current_step.to_dict() if self.current_step else None,
            "total_steps": self.total_steps,
            "is_completed": self.is_completed,
            "has_failed": self.has_failed,
            "progress_percentage": self.progress_percentage,
        }


@dataclass(frozen=True)
class PipelineResult:
    """Terminal aggregate of one run.

    Attributes:
        success: True only when every stage completed, in order.
        final_output: Output of the last stage, empty unless successful.
        steps: Every step result emitted by the run.
        total_duration_seconds: Wall time of the whole run.
        error: Error text when the run did not succeed.
    """

    success: bool
    final_output: str
    steps: tuple[StepResult, ...]
    total_duration_seconds: float
    error: str | None = None

    @classmethod
    def successful(
        cls, final_output: str, steps: tuple[StepResult, ...], total_duration_seconds: float
    ) -> PipelineResult:
        return cls(
            success=True,
            final_output=final_output,
            steps=steps,
            total_duration_seconds=total_duration_seconds,
        )

    @classmethod
    def failed(
        cls, error: str, steps: tuple[StepResult, ...], total_duration_seconds: float
    ) -> PipelineResult:
        return cls(
            success=False,
            final_output="",
            steps=steps,
            total_duration_seconds=total_duration_seconds,
            error=error,
        )

    @property
    def total_tokens_used(self) -> int:
        return sum(s.tokens_used for s in self.steps)

    def get_stage_output(self, stage: str) -> str | None:
        """Output of the first step named ``stage`` (case-insensitive), or None."""
        wanted = stage.casefold()
        for step in self.steps:
            if step.stage.casefold() == wanted:
                return step.output
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "success": self.success,
            "final_output": self.final_output,
            "steps": [s.to_dict() for s in self.steps],
            "total_duration_seconds": self.total_duration_seconds,
            "total_tokens_used": self.total_tokens_used,
            "error": self.error,
        }
