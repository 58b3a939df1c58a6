"""Console progress relay for pipeline state changes."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape

from agentrelay.models.results import StepStatus

if TYPE_CHECKING:
    from agentrelay.models.results import PipelineState, StepResult


class ConsoleProgressRelay:
    """State observer that prints pipeline transitions to a Rich console.

    Compares each snapshot with the previous one and reports only what
    changed: a stage starting, a stage reaching a terminal status, and the
    run finishing. Register it with ``PipelineOrchestrator.subscribe``.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console(stderr=True)
        self._seen_steps = 0
        self._announced: tuple[int, str] | None = None

    def __call__(self, state: PipelineState) -> None:
        if state.is_running and state.current_step_index == 0 and not state.completed_steps:
            # New run on a reused relay
            self._seen_steps = 0

        for step in state.completed_steps[self._seen_steps :]:
            self._print_step(step, state)
        self._seen_steps = len(state.completed_steps)

        current = state.current_step
        if current is not None and current.status is StepStatus.RUNNING:
            key = (state.current_step_index, current.stage)
            if key != self._announced:
                self._announced = key
                self.console.print(
                    f"[cyan]→[/cyan] [{state.current_step_index + 1}/{state.total_steps}] "
                    f"[bold]{escape(current.stage)}[/bold] running..."
                )

        if not state.is_running and state.completed_steps:
            self._print_summary(state)
            self._announced = None

    def _print_step(self, step: StepResult, state: PipelineState) -> None:
        if step.status is StepStatus.COMPLETED:
            self.console.print(
                f"[green]✓[/green] [bold]{escape(step.stage)}[/bold] completed "
                f"[dim]({step.duration_seconds:.1f}s, ~{step.tokens_used} tokens, "
                f"{state.progress_percentage}%)[/dim]"
            )
        elif step.status is StepStatus.FAILED:
            self.console.print(
                f"[red]✗[/red] [bold]{escape(step.stage)}[/bold] failed: "
                f"{escape(step.error or '')}"
            )
        elif step.status is StepStatus.CANCELLED:
            self.console.print(f"[yellow]■[/yellow] [bold]{escape(step.stage)}[/bold] cancelled")

    def _print_summary(self, state: PipelineState) -> None:
        if state.has_failed:
            self.console.print("[red]Pipeline failed.[/red]")
        elif state.is_completed and state.completed_steps[-1].status is StepStatus.COMPLETED:
            self.console.print("[green]Pipeline completed.[/green]")
        else:
            self.console.print("[yellow]Pipeline stopped.[/yellow]")
