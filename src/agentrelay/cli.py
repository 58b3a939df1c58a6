"""agentrelay CLI - typer application entry point."""

from __future__ import annotations

import asyncio
import atexit
import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from agentrelay.observability import (
    LLMLogger,
    close_file_logging,
    configure_logging,
    get_logger,
)

if TYPE_CHECKING:
    from agentrelay.models.results import PipelineResult
    from agentrelay.pipeline.config import OrchestrationConfig
    from agentrelay.providers.base import GenerationClient

# Load environment variables from .env file
load_dotenv()

app = typer.Typer(
    name="agentrelay",
    help="agentrelay: Sequential multi-stage LLM pipelines.",
    no_args_is_help=True,
)
console = Console()

DEFAULT_LOGS_DIR = Path("logs")

# Global state for logging flags (set by callback, used by commands)
_log_enabled: bool = False
_logs_dir: Path = DEFAULT_LOGS_DIR


@app.callback()
def main(
    verbose: Annotated[
        int,
        typer.Option(
            "-v",
            "--verbose",
            count=True,
            help="Increase verbosity: -v for INFO, -vv for DEBUG.",
        ),
    ] = 0,
    log: Annotated[
        bool,
        typer.Option(
            "--log",
            help="Enable file logging (debug.jsonl, llm_calls.jsonl).",
        ),
    ] = False,
    logs_dir: Annotated[
        Path,
        typer.Option(
            "--logs-dir",
            help="Directory for log files (default: ./logs).",
            envvar="AGENTRELAY_LOGS_DIR",
        ),
    ] = DEFAULT_LOGS_DIR,
) -> None:
    """agentrelay: Sequential multi-stage LLM pipelines."""
    global _log_enabled, _logs_dir
    _log_enabled = log
    _logs_dir = logs_dir

    configure_logging(verbosity=verbose, log_to_file=log, logs_dir=logs_dir if log else None)
    if log:
        atexit.register(close_file_logging)


def _load_config(config_path: Path | None) -> OrchestrationConfig:
    """Load config from ``config_path`` or ./agentrelay.yaml, else defaults.

    An explicit path that cannot be loaded is an error.
    """
    from agentrelay.pipeline.config import (
        CONFIG_FILENAME,
        ConfigError,
        OrchestrationConfig,
        load_config,
    )

    if config_path is None:
        default_path = Path(CONFIG_FILENAME)
        if not default_path.exists():
            return OrchestrationConfig()
        config_path = default_path

    try:
        return load_config(config_path)
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e


def _create_client(provider_string: str, *, mock: bool) -> GenerationClient:
    """Create the generation client, wrapped for call logging when --log is set."""
    from agentrelay.providers.base import ProviderError
    from agentrelay.providers.factory import create_generation_client
    from agentrelay.providers.logging_wrapper import LoggingGenerationClient
    from agentrelay.providers.mock import MockGenerationClient

    client: GenerationClient
    if mock:
        client = MockGenerationClient()
    else:
        try:
            client = create_generation_client(provider_string)
        except ProviderError as e:
            console.print(f"[red]Error:[/red] {escape(str(e))}")
            raise typer.Exit(1) from e

    if _log_enabled:
        client = LoggingGenerationClient(client, LLMLogger(_logs_dir))
    return client


async def _run_pipeline_async(
    config: OrchestrationConfig,
    client: GenerationClient,
    input_text: str,
    *,
    show_progress: bool,
    timeout: float,
) -> PipelineResult:
    """Run the pipeline with a run-level deadline and close the client.

    The deadline sets the cancellation signal, so an expired run ends with a
    Cancelled step rather than an exception.
    """
    from agentrelay.pipeline.orchestrator import PipelineOrchestrator
    from agentrelay.progress import ConsoleProgressRelay

    log = get_logger(__name__)
    orchestrator = PipelineOrchestrator.from_config(config, client)
    cancel_event = asyncio.Event()
    deadline = asyncio.get_running_loop().call_later(timeout, cancel_event.set)
    log.debug("run_configured", stages=orchestrator.pipeline.step_count, timeout=timeout)

    relay = ConsoleProgressRelay(Console(stderr=True)) if show_progress else None
    try:
        if relay is None:
            return await orchestrator.run(input_text, cancel_event)
        with orchestrator.subscribe(relay):
            return await orchestrator.run(input_text, cancel_event)
    finally:
        deadline.cancel()
        await orchestrator.close()


@app.command()
def version() -> None:
    """Show version information."""
    from agentrelay import __version__

    console.print(f"agentrelay v{__version__}")


@app.command()
def stages(
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Config file (default: ./agentrelay.yaml)."),
    ] = None,
) -> None:
    """List the configured pipeline stages."""
    config = _load_config(config_path)
    pipeline = config.build_pipeline()

    table = Table(title="Pipeline Stages")
    table.add_column("#", style="dim")
    table.add_column("Stage", style="cyan")
    table.add_column("Order", style="dim")
    table.add_column("Description")

    for index, stage in enumerate(pipeline):
        table.add_row(str(index + 1), stage.name, str(stage.order), stage.description)

    console.print()
    console.print(table)
    console.print()


@app.command()
def run(
    input_text: Annotated[
        str,
        typer.Argument(help="Input text for the first stage, or '-' to read stdin."),
    ],
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Config file (default: ./agentrelay.yaml)."),
    ] = None,
    provider: Annotated[
        str | None,
        typer.Option(
            "--provider",
            help="Provider override (e.g., openai/gpt-4o, ollama/llama3.2).",
        ),
    ] = None,
    mock: Annotated[
        bool,
        typer.Option("--mock", help="Use the offline mock generation client."),
    ] = False,
    stream: Annotated[
        bool | None,
        typer.Option("--stream/--no-stream", help="Stream stage output from the provider."),
    ] = None,
    timeout: Annotated[
        float | None,
        typer.Option("--timeout", help="Run deadline in seconds (default from config)."),
    ] = None,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the pipeline result as JSON."),
    ] = False,
) -> None:
    """Run the pipeline on INPUT and print the final output."""
    if input_text == "-":
        input_text = sys.stdin.read()
    if not input_text.strip():
        console.print("[red]Error:[/red] Input text is empty.")
        raise typer.Exit(1)

    config = _load_config(config_path)
    if stream is not None:
        config.pipeline.enable_streaming = stream

    # CLI flag wins over AGENTRELAY_PROVIDER and the config file
    client = _create_client(provider or config.effective_provider, mock=mock)
    result = asyncio.run(
        _run_pipeline_async(
            config,
            client,
            input_text,
            show_progress=not as_json,
            timeout=timeout if timeout is not None else config.pipeline.timeout_seconds,
        )
    )

    if as_json:
        console.print_json(json.dumps(result.to_dict()))
    elif result.success:
        console.print()
        console.print(Panel(Markdown(result.final_output), title="Final Output"))
        console.print(
            f"[dim]{len(result.steps)} stages, {result.total_duration_seconds:.1f}s, "
            f"~{result.total_tokens_used} tokens[/dim]"
        )
    else:
        console.print(f"[red]Error:[/red] {escape(result.error or '')}")

    if not result.success:
        raise typer.Exit(1)
