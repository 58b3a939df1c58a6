"""Pipeline definition, orchestration and configuration."""

from agentrelay.pipeline.cancellation import CancellationSource, RunCancelledError
from agentrelay.pipeline.config import (
    ConfigError,
    OrchestrationConfig,
    PipelineOptions,
    load_config,
)
from agentrelay.pipeline.content import create_content_pipeline
from agentrelay.pipeline.definition import SequentialPipeline
from agentrelay.pipeline.errors import (
    PipelineBusyError,
    PipelineError,
    StageIndexError,
    StageOutputTooLargeError,
)
from agentrelay.pipeline.orchestrator import (
    PipelineOrchestrator,
    StateSubscription,
    build_stage_messages,
    estimate_tokens,
)

__all__ = [
    "CancellationSource",
    "ConfigError",
    "OrchestrationConfig",
    "PipelineBusyError",
    "PipelineError",
    "PipelineOptions",
    "PipelineOrchestrator",
    "RunCancelledError",
    "SequentialPipeline",
    "StageIndexError",
    "StageOutputTooLargeError",
    "StateSubscription",
    "build_stage_messages",
    "create_content_pipeline",
    "estimate_tokens",
    "load_config",
]
