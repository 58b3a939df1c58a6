"""Value types shared by the pipeline engine and its observers."""

from agentrelay.models.results import PipelineResult, PipelineState, StepResult, StepStatus
from agentrelay.models.stage import StageDefinition

__all__ = [
    "PipelineResult",
    "PipelineState",
    "StageDefinition",
    "StepResult",
    "StepStatus",
]
