"""Pipeline exceptions."""

from __future__ import annotations


class PipelineError(Exception):
    """Base exception for pipeline errors."""


class PipelineBusyError(PipelineError):
    """Raised when a run is started while another run is active."""

    def __init__(self) -> None:
        super().__init__("A pipeline run is already in progress on this orchestrator")


class StageIndexError(PipelineError, IndexError):
    """Raised when a stage index is outside the pipeline."""

    def __init__(self, index: int, count: int) -> None:
        self.index = index
        self.count = count
        super().__init__(f"Stage index {index} out of range for pipeline with {count} stages")


class StageOutputTooLargeError(PipelineError):
    """Raised when streamed stage output exceeds the configured bound."""

    def __init__(self, stage: str, limit: int) -> None:
        self.stage = stage
        self.limit = limit
        super().__init__(f"Stage '{stage}' output exceeded {limit} characters")
