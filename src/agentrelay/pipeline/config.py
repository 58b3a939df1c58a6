"""Orchestration configuration loading."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path  # noqa: TC003 - used at runtime
from typing import Any

from pydantic import ValidationError
from ruamel.yaml import YAML

from agentrelay.models.stage import StageDefinition
from agentrelay.pipeline.content import create_content_pipeline
from agentrelay.pipeline.definition import SequentialPipeline
from agentrelay.pipeline.orchestrator import DEFAULT_MAX_OUTPUT_CHARS, DEFAULT_MAX_OUTPUT_TOKENS

# Default configuration values
DEFAULT_PROVIDER = "ollama/llama3.2"
DEFAULT_TIMEOUT_SECONDS = 120
CONFIG_FILENAME = "agentrelay.yaml"
PROVIDER_ENV_VAR = "AGENTRELAY_PROVIDER"


@dataclass
class PipelineOptions:
    """Pipeline execution options.

    Attributes:
        max_output_tokens: Upper bound on tokens generated per stage.
        timeout_seconds: Deadline for a whole run, enforced by the caller.
        enable_streaming: Request stage output as a fragment stream.
        max_output_chars: Bound on accumulated streamed output per stage.
    """

    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    enable_streaming: bool = True
    max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PipelineOptions:
        return cls(
            max_output_tokens=int(data.get("max_output_tokens", DEFAULT_MAX_OUTPUT_TOKENS)),
            timeout_seconds=float(data.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)),
            enable_streaming=bool(data.get("enable_streaming", True)),
            max_output_chars=int(data.get("max_output_chars", DEFAULT_MAX_OUTPUT_CHARS)),
        )


@dataclass
class OrchestrationConfig:
    """Configuration for an agentrelay pipeline.

    Attributes:
        provider: Provider string such as "openai/gpt-4o".
        pipeline: Execution options.
        stages: Custom stages. Empty means the default content pipeline.
    """

    provider: str = DEFAULT_PROVIDER
    pipeline: PipelineOptions = field(default_factory=PipelineOptions)
    stages: list[StageDefinition] = field(default_factory=list)

    @property
    def effective_provider(self) -> str:
        """Provider string after applying the AGENTRELAY_PROVIDER override."""
        return os.getenv(PROVIDER_ENV_VAR) or self.provider

    def build_pipeline(self) -> SequentialPipeline:
        """Build the configured pipeline, or the default content pipeline."""
        if not self.stages:
            return create_content_pipeline()
        return SequentialPipeline.from_stages(self.stages)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OrchestrationConfig:
        """Create config from dictionary.

        Stages without an explicit ``order`` take their 1-based list position.

        Raises:
            ValidationError: If a stage entry is invalid.
        """
        stages = [
            StageDefinition.model_validate({"order": position, **dict(entry)})
            for position, entry in enumerate(data.get("stages") or [], start=1)
        ]
        return cls(
            provider=data.get("provider", DEFAULT_PROVIDER),
            pipeline=PipelineOptions.from_dict(dict(data.get("pipeline") or {})),
            stages=stages,
        )


class ConfigError(Exception):
    """Raised when configuration cannot be loaded."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load config at {path}: {reason}")


def load_config(path: Path) -> OrchestrationConfig:
    """Load configuration from a YAML file.

    Args:
        path: Config file, or a directory containing agentrelay.yaml.

    Returns:
        OrchestrationConfig instance.

    Raises:
        ConfigError: If config cannot be loaded.
    """
    config_path = path / CONFIG_FILENAME if path.is_dir() else path

    if not config_path.exists():
        raise ConfigError(config_path, "File not found")

    yaml = YAML(typ="safe")
    try:
        with config_path.open("r", encoding="utf-8") as f:
            data = yaml.load(f)

        if data is None:
            raise ConfigError(config_path, "Empty file")
        if not isinstance(data, dict):
            raise ConfigError(config_path, "Top-level mapping expected")

        return OrchestrationConfig.from_dict(data)
    except ValidationError as e:
        raise ConfigError(config_path, f"Invalid stage definition: {e}") from e
    except Exception as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(config_path, str(e)) from e
